"""
Scope parsing and matching for API key authorization.

Granted scopes are one of three shapes:

- ``*``       grants everything
- ``forms.*`` grants every scope under the ``forms.`` namespace
- ``forms.read`` grants exactly that scope
"""

from typing import Iterable, NamedTuple

from ..enums import ScopeKind

WILDCARD = "*"
PREFIX_SUFFIX = ".*"


class ScopePattern(NamedTuple):
    kind: ScopeKind
    value: str

    @classmethod
    def parse(cls, scope: str) -> "ScopePattern":
        if scope == WILDCARD:
            return cls(ScopeKind.ANY, "")
        if scope.endswith(PREFIX_SUFFIX) and len(scope) > len(PREFIX_SUFFIX):
            # Keep the dot so "forms.*" never matches "formsx.read"
            return cls(ScopeKind.PREFIX, scope[:-1])
        return cls(ScopeKind.EXACT, scope)

    def matches(self, required_scope: str) -> bool:
        if self.kind is ScopeKind.ANY:
            return True
        if self.kind is ScopeKind.PREFIX:
            return required_scope.startswith(self.value)
        return required_scope == self.value


def authorize(scopes: Iterable[str], required_scope: str) -> bool:
    """Return True if any granted scope covers ``required_scope``. Case-sensitive."""
    return any(ScopePattern.parse(scope).matches(required_scope) for scope in scopes)
