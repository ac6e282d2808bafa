"""
Core of the IP platform's public API: the credential gateway for tenant API
keys and the webhook event dispatcher.
"""

__version__ = "0.1.0"
