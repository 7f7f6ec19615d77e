"""
Partner API authentication: client credentials and the access token slot.
"""

from .token_manager import AccessToken, ClientCredentials, TokenManager

__all__ = [
    "AccessToken",
    "ClientCredentials",
    "TokenManager",
]
