# src/services/errors.py
from typing import Optional


class LinkingError(Exception):
    """
    Base for every failure of the account-linking flow.
    `public_message` is what the user sees in the settings redirect, so it must never
    contain token material.
    """

    default_message = "Failed to connect account"

    def __init__(self, message: Optional[str] = None):
        self.public_message = message or self.default_message
        super().__init__(self.public_message)


class ConfigurationError(Exception):
    pass


class MissingCodeError(LinkingError):
    default_message = "No code provided"


class AuthenticationError(LinkingError):
    default_message = "Authentication failed. Please sign in and try again."


class UnsupportedPlatformError(LinkingError):
    default_message = "Platform is not enabled"


class TransportError(Exception):
    pass


class ProviderExchangeError(LinkingError):
    default_message = "Token exchange failed"


class ProfileFetchError(LinkingError):
    default_message = "Failed to fetch profile"


class PersistenceError(LinkingError):
    default_message = "Failed to save connection"
