"""
Error types shared across converters, builder, publisher and store.
"""
from typing import Optional


class CDBridgeError(Exception):
    """Base class for all application errors."""


class PayloadError(CDBridgeError):
    """Inbound webhook payload could not be decoded."""


class EventValidationError(CDBridgeError):
    """Event or request is missing required fields or has an unsupported type."""


class PublisherConfigError(CDBridgeError):
    """Downstream endpoint, token or secret is missing."""


class PublishError(CDBridgeError):
    """Downstream endpoint rejected the event or could not be reached."""
    
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MappingNotFound(CDBridgeError):
    """No installation mapping matched."""


class SetupIntentNotFound(CDBridgeError):
    """Setup state is unknown or was already consumed."""


class SetupIntentExpired(CDBridgeError):
    """Setup state was found but its expiry has passed."""
