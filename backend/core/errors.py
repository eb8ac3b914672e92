from typing import Optional


class NotifierError(Exception):
    """Base class for notification worker failures"""


class AuthError(NotifierError):
    """Service account is malformed or the token exchange was rejected"""


class ConfigError(NotifierError):
    """Branch allow-list could not be parsed"""


class QueryError(NotifierError):
    """Document store request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryError(NotifierError):
    """Messaging provider rejected the message or was unreachable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
