"""
Error taxonomy shared by the call and messaging services.

Every error carries a short machine-readable ``kind`` and whether
re-invoking the same operation can succeed (``retryable``).
"""


class TelecareError(Exception):
    """Base exception for telecare service errors"""
    kind = "error"
    retryable = False


class AuthorizationError(TelecareError):
    """Caller is not a party to the appointment or conversation"""
    kind = "authorization"


class ConfigurationError(TelecareError):
    """Provider returned an incomplete descriptor or the deployment is misconfigured"""
    kind = "configuration"


class NetworkError(TelecareError):
    """Transport failure talking to a provider; retry the same operation"""
    kind = "network"
    retryable = True


class ValidationError(TelecareError):
    """Caller input is malformed"""
    kind = "validation"


class ProviderError(TelecareError):
    """Remote provider rejected the operation; message kept verbatim"""
    kind = "provider"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.code = code


class PersistenceError(TelecareError):
    """
    Local record read/write failed.

    When raised after a remote side effect succeeded, ``remote_ref`` names
    what already exists remotely (e.g. a channel ARN) so the caller can
    reconcile instead of repeating the side effect.
    """
    kind = "persistence"

    def __init__(self, message: str, remote_ref: str = None):
        super().__init__(message)
        self.remote_ref = remote_ref


class DirectConversationExistsError(PersistenceError):
    """Another writer stored the direct conversation for this pair first"""


class NotFoundError(TelecareError):
    """Referenced conversation does not exist"""
    kind = "not_found"
