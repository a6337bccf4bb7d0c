"""
Exception taxonomy for the rating, ladder and cache engine.

Every error carries a developer-facing message and a short user-facing
message that the HTTP layer and the admin cog can show as-is.
"""

class ClubError(Exception):
    """Base exception for engine errors."""
    status_code = 500

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ValidationError(ClubError):
    """Raised when input is malformed. Never retried."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, f"❌ {message}")

class NotFoundError(ClubError):
    """Raised when a referenced player or game does not exist."""
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} '{entity_id}' not found",
            f"❌ {entity} '{entity_id}' was not found."
        )
        self.entity = entity
        self.entity_id = entity_id

class QuotaExceededError(ClubError):
    """Raised when the backing store signals rate limiting or times out."""
    status_code = 503

    def __init__(self, details: str = None, timed_out: bool = False):
        reason = "timed out" if timed_out else "quota exceeded"
        super().__init__(
            f"Backing store {reason}: {details}" if details else f"Backing store {reason}",
            "❌ Service temporarily unavailable due to quota exceeded. Please try again later."
        )
        self.timed_out = timed_out

class PersistenceError(ClubError):
    """Raised when the backing store fails for any other reason."""
    status_code = 500

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Persistence error during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )
        self.operation = operation

class CacheError(ClubError):
    """Raised when the cache backend cannot complete an operation."""
    status_code = 500

    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Cache error during {operation}: {details}",
            "❌ Cache operation failed."
        )

class OwnershipError(ClubError):
    """Raised when an ownership transition is not allowed for the actor."""
    status_code = 403

    def __init__(self, message: str):
        super().__init__(message, f"❌ {message}")


QUOTA_ERROR_SIGNATURES = (
    'quota exceeded',
    'quota metric',
    'read requests per minute',
    'rate limit',
    'too many requests',
)


def is_quota_error(error: BaseException) -> bool:
    """Check whether an exception raised by the backing store is a rate-limit signal."""
    if isinstance(error, QuotaExceededError):
        return True
    for attr in ('code', 'status', 'status_code'):
        if getattr(error, attr, None) == 429:
            return True
    message = str(error).lower()
    return any(signature in message for signature in QUOTA_ERROR_SIGNATURES)
