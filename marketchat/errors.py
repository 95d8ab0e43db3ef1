"""
Messaging error taxonomy.

Core operations raise these; the HTTP layer turns them into responses
through a single exception handler registered in main.py.
"""


class MessagingError(Exception):
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def code(self) -> str:
        return self.__class__.__name__


class NotFound(MessagingError):
    """Apartment, conversation or message does not exist."""
    status_code = 404


class Forbidden(MessagingError):
    """Caller is not a participant, or tried to mark their own message read."""
    status_code = 403


class InvalidOperation(MessagingError):
    """Request is well formed but not allowed, e.g. messaging yourself."""
    status_code = 400


class ValidationError(MessagingError):
    status_code = 422


class Unavailable(MessagingError):
    """Transient store failure; safe for the caller to retry."""
    status_code = 503


def is_foreign_key_violation(exc) -> bool:
    """True when an IntegrityError was caused by a referenced row that does not exist."""
    # asyncpg: 'violates foreign key constraint', sqlite: 'FOREIGN KEY constraint failed'
    return 'foreign key' in str(getattr(exc, 'orig', exc)).lower()
