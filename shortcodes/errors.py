"""Exception hierarchy for shortcode allocation.

Every error carries a stable machine-readable ``code`` and a ``retryable`` flag
so route handlers can pick an HTTP status and callers can decide whether to try
again later.

Error Map
=========
::
    ShortcodeError
    ├─ StoreUnavailableError   (503, retryable)   a backing store is down
    ├─ ExhaustedError          (409, retryable)   every attempt collided
    └─ CodeUnavailableError    (409)              custom code issued or held by someone else
"""

from shortcodes.enums import StoreName

__all__ = ["ShortcodeError", "StoreUnavailableError", "ExhaustedError", "CodeUnavailableError"]


class ShortcodeError(Exception):
    code: str = "shortcode_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StoreUnavailableError(ShortcodeError):
    code = "store_unavailable"
    retryable = True

    def __init__(self, store: StoreName, message: str | None = None) -> None:
        super().__init__(message or f"{store.value} store is unavailable")
        self.store = store


class ExhaustedError(ShortcodeError):
    code = "allocation_exhausted"
    retryable = True

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a unique shortcode after {attempts} attempts")
        self.attempts = attempts


class CodeUnavailableError(ShortcodeError):
    code = "code_unavailable"

    def __init__(self, short_code: str, reason: str) -> None:
        super().__init__(f"Shortcode '{short_code}' is not available: {reason}")
        self.short_code = short_code
        self.reason = reason
