"""Business-rule failures raised by the account lifecycle.

Every error carries a machine-readable ``code`` and, where it helps the
caller, the offending ``value``. The HTTP layer is the only place that turns
codes into messages and status codes.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for expected, named rejections of an account operation."""

    code: str = "user.error"

    def __init__(self, value: str | None = None) -> None:
        self.value = value
        super().__init__(self.code if value is None else f"{self.code}: {value}")


class InvalidEmailError(AccountError):
    """Raised when an email does not match the configured email pattern."""

    code = "user.email.invalid"


class InvalidPasswordError(AccountError):
    """Raised when a password does not match the configured strength pattern."""

    code = "user.password.invalid"

    def __init__(self) -> None:
        super().__init__()


class EmailAlreadyExistsError(AccountError):
    """Raised when another account already owns the email."""

    code = "user.email.exists"


class InvalidCredentialsError(AccountError):
    """Raised on login for both unknown emails and wrong passwords."""

    code = "user.login.invalidCredentials"

    def __init__(self) -> None:
        super().__init__()


class AccountNotFoundError(AccountError):
    """Raised when no account exists for the given identifier."""

    code = "user.notFound"


class ConcurrentModificationError(AccountError):
    """Raised when the account changed between the read and the write of one operation."""

    code = "user.concurrentModification"
