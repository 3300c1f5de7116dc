"""Error taxonomy for the migration pipeline."""

from typing import Optional


class MigrationError(Exception):
    """Base class for all migration errors."""


class FatalMigrationError(MigrationError):
    """An error that aborts the whole run with a non-zero exit code."""


class ExtractionError(FatalMigrationError):
    """Extraction of an entity kind could not be completed."""

    def __init__(self, kind: str, message: str, cause: Optional[Exception] = None):
        super().__init__(f"Failed to extract {kind}: {message}")
        self.kind = kind
        self.cause = cause


class CredentialError(FatalMigrationError):
    """A required credential or setting is missing."""


class ConfirmationRequiredError(FatalMigrationError):
    """A confirmation gate was reached without a way to ask and without a policy."""


class UserAbortError(FatalMigrationError):
    """The operator declined a plan."""

    def __init__(self, kind: str):
        super().__init__(f"Migration aborted by user at the {kind} confirmation")
        self.kind = kind


# Source provider errors

class SourceError(MigrationError):
    """A source provider request failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


class SourceAuthError(SourceError, FatalMigrationError):
    """The source rejected the credentials."""


class SourceNotFoundError(SourceError):
    """The requested source resource does not exist."""


class SourceRateLimitedError(SourceError):
    """The source asked us to slow down."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = 429,
        provider: Optional[str] = None
    ):
        super().__init__(message, status_code, provider)
        self.retry_after = retry_after


# Target platform errors

class TargetError(MigrationError):
    """The target platform rejected a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class TargetRateLimitedError(TargetError, FatalMigrationError):
    """The target asked us to slow down; terminal outside extraction."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = 429,
        code: Optional[str] = None
    ):
        super().__init__(message, status_code, code)
        self.retry_after = retry_after


class LinkNotFound(MigrationError):
    """No target record was recorded for an origin key."""
