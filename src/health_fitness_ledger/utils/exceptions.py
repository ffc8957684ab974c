"""Custom exceptions for the health fitness ledger."""


class HealthLedgerError(Exception):
    """Base exception for all health fitness ledger errors."""

    pass


class ConfigurationError(HealthLedgerError):
    """Raised when there is a configuration error."""

    pass


class AuthenticationError(HealthLedgerError):
    """Raised when Strava authentication or token refresh fails."""

    pass


class StravaClientError(HealthLedgerError):
    """Raised when Strava API operations fail."""

    pass


class StorageError(HealthLedgerError):
    """Raised when the document store cannot be read or written."""

    pass


class ParsingError(HealthLedgerError):
    """Raised when file parsing fails."""

    pass


class ValidationError(HealthLedgerError):
    """Raised when data validation fails."""

    def __init__(self, message: str, report: object | None = None) -> None:
        super().__init__(message)
        self.report = report


class BackupFailure(HealthLedgerError):
    """Raised when the pre-migration backup did not complete."""

    def __init__(self, message: str, report: object | None = None) -> None:
        super().__init__(message)
        self.report = report


class NotFoundError(HealthLedgerError):
    """Raised when a document addressed by id does not exist."""

    pass


class DataQualityWarning(UserWarning):
    """Issued when records are excluded from grouping because of missing fields."""

    pass
