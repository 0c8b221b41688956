"""Custom exceptions for Mail Archive Sync."""


class MailSyncError(Exception):
    """Base exception for all Mail Archive Sync errors."""


class ConfigurationError(MailSyncError):
    """Exception raised for configuration related errors (e.g. missing credentials)."""


class AuthenticationError(MailSyncError):
    """Exception raised for authentication failures. The user must sign in again."""


class GmailAPIError(MailSyncError):
    """Exception raised for transient Gmail API errors (rate limits, timeouts)."""


class StorageQuotaExceededError(MailSyncError):
    """Exception raised when the local store rejects a write as over quota."""


class PartitionWriteError(MailSyncError):
    """Exception raised when a partition document cannot be written."""


class ValidationError(MailSyncError):
    """Exception raised for data validation errors."""


class InvalidDateRangeError(ValidationError):
    """Exception raised when a date range starts after it ends."""


class PartitionReadError(MailSyncError):
    """Exception raised when a stored document exists but cannot be read."""
