"""Custom exceptions for the Excel Image Mapper."""

from typing import Optional


class ImageMapperError(Exception):
    """Base exception for Excel Image Mapper operations."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class FileProcessingError(ImageMapperError):
    """Exception raised for file processing errors."""

    pass


class ParseError(FileProcessingError):
    """Exception raised when a tabular file is empty or unreadable."""

    def __init__(self, message: str, error_code: Optional[str] = "PARSE_ERROR") -> None:
        super().__init__(message, error_code)


class ArchiveError(FileProcessingError):
    """Exception raised when an image archive is corrupt or unreadable."""

    def __init__(
        self, message: str, error_code: Optional[str] = "ARCHIVE_ERROR"
    ) -> None:
        super().__init__(message, error_code)


class EmitError(FileProcessingError):
    """Exception raised when the merged workbook cannot be produced."""

    def __init__(self, message: str, error_code: Optional[str] = "EMIT_ERROR") -> None:
        super().__init__(message, error_code)


class ConfigurationError(ImageMapperError):
    """Exception raised for configuration-related errors."""

    pass


class ValidationError(ImageMapperError):
    """Exception raised for validation errors."""

    pass


class SessionNotFoundError(ImageMapperError):
    """Exception raised when a matching session does not exist or was reset."""

    def __init__(
        self, message: str, error_code: Optional[str] = "SESSION_NOT_FOUND"
    ) -> None:
        super().__init__(message, error_code)


class AuthenticationError(ImageMapperError):
    """Exception raised for authentication errors."""

    pass
