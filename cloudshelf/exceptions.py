"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class CloudShelfError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(CloudShelfError):
    """Raised for issues related to configuration loading or validation."""


class LibraryError(CloudShelfError):
    """Raised when the library database cannot be opened or initialized."""


class TrackNotFoundError(CloudShelfError):
    """Raised when a track ID does not exist in the library."""


class DuplicateSourceError(CloudShelfError):
    """Raised when registering a storage source whose root path is already taken."""


class MaterializationTimeoutError(CloudShelfError):
    """
    Raised when a file that must be read right now did not finish downloading
    from the cloud provider within the allowed time.
    """

    def __init__(self, file_path: str, timeout: float):
        self.file_path = file_path
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:.0f}s waiting for file download: {file_path}"
        )
