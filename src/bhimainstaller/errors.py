"""Domain errors for the BHIMA installer."""


class InstallerError(RuntimeError):
    """Raised when provisioning cannot continue safely."""


class PrivilegeError(InstallerError):
    """The installer is not running with root privileges."""


class UnsupportedPlatformError(InstallerError):
    """The host OS distribution is not one the recipe knows how to provision."""


class NetworkError(InstallerError):
    """A release API call or download failed after all retries."""


class AssetNotFoundError(InstallerError):
    """No release asset matched the requested pattern."""


class CommandFailureError(InstallerError):
    """An external command returned a non-zero exit code."""

    def __init__(self, message: str, exit_code=None):
        super().__init__(message)
        self.exit_code = exit_code


class ConfigurationError(InstallerError):
    """A required input is missing or invalid."""
