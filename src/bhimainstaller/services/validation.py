"""Input and URL validation helpers for the BHIMA installer."""

import ipaddress
import re
from urllib.parse import urlparse

from bhimainstaller.errors import ConfigurationError, InstallerError
from bhimainstaller.errors_catalog import actionable_error


class ValidationService:
    """Validates installer inputs and protocol policy."""

    HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

    def __init__(self, allow_insecure_http: bool = False):
        self.allow_insecure_http = allow_insecure_http

    def is_url(self, location: str) -> bool:
        scheme = urlparse(location).scheme.lower()
        return scheme in {"http", "https"}

    def enforce_https_policy(self, location: str, label: str, logger, console):
        if not self.is_url(location):
            raise InstallerError(f"{label} is not an HTTP(S) URL: {location}")

        scheme = urlparse(location).scheme.lower()
        if scheme == "http" and not self.allow_insecure_http:
            raise InstallerError(actionable_error("insecure_http", label=label))

        if scheme == "http" and self.allow_insecure_http:
            logger.warning("Insecure HTTP enabled for %s: %s", label, location)
            console.print(
                f"[yellow]Warning:[/yellow] Using insecure HTTP for {label}. "
                "Prefer HTTPS whenever possible."
            )

    def validate_hostname(self, hostname: str) -> str:
        clean = (hostname or "").strip().rstrip(".").lower()
        if not clean:
            raise ConfigurationError("A target hostname is required (e.g. `bhima.example.org`).")

        try:
            ipaddress.ip_address(clean)
            return clean
        except ValueError:
            pass

        if len(clean) > 253 or not all(self.HOSTNAME_LABEL.match(label) for label in clean.split(".")):
            raise ConfigurationError(f"Invalid hostname: {hostname}")
        return clean

    def validate_port(self, port) -> int:
        try:
            value = int(port)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Port must be an integer, got: {port!r}") from exc

        if not 1 <= value <= 65535:
            raise ConfigurationError(f"Port must be between 1 and 65535, got: {value}")
        return value
