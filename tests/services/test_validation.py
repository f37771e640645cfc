import pytest

from bhimainstaller.errors import ConfigurationError, InstallerError
from bhimainstaller.services.validation import ValidationService


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


@pytest.mark.parametrize(
    "hostname,expected",
    [
        ("example.org", "example.org"),
        ("Vanga.ThirdCultureSoftware.com.", "vanga.thirdculturesoftware.com"),
        ("10.0.0.5", "10.0.0.5"),
        ("localhost", "localhost"),
    ],
)
def test_validate_hostname_accepts_names_and_addresses(hostname, expected):
    assert ValidationService().validate_hostname(hostname) == expected


@pytest.mark.parametrize("hostname", ["", "   ", "bad_host.org", "-leading.example.org", "a..b"])
def test_validate_hostname_rejects_invalid_values(hostname):
    with pytest.raises(ConfigurationError):
        ValidationService().validate_hostname(hostname)


def test_validate_port_bounds():
    service = ValidationService()

    assert service.validate_port("8080") == 8080
    with pytest.raises(ConfigurationError):
        service.validate_port(0)
    with pytest.raises(ConfigurationError):
        service.validate_port(70000)
    with pytest.raises(ConfigurationError):
        service.validate_port("http")


def test_http_urls_are_blocked_by_default():
    with pytest.raises(InstallerError, match="insecure HTTP"):
        ValidationService().enforce_https_policy(
            "http://example.com/bhima.tar.gz", "release", DummyLogger(), DummyConsole()
        )


def test_http_urls_can_be_allowed():
    ValidationService(allow_insecure_http=True).enforce_https_policy(
        "http://example.com/bhima.tar.gz", "release", DummyLogger(), DummyConsole()
    )


def test_non_http_locations_are_rejected():
    with pytest.raises(InstallerError, match="not an HTTP"):
        ValidationService().enforce_https_policy("/tmp/bhima.tar.gz", "release", DummyLogger(), DummyConsole())
