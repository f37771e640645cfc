"""Shared domain models for the BHIMA installer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from bhimainstaller.errors import CommandFailureError, InstallerError
from bhimainstaller.errors_catalog import actionable_error


@dataclass(frozen=True)
class ProvisioningContext:
    """Run-wide configuration and secrets, built once and passed to every step."""

    run_id: str
    install_dir: str
    hostname: str
    port: int
    credentials_file: str
    platform_family: str
    platform_codename: str
    db_password: str = field(repr=False)
    session_secret: str = field(repr=False)
    vpn_auth_key: Optional[str] = field(default=None, repr=False)
    enable_vpn: bool = False
    enable_syncthing: bool = False
    enable_hardening: bool = True


@dataclass(frozen=True)
class CommandResult:
    command: Tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single step."""

    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)

    @classmethod
    def success(cls, name: str) -> "StepResult":
        return cls(name=name, status=StepStatus.SUCCEEDED, exit_code=0)

    @classmethod
    def failure(
        cls,
        name: str,
        error: str,
        exit_code: Optional[int] = None,
        exception: Optional[BaseException] = None,
    ) -> "StepResult":
        return cls(
            name=name,
            status=StepStatus.FAILED,
            exit_code=exit_code,
            error=error,
            exception=exception,
        )


@dataclass
class Step:
    """A named, idempotent unit of provisioning work.

    ``apply`` is skipped when ``is_satisfied`` returns true or ``enabled``
    returns false. A step without ``is_satisfied`` always runs, so its
    ``apply`` must be safe to repeat.
    """

    name: str
    apply: Callable[[], StepResult]
    is_satisfied: Optional[Callable[[], bool]] = None
    verify: Optional[Callable[[], bool]] = None
    enabled: Optional[Callable[[], bool]] = None
    description: str = ""


@dataclass(frozen=True)
class ServiceHealth:
    name: str
    running: bool
    diagnostic: Optional[str] = None


@dataclass(frozen=True)
class HostPaths:
    """System locations the recipe writes to."""

    nginx_dir: str = "/etc/nginx"
    systemd_dir: str = "/etc/systemd/system"
    apt_sources_dir: str = "/etc/apt/sources.list.d"
    apt_conf_dir: str = "/etc/apt/apt.conf.d"
    keyrings_dir: str = "/usr/share/keyrings"
    apt_keyrings_dir: str = "/etc/apt/keyrings"
    home_dir: str = "/root"


@dataclass(frozen=True)
class PlatformInfo:
    family: str
    codename: str


@dataclass
class RunReport:
    """Ordered step results of one runner pass."""

    results: List[StepResult] = field(default_factory=list)

    @property
    def failed(self) -> Optional[StepResult]:
        for result in self.results:
            if result.status == StepStatus.FAILED:
                return result
        return None

    @property
    def succeeded(self) -> bool:
        return self.failed is None

    def status_of(self, name: str) -> Optional[StepStatus]:
        for result in self.results:
            if result.name == name:
                return result.status
        return None

    def raise_for_failure(self):
        failed = self.failed
        if failed is None:
            return

        if isinstance(failed.exception, InstallerError):
            raise failed.exception

        raise CommandFailureError(
            actionable_error("step_failed", step=failed.name, error=failed.error or "unknown error"),
            exit_code=failed.exit_code,
        )
