import logging
import os
import uuid
from typing import Dict, List, Optional

import requests
from rich.console import Console

from .constants import (
    DB_PASSWORD_BYTES,
    DEFAULT_ASSET_SUFFIX,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_INSTALL_DIR,
    DEFAULT_MANIFEST_FILE,
    DEFAULT_PORT,
    DEFAULT_RELEASE_REPO,
    HEALTH_SERVICES,
    SCRIPTS_BASE_URL,
    SESSION_SECRET_BYTES,
    TAR_ASSET_SUFFIXES,
)
from .errors import ConfigurationError, InstallerError
from .errors_catalog import actionable_error
from .models import HostPaths, PlatformInfo, ProvisioningContext, ServiceHealth, Step
from .services.archive import ArchiveService
from .services.command_runner import CommandRunner
from .services.download import DownloadService
from .services.env_file import EnvFileService
from .services.filesystem import FileSystemService
from .services.health import HealthChecker
from .services.manifest import ManifestService
from .services.platform import PlatformService
from .services.provisioning import ProvisioningSteps
from .services.release import ReleaseFetcher
from .services.secrets import SecretsGenerator
from .services.step_runner import StepRunner
from .services.templates import TemplateService
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("bhimainstaller")


class BhimaInstaller:
    def __init__(
        self,
        hostname: str,
        port: int = DEFAULT_PORT,
        install_dir: str = DEFAULT_INSTALL_DIR,
        vpn_auth_key: Optional[str] = None,
        enable_vpn: bool = False,
        enable_syncthing: bool = False,
        enable_hardening: bool = True,
        release_repo: str = DEFAULT_RELEASE_REPO,
        release_tag: Optional[str] = None,
        asset_suffix: str = DEFAULT_ASSET_SUFFIX,
        credentials_file: str = DEFAULT_CREDENTIALS_FILE,
        manifest_file: Optional[str] = None,
        network_timeout: float = 60.0,
        retry_count: int = 2,
        retry_backoff_seconds: float = 2.0,
        health_timeout: float = 5.0,
        strict_health_check: bool = False,
        allow_insecure_http: bool = False,
        scripts_base_url: str = SCRIPTS_BASE_URL,
        host_paths: Optional[HostPaths] = None,
        command_runner: Optional[CommandRunner] = None,
        platform_service: Optional[PlatformService] = None,
        requests_module=requests,
    ):
        self.validation_service = ValidationService(allow_insecure_http=allow_insecure_http)
        self.hostname = self.validation_service.validate_hostname(hostname)
        self.port = self.validation_service.validate_port(port)
        self.install_dir = os.path.abspath(install_dir)
        self.vpn_auth_key = vpn_auth_key or None
        self.enable_vpn = enable_vpn
        self.enable_syncthing = enable_syncthing
        self.enable_hardening = enable_hardening
        self.release_repo = release_repo
        self.release_tag = release_tag
        self.asset_suffix = asset_suffix or DEFAULT_ASSET_SUFFIX
        self.credentials_file = credentials_file
        self.manifest_file = manifest_file or DEFAULT_MANIFEST_FILE
        self.strict_health_check = strict_health_check
        self.scripts_base_url = scripts_base_url
        self.host_paths = host_paths or HostPaths()

        if self.enable_vpn and not self.vpn_auth_key:
            raise ConfigurationError(actionable_error("missing_vpn_key"))
        if not self.asset_suffix.lower().endswith(TAR_ASSET_SUFFIXES):
            raise ConfigurationError(
                f"Unsupported release asset suffix '{self.asset_suffix}'; "
                f"expected a tar archive ({', '.join(TAR_ASSET_SUFFIXES)})."
            )
        if retry_count < 0:
            raise ConfigurationError("--retry-count must be zero or greater.")

        self.run_id = uuid.uuid4().hex[:10]
        self.secrets_generator = SecretsGenerator()
        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.platform_service = platform_service or PlatformService(logger=logger)
        self.manifest_service = ManifestService(manifest_file=self.manifest_file, logger=logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.download_service = DownloadService(
            validation_service=self.validation_service,
            logger=logger,
            console=console,
            requests_module=requests_module,
            timeout=network_timeout,
            retry_count=retry_count,
            retry_backoff_seconds=retry_backoff_seconds,
        )
        self.release_fetcher = ReleaseFetcher(
            download_service=self.download_service,
            archive_service=ArchiveService(),
            logger=logger,
        )
        self.template_service = TemplateService(
            download_service=self.download_service,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.env_file_service = EnvFileService(logger=logger)
        self.health_checker = HealthChecker(
            command_runner=self.command_runner,
            logger=logger,
            timeout=health_timeout,
        )
        self.step_runner = StepRunner(logger=logger, console=console, manifest_service=self.manifest_service)

        self.context: Optional[ProvisioningContext] = None
        self.health: Dict[str, ServiceHealth] = {}

    def build_context(self, platform: PlatformInfo) -> ProvisioningContext:
        return ProvisioningContext(
            run_id=self.run_id,
            install_dir=self.install_dir,
            hostname=self.hostname,
            port=self.port,
            credentials_file=self.credentials_file,
            platform_family=platform.family,
            platform_codename=platform.codename,
            db_password=self.secrets_generator.generate(DB_PASSWORD_BYTES),
            session_secret=self.secrets_generator.generate(SESSION_SECRET_BYTES),
            vpn_auth_key=self.vpn_auth_key,
            enable_vpn=self.enable_vpn,
            enable_syncthing=self.enable_syncthing,
            enable_hardening=self.enable_hardening,
        )

    def build_steps(self, context: ProvisioningContext) -> List[Step]:
        return ProvisioningSteps(
            context=context,
            command_runner=self.command_runner,
            filesystem_service=self.filesystem_service,
            download_service=self.download_service,
            release_fetcher=self.release_fetcher,
            template_service=self.template_service,
            env_file_service=self.env_file_service,
            health_checker=self.health_checker,
            logger=logger,
            paths=self.host_paths,
            release_repo=self.release_repo,
            release_tag=self.release_tag,
            asset_suffix=self.asset_suffix,
            scripts_base_url=self.scripts_base_url,
        ).build()

    def _build_manifest_metadata(self) -> Dict[str, object]:
        return {
            "hostname": self.hostname,
            "port": self.port,
            "install_dir": self.install_dir,
            "release_repo": self.release_repo,
            "release_tag": self.release_tag,
            "enable_vpn": self.enable_vpn,
            "enable_syncthing": self.enable_syncthing,
            "enable_hardening": self.enable_hardening,
        }

    def check_services(self) -> Dict[str, ServiceHealth]:
        console.print("[blue]Performing final checks...[/blue]")
        health = self.health_checker.check_services(HEALTH_SERVICES)
        for role, result in health.items():
            self.manifest_service.set_health(role, result.name, result.running, result.diagnostic)
            if result.running:
                console.print(f"[green]✓ {result.name} service is running[/green]")
            else:
                console.print(f"[red]✗ {result.name} service is not running[/red]")
                if result.diagnostic:
                    console.print(result.diagnostic, markup=False, highlight=False)
                logger.warning("Service %s (%s) is not running.", result.name, role)
        return health

    def print_summary(self):
        console.print()
        console.print("[bold]Installation Summary:[/bold]")
        console.print("=====================")
        console.print(f"BHIMA installed at: {self.install_dir}")
        console.print(f"BHIMA hostname: {self.hostname}")
        console.print(f"BHIMA port: {self.port}")
        console.print(f"MySQL credentials saved in: {self.credentials_file}")
        console.print(f"Application secrets saved in: {os.path.join(self.install_dir, '.env')}")
        console.print()
        console.print(f"Access your BHIMA installation at: http://{self.hostname}")
        console.print()
        console.print(
            "[yellow]Important:[/yellow] the MySQL password is stored only in the files above. "
            "Keep a copy in a secure location."
        )

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        run_started = False

        try:
            logger.info("Starting BHIMA installation for %s...", self.hostname)
            self.platform_service.ensure_privileged()
            platform = self.platform_service.detect()

            self.manifest_service.start_run(run_id=self.run_id, metadata=self._build_manifest_metadata())
            run_started = True
            self.context = self.build_context(platform)

            report = self.step_runner.run(self.build_steps(self.context))
            report.raise_for_failure()

            self.manifest_service.add_artifact("credentials_file", self.credentials_file)
            self.manifest_service.add_artifact("env_file", os.path.join(self.install_dir, ".env"))

            self.health = self.check_services()
            self.print_summary()

            unhealthy = [result.name for result in self.health.values() if not result.running]
            if unhealthy and self.strict_health_check:
                raise InstallerError(actionable_error("unhealthy_services", services=", ".join(unhealthy)))

            console.print("[bold green]BHIMA installation complete![/bold green]")
            manifest_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Installation cancelled by user.[/bold red]")
            logger.info("Installation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Installation cancelled by user."
            return exit_code
        except InstallerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            manifest_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            manifest_error = str(exc)
            return exit_code
        finally:
            if run_started:
                self.manifest_service.finalize(manifest_status, error=manifest_error)
