"""The BHIMA provisioning recipe: the ordered list of host steps."""

import os
import tempfile
import time
from typing import Dict, List, Optional, Sequence

from bhimainstaller.constants import (
    APP_SERVICE,
    DB_NAME,
    DB_USER,
    DEFAULT_ASSET_SUFFIX,
    DEFAULT_RELEASE_REPO,
    DIR_MODE,
    FILE_MODE,
    NODESOURCE_SETUP_URL,
    PROXY_SERVICE,
    REDIS_GPG_URL,
    SCRIPTS_BASE_URL,
    SECRET_FILE_MODE,
    SYNCTHING_GPG_URL,
    TAILSCALE_INSTALL_URL,
)
from bhimainstaller.errors import ConfigurationError, InstallerError
from bhimainstaller.errors_catalog import actionable_error
from bhimainstaller.models import CommandResult, HostPaths, ProvisioningContext, Step, StepResult

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
BASE_PACKAGES = [
    "wget",
    "lsb-release",
    "ca-certificates",
    "curl",
    "gnupg",
    "software-properties-common",
    "apt-transport-https",
    "tar",
    "screen",
]
MYSQL_KEY_ID = "A8D3785C"
MYSQL_KEYSERVER = "keyserver.ubuntu.com"
MYSQL_SERIES = "mysql-8.4-lts"

AUTO_UPGRADES_CONF = """APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::AutocleanInterval "7";
"""


class ProvisioningSteps:
    """Builds the ordered step list for one installation run.

    Every step reads its inputs from the shared ``ProvisioningContext``; none
    of them generate or store their own copy of a secret.
    """

    def __init__(
        self,
        context: ProvisioningContext,
        command_runner,
        filesystem_service,
        download_service,
        release_fetcher,
        template_service,
        env_file_service,
        health_checker,
        logger,
        paths: Optional[HostPaths] = None,
        release_repo: str = DEFAULT_RELEASE_REPO,
        release_tag: Optional[str] = None,
        asset_suffix: str = DEFAULT_ASSET_SUFFIX,
        scripts_base_url: str = SCRIPTS_BASE_URL,
        syncthing_config_wait_seconds: float = 10.0,
    ):
        self.context = context
        self.command_runner = command_runner
        self.filesystem_service = filesystem_service
        self.download_service = download_service
        self.release_fetcher = release_fetcher
        self.template_service = template_service
        self.env_file_service = env_file_service
        self.health_checker = health_checker
        self.logger = logger
        self.paths = paths or HostPaths()
        self.release_repo = release_repo
        self.release_tag = release_tag
        self.asset_suffix = asset_suffix
        self.scripts_base_url = scripts_base_url.rstrip("/")
        self.syncthing_config_wait_seconds = syncthing_config_wait_seconds

    def build(self) -> List[Step]:
        ctx = self.context
        return [
            Step(
                "install_dependencies",
                self.install_dependencies,
                description="OS dependencies updated",
            ),
            Step(
                "install_nodejs",
                self.install_nodejs,
                is_satisfied=lambda: self.package_installed("nodejs"),
                description="Node.js LTS installed",
            ),
            Step(
                "install_redis",
                self.install_redis,
                is_satisfied=lambda: self.package_installed("redis"),
                description="redis installed",
            ),
            Step(
                "install_database",
                self.install_database,
                is_satisfied=lambda: self.package_installed("mysql-server"),
                description="mysql server installed",
            ),
            Step(
                "write_database_credentials",
                self.write_database_credentials,
                verify=lambda: self.filesystem_service.file_mode(ctx.credentials_file) == SECRET_FILE_MODE,
                description="mysql credentials written",
            ),
            Step(
                "install_proxy",
                self.install_proxy,
                is_satisfied=lambda: self.package_installed("nginx")
                and os.path.isdir(self.nginx_path("includes")),
                description="nginx installed",
            ),
            Step(
                "configure_proxy",
                self.configure_proxy,
                verify=lambda: self.health_checker.is_active(PROXY_SERVICE),
                description="nginx configured",
            ),
            Step(
                "install_app",
                self.install_app,
                description="BHIMA release downloaded and extracted",
            ),
            Step(
                "configure_app",
                self.configure_app,
                description="BHIMA configured",
            ),
            Step(
                "install_app_service",
                self.install_app_service,
                verify=lambda: self.health_checker.is_active(APP_SERVICE),
                description="BHIMA service started",
            ),
            Step(
                "install_syncthing",
                self.install_syncthing,
                enabled=lambda: ctx.enable_syncthing,
                description="syncthing installed and configured",
            ),
            Step(
                "install_vpn",
                self.install_vpn,
                is_satisfied=self.vpn_connected,
                enabled=lambda: ctx.enable_vpn,
                description="Tailscale installed",
            ),
            Step(
                "harden_server",
                self.harden_server,
                enabled=lambda: ctx.enable_hardening,
                description="server hardened",
            ),
        ]

    # helpers

    def nginx_path(self, *parts: str) -> str:
        return os.path.join(self.paths.nginx_dir, *parts)

    def script_url(self, relative_path: str) -> str:
        return f"{self.scripts_base_url}/{relative_path}"

    def package_installed(self, package: str) -> bool:
        result = self.command_runner.run(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and "install ok installed" in result.stdout

    def _run_commands(
        self,
        step_name: str,
        commands: Sequence[List[str]],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> StepResult:
        for cmd in commands:
            result = self.command_runner.run(cmd, env=env, cwd=cwd)
            if not result.ok:
                return self._command_failure(step_name, result)
        return StepResult.success(step_name)

    @staticmethod
    def _command_failure(step_name: str, result: CommandResult) -> StepResult:
        output = (result.stderr or result.stdout).strip().splitlines()
        tail = "\n".join(output[-20:])
        message = f"`{' '.join(result.command)}` exited with {result.exit_code}"
        if tail:
            message = f"{message}\n{tail}"
        return StepResult.failure(step_name, message, exit_code=result.exit_code)

    def _apt_source(self, file_name: str, line: str):
        self.filesystem_service.write_file(
            os.path.join(self.paths.apt_sources_dir, file_name),
            line + "\n",
            mode=FILE_MODE,
        )

    def _dearmor_key(self, step_name: str, key_url: str, keyring_path: str) -> StepResult:
        armored = self.download_service.fetch_text(key_url, f"Signing key {key_url}")
        self.filesystem_service.ensure_dir(os.path.dirname(keyring_path))
        self.filesystem_service.remove_file(keyring_path)
        result = self.command_runner.run(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", keyring_path],
            input_text=armored,
        )
        if not result.ok:
            return self._command_failure(step_name, result)
        self.filesystem_service.set_permissions(keyring_path, FILE_MODE)
        return StepResult.success(step_name)

    def _run_remote_script(self, step_name: str, url: str, interpreter: str) -> StepResult:
        script = self.download_service.fetch_text(url, f"Install script {url}")
        result = self.command_runner.run([interpreter, "-s"], input_text=script)
        if not result.ok:
            return self._command_failure(step_name, result)
        return StepResult.success(step_name)

    # steps

    def install_dependencies(self) -> StepResult:
        return self._run_commands(
            "install_dependencies",
            [
                ["apt-get", "update"],
                ["apt-get", "upgrade", "-y"],
                ["apt-get", "install", "-y"] + BASE_PACKAGES,
            ],
            env=APT_ENV,
        )

    def install_nodejs(self) -> StepResult:
        result = self._run_remote_script("install_nodejs", NODESOURCE_SETUP_URL, "bash")
        if not result.ok:
            return result
        return self._run_commands("install_nodejs", [["apt-get", "install", "-y", "nodejs"]], env=APT_ENV)

    def install_redis(self) -> StepResult:
        keyring = os.path.join(self.paths.keyrings_dir, "redis-archive-keyring.gpg")
        result = self._dearmor_key("install_redis", REDIS_GPG_URL, keyring)
        if not result.ok:
            return result

        self._apt_source(
            "redis.list",
            f"deb [signed-by={keyring}] https://packages.redis.io/deb {self.context.platform_codename} main",
        )
        return self._run_commands(
            "install_redis",
            [["apt-get", "update"], ["apt-get", "install", "-y", "redis"]],
            env=APT_ENV,
        )

    def install_database(self) -> StepResult:
        ctx = self.context
        keyring = os.path.join(self.paths.keyrings_dir, "mysql-archive-keyring.gpg")
        self.filesystem_service.ensure_dir(self.paths.keyrings_dir)

        result = self._run_commands(
            "install_database",
            [
                ["gpg", "--batch", "--keyserver", MYSQL_KEYSERVER, "--recv-keys", MYSQL_KEY_ID],
                ["gpg", "--batch", "--yes", "--output", keyring, "--export", MYSQL_KEY_ID],
            ],
        )
        if not result.ok:
            return result

        self._apt_source(
            "mysql.list",
            f"deb [signed-by={keyring}] http://repo.mysql.com/apt/{ctx.platform_family}/ "
            f"{ctx.platform_codename} {MYSQL_SERIES}",
        )
        self.logger.info("Configured mysql apt repository for %s %s.", ctx.platform_family, ctx.platform_codename)

        return self._run_commands(
            "install_database",
            [["apt-get", "update", "-y"], ["apt-get", "install", "-y", "mysql-server"]],
            env=APT_ENV,
        )

    def write_database_credentials(self) -> StepResult:
        password = self.context.db_password
        sections = []
        for section in ("mysql", "mysqldump"):
            sections.append(
                f"[{section}]\nuser={DB_USER}\npassword={password}\nhost=127.0.0.1\n"
            )
        self.filesystem_service.write_file(
            self.context.credentials_file,
            "\n".join(sections),
            mode=SECRET_FILE_MODE,
        )
        return StepResult.success("write_database_credentials")

    def install_proxy(self) -> StepResult:
        result = self._run_commands("install_proxy", [["apt-get", "install", "-y", "nginx"]], env=APT_ENV)
        if result.ok:
            self.filesystem_service.ensure_dir(self.nginx_path("includes"), mode=DIR_MODE)
        return result

    def configure_proxy(self) -> StepResult:
        ctx = self.context
        gzip_conf = self.download_service.fetch_text(self.script_url("nginx/gzip.conf"), "nginx gzip.conf")
        self.filesystem_service.write_file(self.nginx_path("includes", "gzip.conf"), gzip_conf, mode=FILE_MODE)

        site_path = self.nginx_path("sites-available", "bhima")
        self.template_service.render_remote(
            self.script_url("nginx/bhima.site"),
            site_path,
            {"BHIMA_HOST": ctx.hostname, "BHIMA_PORT": str(ctx.port)},
        )
        self.filesystem_service.ensure_dir(self.nginx_path("sites-enabled"))
        self.filesystem_service.ensure_symlink(site_path, self.nginx_path("sites-enabled", "bhima"))
        self.filesystem_service.remove_file(self.nginx_path("sites-enabled", "default"))

        return self._run_commands(
            "configure_proxy",
            [
                ["nginx", "-t"],
                ["systemctl", "enable", PROXY_SERVICE],
                ["systemctl", "restart", PROXY_SERVICE],
            ],
        )

    def install_app(self) -> StepResult:
        install_dir = self.context.install_dir
        self.filesystem_service.ensure_dir(install_dir, mode=DIR_MODE)
        url = self.release_fetcher.install_release(
            self.release_repo,
            install_dir,
            asset_pattern=self.asset_suffix,
            tag=self.release_tag,
        )
        self.logger.info("Installed release asset %s", url)
        self.filesystem_service.copy_tree_contents(os.path.join(install_dir, "bin"), install_dir)
        return StepResult.success("install_app")

    def configure_app(self) -> StepResult:
        ctx = self.context
        self.env_file_service.update(
            os.path.join(ctx.install_dir, ".env"),
            {
                "DB_NAME": DB_NAME,
                "DB_PASS": ctx.db_password,
                "DB_USER": DB_USER,
                "NODE_ENV": "production",
                "PORT": str(ctx.port),
                "SESS_SECRET": ctx.session_secret,
            },
        )
        self.logger.info("Updated %s", os.path.join(ctx.install_dir, ".env"))
        return self._run_commands(
            "configure_app",
            [["npm", "ci"]],
            env={"NODE_ENV": "production"},
            cwd=ctx.install_dir,
        )

    def install_app_service(self) -> StepResult:
        self.template_service.render_remote(
            self.script_url("systemd/bhima.service"),
            os.path.join(self.paths.systemd_dir, f"{APP_SERVICE}.service"),
            {"BHIMA_INSTALL_DIR": self.context.install_dir},
        )
        return self._run_commands(
            "install_app_service",
            [
                ["systemctl", "daemon-reload"],
                ["systemctl", "enable", APP_SERVICE],
                ["systemctl", "restart", APP_SERVICE],
            ],
        )

    def install_syncthing(self) -> StepResult:
        keyring = os.path.join(self.paths.apt_keyrings_dir, "syncthing-archive-keyring.gpg")
        self.filesystem_service.ensure_dir(self.paths.apt_keyrings_dir)
        self.download_service.download_file(SYNCTHING_GPG_URL, keyring, "Downloading syncthing key...")
        self._apt_source(
            "syncthing.list",
            f"deb [signed-by={keyring}] https://apt.syncthing.net/ syncthing stable",
        )
        result = self._run_commands(
            "install_syncthing",
            [
                ["apt-get", "update"],
                ["apt-get", "install", "-y", "syncthing"],
                ["systemctl", "--user", "enable", "syncthing.service"],
                ["systemctl", "--user", "start", "syncthing.service"],
            ],
            env=APT_ENV,
        )
        if not result.ok:
            return result

        config_path = os.path.join(self.paths.home_dir, ".config", "syncthing", "config.xml")
        deadline = time.monotonic() + self.syncthing_config_wait_seconds
        while not os.path.exists(config_path):
            if time.monotonic() >= deadline:
                return StepResult.failure(
                    "install_syncthing", f"syncthing did not generate {config_path}"
                )
            time.sleep(0.5)

        config = self.filesystem_service.read_text(config_path)
        self.filesystem_service.write_file(
            config_path,
            config.replace("127.0.0.1", "0.0.0.0"),
            mode=self.filesystem_service.file_mode(config_path),
        )
        return StepResult.success("install_syncthing")

    def vpn_connected(self) -> bool:
        return self.command_runner.run(["tailscale", "status"], timeout=10).ok

    def install_vpn(self) -> StepResult:
        auth_key = self.context.vpn_auth_key
        if not auth_key:
            raise ConfigurationError(actionable_error("missing_vpn_key"))

        result = self._run_remote_script("install_vpn", TAILSCALE_INSTALL_URL, "sh")
        if not result.ok:
            return result

        try:
            fd, key_path = tempfile.mkstemp(prefix="tailscale-key-")
        except OSError as exc:
            raise InstallerError(f"Could not stage the Tailscale auth key: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(auth_key)
            os.chmod(key_path, SECRET_FILE_MODE)
            up = self.command_runner.run(
                ["tailscale", "up", f"--auth-key=file:{key_path}"],
                redact=[auth_key],
            )
        finally:
            os.remove(key_path)

        if not up.ok:
            return self._command_failure("install_vpn", up)
        return StepResult.success("install_vpn")

    def harden_server(self) -> StepResult:
        result = self._run_commands(
            "harden_server",
            [["apt-get", "install", "-y", "unattended-upgrades", "fail2ban"]],
            env=APT_ENV,
        )
        if not result.ok:
            return result

        self.filesystem_service.write_file(
            os.path.join(self.paths.apt_conf_dir, "20auto-upgrades"),
            AUTO_UPGRADES_CONF,
            mode=FILE_MODE,
        )
        return result
