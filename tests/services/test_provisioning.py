import os
import stat

import pytest
from rich.console import Console

from bhimainstaller.errors import ConfigurationError, InstallerError
from bhimainstaller.models import CommandResult, HostPaths, ProvisioningContext, StepStatus
from bhimainstaller.services.env_file import EnvFileService
from bhimainstaller.services.filesystem import FileSystemService
from bhimainstaller.services.provisioning import ProvisioningSteps
from bhimainstaller.services.templates import TemplateService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeCommandRunner:
    def __init__(self, fail_on=None, installed=()):
        self.fail_on = fail_on
        self.installed = set(installed)
        self.calls = []

    def run(self, cmd, cwd=None, env=None, timeout=None, input_text=None, redact=()):
        self.calls.append({"cmd": list(cmd), "cwd": cwd, "env": env, "input": input_text})
        if cmd[0] == "dpkg-query":
            if cmd[-1] in self.installed:
                return CommandResult(tuple(cmd), 0, stdout="install ok installed")
            return CommandResult(tuple(cmd), 1, stderr=f"no packages found matching {cmd[-1]}")
        if self.fail_on and self.fail_on(cmd):
            return CommandResult(tuple(cmd), 100, stderr="E: Unable to locate package")
        return CommandResult(tuple(cmd), 0, stdout="active\n")


class FakeDownloadService:
    def __init__(self):
        self.urls = []

    def fetch_text(self, url, description):
        self.urls.append(url)
        return "#!/bin/sh\necho BHIMA_HOST BHIMA_PORT BHIMA_INSTALL_DIR\n"

    def download_file(self, url, dest_path, description="Downloading..."):
        self.urls.append(url)
        with open(dest_path, "wb") as file_obj:
            file_obj.write(b"keyring")


class FakeHealthChecker:
    def is_active(self, _service_name):
        return True


def _context(tmp_path, **overrides):
    values = dict(
        run_id="abc123",
        install_dir=str(tmp_path / "opt" / "bhima"),
        hostname="example.org",
        port=8080,
        credentials_file=str(tmp_path / "root" / ".my.cnf"),
        platform_family="debian",
        platform_codename="bookworm",
        db_password="d" * 32,
        session_secret="s" * 128,
    )
    values.update(overrides)
    return ProvisioningContext(**values)


def _paths(tmp_path):
    return HostPaths(
        nginx_dir=str(tmp_path / "etc" / "nginx"),
        systemd_dir=str(tmp_path / "etc" / "systemd" / "system"),
        apt_sources_dir=str(tmp_path / "etc" / "apt" / "sources.list.d"),
        apt_conf_dir=str(tmp_path / "etc" / "apt" / "apt.conf.d"),
        keyrings_dir=str(tmp_path / "usr" / "share" / "keyrings"),
        apt_keyrings_dir=str(tmp_path / "etc" / "apt" / "keyrings"),
        home_dir=str(tmp_path / "root"),
    )


def _steps(tmp_path, runner=None, context=None, release_fetcher=None, download=None, **kwargs):
    logger = DummyLogger()
    filesystem = FileSystemService(logger=logger, console=Console(record=True))
    download = download or FakeDownloadService()
    return ProvisioningSteps(
        context=context or _context(tmp_path),
        command_runner=runner or FakeCommandRunner(),
        filesystem_service=filesystem,
        download_service=download,
        release_fetcher=release_fetcher,
        template_service=TemplateService(download, filesystem, logger),
        env_file_service=EnvFileService(logger),
        health_checker=FakeHealthChecker(),
        logger=logger,
        paths=_paths(tmp_path),
        **kwargs,
    )


def test_build_returns_recipe_in_install_order(tmp_path):
    names = [step.name for step in _steps(tmp_path).build()]

    assert names == [
        "install_dependencies",
        "install_nodejs",
        "install_redis",
        "install_database",
        "write_database_credentials",
        "install_proxy",
        "configure_proxy",
        "install_app",
        "configure_app",
        "install_app_service",
        "install_syncthing",
        "install_vpn",
        "harden_server",
    ]


def test_optional_steps_follow_configuration(tmp_path):
    steps = {
        step.name: step
        for step in _steps(tmp_path, context=_context(tmp_path, enable_vpn=True, enable_hardening=False)).build()
    }

    assert steps["install_vpn"].enabled() is True
    assert steps["install_syncthing"].enabled() is False
    assert steps["harden_server"].enabled() is False


def test_package_steps_are_satisfied_when_installed(tmp_path):
    runner = FakeCommandRunner(installed={"mysql-server"})
    steps = {step.name: step for step in _steps(tmp_path, runner=runner).build()}

    assert steps["install_database"].is_satisfied() is True
    assert steps["install_redis"].is_satisfied() is False


def test_install_dependencies_reports_failing_command(tmp_path):
    runner = FakeCommandRunner(fail_on=lambda cmd: cmd[:2] == ["apt-get", "upgrade"])

    result = _steps(tmp_path, runner=runner).install_dependencies()

    assert result.status == StepStatus.FAILED
    assert result.exit_code == 100
    assert "apt-get upgrade -y" in result.error
    assert "Unable to locate package" in result.error
    assert [call["cmd"][:2] for call in runner.calls] == [["apt-get", "update"], ["apt-get", "upgrade"]]
    assert runner.calls[0]["env"] == {"DEBIAN_FRONTEND": "noninteractive"}


def test_install_database_configures_repository_for_platform(tmp_path):
    steps = _steps(tmp_path, context=_context(tmp_path, platform_family="ubuntu", platform_codename="noble"))

    result = steps.install_database()

    assert result.ok
    source = (tmp_path / "etc" / "apt" / "sources.list.d" / "mysql.list").read_text(encoding="utf-8")
    assert "http://repo.mysql.com/apt/ubuntu/ noble mysql-8.4-lts" in source
    assert "signed-by=" in source


def test_write_database_credentials_is_owner_only(tmp_path):
    context = _context(tmp_path)

    result = _steps(tmp_path, context=context).write_database_credentials()

    assert result.ok
    content = (tmp_path / "root" / ".my.cnf").read_text(encoding="utf-8")
    assert "[mysql]" in content and "[mysqldump]" in content
    assert content.count(f"password={context.db_password}") == 2
    assert stat.S_IMODE(os.stat(context.credentials_file).st_mode) == 0o600


def test_configure_proxy_renders_site_and_enables_it(tmp_path):
    nginx_dir = tmp_path / "etc" / "nginx"
    (nginx_dir / "sites-enabled").mkdir(parents=True)
    (nginx_dir / "sites-enabled" / "default").write_text("default site", encoding="utf-8")
    runner = FakeCommandRunner()

    result = _steps(tmp_path, runner=runner).configure_proxy()

    assert result.ok
    site = (nginx_dir / "sites-available" / "bhima").read_text(encoding="utf-8")
    assert "example.org 8080" in site
    assert os.readlink(nginx_dir / "sites-enabled" / "bhima") == str(nginx_dir / "sites-available" / "bhima")
    assert not (nginx_dir / "sites-enabled" / "default").exists()
    assert ["systemctl", "restart", "nginx"] in [call["cmd"] for call in runner.calls]


def test_configure_app_writes_env_and_installs_node_modules(tmp_path):
    context = _context(tmp_path)
    os.makedirs(context.install_dir)
    env_path = os.path.join(context.install_dir, ".env")
    with open(env_path, "w", encoding="utf-8") as file_obj:
        file_obj.write("PORT=3000\nDB_HOST=127.0.0.1\n")
    runner = FakeCommandRunner()

    result = _steps(tmp_path, runner=runner, context=context).configure_app()

    assert result.ok
    with open(env_path, encoding="utf-8") as file_obj:
        lines = file_obj.read().splitlines()
    assert lines.count("PORT=8080") == 1
    assert not any(line == "PORT=3000" for line in lines)
    assert f"DB_PASS={context.db_password}" in lines
    assert f"SESS_SECRET={context.session_secret}" in lines
    assert "NODE_ENV=production" in lines
    npm_call = runner.calls[-1]
    assert npm_call["cmd"] == ["npm", "ci"]
    assert npm_call["cwd"] == context.install_dir
    assert npm_call["env"] == {"NODE_ENV": "production"}


def test_install_app_service_templates_unit_file(tmp_path):
    result = _steps(tmp_path).install_app_service()

    assert result.ok
    unit = (tmp_path / "etc" / "systemd" / "system" / "bhima.service").read_text(encoding="utf-8")
    assert str(tmp_path / "opt" / "bhima") in unit


def test_install_vpn_requires_auth_key(tmp_path):
    steps = _steps(tmp_path, context=_context(tmp_path, enable_vpn=True))

    with pytest.raises(ConfigurationError, match="auth key"):
        steps.install_vpn()


def test_install_vpn_never_puts_key_on_command_line(tmp_path):
    runner = FakeCommandRunner()
    context = _context(tmp_path, enable_vpn=True, vpn_auth_key="tskey-auth-123")

    result = _steps(tmp_path, runner=runner, context=context).install_vpn()

    assert result.ok
    up_call = runner.calls[-1]
    assert up_call["cmd"][:2] == ["tailscale", "up"]
    assert up_call["cmd"][2].startswith("--auth-key=file:")
    assert all("tskey-auth-123" not in " ".join(call["cmd"]) for call in runner.calls)
    assert not os.path.exists(up_call["cmd"][2][len("--auth-key=file:"):])


def test_harden_server_writes_auto_upgrades(tmp_path):
    result = _steps(tmp_path).harden_server()

    assert result.ok
    conf = (tmp_path / "etc" / "apt" / "apt.conf.d" / "20auto-upgrades").read_text(encoding="utf-8")
    assert 'APT::Periodic::Unattended-Upgrade "1";' in conf


class FakeReleaseFetcher:
    def __init__(self, files):
        self.files = files
        self.calls = []

    def install_release(self, repo, destination_dir, asset_pattern=".tar.gz", tag=None):
        self.calls.append((repo, destination_dir, asset_pattern, tag))
        for relative_path, content in self.files.items():
            path = os.path.join(destination_dir, relative_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as file_obj:
                file_obj.write(content)
        return f"https://github.com/{repo}/releases/download/v1.2.3/bhima.tar.gz"


def test_install_nodejs_pipes_setup_script_then_installs_package(tmp_path):
    runner = FakeCommandRunner()

    result = _steps(tmp_path, runner=runner).install_nodejs()

    assert result.ok
    assert runner.calls[0]["cmd"] == ["bash", "-s"]
    assert runner.calls[0]["input"].startswith("#!/bin/sh")
    assert runner.calls[1]["cmd"] == ["apt-get", "install", "-y", "nodejs"]


def test_install_nodejs_stops_when_setup_script_fails(tmp_path):
    runner = FakeCommandRunner(fail_on=lambda cmd: cmd == ["bash", "-s"])

    result = _steps(tmp_path, runner=runner).install_nodejs()

    assert result.status == StepStatus.FAILED
    assert len(runner.calls) == 1


def test_install_redis_dearmors_key_and_adds_signed_source(tmp_path):
    runner = FakeCommandRunner()
    context = _context(tmp_path, platform_family="ubuntu", platform_codename="jammy")
    steps = _steps(tmp_path, runner=runner, context=context)

    result = steps.install_redis()

    assert result.ok
    keyring = str(tmp_path / "usr" / "share" / "keyrings" / "redis-archive-keyring.gpg")
    assert runner.calls[0]["cmd"] == ["gpg", "--batch", "--yes", "--dearmor", "-o", keyring]
    assert runner.calls[0]["input"]
    source = (tmp_path / "etc" / "apt" / "sources.list.d" / "redis.list").read_text(encoding="utf-8")
    assert source.strip() == f"deb [signed-by={keyring}] https://packages.redis.io/deb jammy main"
    assert runner.calls[-1]["cmd"] == ["apt-get", "install", "-y", "redis"]


def test_install_app_copies_release_bin_into_install_dir(tmp_path):
    fetcher = FakeReleaseFetcher({"bin/.env": "PORT=3000\n", "bin/server/app.js": "// app\n"})
    steps = _steps(tmp_path, release_fetcher=fetcher, release_tag="v1.2.3")

    result = steps.install_app()

    install_dir = tmp_path / "opt" / "bhima"
    assert result.ok
    assert (install_dir / ".env").read_text(encoding="utf-8") == "PORT=3000\n"
    assert (install_dir / "server" / "app.js").exists()
    assert fetcher.calls == [("Third-Culture-Software/bhima", str(install_dir), ".tar.gz", "v1.2.3")]


def test_install_app_requires_bin_directory_in_release(tmp_path):
    fetcher = FakeReleaseFetcher({"README.md": "no bin here\n"})

    with pytest.raises(InstallerError, match="Expected directory not found"):
        _steps(tmp_path, release_fetcher=fetcher).install_app()


def _syncthing_config(tmp_path):
    return tmp_path / "root" / ".config" / "syncthing" / "config.xml"


def test_install_syncthing_exposes_gui_and_keeps_config_mode(tmp_path):
    config = _syncthing_config(tmp_path)
    config.parent.mkdir(parents=True)
    config.write_text("<gui><address>127.0.0.1:8384</address></gui>\n", encoding="utf-8")
    os.chmod(config, 0o644)
    runner = FakeCommandRunner()

    result = _steps(tmp_path, runner=runner, syncthing_config_wait_seconds=0).install_syncthing()

    assert result.ok
    assert config.read_text(encoding="utf-8") == "<gui><address>0.0.0.0:8384</address></gui>\n"
    assert stat.S_IMODE(os.stat(config).st_mode) == 0o644
    source = (tmp_path / "etc" / "apt" / "sources.list.d" / "syncthing.list").read_text(encoding="utf-8")
    keyring = tmp_path / "etc" / "apt" / "keyrings" / "syncthing-archive-keyring.gpg"
    assert f"signed-by={keyring}" in source
    assert keyring.exists()
    assert ["systemctl", "--user", "start", "syncthing.service"] in [call["cmd"] for call in runner.calls]


def test_install_syncthing_fails_when_config_never_appears(tmp_path):
    result = _steps(tmp_path, syncthing_config_wait_seconds=0).install_syncthing()

    assert result.status == StepStatus.FAILED
    assert "config.xml" in result.error
