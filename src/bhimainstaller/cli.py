import logging
import os

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_ASSET_SUFFIX,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_INSTALL_DIR,
    DEFAULT_PORT,
    DEFAULT_RELEASE_REPO,
)
from .core import BhimaInstaller, InstallerError
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_NAME = ".bhima-install.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option("--hostname", required=False, help="Public hostname BHIMA is served on (e.g. bhima.example.org).")
@click.option("--port", required=False, type=int, default=None, help="Port the BHIMA server listens on (default: 8080).")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_NAME} if present.",
)
@click.option("--install-dir", required=False, type=click.Path(), help="Install directory (default: /opt/bhima).")
@click.option(
    "--vpn-auth-key",
    required=False,
    envvar="TS_AUTH_KEY",
    help="Tailscale auth key, required with --enable-vpn. Read from TS_AUTH_KEY when unset.",
)
@click.option("--enable-vpn", is_flag=True, default=None, help="Install Tailscale and join the tailnet.")
@click.option("--enable-syncthing", is_flag=True, default=None, help="Install and expose Syncthing.")
@click.option(
    "--enable-hardening/--skip-hardening",
    default=None,
    help="Install unattended-upgrades and fail2ban (default: enabled).",
)
@click.option("--release-repo", required=False, help="GitHub repository publishing BHIMA releases.")
@click.option("--release-tag", required=False, help="Install this release tag instead of the latest release.")
@click.option("--asset-suffix", required=False, help="Suffix of the release asset to install (default: .tar.gz).")
@click.option("--credentials-file", required=False, type=click.Path(), help="MySQL credentials file (default: /root/.my.cnf).")
@click.option("--manifest-file", required=False, type=click.Path(), help="Path for the run manifest JSON.")
@click.option("--network-timeout", required=False, type=float, default=None, help="HTTP timeout in seconds.")
@click.option(
    "--retry-count",
    required=False,
    type=int,
    default=None,
    help="Number of retries for release metadata and download failures (default: 2).",
)
@click.option(
    "--retry-backoff-seconds",
    required=False,
    type=float,
    default=None,
    help="Base backoff in seconds between network retries; grows linearly per attempt.",
)
@click.option("--health-timeout", required=False, type=float, default=None, help="Timeout for each service status query.")
@click.option(
    "--strict-health-check",
    is_flag=True,
    default=None,
    help="Fail the run when a service is not running after installation.",
)
@click.option(
    "--allow-insecure-http",
    is_flag=True,
    default=None,
    help="Allow HTTP URLs (insecure). By default only HTTPS URLs are accepted.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    hostname,
    port,
    config,
    install_dir,
    vpn_auth_key,
    enable_vpn,
    enable_syncthing,
    enable_hardening,
    release_repo,
    release_tag,
    asset_suffix,
    credentials_file,
    manifest_file,
    network_timeout,
    retry_count,
    retry_backoff_seconds,
    health_timeout,
    strict_health_check,
    allow_insecure_http,
    verbose,
    log_file,
):
    """Install and configure BHIMA on this host."""
    logger = logging.getLogger("bhimainstaller")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    hostname = _resolve_option(hostname, config_values, "hostname")
    port = _resolve_option(port, config_values, "port", default=DEFAULT_PORT)
    install_dir = _resolve_option(install_dir, config_values, "install_dir", default=DEFAULT_INSTALL_DIR)
    vpn_auth_key = _resolve_option(vpn_auth_key, config_values, "vpn_auth_key")
    enable_vpn = bool(_resolve_option(enable_vpn, config_values, "enable_vpn", default=False))
    enable_syncthing = bool(
        _resolve_option(enable_syncthing, config_values, "enable_syncthing", default=False)
    )
    enable_hardening = bool(
        _resolve_option(enable_hardening, config_values, "enable_hardening", default=True)
    )
    release_repo = _resolve_option(release_repo, config_values, "release_repo", default=DEFAULT_RELEASE_REPO)
    release_tag = _resolve_option(release_tag, config_values, "release_tag")
    asset_suffix = _resolve_option(asset_suffix, config_values, "asset_suffix", default=DEFAULT_ASSET_SUFFIX)
    credentials_file = _resolve_option(
        credentials_file, config_values, "credentials_file", default=DEFAULT_CREDENTIALS_FILE
    )
    manifest_file = _resolve_option(manifest_file, config_values, "manifest_file")
    network_timeout = float(
        _resolve_option(network_timeout, config_values, "network_timeout", default=60.0)
    )
    retry_count = int(_resolve_option(retry_count, config_values, "retry_count", default=2))
    retry_backoff_seconds = float(
        _resolve_option(
            retry_backoff_seconds,
            config_values,
            "retry_backoff_seconds",
            default=2.0,
        )
    )
    health_timeout = float(_resolve_option(health_timeout, config_values, "health_timeout", default=5.0))
    strict_health_check = bool(
        _resolve_option(strict_health_check, config_values, "strict_health_check", default=False)
    )
    allow_insecure_http = bool(
        _resolve_option(allow_insecure_http, config_values, "allow_insecure_http", default=False)
    )
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if not hostname:
        raise click.ClickException("Missing required option '--hostname' (or provide it in config).")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        installer = BhimaInstaller(
            hostname=hostname,
            port=port,
            install_dir=install_dir,
            vpn_auth_key=vpn_auth_key,
            enable_vpn=enable_vpn,
            enable_syncthing=enable_syncthing,
            enable_hardening=enable_hardening,
            release_repo=release_repo,
            release_tag=release_tag,
            asset_suffix=asset_suffix,
            credentials_file=credentials_file,
            manifest_file=manifest_file,
            network_timeout=network_timeout,
            retry_count=retry_count,
            retry_backoff_seconds=retry_backoff_seconds,
            health_timeout=health_timeout,
            strict_health_check=strict_health_check,
            allow_insecure_http=allow_insecure_http,
        )
    except InstallerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(installer.run())


if __name__ == "__main__":
    main()
