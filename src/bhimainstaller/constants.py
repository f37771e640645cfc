"""Shared constants for the BHIMA installer."""

DIR_MODE = 0o755
FILE_MODE = 0o644
SECRET_FILE_MODE = 0o600

DEFAULT_INSTALL_DIR = "/opt/bhima"
DEFAULT_PORT = 8080
DEFAULT_RELEASE_REPO = "Third-Culture-Software/bhima"
DEFAULT_ASSET_SUFFIX = ".tar.gz"
TAR_ASSET_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")
DEFAULT_CREDENTIALS_FILE = "/root/.my.cnf"
DEFAULT_MANIFEST_FILE = "/var/log/bhima-install/run-manifest.json"

GITHUB_API_URL = "https://api.github.com"
SCRIPTS_BASE_URL = (
    "https://raw.githubusercontent.com/Third-Culture-Software/bhima-scripts/refs/heads/main/install"
)
NODESOURCE_SETUP_URL = "https://deb.nodesource.com/setup_lts.x"
REDIS_GPG_URL = "https://packages.redis.io/gpg"
SYNCTHING_GPG_URL = "https://syncthing.net/release-key.gpg"
TAILSCALE_INSTALL_URL = "https://tailscale.com/install.sh"

DB_PASSWORD_BYTES = 16
SESSION_SECRET_BYTES = 64
DB_NAME = "bhima"
DB_USER = "root"

SUPPORTED_PLATFORMS = ("ubuntu", "debian")

APP_SERVICE = "bhima"
PROXY_SERVICE = "nginx"
DATABASE_SERVICE = "mysql"
HEALTH_SERVICES = {
    "app": APP_SERVICE,
    "proxy": PROXY_SERVICE,
    "database": DATABASE_SERVICE,
}
