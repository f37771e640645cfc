"""YAML configuration for installer defaults."""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from bhimainstaller.errors import ConfigurationError

_STR = (str,)
_INT = (int,)
_NUMBER = (int, float)
_BOOL = (bool,)


class ConfigLoader:
    """Reads a YAML mapping of option names to values.

    Keys mirror the long CLI options with dashes replaced by underscores.
    Values are type-checked here so a quoted ``"false"`` cannot silently
    turn into an enabled flag.
    """

    KEY_TYPES: Dict[str, Tuple[type, ...]] = {
        "hostname": _STR,
        "port": _INT,
        "install_dir": _STR,
        "vpn_auth_key": _STR,
        "enable_vpn": _BOOL,
        "enable_syncthing": _BOOL,
        "enable_hardening": _BOOL,
        "release_repo": _STR,
        "release_tag": _STR,
        "asset_suffix": _STR,
        "credentials_file": _STR,
        "manifest_file": _STR,
        "network_timeout": _NUMBER,
        "retry_count": _INT,
        "retry_backoff_seconds": _NUMBER,
        "health_timeout": _NUMBER,
        "strict_health_check": _BOOL,
        "allow_insecure_http": _BOOL,
        "verbose": _BOOL,
        "log_file": _STR,
    }
    SUPPORTED_KEYS = frozenset(KEY_TYPES)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationError("Config file must contain a YAML mapping at the root.")

        config = {str(key).replace("-", "_"): value for key, value in parsed.items()}
        unknown = sorted(set(config) - self.SUPPORTED_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        for key, value in config.items():
            self._check_type(key, value)
        return config

    def _check_type(self, key: str, value: Any):
        if value is None:
            return
        expected = self.KEY_TYPES[key]
        # bool is an int subclass
        if isinstance(value, bool) and bool not in expected:
            valid = False
        else:
            valid = isinstance(value, expected)
        if not valid:
            names = " or ".join(kind.__name__ for kind in expected)
            raise ConfigurationError(
                f"Configuration key '{key}' must be {names}, got {type(value).__name__}: {value!r}"
            )
