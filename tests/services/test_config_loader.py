import pytest

from bhimainstaller.errors import ConfigurationError
from bhimainstaller.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text(
        "hostname: vanga.example.org\nport: 8081\nenable_vpn: true\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["hostname"] == "vanga.example.org"
    assert loaded["port"] == 8081
    assert loaded["enable_vpn"] is True


def test_config_loader_returns_empty_mapping_without_path():
    assert ConfigLoader().load(None) == {}


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping_root(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text("- hostname\n- port\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))


def test_config_loader_reports_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Config file not found"):
        ConfigLoader().load(str(tmp_path / "missing.yml"))


def test_config_loader_accepts_dashed_keys(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text("enable-syncthing: true\nretry-backoff-seconds: 0.5\n", encoding="utf-8")

    loaded = ConfigLoader().load(str(config_file))

    assert loaded == {"enable_syncthing": True, "retry_backoff_seconds": 0.5}


def test_config_loader_rejects_quoted_boolean(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text("enable_hardening: 'false'\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="enable_hardening"):
        ConfigLoader().load(str(config_file))


def test_config_loader_rejects_boolean_port(tmp_path):
    config_file = tmp_path / ".bhima-install.yml"
    config_file.write_text("port: true\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="must be int"):
        ConfigLoader().load(str(config_file))
