# tests/unit/config/test_loader_unit.py

import pathlib

import pytest

from metals_client.config import loader
from metals_client.config.loader import (
    DEFAULT_SERVER_VERSION,
    MetalsSettings,
    changed_launch_keys,
    get_metals_settings,
    load_configuration,
)

# --- Fixtures ---


@pytest.fixture(autouse=True)
def no_dotenv(mocker):
    """Keeps a developer's .env file out of the tests."""
    return mocker.patch("metals_client.config.loader.load_dotenv", return_value=False)


@pytest.fixture
def clean_env(monkeypatch):
    for env_var, _, _ in loader.ENV_OVERRIDES:
        monkeypatch.delenv(env_var, raising=False)
    return monkeypatch


@pytest.fixture
def config_file(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "config.yml"
    path.write_text(
        "metals:\n"
        "  java_home: /opt/jdk\n"
        "  server_version: 0.8.4\n"
        "  server_properties:\n"
        "    - -Dmetals.verbose=true\n"
        "    - -agentlib:jdwp=transport=dt_socket\n"
        "  custom_repositories: [central, 'https://repo.example.com']\n",
        encoding="utf-8",
    )
    return path


# --- load_configuration ---


def test_load_configuration_reads_yaml(config_file, clean_env):
    config = load_configuration(config_path=config_file)
    assert config["metals"]["java_home"] == "/opt/jdk"
    assert config["metals"]["custom_repositories"] == ["central", "https://repo.example.com"]


def test_load_configuration_missing_file_returns_empty(tmp_path, clean_env):
    assert load_configuration(config_path=tmp_path / "absent.yml") == {}


def test_load_configuration_invalid_yaml_returns_empty(tmp_path, clean_env):
    path = tmp_path / "config.yml"
    path.write_text("metals: [unclosed", encoding="utf-8")
    assert load_configuration(config_path=path) == {}


def test_env_overrides_apply_with_types(config_file, clean_env):
    clean_env.setenv("METALS_SERVER_VERSION", "0.9.1")
    clean_env.setenv("METALS_REQUEST_TIMEOUT", "45")
    config = load_configuration(config_path=config_file)
    assert config["metals"]["server_version"] == "0.9.1"
    assert config["metals"]["request_timeout"] == 45


def test_env_override_with_bad_type_is_skipped(config_file, clean_env):
    clean_env.setenv("METALS_REQUEST_TIMEOUT", "soon")
    config = load_configuration(config_path=config_file)
    assert "request_timeout" not in config["metals"]


def test_env_override_creates_missing_sections(tmp_path, clean_env):
    clean_env.setenv("METALS_JAVA_HOME", "/usr/lib/jvm/java-11")
    config = load_configuration(config_path=tmp_path / "absent.yml")
    assert config == {"metals": {"java_home": "/usr/lib/jvm/java-11"}}


# --- get_metals_settings ---


def test_settings_defaults_for_empty_config():
    settings = get_metals_settings({})
    assert settings == MetalsSettings()
    assert settings.effective_server_version == DEFAULT_SERVER_VERSION
    assert settings.uses_default_version


def test_settings_from_config(config_file, clean_env):
    settings = get_metals_settings(load_configuration(config_path=config_file))
    assert settings.java_home == "/opt/jdk"
    assert settings.server_properties == (
        "-Dmetals.verbose=true",
        "-agentlib:jdwp=transport=dt_socket",
    )
    assert settings.custom_repositories == ("central", "https://repo.example.com")
    assert settings.effective_server_version == "0.8.4"
    assert not settings.uses_default_version


def test_settings_ignore_non_list_properties():
    settings = get_metals_settings({"metals": {"server_properties": {"a": 1}}})
    assert settings.server_properties == ()


def test_settings_bad_timeout_falls_back():
    settings = get_metals_settings({"metals": {"request_timeout": "never"}})
    assert settings.request_timeout == loader.DEFAULT_REQUEST_TIMEOUT


def test_changed_launch_keys():
    old = MetalsSettings(java_home="/a", server_properties=("-Dx=1",))
    new = MetalsSettings(java_home="/b", server_properties=("-Dx=1",), request_timeout=99)
    assert changed_launch_keys(old, new) == ["java_home"]
    assert changed_launch_keys(old, old) == []
