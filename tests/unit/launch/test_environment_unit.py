# tests/unit/launch/test_environment_unit.py

import pathlib

import pytest

from metals_client.errors import EnvironmentProbeError, JavaNotFoundError
from metals_client.launch import environment
from metals_client.launch.environment import (
    DOTTY_IDE_ARTIFACT,
    check_dotty_ide,
    get_java_options,
    java_executable,
    resolve_java_home,
)


def make_java_home(root: pathlib.Path) -> pathlib.Path:
    java = pathlib.Path(java_executable(str(root)))
    java.parent.mkdir(parents=True)
    java.write_text("#!/bin/sh\n", encoding="utf-8")
    return root


@pytest.fixture
def no_java_env(monkeypatch):
    monkeypatch.delenv("JAVA_HOME", raising=False)
    monkeypatch.setattr(environment.shutil, "which", lambda name: None)
    return monkeypatch


# --- resolve_java_home ---


def test_hint_is_used_when_valid(tmp_path, no_java_env):
    home = make_java_home(tmp_path / "jdk")
    assert resolve_java_home(str(home)) == str(home)


def test_invalid_hint_fails_without_fallback(tmp_path, no_java_env):
    no_java_env.setenv("JAVA_HOME", str(make_java_home(tmp_path / "env-jdk")))
    with pytest.raises(JavaNotFoundError):
        resolve_java_home(str(tmp_path / "nowhere"))


def test_java_home_env_is_used_without_hint(tmp_path, no_java_env):
    home = make_java_home(tmp_path / "env-jdk")
    no_java_env.setenv("JAVA_HOME", str(home))
    assert resolve_java_home("") == str(home)


def test_java_on_path_is_last_resort(tmp_path, no_java_env):
    home = make_java_home(tmp_path / "path-jdk")
    no_java_env.setattr(environment.shutil, "which", lambda name: java_executable(str(home)))
    assert resolve_java_home(None) == str(home.resolve())


def test_no_java_anywhere_raises_environment_error(no_java_env):
    with pytest.raises(EnvironmentProbeError):
        resolve_java_home("")


# --- check_dotty_ide ---


def test_dotty_marker_detected(tmp_path):
    (tmp_path / DOTTY_IDE_ARTIFACT).write_text("ch.epfl.lamp:dotty-language-server_0.22:0.22.0", encoding="utf-8")
    check = check_dotty_ide(str(tmp_path))
    assert check.enabled
    assert check.path == str(tmp_path / DOTTY_IDE_ARTIFACT)


def test_dotty_marker_absent(tmp_path):
    assert not check_dotty_ide(str(tmp_path)).enabled
    assert not check_dotty_ide(None).enabled


# --- get_java_options ---


def test_java_options_from_jvmopts_and_env(tmp_path, monkeypatch):
    (tmp_path / ".jvmopts").write_text("# memory\n-Xmx2G\n\nnot-an-option\n-Dfile.encoding=UTF-8\n", encoding="utf-8")
    monkeypatch.setenv("JAVA_OPTS", "-Xmx2G -Dhttp.proxyHost=proxy")
    monkeypatch.setenv("JAVA_FLAGS", "-Dhttp.proxyPort=8080")
    assert get_java_options(str(tmp_path)) == [
        "-Xmx2G",
        "-Dfile.encoding=UTF-8",
        "-Dhttp.proxyHost=proxy",
        "-Dhttp.proxyPort=8080",
    ]


def test_java_options_empty(tmp_path, monkeypatch):
    monkeypatch.delenv("JAVA_OPTS", raising=False)
    monkeypatch.delenv("JAVA_FLAGS", raising=False)
    assert get_java_options(str(tmp_path)) == []
