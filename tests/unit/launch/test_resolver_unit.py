# tests/unit/launch/test_resolver_unit.py

import sys

import pytest

from metals_client.errors import DependencyResolutionError
from metals_client.launch.resolver import (
    COURSIER_REPOSITORIES_ENV,
    REPOSITORY_SEPARATOR,
    TRUNCATED_LINE,
    build_fetch_command,
    fetch_classpath,
    fetch_properties,
    join_custom_repositories,
    repositories_environment,
    resolver_environment,
)


def python_command(code: str):
    return [sys.executable, "-c", code]


# --- Pure helpers ---


def test_fetch_properties_drop_agent_flags():
    props = ["-Dmetals.verbose=true", "-agentlib:jdwp=transport=dt_socket,server=y", "-Xmx1G"]
    assert fetch_properties(props) == ["-Dmetals.verbose=true", "-Xmx1G"]


@pytest.mark.parametrize(
    "repositories, has_separator",
    [
        ([], False),
        (["central"], False),
        (["central", "https://repo.example.com/maven"], True),
        (["a", "b", "c"], True),
    ],
)
def test_joined_repositories_contain_separator_only_for_several(repositories, has_separator):
    joined = join_custom_repositories(repositories)
    assert (REPOSITORY_SEPARATOR in joined) is has_separator
    assert joined.split(REPOSITORY_SEPARATOR) == (repositories or [""])


def test_repositories_environment():
    assert repositories_environment("") == {}
    assert repositories_environment("a|b") == {COURSIER_REPOSITORIES_ENV: "a|b"}


def test_resolver_environment_disables_terminal_output(monkeypatch):
    monkeypatch.setenv(COURSIER_REPOSITORIES_ENV, "from-shell")
    env = resolver_environment("a|b")
    assert env["COURSIER_NO_TERM"] == "true"
    assert env[COURSIER_REPOSITORIES_ENV] == "a|b"


def test_build_fetch_command_order():
    command = build_fetch_command(
        "/jdk/bin/java",
        ["-Xmx1G"],
        ["-Dmetals.verbose=true", "-agentlib:jdwp=x"],
        "/opt/coursier",
        "0.9.0",
    )
    assert command == [
        "/jdk/bin/java",
        "-Xmx1G",
        "-Dmetals.verbose=true",
        "-jar",
        "/opt/coursier",
        "fetch",
        "-p",
        "--ttl",
        "Inf",
        "org.scalameta:metals_2.12:0.9.0",
        "-r",
        "bintray:scalacenter/releases",
        "-r",
        "sonatype:public",
        "-r",
        "sonatype:snapshots",
        "-p",
    ]


# --- fetch_classpath ---


@pytest.mark.asyncio
async def test_fetch_classpath_returns_last_stdout_line():
    code = (
        "import sys\n"
        "sys.stderr.write('Downloading metals\\n')\n"
        "sys.stderr.write('Downloaded metals\\n')\n"
        "print('/a.jar:/b.jar')\n"
    )
    progress = []
    classpath = await fetch_classpath(python_command(code), resolver_environment(""), on_progress=progress.append)
    assert classpath == "/a.jar:/b.jar"
    assert progress == ["Downloading metals", "Downloaded metals"]


@pytest.mark.asyncio
async def test_fetch_classpath_nonzero_exit_raises_with_diagnostics():
    code = "import sys\nsys.stderr.write('Resolution error: not found\\n')\nsys.exit(3)\n"
    with pytest.raises(DependencyResolutionError) as exc_info:
        await fetch_classpath(python_command(code), resolver_environment(""))
    assert exc_info.value.returncode == 3
    assert "Resolution error: not found" in exc_info.value.stderr_tail


@pytest.mark.asyncio
async def test_fetch_classpath_empty_output_raises():
    with pytest.raises(DependencyResolutionError, match="no classpath"):
        await fetch_classpath(python_command("pass"), resolver_environment(""))


@pytest.mark.asyncio
async def test_fetch_classpath_missing_executable_raises(tmp_path):
    with pytest.raises(DependencyResolutionError) as exc_info:
        await fetch_classpath([str(tmp_path / "no-java"), "-version"], resolver_environment(""))
    assert exc_info.value.returncode is None


@pytest.mark.asyncio
async def test_fetch_classpath_survives_overlong_stderr_line():
    code = "import sys\nsys.stderr.write('x' * 200000)\nsys.stderr.flush()\nsys.exit(1)\n"
    with pytest.raises(DependencyResolutionError) as exc_info:
        await fetch_classpath(python_command(code), resolver_environment(""))
    assert exc_info.value.returncode == 1
    assert TRUNCATED_LINE in exc_info.value.stderr_tail


@pytest.mark.asyncio
async def test_fetch_classpath_overlong_progress_line_then_classpath():
    code = (
        "import sys\n"
        "sys.stderr.write('y' * 200000 + '\\n')\n"
        "sys.stderr.write('Downloaded metals\\n')\n"
        "print('/a.jar')\n"
    )
    progress = []
    classpath = await fetch_classpath(python_command(code), resolver_environment(""), on_progress=progress.append)
    assert classpath == "/a.jar"
    assert progress[-1] == "Downloaded metals"
