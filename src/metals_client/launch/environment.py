# File: metals_client/launch/environment.py

"""Probes the local environment before a launch.

Resolves the Java home used both for the resolver and for the server,
collects JVM options from the workspace, and detects the Dotty IDE marker
that makes Metals step aside.
"""

import logging
import os
import pathlib
import shlex
import shutil
import sys
from dataclasses import dataclass
from typing import List, Optional

from metals_client.errors import JavaNotFoundError

logger = logging.getLogger(__name__)

DOTTY_IDE_ARTIFACT = ".dotty-ide-artifact"
JVMOPTS_FILENAME = ".jvmopts"
JAVA_OPTION_ENV_VARS = ("JAVA_OPTS", "JAVA_FLAGS")


@dataclass(frozen=True)
class DottyIdeCheck:
    enabled: bool
    path: str


def _java_binary_name() -> str:
    return "java.exe" if sys.platform.startswith("win") else "java"


def java_executable(java_home: str) -> str:
    """Returns the path of the `java` binary inside `java_home`."""
    return str(pathlib.Path(java_home) / "bin" / _java_binary_name())


def _is_java_home(candidate: Optional[str]) -> bool:
    return bool(candidate) and pathlib.Path(java_executable(candidate)).is_file()


def resolve_java_home(hint: Optional[str] = None) -> str:
    """Finds a usable Java home.

    Tries, in order: the configured hint, the `JAVA_HOME` environment variable,
    and the `java` binary on `PATH` (its home is two levels above the resolved
    binary).

    Args:
        hint: The `java_home` setting. Empty or None means "detect".

    Returns:
        The Java home directory.

    Raises:
        JavaNotFoundError: If no candidate contains `bin/java`.
    """
    if hint:
        if _is_java_home(hint):
            logger.info(f"Using configured Java home: {hint}")
            return hint
        raise JavaNotFoundError(f"Configured Java home '{hint}' does not contain bin/{_java_binary_name()}.")

    env_home = os.environ.get("JAVA_HOME")
    if _is_java_home(env_home):
        logger.info(f"Using Java home from JAVA_HOME: {env_home}")
        return env_home  # type: ignore[return-value]
    if env_home:
        logger.warning(f"JAVA_HOME is set to '{env_home}' but it has no java binary. Ignoring it.")

    java_on_path = shutil.which("java")
    if java_on_path:
        candidate = str(pathlib.Path(java_on_path).resolve().parent.parent)
        if _is_java_home(candidate):
            logger.info(f"Using Java home derived from PATH: {candidate}")
            return candidate

    raise JavaNotFoundError("No Java installation found in settings, JAVA_HOME, or PATH.")


def check_dotty_ide(workspace_root: Optional[str]) -> DottyIdeCheck:
    """Checks whether the workspace is set up for the Dotty IDE."""
    if not workspace_root:
        return DottyIdeCheck(enabled=False, path="")
    marker = pathlib.Path(workspace_root) / DOTTY_IDE_ARTIFACT
    return DottyIdeCheck(enabled=marker.is_file(), path=str(marker))


def get_java_options(workspace_root: Optional[str]) -> List[str]:
    """Collects JVM options for the resolver and the server.

    Sources, in order: the workspace `.jvmopts` file, then `JAVA_OPTS`, then
    `JAVA_FLAGS`. Only entries that look like options (start with `-`) are
    kept; the first occurrence of a duplicate wins its position.
    """
    raw: List[str] = []
    if workspace_root:
        jvmopts = pathlib.Path(workspace_root) / JVMOPTS_FILENAME
        if jvmopts.is_file():
            try:
                for line in jvmopts.read_text(encoding="utf-8").splitlines():
                    line = line.strip()
                    if line and not line.startswith("#"):
                        raw.append(line)
                logger.debug(f"Read JVM options from {jvmopts}")
            except OSError as e:
                logger.warning(f"Could not read {jvmopts}: {e}")

    for env_var in JAVA_OPTION_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            try:
                raw.extend(shlex.split(value))
            except ValueError:
                logger.warning(f"Could not parse {env_var}='{value}'. Ignoring it.")

    options: List[str] = []
    for option in raw:
        if option.startswith("-") and option not in options:
            options.append(option)
    return options
