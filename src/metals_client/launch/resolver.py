# File: metals_client/launch/resolver.py

"""Drives Coursier to resolve the Metals classpath.

The resolver runs as a subprocess with `--ttl Inf`: Metals artifacts are never
republished under the same version, so a cached resolution never goes stale
and SNAPSHOT versions don't trigger "Checking..." round-trips. Its stdout is
the classpath; its stderr is line-oriented progress.
"""

import asyncio
import collections
import logging
import os
from typing import Callable, Dict, List, Optional, Sequence

from metals_client.errors import DependencyResolutionError

logger = logging.getLogger(__name__)

METALS_ARTIFACT = "org.scalameta:metals_2.12"
DEFAULT_REPOSITORIES = (
    "bintray:scalacenter/releases",
    "sonatype:public",
    "sonatype:snapshots",
)
AGENT_FLAG_PREFIX = "-agentlib"
REPOSITORY_SEPARATOR = "|"
COURSIER_REPOSITORIES_ENV = "COURSIER_REPOSITORIES"
STDERR_TAIL_LINES = 20
TRUNCATED_LINE = "<line too long, truncated>"

ProgressCallback = Callable[[str], None]


def fetch_properties(server_properties: Sequence[str]) -> List[str]:
    """Server properties that also apply to the resolver JVM.

    Agent flags (debuggers, profilers) only make sense for the server itself.
    """
    return [p for p in server_properties if not p.startswith(AGENT_FLAG_PREFIX)]


def join_custom_repositories(repositories: Sequence[str]) -> str:
    """Joins repository entries the way `COURSIER_REPOSITORIES` expects.

    Entries are passed through opaquely; Coursier reports malformed ones.
    """
    return REPOSITORY_SEPARATOR.join(repositories)


def repositories_environment(joined_repositories: str) -> Dict[str, str]:
    if not joined_repositories:
        return {}
    return {COURSIER_REPOSITORIES_ENV: joined_repositories}


def resolver_environment(joined_repositories: str) -> Dict[str, str]:
    """Environment for the resolver subprocess, layered over `os.environ`."""
    env = os.environ.copy()
    env["COURSIER_NO_TERM"] = "true"
    env.update(repositories_environment(joined_repositories))
    return env


def build_fetch_command(
    java_path: str,
    java_options: Sequence[str],
    server_properties: Sequence[str],
    coursier_path: str,
    server_version: str,
) -> List[str]:
    """Builds the full resolver command line."""
    command = [java_path, *java_options, *fetch_properties(server_properties)]
    command += ["-jar", coursier_path, "fetch", "-p", "--ttl", "Inf"]
    command.append(f"{METALS_ARTIFACT}:{server_version}")
    for repository in DEFAULT_REPOSITORIES:
        command += ["-r", repository]
    command.append("-p")
    return command


async def _drain_stderr(
    stream: asyncio.StreamReader,
    tail: "collections.deque[str]",
    on_progress: Optional[ProgressCallback],
) -> None:
    while True:
        try:
            line_bytes = await stream.readline()
        except ValueError:
            # Longer than the stream limit; readline already dropped what it buffered.
            if not tail or tail[-1] != TRUNCATED_LINE:
                tail.append(TRUNCATED_LINE)
            continue
        if not line_bytes:
            break
        line = line_bytes.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        tail.append(line)
        logger.debug(f"Resolver: {line}")
        if on_progress is not None:
            on_progress(line)


async def _terminate(process: asyncio.subprocess.Process) -> Optional[int]:
    """Kills the resolver if it is still running and reaps it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Resolver already exited.")
    return await process.wait()


async def fetch_classpath(
    command: Sequence[str],
    env: Dict[str, str],
    cwd: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """Runs the resolver and returns the classpath it prints.

    Args:
        command: As built by `build_fetch_command`.
        env: As built by `resolver_environment`.
        cwd: Working directory for the subprocess.
        on_progress: Called with every non-empty stderr line.

    Returns:
        The classpath string.

    Raises:
        DependencyResolutionError: If the subprocess cannot be spawned, exits
            non-zero, prints no classpath, or its output cannot be read.
    """
    logger.info(f"Resolving Metals: {' '.join(command)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )
    except OSError as e:
        logger.error(f"Could not start resolver '{command[0]}': {e}")
        raise DependencyResolutionError(f"Could not start resolver: {e}") from e

    if process.stdout is None or process.stderr is None:
        await _terminate(process)
        raise DependencyResolutionError("Failed to get stdout/stderr streams from resolver.")

    tail: "collections.deque[str]" = collections.deque(maxlen=STDERR_TAIL_LINES)
    try:
        stdout_bytes, _ = await asyncio.gather(
            process.stdout.read(),
            _drain_stderr(process.stderr, tail, on_progress),
        )
    except (ValueError, OSError) as e:
        logger.error(f"Failed reading resolver output: {e}")
        returncode = await _terminate(process)
        raise DependencyResolutionError(
            f"Failed reading resolver output: {e}", returncode=returncode, stderr_tail="\n".join(tail)
        ) from e
    returncode = await process.wait()
    stderr_tail = "\n".join(tail)

    if returncode != 0:
        logger.error(f"Resolver exited with code {returncode}:\n{stderr_tail}")
        raise DependencyResolutionError(
            f"Resolver exited with code {returncode}", returncode=returncode, stderr_tail=stderr_tail
        )

    lines = [l.strip() for l in stdout_bytes.decode("utf-8", errors="replace").splitlines() if l.strip()]
    if not lines:
        raise DependencyResolutionError(
            "Resolver printed no classpath", returncode=returncode, stderr_tail=stderr_tail
        )
    classpath = lines[-1]
    logger.info(f"Resolved Metals classpath ({len(classpath.split(os.pathsep))} entries).")
    return classpath
