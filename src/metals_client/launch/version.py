# File: metals_client/launch/version.py

"""Warns about a configured server version older than the bundled default."""

import logging
import re
from typing import Tuple

from metals_client.config.loader import MetalsSettings
from metals_client.host import HostEditor

logger = logging.getLogger(__name__)

_NUMERIC_PART = re.compile(r"\d+")


def _version_key(version: str) -> Tuple[int, ...]:
    """Numeric components of a dotted version, ignoring any qualifier.

    Raises:
        ValueError: If the version does not start with a number.
    """
    core = version.split("+", 1)[0].split("-", 1)[0]
    parts = core.split(".")
    if not parts or not parts[0].isdigit():
        raise ValueError(f"Unparseable version: {version!r}")
    key = []
    for part in parts:
        match = _NUMERIC_PART.match(part)
        key.append(int(match.group()) if match else 0)
    return tuple(key)


def is_outdated(version: str, latest: str) -> bool:
    """True if `version` is older than `latest`. Unparseable versions count as outdated."""
    try:
        return _version_key(version) < _version_key(latest)
    except ValueError:
        return True


async def check_server_version(settings: MetalsSettings, host: HostEditor) -> bool:
    """Offers an upgrade when an outdated server version is configured.

    Returns:
        True if the user chose to upgrade.
    """
    if not settings.server_version or settings.uses_default_version:
        return False
    latest = settings.default_server_version
    if not is_outdated(settings.server_version, latest):
        return False

    upgrade = f"Upgrade to {latest} now"
    message = (
        f"You are running an out-of-date version of Metals. Latest version is {latest}, "
        f"but you have configured a custom server version {settings.server_version}"
    )
    choice = await host.show_quickpick([upgrade, "Not now"], message)
    if choice == 0:
        logger.info(f"Updating configured server version to {latest}.")
        await host.update_setting("server_version", latest)
        return True
    return False
