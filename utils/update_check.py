import re
from typing import Optional, Tuple

import requests

from utils.logger import get_logger

RELEASES_URL = "https://github.com/kondukto-io/kdt/releases/latest"
TAG_DELIMITER = "/tag/"
UPDATE_CHECK_TIMEOUT = 3  # seconds

VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(value: str) -> Optional[Tuple[int, int, int]]:
    match = VERSION_PATTERN.match(value.strip())
    if not match:
        return None
    return tuple(int(part or 0) for part in match.groups())


def check_update(installed_version: str) -> Tuple[bool, str]:
    """
    Check GitHub for a newer release.

    Returns:
        (True, latest) when a newer release exists, (False, installed) otherwise.
        Every failure is logged at debug level and reported as "no update".
    """
    logger = get_logger()
    if not installed_version:
        logger.debug("installed version is not defined, the update checking is skipped")
        return False, installed_version

    try:
        response = requests.head(RELEASES_URL, allow_redirects=True, timeout=UPDATE_CHECK_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.debug(f"failed to get latest version from {RELEASES_URL}: {e}")
        return False, installed_version

    location = response.url or ""
    if TAG_DELIMITER not in location:
        logger.debug("could not get the location of the version request")
        return False, installed_version

    latest = location.rstrip("/").split("/")[-1]
    current_version, latest_version = parse_version(installed_version), parse_version(latest)
    if current_version is None or latest_version is None:
        logger.debug(f"failed to parse versions [{installed_version}] and [{latest}]")
        return False, installed_version

    if latest_version > current_version:
        return True, latest
    return False, installed_version
