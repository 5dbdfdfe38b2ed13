"""
Serial endpoint discovery and fallback opening.

Ranking:
    1. endpoints whose manufacturer matches a known USB-serial vendor
    2. platform-convention names (COMn, /dev/ttyUSBn, /dev/ttyACMn),
       highest number first
    3. everything else, in enumeration order
"""

import logging
import re
from typing import Iterable, Optional, Sequence

from prize_vending.core.exceptions import TransportError
from prize_vending.core.interfaces import Endpoint, SerialLink
from prize_vending.core.scheduling import RetryPolicy, Scheduler

from .constants import KNOWN_VENDORS


logger = logging.getLogger(__name__)

_CONVENTION_PATTERN = re.compile(r"^(?:COM|/dev/ttyUSB|/dev/ttyACM)(\d+)$", re.IGNORECASE)


def is_known_vendor(endpoint: Endpoint, vendors: Iterable[str] = KNOWN_VENDORS) -> bool:
    manufacturer = (endpoint.manufacturer or "").lower()
    return bool(manufacturer) and any(vendor in manufacturer for vendor in vendors)


def rank_endpoints(
    endpoints: Sequence[Endpoint],
    vendors: Iterable[str] = KNOWN_VENDORS,
    preferred_path: Optional[str] = None,
) -> list[Endpoint]:
    """
    Order endpoints from most to least likely to be the vending controller.

    Args:
        endpoints: Endpoints in OS enumeration order.
        vendors: Lower-case manufacturer substrings to prefer.
        preferred_path: Explicitly configured path, always tried first.

    Returns:
        Ranked endpoints.
    """
    vendors = tuple(vendors)
    preferred: list[Endpoint] = []
    matched: list[Endpoint] = []
    numbered: list[tuple[int, Endpoint]] = []
    rest: list[Endpoint] = []

    for endpoint in endpoints:
        if preferred_path and endpoint.path == preferred_path:
            preferred.append(endpoint)
        elif is_known_vendor(endpoint, vendors):
            matched.append(endpoint)
        elif (match := _CONVENTION_PATTERN.match(endpoint.path)) is not None:
            numbered.append((int(match.group(1)), endpoint))
        else:
            rest.append(endpoint)

    if preferred_path and not preferred:
        preferred.append(Endpoint(path=preferred_path))

    numbered.sort(key=lambda item: item[0], reverse=True)
    return preferred + matched + [endpoint for _, endpoint in numbered] + rest


async def open_with_fallback(
    link: SerialLink,
    candidates: Sequence[Endpoint],
    baudrate: int,
    policy: RetryPolicy,
    scheduler: Scheduler,
) -> Endpoint:
    """
    Open the first candidate, falling back on access-denied errors.

    When the primary endpoint is held or forbidden, up to
    ``policy.max_attempts`` alternates are tried with the policy delays,
    then the primary gets one last try after ``policy.final_delay``.

    Args:
        link: Transport to open.
        candidates: Ranked endpoints; the first is the primary.
        baudrate: Serial speed.
        policy: Retry schedule.
        scheduler: Clock used for the delays.

    Returns:
        The endpoint that was opened.

    Raises:
        TransportError: If nothing could be opened.
    """
    if not candidates:
        raise TransportError("No serial endpoints available")

    primary = candidates[0]
    try:
        await link.open(primary.path, baudrate)
        return primary
    except TransportError as e:
        if not e.access_denied:
            raise
        logger.warning(f"Access denied on {primary.path}, trying alternates")

    for attempt, alternate in enumerate(candidates[1:1 + policy.max_attempts]):
        await scheduler.sleep(policy.delay_for(attempt))
        try:
            await link.open(alternate.path, baudrate)
            logger.info(f"Opened alternate endpoint {alternate.path}")
            return alternate
        except TransportError as e:
            logger.warning(f"Alternate {alternate.path} failed: {e.message}")

    await scheduler.sleep(policy.final_delay)
    try:
        await link.open(primary.path, baudrate)
        logger.info(f"Opened {primary.path} on final retry")
        return primary
    except TransportError as e:
        raise TransportError(
            f"Could not open any serial endpoint (last error: {e.message})",
            path=primary.path,
            access_denied=e.access_denied,
        ) from e
