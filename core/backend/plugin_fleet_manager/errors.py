"""
Error Types

Failure taxonomy shared by the scanner, update pipeline and bulk orchestrator.
"""

import logging
from typing import Optional

import requests

from .config import BULK_UPDATE

logger = logging.getLogger(__name__)


class PluginManagerError(Exception):
    """Base class for all plugin manager failures"""


class NotFoundError(PluginManagerError):
    """A server, plugin or backup does not exist"""


class PreconditionFailedError(PluginManagerError):
    """The target exists but is not in a state that allows the operation"""


class BulkUpdateInProgressError(PreconditionFailedError):
    """A bulk update for the same server is still running in this process"""


class FatalError(PluginManagerError):
    """Configuration or resolution failure that aborts the current operation"""


class TransientIOError(PluginManagerError):
    """Network or filesystem failure that may succeed on retry"""


class RateLimitError(PluginManagerError):
    """Upstream asked us to back off"""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s")


def parse_retry_after(value: Optional[str], default: Optional[int] = None) -> int:
    """
    Parse a Retry-After header value in seconds

    Args:
        value: Raw header value (may be None)
        default: Fallback when the header is missing or not an integer

    Returns:
        Seconds to wait
    """
    if default is None:
        default = BULK_UPDATE["default_retry_after"]

    if value is None:
        return default

    try:
        return max(0, int(str(value).strip()))
    except ValueError:
        logger.debug(f"Unparseable Retry-After value: {value!r}")
        return default


def rate_limit_from_exception(exc: BaseException) -> Optional[int]:
    """
    Detect a rate-limit signal in an exception

    Args:
        exc: Exception raised by an update attempt

    Returns:
        Retry-after seconds if this is a rate limit, otherwise None
    """
    if isinstance(exc, RateLimitError):
        return exc.retry_after

    response = getattr(exc, "response", None)
    if response is not None and getattr(response, "status_code", None) == 429:
        return parse_retry_after(response.headers.get("Retry-After"))

    return None


def raise_for_status(response: requests.Response) -> None:
    """raise_for_status() that turns HTTP 429 into RateLimitError"""
    if response.status_code == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        logger.warning(f"Rate limit hit on {response.url}! Retry-After: {retry_after}s")
        raise RateLimitError(retry_after)
    response.raise_for_status()
