"""
Trusted clock.

Phase boundaries are compared against a time reading that the server host
cannot skew. When TRUSTED_TIME_ENABLED is set, each URL in TRUSTED_TIME_URLS is
queried in order and the first parseable answer wins. If every source fails
(or the feature is disabled) the local UTC clock is used and the reading is
flagged as degraded so callers can surface it.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import httpx

from writeclub.core.config import settings
from writeclub.core.errors import ClockSourceError

logger = logging.getLogger("writeclub.clock")

# Response keys carrying the timestamp, in order of preference
_TIME_KEYS = ("utc_datetime", "datetime", "dateTime", "date_time_utc")
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


@dataclass(frozen=True)
class ClockReading:
    now: datetime
    source: str  # URL of the trusted source, or "local"
    degraded: bool


def _source_urls(raw: Optional[str] = None) -> List[str]:
    value = raw if raw is not None else settings.TRUSTED_TIME_URLS
    return [u.strip() for u in (value or "").split(",") if u.strip()]


def parse_time_payload(payload: dict) -> datetime:
    """Extract a UTC datetime from a time API response body."""
    for key in _TIME_KEYS:
        raw = payload.get(key)
        if not raw:
            continue
        text = _FRACTION_RE.sub(r"\1", str(raw).replace("Z", "+00:00"))
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            # The configured sources are all queried for the UTC zone
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    raise ClockSourceError("Time source response has no recognizable timestamp")


def fetch_trusted_time(url: str, client: httpx.Client) -> datetime:
    try:
        response = client.get(url)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ClockSourceError(f"Time source {url} failed: {e}") from e
    if not isinstance(payload, dict):
        raise ClockSourceError(f"Time source {url} returned a non-object body")
    return parse_time_payload(payload)


def _local_reading(reason: str) -> ClockReading:
    now = datetime.now(timezone.utc)
    logger.warning(
        "clock.degraded",
        extra={"reason": reason, "fallback": "local", "local_now": now.isoformat()},
    )
    return ClockReading(now=now, source="local", degraded=True)


def get_trusted_now(
    *,
    client: Optional[httpx.Client] = None,
    urls: Optional[Iterable[str]] = None,
    enabled: Optional[bool] = None,
) -> ClockReading:
    """
    Return the current time from a trusted source, falling back to local time.

    Args:
        client: Optional httpx client (tests pass one with a MockTransport)
        urls: Override for TRUSTED_TIME_URLS
        enabled: Override for TRUSTED_TIME_ENABLED
    """
    is_enabled = settings.TRUSTED_TIME_ENABLED if enabled is None else enabled
    if not is_enabled:
        return ClockReading(now=datetime.now(timezone.utc), source="local", degraded=False)

    source_urls = list(urls) if urls is not None else _source_urls()
    if not source_urls:
        return _local_reading("no trusted time sources configured")

    owns_client = client is None
    http = client or httpx.Client(timeout=settings.TRUSTED_TIME_TIMEOUT_SECONDS)
    errors = []
    try:
        for url in source_urls:
            try:
                now = fetch_trusted_time(url, http)
            except ClockSourceError as e:
                logger.info("clock.source_failed", extra={"url": url, "error_message": e.message})
                errors.append(e.message)
                continue
            return ClockReading(now=now, source=url, degraded=False)
    finally:
        if owns_client:
            http.close()

    return _local_reading("; ".join(errors))


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """Use an explicit timestamp (tests, replays) or ask the trusted clock."""
    if now is not None:
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)
    return get_trusted_now().now
