"""
Overpass API HTTP layer: mirror fan-out with retry rounds.

All Overpass HTTP requests in the application go through this module.
It provides:
- Overpass QL construction for "points matching tags within radius"
- Fan-out across an ordered pool of mirror endpoints, none of which is
  individually trusted
- Retry rounds with a fixed backoff between them (2 rounds, 1s)
- One uniform ProviderUnavailableError per failed attempt, whatever the
  cause (timeout, network, 429, 5xx, other 4xx, unusable body), so the
  retry loop never branches on the cause
- px_trace and health_monitor integration for observability

With N endpoints and MAX_RETRIES rounds, a query that never succeeds makes
exactly MAX_RETRIES * N attempts before AllProvidersExhaustedError.
The first 2xx response with a usable body short-circuits everything.

Caching is opt-in: query() takes the TTLCache to consult, and execute()
always hits the network.
"""

import hashlib
import logging
import os
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from errors import AllProvidersExhaustedError, ProviderUnavailableError
from models import Coordinate, RawPoint
from px_trace import get_trace
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

_DEFAULT_ENDPOINTS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
]

# Radius is capped to bound result size and mirror load.
MAX_RADIUS_METERS = 3000

# Server-side query timeout and element cap written into the QL.
QUERY_SERVER_TIMEOUT = 15
QUERY_RESULT_LIMIT = 50


def _endpoints_from_env() -> List[str]:
    """OVERPASS_ENDPOINTS (comma-separated) overrides the public mirrors."""
    raw = os.environ.get("OVERPASS_ENDPOINTS", "")
    configured = [e.strip() for e in raw.split(",") if e.strip()]
    endpoints: List[str] = []
    for endpoint in configured or _DEFAULT_ENDPOINTS:
        if endpoint not in endpoints:
            endpoints.append(endpoint)
    return endpoints


def overpass_cache_key(query_string: str) -> str:
    """Generate a deterministic cache key from an Overpass query string."""
    return "overpass:" + hashlib.sha256(query_string.encode()).hexdigest()


def build_amenity_query(
    center: Coordinate,
    radius_meters: float,
    category_filter: Mapping[str, Sequence[str]],
    limit: int = QUERY_RESULT_LIMIT,
) -> str:
    """Build one Overpass QL query for every (tag, value) in the filter.

    Each pair becomes a node and a way selector; ``out body center`` gives
    ways a centroid so every element has a usable position.
    """
    radius = int(round(min(max(radius_meters, 0), MAX_RADIUS_METERS)))
    around = f"(around:{radius},{center.latitude},{center.longitude})"
    selectors = []
    for tag, values in category_filter.items():
        for value in values:
            selectors.append(f'node["{tag}"="{value}"]{around};')
            selectors.append(f'way["{tag}"="{value}"]{around};')
    return (
        f"[out:json][timeout:{QUERY_SERVER_TIMEOUT}];"
        f"({''.join(selectors)});"
        f"out body center {limit};"
    )


def parse_elements(data: Dict[str, Any]) -> List[RawPoint]:
    """Turn an Overpass response into RawPoints, skipping unusable elements."""
    points: List[RawPoint] = []
    for element in data.get("elements") or []:
        point = RawPoint.from_element(element)
        if point is not None:
            points.append(point)
    return points


class SpatialQueryEngine:
    DEFAULT_TIMEOUT = float(os.environ.get("OVERPASS_TIMEOUT", "12"))  # seconds, per endpoint
    MAX_RETRIES = int(os.environ.get("OVERPASS_MAX_RETRIES", "2"))     # rounds over the pool
    RETRY_BACKOFF = float(os.environ.get("OVERPASS_RETRY_BACKOFF", "1.0"))  # seconds between rounds

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.endpoints = tuple(endpoints) if endpoints else tuple(_endpoints_from_env())
        self.timeout = self.DEFAULT_TIMEOUT if timeout is None else timeout
        self.max_retries = self.MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = self.RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self._session_factory = session_factory

    def query(
        self,
        center: Coordinate,
        radius_meters: float,
        category_filter: Mapping[str, Sequence[str]],
        cache: Optional[TTLCache] = None,
    ) -> List[RawPoint]:
        """Find points matching *category_filter* within *radius_meters*.

        With a *cache*, raw responses are stored under overpass_cache_key()
        of the query text and reused until they expire.

        Raises:
            AllProvidersExhaustedError: every endpoint failed in every round.
        """
        overpass_ql = build_amenity_query(center, radius_meters, category_filter)
        if cache is None:
            return parse_elements(self.execute(overpass_ql))

        key = overpass_cache_key(overpass_ql)
        data = cache.get(key)
        trace = get_trace()
        if trace:
            trace.record_cache(cache.name, data is not None)
        if data is None:
            data = self.execute(overpass_ql)
            cache.set(key, data)
        return parse_elements(data)

    def execute(self, overpass_ql: str) -> Dict[str, Any]:
        """Run *overpass_ql* against the mirror pool with retry rounds.

        Returns the parsed JSON response from the first endpoint that
        answers with a usable body.

        Raises:
            AllProvidersExhaustedError: after max_retries * len(endpoints)
                failed attempts, carrying the last failure.
        """
        attempts = 0
        last_error: Optional[ProviderUnavailableError] = None

        for round_idx in range(self.max_retries):
            for endpoint in self.endpoints:
                attempts += 1
                try:
                    return self._do_request(endpoint, overpass_ql, attempts)
                except ProviderUnavailableError as e:
                    last_error = e
                    logger.warning(
                        "Overpass attempt %d failed (round %d/%d, %s): %s",
                        attempts, round_idx + 1, self.max_retries, endpoint, e,
                    )

            if round_idx < self.max_retries - 1:
                logger.info(
                    "All %d Overpass endpoints failed in round %d/%d, sleeping %.1fs before retry",
                    len(self.endpoints), round_idx + 1, self.max_retries, self.retry_backoff,
                )
                time.sleep(self.retry_backoff)

        raise AllProvidersExhaustedError(attempts, last_error)

    def _do_request(self, endpoint: str, overpass_ql: str, attempt: int) -> Dict[str, Any]:
        """Make a single HTTP request to one mirror.

        Every failure mode is converted to ProviderUnavailableError.
        """
        start = time.monotonic()
        status_code = 0
        # One session per attempt, never shared across threads.
        session = self._session_factory()
        session.trust_env = False
        try:
            resp = session.post(
                endpoint,
                data={"data": overpass_ql},
                # Bounds the connect and each socket read, not the whole transfer.
                timeout=self.timeout,
            )
            status_code = resp.status_code

            if status_code == 429:
                raise ProviderUnavailableError(
                    endpoint, "rate_limit", "HTTP 429 Too Many Requests", status_code=429
                )
            if status_code >= 500:
                raise ProviderUnavailableError(
                    endpoint, "http_5xx", f"HTTP {status_code}", status_code=status_code
                )
            if not 200 <= status_code < 300:
                raise ProviderUnavailableError(
                    endpoint, "http_4xx", f"HTTP {status_code}", status_code=status_code
                )

            try:
                data = resp.json()
            except ValueError:
                raise ProviderUnavailableError(
                    endpoint, "parse_error",
                    f"non-JSON response (HTTP {status_code})", status_code=status_code,
                )
            if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
                raise ProviderUnavailableError(
                    endpoint, "parse_error", "response has no elements list",
                    status_code=status_code,
                )

            # Overpass reports overload inside a 200 body via "remark".
            osm3s = data.get("osm3s") or {}
            remark = str(
                (osm3s.get("remark") if isinstance(osm3s, dict) else "")
                or data.get("remark") or ""
            )
            remark_lower = remark.lower()
            if "too many requests" in remark_lower:
                raise ProviderUnavailableError(
                    endpoint, "rate_limit", "rate limit in response body",
                    status_code=status_code,
                )
            if any(
                indicator in remark_lower
                for indicator in ["runtime error", "timed out", "out of memory"]
            ):
                raise ProviderUnavailableError(
                    endpoint, "body_error", f"server error in response body: {remark[:100]}",
                    status_code=status_code,
                )

        except ProviderUnavailableError as e:
            self._record(endpoint, start, status_code, e.reason, attempt, success=False, error=str(e))
            raise
        except requests.exceptions.Timeout:
            self._record(endpoint, start, 0, "timeout", attempt, success=False, error="timeout")
            raise ProviderUnavailableError(
                endpoint, "timeout", f"request timeout after {self.timeout}s"
            )
        except requests.exceptions.RequestException as e:
            self._record(endpoint, start, 0, "network", attempt, success=False, error=str(e))
            raise ProviderUnavailableError(endpoint, "network", str(e)) from e
        finally:
            session.close()

        self._record(endpoint, start, status_code, "ok", attempt, success=True)
        return data

    @staticmethod
    def _record(
        endpoint: str,
        start: float,
        status_code: int,
        provider_status: str,
        attempt: int,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="overpass",
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
                attempt=attempt,
            )
        try:
            from health_monitor import record_call
            record_call("overpass", success, elapsed_ms, error, endpoint=endpoint)
        except Exception:
            logger.debug("Health tracking failed for overpass", exc_info=True)
