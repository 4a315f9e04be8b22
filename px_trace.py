"""
Request-scoped tracing for Proximo lookups.

A TraceContext lives in a thread-local for the duration of one request.
The geocoder chain and the Overpass engine append one APICallRecord per
outbound attempt; ProximityService appends one CacheRecord per cache
lookup. On teardown app.py logs a single summary line, e.g.

    [trace-summary] trace=3f9c0a1b2d route=nearby total_ms=2410 api_calls=4
    failed=3 cache_hits=0 outcome=partial services=overpass:4/3

which is enough to tell a slow mirror from a dead one without turning on
debug logging.

Usage in clients:
    trace = get_trace()
    if trace:
        trace.record_api_call(service="overpass", endpoint=url, ...)
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class APICallRecord:
    """One outbound HTTP attempt (Nominatim, Photon, an Overpass mirror)."""
    service: str          # "nominatim" | "photon" | "overpass"
    endpoint: str         # mirror URL, or "search" for geocoders
    elapsed_ms: int
    status_code: int      # 0 when no HTTP response was received
    provider_status: str = ""   # "ok" or a ProviderUnavailableError reason
    attempt: int = 0            # 1-based position in the Overpass retry loop

    @property
    def failed(self) -> bool:
        return self.provider_status not in ("", "ok")


@dataclass
class CacheRecord:
    cache: str
    hit: bool


@dataclass
class TraceContext:
    """Outbound calls and cache lookups made while serving one request."""
    trace_id: str
    route: str = ""
    request_start: float = field(default_factory=time.monotonic)
    api_calls: List[APICallRecord] = field(default_factory=list)
    cache_lookups: List[CacheRecord] = field(default_factory=list)
    outcome: str = ""     # set explicitly to override the derived outcome

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
        attempt: int = 0,
    ) -> None:
        call = APICallRecord(service, endpoint, int(elapsed_ms), status_code, provider_status, attempt)
        self.api_calls.append(call)
        logger.info(
            "  [api] trace=%s %s %s attempt=%d http=%d -> %s (%dms)",
            self.trace_id, service, endpoint, attempt, status_code,
            provider_status or "-", call.elapsed_ms,
        )

    def record_cache(self, cache: str, hit: bool) -> None:
        self.cache_lookups.append(CacheRecord(cache, hit))

    def _derived_outcome(self, failed: int, hits: int) -> str:
        if self.outcome:
            return self.outcome
        if not self.api_calls:
            return "cache_hit" if hits else "empty"
        if failed == len(self.api_calls):
            return "error"
        return "partial" if failed else "success"

    def per_service(self) -> Dict[str, Dict[str, int]]:
        """``{service: {calls, failed, elapsed_ms}}`` in first-call order."""
        rollup: Dict[str, Dict[str, int]] = {}
        for call in self.api_calls:
            entry = rollup.setdefault(call.service, {"calls": 0, "failed": 0, "elapsed_ms": 0})
            entry["calls"] += 1
            entry["failed"] += int(call.failed)
            entry["elapsed_ms"] += call.elapsed_ms
        return rollup

    def summary_dict(self) -> Dict[str, Any]:
        failed = sum(1 for c in self.api_calls if c.failed)
        hits = sum(1 for c in self.cache_lookups if c.hit)
        return {
            "trace_id": self.trace_id,
            "route": self.route,
            "total_elapsed_ms": int((time.monotonic() - self.request_start) * 1000),
            "total_api_calls": len(self.api_calls),
            "failed_api_calls": failed,
            "cache_hits": hits,
            "cache_misses": len(self.cache_lookups) - hits,
            "services": self.per_service(),
            "final_outcome": self._derived_outcome(failed, hits),
        }

    def log_summary(self) -> None:
        s = self.summary_dict()
        services = ",".join(
            f"{name}:{v['calls']}/{v['failed']}" for name, v in s["services"].items()
        )
        logger.info(
            "[trace-summary] trace=%s route=%s total_ms=%d api_calls=%d "
            "failed=%d cache_hits=%d outcome=%s services=%s",
            s["trace_id"], s["route"] or "-", s["total_elapsed_ms"],
            s["total_api_calls"], s["failed_api_calls"], s["cache_hits"],
            s["final_outcome"], services or "-",
        )

    def api_calls_to_list(self) -> List[Dict[str, Any]]:
        return [asdict(c) for c in self.api_calls]

    def full_trace_dict(self) -> Dict[str, Any]:
        """Summary plus every outbound attempt, for the dev CLI."""
        return {**self.summary_dict(), "api_calls": self.api_calls_to_list()}


_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    return getattr(_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]) -> None:
    _local.ctx = ctx


def clear_trace() -> None:
    _local.ctx = None
