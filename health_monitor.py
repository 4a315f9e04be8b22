"""
Passive health tracking for Proximo's upstream services.

Every real outbound call (a Nominatim or Photon search, each Overpass
mirror attempt) lands in a bounded rolling window per service, and
/healthz derives a status from the window's success rate:

    >= 95%  healthy
    >= 70%  degraded
    else    down          (no samples yet: unknown)

Overpass is also broken down per mirror. One bad mirror is routine and
only costs an extra attempt; the per-mirror view shows which one it is.

Nothing here issues requests of its own: the public geocoders ask
clients not to poll them, and real lookups exercise the mirrors anyway.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

WINDOW_SIZE = 50
HEALTHY_RATE = 0.95
DEGRADED_RATE = 0.70

MONITORED_SERVICES = ("nominatim", "photon", "overpass")


@dataclass(frozen=True)
class CallOutcome:
    at: float                      # epoch seconds
    success: bool
    latency_ms: int
    error: Optional[str] = None
    endpoint: Optional[str] = None  # set for Overpass mirror attempts


def classify_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "unknown"
    if rate >= HEALTHY_RATE:
        return "healthy"
    if rate >= DEGRADED_RATE:
        return "degraded"
    return "down"


def summarize(outcomes: Sequence[CallOutcome]) -> Dict[str, Any]:
    """Status dict for a window of outcomes, oldest first."""
    if not outcomes:
        return {"status": "unknown", "sample_size": 0}

    total = len(outcomes)
    rate = sum(1 for o in outcomes if o.success) / total
    latencies = sorted(o.latency_ms for o in outcomes)
    trailing_failures = 0
    for o in reversed(outcomes):
        if o.success:
            break
        trailing_failures += 1

    summary: Dict[str, Any] = {
        "status": classify_rate(rate),
        "success_rate": round(rate, 3),
        "sample_size": total,
        "latency_ms": int(sum(latencies) / total),
        "p95_latency_ms": latencies[min(total - 1, int(total * 0.95))],
        "consecutive_failures": trailing_failures,
        "last_checked": datetime.fromtimestamp(outcomes[-1].at, tz=timezone.utc).isoformat(),
    }
    last_error = next(
        (o.error for o in reversed(outcomes) if not o.success and o.error), None
    )
    if last_error:
        summary["error"] = last_error
    return summary


class HealthMonitor:
    """Thread-safe rolling windows, one per upstream service."""

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        services: Iterable[str] = MONITORED_SERVICES,
    ) -> None:
        self.window_size = window_size
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[CallOutcome]] = {
            service: deque(maxlen=window_size) for service in services
        }
        self._last_status: Dict[str, str] = {}

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        outcome = CallOutcome(time.time(), bool(success), int(latency_ms), error, endpoint)
        with self._lock:
            window = self._windows.setdefault(service, deque(maxlen=self.window_size))
            window.append(outcome)

    def snapshot(self, service: str) -> List[CallOutcome]:
        with self._lock:
            return list(self._windows.get(service, ()))

    def service_status(self, service: str) -> Dict[str, Any]:
        outcomes = self.snapshot(service)
        status = summarize(outcomes)
        endpoints = sorted({o.endpoint for o in outcomes if o.endpoint})
        if endpoints:
            status["endpoints"] = {}
            for endpoint in endpoints:
                per = summarize([o for o in outcomes if o.endpoint == endpoint])
                status["endpoints"][endpoint] = {
                    "status": per["status"],
                    "success_rate": per["success_rate"],
                    "sample_size": per["sample_size"],
                }
        return status

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        """Status for every tracked service; logs a warning on each change."""
        with self._lock:
            services = list(self._windows)

        out: Dict[str, Dict[str, Any]] = {}
        for service in services:
            status = self.service_status(service)
            with self._lock:
                previous = self._last_status.get(service)
                self._last_status[service] = status["status"]
            if previous and previous != status["status"]:
                logger.warning(
                    "[health] %s went %s -> %s (last error: %s)",
                    service, previous, status["status"], status.get("error"),
                )
            out[service] = status
        return out


# One monitor per process, fed by geocoding.py and overpass_http.py.
_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> None:
    _monitor.record_call(service, success, latency_ms, error, endpoint)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()
