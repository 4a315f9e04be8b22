"""Unit tests for px_trace.py: request-scoped tracing.

Tests cover: API call and cache recording, summary outcome computation,
serialization, and thread-local storage.
"""

import threading
import time

from px_trace import (
    APICallRecord,
    TraceContext,
    clear_trace,
    get_trace,
    set_trace,
)


class TestTraceContextInit:
    def test_defaults(self):
        ctx = TraceContext(trace_id="test-1")
        assert ctx.trace_id == "test-1"
        assert ctx.route == ""
        assert ctx.api_calls == []
        assert ctx.cache_lookups == []
        assert isinstance(ctx.request_start, float)


class TestRecording:
    def test_record_api_call(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_api_call(
            service="overpass",
            endpoint="https://overpass-api.de/api/interpreter",
            elapsed_ms=812.7,
            status_code=503,
            provider_status="http_5xx",
            attempt=1,
        )

        assert ctx.api_calls == [APICallRecord(
            service="overpass",
            endpoint="https://overpass-api.de/api/interpreter",
            elapsed_ms=812,
            status_code=503,
            provider_status="http_5xx",
            attempt=1,
        )]

    def test_record_cache(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_cache("amenities", False)
        ctx.record_cache("amenities", True)
        assert [r.hit for r in ctx.cache_lookups] == [False, True]


class TestSummary:
    def test_success_outcome(self):
        ctx = TraceContext(trace_id="t", route="nearby")
        ctx.record_api_call("overpass", "a", 100, 200, "ok", 1)
        s = ctx.summary_dict()
        assert s["final_outcome"] == "success"
        assert s["route"] == "nearby"
        assert s["total_api_calls"] == 1
        assert s["failed_api_calls"] == 0

    def test_partial_outcome(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_api_call("nominatim", "search", 100, 0, "timeout")
        ctx.record_api_call("photon", "search", 100, 200, "ok")
        assert ctx.summary_dict()["final_outcome"] == "partial"

    def test_error_outcome(self):
        ctx = TraceContext(trace_id="t")
        for i in range(6):
            ctx.record_api_call("overpass", "m", 10, 503, "http_5xx", i + 1)
        s = ctx.summary_dict()
        assert s["final_outcome"] == "error"
        assert s["failed_api_calls"] == 6

    def test_cache_hit_outcome(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_cache("amenities", True)
        s = ctx.summary_dict()
        assert s["final_outcome"] == "cache_hit"
        assert s["cache_hits"] == 1
        assert s["cache_misses"] == 0

    def test_empty_outcome(self):
        assert TraceContext(trace_id="t").summary_dict()["final_outcome"] == "empty"

    def test_explicit_outcome_wins(self):
        ctx = TraceContext(trace_id="t", outcome="degraded")
        ctx.record_api_call("overpass", "m", 10, 200, "ok")
        assert ctx.summary_dict()["final_outcome"] == "degraded"

    def test_per_service_rollup(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_api_call("nominatim", "search", 40, 503, "http_5xx")
        ctx.record_api_call("photon", "search", 60, 200, "ok")
        ctx.record_api_call("overpass", "a", 100, 0, "timeout", 1)
        ctx.record_api_call("overpass", "b", 200, 200, "ok", 2)

        assert ctx.summary_dict()["services"] == {
            "nominatim": {"calls": 1, "failed": 1, "elapsed_ms": 40},
            "photon": {"calls": 1, "failed": 0, "elapsed_ms": 60},
            "overpass": {"calls": 2, "failed": 1, "elapsed_ms": 300},
        }

    def test_full_trace_dict(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_api_call("photon", "search", 10, 200, "ok")
        d = ctx.full_trace_dict()
        assert d["trace_id"] == "t"
        assert d["api_calls"][0]["service"] == "photon"
        assert d["api_calls"][0]["attempt"] == 0

    def test_log_summary(self, caplog):
        ctx = TraceContext(trace_id="abc123", route="geocode")
        with caplog.at_level("INFO", logger="px_trace"):
            ctx.log_summary()
        assert "trace=abc123 route=geocode" in caplog.text


class TestThreadLocal:
    def test_set_and_get(self):
        ctx = TraceContext(trace_id="test-tls")
        set_trace(ctx)
        assert get_trace() is ctx
        clear_trace()

    def test_clear(self):
        set_trace(TraceContext(trace_id="test"))
        clear_trace()
        assert get_trace() is None

    def test_isolation_between_threads(self):
        """Each thread should have its own trace context."""
        results = {}

        def worker(name):
            set_trace(TraceContext(trace_id=name))
            time.sleep(0.01)
            results[name] = get_trace().trace_id
            clear_trace()

        threads = [threading.Thread(target=worker, args=(f"thread-{i}",)) for i in (1, 2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == {"thread-1": "thread-1", "thread-2": "thread-2"}
