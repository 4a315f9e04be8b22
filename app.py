import os
import atexit
import logging
import uuid

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

# Module-level config in the imports below is read from the environment.
load_dotenv()

from errors import InvalidInputError  # noqa: E402
from health_monitor import get_status as get_health_status  # noqa: E402
from proximity import ProximityService  # noqa: E402
from px_trace import TraceContext, get_trace, set_trace, clear_trace  # noqa: E402

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions
    from errors import ProviderUnavailableError, AllProvidersExhaustedError

    def _sentry_before_send(event, hint):
        """Demote expected upstream failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            if exc_type is not None and issubclass(
                exc_type, (ProviderUnavailableError, AllProvidersExhaustedError)
            ):
                sentry_sdk.add_breadcrumb(category="upstream", message=msg, level="warning")
                return None
            if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
                sentry_sdk.add_breadcrumb(category="http", message=msg, level="warning")
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Proxy fix: behind a PaaS reverse proxy, rewrite request.remote_addr to the
# real client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: the public geocoders and Overpass mirrors are shared
# resources; keep one client from burning through them. In-memory storage
# is per-process (with 2 gunicorn workers the effective limit is ~2x).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Proximity service: one per process. Cache sweepers are started by
# gunicorn's post_fork hook (or __main__ in development) and stopped on
# worker exit.
# ---------------------------------------------------------------------------
proximity = ProximityService.from_env()


# ---------------------------------------------------------------------------
# Request ID + trace middleware
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    set_trace(TraceContext(trace_id=g.request_id, route=request.endpoint or ""))


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


@app.teardown_request
def _teardown_request(exc):
    trace = get_trace()
    if trace:
        trace.log_summary()
    clear_trace()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/geocode")
def geocode():
    """GET /geocode?address=...&city=...

    200 with coordinates, or 200 with success=false when no provider could
    resolve the address. 400 only when both address and city are missing.
    """
    payload = proximity.geocode(request.args.get("address"), request.args.get("city"))
    return jsonify(payload)


@app.route("/nearby")
def nearby():
    """GET /nearby?lat=23.0271&lng=72.5586&radius=2

    radius is in km (default 2, capped at 3). Always 200 for valid input,
    including when every Overpass mirror is down.
    """
    payload = proximity.nearby(
        request.args.get("lat"),
        request.args.get("lng"),
        request.args.get("radius"),
    )
    return jsonify(payload)


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    return jsonify({
        "status": "ok",
        "services": get_health_status(),
        "caches": proximity.cache_stats(),
    })


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(InvalidInputError)
def invalid_input(e):
    return jsonify({"success": False, "error": str(e)}), 400


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "success": False,
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "error": "Not found"}), 404


@app.errorhandler(Exception)
def internal_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"success": False, "error": e.description}), e.code
    logger.exception(
        "Unhandled error in %s [request_id=%s]",
        request.path, getattr(g, "request_id", "unknown"),
    )
    return jsonify({"success": False, "error": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    # Development: run the cache sweepers in this process
    proximity.start()
    atexit.register(proximity.shutdown)
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
