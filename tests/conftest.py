"""Shared fixtures for the Proximo test suite.

Provides a Flask test client with rate limiting disabled and the
process-wide proximity caches emptied before every test, so no test ever
sees another test's cached amenities or Overpass responses.
"""

import os

import pytest

# Fixed mirror pool so retry-budget assertions don't depend on the host env.
# Must be set BEFORE importing app (the engine reads it at construction).
os.environ["OVERPASS_ENDPOINTS"] = (
    "https://overpass.test-a/api/interpreter,"
    "https://overpass.test-b/api/interpreter,"
    "https://overpass.test-c/api/interpreter"
)
os.environ.pop("SENTRY_DSN", None)

from app import app, limiter, proximity  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_caches():
    """Empty both proximity caches before every test."""
    proximity.amenity_cache.clear()
    proximity.spatial_cache.clear()
    yield
    proximity.amenity_cache.clear()
    proximity.spatial_cache.clear()


@pytest.fixture()
def client():
    """Flask test client without rate limiting (we're testing logic, not limits)."""
    app.config["TESTING"] = True
    limiter.enabled = False
    with app.test_client() as c:
        yield c
    limiter.enabled = True
