"""
Free-text address → coordinate resolution over a chain of public geocoders.

Providers are tried in order (Nominatim, then Photon). Each attempt issues
one bounded-timeout HTTP request and yields a GeocodeAttempt: either a
result or a ProviderUnavailableError. The chain stops at the first result.
Provider failures are logged and recorded, never raised: when every
provider fails, resolve() returns None and the caller renders a normal
"address not found" response.

Public geocoders are rate-limited and occasionally down; falling back to a
secondary provider trades some precision for availability.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

import requests

from errors import ProviderUnavailableError
from models import Coordinate, GeocodeResult
from px_trace import get_trace

logger = logging.getLogger(__name__)

GEOCODE_TIMEOUT = float(os.environ.get("GEOCODE_TIMEOUT", "8"))

# Nominatim's usage policy requires an identifying User-Agent.
GEOCODE_USER_AGENT = os.environ.get(
    "GEOCODE_USER_AGENT", "Proximo/1.0 (+https://proximo.app)"
)

DEFAULT_COUNTRY = "India"


def build_search_query(
    address: Optional[str],
    city: Optional[str],
    country: Optional[str] = DEFAULT_COUNTRY,
) -> str:
    """Join address, city and country into one geocoder search string.

    Blank parts are dropped: ("12 MG Road", None) → "12 MG Road, India".
    """
    parts = [p.strip() for p in (address, city, country) if p and p.strip()]
    return ", ".join(parts)


@dataclass(frozen=True)
class GeocodeAttempt:
    """Outcome of asking one provider: exactly one of result/error is set."""
    provider: str
    result: Optional[GeocodeResult] = None
    error: Optional[ProviderUnavailableError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class GeocodingProvider:
    """One geocoding backend.

    Subclasses set ``name`` and ``url`` and implement ``_params`` and
    ``_parse``. ``_parse`` returns None for an empty result set and raises
    ValueError/KeyError/TypeError/IndexError/AttributeError for a
    malformed one.
    """

    name = "provider"
    url = ""

    def __init__(self, timeout: float = GEOCODE_TIMEOUT, user_agent: str = GEOCODE_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def _params(self, query: str) -> dict:
        raise NotImplementedError

    def _headers(self) -> dict:
        return {"Accept": "application/json"}

    def _parse(self, data: Any) -> Optional[GeocodeResult]:
        raise NotImplementedError

    def attempt(self, query: str, session: requests.Session) -> GeocodeAttempt:
        """Issue one request and classify the outcome. Never raises."""
        t0 = time.monotonic()
        status_code = 0
        try:
            resp = session.get(
                self.url,
                params=self._params(query),
                headers=self._headers(),
                # Bounds the connect and each socket read, not the whole transfer.
                timeout=self.timeout,
            )
            status_code = resp.status_code
            if not 200 <= status_code < 300:
                reason = "rate_limit" if status_code == 429 else (
                    "http_5xx" if status_code >= 500 else "http_4xx"
                )
                raise ProviderUnavailableError(
                    self.name, reason, f"HTTP {status_code}", status_code=status_code
                )
            try:
                data = resp.json()
            except ValueError:
                raise ProviderUnavailableError(
                    self.name, "parse_error", "non-JSON response", status_code=status_code
                )
            try:
                result = self._parse(data)
            except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
                raise ProviderUnavailableError(
                    self.name, "parse_error", f"unexpected payload shape: {e}",
                    status_code=status_code,
                )
            if result is None:
                raise ProviderUnavailableError(
                    self.name, "empty", "no results", status_code=status_code
                )
        except ProviderUnavailableError as e:
            self._record(t0, status_code, e.reason, success=False, error=str(e))
            return GeocodeAttempt(provider=self.name, error=e)
        except requests.exceptions.Timeout:
            e = ProviderUnavailableError(
                self.name, "timeout", f"request timeout after {self.timeout}s"
            )
            self._record(t0, 0, "timeout", success=False, error="timeout")
            return GeocodeAttempt(provider=self.name, error=e)
        except requests.exceptions.RequestException as exc:
            e = ProviderUnavailableError(self.name, "network", str(exc))
            self._record(t0, 0, "network", success=False, error=str(exc))
            return GeocodeAttempt(provider=self.name, error=e)

        self._record(t0, status_code, "ok", success=True)
        return GeocodeAttempt(provider=self.name, result=result)

    def _record(
        self,
        t0: float,
        status_code: int,
        provider_status: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        elapsed_ms = int((time.monotonic() - t0) * 1000)
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service=self.name,
                endpoint="search",
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )
        try:
            from health_monitor import record_call
            record_call(self.name, success, elapsed_ms, error)
        except Exception:
            logger.debug("Health tracking failed for %s", self.name, exc_info=True)


class NominatimProvider(GeocodingProvider):
    """OpenStreetMap Nominatim: JSON array of ``{lat, lon, display_name}``."""

    name = "nominatim"
    url = "https://nominatim.openstreetmap.org/search"

    def _params(self, query: str) -> dict:
        return {"q": query, "format": "json", "limit": 1}

    def _headers(self) -> dict:
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    def _parse(self, data: Any) -> Optional[GeocodeResult]:
        if not isinstance(data, list):
            raise TypeError(f"expected a JSON array, got {type(data).__name__}")
        if not data:
            return None
        first = data[0]
        return GeocodeResult(
            coordinate=Coordinate(float(first["lat"]), float(first["lon"])),
            display_name=str(first.get("display_name") or ""),
            provider=self.name,
        )


class PhotonProvider(GeocodingProvider):
    """Komoot Photon: GeoJSON FeatureCollection, coordinates as ``[lon, lat]``."""

    name = "photon"
    url = "https://photon.komoot.io/api/"

    def _params(self, query: str) -> dict:
        return {"q": query, "limit": 1}

    def _parse(self, data: Any) -> Optional[GeocodeResult]:
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        features = data.get("features")
        if not features:
            return None
        feature = features[0]
        lon, lat = feature["geometry"]["coordinates"][:2]
        properties = feature.get("properties")
        if not isinstance(properties, dict):
            properties = {}
        return GeocodeResult(
            coordinate=Coordinate(float(lat), float(lon)),
            display_name=str(properties.get("name") or "Unknown"),
            provider=self.name,
        )


def default_providers(timeout: float = GEOCODE_TIMEOUT) -> List[GeocodingProvider]:
    return [NominatimProvider(timeout=timeout), PhotonProvider(timeout=timeout)]


class GeoProviderChain:
    """Try each provider in order; the first usable result wins."""

    def __init__(
        self,
        providers: Optional[Sequence[GeocodingProvider]] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.providers = list(providers) if providers is not None else default_providers()
        self._session_factory = session_factory

    def attempts(self, query: str) -> List[GeocodeAttempt]:
        """Run the chain and return every attempt made, in order.

        Stops after the first successful attempt.
        """
        made: List[GeocodeAttempt] = []
        for provider in self.providers:
            # One session per attempt, closed even after a timeout.
            session = self._session_factory()
            session.trust_env = False
            try:
                attempt = provider.attempt(query, session)
            finally:
                session.close()
            made.append(attempt)
            if attempt.ok:
                break
            logger.warning(
                "Geocoder %s failed for %r (%s), trying next provider",
                provider.name, query, attempt.error,
            )
        return made

    def resolve(self, query: str) -> Optional[GeocodeResult]:
        """Return the first provider's result, or None when all fail."""
        if not query or not query.strip():
            return None
        made = self.attempts(query)
        if made and made[-1].ok:
            return made[-1].result
        logger.warning(
            "All %d geocoders failed for %r", len(self.providers), query
        )
        return None
