#!/usr/bin/env python3
"""
Run a geocode and/or nearby-amenity lookup from the command line, without
the web server, and print the exact JSON the API would return plus the
request trace (every provider/mirror attempt with timing).

Uses the same environment configuration as the app (.env is loaded), so
it is the quickest way to check an OVERPASS_ENDPOINTS or GEOCODE_* change.

Usage:
    python scripts/check_nearby.py --lat 23.0271 --lng 72.5586
    python scripts/check_nearby.py --lat 23.0271 --lng 72.5586 --radius 3
    python scripts/check_nearby.py --address "Navrangpura" --city Ahmedabad
    python scripts/check_nearby.py --city Pune --nearby   # geocode, then search there
"""

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Module-level config (timeouts, endpoints, cache TTLs) is read at import.
load_dotenv()

from errors import InvalidInputError
from proximity import ProximityService
from px_trace import TraceContext, clear_trace, set_trace

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _print_json(label, payload):
    print(f"\n--- {label} ---")
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def run(args) -> int:
    service = ProximityService.from_env()
    trace = TraceContext(trace_id="cli", route="check_nearby")
    set_trace(trace)
    try:
        lat, lng = args.lat, args.lng
        if args.address or args.city:
            geo = service.geocode(args.address, args.city)
            _print_json("geocode", geo)
            if not geo["success"]:
                return 1
            if args.nearby:
                lat, lng = geo["coordinates"]["lat"], geo["coordinates"]["lng"]

        if lat is not None or lng is not None:
            _print_json("nearby", service.nearby(lat, lng, args.radius))

        _print_json("trace", trace.full_trace_dict())
    except InvalidInputError as e:
        logger.error("Invalid input: %s", e)
        return 2
    finally:
        clear_trace()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a Proximo lookup without the web server")
    parser.add_argument("--lat", type=str, default=None, help="Latitude of the search center.")
    parser.add_argument("--lng", type=str, default=None, help="Longitude of the search center.")
    parser.add_argument(
        "--radius", type=str, default=None,
        help="Search radius in km (default 2, capped at 3).",
    )
    parser.add_argument("--address", type=str, default="", help="Street address to geocode.")
    parser.add_argument("--city", type=str, default="", help="City to geocode.")
    parser.add_argument(
        "--nearby", action="store_true",
        help="After geocoding, search for amenities around the result.",
    )
    args = parser.parse_args()

    if not (args.lat or args.lng or args.address or args.city):
        parser.error("give --lat/--lng, or --address/--city")
    sys.exit(run(args))
