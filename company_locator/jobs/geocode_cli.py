"""Command line lookups against the configured geocoder."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from company_locator.core.config import ConfigError
from company_locator.core.geocoding import GeocodeNotFound, GeocodeServiceUnavailable, GeocodingClient

logger = logging.getLogger(__name__)

EXIT_SERVICE_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_NOT_FOUND = 3


def _parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve an address to coordinates (or back).")
    parser.add_argument("address", nargs="?", help="Address to geocode, e.g. '1600 Amphitheatre Parkway'")
    parser.add_argument(
        "--reverse",
        nargs=2,
        type=float,
        metavar=("LAT", "LNG"),
        help="Look up a readable label for a coordinate pair instead",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    if not args.address and not args.reverse:
        parser.error("an address or --reverse LAT LNG is required")
    return args


def run(args: argparse.Namespace) -> int:
    client = GeocodingClient()
    try:
        if args.reverse:
            lat, lng = args.reverse
            print(client.reverse_geocode(lat, lng))
        else:
            coords = client.forward_geocode(args.address)
            print(f"{coords.latitude:.6f}, {coords.longitude:.6f}")
    except GeocodeNotFound as exc:
        logger.warning("No match: %s", exc)
        return EXIT_NOT_FOUND
    except GeocodeServiceUnavailable as exc:
        logger.error("Map service is unavailable: %s", exc)
        return EXIT_SERVICE_FAILURE
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_cli_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    try:
        code = run(args)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc
    sys.exit(code)


if __name__ == "__main__":
    main()
