"""Command-line entry point.

Examples:
  tile-mosaic --config areas.json
  tile-mosaic --area downtown -118.2537 34.0422 -118.2437 34.0522 --zoom 18 --no-grid
  TILE_MOSAIC_PROVIDER__NAME=esri tile-mosaic --config areas.json --output-dir out/
"""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from tile_mosaic.backend.service import MosaicService, results_frame
from tile_mosaic.config import LoggingSettings, Settings, load_settings
from tile_mosaic.exceptions import ConfigurationError
from tile_mosaic.logger import configure_logging, get_logger
from tile_mosaic.models import Area

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _override(model: M, **changes: object) -> M:
    """Return a re-validated copy of a settings model with some fields replaced."""
    updates = {key: value for key, value in changes.items() if value is not None}
    if not updates:
        return model
    return type(model).model_validate({**model.model_dump(), **updates})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tile-mosaic",
        description="Capture map areas as single large images stitched from map tiles.",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument(
        "--area",
        nargs=5,
        action="append",
        metavar=("NAME", "MIN_LON", "MIN_LAT", "MAX_LON", "MAX_LAT"),
        help="Area to capture as a bounding box; may be repeated",
    )
    parser.add_argument("--provider", help="Tile provider (esri, esri-streets, esri-topo, ...)")
    parser.add_argument("--zoom", type=int, help="Zoom level")
    parser.add_argument("--tile-size", type=int, help="Tile size in pixels")
    parser.add_argument("--max-tiles", type=int, help="Maximum tiles per area")
    parser.add_argument(
        "--grid",
        dest="use_3x3_grid",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Expand each area to a 3x3 grid of same-sized neighbours",
    )
    parser.add_argument("--output-dir", type=Path, help="Output folder for final images")
    parser.add_argument("--data-folder", type=Path, help="Tile cache and scratch folder")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    return parser


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Load settings and apply command-line overrides."""
    settings = load_settings(args.config)
    areas = settings.areas
    if args.area:
        areas = [
            Area(name=name, bbox=(float(a), float(b), float(c), float(d)))
            for name, a, b, c, d in args.area
        ]
    return settings.model_copy(
        update={
            "areas": areas,
            "provider": _override(settings.provider, name=args.provider),
            "cache": _override(settings.cache, data_folder=args.data_folder),
            "mosaic": _override(
                settings.mosaic,
                zoom=args.zoom,
                tile_size=args.tile_size,
                max_tiles=args.max_tiles,
                use_3x3_grid=args.use_3x3_grid,
                output_dir=args.output_dir,
            ),
        }
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the capture pipeline.

    Returns:
        0 if every area succeeded, 1 if any area failed, 2 on configuration errors.
    """
    args = build_parser().parse_args(argv)
    try:
        settings = resolve_settings(args)
    except (ConfigurationError, ValidationError, ValueError) as exception:
        configure_logging(level=args.log_level, settings=LoggingSettings())
        logger.error(f"Invalid configuration: {exception}")
        return 2

    configure_logging(level=args.log_level, settings=settings.logging)
    try:
        service = MosaicService(settings)
        results = service.run()
    except ConfigurationError as exception:
        logger.error(str(exception))
        return 2

    print(results_frame(results).to_string(index=False))
    return 0 if all(result.success for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
