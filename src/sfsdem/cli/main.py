from __future__ import annotations

import argparse
import logging
from pathlib import Path

from sfsdem.cli.refine_dem import run_refine_dem
from sfsdem.errors import SfsError
from sfsdem.options import DEFAULT_MAX_ITERATIONS, DEFAULT_PHASE_COEFFS, DEFAULT_SMOOTHNESS_WEIGHT, SESSION_TYPES, parse_options

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sfsdem",
        description="Refine a DEM with shape-from-shading so that predicted reflectance matches image brightness.",
        usage="%(prog)s -i <input DEM> -n <max iterations> -o <output prefix> <images> [other options]",
    )
    parser.add_argument("input_images", nargs="*", type=Path, help="Radiance images (only the first is optimized).")
    parser.add_argument("-i", "--input-dem", default="", help="The input DEM to refine using SfS.")
    parser.add_argument("-o", "--output-prefix", default="", help="Prefix for output filenames.")
    parser.add_argument(
        "-n",
        "--max-iterations",
        type=int,
        default=DEFAULT_MAX_ITERATIONS,
        help="Set the maximum number of iterations.",
    )
    parser.add_argument(
        "--smoothness-weight",
        type=float,
        default=DEFAULT_SMOOTHNESS_WEIGHT,
        help="A larger value will result in a smoother solution.",
    )
    parser.add_argument("--threads", type=int, default=0, help="Thread count (0 = library default).")
    parser.add_argument("-t", "--session-type", default="pinhole", choices=list(SESSION_TYPES))
    parser.add_argument(
        "--cameras",
        nargs="+",
        type=Path,
        default=None,
        help="Camera files, one per image (default: <image>.json next to each image).",
    )
    parser.add_argument("--sun-positions", type=Path, default=None, help="File of 'key x y z' sun positions.")
    parser.add_argument(
        "--spacecraft-positions", type=Path, default=None, help="File of 'key x y z' spacecraft positions."
    )
    parser.add_argument(
        "--reflectance-type",
        default="lunar_lambert",
        choices=["none", "lambert", "lunar_lambert"],
    )
    parser.add_argument(
        "--phase-coeffs",
        nargs=2,
        type=float,
        default=list(DEFAULT_PHASE_COEFFS),
        metavar=("C1", "C2"),
        help="Phase correction exp(-C1*alpha) + C2 of the Lunar-Lambert law.",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        options = parse_options(vars(args))
        report = run_refine_dem(options)
    except SfsError as e:
        logger.error("%s", e)
        return 1

    print(report.full_report())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
