"""Command-line entry point: detect stay points in a csv of pings.

Reads ``user_id,timestamp,x,y`` rows (header optional) from a file or stdin
and writes one ``user_id,start,end,x,y`` row per visit.
"""

import argparse
import sys

import staypoints.io.base as loader
from staypoints import constants
from staypoints.stop_detection.sequential import sequential_per_user


def _positive_float(value):
    number = float(value)
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {value}")
    return number

def _non_negative_int(value):
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative integer, got {value}")
    return number

def _positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number

def build_parser():
    parser = argparse.ArgumentParser(
        prog="staypoints",
        description="Extract stay points (visits) from time-ordered position pings.")
    parser.add_argument("input", nargs="?", default="-",
                        help="csv of pings; '-' or omitted reads stdin")
    parser.add_argument("-o", "--output", default=None,
                        help="write visits here instead of stdout")
    parser.add_argument("--max-distance", type=_positive_float, default=constants.DEFAULT_MAX_DISTANCE,
                        help="visits must have a bounding-box diagonal below this (default: %(default)s)")
    parser.add_argument("--min-duration", type=_non_negative_int, default=constants.DEFAULT_MIN_DURATION,
                        help="visits must last at least this long, in timestamp units (default: %(default)s)")
    parser.add_argument("--grouping", choices=constants.GROUPING_STRATEGIES, default="contiguous",
                        help="how pings are split per user (default: %(default)s)")
    parser.add_argument("--datetime-format", default=None,
                        help="the time field is a datetime string in this strftime format; "
                             "visits are written in the same format")
    parser.add_argument("--n-jobs", type=_positive_int, default=1,
                        help="worker processes, one user group per task (default: %(default)s)")
    parser.add_argument("--duration", action="store_true",
                        help="append a duration column (end - start)")
    parser.add_argument("--header", action="store_true",
                        help="write a header row")
    parser.add_argument("--skip-bad-rows", action="store_true",
                        help="drop malformed rows with a warning instead of failing")
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)

    source = sys.stdin if args.input == "-" else args.input
    try:
        data = loader.from_file(
            source,
            fixed_format=args.datetime_format,
            on_bad_rows="skip" if args.skip_bad_rows else "raise",
        )
        visits = sequential_per_user(
            data,
            max_distance=args.max_distance,
            min_duration=args.min_duration,
            grouping=args.grouping,
            n_jobs=args.n_jobs,
            complete_output=args.duration,
        )
    except (OSError, ValueError) as e:
        print(f"staypoints: error: {e}", file=sys.stderr)
        return 2

    if args.duration:
        # duration is in seconds for datetime input, timestamp units otherwise
        visits = visits.drop(columns=["n_pings", "diameter", "max_gap"])

    loader.to_file(
        visits,
        args.output if args.output is not None else sys.stdout,
        fixed_format=args.datetime_format,
        header=args.header,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
