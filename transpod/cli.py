"""Command-line harness: fetch a feed, limit its items, print the result."""

import argparse
import os
import sys

from .config import Config
from .fetcher import FeedFetcher
from .logging_config import setup_structured_logging
from .models import TranspodError
from .transform import FeedTransformer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transpod",
        description="Limit a podcast feed to its first N episodes.",
    )
    parser.add_argument("feed_url", help="RSS/XML feed URL of the podcast")
    parser.add_argument(
        "limit", nargs="?", type=int, default=None, help="episodes to keep (default 10)"
    )
    parser.add_argument(
        "--self-url", default="", help="URL written into the feed's self-link"
    )
    parser.add_argument(
        "--count-only", action="store_true", help="print only the item counts"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_structured_logging(os.getenv("LOG_LEVEL", "WARNING"))

    try:
        config = Config()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    limit = config.default_limit if args.limit is None else args.limit
    if limit < 1:
        print("Error: limit must be a positive number", file=sys.stderr)
        return 1

    try:
        xml_text = FeedFetcher(config.get_fetch_config()).fetch(args.feed_url)
        result = FeedTransformer(config.get_transform_config()).transform_with_stats(
            xml_text, limit, args.self_url
        )
    except TranspodError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(
        f"Items: {result.items_emitted} of {result.items_seen} "
        f"({len(result.xml)} characters)",
        file=sys.stderr,
    )
    if not args.count_only:
        print(result.xml)
    return 0


if __name__ == "__main__":
    sys.exit(main())
