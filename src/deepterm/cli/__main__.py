"""Entry point for running the CLI as a module."""

import argparse
import asyncio
import sys

from .deepterm_cli import main


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Interactive terminal chat with the DeepTerm assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help="Assistant chat endpoint (default: from config)",
    )
    parser.add_argument(
        "--upstream",
        type=str,
        default=None,
        help="Dashboard data API base URL (default: from config)",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model id to request from the assistant backend",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging on stderr",
    )

    return parser.parse_args()


def cli_entry() -> None:
    """CLI entry point."""
    args = parse_args()

    try:
        asyncio.run(
            main(
                endpoint=args.endpoint,
                upstream=args.upstream,
                model=args.model,
                debug=args.debug,
            )
        )
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli_entry()
