import argparse
import asyncio
import logging
from typing import Optional

from .relay import add_relay_arguments, create_relay_configuration, run_relay


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Perfect negotiation signaling relay")
    add_relay_arguments(parser)
    parser.add_argument("--verbose", "-v", action="count")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    try:
        asyncio.run(run_relay(create_relay_configuration(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
