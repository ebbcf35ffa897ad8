"""
Command-Line Interface - Argument Parsing and Entry Point

Reads a byte range from an NBD export and either writes it to a file or
reports how many bytes were read.

Usage:
    python -m py2nbd --host nbd.example.com --export /exportname --offset 0 --length 65536
    python -m py2nbd --config nbd.yaml --output block.bin
    python -m py2nbd --help
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from py2nbd.client import NBDClient
from py2nbd.core.error_formatting import ErrorFormatter, log_error
from py2nbd.core.errors import ConfigurationError, NBDError
from py2nbd.services.configuration_service import ConfigurationService


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: List of arguments to parse. If None, uses sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="py2nbd",
        description="Read blocks from an NBD export over TLS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --host 192.168.1.20 --export disk0 --offset 512 --length 4096
  %(prog)s --config nbd.yaml --output block.bin
        """
    )

    parser.add_argument("--config", type=str, default=None,
                        help="YAML configuration file (command-line flags override it)")
    parser.add_argument("--host", type=str, default=None, help="NBD server host")
    parser.add_argument("--port", type=int, default=None, help="NBD server port (default: 10809)")
    parser.add_argument("--export", type=str, default=None, help="Export name")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Socket timeout in seconds (default: block)")

    parser.add_argument("--offset", type=int, default=0, help="Byte offset to read from")
    parser.add_argument("--length", type=int, default=65536, help="Number of bytes to read")
    parser.add_argument("--output", type=str, default=None,
                        help="Write the data to this file instead of printing its size")

    parser.add_argument("--insecure", action="store_true",
                        help="Do not verify the server certificate")
    parser.add_argument("--ca-file", type=str, default=None,
                        help="CA bundle used to verify the server certificate")

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set logging level (default: INFO)"
    )

    return parser.parse_args(args)


def validate_args(args: argparse.Namespace) -> bool:
    """Validate parsed command-line arguments.

    Returns:
        True if arguments are valid, False otherwise
    """
    if args.port is not None and not (1 <= args.port <= 65535):
        print(f"Error: Port must be between 1 and 65535, got {args.port}")
        return False

    if args.offset < 0:
        print(f"Error: Offset must not be negative, got {args.offset}")
        return False

    if not (0 <= args.length <= 0xFFFFFFFF):
        print(f"Error: Length must fit in 32 bits, got {args.length}")
        return False

    if args.timeout is not None and args.timeout <= 0:
        print(f"Error: Timeout must be positive, got {args.timeout}")
        return False

    if args.config and not Path(args.config).is_file():
        print(f"Error: Configuration file not found: {args.config}")
        return False

    return True


def setup_logging(level: str):
    """Configure application logging."""
    numeric_level = getattr(logging, level.upper(), None)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 = success, 1 = NBD or configuration error,
        2 = invalid arguments)
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.log_level)

    logger = logging.getLogger(__name__)

    if not validate_args(parsed_args):
        return 2

    formatter = ErrorFormatter(use_colors=sys.stdout.isatty())

    service = ConfigurationService()
    try:
        base = service.load(parsed_args.config) if parsed_args.config else None
        config = service.with_overrides(
            base,
            host=parsed_args.host,
            port=parsed_args.port,
            export_name=parsed_args.export,
            timeout=parsed_args.timeout,
            verify=False if parsed_args.insecure else None,
            ca_file=parsed_args.ca_file,
        )
    except ConfigurationError as e:
        log_error(e, target=logger)
        print(formatter.format_for_user(e))
        return 1

    logger.info(f"Reading {parsed_args.length} bytes at offset {parsed_args.offset} from {config}")

    try:
        with NBDClient.from_config(config) as client:
            data = client.read(parsed_args.offset, parsed_args.length)
            info = client.export_info
    except NBDError as e:
        log_error(e, target=logger)
        print(formatter.format_for_user(e))
        return 1

    if info is not None:
        logger.info(f"Export {info}")

    if parsed_args.output:
        try:
            Path(parsed_args.output).write_bytes(data)
        except OSError as e:
            logger.error(f"Could not write {parsed_args.output}: {e}")
            print(f"Error: Could not write {parsed_args.output}: {e}")
            return 1
        print(f"Wrote {len(data)} bytes to {parsed_args.output}")
    else:
        print(f"Read {len(data)} bytes")

    return 0


if __name__ == "__main__":
    sys.exit(main())
