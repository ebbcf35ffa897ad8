"""
Example: Reading blocks from an NBD export

Connects to an NBD server, upgrades to TLS, and dumps the first sector of
the export as hex along with the export metadata.

Run with:
    python -m examples.read_export_example nbd.example.com /exportname
"""

import sys
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from py2nbd import NBDClient, NBDError, TLSConfig
from py2nbd.core.error_formatting import format_error


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

SECTOR_SIZE = 512


def hexdump(data: bytes, width: int = 16) -> str:
    lines = []
    for start in range(0, len(data), width):
        chunk = data[start:start + width]
        lines.append(f"{start:08x}  {chunk.hex(' ')}")
    return "\n".join(lines)


def main():
    if len(sys.argv) < 3:
        print("Usage: python -m examples.read_export_example HOST EXPORT [--insecure]")
        return 2

    host, export_name = sys.argv[1], sys.argv[2]
    tls = TLSConfig(verify="--insecure" not in sys.argv[3:])

    try:
        with NBDClient(host, 10809, export_name, tls=tls, timeout=10.0) as client:
            info = client.connect()
            print(f"Export: {info}")
            print(hexdump(client.read(0, min(SECTOR_SIZE, info.size))))
    except NBDError as e:
        print(format_error(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
