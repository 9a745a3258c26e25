import argparse
import logging

import trio

from peerdrop.relay import (
    RelayConfig,
    RelayServer,
)
from peerdrop.relay.config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
)

# Configure minimal logging
logging.basicConfig(level=logging.WARNING)


async def run(host: str, port: int) -> None:
    server = RelayServer(RelayConfig(host=host, port=port))
    async with trio.open_nursery() as nursery:
        await nursery.start(server.serve)
        print(f"Relay listening on ws://{host}:{server.port}")
        print(
            "\nRun this in other consoles to share files:\n\n"
            f"peerdrop-client -r ws://<THIS_HOST_IP>:{server.port} receive ./inbox -y\n"
            f"peerdrop-client -r ws://<THIS_HOST_IP>:{server.port} send <PEER> <FILE>\n"
        )
        print("Waiting for clients...")


def main() -> None:
    description = """
    Signaling relay for peerdrop. Clients on the local network connect here to
    find each other and exchange connection offers; file data never passes
    through the relay.
    """
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--host", default=DEFAULT_HOST, type=str, help="interface to listen on"
    )
    parser.add_argument(
        "-p", "--port", default=DEFAULT_PORT, type=int, help="port to listen on"
    )
    args = parser.parse_args()
    try:
        trio.run(run, args.host, args.port)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
