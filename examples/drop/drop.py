import argparse
import logging
import sys

import trio
import trio_asyncio

from peerdrop.client import (
    ClientConfig,
    DirectorySink,
    DropClient,
)
from peerdrop.client.config import (
    DEFAULT_RELAY_URL,
)
from peerdrop.custom_types import (
    TPeerId,
)
from peerdrop.negotiation.session import (
    NegotiationFailure,
)
from peerdrop.signaling.client import (
    open_signaling_client,
)
from peerdrop.transfer.progress import (
    Direction,
)
from peerdrop.transfer.receiver import (
    TransferFailure,
)
from peerdrop.transport.webrtc import (
    AiortcPeerConnection,
)

# Configure minimal logging
logging.basicConfig(level=logging.WARNING)
logging.getLogger("aioice").setLevel(logging.WARNING)
logging.getLogger("aiortc").setLevel(logging.WARNING)


class ConsoleEvents(DirectorySink):
    def __init__(self, directory: str, auto_accept: bool) -> None:
        super().__init__(directory, auto_accept=auto_accept)
        self.failed = False

    def on_progress(
        self, peer_id: TPeerId, percentage: int, direction: Direction
    ) -> None:
        arrow = "->" if direction is Direction.SEND else "<-"
        print(f"\r{arrow} {peer_id[:8]} {percentage:3d}%", end="", flush=True)
        if percentage == 100:
            print()

    def on_negotiation_failed(self, failure: NegotiationFailure) -> None:
        super().on_negotiation_failed(failure)
        print(f"Could not connect to {failure.peer_id}: {failure.reason}")
        self.failed = True

    def on_transfer_failed(self, failure: TransferFailure) -> None:
        super().on_transfer_failed(failure)
        print(f"Transfer failed: {failure.reason}")
        self.failed = True


async def run(args: argparse.Namespace) -> int:
    config = ClientConfig(relay_url=args.relay)
    directory = getattr(args, "directory", ".")
    events = ConsoleEvents(directory, auto_accept=getattr(args, "yes", False))

    async with trio_asyncio.open_loop():
        async with open_signaling_client(config.relay_url) as signaling:
            client = DropClient(
                signaling,
                events,
                AiortcPeerConnection.factory(config.negotiation.ice_servers),
                config,
            )
            async with trio.open_nursery() as nursery:
                await nursery.start(events.run)
                await nursery.start(client.run)
                print(f"Joined as {signaling.device_name} ({client.local_id})")

                if args.command == "peers":
                    if not signaling.peers:
                        await signaling.wait_peers_changed()
                    for peer in signaling.remote_peers:
                        print(f"{peer.display_name}\t{peer.id}")
                    nursery.cancel_scope.cancel()

                elif args.command == "send":
                    with trio.move_on_after(args.wait) as scope:
                        peer = await client.wait_for_peer(args.peer)
                    if scope.cancelled_caught:
                        print(f"No peer named {args.peer!r} joined the relay")
                        nursery.cancel_scope.cancel()
                        return 1
                    print(f"Offering {len(args.files)} file(s) to {peer.display_name}")
                    session = client.send_paths(peer.id, args.files)
                    await session.done.wait()
                    nursery.cancel_scope.cancel()

                else:
                    print(f"Receiving into {directory}; Ctrl-C to stop")

    return 1 if events.failed else 0


def main() -> None:
    description = """
    peerdrop client. Joins a relay, then either lists peers, sends files to a
    peer (by display name or id) or receives files into a directory.
    """
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "-r",
        "--relay",
        default=DEFAULT_RELAY_URL,
        type=str,
        help=f"relay websocket URL (default {DEFAULT_RELAY_URL})",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("peers", help="list peers connected to the relay")

    send = commands.add_parser("send", help="send files to a peer")
    send.add_argument("peer", help="display name or id of the receiving peer")
    send.add_argument("files", nargs="+", help="files to send")
    send.add_argument(
        "-w",
        "--wait",
        default=10.0,
        type=float,
        help="seconds to wait for the peer to show up",
    )

    receive = commands.add_parser("receive", help="receive files into a directory")
    receive.add_argument("directory", help="where received files are written")
    receive.add_argument(
        "-y", "--yes", action="store_true", help="accept every incoming transfer"
    )

    args = parser.parse_args()
    try:
        sys.exit(trio.run(run, args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
