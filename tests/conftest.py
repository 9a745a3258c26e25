from collections.abc import (
    Sequence,
)
import json

import pytest
import trio

from peerdrop.abc import (
    ISignalConnection,
    ITransferEvents,
)
from peerdrop.signaling.exceptions import (
    SignalConnectionClosed,
)
from peerdrop.tools.loopback import (
    LoopbackNetwork,
)


class RecordingConnection(ISignalConnection):
    """Signal connection that records what the relay sends to it."""

    def __init__(
        self, name: str = "", fail: bool = False, yielding: bool = False
    ) -> None:
        self.name = name
        self.fail = fail
        self.yielding = yielding
        self.sent: list[str] = []
        self.closed = False

    async def send_message(self, message: str) -> None:
        if self.yielding:
            await trio.sleep(0)
        if self.fail or self.closed:
            raise SignalConnectionClosed(f"{self.name} is closed")
        self.sent.append(message)

    async def receive_message(self) -> str:
        raise SignalConnectionClosed("RecordingConnection does not receive")

    async def close(self) -> None:
        self.closed = True

    def messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages() if m["type"] == msg_type]

    def __repr__(self) -> str:
        return f"<RecordingConnection {self.name}>"


class RecordingEvents(ITransferEvents):
    """Transfer events sink that keeps every event for assertions."""

    def __init__(self, auto_accept: bool | None = True) -> None:
        # None leaves requests undecided
        self.auto_accept = auto_accept
        self.peer_lists: list[tuple] = []
        self.requests: list = []
        self.progress: list[tuple] = []
        self.files: list[tuple] = []
        self.batches: list[tuple] = []
        self.negotiation_failures: list = []
        self.transfer_failures: list = []

    def on_peers_changed(self, peers: Sequence) -> None:
        self.peer_lists.append(tuple(peers))

    def on_transfer_request(self, request) -> None:
        self.requests.append(request)
        if self.auto_accept is True:
            request.accept()
        elif self.auto_accept is False:
            request.decline()

    def on_progress(self, peer_id, percentage, direction) -> None:
        self.progress.append((peer_id, percentage, direction))

    def on_file_received(self, peer_id, received) -> None:
        self.files.append((peer_id, received))

    def on_batch_complete(self, peer_id, manifest, direction) -> None:
        self.batches.append((peer_id, manifest, direction))

    def on_negotiation_failed(self, failure) -> None:
        self.negotiation_failures.append(failure)

    def on_transfer_failed(self, failure) -> None:
        self.transfer_failures.append(failure)

    def percentages(self, direction) -> list[int]:
        return [p for _, p, d in self.progress if d is direction]


@pytest.fixture
def recording_connection():
    return RecordingConnection


@pytest.fixture
def recording_events():
    return RecordingEvents


@pytest.fixture
def loopback_network():
    return LoopbackNetwork()
