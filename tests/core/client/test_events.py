import threading

import pytest
import trio

from peerdrop.client.events import (
    DirectorySink,
    LoggingTransferEvents,
    unique_path,
)
from peerdrop.negotiation.session import (
    IncomingTransferRequest,
    NegotiationFailure,
)
from peerdrop.negotiation.state_machine import (
    NegotiationState,
)
from peerdrop.transfer.manifest import (
    FileEntry,
    TransferManifest,
)
from peerdrop.transfer.receiver import (
    ReceivedFile,
)


def _request():
    return IncomingTransferRequest("peer", TransferManifest([FileEntry("a.txt", 3)]))


@pytest.mark.parametrize("auto_accept", [True, False])
def test_auto_accept(auto_accept):
    request = _request()
    LoggingTransferEvents(auto_accept=auto_accept).on_transfer_request(request)
    assert request.accepted is auto_accept


def test_negotiation_failure_is_dismissed():
    failure = NegotiationFailure("peer", "timeout", NegotiationState.OFFER_CREATED)
    LoggingTransferEvents().on_negotiation_failed(failure)
    assert failure.dismissed


def test_unique_path(tmp_path):
    assert unique_path(tmp_path, "a.txt") == tmp_path / "a.txt"
    (tmp_path / "a.txt").write_text("")
    (tmp_path / "a (1).txt").write_text("")
    assert unique_path(tmp_path, "a.txt") == tmp_path / "a (2).txt"

    (tmp_path / "README").write_text("")
    assert unique_path(tmp_path, "README") == tmp_path / "README (1)"


async def write_all(sink, *received):
    async with trio.open_nursery() as nursery:
        await nursery.start(sink.run)
        for item in received:
            sink.on_file_received("peer", item)
        await sink.aclose()


@pytest.mark.trio
async def test_directory_sink_never_overwrites(tmp_path):
    inbox = tmp_path / "inbox"
    sink = DirectorySink(inbox)
    await write_all(
        sink,
        ReceivedFile("a.txt", "a.txt", b"first"),
        ReceivedFile("a.txt", "a.txt", b"second"),
    )

    assert sink.saved == [inbox / "a.txt", inbox / "a (1).txt"]
    assert (inbox / "a.txt").read_bytes() == b"first"
    assert (inbox / "a (1).txt").read_bytes() == b"second"


@pytest.mark.trio
async def test_directory_sink_stays_inside_directory(tmp_path):
    inbox = tmp_path / "inbox"
    sink = DirectorySink(inbox)
    await write_all(sink, ReceivedFile("../escape.txt", "../escape.txt", b"x"))
    assert sink.saved == [inbox / "escape.txt"]
    assert not (tmp_path / "escape.txt").exists()


def test_directory_sink_declines_by_default(tmp_path):
    request = _request()
    DirectorySink(tmp_path).on_transfer_request(request)
    assert request.accepted is False


@pytest.mark.trio
async def test_directory_sink_writes_off_the_event_loop(tmp_path, monkeypatch):
    sink = DirectorySink(tmp_path)
    loop_thread = threading.get_ident()
    writer_threads = []
    save = sink._save

    def recording_save(received):
        writer_threads.append(threading.get_ident())
        return save(received)

    monkeypatch.setattr(sink, "_save", recording_save)
    await write_all(sink, ReceivedFile("a.txt", "a.txt", b"a"))

    assert sink.saved == [tmp_path / "a.txt"]
    assert writer_threads and loop_thread not in writer_threads


@pytest.mark.trio
async def test_directory_sink_after_close_drops_files(tmp_path):
    sink = DirectorySink(tmp_path)
    await write_all(sink)
    sink.on_file_received("peer", ReceivedFile("late.txt", "late.txt", b"x"))
    assert sink.saved == []
    assert not (tmp_path / "late.txt").exists()
