from collections.abc import (
    Awaitable,
    Callable,
)
from typing import TYPE_CHECKING, Any, NewType, cast

from peerdrop.sdp import IceCandidate

if TYPE_CHECKING:
    from peerdrop.abc import (
        IDataChannel,
        IPeerConnection,
    )
else:
    IDataChannel = cast(type, object)
    IPeerConnection = cast(type, object)

TPeerId = NewType("TPeerId", str)
SignalHandlerFn = Callable[[TPeerId, dict[str, Any]], Awaitable[None]]
PeerConnectionFactory = Callable[[], IPeerConnection]
CandidateHandlerFn = Callable[[IceCandidate], Awaitable[None]]
ChannelOpenHandlerFn = Callable[[Any, IDataChannel], Awaitable[None]]
