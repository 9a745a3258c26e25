"""
Registry of clients connected to the relay.

One registry exists per relay process. It is the only owner of
``ClientSession`` objects; everything else sees ``PeerSummary`` snapshots.
"""

from collections.abc import (
    Callable,
    Sequence,
)
from dataclasses import (
    dataclass,
    field,
)
from datetime import (
    datetime,
    timezone,
)
import logging
import random
import uuid

from peerdrop.abc import (
    ISignalConnection,
)
from peerdrop.custom_types import (
    TPeerId,
)

from .config import (
    DEFAULT_NAME_POOL,
    FALLBACK_NAME_PREFIX,
)
from .exceptions import (
    RegistryError,
)

logger = logging.getLogger(__name__)


def _new_session_id() -> TPeerId:
    return TPeerId(uuid.uuid4().hex)


@dataclass(frozen=True)
class PeerSummary:
    id: TPeerId
    display_name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "deviceName": self.display_name}


@dataclass(eq=False)
class ClientSession:
    id: TPeerId
    display_name: str
    connection: ISignalConnection
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> PeerSummary:
        return PeerSummary(id=self.id, display_name=self.display_name)


class ClientRegistry:
    """
    Tracks connected clients and hands out ids and display names.

    Display names are unique among connected sessions. They come from
    ``name_pool``; once every pool name is taken the registry falls back to
    ``User<N>``.
    """

    def __init__(
        self,
        name_pool: Sequence[str] = DEFAULT_NAME_POOL,
        id_factory: Callable[[], str] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._name_pool = tuple(name_pool)
        self._id_factory = id_factory or _new_session_id
        self._rng = rng or random.Random()
        # Insertion ordered; both maps always hold the same sessions
        self._by_connection: dict[ISignalConnection, ClientSession] = {}
        self._by_id: dict[TPeerId, ClientSession] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._by_id

    def _pick_display_name(self) -> str:
        used = {session.display_name for session in self._by_id.values()}
        available = [name for name in self._name_pool if name not in used]
        if available:
            return self._rng.choice(available)

        n = len(self._by_id) + 1
        while f"{FALLBACK_NAME_PREFIX}{n}" in used:
            n += 1
        return f"{FALLBACK_NAME_PREFIX}{n}"

    def register(self, connection: ISignalConnection) -> ClientSession:
        """
        Register a new connection.

        :raises RegistryError: if the connection is already registered or the
            generated id collides with a registered one
        """
        if connection in self._by_connection:
            raise RegistryError(f"Connection {connection!r} is already registered")

        session_id = TPeerId(self._id_factory())
        if session_id in self._by_id:
            raise RegistryError(f"Generated session id {session_id} is already in use")

        session = ClientSession(
            id=session_id,
            display_name=self._pick_display_name(),
            connection=connection,
        )
        self._by_connection[connection] = session
        self._by_id[session_id] = session
        logger.debug("Registered %s as %r", session.id, session.display_name)
        return session

    def unregister(self, connection: ISignalConnection) -> ClientSession | None:
        """Remove the session of ``connection``; no-op if it is unknown."""
        session = self._by_connection.pop(connection, None)
        if session is None:
            return None
        self._by_id.pop(session.id, None)
        logger.debug("Unregistered %s (%r)", session.id, session.display_name)
        return session

    def lookup(self, session_id: str) -> ClientSession | None:
        return self._by_id.get(TPeerId(session_id))

    def session_for(self, connection: ISignalConnection) -> ClientSession | None:
        return self._by_connection.get(connection)

    def list_peers(self) -> tuple[PeerSummary, ...]:
        """Snapshot of all connected sessions in registration order."""
        return tuple(session.summary() for session in self._by_id.values())

    def sessions(self) -> tuple[ClientSession, ...]:
        return tuple(self._by_id.values())
