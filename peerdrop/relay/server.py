import logging
from typing import Any

import trio
from trio_websocket import WebSocketRequest, WebSocketServer, serve_websocket

from peerdrop.abc import ISignalConnection
from peerdrop.signaling.exceptions import SignalConnectionClosed
from peerdrop.signaling.websocket import WebSocketSignalConnection

from .config import RelayConfig
from .registry import ClientRegistry
from .router import RelayRouter

logger = logging.getLogger(__name__)


class RelayServer:
    """
    Websocket front end of the relay.

    Owns the single ``ClientRegistry`` of the process and injects it into the
    ``RelayRouter``. Each accepted websocket is served by its own task.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        registry: ClientRegistry | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.config.validate()
        self.registry = registry or ClientRegistry(name_pool=self.config.name_pool)
        self.router = RelayRouter(self.registry, self.config)
        self._server: WebSocketServer | None = None

    @property
    def port(self) -> int | None:
        if self._server is None:
            return None
        return self._server.port

    async def serve_connection(self, connection: ISignalConnection) -> None:
        """
        Run one client connection until it closes.

        Errors stay inside this connection: bad input is dropped by the
        router, and the client is always unregistered on the way out.
        """
        session = await self.router.connect(connection)
        try:
            while True:
                try:
                    raw = await connection.receive_message()
                except SignalConnectionClosed:
                    break
                await self.router.handle_message(raw, session)
        finally:
            with trio.CancelScope(shield=True):
                await self.router.disconnect(connection)
                await connection.close()

    async def _handle_request(self, request: WebSocketRequest) -> None:
        try:
            with trio.fail_after(self.config.handshake_timeout):
                ws = await request.accept()
        except trio.TooSlowError:
            logger.debug(
                "Websocket handshake timed out after %ss",
                self.config.handshake_timeout,
            )
            return
        except Exception as e:
            logger.debug("Websocket handshake failed: %s", e)
            return
        await self.serve_connection(WebSocketSignalConnection(ws))

    async def serve(
        self, *, task_status: Any = trio.TASK_STATUS_IGNORED
    ) -> None:
        """Listen on ``config.host:config.port`` until cancelled."""
        async with trio.open_nursery() as nursery:
            self._server = await nursery.start(
                self._serve_websocket,
            )
            logger.info(
                "Relay listening on %s:%s", self.config.host, self._server.port
            )
            task_status.started(self._server)

    async def _serve_websocket(
        self, *, task_status: Any = trio.TASK_STATUS_IGNORED
    ) -> None:
        await serve_websocket(
            self._handle_request,
            self.config.host,
            self.config.port,
            None,
            max_message_size=self.config.max_message_size,
            task_status=task_status,
        )
