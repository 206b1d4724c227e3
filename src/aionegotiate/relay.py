import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Optional, Union
from urllib.parse import unquote, urlsplit

from websockets.asyncio.server import ServerConnection
from websockets.asyncio.server import serve as websocket_serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from .exceptions import SessionFullError
from .signaling import RELAYED_TYPES, Role, RoleAssignment, object_to_string

logger = logging.getLogger(__name__)

CLOSE_SESSION_FULL = 4409
DEFAULT_CAPACITY = 2

_Message = Union[str, bytes]


@dataclass
class RelayConfiguration:
    """
    The :class:`RelayConfiguration` dictionary configures a
    :class:`SignalingRelay`.
    """

    host: str = "0.0.0.0"
    "The address the relay listens on."
    port: int = 8080
    "The port the relay listens on."
    capacity: Optional[int] = DEFAULT_CAPACITY
    "The maximum number of connections per session, `None` for no limit."


@dataclass
class ConnectionRecord:
    id: int
    role: Role
    channel: Any
    session: str


class RelaySession:
    """
    The live connections sharing a session identifier.

    `connections` is only read or modified while holding `lock`.
    """

    def __init__(self, name: str, capacity: Optional[int]) -> None:
        self.capacity = capacity
        self.connections: dict[Any, ConnectionRecord] = {}
        self.lock = asyncio.Lock()
        self.name = name


def session_from_path(path: str) -> str:
    return unquote(urlsplit(path).path).strip("/")


class SignalingRelay:
    """
    The :class:`SignalingRelay` assigns a negotiation role to each connection
    and forwards offers, answers and candidates between the peers of a
    session, without interpreting them.

    The first connection of a session is polite, the next one is impolite.
    Whenever a single connection remains, it is polite.

    A channel is any object with an awaitable `send(message)` method, such as
    a :class:`websockets.asyncio.server.ServerConnection`.

    :param configuration: An optional :class:`RelayConfiguration`.
    """

    def __init__(self, configuration: Optional[RelayConfiguration] = None) -> None:
        self.__configuration = configuration or RelayConfiguration()
        self.__nextId = 0
        self.__records: dict[Any, ConnectionRecord] = {}
        self.__sessions: dict[str, RelaySession] = {}

    @property
    def configuration(self) -> RelayConfiguration:
        return self.__configuration

    def getRecord(self, channel: Any) -> Optional[ConnectionRecord]:
        return self.__records.get(channel)

    def getRecords(self, session: str = "") -> list[ConnectionRecord]:
        """
        Returns the live connections of a session, in order of arrival.
        """
        relaySession = self.__sessions.get(session)
        if relaySession is None:
            return []
        return list(relaySession.connections.values())

    async def connect(self, channel: Any, session: str = "") -> ConnectionRecord:
        """
        Register a new connection and announce its role to it.

        :raises SessionFullError: if the session is at capacity.
        """
        if channel in self.__records:
            raise ValueError("Channel is already connected")

        while True:
            relaySession = self.__sessions.get(session)
            if relaySession is None:
                relaySession = RelaySession(session, self.__configuration.capacity)
                self.__sessions[session] = relaySession

            async with relaySession.lock:
                # the session may have emptied and been dropped while waiting
                if self.__sessions.get(session) is not relaySession:
                    continue

                capacity = relaySession.capacity
                if capacity is not None and len(relaySession.connections) >= capacity:
                    raise SessionFullError(session, capacity)

                self.__nextId += 1
                record = ConnectionRecord(
                    id=self.__nextId,
                    role=Role.IMPOLITE if relaySession.connections else Role.POLITE,
                    channel=channel,
                    session=session,
                )
                relaySession.connections[channel] = record
                self.__records[channel] = record
                logger.info(
                    "Client %d connected with role %s (session %r, total %d)",
                    record.id,
                    record.role.value,
                    session,
                    len(relaySession.connections),
                )
                await self.__announce(record)
                return record

    async def receive(self, channel: Any, message: _Message) -> None:
        """
        Handle a message from a connection, forwarding it verbatim to the
        other connections of its session. Malformed messages are dropped.
        """
        record = self.__records.get(channel)
        if record is None:
            logger.warning("Dropping message from unknown connection")
            return

        try:
            data = json.loads(message)
        except (RecursionError, ValueError):
            logger.warning(
                "Client %d sent malformed JSON message: %r", record.id, message[:100]
            )
            return

        message_type = data.get("type") if isinstance(data, dict) else None
        if message_type not in RELAYED_TYPES:
            logger.warning(
                "Client %d sent unknown message type %r", record.id, message_type
            )
            return

        relaySession = self.__sessions.get(record.session)
        if relaySession is None:
            return
        async with relaySession.lock:
            if relaySession.connections.get(channel) is not record:
                return
            targets = [r for r in relaySession.connections.values() if r is not record]
            logger.debug(
                "Forwarding %s from client %d (%s) to %d peer(s)",
                message_type,
                record.id,
                record.role.value,
                len(targets),
            )
            for target in targets:
                await self.__send(target, message)

    async def disconnect(self, channel: Any) -> None:
        """
        Forget a connection. If a single connection remains in the session
        and it is impolite, it becomes polite and is told so.
        """
        record = self.__records.get(channel)
        if record is None:
            return

        relaySession = self.__sessions.get(record.session)
        if relaySession is None:
            return
        async with relaySession.lock:
            # already removed by a concurrent disconnect
            if self.__records.get(channel) is not record:
                return
            del self.__records[channel]
            del relaySession.connections[channel]
            logger.info(
                "Client %d (%s) disconnected (session %r, %d remaining)",
                record.id,
                record.role.value,
                record.session,
                len(relaySession.connections),
            )

            if len(relaySession.connections) == 1:
                remaining = next(iter(relaySession.connections.values()))
                if remaining.role != Role.POLITE:
                    remaining.role = Role.POLITE
                    logger.info(
                        "Reassigned client %d to polite (only client remaining)",
                        remaining.id,
                    )
                    await self.__announce(remaining)
            elif not relaySession.connections:
                del self.__sessions[record.session]

    async def handler(self, connection: ServerConnection) -> None:
        """
        Serve a WebSocket connection, the request path selects the session.
        """
        session = session_from_path(connection.request.path)
        try:
            record = await self.connect(connection, session)
        except SessionFullError as exc:
            logger.warning("Rejecting connection: %s", exc)
            await connection.close(CLOSE_SESSION_FULL, "session full")
            return

        try:
            async for message in connection:
                await self.receive(connection, message)
        except ConnectionClosed as exc:
            logger.info("Client %d connection lost: %s", record.id, exc)
        finally:
            await self.disconnect(connection)

    def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        # answer plain HTTP requests, e.g. health checks
        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.OK, "Signaling relay is running\n")
        return None

    def serve(
        self, host: Optional[str] = None, port: Optional[int] = None
    ) -> websocket_serve:
        """
        Create the WebSocket server, to be awaited or used as an asynchronous
        context manager.
        """
        return websocket_serve(
            self.handler,
            host if host is not None else self.__configuration.host,
            port if port is not None else self.__configuration.port,
            process_request=self.process_request,
        )

    async def __announce(self, record: ConnectionRecord) -> None:
        await self.__send(
            record, object_to_string(RoleAssignment(role=record.role, clientId=record.id))
        )

    async def __send(self, record: ConnectionRecord, message: _Message) -> None:
        try:
            await record.channel.send(message)
        except (ConnectionClosed, ConnectionError) as exc:
            logger.warning("Failed to send to client %d: %r", record.id, exc)


async def run_relay(configuration: RelayConfiguration) -> None:
    relay = SignalingRelay(configuration)
    async with relay.serve() as server:
        logger.info(
            "Signaling relay listening on %s:%d", configuration.host, configuration.port
        )
        await server.serve_forever()


def add_relay_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add relay arguments to an argparse.ArgumentParser.
    """
    parser.add_argument(
        "--host", default="0.0.0.0", help="Host for the relay (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port", type=int, default=8080, help="Port for the relay (default: 8080)"
    )
    parser.add_argument(
        "--capacity",
        type=int,
        default=DEFAULT_CAPACITY,
        help="Connections per session, 0 for unlimited (default: 2)",
    )


def create_relay_configuration(args: argparse.Namespace) -> RelayConfiguration:
    """
    Create a :class:`RelayConfiguration` based on command-line arguments.
    """
    return RelayConfiguration(
        host=args.host, port=args.port, capacity=args.capacity or None
    )
