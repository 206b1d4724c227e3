import asyncio
import logging
from typing import Optional

from aiortc import RTCSessionDescription
from pyee.asyncio import AsyncIOEventEmitter
from websockets.exceptions import ConnectionClosed

from .negotiator import PerfectNegotiator
from .signaling import BaseSignaling, Candidate, RoleAssignment, _SignalingObject

logger = logging.getLogger(__name__)

CONNECTION_STATUS = {
    "checking": "Connecting peers",
    "completed": "Connected",
    "connected": "Connected",
    "disconnected": "Disconnected",
    "failed": "Failed",
    "closed": "Closed",
}


class Call(AsyncIOEventEmitter):
    """
    A :class:`Call` binds a :class:`PerfectNegotiator` to a signaling channel.

    Inbound messages are handled one at a time by a single task: role
    assignments update the negotiator, remote offers are answered and
    candidates are forwarded. Outbound messages go through a queue which is
    drained in order by a second task.

    :param signaling: A connected or unconnected signaling channel.
    :param negotiator: The :class:`PerfectNegotiator` for this call.
    """

    def __init__(
        self, signaling: BaseSignaling, negotiator: PerfectNegotiator
    ) -> None:
        super().__init__()
        self.__negotiator = negotiator
        self.__outbound: asyncio.Queue[_SignalingObject] = asyncio.Queue()
        self.__receiveTask: Optional[asyncio.Task] = None
        self.__sendTask: Optional[asyncio.Task] = None
        self.__signaling = signaling
        self.__status = "New"

        self.clientId: Optional[int] = None

        negotiator.on("icecandidate", self.__outbound.put_nowait)
        negotiator.on("connectionstatechange", self.__onConnectionStateChange)

    @property
    def negotiator(self) -> PerfectNegotiator:
        return self.__negotiator

    @property
    def status(self) -> str:
        """
        A human readable status, updated as signaling and the connection
        progress. When it changes, the `"statuschange"` event is fired.
        """
        return self.__status

    async def start(self) -> None:
        """
        Connect the signaling channel and start processing messages.
        """
        self.__setStatus("Connecting to signaling")
        await self.__signaling.connect()
        self.__setStatus("Connected to signaling")
        self.__receiveTask = asyncio.ensure_future(self.__runReceive())
        self.__sendTask = asyncio.ensure_future(self.__runSend())

    async def offer(self) -> None:
        """
        Start a (re)negotiation by sending an offer to the remote peer.
        """
        self.__setStatus("Creating offer")
        try:
            description = await self.__negotiator.offer()
        except Exception as exc:
            self.__setStatus(f"Error: {exc}")
            raise
        self.__outbound.put_nowait(description)

    async def wait(self) -> None:
        """
        Wait until the signaling channel is closed by the remote end.
        """
        if self.__receiveTask is not None:
            await asyncio.shield(self.__receiveTask)

    async def close(self) -> None:
        """
        Stop processing messages, then close the negotiator and the
        signaling channel.
        """
        for task in [self.__receiveTask, self.__sendTask]:
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *[t for t in [self.__receiveTask, self.__sendTask] if t is not None],
            return_exceptions=True,
        )
        self.__receiveTask = None
        self.__sendTask = None

        await self.__negotiator.close()
        await self.__signaling.close()

    async def __handle(self, obj: _SignalingObject) -> None:
        if isinstance(obj, RoleAssignment):
            self.clientId = obj.clientId
            self.__negotiator.role = obj.role
            self.__setStatus(f"Role: {obj.role.name}")
            self.emit("role", obj.role)
        elif isinstance(obj, RTCSessionDescription):
            self.__setStatus(f"Received {obj.type}")
            try:
                applied = await self.__negotiator.setRemoteDescription(obj)
                if applied and obj.type == "offer":
                    self.__outbound.put_nowait(await self.__negotiator.answer())
            except Exception as exc:
                logger.error("Call() failed to apply remote %s: %r", obj.type, exc)
                self.__setStatus(f"Error: {exc}")
                self.emit("negotiationfailed", exc)
        elif isinstance(obj, Candidate):
            await self.__negotiator.addRemoteCandidate(obj)

    async def __runReceive(self) -> None:
        while True:
            obj = await self.__signaling.receive()
            if obj is None:
                self.__setStatus("Disconnected from signaling")
                break
            await self.__handle(obj)

    async def __runSend(self) -> None:
        while True:
            obj = await self.__outbound.get()
            try:
                await self.__signaling.send(obj)
            except (ConnectionClosed, ConnectionError) as exc:
                logger.warning("Call() failed to send message: %r", exc)
                continue

            if isinstance(obj, RTCSessionDescription):
                self.__setStatus(f"{obj.type.capitalize()} sent")

    def __onConnectionStateChange(self, state: str) -> None:
        status = CONNECTION_STATUS.get(state)
        if status is not None:
            self.__setStatus(status)

    def __setStatus(self, status: str) -> None:
        if status != self.__status:
            logger.info("Call() status %s", status)
            self.__status = status
            self.emit("statuschange", status)
