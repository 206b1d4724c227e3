import asyncio
import functools
import logging
import os
import sys
import unittest
from collections.abc import Callable, Coroutine
from typing import Optional, TypeVar, Union, cast

if sys.version_info >= (3, 10):
    from typing import ParamSpec
else:
    from typing_extensions import ParamSpec

from aionegotiate.factory import PeerConnectionFactory
from aionegotiate.signaling import (
    BaseSignaling,
    _SignalingObject,
    object_from_string,
    object_to_string,
)
from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.exceptions import InvalidStateError, OperationError
from pyee.asyncio import AsyncIOEventEmitter

P = ParamSpec("P")
T = TypeVar("T")


class DummyPeerConnection(AsyncIOEventEmitter):
    """
    A media engine double implementing the offer / answer state machine.
    """

    def __init__(self, name: str) -> None:
        super().__init__()
        self.calls: list[str] = []
        self.candidates: list[RTCIceCandidate] = []
        self.iceConnectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.name = name
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.signalingState = "stable"

        # failure injection
        self.implicit_rollback = False
        self.offer_error: Optional[Exception] = None
        self.offer_gate: Optional[asyncio.Event] = None
        self.remote_error: Optional[Exception] = None
        self.rollback_error = False

        self.__counter = 0

    async def addIceCandidate(self, candidate: Optional[RTCIceCandidate]) -> None:
        self.calls.append("addIceCandidate")
        await asyncio.sleep(0)
        if self.remoteDescription is None:
            raise InvalidStateError("No remote description")
        if candidate is not None and candidate not in self.candidates:
            self.candidates.append(candidate)

    async def close(self) -> None:
        self.calls.append("close")
        self.signalingState = "closed"
        self.set_ice_state("closed")

    async def createAnswer(self) -> RTCSessionDescription:
        self.calls.append("createAnswer")
        await asyncio.sleep(0)
        if self.signalingState != "have-remote-offer":
            raise InvalidStateError(
                f'Cannot create answer in signaling state "{self.signalingState}"'
            )
        self.__counter += 1
        return RTCSessionDescription(sdp=f"{self.name}-answer-{self.__counter}", type="answer")

    async def createOffer(self) -> RTCSessionDescription:
        self.calls.append("createOffer")
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        await asyncio.sleep(0)
        if self.offer_error is not None:
            raise self.offer_error
        self.__counter += 1
        return RTCSessionDescription(sdp=f"{self.name}-offer-{self.__counter}", type="offer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.calls.append(f"setLocalDescription({description.type})")
        await asyncio.sleep(0)
        if description.type == "rollback":
            if self.rollback_error:
                raise OperationError("Rollback is not supported")
            if self.signalingState != "have-local-offer":
                raise InvalidStateError(
                    f'Cannot rollback in signaling state "{self.signalingState}"'
                )
            self.localDescription = None
            self.__setSignalingState("stable")
        elif description.type == "offer":
            if self.signalingState not in ["stable", "have-local-offer"]:
                raise InvalidStateError(
                    f'Cannot handle offer in signaling state "{self.signalingState}"'
                )
            self.localDescription = description
            self.__setSignalingState("have-local-offer")
        else:
            if self.signalingState != "have-remote-offer":
                raise InvalidStateError(
                    f'Cannot handle answer in signaling state "{self.signalingState}"'
                )
            self.localDescription = description
            self.__setSignalingState("stable")

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self.calls.append(f"setRemoteDescription({description.type})")
        await asyncio.sleep(0)
        if self.remote_error is not None:
            raise self.remote_error
        if description.type == "offer":
            allowed = ["stable", "have-remote-offer"]
            if self.implicit_rollback:
                allowed.append("have-local-offer")
            if self.signalingState not in allowed:
                raise InvalidStateError(
                    f'Cannot handle offer in signaling state "{self.signalingState}"'
                )
            self.remoteDescription = description
            self.__setSignalingState("have-remote-offer")
        else:
            if self.signalingState != "have-local-offer":
                raise InvalidStateError(
                    f'Cannot handle answer in signaling state "{self.signalingState}"'
                )
            self.remoteDescription = description
            self.__setSignalingState("stable")

    def set_ice_state(self, state: str) -> None:
        self.iceConnectionState = state
        self.emit("iceconnectionstatechange")

    def __setSignalingState(self, state: str) -> None:
        self.signalingState = state
        self.emit("signalingstatechange")


class DummyFactory(PeerConnectionFactory):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.created: list[DummyPeerConnection] = []
        self.name = name

    def create(self) -> DummyPeerConnection:  # type: ignore[override]
        pc = DummyPeerConnection(self.name)
        self.created.append(pc)
        return pc


class DummyChannel:
    """
    An in-memory relay channel recording what it is sent.
    """

    def __init__(self) -> None:
        self.closed = False
        self.gate: Optional[asyncio.Event] = None
        self.messages: list[Union[str, bytes]] = []

    async def send(self, message: Union[str, bytes]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.closed:
            raise ConnectionError
        self.messages.append(message)

    def objects(self) -> list[_SignalingObject]:
        return [object_from_string(m) for m in self.messages]


class DummySignaling(BaseSignaling):
    def __init__(
        self,
        rx_queue: asyncio.Queue[Optional[str]],
        tx_queue: asyncio.Queue[Optional[str]],
    ) -> None:
        self.closed = False
        self.connected = False
        self.send_failures = 0
        self.rx_queue = rx_queue
        self.tx_queue = tx_queue

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        if not self.closed:
            await self.rx_queue.put(None)
            self.closed = True

    async def receive(self) -> Optional[_SignalingObject]:
        data = await self.rx_queue.get()
        if data is None:
            return None
        return object_from_string(data)

    async def send(self, obj: _SignalingObject) -> None:
        if self.closed:
            self.send_failures += 1
            raise ConnectionError
        await self.tx_queue.put(object_to_string(obj))

    async def inject(self, obj: _SignalingObject) -> None:
        await self.rx_queue.put(object_to_string(obj))


class TestCase(unittest.TestCase):
    def ensureIsInstance(self, obj: object, cls: type[T]) -> T:
        self.assertIsInstance(obj, cls)
        return cast(T, obj)


def asynctest(
    coro: Callable[P, Coroutine[None, None, None]],
) -> Callable[P, None]:
    @functools.wraps(coro)
    def wrap(*args: P.args, **kwargs: P.kwargs) -> None:
        asyncio.run(coro(*args, **kwargs))

    return wrap


def dummy_signaling_pair() -> tuple[DummySignaling, DummySignaling]:
    queue_a: asyncio.Queue[Optional[str]] = asyncio.Queue()
    queue_b: asyncio.Queue[Optional[str]] = asyncio.Queue()
    return (
        DummySignaling(rx_queue=queue_a, tx_queue=queue_b),
        DummySignaling(rx_queue=queue_b, tx_queue=queue_a),
    )


def dummy_candidate(port: int = 33543) -> RTCIceCandidate:
    candidate = RTCIceCandidate(
        component=1,
        foundation="0",
        ip="192.168.99.7",
        port=port,
        priority=2122252543,
        protocol="UDP",
        type="host",
    )
    candidate.sdpMid = "0"
    candidate.sdpMLineIndex = 0
    return candidate


async def wait_for(predicate: Callable[[], bool], timeout: float = 5) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


if os.environ.get("AIONEGOTIATE_DEBUG"):
    logging.basicConfig(level=logging.DEBUG)
