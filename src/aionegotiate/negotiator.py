import asyncio
import logging
from typing import Any, Optional

from aiortc import MediaStreamTrack, RTCIceCandidate, RTCSessionDescription
from pyee.asyncio import AsyncIOEventEmitter

from .exceptions import InvalidStateError
from .factory import PeerConnectionFactory
from .signaling import Candidate, Role

logger = logging.getLogger(__name__)

ROLLBACK = RTCSessionDescription(sdp="", type="rollback")


class PerfectNegotiator(AsyncIOEventEmitter):
    """
    The :class:`PerfectNegotiator` drives the offer / answer exchange of a
    single peer connection and resolves offer collisions using the
    "perfect negotiation" pattern.

    When both peers create an offer at the same time, the impolite peer
    ignores the remote offer while the polite peer rolls back its own offer
    and answers the remote one, so the two sides always converge.

    The media engine is created by the injected factory. Any object exposing
    the :class:`aiortc.RTCPeerConnection` negotiation API can stand in for it.

    :param factory: A :class:`PeerConnectionFactory`, a default one is used
                    if omitted.
    :param role: The initial negotiation :class:`Role`, until the relay
                 assigns one.
    """

    def __init__(
        self,
        factory: Optional[PeerConnectionFactory] = None,
        role: Role = Role.POLITE,
    ) -> None:
        super().__init__()
        self.__factory = factory or PeerConnectionFactory()
        self.__ignoreOffer = False
        self.__lock = asyncio.Lock()
        self.__offersInFlight = 0
        self.__role = role

        self.__handlers = {
            "icecandidate": self.__onIceCandidate,
            "iceconnectionstatechange": self.__onIceConnectionStateChange,
            "track": self.__onTrack,
        }
        self.__peerConnection: Optional[Any] = self.__createPeerConnection()

    @property
    def ignoreOffer(self) -> bool:
        """
        Whether the last remote offer was ignored because of a collision.
        """
        return self.__ignoreOffer

    @property
    def makingOffer(self) -> bool:
        """
        Whether an offer is being created and set as local description.
        """
        return self.__offersInFlight > 0

    @property
    def peerConnection(self) -> Optional[Any]:
        return self.__peerConnection

    @property
    def role(self) -> Role:
        """
        The negotiation role, usually assigned by the relay.
        """
        return self.__role

    @role.setter
    def role(self, role: Role) -> None:
        if role != self.__role:
            self.__log_debug("role %s -> %s", self.__role.value, role.value)
        self.__role = role

    @property
    def signalingState(self) -> str:
        """
        The signaling state of the media engine, or `"closed"` once the
        negotiator is closed.
        """
        if self.__peerConnection is None:
            return "closed"
        return self.__peerConnection.signalingState

    async def offer(self) -> RTCSessionDescription:
        """
        Create an offer and set it as the local description.

        :return: The local description to send to the remote peer.
        """
        self.__assertOpen()

        self.__offersInFlight += 1
        try:
            async with self.__lock:
                pc = self.__assertOpen()
                description = await pc.createOffer()
                await pc.setLocalDescription(description)
        finally:
            self.__offersInFlight -= 1

        self.__log_debug("offer created")
        return pc.localDescription

    async def answer(self) -> RTCSessionDescription:
        """
        Create an answer to the current remote offer and set it as the local
        description.

        :return: The local description to send to the remote peer.
        """
        self.__assertOpen()

        async with self.__lock:
            pc = self.__assertOpen()
            description = await pc.createAnswer()
            await pc.setLocalDescription(description)

        self.__log_debug("answer created")
        return pc.localDescription

    async def setRemoteDescription(
        self, sessionDescription: RTCSessionDescription
    ) -> bool:
        """
        Apply a description received from the remote peer.

        If the description is an offer and this method returns `True`, the
        caller must follow up with :meth:`answer` and send the result.

        :param sessionDescription: An :class:`aiortc.RTCSessionDescription`.
        :return: `False` if the offer was ignored to resolve a collision,
                 `True` if the description was applied.
        """
        pc = self.__assertOpen()

        offerCollision = sessionDescription.type == "offer" and (
            self.makingOffer or pc.signalingState != "stable"
        )
        self.__ignoreOffer = self.__role == Role.IMPOLITE and offerCollision
        if self.__ignoreOffer:
            self.__log_debug(
                "ignoring colliding offer (makingOffer=%s, signalingState=%s)",
                self.makingOffer,
                pc.signalingState,
            )
            return False

        async with self.__lock:
            pc = self.__assertOpen()
            if offerCollision:
                pc = await self.__rollback(pc)
            await pc.setRemoteDescription(sessionDescription)

        self.__log_debug("remote %s applied", sessionDescription.type)
        return True

    async def addRemoteCandidate(self, candidate: Candidate) -> None:
        """
        Forward a candidate received from the remote peer to the media engine.

        Candidates which cannot be parsed or applied are dropped, a stale
        candidate must not abort the session.
        """
        pc = self.__peerConnection
        if pc is None:
            self.__log_debug("dropping candidate, negotiator is closed")
            return

        try:
            await pc.addIceCandidate(candidate.to_rtc())
        except Exception as exc:
            self.__log_debug("dropping candidate %s: %r", candidate.sdp, exc)

    async def close(self) -> None:
        """
        Close the media engine. Further negotiation raises
        :class:`InvalidStateError`.
        """
        pc = self.__peerConnection
        if pc is None:
            return

        self.__peerConnection = None
        self.__detach(pc)
        await pc.close()
        self.__log_debug("closed")
        self.emit("connectionstatechange", "closed")

    async def __rollback(self, pc: Any) -> Any:
        self.__log_debug(
            "rolling back for colliding offer (signalingState=%s)", pc.signalingState
        )
        try:
            await pc.setLocalDescription(ROLLBACK)
        except Exception as exc:
            self.__log_debug("rollback failed: %r", exc)

        if pc.signalingState != "have-local-offer" or pc.remoteDescription is not None:
            return pc

        # the offer was never answered, start over with a fresh engine
        self.__log_debug("replacing peer connection to discard local offer")
        self.__detach(pc)
        await pc.close()
        self.__peerConnection = self.__createPeerConnection()
        return self.__peerConnection

    def __assertOpen(self) -> Any:
        if self.__peerConnection is None:
            raise InvalidStateError("PerfectNegotiator is closed")
        return self.__peerConnection

    def __createPeerConnection(self) -> Any:
        pc = self.__factory.create()
        for event, handler in self.__handlers.items():
            pc.on(event, handler)
        return pc

    def __detach(self, pc: Any) -> None:
        for event, handler in self.__handlers.items():
            pc.remove_listener(event, handler)

    def __log_debug(self, msg: str, *args: object) -> None:
        logger.debug(f"PerfectNegotiator({self.__role.value}) {msg}", *args)

    def __onIceCandidate(self, candidate: Optional[RTCIceCandidate]) -> None:
        if candidate is not None:
            self.emit("icecandidate", Candidate.from_rtc(candidate))

    def __onIceConnectionStateChange(self) -> None:
        state = self.__peerConnection.iceConnectionState
        self.__log_debug("iceConnectionState %s", state)
        self.emit("connectionstatechange", state)

    def __onTrack(self, track: MediaStreamTrack) -> None:
        self.emit("track", track)
