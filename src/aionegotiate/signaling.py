import argparse
import enum
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import quote

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

DESCRIPTION_TYPES = ["answer", "offer"]
RELAYED_TYPES = ["answer", "candidate", "offer"]


class Role(enum.Enum):
    """
    The negotiation role the relay assigns to each connection.

    When both peers send an offer at the same time, the polite peer rolls back
    its own offer and accepts the remote one, while the impolite peer ignores
    the remote offer.
    """

    POLITE = "polite"
    IMPOLITE = "impolite"


@dataclass(frozen=True)
class Candidate:
    """
    The :class:`Candidate` dictionary describes a connectivity candidate as it
    travels over the signaling channel.
    """

    sdp: str
    "The candidate line, for instance `candidate:0 1 UDP 2122252543 ...`."
    sdpMLineIndex: Optional[int] = None
    "The index of the media description the candidate belongs to."
    sdpMid: Optional[str] = None
    "The media stream identification of the media description."

    @classmethod
    def from_rtc(cls, candidate: RTCIceCandidate) -> "Candidate":
        return cls(
            sdp="candidate:" + candidate_to_sdp(candidate),
            sdpMLineIndex=candidate.sdpMLineIndex,
            sdpMid=candidate.sdpMid,
        )

    def to_rtc(self) -> Optional[RTCIceCandidate]:
        """
        Convert to an :class:`aiortc.RTCIceCandidate`, or `None` for the
        end-of-candidates marker.
        """
        if not self.sdp:
            return None

        line = self.sdp
        if line.startswith("a="):
            line = line[2:]
        if line.startswith("candidate:"):
            line = line.split(":", 1)[1]
        candidate = candidate_from_sdp(line)
        candidate.sdpMid = self.sdpMid
        candidate.sdpMLineIndex = self.sdpMLineIndex
        return candidate


@dataclass(frozen=True)
class RoleAssignment:
    """
    Announces the negotiation role of a connection, sent by the relay.
    """

    role: Role
    clientId: Optional[int] = None


_SignalingObject = Union[RTCSessionDescription, Candidate, RoleAssignment]


def _field(message: dict[str, Any], name: str, kind: type, required: bool = True) -> Any:
    value = message.get(name)
    if value is None and not required:
        return None
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f'"{name}" must be of type {kind.__name__} (got {value!r})')
    return value


def object_from_string(message_str: Union[str, bytes]) -> _SignalingObject:
    """
    Parse a signaling message.

    :raises ValueError: if the message is not valid JSON, is not an object,
                        has an unknown type or misses a required field.
    """
    try:
        message = json.loads(message_str)
    except RecursionError:
        raise ValueError("Signaling message is nested too deeply") from None
    if not isinstance(message, dict):
        raise ValueError("Signaling message must be a JSON object")

    message_type = message.get("type")
    if message_type in DESCRIPTION_TYPES:
        return RTCSessionDescription(sdp=_field(message, "sdp", str), type=message_type)
    elif message_type == "candidate":
        return Candidate(
            sdp=_field(message, "sdp", str),
            sdpMLineIndex=_field(message, "sdpMLineIndex", int, required=False),
            sdpMid=_field(message, "sdpMid", str, required=False),
        )
    elif message_type == "role":
        try:
            role = Role(message.get("role"))
        except ValueError:
            raise ValueError(f"Unknown role {message.get('role')!r}") from None
        return RoleAssignment(
            role=role, clientId=_field(message, "clientId", int, required=False)
        )
    else:
        raise ValueError(f"Unknown signaling message type {message_type!r}")


def object_to_string(obj: _SignalingObject) -> str:
    message: dict[str, Union[int, str, None]]
    if isinstance(obj, RTCSessionDescription):
        message = {"sdp": obj.sdp, "type": obj.type}
    elif isinstance(obj, Candidate):
        message = {
            "sdp": obj.sdp,
            "sdpMLineIndex": obj.sdpMLineIndex,
            "sdpMid": obj.sdpMid,
            "type": "candidate",
        }
    else:
        assert isinstance(obj, RoleAssignment)
        message = {"clientId": obj.clientId, "role": obj.role.value, "type": "role"}
    return json.dumps(
        {key: value for key, value in message.items() if value is not None},
        sort_keys=True,
    )


class BaseSignaling(ABC):
    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def send(self, obj: _SignalingObject) -> None: ...

    @abstractmethod
    async def receive(self) -> Optional[_SignalingObject]: ...


class WebSocketSignaling(BaseSignaling):
    """
    A signaling channel to the relay over a WebSocket connection.

    :param url: The URL of the relay, its path is the session identifier.
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._websocket: Optional[ClientConnection] = None

    async def connect(self) -> None:
        if self._websocket is None:
            self._websocket = await connect(self._url)
            logger.debug("Connected to signaling relay %s", self._url)

    async def close(self) -> None:
        if self._websocket is not None:
            await self._websocket.close()
            self._websocket = None

    async def receive(self) -> Optional[_SignalingObject]:
        """
        Wait for the next valid message, or return `None` once the
        connection is closed. Malformed messages are logged and skipped.
        """
        websocket = self._websocket
        while websocket is not None:
            try:
                data = await websocket.recv()
            except ConnectionClosed:
                return None
            try:
                return object_from_string(data)
            except ValueError as exc:
                logger.warning("Dropping malformed signaling message: %s", exc)
        return None

    async def send(self, obj: _SignalingObject) -> None:
        if self._websocket is None:
            raise ConnectionError("Signaling channel is not connected")
        await self._websocket.send(object_to_string(obj))


def session_url(url: str, session: str) -> str:
    return url.rstrip("/") + "/" + quote(session, safe="")


def add_signaling_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add signaling method arguments to an argparse.ArgumentParser.
    """
    parser.add_argument(
        "--signaling-url",
        default="ws://127.0.0.1:8080",
        help="Signaling relay URL (default: ws://127.0.0.1:8080)",
    )
    parser.add_argument(
        "--session", default="", help="Session identifier shared by both peers"
    )


def create_signaling(args: argparse.Namespace) -> BaseSignaling:
    """
    Create a signaling channel based on command-line arguments.
    """
    return WebSocketSignaling(session_url(args.signaling_url, args.session))
