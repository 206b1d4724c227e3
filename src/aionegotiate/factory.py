import argparse
from collections.abc import Iterable
from typing import Optional

from aiortc import MediaStreamTrack, RTCConfiguration, RTCIceServer, RTCPeerConnection


class PeerConnectionFactory:
    """
    Creates the media engine used by a :class:`PerfectNegotiator`.

    A factory is constructed explicitly and handed to each negotiator, so
    there is no process-wide engine state and tests can substitute their own.

    :param configuration: An optional :class:`aiortc.RTCConfiguration`.
    :param tracks: Local :class:`aiortc.MediaStreamTrack` objects added to
                   every new peer connection.
    """

    def __init__(
        self,
        configuration: Optional[RTCConfiguration] = None,
        tracks: Iterable[MediaStreamTrack] = (),
    ) -> None:
        self.configuration = configuration
        self.tracks = list(tracks)

    def create(self) -> RTCPeerConnection:
        pc = RTCPeerConnection(configuration=self.configuration)
        for track in self.tracks:
            pc.addTrack(track)
        return pc


def add_ice_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add STUN / TURN server arguments to an argparse.ArgumentParser.
    """
    parser.add_argument(
        "--stun-server", action="append", default=[], help="STUN server URL"
    )
    parser.add_argument("--turn-server", help="TURN server URL")
    parser.add_argument("--turn-username", help="TURN username")
    parser.add_argument("--turn-password", help="TURN password")


def create_configuration(args: argparse.Namespace) -> RTCConfiguration:
    """
    Create an :class:`aiortc.RTCConfiguration` based on command-line arguments.
    """
    servers = [RTCIceServer(urls=url) for url in args.stun_server]
    if args.turn_server:
        servers.append(
            RTCIceServer(
                urls=args.turn_server,
                username=args.turn_username,
                credential=args.turn_password,
            )
        )
    return RTCConfiguration(iceServers=servers or None)
