import argparse
import asyncio
import logging

from aionegotiate import Call, PeerConnectionFactory, PerfectNegotiator
from aionegotiate.factory import add_ice_arguments, create_configuration
from aionegotiate.signaling import add_signaling_arguments, create_signaling
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder


async def run(call, recorder, offer):
    @call.on("statuschange")
    def on_status(status):
        print("Status: %s" % status)

    @call.negotiator.on("track")
    def on_track(track):
        print("Receiving %s" % track.kind)
        recorder.addTrack(track)

    @call.negotiator.on("connectionstatechange")
    async def on_connectionstatechange(state):
        if state in ["completed", "connected"]:
            await recorder.start()

    await call.start()

    if offer:
        await call.offer()

    # run until the relay goes away
    await call.wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Two-party call from the command line")
    parser.add_argument("--offer", action="store_true", help="Send an offer on start.")
    parser.add_argument("--play-from", help="Read the media from a file and sent it.")
    parser.add_argument("--record-to", help="Write received media to a file.")
    parser.add_argument("--verbose", "-v", action="count")
    add_ice_arguments(parser)
    add_signaling_arguments(parser)
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    # create media source
    tracks = []
    if args.play_from:
        player = MediaPlayer(args.play_from)
        tracks = [t for t in [player.audio, player.video] if t is not None]

    # create media sink
    if args.record_to:
        recorder = MediaRecorder(args.record_to)
    else:
        recorder = MediaBlackhole()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    factory = PeerConnectionFactory(create_configuration(args), tracks=tracks)
    call = Call(create_signaling(args), PerfectNegotiator(factory=factory))

    # run event loop
    try:
        loop.run_until_complete(run(call=call, recorder=recorder, offer=args.offer))
    except KeyboardInterrupt:
        pass
    finally:
        # cleanup
        loop.run_until_complete(recorder.stop())
        loop.run_until_complete(call.close())
