"""
Desktop recorder.

    screencast-record --title "Q1 Review" --client Acme
    screencast-record --no-webcam --output demo.webm

Records the screen (plus microphone) until Ctrl+C or --duration, then uploads
through the configured storage and persistence and prints the share link.
"""
import argparse
import asyncio
import signal
import sys
from functools import partial

from screencast.capture.av_encoder import AvEncoderFactory
from screencast.capture.controller import CaptureController, CaptureState, RecordingOptions
from screencast.capture.desktop import DesktopMediaDevices
from screencast.core.config import Settings, settings
from screencast.core.tunnel import TunnelManager
from screencast.services.persistence import build_persistence
from screencast.services.storage import build_storage
from screencast.services.thumbnails import generate_thumbnail
from screencast.services.uploads import UploadService

ACTIVE_STATES = (CaptureState.RECORDING, CaptureState.PAUSED)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="screencast-record", description="Record the screen and get a share link")
    parser.add_argument("--title", default="", help="Recording title")
    parser.add_argument("--client", default="", help="Client or account name")
    parser.add_argument("--duration", type=int, default=None, help="Stop after this many seconds")
    parser.add_argument("--output", default=None, help="Save the WebM here instead of uploading")
    parser.add_argument("--no-webcam", action="store_true")
    parser.add_argument("--no-mic", action="store_true")
    parser.add_argument("--no-system-audio", action="store_true")
    return parser


def build_uploader(config: Settings) -> UploadService:
    base_url = partial(TunnelManager.get_base_url, config)
    storage = build_storage(config, base_url=base_url)
    persistence = build_persistence(config, storage)
    return UploadService(
        persistence,
        base_url=base_url,
        thumbnailer=partial(
            generate_thumbnail,
            offset=config.THUMBNAIL_OFFSET,
            size=(config.THUMBNAIL_WIDTH, config.THUMBNAIL_HEIGHT),
        ),
    )


async def wait_until_stopped(controller: CaptureController):
    # The encoder finalizes on its own thread and reports back through the loop
    while controller.state in ACTIVE_STATES:
        await asyncio.sleep(0.05)


async def record(args, controller: CaptureController) -> int:
    controller.options = RecordingOptions(
        webcam=not args.no_webcam,
        microphone=not args.no_mic,
        system_audio=not args.no_system_audio,
    )
    controller.title = args.title
    controller.client = args.client

    print("Requesting screen capture...")
    if not await controller.start_recording():
        print(f"❌ {controller.error}")
        return 1

    sources = ", ".join(f"{name}: {status.value}" for name, status in controller.device_status.items())
    print(f"🔴 Recording ({controller.mime_type}; {sources})")
    print("   Ctrl+C to stop")

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_requested.set)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
        handles_sigint = False

    try:
        while controller.state in ACTIVE_STATES and not stop_requested.is_set():
            if args.duration is not None and controller.elapsed >= args.duration:
                break
            try:
                await asyncio.wait_for(stop_requested.wait(), timeout=1)
            except asyncio.TimeoutError:
                print(f"\r   {controller.elapsed_display}", end="", flush=True)
        print()
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    controller.stop()
    await wait_until_stopped(controller)
    if controller.artifact is None:
        print(f"❌ Recording ended without output: {controller.error or 'no data'}")
        return 1
    print(f"⏹  Recorded {controller.summary}")

    if args.output:
        with open(args.output, "wb") as f:
            f.write(controller.artifact.data)
        print(f"💾 Saved to {args.output}")
        controller.discard()
        return 0

    print("Uploading...")
    link = await controller.upload()
    if link is None:
        print(f"❌ {controller.error}")
        return 1
    print(f"✅ Share link: {link}")
    return 0


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    uploader = None if args.output else build_uploader(settings)
    controller = CaptureController(
        DesktopMediaDevices(
            monitor=settings.CAPTURE_MONITOR,
            webcam_device=settings.WEBCAM_DEVICE,
            webcam_format=settings.WEBCAM_FORMAT,
        ),
        AvEncoderFactory(),
        uploader=uploader,
    )
    try:
        return await record(args, controller)
    finally:
        controller.close()
        if uploader is not None:
            uploader.persistence.close()


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nRecording aborted.")
        sys.exit(1)


if __name__ == "__main__":
    run()
