"""Desktop recorder entry point, driven with in-memory devices."""
import asyncio

import pytest

from mocks.media import FakeEncoderFactory, FakeMediaDevices, denied
from screencast.capture.controller import SCREEN_DENIED_MESSAGE, CaptureController, CaptureState
from screencast.record import build_parser, record


@pytest.fixture
def recorder_encoders():
    return FakeEncoderFactory(final_chunk=b"webm-data")


def run_record(argv, controller):
    args = build_parser().parse_args(argv)
    return asyncio.run(record(args, controller))


def test_records_uploads_and_prints_share_link(devices, recorder_encoders, upload_service, capsys):
    controller = CaptureController(devices, recorder_encoders, uploader=upload_service, tick_interval=3600)

    assert run_record(["--title", "Q1 Review", "--client", "Acme", "--duration", "0"], controller) == 0

    out = capsys.readouterr().out
    assert "Share link: https://cast.example.com/v/" in out
    share_id = controller.share_link.rsplit("/", 1)[1]
    video = upload_service.persistence.get_video(share_id)
    assert (video.title, video.client) == ("Q1 Review", "Acme")
    assert controller.state == CaptureState.STOPPED


def test_output_saves_webm_without_uploading(devices, recorder_encoders, tmp_path):
    controller = CaptureController(devices, recorder_encoders, tick_interval=3600)
    target = tmp_path / "demo.webm"

    assert run_record(["--output", str(target), "--duration", "0"], controller) == 0

    assert target.read_bytes() == b"webm-data"
    assert controller.state == CaptureState.IDLE
    assert devices.live_tracks == []


def test_flags_select_sources(recorder_encoders, tmp_path):
    devices = FakeMediaDevices()
    controller = CaptureController(devices, recorder_encoders, tick_interval=3600)

    run_record(["--no-webcam", "--no-mic", "--no-system-audio", "--output", str(tmp_path / "x.webm"), "--duration", "0"], controller)

    assert [kind for kind, *_ in devices.requests] == ["display"]
    assert devices.requests[0][2] is False


def test_screen_denied_exits_with_banner(recorder_encoders, capsys):
    controller = CaptureController(FakeMediaDevices(screen_error=denied("screen")), recorder_encoders, tick_interval=3600)

    assert run_record(["--duration", "0"], controller) == 1
    assert SCREEN_DENIED_MESSAGE in capsys.readouterr().out
    assert controller.state == CaptureState.IDLE
