"""Desktop device providers with the OS capture layers replaced."""
import asyncio

import pytest
from mss.exception import ScreenShotError

from screencast.capture import desktop
from screencast.capture.controller import MICROPHONE_CONSTRAINTS, SCREEN_CONSTRAINTS, WEBCAM_CONSTRAINTS
from screencast.capture.desktop import DesktopMediaDevices, ScreenTrack
from screencast.errors import DeviceUnavailableError

MONITORS = [
    {"left": 0, "top": 0, "width": 3840, "height": 1080},
    {"left": 0, "top": 0, "width": 2560, "height": 1440},
]


class FakeShot:
    def __init__(self, width, height):
        self.size = (width, height)
        self.bgra = b"\x00\x00\xff\x00" * (width * height)


class FakeMss:
    fail = False

    def __init__(self):
        self.monitors = MONITORS

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def grab(self, monitor):
        if FakeMss.fail:
            raise ScreenShotError("display went away")
        return FakeShot(64, 36)


class FakeInputStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


@pytest.fixture
def fake_mss(monkeypatch):
    FakeMss.fail = False
    monkeypatch.setattr(desktop.mss, "mss", FakeMss)
    return FakeMss


class TestScreen:
    def test_display_media_wraps_selected_monitor(self, fake_mss):
        stream = asyncio.run(DesktopMediaDevices(monitor=1).get_display_media(SCREEN_CONSTRAINTS, audio=True))

        tracks = stream.get_tracks()
        assert len(tracks) == 1
        assert isinstance(tracks[0], ScreenTrack)
        assert tracks[0].monitor == MONITORS[1]
        assert stream.get_audio_tracks() == []

    def test_grab_returns_rgb_frame_within_constraints(self, fake_mss):
        track = ScreenTrack(MONITORS[1], SCREEN_CONSTRAINTS)
        image = track.grab()
        assert image.mode == "RGB"
        assert image.size == (64, 36)
        assert image.getpixel((0, 0)) == (255, 0, 0)

    def test_lost_source_ends_track(self, fake_mss):
        ended = []
        track = ScreenTrack(MONITORS[1], SCREEN_CONSTRAINTS)
        track.on_ended = lambda: ended.append(True)
        fake_mss.fail = True

        assert track.grab() is None
        assert ended == [True]
        assert not track.live

    def test_missing_monitor(self, fake_mss):
        with pytest.raises(DeviceUnavailableError):
            asyncio.run(DesktopMediaDevices(monitor=5).get_display_media(SCREEN_CONSTRAINTS, audio=False))

    def test_no_display(self, monkeypatch):
        def broken():
            raise ScreenShotError("no DISPLAY")

        monkeypatch.setattr(desktop, "_list_monitors", broken)
        with pytest.raises(DeviceUnavailableError):
            asyncio.run(DesktopMediaDevices().get_display_media(SCREEN_CONSTRAINTS, audio=False))


class TestMicrophone:
    def test_pcm_is_buffered_until_read(self, monkeypatch):
        monkeypatch.setattr(desktop, "_input_stream", FakeInputStream)
        stream = asyncio.run(DesktopMediaDevices().get_user_media(audio=MICROPHONE_CONSTRAINTS))
        track = stream.get_audio_tracks()[0]
        assert track._stream.kwargs["dtype"] == "int16"
        assert track._stream.started

        track._stream.callback(b"\x01\x00" * 4, 4, None, None)
        track._stream.callback(b"\x02\x00" * 2, 2, None, None)
        assert track.read() == b"\x01\x00" * 4 + b"\x02\x00" * 2
        assert track.read() == b""

        stream.stop()
        assert track._stream.closed
        track._stream.callback(b"\x03\x00", 1, None, None)
        assert track.read() == b""

    def test_missing_portaudio(self, monkeypatch):
        def broken(**kwargs):
            raise OSError("PortAudio library not found")

        monkeypatch.setattr(desktop, "_input_stream", broken)
        with pytest.raises(DeviceUnavailableError):
            asyncio.run(DesktopMediaDevices().get_user_media(audio=MICROPHONE_CONSTRAINTS))


class TestWebcam:
    def test_no_camera_configured(self, monkeypatch):
        monkeypatch.setattr(desktop, "default_camera", lambda: (None, "dshow"))
        with pytest.raises(DeviceUnavailableError):
            asyncio.run(DesktopMediaDevices().get_user_media(video=WEBCAM_CONSTRAINTS))

    def test_unopenable_camera(self, tmp_path):
        devices = DesktopMediaDevices(webcam_device=str(tmp_path / "video9"), webcam_format="v4l2")
        with pytest.raises(DeviceUnavailableError):
            asyncio.run(devices.get_user_media(video=WEBCAM_CONSTRAINTS))
