from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from analysis.frame import Frame
from audio.frame_source import AudioUnavailableError, MicFrameSource


def block(value, n=8):
    return np.full((n, 1), value, dtype=np.float32)


def test_open_uses_device_default_rate():
    with patch("audio.frame_source.sd") as sd:
        sd.query_devices.return_value = {"default_samplerate": 48000.0}
        src = MicFrameSource(block_size=1024)
        src.open()

        sd.InputStream.assert_called_once()
        kwargs = sd.InputStream.call_args.kwargs
        assert kwargs["samplerate"] == 48000
        assert kwargs["blocksize"] == 1024
        assert kwargs["channels"] == 1
        sd.InputStream.return_value.start.assert_called_once()
        assert src.is_open


def test_open_with_explicit_rate_skips_query():
    with patch("audio.frame_source.sd") as sd:
        src = MicFrameSource(sample_rate=22050)
        src.open()
        sd.query_devices.assert_not_called()
        assert src.sample_rate == 22050


def test_open_failure_raises_audio_unavailable():
    with patch("audio.frame_source.sd") as sd:
        sd.InputStream.side_effect = RuntimeError("no device")
        src = MicFrameSource(sample_rate=44100)
        with pytest.raises(AudioUnavailableError):
            src.open()
        assert not src.is_open


def test_open_twice_is_noop():
    with patch("audio.frame_source.sd") as sd:
        src = MicFrameSource(sample_rate=44100)
        src.open()
        src.open()
        assert sd.InputStream.call_count == 1


def test_callback_queues_first_channel():
    src = MicFrameSource(sample_rate=8000)
    src.audio_callback(block(0.25), 8, None, None)

    frame = src.read(timeout=0.01)
    assert isinstance(frame, Frame)
    assert frame.sample_rate == 8000
    assert np.allclose(frame.samples, 0.25)


def test_full_queue_drops_oldest():
    src = MicFrameSource(sample_rate=8000, queue_max=2)
    for v in (0.1, 0.2, 0.3):
        src.audio_callback(block(v), 8, None, None)

    assert src.dropped == 1
    assert src.read(timeout=0.01).samples[0] == pytest.approx(0.2)
    assert src.read(timeout=0.01).samples[0] == pytest.approx(0.3)


def test_read_timeout_returns_none():
    assert MicFrameSource().read(timeout=0.01) is None


def test_callback_never_raises():
    src = MicFrameSource()
    src.audio_callback(None, 0, None, "input overflow")
    assert src.frames_queue.empty()


def test_close_stops_stream_and_drains():
    with patch("audio.frame_source.sd") as sd:
        stream = MagicMock()
        stream.active = True
        sd.InputStream.return_value = stream

        src = MicFrameSource(sample_rate=8000)
        src.open()
        src.audio_callback(block(0.5), 8, None, None)
        src.close()

        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        assert not src.is_open
        assert src.frames_queue.empty()


def test_context_manager_and_frames():
    with patch("audio.frame_source.sd"):
        with MicFrameSource(sample_rate=8000) as src:
            src.audio_callback(block(0.1), 8, None, None)
            gen = src.frames(timeout=0.01)
            assert next(gen).samples[0] == pytest.approx(0.1)
        assert not src.is_open
