# audio/frame_source.py
import logging
import queue
from typing import Any, Optional

import numpy as np
import sounddevice as sd

from analysis.frame import Frame

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 2048


class AudioUnavailableError(RuntimeError):
    """The microphone could not be opened."""


class MicFrameSource:
    """
    Microphone frame source: one fixed-size mono block per capture cycle.

    The sounddevice callback only copies the block into a bounded queue
    (dropping the oldest block when the consumer falls behind); analysis
    happens on the consumer side via ``read`` / ``frames``.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        block_size: int = DEFAULT_BLOCK_SIZE,
        device: Optional[Any] = None,
        queue_max: int = 32,
    ) -> None:
        self.device = device
        self.block_size = int(block_size)
        self._requested_rate = sample_rate
        self.sample_rate = int(sample_rate) if sample_rate else 44100
        self.stream: Optional[sd.InputStream] = None
        self.frames_queue: queue.Queue = queue.Queue(maxsize=int(queue_max))
        self.dropped = 0

    @property
    def is_open(self) -> bool:
        return self.stream is not None

    # -------------------------
    # Audio callback (fast)
    # -------------------------
    def audio_callback(
        self, indata: np.ndarray, _frames: int, _time_info: Any, status: Any
    ) -> None:
        if status:
            logger.debug("input stream status: %s", status)
        try:
            block = np.array(indata[:, 0], dtype=float)
            try:
                self.frames_queue.put_nowait(block)
            except queue.Full:
                # drop oldest then try once to keep moving
                try:
                    self.frames_queue.get_nowait()
                except queue.Empty:
                    pass
                self.dropped += 1
                self.frames_queue.put_nowait(block)
        except Exception:  # noqa: BLE001
            logger.exception("MicFrameSource audio callback failed")

    # -------------------------
    # Public control
    # -------------------------
    def open(self) -> None:
        if self.stream is not None:
            return

        try:
            if not self._requested_rate:
                info = sd.query_devices(self.device, "input")
                self.sample_rate = int(info["default_samplerate"])

            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=self.audio_callback,
            )
            stream.start()
        except Exception as e:
            raise AudioUnavailableError(f"microphone unavailable: {e}") from e

        self.stream = stream
        logger.info(
            "audio stream started at %d Hz blocksize %d",
            self.sample_rate, self.block_size,
        )

    def read(self, timeout: float = 0.5) -> Optional[Frame]:
        try:
            block = self.frames_queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return Frame(block, self.sample_rate)

    def frames(self, timeout: float = 0.5):
        """Yield frames for as long as the stream is open."""
        while self.is_open:
            frame = self.read(timeout=timeout)
            if frame is not None:
                yield frame

    def close(self) -> None:
        if self.stream is None:
            return
        try:
            if getattr(self.stream, "active", False):
                self.stream.stop()
            self.stream.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error stopping audio stream")
        finally:
            self.stream = None
            logger.info("audio stream stopped")

        while not self.frames_queue.empty():
            try:
                self.frames_queue.get_nowait()
            except queue.Empty:
                break

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *_exc):
        self.close()
        return False
