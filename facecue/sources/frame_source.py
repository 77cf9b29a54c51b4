"""
Facecue - Frame Sources
Camera frame producers and the bounded channel feeding the pipeline.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from ..constants import (
    FRAME_CHANNEL_SIZE,
    WEBCAM_FPS,
    WEBCAM_HEIGHT,
    WEBCAM_MAX_READ_FAILURES,
    WEBCAM_WIDTH,
)
from ..perception.types import Frame, SourceTag

logger = logging.getLogger(__name__)

FrameSink = Callable[[Frame], None]


@dataclass
class ChannelStats:
    """Statistics about frame channel usage."""

    frames_received: int = 0
    frames_dropped: int = 0
    last_frame_time: float = 0.0


class FrameChannel:
    """
    Bounded frame queue with latest-frame semantics.

    When full, the oldest queued frame is dropped to make room, so the
    consumer always sees the newest frames. offer() may be called from
    any thread; frames are handed to the owning event loop with
    call_soon_threadsafe.

    Usage:
        channel = FrameChannel()
        channel.bind()            # on the consuming loop

        channel.offer(frame)      # from a capture thread

        frame = await channel.get(timeout=1.0)
    """

    def __init__(self, maxsize: int = FRAME_CHANNEL_SIZE) -> None:
        """
        Initialize frame channel.

        Args:
            maxsize: Frames kept before the oldest is dropped (default 2)
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._maxsize = maxsize
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()
        self._stats = ChannelStats()

    def bind(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Attach the channel to the consuming event loop."""
        self._loop = loop or asyncio.get_running_loop()

    def offer(self, frame: Frame) -> None:
        """
        Queue a frame, dropping the oldest if full.

        Thread-safe.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            self._put(frame)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._put(frame)
            return

        try:
            loop.call_soon_threadsafe(self._put, frame)
        except RuntimeError:
            # Loop closed between the check and the call
            logger.debug("Frame offered after channel loop closed")

    def _put(self, frame: Frame) -> None:
        with self._lock:
            while self._queue.full():
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                self._stats.frames_dropped += 1
            self._queue.put_nowait(frame)
            self._stats.frames_received += 1
            self._stats.last_frame_time = time.time()

    async def get(self, timeout: float | None = None) -> Frame | None:
        """
        Wait for the next frame.

        Args:
            timeout: Maximum time to wait in seconds (None waits forever)

        Returns:
            The next frame, or None on timeout
        """
        if self._loop is None:
            self.bind()
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def get_nowait(self) -> Frame | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def clear(self) -> None:
        """Drop all queued frames."""
        with self._lock:
            while not self._queue.empty():
                self._queue.get_nowait()

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> dict[str, Any]:
        """Get channel statistics."""
        with self._lock:
            age_ms = (
                (time.time() - self._stats.last_frame_time) * 1000
                if self._stats.last_frame_time > 0
                else -1
            )
            return {
                "frames_received": self._stats.frames_received,
                "frames_dropped": self._stats.frames_dropped,
                "queued": self._queue.qsize(),
                "maxsize": self._maxsize,
                "frame_age_ms": age_ms,
            }

    def __repr__(self) -> str:
        return (
            f"FrameChannel(queued={self._queue.qsize()}/{self._maxsize}, "
            f"received={self._stats.frames_received})"
        )


class FrameSource(ABC):
    """A camera that delivers RGB frames to a sink while streaming."""

    def __init__(self, tag: SourceTag) -> None:
        self._tag = tag

    @property
    def tag(self) -> SourceTag:
        return self._tag

    @property
    @abstractmethod
    def is_streaming(self) -> bool:
        """True while frames are being delivered."""

    @abstractmethod
    async def start(self, sink: FrameSink) -> None:
        """Begin delivering frames to sink."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering frames. Safe to call when not streaming."""


class WebcamFrameSource(FrameSource):
    """
    OpenCV webcam capture.

    Blocking reads run in a worker thread, paced to the target fps. Capture
    stops after too many consecutive failed reads; stop() waits for the
    in-progress read before releasing the device.

    Usage:
        source = WebcamFrameSource(device_id=0)
        await source.start(channel.offer)
    """

    def __init__(
        self,
        device_id: int = 0,
        width: int = WEBCAM_WIDTH,
        height: int = WEBCAM_HEIGHT,
        fps: int = WEBCAM_FPS,
        tag: SourceTag = SourceTag.PRIMARY,
        max_read_failures: int = WEBCAM_MAX_READ_FAILURES,
    ) -> None:
        """
        Initialize webcam source.

        Args:
            device_id: OpenCV camera device ID (0 = default webcam)
            width: Frame width
            height: Frame height
            fps: Target frames per second
            tag: Source tag stamped on frames
            max_read_failures: Consecutive failed reads before capture stops
        """
        super().__init__(tag)
        self._device_id = device_id
        self._width = width
        self._height = height
        self._fps = fps
        self._max_read_failures = max_read_failures
        self._capture: Any = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._frames_captured = 0
        self._read_failures = 0
        self._consecutive_failures = 0

        logger.info(f"WebcamFrameSource created (device={device_id}, {width}x{height} @ {fps}fps)")

    @property
    def is_streaming(self) -> bool:
        return self._running

    def _open(self) -> Any:
        import cv2

        capture = cv2.VideoCapture(self._device_id)
        if not capture.isOpened():
            capture.release()
            return None

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        capture.set(cv2.CAP_PROP_FPS, self._fps)
        return capture

    async def start(self, sink: FrameSink) -> None:
        if self._running:
            return

        if self._capture is not None:
            # Previous capture loop ended on its own
            await self.stop()

        self._capture = await asyncio.to_thread(self._open)
        if self._capture is None:
            logger.warning(f"Could not open webcam device {self._device_id}")
            return

        self._running = True
        self._consecutive_failures = 0
        self._task = asyncio.create_task(self._capture_loop(sink))
        logger.info("Webcam started")

    def _read_frame(self) -> np.ndarray | None:
        try:
            import cv2

            ok, bgr = self._capture.read()
            if not ok or bgr is None:
                return None
            return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)

        except Exception as e:
            logger.error(f"Frame capture error: {e}")
            return None

    async def _capture_loop(self, sink: FrameSink) -> None:
        interval = 1.0 / self._fps if self._fps > 0 else 0.0
        try:
            while self._running:
                started = time.monotonic()
                rgb = await asyncio.to_thread(self._read_frame)
                if not self._running:
                    break

                if rgb is not None:
                    self._consecutive_failures = 0
                    self._frames_captured += 1
                    try:
                        sink(Frame(image=rgb, source=self.tag))
                    except Exception as e:
                        logger.error(f"Webcam frame sink failed: {e}")
                else:
                    self._read_failures += 1
                    self._consecutive_failures += 1
                    logger.debug(f"Webcam read failed ({self._read_failures} total)")
                    if self._consecutive_failures >= self._max_read_failures:
                        logger.error(
                            f"Webcam lost after {self._consecutive_failures} failed reads"
                        )
                        break

                elapsed = time.monotonic() - started
                await asyncio.sleep(max(0.0, interval - elapsed))
        finally:
            self._running = False

    async def stop(self) -> None:
        # Let an in-progress read return before the capture is released
        self._running = False
        if self._task is not None:
            try:
                await self._task
            except Exception as e:
                logger.error(f"Webcam capture loop failed: {e}")
            self._task = None

        if self._capture is not None:
            await asyncio.to_thread(self._capture.release)
            self._capture = None
            logger.info("Webcam stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "device_id": self._device_id,
            "streaming": self._running,
            "frames_captured": self._frames_captured,
            "read_failures": self._read_failures,
        }


class PushFrameSource(FrameSource):
    """
    Frame source fed by an external SDK callback (e.g. wearable glasses).

    The SDK calls push() from its own thread; frames are forwarded only
    while the source is streaming.

    Usage:
        glasses = PushFrameSource()
        sdk.on_video_frame = glasses.push
    """

    def __init__(self, tag: SourceTag = SourceTag.SECONDARY) -> None:
        super().__init__(tag)
        self._sink: FrameSink | None = None
        self._lock = threading.Lock()
        self._frames_pushed = 0
        self._frames_ignored = 0

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return self._sink is not None

    async def start(self, sink: FrameSink) -> None:
        with self._lock:
            self._sink = sink
        logger.info(f"{self.tag.value} push source streaming")

    async def stop(self) -> None:
        with self._lock:
            was_streaming = self._sink is not None
            self._sink = None
        if was_streaming:
            logger.info(f"{self.tag.value} push source stopped")

    def push(self, image: np.ndarray, timestamp: float | None = None) -> bool:
        """
        Deliver an RGB image from the SDK.

        Thread-safe.

        Returns:
            True if the frame was forwarded
        """
        with self._lock:
            sink = self._sink
            if sink is None:
                self._frames_ignored += 1
                return False
            self._frames_pushed += 1

        frame = Frame(
            image=image,
            timestamp=time.time() if timestamp is None else timestamp,
            source=self.tag,
        )
        sink(frame)
        return True

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "streaming": self._sink is not None,
                "frames_pushed": self._frames_pushed,
                "frames_ignored": self._frames_ignored,
            }
