"""
Facecue - Source Arbiter
Chooses between the phone and glasses cameras and gates their frames.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Any

from ..perception.types import Frame, SourceTag
from .frame_source import FrameChannel, FrameSource

logger = logging.getLogger(__name__)


class CameraMode(str, Enum):
    """User-selected camera preference."""

    PHONE = "phone"
    GLASSES = "glasses"
    AUTO = "auto"


class GlassesRegistration(str, Enum):
    """Registration state of the wearable glasses."""

    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"

    @property
    def is_connected(self) -> bool:
        return self is GlassesRegistration.REGISTERED


class SourceArbiter:
    """
    Routes exactly one camera into the frame channel.

    The authoritative source is what the mode asks for. The routed source
    is the one actually streaming: when GLASSES is selected but the
    glasses are not usable, the arbiter stays on GLASSES logically and
    routes the phone instead. Frames from any other source are dropped
    at the gate.

    All signal methods must be awaited on the pipeline's event loop.

    Usage:
        arbiter = SourceArbiter(phone, glasses, channel)
        await arbiter.start()
        await arbiter.set_glasses_registration(GlassesRegistration.REGISTERED)
        await arbiter.set_glasses_device_available(True)
    """

    def __init__(
        self,
        phone: FrameSource,
        glasses: FrameSource,
        channel: FrameChannel,
        mode: CameraMode | str = CameraMode.AUTO,
    ) -> None:
        """
        Initialize the arbiter.

        Args:
            phone: Primary (phone) camera source
            glasses: Secondary (glasses) camera source
            channel: Channel receiving routed frames
            mode: Initial camera mode
        """
        self._phone = phone
        self._glasses = glasses
        self._channel = channel
        self._mode = CameraMode(mode)
        self._registration = GlassesRegistration.UNREGISTERED
        self._device_available = False
        self._running = False
        self._lock = asyncio.Lock()

        self._routed = self._select_routed()
        self._active: FrameSource | None = None

        # Stats
        self._frames_forwarded = 0
        self._frames_gated = 0
        self._stats_lock = threading.Lock()  # accept() runs on SDK threads
        self._switches = 0

    @property
    def mode(self) -> CameraMode:
        return self._mode

    @property
    def registration(self) -> GlassesRegistration:
        return self._registration

    @property
    def device_available(self) -> bool:
        return self._device_available

    @property
    def glasses_usable(self) -> bool:
        """Glasses are connected and have an active device."""
        return self._registration.is_connected and self._device_available

    @property
    def authoritative(self) -> SourceTag:
        """The source the mode asks for."""
        if self._mode == CameraMode.PHONE:
            return SourceTag.PRIMARY
        if self._mode == CameraMode.GLASSES:
            return SourceTag.SECONDARY
        return SourceTag.SECONDARY if self.glasses_usable else SourceTag.PRIMARY

    @property
    def routed(self) -> SourceTag:
        """The source whose frames reach the channel."""
        return self._routed.tag

    @property
    def is_fallback(self) -> bool:
        """GLASSES is selected but the phone is standing in."""
        return self.authoritative != self.routed

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_streaming(self) -> bool:
        return self._active is not None and self._active.is_streaming

    @property
    def status_message(self) -> str:
        """Human-readable camera status."""
        if self._mode == CameraMode.AUTO:
            if self.routed == SourceTag.SECONDARY:
                return "Auto: Using glasses"
            return "Auto: Using phone"

        if self._mode == CameraMode.PHONE:
            return "Using phone camera" if self.is_streaming else "Phone camera ready"

        if self.is_fallback and self.is_streaming:
            return "Glasses unavailable - using phone"
        if self._registration == GlassesRegistration.REGISTERING:
            return "Connecting to glasses..."
        if not self._registration.is_connected:
            return "Glasses not connected"
        if not self._device_available:
            return "Waiting for glasses..."
        return "Using glasses camera" if self.is_streaming else "Glasses ready"

    async def start(self) -> None:
        """Start streaming from the routed source."""
        async with self._lock:
            if self._running:
                return
            self._running = True
            await self._start_routed()
            logger.info(f"Arbiter started: {self.status_message}")

    async def stop(self) -> None:
        """Stop whichever source is streaming."""
        async with self._lock:
            self._running = False
            await self._stop_active()
            logger.info("Arbiter stopped")

    async def set_mode(self, mode: CameraMode | str) -> None:
        async with self._lock:
            self._mode = CameraMode(mode)
            logger.info(f"Camera mode set to {self._mode.value}")
            await self._recompute()

    async def set_glasses_registration(self, state: GlassesRegistration | str) -> None:
        async with self._lock:
            self._registration = GlassesRegistration(state)
            logger.info(f"Glasses registration: {self._registration.value}")
            await self._recompute()

    async def set_glasses_device_available(self, available: bool) -> None:
        async with self._lock:
            self._device_available = available
            logger.info(f"Glasses device {'available' if available else 'unavailable'}")
            await self._recompute()

    def accept(self, frame: Frame) -> bool:
        """
        Gate a frame from any source into the channel.

        Returns:
            True if the frame came from the routed source and was forwarded
        """
        if frame.source != self._routed.tag or not self._running:
            with self._stats_lock:
                self._frames_gated += 1
            return False
        with self._stats_lock:
            self._frames_forwarded += 1
        self._channel.offer(frame)
        return True

    def _select_routed(self) -> FrameSource:
        if self._mode == CameraMode.PHONE:
            return self._phone
        # GLASSES and AUTO both fall back to the phone when glasses are unusable
        return self._glasses if self.glasses_usable else self._phone

    async def _recompute(self) -> None:
        target = self._select_routed()
        if target is self._routed:
            return

        previous = self._routed
        self._routed = target
        self._switches += 1
        logger.info(f"Switching camera from {previous.tag.value} to {target.tag.value}")

        await self._stop_active()
        if self._running:
            await self._start_routed()

    async def _start_routed(self) -> None:
        source = self._routed
        await source.start(self.accept)
        self._active = source

    async def _stop_active(self) -> None:
        if self._active is not None:
            await self._active.stop()
            self._active = None

    def get_stats(self) -> dict[str, Any]:
        """Get arbiter statistics."""
        with self._stats_lock:
            forwarded = self._frames_forwarded
            gated = self._frames_gated
        return {
            "mode": self._mode.value,
            "authoritative": self.authoritative.value,
            "routed": self.routed.value,
            "registration": self._registration.value,
            "device_available": self._device_available,
            "running": self._running,
            "streaming": self.is_streaming,
            "status": self.status_message,
            "frames_forwarded": forwarded,
            "frames_gated": gated,
            "switches": self._switches,
        }

    def __repr__(self) -> str:
        return (
            f"SourceArbiter(mode={self._mode.value}, "
            f"routed={self.routed.value}, running={self._running})"
        )
