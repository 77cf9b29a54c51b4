"""
Facecue - Application Wiring
Builds the pipeline services once and runs them until shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import warnings
from dataclasses import dataclass

from .collaborators import DirectoryPhotoStorage, InMemoryPersonRegistry, KnownPersonRegistry, PhotoStorage
from .config import PipelineConfig
from .history import RecognitionHistory
from .matching.cloud import CloudAvailable, CloudCapability, connect_cloud_matcher
from .matching.offline import CacheLimits, OfflineMatcher
from .perception.landmark_detector import LandmarkDetector
from .perception.quality import QualityScorer
from .perception.stability import StabilityTracker
from .pipeline.coordinator import RecognitionPipeline
from .sources.arbiter import SourceArbiter
from .sources.frame_source import FrameChannel, FrameSource, PushFrameSource, WebcamFrameSource

logger = logging.getLogger("facecue.app")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging and quiet noisy libraries."""
    # Suppress PyTorch FutureWarnings from facenet_pytorch
    warnings.filterwarnings("ignore", category=FutureWarning, module="facenet_pytorch")

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


@dataclass
class PipelineServices:
    """Every long-lived service, constructed once at startup."""

    config: PipelineConfig
    channel: FrameChannel
    phone: FrameSource
    glasses: FrameSource
    arbiter: SourceArbiter
    detector: LandmarkDetector
    scorer: QualityScorer
    tracker: StabilityTracker
    cloud: CloudCapability
    offline: OfflineMatcher
    history: RecognitionHistory
    registry: KnownPersonRegistry
    photos: PhotoStorage
    pipeline: RecognitionPipeline

    async def start(self) -> None:
        """Start camera streaming."""
        self.channel.bind()
        await self.arbiter.start()

    async def aclose(self) -> None:
        """Stop streaming, cancel recognition and release the HTTP session."""
        await self.pipeline.shutdown()
        await self.arbiter.stop()
        if isinstance(self.cloud, CloudAvailable):
            await self.cloud.matcher.close()


def build_services(
    config: PipelineConfig | None = None,
    registry: KnownPersonRegistry | None = None,
    photos: PhotoStorage | None = None,
    detector: LandmarkDetector | None = None,
    phone: FrameSource | None = None,
    glasses: FrameSource | None = None,
) -> PipelineServices:
    """
    Construct and wire all pipeline services.

    Args:
        config: Pipeline configuration (loaded from the environment if None)
        registry: Known persons (empty in-memory registry if None)
        photos: Reference photo storage (config.photo_dir if None)
        detector: Landmark detector (MTCNN if None)
        phone: Primary camera (OpenCV webcam if None)
        glasses: Secondary camera (push source for the glasses SDK if None)

    Returns:
        The wired PipelineServices

    Raises:
        ValueError: If the configuration is invalid
    """
    config = config or PipelineConfig.from_env()
    issues = config.validate()
    if issues:
        raise ValueError(f"Invalid pipeline configuration: {'; '.join(issues)}")

    if detector is None:
        from .perception.landmark_detector import MTCNNLandmarkDetector

        detector = MTCNNLandmarkDetector(min_confidence=config.min_detection_confidence)

    registry = registry if registry is not None else InMemoryPersonRegistry()
    photos = photos if photos is not None else DirectoryPhotoStorage(config.photo_dir)

    channel = FrameChannel(maxsize=config.frame_channel_size)
    phone = phone or WebcamFrameSource(device_id=config.webcam_device)
    glasses = glasses or PushFrameSource()
    arbiter = SourceArbiter(phone, glasses, channel, mode=config.camera_mode)

    scorer = QualityScorer()
    tracker = StabilityTracker(
        stability_threshold=config.stability_threshold_seconds,
        recognition_cooldown=config.recognition_cooldown_seconds,
        quality_policy=config.quality_policy,
        auto_recognition=config.auto_recognition,
    )

    cloud = connect_cloud_matcher(
        config.credentials(),
        similarity_threshold=config.similarity_threshold,
        request_timeout=config.request_timeout_seconds,
        max_concurrency=config.cloud_max_concurrency,
        attempt_budget_seconds=config.cloud_attempt_budget_seconds,
    )
    if not isinstance(cloud, CloudAvailable):
        logger.warning(f"Cloud matching unavailable: {cloud.reason}")

    offline = OfflineMatcher(
        cache_path=config.offline_cache_path,
        detector=detector,
        limits=CacheLimits(
            max_per_person=config.offline_max_per_person,
            max_total=config.offline_max_total,
            max_age_seconds=config.offline_max_age_seconds,
        ),
        match_threshold=config.offline_match_threshold,
    )
    offline.set_offline_mode(not isinstance(cloud, CloudAvailable))

    history = RecognitionHistory(config.history_path)

    pipeline = RecognitionPipeline(
        channel=channel,
        detector=detector,
        scorer=scorer,
        tracker=tracker,
        cloud=cloud,
        offline=offline,
        registry=registry,
        photos=photos,
    )
    pipeline.on_match_result(history.handle_outcome)

    logger.info(f"Pipeline services built: {config!r}")

    return PipelineServices(
        config=config,
        channel=channel,
        phone=phone,
        glasses=glasses,
        arbiter=arbiter,
        detector=detector,
        scorer=scorer,
        tracker=tracker,
        cloud=cloud,
        offline=offline,
        history=history,
        registry=registry,
        photos=photos,
        pipeline=pipeline,
    )


async def main() -> None:
    """Run the pipeline and status API until interrupted."""
    from .monitoring import StatusServer

    configure_logging()
    services = build_services()
    status = StatusServer(services)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    if sys.platform == "win32":
        signal.signal(signal.SIGINT, lambda signum, frame: loop.call_soon_threadsafe(shutdown_event.set))
    else:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_event.set)

    await services.start()
    pipeline_task = asyncio.create_task(services.pipeline.run(), name="recognition_pipeline")
    status_task = asyncio.create_task(status.serve(), name="status_api")

    try:
        logger.info("Facecue running, waiting for shutdown signal...")
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down...")
        status.stop()
        await services.aclose()
        for task in (pipeline_task, status_task):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Facecue stopped")


if __name__ == "__main__":
    asyncio.run(main())
