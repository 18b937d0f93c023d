"""Extraction pipeline orchestrator.

Coordinates the checkpointed extraction flow:
- Screenshot capture (Playwright)
- Component identification (vision capability)
- Design token derivation
- Optional fidelity comparison of regenerated components

Each stage persists its output before announcing it, so a crashed run can
always be inspected or resumed from its checkpoint.
"""

from __future__ import annotations

import asyncio
import io
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from PIL import Image, UnidentifiedImageError

from ..capture.screenshots import CaptureOptions, ScreenshotCapture
from ..checkpoint.base import CheckpointStore
from ..checkpoint.registry import create_checkpoint_store
from ..checkpoint.types import (
    BoundingBox,
    ComponentComparison,
    ExtractionCheckpoint,
    ExtractionStatus,
    Screenshots,
)
from ..comparison.compare import BatchComparisonItem, ComparisonOptions, compare_components_batch
from ..config.models import CaptureSettings, ExtractorConfig
from ..errors import CheckpointNotFoundError, ImageDecodeError, StoreIOError
from ..extractor_logging import LogCategory, get_category_logger
from ..tokens import ComputedStyleTokenExtractor, TokenExtractor
from ..vision.client import OpenAIVisionClient
from ..vision.identify import ComponentIdentifier
from .types import (
    ComponentRenderer,
    EventType,
    ExtractorEvent,
    ExtractorEventHandler,
    ExtractorResult,
    ExtractorStep,
    ResumeMode,
    RunConfig,
    StepStatus,
)

logger = get_category_logger(LogCategory.PIPELINE)

# Progress milestones reached when each stage completes
PROGRESS_START = 0
PROGRESS_SCREENSHOT = 25
PROGRESS_VISION = 50
PROGRESS_EXTRACTION = 75
PROGRESS_COMPARISON = 90
PROGRESS_COMPLETE = 100


def crop_component(image: bytes, box: BoundingBox) -> bytes | None:
    """Crop a bounding box out of a PNG, clamped to the image.

    Returns:
        PNG bytes of the crop, or None when the clamped box has no area.

    Raises:
        ImageDecodeError: If the image cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(image)) as source:
            left, top, right, bottom = box.to_crop_box(source.width, source.height)
            if right <= left or bottom <= top:
                return None
            cropped = source.crop((left, top, right, bottom))
            buffer = io.BytesIO()
            cropped.save(buffer, format="PNG")
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"Cannot decode viewport screenshot: {e}") from e


@dataclass
class _RunState:
    """Mutable state threaded through the stages of one run."""

    checkpoint: ExtractionCheckpoint
    config: RunConfig
    viewport: tuple[int, int]
    seed: ExtractionCheckpoint | None = None  # Loaded checkpoint reused by REUSE resumes


Stage = Callable[[_RunState], Awaitable[ExtractorStep]]


class Extractor:
    """Runs the extraction pipeline against a checkpoint store.

    Collaborators left as None make their stage skip. The store's lifecycle
    belongs to whoever constructed it; ``close`` is provided for callers that
    hand ownership to the extractor.

    Args:
        store: Checkpoint persistence backend.
        capture: Screenshot capture driver.
        identifier: Vision component identifier.
        token_extractor: Design token collaborator.
        renderer: Produces regenerated component renderings for comparison.
        comparison_options: Weights and thresholds for comparison scoring.
        capture_settings: Default capture parameters for each run.
    """

    def __init__(
        self,
        store: CheckpointStore,
        capture: ScreenshotCapture | None = None,
        identifier: ComponentIdentifier | None = None,
        token_extractor: TokenExtractor | None = None,
        renderer: ComponentRenderer | None = None,
        comparison_options: ComparisonOptions | None = None,
        capture_settings: CaptureSettings | None = None,
    ):
        self.store = store
        self.capture = capture
        self.identifier = identifier
        self.token_extractor = token_extractor
        self.renderer = renderer
        self.comparison_options = comparison_options or ComparisonOptions()
        self.capture_settings = capture_settings or CaptureSettings()
        self._handlers: list[ExtractorEventHandler] = []

    def on(self, handler: ExtractorEventHandler) -> None:
        """Register an event handler; handlers run synchronously in registration order."""
        self._handlers.append(handler)

    def _emit(
        self,
        event_type: EventType,
        checkpoint: ExtractionCheckpoint,
        step: ExtractorStep | None = None,
        error: BaseException | None = None,
    ) -> None:
        event = ExtractorEvent(type=event_type, checkpoint=checkpoint, step=step, error=error)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    f"Event handler {getattr(handler, '__name__', handler)!r} "
                    f"failed on {event_type.value}: {e}",
                    extra={"checkpoint_id": checkpoint.id, "stage": event_type.value},
                )

    async def _advance(self, state: _RunState, **fields: Any) -> ExtractionCheckpoint:
        """Persist stage output and reload the checkpoint as stored."""
        checkpoint_id = state.checkpoint.id
        await self.store.update(checkpoint_id, **fields)
        checkpoint = await self.store.load(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        state.checkpoint = checkpoint
        return checkpoint

    @staticmethod
    def _skipped(name: str, start_time: float, reason: str) -> ExtractorStep:
        return ExtractorStep(
            name=name,
            status=StepStatus.SKIPPED,
            duration_ms=(time.time() - start_time) * 1000,
            data={"reason": reason},
        )

    async def _complete_stage(
        self,
        state: _RunState,
        name: str,
        event_type: EventType,
        start_time: float,
        data: dict[str, Any],
        **fields: Any,
    ) -> ExtractorStep:
        checkpoint = await self._advance(state, **fields)
        step = ExtractorStep(
            name=name,
            status=StepStatus.SUCCESS,
            duration_ms=(time.time() - start_time) * 1000,
            data=data,
        )
        logger.info(
            f"Stage {name} finished at {checkpoint.progress}%",
            extra={
                "checkpoint_id": checkpoint.id,
                "stage": name,
                "duration_ms": step.duration_ms,
            },
        )
        self._emit(event_type, checkpoint, step)
        return step

    async def _screenshot_stage(self, state: _RunState) -> ExtractorStep:
        start_time = time.time()
        if state.config.dry_run:
            return self._skipped("screenshot", start_time, "Dry run mode")
        if self.capture is None:
            return self._skipped("screenshot", start_time, "No screenshot capture configured")

        data: dict[str, Any] = {}
        if state.seed is not None and state.seed.screenshots is not None:
            screenshots = state.seed.screenshots
            data["reused"] = True
        else:
            width, height = state.viewport
            options = replace(
                CaptureOptions.from_settings(state.checkpoint.url, self.capture_settings),
                viewport_width=width,
                viewport_height=height,
            )
            if state.config.timeout_ms is not None:
                options.timeout_ms = state.config.timeout_ms
            result = await self.capture.capture(options)
            screenshots = Screenshots(viewport=result.viewport, full_page=result.full_page)

        data.update(
            viewportSize=len(screenshots.viewport),
            fullPageSize=len(screenshots.full_page),
        )
        return await self._complete_stage(
            state,
            "screenshot",
            EventType.SCREENSHOT,
            start_time,
            data,
            status=ExtractionStatus.SCREENSHOT,
            progress=PROGRESS_SCREENSHOT,
            screenshots=screenshots,
        )

    async def _vision_stage(self, state: _RunState) -> ExtractorStep:
        start_time = time.time()
        if state.config.dry_run:
            return self._skipped("vision", start_time, "Dry run mode")
        if state.config.skip_vision:
            return self._skipped("vision", start_time, "Vision step disabled by config")
        if self.identifier is None:
            return self._skipped("vision", start_time, "No vision client configured")
        if state.checkpoint.screenshots is None:
            return self._skipped("vision", start_time, "No screenshot available")

        data: dict[str, Any] = {}
        if state.seed is not None and state.seed.identified_components is not None:
            components = state.seed.identified_components
            data["reused"] = True
        else:
            result = await self.identifier.identify(state.checkpoint.screenshots.viewport)
            components = result.components

        data["componentsIdentified"] = len(components)
        return await self._complete_stage(
            state,
            "vision",
            EventType.VISION,
            start_time,
            data,
            status=ExtractionStatus.VISION,
            progress=PROGRESS_VISION,
            identified_components=components,
        )

    async def _extraction_stage(self, state: _RunState) -> ExtractorStep:
        start_time = time.time()
        if state.config.dry_run:
            return self._skipped("extraction", start_time, "Dry run mode")
        if state.config.skip_tokens:
            return self._skipped("extraction", start_time, "Token extraction disabled by config")
        if self.token_extractor is None:
            return self._skipped("extraction", start_time, "No token extractor configured")

        data: dict[str, Any] = {}
        if state.seed is not None and state.seed.extracted_tokens is not None:
            tokens = state.seed.extracted_tokens
            data["reused"] = True
        else:
            tokens = await self.token_extractor.extract(
                state.checkpoint.url,
                state.viewport,
                state.checkpoint.identified_components or [],
            )

        data["tokenGroups"] = len(tokens)
        return await self._complete_stage(
            state,
            "extraction",
            EventType.EXTRACTION,
            start_time,
            data,
            status=ExtractionStatus.EXTRACTION,
            progress=PROGRESS_EXTRACTION,
            extracted_tokens=tokens,
        )

    async def _comparison_stage(self, state: _RunState) -> ExtractorStep:
        start_time = time.time()
        checkpoint = state.checkpoint
        if state.config.dry_run:
            return self._skipped("comparison", start_time, "Dry run mode")
        if state.config.skip_comparison:
            return self._skipped("comparison", start_time, "Comparison disabled by config")
        if self.renderer is None:
            return self._skipped("comparison", start_time, "No component renderer configured")
        if not checkpoint.identified_components:
            return self._skipped("comparison", start_time, "No components to compare")
        if checkpoint.screenshots is None:
            return self._skipped("comparison", start_time, "No screenshot available")

        items: list[BatchComparisonItem] = []
        for index, component in enumerate(checkpoint.identified_components):
            original = await asyncio.to_thread(
                crop_component, checkpoint.screenshots.viewport, component.bounding_box
            )
            if original is None:
                continue
            generated = await self.renderer.render(component, checkpoint.extracted_tokens)
            if generated is None:
                continue
            items.append(
                BatchComparisonItem(
                    component_id=f"{component.type}-{index}",
                    original_image=original,
                    generated_image=generated,
                )
            )

        if not items:
            return self._skipped("comparison", start_time, "No components rendered")

        results = await compare_components_batch(items, self.comparison_options)
        comparisons = [
            ComponentComparison(
                component_id=item.component_id,
                original_screenshot=item.original_image,
                generated_screenshot=item.generated_image,
                ssim_score=batch.result.ssim_score,
                color_score=batch.result.color_score,
                combined_score=batch.result.combined_score,
                passed=batch.result.passed,
                diff_image=batch.result.diff_image,
            )
            for item, batch in zip(items, results, strict=True)
        ]
        passed = sum(1 for c in comparisons if c.passed)
        return await self._complete_stage(
            state,
            "comparison",
            EventType.COMPARISON,
            start_time,
            {"compared": len(comparisons), "passed": passed},
            status=ExtractionStatus.COMPARISON,
            progress=PROGRESS_COMPARISON,
            comparisons=comparisons,
        )

    async def _fail(self, state: _RunState, step: ExtractorStep, error: Exception) -> None:
        checkpoint = await self._advance(
            state, status=ExtractionStatus.FAILED, error=step.error
        )
        logger.error(
            f"Stage {step.name} failed: {step.error}",
            extra={"checkpoint_id": checkpoint.id, "stage": step.name},
        )
        self._emit(EventType.ERROR, checkpoint, step, error)

    async def _execute(self, state: _RunState) -> ExtractorResult:
        start_time = time.time()
        steps: list[ExtractorStep] = []

        await self.store.save(state.checkpoint)
        logger.info(
            f"Starting extraction of {state.checkpoint.url}",
            extra={"checkpoint_id": state.checkpoint.id, "url": state.checkpoint.url},
        )
        self._emit(EventType.START, state.checkpoint)

        stages: list[tuple[str, Stage]] = [
            ("screenshot", self._screenshot_stage),
            ("vision", self._vision_stage),
            ("extraction", self._extraction_stage),
            ("comparison", self._comparison_stage),
        ]
        for name, stage in stages:
            stage_start = time.time()
            try:
                step = await stage(state)
            except (CheckpointNotFoundError, StoreIOError):
                raise
            except Exception as e:
                step = ExtractorStep(
                    name=name,
                    status=StepStatus.FAILED,
                    duration_ms=(time.time() - stage_start) * 1000,
                    error=str(e) or type(e).__name__,
                )
                steps.append(step)
                await self._fail(state, step, e)
                return ExtractorResult(
                    checkpoint=state.checkpoint,
                    dry_run=state.config.dry_run,
                    duration_ms=(time.time() - start_time) * 1000,
                    steps=steps,
                )
            steps.append(step)

        checkpoint = await self._advance(
            state, status=ExtractionStatus.COMPLETE, progress=PROGRESS_COMPLETE
        )
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Extraction of {checkpoint.url} complete in {duration_ms:.0f}ms",
            extra={"checkpoint_id": checkpoint.id, "duration_ms": duration_ms},
        )
        self._emit(EventType.COMPLETE, checkpoint)
        return ExtractorResult(
            checkpoint=checkpoint,
            dry_run=state.config.dry_run,
            duration_ms=duration_ms,
            steps=steps,
        )

    def _viewport_for(self, config: RunConfig) -> tuple[int, int]:
        return (
            config.viewport_width or self.capture_settings.viewport_width,
            config.viewport_height or self.capture_settings.viewport_height,
        )

    async def run(self, config: RunConfig) -> ExtractorResult:
        """Run the pipeline for ``config.url`` under a new checkpoint.

        Stage failures are recorded on the checkpoint and returned in the
        result.

        Raises:
            CheckpointNotFoundError: If the checkpoint vanishes mid-run.
            StoreIOError: If the store cannot persist the run.
        """
        checkpoint = ExtractionCheckpoint(id=uuid.uuid4().hex, url=config.url)
        state = _RunState(checkpoint=checkpoint, config=config, viewport=self._viewport_for(config))
        return await self._execute(state)

    async def resume(
        self,
        checkpoint_id: str,
        mode: ResumeMode = ResumeMode.RERUN,
        config: RunConfig | None = None,
    ) -> ExtractorResult | None:
        """Run the pipeline again for an existing checkpoint's url.

        The run gets a new checkpoint; the resumed one is left as it was so
        a failed run stays available for inspection. With
        ``ResumeMode.REUSE`` screenshots, components and tokens already on
        the resumed checkpoint are carried over instead of being re-derived.

        Args:
            checkpoint_id: Checkpoint to resume.
            mode: Whether to re-derive or reuse stored stage outputs.
            config: Run options; its url is replaced by the recorded one.

        Returns:
            ExtractorResult for the new checkpoint, or None if
            ``checkpoint_id`` does not exist.
        """
        previous = await self.store.load(checkpoint_id)
        if previous is None:
            return None

        run_config = replace(config, url=previous.url) if config else RunConfig(url=previous.url)
        checkpoint = ExtractionCheckpoint(id=uuid.uuid4().hex, url=previous.url)
        logger.info(
            f"Resuming {checkpoint_id} ({mode.value}) from {previous.status.value} "
            f"as {checkpoint.id}",
            extra={"checkpoint_id": checkpoint.id},
        )
        state = _RunState(
            checkpoint=checkpoint,
            config=run_config,
            viewport=self._viewport_for(run_config),
            seed=previous if mode == ResumeMode.REUSE else None,
        )
        return await self._execute(state)

    def run_sync(self, config: RunConfig) -> ExtractorResult:
        """Synchronous wrapper for run()."""
        return asyncio.run(self.run(config))

    async def close(self) -> None:
        """Close the checkpoint store."""
        await self.store.close()

    async def __aenter__(self) -> Extractor:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create_extractor(
    config: ExtractorConfig,
    store: CheckpointStore | None = None,
    renderer: ComponentRenderer | None = None,
) -> Extractor:
    """Wire an Extractor from configuration.

    The vision stage is only enabled when an API key is configured.

    Args:
        config: Extractor configuration.
        store: Checkpoint store; created from ``config`` when omitted.
        renderer: Optional component renderer enabling the comparison stage.

    Returns:
        Configured Extractor.

    Raises:
        ConfigurationError: If the configured backend cannot be created.
    """
    identifier = None
    if config.has_vision:
        identifier = ComponentIdentifier(
            OpenAIVisionClient(
                api_key=config.openai_api_key,
                model=config.vision_model,
                base_url=config.openai_base_url,
                temperature=config.vision_temperature,
                max_tokens=config.vision_max_tokens,
            )
        )
    else:
        logger.debug("No OpenAI API key configured; vision stage will be skipped")

    return Extractor(
        store=store or create_checkpoint_store(config),
        capture=ScreenshotCapture(),
        identifier=identifier,
        token_extractor=ComputedStyleTokenExtractor(timeout_ms=config.capture.timeout_ms),
        renderer=renderer,
        comparison_options=ComparisonOptions.from_settings(config.comparison),
        capture_settings=config.capture,
    )


__all__ = [
    "Extractor",
    "create_extractor",
    "crop_component",
]
