"""End-to-end short video generation.

Locates the background footage, optionally has narration synthesised,
builds the caption timeline, composes and submits the render job, and
records every billed call in the usage ledger along the way.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from short_render.config import Settings
from short_render.errors import ExtractionError, ValidationError
from short_render.ledger import UsageLedger
from short_render.locator import ExtractionRequest, ExtractionSuccess, MediaLocator
from short_render.logging import get_logger
from short_render.models.usage import Service
from short_render.pricing import RenderCosts, render_cost, voiceover_cost
from short_render.render import OutputSpec, RenderClient, RenderJobFactory
from short_render.storage import create_store
from short_render.timeline import TimelineBuilder

logger = get_logger(__name__)


@dataclass
class ShortVideoRequest:
    """Everything needed to produce one short.

    Attributes:
        source_url: YouTube link of the background footage
        script: Narration text, captioned and optionally voiced
        duration: Output length in seconds
        start_time: Offset into the source footage in seconds
        add_captions: Overlay the script as captions
        voice_id: ElevenLabs voice for narration; no voiceover if None
        output: Output file specification
    """

    source_url: str
    script: str
    duration: float
    start_time: float = 0.0
    add_captions: bool = True
    voice_id: str | None = None
    output: OutputSpec = field(default_factory=OutputSpec)

    def validate(self) -> None:
        """Raise ValidationError for nonsensical timing."""
        if self.duration <= 0:
            raise ValidationError("Duration must be positive", context={"duration": self.duration})
        if self.start_time < 0:
            raise ValidationError(
                "Start time cannot be negative",
                context={"start_time": self.start_time},
            )


@dataclass
class ShortVideoResult:
    """Outcome of a successful generation."""

    video_url: str
    render_id: str
    source: ExtractionSuccess
    costs: RenderCosts
    mode: str
    audio_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "video_url": self.video_url,
            "render_id": self.render_id,
            "source_url": self.source.media_url,
            "source_title": self.source.title,
            "audio_url": self.audio_url,
            "costs": self.costs.to_dict(),
            "mode": self.mode,
        }


class ShortVideoPipeline:
    """Runs locate -> (voiceover) -> timeline -> compose -> render."""

    def __init__(
        self,
        locator: MediaLocator,
        renderer: RenderClient,
        ledger: UsageLedger,
        builder: TimelineBuilder | None = None,
        factory: RenderJobFactory | None = None,
    ):
        self.locator = locator
        self.renderer = renderer
        self.ledger = ledger
        self.builder = builder or TimelineBuilder()
        self.factory = factory or RenderJobFactory()

    async def locate(self, source_url: str) -> ExtractionSuccess:
        """Resolve the background footage, recording the locator attempts.

        Raises:
            ExtractionError: If the locator fails
        """
        outcome = await self.locator.locate(ExtractionRequest(source_url=source_url))
        if outcome.attempts:
            await self.ledger.record_usage(
                Service.COBALT,
                "media-extraction",
                cost=0.0,
                requests=outcome.attempts,
            )

        if isinstance(outcome, ExtractionSuccess):
            return outcome
        raise ExtractionError(outcome.reason, outcome.attempts, source_url=source_url)

    async def synthesize_voiceover(self, script: str, voice_id: str) -> str:
        """Have the render service voice the script; returns the audio URL."""
        asset_id = await self.renderer.create_voiceover(script, voice_id)
        audio_url = await self.renderer.wait_for_asset(asset_id)
        await self.ledger.record_usage(
            Service.ELEVENLABS,
            "voice-synthesis",
            cost=voiceover_cost(len(script), self.renderer.production),
            characters=len(script),
        )
        return audio_url

    async def generate(self, request: ShortVideoRequest) -> ShortVideoResult:
        """Produce one short video.

        Raises:
            ValidationError: If the request timing is invalid
            ExtractionError: If the background footage cannot be located
            ExternalServiceError: If the render service fails
        """
        request.validate()
        log = logger.with_context(source_url=request.source_url)
        log.info("Generating short")

        source = await self.locate(request.source_url)

        audio_url = None
        if request.voice_id:
            audio_url = await self.synthesize_voiceover(request.script, request.voice_id)

        timeline = self.builder.build(request.script, request.duration, request.add_captions)
        job = self.factory.compose(
            source.media_url,
            request.start_time,
            timeline,
            request.output,
            voiceover_url=audio_url,
        )

        render_id = await self.renderer.submit(job)
        shotstack_cost = render_cost(request.duration, self.renderer.production)
        await self.ledger.record_usage(Service.SHOTSTACK, "video-render", cost=shotstack_cost)

        video_url = await self.renderer.wait_for_render(render_id)
        costs = RenderCosts(
            shotstack_cost=shotstack_cost,
            elevenlabs_cost=(
                voiceover_cost(len(request.script), self.renderer.production) if audio_url else 0.0
            ),
        )
        log.info(
            f"Short ready, cost ${costs.total_cost:.2f}",
            extra={"render_id": render_id, "mode": self.renderer.mode},
        )

        return ShortVideoResult(
            video_url=video_url,
            render_id=render_id,
            source=source,
            costs=costs,
            mode=self.renderer.mode,
            audio_url=audio_url,
        )


def build_pipeline(settings: Settings, production: bool = False) -> ShortVideoPipeline:
    """Wire a pipeline from settings.

    Raises:
        ConfigurationError: If render credentials are missing
    """
    return ShortVideoPipeline(
        locator=MediaLocator(settings.locator),
        renderer=RenderClient(settings.render, production=production),
        ledger=UsageLedger(create_store(settings.storage), settings.limits),
    )
