"""Render job construction and submission.

RenderJobFactory turns a located media URL and a caption timeline into the
JSON payload the Shotstack render API expects. RenderClient submits that
payload, polls until the render finishes, and can also have Shotstack
synthesise an ElevenLabs voiceover to lay under the video.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

import httpx

from short_render.config import RenderSettings
from short_render.errors import (
    ExternalServiceError,
    RenderFailedError,
    RenderTimeoutError,
    TransientError,
)
from short_render.logging import get_logger
from short_render.timeline import BackgroundClip, CaptionClip, RenderTimeline

logger = get_logger(__name__)


@dataclass(frozen=True)
class CaptionStyle:
    """Appearance of caption title assets.

    Attributes:
        style: Shotstack title style preset
        color: Text colour
        size: Text size preset (xx-small ... xx-large)
        background: Box colour behind the text
        position: Placement on screen
        transition_in: Transition when a caption appears
        transition_out: Transition when a caption disappears
    """

    style: str = "subtitle"
    color: str = "#ffffff"
    size: str = "medium"
    background: str = "rgba(0,0,0,0.5)"
    position: str = "bottom"
    transition_in: str = "fade"
    transition_out: str = "fade"


DEFAULT_CAPTION_STYLE = CaptionStyle()


@dataclass(frozen=True)
class OutputSpec:
    """Requested output file. Defaults to a 1080x1920 vertical MP4."""

    format: str = "mp4"
    resolution: str = "hd"
    width: int = 1080
    height: int = 1920

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "resolution": self.resolution,
            "size": {"width": self.width, "height": self.height},
        }


@dataclass(frozen=True)
class RenderJobRequest:
    """A complete render job ready for submission.

    Attributes:
        tracks: Track dicts in payload order (background first)
        output: Output file specification
        background_color: Canvas colour behind all tracks
    """

    tracks: tuple[dict[str, Any], ...]
    output: OutputSpec = field(default_factory=OutputSpec)
    background_color: str = "#000000"

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the render API request body."""
        return {
            "timeline": {
                "background": self.background_color,
                "tracks": [dict(track) for track in self.tracks],
            },
            "output": self.output.to_dict(),
        }


class RenderJobFactory:
    """Composes render job payloads.

    Track order is fixed: background video, then captions (so they render
    above it), then the optional voiceover audio.
    """

    def __init__(self, caption_style: CaptionStyle | None = None):
        self.caption_style = caption_style or DEFAULT_CAPTION_STYLE

    def background_track(self, clip: BackgroundClip) -> dict[str, Any]:
        return {
            "clips": [
                {
                    "asset": {
                        "type": "video",
                        "src": clip.source_url,
                        "trim": clip.trim_start,
                        "volume": clip.volume,
                    },
                    "start": 0,
                    "length": clip.length,
                    "fit": "crop",
                    "scale": 1.0,
                }
            ]
        }

    def caption_asset(
        self, clip: CaptionClip, style: CaptionStyle | None = None
    ) -> dict[str, Any]:
        style = style or self.caption_style
        return {
            "asset": {
                "type": "title",
                "text": clip.text,
                "style": style.style,
                "color": style.color,
                "size": style.size,
                "background": style.background,
                "position": style.position,
            },
            "start": clip.start,
            "length": clip.length,
            "transition": {"in": style.transition_in, "out": style.transition_out},
        }

    def caption_track(
        self, captions: tuple[CaptionClip, ...], style: CaptionStyle | None = None
    ) -> dict[str, Any]:
        return {"clips": [self.caption_asset(clip, style) for clip in captions]}

    def voiceover_track(self, audio_url: str, length: float) -> dict[str, Any]:
        return {
            "clips": [
                {
                    "asset": {"type": "audio", "src": audio_url},
                    "start": 0,
                    "length": length,
                }
            ]
        }

    def compose(
        self,
        media_url: str,
        trim_start: float,
        timeline: RenderTimeline,
        output_spec: OutputSpec | None = None,
        *,
        voiceover_url: str | None = None,
        caption_style: CaptionStyle | None = None,
    ) -> RenderJobRequest:
        """Build a render job from a located source and a timeline.

        Args:
            media_url: Direct media URL from the locator
            trim_start: Offset into the source footage in seconds
            timeline: Timeline from TimelineBuilder
            output_spec: Output file specification
            voiceover_url: Optional narration audio URL
            caption_style: Caption appearance for this job; the factory default
                when omitted

        Returns:
            RenderJobRequest; identical inputs give identical payloads
        """
        background = replace(timeline.background, source_url=media_url, trim_start=trim_start)
        tracks = [self.background_track(background)]
        if timeline.captions:
            tracks.append(self.caption_track(timeline.captions, caption_style))
        if voiceover_url:
            tracks.append(self.voiceover_track(voiceover_url, background.length))

        return RenderJobRequest(tracks=tuple(tracks), output=output_spec or OutputSpec())


Sleep = Callable[[float], Awaitable[None]]


class RenderClient:
    """Async client for the Shotstack render and asset APIs.

    Example:
        client = RenderClient(settings.render)
        render_id = await client.submit(job)
        video_url = await client.wait_for_render(render_id)
    """

    def __init__(
        self,
        settings: RenderSettings | None = None,
        production: bool = False,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            settings: Render settings with credentials and polling limits
            production: Use the production environment instead of sandbox
            client: Shared HTTP client; one is created per request otherwise
            sleep: Coroutine used between status polls

        Raises:
            ConfigurationError: If credentials for the environment are missing
        """
        self.settings = settings or RenderSettings()
        self.production = production
        self._api_key, self._owner_id = self.settings.credentials(production)
        self._client = client
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return self.settings.base_url(self.production)

    @property
    def mode(self) -> str:
        return "production" if self.production else "sandbox"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "x-shotstack-owner": self._owner_id,
        }

    async def _request(self, method: str, path: str, body: dict | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, json=body, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.settings.timeout) as client:
                    response = await client.request(method, url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientError(
                f"Render service unreachable: {type(e).__name__}",
                context={"method": method, "path": path},
            ) from e

        if not response.is_success:
            raise ExternalServiceError(
                f"Render service returned {response.status_code}",
                context={"method": method, "path": path, "body": response.text[:200]},
                recoverable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(
                "Render service returned invalid JSON",
                context={"method": method, "path": path},
            ) from e

    @staticmethod
    def _field(data: dict[str, Any], *keys: str) -> Any:
        value: Any = data
        try:
            for key in keys:
                value = value[key]
        except (KeyError, TypeError) as e:
            raise ExternalServiceError(
                f"Render service response missing {'.'.join(keys)}",
            ) from e
        return value

    async def submit(self, job: RenderJobRequest) -> str:
        """Queue a render job.

        Returns:
            Render ID assigned by the service
        """
        data = await self._request("POST", "/render", job.to_payload())
        render_id = self._field(data, "response", "id")
        logger.info(f"Submitted render {render_id}", extra={"mode": self.mode})
        return render_id

    async def wait_for_render(self, render_id: str) -> str:
        """Poll a render until it completes.

        Returns:
            URL of the rendered video

        Raises:
            RenderFailedError: If the service reports failure
            RenderTimeoutError: If polling runs out first
        """
        log = logger.with_context(render_id=render_id)
        for _ in range(self.settings.max_render_polls):
            data = await self._request("GET", f"/render/{render_id}")
            status = self._field(data, "response", "status")
            if status == "done":
                return self._field(data, "response", "url")
            if status == "failed":
                error = data["response"].get("error") or "Unknown error"
                raise RenderFailedError(f"Render failed: {error}", context={"render_id": render_id})
            log.debug(f"Render is {status}")
            await self._sleep(self.settings.poll_interval)

        raise RenderTimeoutError(
            "Render timeout - video processing took too long",
            context={"render_id": render_id},
        )

    async def create_voiceover(self, text: str, voice_id: str) -> str:
        """Ask the service to synthesise narration with ElevenLabs.

        Returns:
            Asset ID of the pending voiceover
        """
        body = {
            "provider": "elevenlabs",
            "options": {"type": "text-to-speech", "text": text, "voice": voice_id},
        }
        data = await self._request("POST", "/assets", body)
        return self._field(data, "data", "id")

    async def wait_for_asset(self, asset_id: str) -> str:
        """Poll a generated asset until it is ready.

        Returns:
            URL of the asset

        Raises:
            RenderFailedError: If generation fails
            RenderTimeoutError: If polling runs out first
        """
        for _ in range(self.settings.max_asset_polls):
            data = await self._request("GET", f"/assets/{asset_id}")
            status = self._field(data, "data", "status")
            if status == "ready":
                return self._field(data, "data", "url")
            if status == "failed":
                error = data["data"].get("error") or "Unknown error"
                raise RenderFailedError(
                    f"Asset generation failed: {error}",
                    context={"asset_id": asset_id},
                )
            await self._sleep(self.settings.poll_interval)

        raise RenderTimeoutError("Asset generation timeout", context={"asset_id": asset_id})
