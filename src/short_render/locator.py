"""Direct media URL extraction through a Cobalt locator instance.

The locator turns a YouTube link into a direct MP4 URL the render service
can fetch. Self-hosted Cobalt instances sleep when idle (503 until warm)
and YouTube intermittently rejects their session, so each lookup is a
short bounded retry loop:

- 503 or network failure: wait 5s, resend
- retryable error code (YouTube login failure): wait 2s, resend
- any other error code: give up immediately
- tunnel / stream / redirect: done

Raw responses are first mapped onto a closed set of variants by
parse_upstream_response; the retry loop only ever sees those variants.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

import httpx

from short_render.config import LocatorSettings
from short_render.logging import get_logger

logger = get_logger(__name__)

# Failure reasons produced by the locator itself
INVALID_REFERENCE = "invalid_reference"
EXHAUSTED = "exhausted"
UNEXPECTED_RESPONSE = "unexpected_response"
UNKNOWN_ERROR_CODE = "unknown_error"

READY_STATUSES = frozenset({"tunnel", "stream", "redirect"})

ACCEPTED_REFERENCE_PATTERNS = (
    re.compile(r"^https?://(www\.)?(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)"),
    re.compile(r"^https?://(www\.)?youtube\.com/v/"),
    re.compile(r"^https?://(www\.)?youtube\.com/shorts/"),
)


def is_valid_reference(url: str) -> bool:
    """Check a source link against the accepted YouTube URL shapes."""
    return any(pattern.match(url) for pattern in ACCEPTED_REFERENCE_PATTERNS)


@dataclass(frozen=True)
class ExtractionRequest:
    """What to extract and in which format."""

    source_url: str
    desired_quality: str = "720"
    desired_audio_format: str = "mp3"
    video_codec: str = "h264"

    def to_payload(self) -> dict[str, Any]:
        """Request body sent to the locator on every attempt."""
        return {
            "url": self.source_url,
            "videoCodec": self.video_codec,
            "videoQuality": self.desired_quality,
            "audioFormat": self.desired_audio_format,
            "isAudioOnly": False,
        }


@dataclass(frozen=True)
class ExtractionSuccess:
    media_url: str
    quality: str
    title: str = "YouTube Video"
    media_type: str = "video/mp4"
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ExtractionFailure:
    reason: str
    attempts: int

    @property
    def ok(self) -> bool:
        return False


ExtractionOutcome = Union[ExtractionSuccess, ExtractionFailure]


@dataclass(frozen=True)
class UpstreamReady:
    """tunnel, stream and redirect all land here; they differ only in how
    Cobalt serves the bytes, which is invisible to the render service."""

    url: str
    filename: str | None = None


@dataclass(frozen=True)
class UpstreamError:
    code: str


@dataclass(frozen=True)
class UpstreamUnavailable:
    detail: str = ""


@dataclass(frozen=True)
class UpstreamUnrecognized:
    detail: str = ""


UpstreamResponse = Union[UpstreamReady, UpstreamError, UpstreamUnavailable, UpstreamUnrecognized]


def _error_code(body: dict[str, Any]) -> str:
    error = body.get("error")
    code = error.get("code") if isinstance(error, dict) else None
    return code if isinstance(code, str) and code else UNKNOWN_ERROR_CODE


def parse_upstream_response(status_code: int, body: Any) -> UpstreamResponse:
    """Map one raw locator response onto an UpstreamResponse variant.

    Args:
        status_code: HTTP status of the response
        body: Decoded JSON body, or None if it could not be decoded

    Returns:
        Exactly one variant; shapes outside the known set become
        UpstreamUnrecognized rather than being guessed at.
    """
    if status_code == 503:
        return UpstreamUnavailable(detail="HTTP 503")

    if not 200 <= status_code < 300:
        # Cobalt reports most errors as 4xx with a regular error body
        if isinstance(body, dict) and body.get("status") == "error":
            return UpstreamError(code=_error_code(body))
        return UpstreamError(code=f"http_{status_code}")

    if body is None:
        return UpstreamUnavailable(detail="undecodable body")

    if not isinstance(body, dict):
        return UpstreamUnrecognized(detail=f"body is {type(body).__name__}")

    status = body.get("status")
    if status in READY_STATUSES:
        url = body.get("url")
        if isinstance(url, str) and url:
            filename = body.get("filename")
            return UpstreamReady(url=url, filename=filename if isinstance(filename, str) else None)
        return UpstreamUnrecognized(detail=f"status={status} without url")

    if status == "error":
        return UpstreamError(code=_error_code(body))

    return UpstreamUnrecognized(detail=f"status={status!r}")


Sleep = Callable[[float], Awaitable[None]]
AttemptCallback = Callable[[int, UpstreamResponse], Awaitable[None]]


class MediaLocator:
    """Resolves YouTube links to direct media URLs via Cobalt.

    Example:
        locator = MediaLocator(settings.locator)
        outcome = await locator.locate(ExtractionRequest(url))
        if outcome.ok:
            print(outcome.media_url)

    The HTTP client and sleep function are injectable so the retry loop can
    be driven without a network or wall-clock waits. Instances hold no
    per-request state and can serve concurrent locate() calls.
    """

    def __init__(
        self,
        settings: LocatorSettings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        on_attempt: AttemptCallback | None = None,
    ):
        """Initialize the locator.

        Args:
            settings: Locator settings (defaults apply when omitted)
            client: Shared HTTP client; one is created per call otherwise
            sleep: Coroutine used for retry delays
            on_attempt: Awaited after every attempt with (attempt, response)
        """
        self.settings = settings or LocatorSettings()
        self._client = client
        self._sleep = sleep
        self._on_attempt = on_attempt

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        }

    async def locate(self, request: ExtractionRequest) -> ExtractionOutcome:
        """Resolve a source link to a direct media URL.

        Args:
            request: Source link and desired format

        Returns:
            ExtractionSuccess, or ExtractionFailure with the reason and the
            number of attempts consumed (0 for a rejected link)
        """
        if not is_valid_reference(request.source_url):
            logger.warning(
                "Rejected unrecognised video reference",
                extra={"source_url": request.source_url},
            )
            return ExtractionFailure(reason=INVALID_REFERENCE, attempts=0)

        if self._client is not None:
            return await self._retry_loop(self._client, request)

        async with httpx.AsyncClient(timeout=self.settings.timeout) as client:
            return await self._retry_loop(client, request)

    async def _retry_loop(
        self,
        client: httpx.AsyncClient,
        request: ExtractionRequest,
    ) -> ExtractionOutcome:
        payload = request.to_payload()
        max_attempts = self.settings.max_attempts
        attempt = 0
        response: UpstreamResponse | None = None

        while attempt < max_attempts:
            attempt += 1
            response = await self._send(client, payload)
            logger.info(
                f"Locator attempt {attempt}/{max_attempts}: {type(response).__name__}",
                extra={"source_url": request.source_url, "attempt": attempt},
            )
            if self._on_attempt is not None:
                await self._on_attempt(attempt, response)

            if isinstance(response, UpstreamReady):
                return ExtractionSuccess(
                    media_url=response.url,
                    quality=request.desired_quality,
                    title=response.filename or "YouTube Video",
                    attempts=attempt,
                )

            if isinstance(response, UpstreamUnrecognized):
                logger.error(
                    "Unexpected locator response",
                    extra={"detail": response.detail, "attempt": attempt},
                )
                return ExtractionFailure(reason=UNEXPECTED_RESPONSE, attempts=attempt)

            if isinstance(response, UpstreamError):
                if response.code not in self.settings.retryable_codes:
                    logger.warning(
                        f"Locator rejected source: {response.code}",
                        extra={"source_url": request.source_url, "attempt": attempt},
                    )
                    return ExtractionFailure(reason=response.code, attempts=attempt)
                delay = self.settings.retryable_code_delay
            else:
                delay = self.settings.transient_delay

            if attempt < max_attempts:
                logger.info(f"Waiting {delay:.0f}s before retrying locator")
                await self._sleep(delay)

        if isinstance(response, UpstreamError):
            # A plain resend cannot rotate the upstream's session; if this
            # keeps happening the Cobalt instance needs new cookies.
            logger.warning(
                f"Locator still failing with {response.code} after {attempt} attempts",
                extra={"source_url": request.source_url},
            )
        return ExtractionFailure(reason=EXHAUSTED, attempts=attempt)

    async def _send(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> UpstreamResponse:
        try:
            response = await client.post(
                self.settings.api_url,
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.warning("Locator request failed", extra={"error_type": type(e).__name__})
            return UpstreamUnavailable(detail=type(e).__name__)

        try:
            body = response.json()
        except ValueError:
            body = None

        return parse_upstream_response(response.status_code, body)
