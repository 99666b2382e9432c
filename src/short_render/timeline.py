"""Caption timeline construction.

Splits a narration script into fixed-size word chunks and lays them end to
end as caption clips over a single background video clip. Narration is
assumed to be read at 2 words/second, so each 6-word chunk is shown for
3 seconds. Chunks that would start after the target duration are dropped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

WORDS_PER_SECOND = 2
CHUNK_SECONDS = 3


@dataclass(frozen=True)
class CaptionClip:
    """One timed on-screen caption.

    Attributes:
        text: Caption text
        start: Offset from the start of the video in seconds
        length: How long the caption is shown in seconds
    """

    text: str
    start: float
    length: float

    @property
    def end(self) -> float:
        return self.start + self.length


@dataclass(frozen=True)
class BackgroundClip:
    """The source footage running underneath the captions.

    Attributes:
        source_url: Direct media URL of the footage
        trim_start: Offset into the source footage in seconds
        length: Length of the clip in the output, in seconds
        volume: Source audio volume (0.0-1.0)
    """

    source_url: str
    trim_start: float = 0.0
    length: float = 0.0
    volume: float = 1.0


@dataclass(frozen=True)
class RenderTimeline:
    """Background clip plus ordered, contiguous caption clips."""

    background: BackgroundClip
    captions: tuple[CaptionClip, ...] = field(default_factory=tuple)

    @property
    def caption_duration(self) -> float:
        """Total time covered by captions."""
        return sum(clip.length for clip in self.captions)


class TimelineBuilder:
    """Builds render timelines from narration scripts.

    Example:
        builder = TimelineBuilder()
        timeline = builder.build("the quick brown fox", 30)
        for clip in timeline.captions:
            print(clip.start, clip.text)
    """

    def __init__(
        self,
        words_per_second: float = WORDS_PER_SECOND,
        chunk_seconds: float = CHUNK_SECONDS,
    ):
        self.words_per_second = words_per_second
        self.chunk_seconds = chunk_seconds

    @property
    def chunk_size(self) -> int:
        """Words per caption chunk."""
        return max(1, math.ceil(self.words_per_second * self.chunk_seconds))

    def chunk_words(self, script: str) -> list[str]:
        """Split a script into caption-sized chunks of words.

        Args:
            script: Narration text

        Returns:
            Chunk texts in reading order
        """
        words = script.split()
        size = self.chunk_size
        return [" ".join(words[i:i + size]) for i in range(0, len(words), size)]

    def caption_clips(self, script: str, total_duration: float) -> tuple[CaptionClip, ...]:
        """Lay caption chunks end to end within total_duration.

        Args:
            script: Narration text
            total_duration: Length of the video in seconds

        Returns:
            Contiguous caption clips; words past the end are dropped
        """
        clips = []
        elapsed = 0.0

        for chunk in self.chunk_words(script):
            length = min(self.chunk_seconds, total_duration - elapsed)
            if length <= 0:
                break
            clips.append(CaptionClip(text=chunk, start=elapsed, length=length))
            elapsed += length

        return tuple(clips)

    def build(
        self,
        script: str,
        total_duration: float,
        captions_enabled: bool = True,
        *,
        source_url: str = "",
        trim_start: float = 0.0,
        volume: float = 1.0,
    ) -> RenderTimeline:
        """Build the timeline for one video.

        Args:
            script: Narration text to caption
            total_duration: Length of the video in seconds. Non-positive
                values give no captions; rejecting them is the caller's job.
            captions_enabled: If False, no caption clips are produced
            source_url: Background media URL, if already known
            trim_start: Offset into the background footage in seconds
            volume: Background audio volume

        Returns:
            RenderTimeline whose background length equals total_duration
        """
        background = BackgroundClip(
            source_url=source_url,
            trim_start=trim_start,
            length=total_duration,
            volume=volume,
        )
        if not captions_enabled:
            return RenderTimeline(background=background)

        return RenderTimeline(
            background=background,
            captions=self.caption_clips(script, total_duration),
        )
