"""Speaker-label post-processing: timestamps and display labels.

Renders speaker-tagged utterances as a human-readable transcript with
[MM:SS] (or [HH:MM:SS]) markers and overlays caller-chosen speaker names.
For providers without diarization, Whisper segments can be merged into
utterances and assigned to two alternating speakers by a pause and
question/answer heuristic. Nothing here mutates its inputs; relabeling
always produces new objects.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace

from transcription_core.asr.interface import Speaker, TranscriptSegment, Utterance

# Gap between segments that starts a new utterance
UTTERANCE_PAUSE_SECONDS = 1.0
# Gap between utterances that suggests the other person is talking
SPEAKER_CHANGE_PAUSE_SECONDS = 1.5

_QUESTION_PATTERNS = (
    re.compile(
        r"^(so|now|well|okay|alright|right|and|but)\s*[,.]?\s*"
        r"(what|how|why|when|where|who|can|could|would|do|does|did|is|are|have|has)",
        re.IGNORECASE,
    ),
    re.compile(r"\?\s*$"),
    re.compile(
        r"^(tell me|explain|describe|share|what's|how's|who's|when's|where's|why's)",
        re.IGNORECASE,
    ),
)
_RESPONSE_PATTERNS = (
    re.compile(
        r"^(yes|no|yeah|yep|nope|absolutely|definitely|certainly|sure|exactly|right"
        r"|correct|well|so|i think|i believe|in my|from my)",
        re.IGNORECASE,
    ),
    re.compile(r"^(that's|it's|there's|we've|i've|they've)", re.IGNORECASE),
)
_DIALOGUE_MARKER = re.compile(r"^(interviewer|host|guest|speaker\s*[a-z]?):", re.IGNORECASE)


@dataclass(frozen=True)
class LabeledUtterance:
    """An utterance plus the display label resolved for its speaker."""

    speaker: str
    speaker_label: str
    start: int
    end: int
    text: str
    confidence: float


@dataclass(frozen=True)
class LabeledTranscript:
    """Result of apply_labels()."""

    utterances: list[LabeledUtterance]
    speakers: list[Speaker]
    formatted_transcript: str
    label_map: dict[str, str]


def default_label(symbol: str) -> str:
    return f"Speaker {symbol}"


def format_timestamp(ms: float) -> str:
    """Format milliseconds as [MM:SS], or [HH:MM:SS] from one hour on."""
    total_seconds = int(ms // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"[{hours:02d}:{minutes:02d}:{seconds:02d}]"
    return f"[{minutes:02d}:{seconds:02d}]"


def format_transcript(
    utterances: Sequence[Utterance],
    label_map: Mapping[str, str] | None = None,
) -> str:
    """Render utterances as "{timestamp} {label}: {text}" blocks.

    Blocks are separated by a blank line. Unmapped speakers fall back to
    "Speaker {symbol}". Returns an empty string for no utterances.
    """
    label_map = label_map or {}
    return "\n\n".join(
        f"{format_timestamp(u.start)} "
        f"{label_map.get(u.speaker) or default_label(u.speaker)}: {u.text}"
        for u in utterances
    )


def collect_speakers(utterances: Sequence[Utterance]) -> list[Speaker]:
    """Unique speaker symbols, sorted, with default labels."""
    symbols = sorted({u.speaker for u in utterances})
    return [Speaker(id=symbol, label=default_label(symbol)) for symbol in symbols]


def apply_labels(
    utterances: Sequence[Utterance],
    speakers: Sequence[Speaker],
    label_map: Mapping[str, str] | None,
) -> LabeledTranscript:
    """Overlay display names onto speakers and utterances.

    Args:
        utterances: Provider utterances, chronological.
        speakers: Speaker metadata with their current labels.
        label_map: Provider symbol to display name.

    Returns:
        LabeledTranscript with relabeled copies and a re-rendered transcript.
    """
    label_map = dict(label_map or {})

    labeled_speakers = [
        Speaker(id=s.id, label=label_map.get(s.id) or s.label) for s in speakers
    ]
    labeled_utterances = [
        LabeledUtterance(
            speaker=u.speaker,
            speaker_label=label_map.get(u.speaker) or default_label(u.speaker),
            start=u.start,
            end=u.end,
            text=u.text,
            confidence=u.confidence,
        )
        for u in utterances
    ]

    return LabeledTranscript(
        utterances=labeled_utterances,
        speakers=labeled_speakers,
        formatted_transcript=format_transcript(utterances, label_map),
        label_map=label_map,
    )


def segments_to_utterances(
    segments: Sequence[TranscriptSegment],
    pause_threshold: float = UTTERANCE_PAUSE_SECONDS,
) -> list[Utterance]:
    """Merge consecutive timed segments into utterances.

    A new utterance starts whenever the gap to the previous segment is at
    least ``pause_threshold`` seconds. Blank segments are skipped. Times are
    converted to milliseconds; speakers are left unassigned.
    """
    utterances: list[Utterance] = []
    current: Utterance | None = None

    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        start_ms = round(segment.start * 1000)
        end_ms = round(max(segment.end, segment.start) * 1000)

        if current is not None and (start_ms - current.end) / 1000 < pause_threshold:
            current = replace(current, end=end_ms, text=f"{current.text} {text}")
            continue

        if current is not None:
            utterances.append(current)
        current = Utterance(speaker="", start=start_ms, end=end_ms, text=text, confidence=0.0)

    if current is not None:
        utterances.append(current)
    return utterances


def _starts_new_turn(previous: Utterance, utterance: Utterance) -> bool:
    if (utterance.start - previous.end) / 1000 >= SPEAKER_CHANGE_PAUSE_SECONDS:
        return True
    text = utterance.text.strip()
    if any(p.search(previous.text.strip()) for p in _QUESTION_PATTERNS) and any(
        p.search(text) for p in _RESPONSE_PATTERNS
    ):
        return True
    return bool(_DIALOGUE_MARKER.search(text))


def estimate_speakers_heuristic(utterances: Sequence[Utterance]) -> list[Utterance]:
    """Assign speakers A and B by alternating on likely turn changes.

    A turn changes on a long pause, on a reply-shaped utterance following a
    question, or on an explicit "Host:"/"Guest:" style marker. The first
    utterance is always speaker A.
    """
    speaker = "A"
    estimated: list[Utterance] = []
    for index, utterance in enumerate(utterances):
        if index > 0 and _starts_new_turn(utterances[index - 1], utterance):
            speaker = "B" if speaker == "A" else "A"
        estimated.append(replace(utterance, speaker=speaker))
    return estimated
