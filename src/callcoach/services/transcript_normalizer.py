"""Turn pasted or extracted transcript text into scoring-engine utterances.

Pasted text has no real audio timing, so utterances get placeholder times:
utterance ``i`` starts at ``2000 * i`` ms and lasts 1000 ms.
"""

import re

from callcoach.domain.schemas import TranscriptJson, Utterance

DEFAULT_SPEAKER = "Speaker A"
UTTERANCE_SPACING_MS = 2000
UTTERANCE_DURATION_MS = 1000

# "[Speaker A] ...", "Speaker 1: ...", "[Speaker B]: ..."
SPEAKER_LINE = re.compile(r"^(\s*\[?\s*Speaker\s+\w+\s*\]?\s*:?\s*)(.*)$", re.IGNORECASE)

# Only newlines separate utterances; form feeds and other breaks stay in the text
LINE_BREAKS = re.compile(r"\r?\n+")


def _speaker_label(marker: str) -> str:
    label = re.sub(r"[\[\]:]", "", marker).strip()
    return label or DEFAULT_SPEAKER


def normalize(text: str) -> TranscriptJson:
    """Split *text* into one utterance per non-empty line.

    Leading speaker markers are stripped and used as the speaker label;
    lines without one are attributed to ``Speaker A``. Non-empty input that
    yields no utterances becomes a single utterance holding the whole text.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return TranscriptJson(utterances=[])

    utterances: list[Utterance] = []
    for line in LINE_BREAKS.split(trimmed):
        match = SPEAKER_LINE.match(line)
        body = match.group(2).strip() if match else line.strip()
        if not body:
            continue
        speaker = _speaker_label(match.group(1)) if match else DEFAULT_SPEAKER
        start = len(utterances) * UTTERANCE_SPACING_MS
        utterances.append(
            Utterance(speaker=speaker, start=start, end=start + UTTERANCE_DURATION_MS, text=body)
        )

    if not utterances:
        utterances.append(
            Utterance(speaker=DEFAULT_SPEAKER, start=0, end=UTTERANCE_DURATION_MS, text=trimmed)
        )
    return TranscriptJson(utterances=utterances)
