"""Transcription service wrapping the Deepgram pre-recorded audio API.

Transcription is near-real-time, so audio intake awaits it on the request
path. Any failure raises ``TranscriptionError`` and no call record is created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from string import ascii_uppercase

import httpx

from callcoach.domain.schemas import TranscriptJson, Utterance
from callcoach.services.errors import TranscriptionError

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


@dataclass(frozen=True)
class TranscriptionResult:
    transcript: str
    transcript_json: TranscriptJson
    duration: float | None  # seconds


def _speaker_label(index) -> str:
    if isinstance(index, int) and 0 <= index < len(ascii_uppercase):
        return f"Speaker {ascii_uppercase[index]}"
    return f"Speaker {index}"


class DeepgramTranscriber:
    """Async transcription collaborator backed by Deepgram."""

    def __init__(self, api_key: str, model: str = "nova-2", timeout: float = 300.0) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    async def transcribe(
        self,
        audio: bytes,
        file_name: str,
        content_type: str = "audio/mpeg",
    ) -> TranscriptionResult:
        """Transcribe *audio* into text, diarized utterances (ms) and duration (s)."""
        if not self._api_key:
            raise TranscriptionError("Transcription is not configured (missing DEEPGRAM_API_KEY)")

        params = {
            "model": self._model,
            "smart_format": "true",
            "diarize": "true",
            "utterances": "true",
            "punctuate": "true",
        }
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": content_type,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    DEEPGRAM_LISTEN_URL, params=params, headers=headers, content=audio
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Deepgram HTTP error for %s: %s", file_name, exc)
            raise TranscriptionError(f"Deepgram returned {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("Deepgram request failed for %s: %s", file_name, exc)
            raise TranscriptionError(f"Deepgram request failed: {exc}") from exc

        return self._parse_response(data, file_name)

    def _parse_response(self, data: dict, file_name: str) -> TranscriptionResult:
        results = data.get("results") or {}
        try:
            transcript = results["channels"][0]["alternatives"][0]["transcript"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TranscriptionError("Deepgram response had no transcript") from exc

        utterances = [
            Utterance(
                speaker=_speaker_label(u.get("speaker", 0)),
                start=int(round(float(u.get("start", 0)) * 1000)),
                end=int(round(float(u.get("end", 0)) * 1000)),
                text=(u.get("transcript") or "").strip(),
            )
            for u in results.get("utterances") or []
            if (u.get("transcript") or "").strip()
        ]
        duration = (data.get("metadata") or {}).get("duration")

        logger.info(
            "Transcribed %s: %d utterances, duration=%ss",
            file_name,
            len(utterances),
            duration,
        )
        return TranscriptionResult(
            transcript=transcript,
            transcript_json=TranscriptJson(utterances=utterances),
            duration=float(duration) if duration is not None else None,
        )
