"""Call Scoring Agent: scores a sales conversation via Gemini.

Implements the scoring-engine contract: ``analyze(transcript, transcript_json)``
returns an ``AnalysisResult`` or raises. Credit / balance exhaustion raises
``CreditExhaustedError`` so the boundary can tell the user how to fix it.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from callcoach.agents.base import BaseAgent
from callcoach.app.config import get_settings
from callcoach.domain.schemas import AnalysisResult, TranscriptJson
from callcoach.services.errors import (
    CreditExhaustedError,
    ScoringEngineError,
    is_credit_failure,
)

logger = logging.getLogger(__name__)

SCORING_SYSTEM_PROMPT = (
    "You are a senior sales coach scoring a recorded sales conversation.\n\n"
    "Score the REP (not the prospect) from 0 to 100 overall, and 0 to 25 on each pillar:\n"
    "- value: did the rep build a compelling case for the offer's value?\n"
    "- trust: did the rep earn credibility and rapport?\n"
    "- fit: did the rep qualify the prospect and confirm the offer fits?\n"
    "- logistics: did the rep handle money, timing and decision-maker logistics?\n\n"
    "For each pillar give a one-sentence summary plus concrete strengths and weaknesses.\n"
    "skill_scores lists individual skills (discovery, objection_handling, closing, ...), each scored 0-10.\n"
    "coaching_recommendations: the most important fixes, each with priority (high|medium|low), "
    "category, issue, explanation and a specific action.\n"
    "timestamped_feedback: moments worth reviewing; timestamp is the utterance start in ms.\n"
    "prospect_difficulty.execution_resistance: 1 (prospect cannot act: no money, time or "
    "authority) to 10 (fully able to buy).\n"
    "outcome: ONLY fill fields the conversation states explicitly. result is one of "
    "closed, deposit, follow_up, no_show, lost, unqualified. Amounts are plain numbers. "
    "Leave anything not stated as null.\n\n"
    "Return ONLY JSON matching the schema."
)


def _render_utterances(transcript_json: TranscriptJson) -> str:
    lines = []
    for u in transcript_json.utterances:
        seconds = u.start // 1000
        lines.append(f"[{seconds // 60:02d}:{seconds % 60:02d} | {u.start}ms] {u.speaker}: {u.text}")
    return "\n".join(lines)


class CallScoringAgent(BaseAgent):
    """Scores transcripts into value / trust / fit / logistics via Gemini."""

    def __init__(self, model_name: Optional[str] = None):
        settings = get_settings()
        super().__init__(
            agent_name="call_scoring",
            model_name=model_name or settings.scoring_model,
            temperature=0.2,
            timeout_seconds=settings.scoring_timeout_seconds,
        )

    async def analyze(
        self,
        transcript: str,
        transcript_json: TranscriptJson | dict,
        call_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Score one transcript. ``call_id`` tags the activity log row.

        Raises:
            CreditExhaustedError: the provider refused for credit / quota reasons.
            ScoringEngineError: any other engine failure, including malformed
                input or output that does not match ``AnalysisResult``.
        """
        if isinstance(transcript_json, dict):
            try:
                transcript_json = TranscriptJson.model_validate(transcript_json)
            except ValidationError as exc:
                raise ScoringEngineError(f"Malformed transcript: {exc.error_count()} errors") from exc
        if not (transcript or "").strip() and not transcript_json.utterances:
            raise ScoringEngineError("Cannot score an empty transcript")

        body = _render_utterances(transcript_json) or transcript
        prompt = (
            "Score this sales call.\n\n"
            f"UTTERANCES ({len(transcript_json.utterances)}):\n{body}"
        )

        result = await self.generate_json(
            prompt=prompt,
            system_instruction=SCORING_SYSTEM_PROMPT,
            response_schema=AnalysisResult.model_json_schema(),
            call_id=call_id,
        )
        if not result.ok:
            if is_credit_failure(result.error, result.error_status):
                raise CreditExhaustedError(result.error)
            raise ScoringEngineError(result.error)

        try:
            analysis = AnalysisResult.model_validate(result.data)
        except ValidationError as exc:
            logger.warning("[%s] Scoring output failed validation: %s", self.agent_name, exc)
            raise ScoringEngineError(f"Malformed scoring result: {exc.error_count()} errors") from exc

        logger.info(
            "[%s] Scored call: overall=%.1f, recommendations=%d",
            self.agent_name,
            analysis.overall_score,
            len(analysis.coaching_recommendations),
        )
        return analysis
