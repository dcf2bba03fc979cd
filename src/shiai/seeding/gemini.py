"""
Gemini-backed seeding assistant.

Sends the category's entrants to Gemini and asks for a single-elimination
bracket as JSON. The reply is parsed into a BracketProposal; anything that
cannot be parsed becomes an ExternalServiceError, which makes the draw fall
back to a random bracket.
"""

import json
import logging
import re
from typing import Any, Optional

import google.generativeai as genai

from shiai.collaborators import BracketProposal, ProposedMatch, SeedingEntrant
from shiai.config import settings
from shiai.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def build_prompt(category_name: str, entrants: list[SeedingEntrant]) -> str:
    """Build the bracket request sent to the model."""
    roster = [
        {"id": e.competitor_id, "name": e.name, "club": e.club or "Unknown"}
        for e in entrants
    ]
    return f"""You are a karate tournament director preparing a single-elimination draw.

Category: {category_name}
Competitors ({len(entrants)}):
{json.dumps(roster, indent=2)}

Rules:
1. Every competitor appears in exactly one first-round match
2. Keep competitors from the same club apart in the first round where possible
3. Use a null participant2Id for a bye when the count is not a power of two
4. matchLevel is one of: Preliminary, Quarterfinal, Semifinal, Final

Respond with JSON only, in this shape:
{{
  "bracketType": "single_elimination",
  "totalRounds": <int>,
  "matches": [
    {{"matchNumber": 1, "matchLevel": "Quarterfinal", "round": 1,
      "participant1Id": <id>, "participant2Id": <id or null>}}
  ],
  "explanation": "<one paragraph on how clubs were separated>"
}}"""


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_proposal(text: str) -> BracketProposal:
    """
    Parse a model reply into a BracketProposal.

    Markdown code fences are stripped and the first JSON object in the text
    is used. Match entries that are not objects are skipped; ids that are
    not integers become empty slots and are dealt with by the repair pass.

    Raises:
        ExternalServiceError: If no JSON object with a match list is found
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    found = _OBJECT_RE.search(cleaned)
    if not found:
        raise ExternalServiceError("Seeding assistant reply contained no JSON object")

    try:
        data = json.loads(found.group(0))
    except json.JSONDecodeError as e:
        raise ExternalServiceError(f"Seeding assistant reply is not valid JSON: {e}") from e

    raw_matches = data.get("matches") if isinstance(data, dict) else None
    if not isinstance(raw_matches, list):
        raise ExternalServiceError("Seeding assistant reply has no match list")

    matches = []
    for raw in raw_matches:
        if not isinstance(raw, dict):
            continue
        matches.append(
            ProposedMatch(
                level=str(raw.get("matchLevel") or ""),
                participant1_id=_as_int(raw.get("participant1Id")),
                participant2_id=_as_int(raw.get("participant2Id")),
                match_number=_as_int(raw.get("matchNumber")),
                round_number=_as_int(raw.get("round")) or 1,
            )
        )

    return BracketProposal(
        matches=matches,
        total_rounds=_as_int(data.get("totalRounds")),
        bracket_type=str(data.get("bracketType") or "single_elimination"),
        explanation=data.get("explanation"),
    )


class GeminiSeedingAssistant:
    """
    SeedingAssistant that asks Gemini for a bracket.

    Args:
        api_key: Gemini API key (defaults to settings.gemini_api_key)
        model_name: Gemini model (defaults to settings.gemini_model)
        timeout_seconds: Per-request timeout
        model: Pre-built model object, used instead of configuring genai
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        model: Any = None,
    ):
        self.model_name = model_name or settings.gemini_model
        self.timeout_seconds = timeout_seconds or settings.seeding_timeout_seconds

        if model is not None:
            self.model = model
            return

        api_key = api_key or settings.gemini_api_key
        if not api_key:
            raise ExternalServiceError("GEMINI_API_KEY is not configured")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(self.model_name)

    def propose(self, category_name: str, entrants: list[SeedingEntrant]) -> BracketProposal:
        prompt = build_prompt(category_name, entrants)
        logger.info(
            "Requesting bracket proposal for '%s' (%d entrants) from %s",
            category_name, len(entrants), self.model_name,
        )

        try:
            response = self.model.generate_content(
                prompt,
                request_options={"timeout": self.timeout_seconds},
            )
            text = response.text
        except Exception as e:
            logger.error("Seeding assistant request failed: %s", e)
            raise ExternalServiceError(f"Seeding assistant request failed: {e}") from e

        proposal = parse_proposal(text)
        logger.info("Seeding assistant proposed %d matches", len(proposal.matches))
        return proposal
