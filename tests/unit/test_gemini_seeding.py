"""Unit tests for the Gemini seeding assistant's reply handling."""

import pytest

from shiai.collaborators import SeedingEntrant
from shiai.errors import ExternalServiceError
from shiai.seeding.gemini import GeminiSeedingAssistant, build_prompt, parse_proposal

FENCED_REPLY = """Here is the draw:
```json
{
  "bracketType": "single_elimination",
  "totalRounds": 2,
  "matches": [
    {"matchNumber": 1, "matchLevel": "Semifinal", "round": 1, "participant1Id": 11, "participant2Id": 14},
    {"matchNumber": 2, "matchLevel": "Semifinal", "round": 1, "participant1Id": "12", "participant2Id": null},
    "not a match"
  ],
  "explanation": "Dojo Kai members separated"
}
```"""


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate_content(self, prompt, request_options=None):
        self.calls.append((prompt, request_options))
        if self.error:
            raise self.error
        return FakeResponse(self.text)


def test_parse_fenced_reply():
    proposal = parse_proposal(FENCED_REPLY)

    assert proposal.total_rounds == 2
    assert proposal.explanation == "Dojo Kai members separated"
    assert [(m.participant1_id, m.participant2_id) for m in proposal.matches] == [(11, 14), (12, None)]
    assert proposal.matches[0].level == "Semifinal"


@pytest.mark.parametrize("reply", ["", "I cannot help with that", "{not json}", '{"matches": "none"}'])
def test_unparseable_reply_raises(reply):
    with pytest.raises(ExternalServiceError):
        parse_proposal(reply)


def test_prompt_lists_every_entrant():
    entrants = [SeedingEntrant(1, "Ren Sato", "Dojo Kai"), SeedingEntrant(2, "Mia Lopez")]
    prompt = build_prompt("Junior Kumite", entrants)

    assert "Junior Kumite" in prompt
    assert "Ren Sato" in prompt
    assert '"club": "Unknown"' in prompt


def test_assistant_uses_model_reply():
    model = FakeModel(text=FENCED_REPLY)
    assistant = GeminiSeedingAssistant(model=model, timeout_seconds=5)

    proposal = assistant.propose("Senior Kumite", [SeedingEntrant(11, "A"), SeedingEntrant(14, "B")])

    assert len(proposal.matches) == 2
    assert model.calls[0][1] == {"timeout": 5}


def test_assistant_wraps_model_errors():
    assistant = GeminiSeedingAssistant(model=FakeModel(error=RuntimeError("quota exceeded")))

    with pytest.raises(ExternalServiceError):
        assistant.propose("Senior Kumite", [SeedingEntrant(1, "A")])
