import json
from typing import List, Optional

import pytest

from mapscribe.shared.llm_client import CompletionClient


def bordered_grid(width, height, interior=1):
    """WALL border around a uniform interior."""
    return [
        [0 if x in (0, width - 1) or y in (0, height - 1) else interior for x in range(width)]
        for y in range(height)
    ]


def payload_text(grid, interpretation="A single empty room", archetype=None, features=None):
    return json.dumps({
        "grid": grid,
        "metadata": {
            "interpretation": interpretation,
            "archetype": archetype,
            "features": features if features is not None else ["room"],
        },
    })


class FakeCompletionClient(CompletionClient):
    """Replays scripted responses; an Exception in the script is raised instead of returned."""

    def __init__(self, responses, supports_history=False, requires_credential=True):
        self.responses = list(responses)
        self.supports_history = supports_history
        self.requires_credential = requires_credential
        self.calls: List[dict] = []

    async def complete(self, system_prompt: str, user_prompt: str, credential: Optional[str],
                       history=None) -> str:
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "credential": credential,
            "history": list(history) if history else None,
        })
        if not self.responses:
            raise AssertionError("FakeCompletionClient ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_client_factory():
    return FakeCompletionClient
