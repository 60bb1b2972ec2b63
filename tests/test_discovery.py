from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, List

import pytest

CATALOG = {
    "actions": [
        {"name": "get_page_info", "description": "Page info", "parameters": [], "steps": []},
        {
            "name": "search_posts",
            "description": "Search posts",
            "parameters": [{"name": "query", "type": "string", "description": "Terms", "required": True}],
            "steps": ["Click the search box", "Type {query} into the search box", "Press Enter"],
            "extractionSchema": {"results": "list of matching posts"},
        },
    ]
}
BARE = json.dumps(CATALOG)


@pytest.mark.parametrize(
    "raw",
    [
        BARE,
        f"```\n{BARE}\n```",
        f"```json\n{BARE}\n```",
        f"```JSON {BARE}```",
        f"Here is the catalog you asked for:\n{BARE}",
        f"  \n{BARE}\n\n",
    ],
)
def test_repair_recovers_same_object(raw: str) -> None:
    from mcpkit.discovery import repair_to_json_text

    assert json.loads(repair_to_json_text(raw)) == CATALOG


def test_repair_rejects_prose_only_and_quotes_prefix() -> None:
    from mcpkit.discovery import repair_to_json_text
    from mcpkit.errors import DiscoveryError

    prose = "I explored the site but could not find any actions worth automating. " * 3
    with pytest.raises(DiscoveryError) as excinfo:
        repair_to_json_text(prose)

    message = str(excinfo.value)
    assert message.startswith("Agent returned non-JSON response. Response started with:")
    assert prose.strip()[:100] in message


def test_parse_actions_response_keeps_order_and_aliases() -> None:
    from mcpkit.discovery import parse_actions_response

    actions = parse_actions_response(BARE)

    assert [a.name for a in actions] == ["get_page_info", "search_posts"]
    assert actions[1].extraction_schema == {"results": "list of matching posts"}
    assert actions[1].parameter("query").required is True
    assert actions[1].to_wire() == CATALOG["actions"][1]


@pytest.mark.parametrize(
    "action",
    [
        {"description": "no name", "steps": []},
        {"name": "no_steps", "description": "missing steps"},
        {"name": 42, "description": "numeric name", "steps": []},
        {
            "name": "bad_type",
            "description": "unknown parameter type",
            "steps": [],
            "parameters": [{"name": "x", "type": "date", "description": "when"}],
        },
        {
            "name": "bad_required",
            "description": "required is not a boolean",
            "steps": [],
            "parameters": [{"name": "x", "type": "string", "description": "x", "required": "yes"}],
        },
        {"name": "bad_steps", "description": "steps are not strings", "steps": [1, 2]},
    ],
)
def test_schema_violations_reject_the_whole_catalog(action: Any) -> None:
    from mcpkit.discovery import parse_actions_response
    from mcpkit.errors import DiscoveryError

    payload = {"actions": [CATALOG["actions"][0], action]}
    with pytest.raises(DiscoveryError):
        parse_actions_response(json.dumps(payload))


def test_undeclared_placeholder_is_rejected() -> None:
    from pydantic import ValidationError

    from mcpkit.schemas import DiscoveredAction

    with pytest.raises(ValidationError) as excinfo:
        DiscoveredAction(
            name="open_board",
            description="Open a board",
            steps=["Click {boardName} in the sidebar"],
            parameters=[],
        )
    assert "undeclared step placeholders: boardName" in str(excinfo.value)


def test_invalid_json_object_is_reported() -> None:
    from mcpkit.discovery import parse_actions_response
    from mcpkit.errors import DiscoveryError

    with pytest.raises(DiscoveryError, match="not valid JSON"):
        parse_actions_response('{"actions": [,]}')


def test_brief_embeds_step_budget_and_example() -> None:
    from mcpkit.discovery import build_exploration_brief

    brief = build_exploration_brief(37)

    assert "You have 37 steps" in brief
    assert '"execute_action"' in brief
    assert "<<" not in brief


def test_example_catalog_is_itself_valid() -> None:
    from mcpkit.discovery import EXAMPLE_CATALOG
    from mcpkit.schemas import DiscoveredActionsResponse

    parsed = DiscoveredActionsResponse.model_validate(EXAMPLE_CATALOG)
    assert [a.name for a in parsed.actions][:2] == ["get_page_info", "execute_action"]


class DummyAgent:
    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls: List[tuple] = []

    def execute(self, instruction: str, max_steps: int) -> Any:
        self.calls.append((instruction, max_steps))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class DummySession:
    def __init__(self, agent: DummyAgent) -> None:
        self._agent = agent
        self.briefs: List[str] = []

    def agent(self, system_prompt: str) -> DummyAgent:
        self.briefs.append(system_prompt)
        return self._agent


def test_discover_actions_success(capsys: pytest.CaptureFixture[str]) -> None:
    from mcpkit.discovery import discover_actions

    agent = DummyAgent(SimpleNamespace(message=f"```json\n{BARE}\n```"))
    actions = discover_actions(DummySession(agent), "example.com", max_steps=12)

    assert [a.name for a in actions] == ["get_page_info", "search_posts"]
    assert agent.calls[0][1] == 12
    out = capsys.readouterr().out
    assert "✅ Successfully discovered 2 actions:" in out
    assert "  2. search_posts - Search posts" in out


@pytest.mark.parametrize(
    "result, reason",
    [
        (None, "Agent execution returned invalid result"),
        (SimpleNamespace(message=""), "Agent execution returned result without message"),
        (RuntimeError("browser crashed"), "browser crashed"),
        (SimpleNamespace(message="no json here"), "Agent returned non-JSON response"),
    ],
)
def test_discover_actions_wraps_failures(result: Any, reason: str) -> None:
    from mcpkit.discovery import discover_actions
    from mcpkit.errors import DiscoveryError

    with pytest.raises(DiscoveryError) as excinfo:
        discover_actions(DummySession(DummyAgent(result)), "example.com")

    message = str(excinfo.value)
    assert message.startswith("Failed to discover actions: ")
    assert reason in message


def test_discover_actions_defaults_budget() -> None:
    from mcpkit.discovery import DEFAULT_MAX_STEPS, discover_actions

    agent = DummyAgent(SimpleNamespace(message=BARE))
    discover_actions(DummySession(agent), "example.com")
    assert agent.calls[0][1] == DEFAULT_MAX_STEPS


def test_discover_actions_keeps_zero_budget() -> None:
    from mcpkit.discovery import discover_actions

    agent = DummyAgent(SimpleNamespace(message=BARE))
    discover_actions(DummySession(agent), "example.com", max_steps=0)
    assert agent.calls[0][1] == 0
