"""Explore a signed-in site with the agent and turn its answer into an action catalog.

The agent is asked for JSON only, but models still wrap answers in code fences
or lead with a sentence of prose. ``repair_to_json_text`` undoes exactly those
two habits and nothing else; anything it cannot repair is an error, never a
partial catalog.
"""

from __future__ import annotations

import json
import logging
import re
import textwrap
from typing import List, Optional

from pydantic import ValidationError

from mcpkit.errors import DiscoveryError
from mcpkit.schemas import DiscoveredAction, DiscoveredActionsResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 200

EXAMPLE_CATALOG = {
    "actions": [
        {
            "name": "get_page_info",
            "description": "Get the current page's title, a summary of its main content and the key actions it offers",
            "parameters": [],
            "steps": [],
            "extractionSchema": {
                "pageTitle": "string - the title of the current page",
                "summary": "string - brief summary of the main content",
                "availableActions": "array of strings - key actions visible on the page",
            },
        },
        {
            "name": "execute_action",
            "description": "Let an AI agent carry out any task on the current page: multi-step flows, clicks, forms, navigation",
            "parameters": [
                {
                    "name": "instruction",
                    "type": "string",
                    "description": "What to do, e.g. 'Open the first post about AI' or 'Enable email notifications in settings'",
                    "required": True,
                },
                {
                    "name": "maxSteps",
                    "type": "number",
                    "description": "Maximum number of agent steps (default: 10)",
                    "required": False,
                },
            ],
            "steps": [
                "Start an AI agent with the instruction: {instruction}",
                "Let the agent work through the task within {maxSteps} steps",
                "Return what the agent reports",
            ],
        },
        {
            "name": "search_content",
            "description": "Search the site for content",
            "parameters": [
                {"name": "query", "type": "string", "description": "What to search for", "required": True},
            ],
            "steps": [
                "Click the search input field",
                "Type {query} into the search field",
                "Press Enter or click the search button",
            ],
            "extractionSchema": {
                "results": "array of search results with title, url and optional description",
            },
        },
        {
            "name": "create_new_item",
            "description": "Create a new item (post, page, document...) with a title and body",
            "parameters": [
                {"name": "title", "type": "string", "description": "Title of the new item", "required": True},
                {"name": "content", "type": "string", "description": "Body text", "required": False},
            ],
            "steps": [
                "Click the 'New' or 'Create' button",
                "Type {title} into the title field",
                "Type {content} into the content/body field",
                "Click the save or publish button",
            ],
        },
        {
            "name": "navigate_to_section",
            "description": "Open a named section of the site",
            "parameters": [
                {
                    "name": "sectionName",
                    "type": "string",
                    "description": "Name of the section to open",
                    "required": True,
                },
            ],
            "steps": [
                "Find {sectionName} in the navigation menu",
                "Click the {sectionName} link",
            ],
        },
    ]
}


def build_exploration_brief(max_steps: int = DEFAULT_MAX_STEPS) -> str:
    example = json.dumps(EXAMPLE_CATALOG, indent=2)
    brief = textwrap.dedent(
        """
        You are a careful web automation analyst. Explore this website in depth and work out
        which actions a user would most want to automate.

        How to explore:
        1. Start where you are and open every major section of the navigation.
        2. Open menus, dropdowns, profile menus, settings and modals; look for hidden features.
        3. Go two or three levels deep instead of staying on landing pages.
        4. Follow complete multi-step workflows (create -> edit -> publish, search -> filter -> open).
        5. Note create/read/update/delete operations and which data each page shows.
        6. Record what you learn in your notes as you go; they are your only memory.

        You have <<MAX_STEPS>> steps. Use them; do not stop after the first page.

        OUTPUT FORMAT (strict):
        Your final answer must be ONLY a JSON object, starting with { and ending with }.
        No prose before or after it, no markdown, no code fences. It is parsed directly.

        Example of a correct answer:
        <<EXAMPLE>>

        Requirements:
        - The first action is always "get_page_info" (empty parameters and steps).
        - The second action is always "execute_action".
        - Then 5-8 of the most useful real workflows on this site, each with 4-8 atomic steps.
        - Every action has: name (snake_case), description, parameters (array), steps (array).
        - Steps refer to inputs with {parameterName} placeholders, and every placeholder must be
          declared in that action's parameters.
        - Parameter types are "string", "number" or "boolean".
        - Data retrieval actions need an extractionSchema mapping field names to descriptions.
        """
    ).strip()
    return brief.replace("<<MAX_STEPS>>", str(max_steps)).replace("<<EXAMPLE>>", example)


def build_exploration_instruction(max_steps: int = DEFAULT_MAX_STEPS) -> str:
    return textwrap.dedent(
        f"""
        Explore this whole website thoroughly; you have {max_steps} steps. Click through every
        major section, go two or three levels deep and look for settings, user menus and modals.

        Then answer with the action catalog: "get_page_info" first, "execute_action" second,
        followed by the 5-8 most useful multi-step workflows you found, each broken into
        atomic UI steps, with extraction schemas for anything that reads data.

        Answer with the JSON object only.
        """
    ).strip()


def repair_to_json_text(raw: str) -> str:
    """Strip code fences and leading prose around a JSON object.

    Raises ``DiscoveryError`` (quoting the first 100 characters) when no JSON
    object can be found.
    """
    text = (raw or "").strip()
    text = re.sub(r"^```json\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"^```\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    text = text.strip()

    if text.startswith("{"):
        return text

    print("⚠️ Agent response doesn't start with JSON, attempting to extract...")
    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        raise DiscoveryError(f'Agent returned non-JSON response. Response started with: "{text[:100]}..."')
    return match.group(0)


def parse_actions_response(raw: str) -> List[DiscoveredAction]:
    text = repair_to_json_text(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DiscoveryError(f"Agent response is not valid JSON: {exc}") from exc
    try:
        validated = DiscoveredActionsResponse.model_validate(parsed)
    except ValidationError as exc:
        raise DiscoveryError(f"Agent response does not match the action schema: {exc}") from exc
    return list(validated.actions)


def discover_actions(session, domain: str, *, max_steps: Optional[int] = None) -> List[DiscoveredAction]:
    """Run the exploration agent on ``session`` and return the validated catalog."""
    steps = DEFAULT_MAX_STEPS if max_steps is None else max_steps
    print(f"\n🔎 Discovering actions on {domain}...")
    try:
        print("🤖 Initializing AI agent for website exploration...")
        agent = session.agent(build_exploration_brief(steps))
        print("🔍 Agent exploring website (this may take a while)...")
        result = agent.execute(build_exploration_instruction(steps), steps)
        if result is None:
            raise DiscoveryError("Agent execution returned invalid result")
        if not getattr(result, "message", None):
            raise DiscoveryError("Agent execution returned result without message")
        logger.debug("raw agent response:\n%s", result.message)
        actions = parse_actions_response(result.message)
    except Exception as exc:
        print(f"❌ Error during agent exploration: {exc}")
        raise DiscoveryError(f"Failed to discover actions: {exc}") from exc

    print(f"✅ Successfully discovered {len(actions)} actions:")
    for idx, action in enumerate(actions, start=1):
        print(f"  {idx}. {action.name} - {action.description}")
    return actions
