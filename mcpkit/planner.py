"""Language-model calls behind the browser driver.

Every request carries a compact page-state summary (URL, title, visible
controls, rendered text and a truncated DOM). Planning calls ask for JSON only
and repair the reply; extraction uses structured outputs with a pydantic model.
"""

from __future__ import annotations

import json
import logging
import re
import textwrap
from typing import Any, Dict, List, Optional, Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from mcpkit.config import Settings
from mcpkit.errors import ExtractionError
from mcpkit.schemas import AgentStep, ObservedAction

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DOM_LIMIT = 20000
TEXT_LIMIT = 5000
REQUEST_TIMEOUT = 90


def _extract_first_json_block(text: str) -> str:
    cleaned = re.sub(r"```(?:json)?|```", "", text, flags=re.IGNORECASE).strip()
    m = re.search(r"\{[\s\S]*\}", cleaned)
    return (m.group(0) if m else cleaned).strip()


def _serialize(obj: Any, limit: Optional[int] = None) -> str:
    if not obj:
        return ""
    try:
        payload = json.dumps(obj, indent=2)
    except (TypeError, ValueError):
        payload = str(obj)
    if limit and len(payload) > limit:
        return payload[:limit] + "... [truncated]"
    return payload


def format_page_state(page_state: Dict[str, Any], dom_limit: int = DOM_LIMIT) -> str:
    """Render a page-state snapshot as prompt text."""
    overview = {
        key: page_state.get(key)
        for key in (
            "url",
            "title",
            "overlay_visible",
            "visible_headings",
            "visible_buttons",
            "visible_links",
            "visible_inputs",
            "dropdown_options",
        )
        if page_state.get(key) not in (None, "", [])
    }
    rendered = (page_state.get("rendered_text") or "")[:TEXT_LIMIT]
    dom = (page_state.get("dom_snippet") or "")[:dom_limit]
    return textwrap.dedent(
        """
        Page state summary:
        {overview}

        Rendered text excerpt:
        {rendered}

        DOM SNIPPET (truncated):
        {dom}
        """
    ).format(overview=_serialize(overview, limit=6000) or "{}", rendered=rendered or "<empty>", dom=dom)


def _parse_candidates(raw_items: Any) -> List[ObservedAction]:
    candidates: List[ObservedAction] = []
    if not isinstance(raw_items, list):
        return candidates
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        variants = item.get("label_variants")
        if isinstance(variants, str):
            item = {**item, "label_variants": [variants]}
        try:
            candidates.append(ObservedAction.model_validate(item))
        except ValidationError as exc:
            logger.debug("dropping malformed candidate %s: %s", item, exc)
    return candidates


class Planner:
    """Thin wrapper around an OpenAI client for observe/extract/agent prompts."""

    def __init__(self, client: OpenAI, model: str, temperature: float = 0.1):
        self.client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> "Planner":
        return cls(OpenAI(api_key=settings.model_api_key), settings.model_name)

    def _complete(self, system: str, prompt: str, temperature: Optional[float] = None) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature if temperature is None else temperature,
            timeout=REQUEST_TIMEOUT,
        )
        return response.choices[0].message.content or ""

    def _complete_json(self, system: str, prompt: str) -> Dict[str, Any]:
        raw = self._complete(system, prompt)
        logger.debug("planner raw response: %s", raw[:2000])
        try:
            data = json.loads(_extract_first_json_block(raw))
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Planner returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise RuntimeError("Planner did not return a JSON object.")
        return data

    def observe(self, instruction: str, page_state: Dict[str, Any]) -> List[ObservedAction]:
        """Propose up to three ways of carrying out ``instruction`` on the current page."""
        prompt = textwrap.dedent(
            f"""
            You are operating a browser automation agent.

            Instruction: {instruction}

            Find the element(s) on the current page that carry out the instruction.
            Tokens like %username% are placeholders that will be substituted at execution
            time; copy them verbatim into "text" and never guess their values.

            Respond with a JSON object containing:
              - "candidates": array (max 3) ordered by confidence. Each object must include:
                    • "action": one of "click", "type", "press", "navigate", "scroll".
                    • "description": short description of the element and what happens.
                    • "label_variants": array of 1-3 visible labels, placeholders or accessible names.
                    • "locator_hints": optional hints such as "dialog", "menu", "exact", "password", "fuzzy".
                    • "text": text to enter when action == "type"; optional "press_enter" / "clear_first".
                    • "key": key name when action == "press"; "url" when action == "navigate".

            Return an empty "candidates" array when nothing on the page matches.
            """
        ).strip()
        prompt += "\n\n" + format_page_state(page_state)
        try:
            data = self._complete_json(
                "You map natural-language instructions to page elements. Always respond with JSON only.", prompt
            )
        except Exception as exc:
            raise RuntimeError(f"Observation LLM failed: {exc}") from exc
        return _parse_candidates(data.get("candidates"))

    def extract(self, instruction: str, page_state: Dict[str, Any], schema: Type[T]) -> T:
        prompt = textwrap.dedent(
            f"""
            Read the current web page and answer using the provided schema.

            Instruction: {instruction}

            Base every field strictly on what the page shows. Use null for optional
            fields you cannot determine.
            """
        ).strip()
        prompt += "\n\n" + format_page_state(page_state)
        try:
            resp = self.client.responses.parse(
                model=self.model,
                input=[
                    {"role": "system", "content": "You extract structured data from web pages."},
                    {"role": "user", "content": [{"type": "input_text", "text": prompt}]},
                ],
                text_format=schema,
                timeout=REQUEST_TIMEOUT,
            )
        except Exception as exc:
            raise ExtractionError(f"Extraction request failed: {exc}") from exc
        parsed = resp.output_parsed
        if parsed is None:
            raise ExtractionError("Model returned no parseable extraction result.")
        return parsed

    def plan_agent_step(
        self,
        system_prompt: str,
        instruction: str,
        page_state: Dict[str, Any],
        history_text: str,
        notes: List[str],
        step: int,
        max_steps: int,
    ) -> AgentStep:
        notes_text = "\n".join(f"- {note}" for note in notes[-25:]) or "None yet."
        prompt = textwrap.dedent(
            f"""
            Task: {instruction}

            Step {step} of at most {max_steps}.

            Recent action history:
            {history_text}

            Your notes so far:
            {notes_text}

            Decide the single next best move to advance the task.
            Respond with a JSON object containing:
              - "done": true when you have gathered enough to finish the task.
              - "reason": short string explaining your decision.
              - "notes": optional string recording what you learned on this page (features,
                forms, sections, data shown). These notes are your memory.
              - "targets": array (max 3) of alternative plans for the next move. Each object has
                "action" ("click", "type", "press", "navigate" or "scroll"), "label_variants",
                optional "locator_hints", "text" / "press_enter" for type, "key" for press and
                "url" for navigate.

            When "done" is true provide an empty "targets" array.
            """
        ).strip()
        prompt += "\n\n" + format_page_state(page_state)
        try:
            data = self._complete_json(system_prompt + "\n\nAlways respond with JSON only.", prompt)
        except Exception as exc:
            raise RuntimeError(f"Planning LLM failed: {exc}") from exc
        return AgentStep(
            done=bool(data.get("done") or data.get("finish")),
            reason=str(data.get("reason") or ""),
            notes=str(data["notes"]) if data.get("notes") else None,
            targets=_parse_candidates(data.get("targets")),
        )

    def final_answer(
        self,
        system_prompt: str,
        instruction: str,
        history_text: str,
        notes: List[str],
        page_state: Dict[str, Any],
    ) -> str:
        """Ask for the agent's final answer as free text (the caller parses it)."""
        notes_text = "\n".join(f"- {note}" for note in notes) or "None."
        prompt = textwrap.dedent(
            f"""
            Task: {instruction}

            Exploration is over. Everything you learned:
            {notes_text}

            Actions taken:
            {history_text}

            Write your final answer to the task now, following the output rules of your
            instructions exactly.
            """
        ).strip()
        prompt += "\n\n" + format_page_state(page_state, dom_limit=6000)
        return self._complete(system_prompt, prompt, temperature=0.2).strip()
