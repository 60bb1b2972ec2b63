"""Execute catalog actions inside a generated MCP server."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, create_model

from mcpkit.config import Settings, load_server_env
from mcpkit.generation import python_identifier
from mcpkit.schemas import PLACEHOLDER_PATTERN, DiscoveredAction, DiscoveredActionsResponse

logger = logging.getLogger(__name__)

AGENT_ACTION = "execute_action"
DEFAULT_AGENT_STEPS = 10
STEP_IDLE_TIMEOUT_MS = 3000


def load_catalog(path: Path) -> Dict[str, DiscoveredAction]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    response = DiscoveredActionsResponse.model_validate(data)
    catalog: Dict[str, DiscoveredAction] = {}
    for action in response.actions:
        if action.name in catalog:
            raise ValueError(f"{path} lists the action '{action.name}' more than once")
        catalog[action.name] = action
    return catalog


def fill_placeholders(step: str, arguments: Mapping[str, Any]) -> Optional[str]:
    """Substitute ``{name}`` placeholders. None when a referenced argument is missing."""
    missing = [name for name in PLACEHOLDER_PATTERN.findall(step) if arguments.get(name) is None]
    if missing:
        return None
    return PLACEHOLDER_PATTERN.sub(lambda m: str(arguments[m.group(1)]), step)


def build_extraction_model(action: DiscoveredAction) -> Type[BaseModel]:
    """Model with one ``str`` field per schema key; the original keys are kept as aliases."""
    used: set = set()
    fields: Dict[str, Any] = {}
    for key, description in (action.extraction_schema or {}).items():
        ident = python_identifier(key, "field")
        # pydantic rejects leading underscores and anything shadowing BaseModel
        if ident.startswith(("_", "model_")) or hasattr(BaseModel, ident):
            ident = f"field_{ident.lstrip('_')}"
        candidate, counter = ident, 2
        while candidate in used:
            candidate = f"{ident}_{counter}"
            counter += 1
        used.add(candidate)
        fields[candidate] = (str, Field(alias=key, description=description))
    model_name = "".join(part.title() for part in python_identifier(action.name, "action").split("_")) + "Result"
    return create_model(model_name, __config__=ConfigDict(populate_by_name=True), **fields)


def _check_required(action: DiscoveredAction, arguments: Mapping[str, Any]) -> None:
    missing = [
        param.name
        for param in action.parameters or []
        if param.required and arguments.get(param.name) is None
    ]
    if missing:
        raise ValueError(f"{action.name} requires: {', '.join(missing)}")


def run_action(session, action: DiscoveredAction, arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Perform ``action`` on the session's current page and return what happened.

    Steps that mention an optional parameter the caller left out are skipped.
    """
    arguments = dict(arguments or {})
    _check_required(action, arguments)

    if action.name == AGENT_ACTION and arguments.get("instruction"):
        max_steps = int(arguments.get("maxSteps") or DEFAULT_AGENT_STEPS)
        result = session.agent(
            "You are a browser agent completing a task for a user. Work step by step and "
            "finish with a short plain-text report of what you did and what you found."
        ).execute(str(arguments["instruction"]), max_steps)
        return {
            "action": action.name,
            "performed_steps": [record.label for record in result.history if record.success],
            "skipped_steps": [],
            "data": {"message": result.message, "completed": result.completed},
        }

    performed: List[str] = []
    skipped: List[str] = []
    for step in action.steps:
        instruction = fill_placeholders(step, arguments)
        if instruction is None:
            skipped.append(step)
            continue
        session.act(instruction)
        session.wait_for_network_idle(STEP_IDLE_TIMEOUT_MS)
        performed.append(instruction)

    data: Optional[Dict[str, Any]] = None
    if action.extraction_schema:
        schema = build_extraction_model(action)
        extracted = session.extract(f"Extract the result of '{action.name}': {action.description}", schema)
        data = extracted.model_dump(by_alias=True)

    return {"action": action.name, "performed_steps": performed, "skipped_steps": skipped, "data": data}


class RuntimeSession:
    """Browser session for one generated server, started on first use.

    Playwright's sync objects belong to the thread that created them, so every
    call goes through a single dedicated worker thread.
    """

    def __init__(self, domain: str, start_url: str, settings: Optional[Settings] = None):
        self.domain = domain
        self.start_url = start_url
        self._settings = settings
        self._session = None
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mcpkit-browser")

    def _ensure_session(self):
        from mcpkit.driver import BrowserSession

        if self._session is None:
            settings = self._settings or load_server_env()
            session = BrowserSession(settings, self.domain).start()
            page = session.await_active_page()
            session.goto(self.start_url, page=page)
            self._session = session
        return self._session

    def run(self, action: DiscoveredAction, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        return self._worker.submit(lambda: run_action(self._ensure_session(), action, arguments)).result()

    def _close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def close(self) -> None:
        try:
            self._worker.submit(self._close).result()
        finally:
            self._worker.shutdown(wait=False)
