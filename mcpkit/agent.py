"""Bounded multi-step browser agent.

Each iteration summarizes the page, asks the planner for the next move, and
tries the proposed targets with the executor's locator strategies. When the
planner reports it is done, or the step budget runs out, the planner is asked
for a final free-text answer, which is what callers receive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List

from mcpkit.executor import detect_progress, execute_observed_action, summarize_page_state
from mcpkit.planner import Planner

logger = logging.getLogger(__name__)


@dataclass
class ActionRecord:
    label: str
    success: bool
    message: str
    url: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AgentResult:
    message: str
    completed: bool
    steps_taken: int
    history: List[ActionRecord] = field(default_factory=list)


def format_history(history: List[ActionRecord], limit: int = 12) -> str:
    if not history:
        return "No actions taken yet."
    lines = []
    start = max(len(history) - limit + 1, 1)
    for idx, record in enumerate(history[-limit:], start=start):
        outcome = "success" if record.success else "failure"
        where = f" @ {record.url}" if record.url else ""
        lines.append(f"{idx}. {record.label} → {outcome} ({record.message}){where}")
    return "\n".join(lines)


class ExplorationAgent:
    def __init__(
        self,
        page_provider: Callable[[], object],
        planner: Planner,
        system_prompt: str,
        *,
        settle_ms: int = 800,
    ):
        self._page_provider = page_provider
        self.planner = planner
        self.system_prompt = system_prompt
        self.settle_ms = settle_ms

    def execute(self, instruction: str, max_steps: int = 20) -> AgentResult:
        history: List[ActionRecord] = []
        notes: List[str] = []
        completed = False
        steps_taken = 0

        for step_idx in range(1, max_steps + 1):
            page = self._page_provider()
            page_state = summarize_page_state(page)
            try:
                plan = self.planner.plan_agent_step(
                    self.system_prompt,
                    instruction,
                    page_state,
                    format_history(history),
                    notes,
                    step_idx,
                    max_steps,
                )
            except RuntimeError as exc:
                print(f"❌ Planner failure: {exc}")
                break
            steps_taken = step_idx

            if plan.notes:
                notes.append(f"[{page_state.get('url') or 'page'}] {plan.notes}")

            if plan.done:
                print(f"🏁 Agent finished exploring: {plan.reason or 'done'}")
                completed = True
                break

            if not plan.targets:
                print(f"  • Planner returned no targets on step {step_idx}; asking again…")
                history.append(ActionRecord("(no move)", False, plan.reason or "no targets", page_state.get("url", "")))
                continue

            print(f"🧭 Step {step_idx}: {plan.reason or 'No reason provided.'}")
            executed = False
            for target in plan.targets:
                label = target.label_variants[0] if target.label_variants else (target.url or target.key or "")
                success, message = execute_observed_action(page, target)
                if success:
                    try:
                        page.wait_for_timeout(self.settle_ms)
                    except Exception:
                        pass
                    progress, reason = detect_progress(page_state, summarize_page_state(page, dom_limit=4000))
                    if not progress:
                        message = f"{message}; {reason}"
                history.append(ActionRecord(f"{target.action}:{label}", success, message, page_state.get("url", "")))
                print(f"    {'✅' if success else '⚠️'} {target.action} '{label}' → {message}")
                if success:
                    executed = True
                    break

            if not executed:
                print("  • All planner suggestions failed; requesting a new plan…")
        else:
            print("⚠️ Reached the step budget before the agent finished exploring.")

        page = self._page_provider()
        final_state = summarize_page_state(page, dom_limit=6000)
        message = self.planner.final_answer(
            self.system_prompt, instruction, format_history(history, limit=40), notes, final_state
        )
        logger.debug("agent final answer after %s steps: %s", steps_taken, message[:2000])
        return AgentResult(message=message, completed=completed, steps_taken=steps_taken, history=history)
