from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


class _EmptyLocator:
    def count(self) -> int:
        return 0

    def nth(self, _idx: int) -> "_EmptyLocator":
        return self

    @property
    def first(self) -> "_EmptyLocator":
        return self


class StaticPage:
    """Just enough of a Playwright page for page-state capture and navigation."""

    def __init__(self, url: str = "https://example.com/", title: str = "Example") -> None:
        self.url = url
        self._title = title
        self.visited: List[str] = []
        self.keys: List[str] = []
        self.keyboard = self
        self.closed = False

    def title(self) -> str:
        return self._title

    def goto(self, url: str, wait_until: Optional[str] = None) -> None:  # noqa: ARG002
        self.url = url
        self.visited.append(url)

    def press(self, key: str) -> None:
        self.keys.append(key)

    def locator(self, _selector: str) -> _EmptyLocator:
        return _EmptyLocator()

    def eval_on_selector_all(self, *_args: Any) -> list:
        return []

    def inner_text(self, *_args: Any, **_kwargs: Any) -> str:
        return "Welcome to Example"

    def content(self) -> str:
        return f"<html><body><h1>{self._title}</h1><p>{self.url}</p></body></html>"

    def wait_for_timeout(self, _ms: int) -> None:
        return None

    def is_closed(self) -> bool:
        return self.closed


class FakeSession:
    """Scripted stand-in for ``BrowserSession``.

    ``analyses`` are returned by successive ``extract`` calls (the last one
    repeats); an ``Exception`` entry is raised instead.
    """

    def __init__(
        self,
        analyses: List[Any],
        settings,
        *,
        session_id: Optional[str] = "target-1",
        headless: bool = False,
        failing_acts: Optional[List[str]] = None,
        page: Optional[StaticPage] = None,
    ) -> None:
        self.analyses = list(analyses)
        self.settings = settings
        self.session_id = session_id
        self.headless = headless
        self.failing_acts = failing_acts or []
        self.page = page or StaticPage()
        self.extract_calls = 0
        self.acts: List[tuple] = []
        self.idle_waits: List[int] = []

    def await_active_page(self, timeout: Optional[float] = None) -> StaticPage:  # noqa: ARG002
        return self.page

    def goto(self, url: str, page: Optional[StaticPage] = None) -> None:
        (page or self.page).goto(url, wait_until="domcontentloaded")

    def extract(self, instruction: str, schema, page=None):  # noqa: ANN001,ARG002
        self.extract_calls += 1
        item = self.analyses.pop(0) if len(self.analyses) > 1 else self.analyses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def act(self, instruction: str, variables: Optional[Dict[str, str]] = None, page=None) -> str:  # noqa: ANN001,ARG002
        from mcpkit.errors import ActionError

        self.acts.append((instruction, dict(variables or {})))
        if any(marker in instruction for marker in self.failing_acts):
            raise ActionError(f"Could not '{instruction}'")
        return "ok"

    def wait_for_network_idle(self, timeout_ms: int, page=None) -> bool:  # noqa: ANN001,ARG002
        self.idle_waits.append(timeout_ms)
        return False

    def debug_url(self) -> str:
        from mcpkit.errors import SessionError

        if not self.session_id:
            raise SessionError("Browser session has no session id; cannot build a live debug URL.")
        return f"http://127.0.0.1:9222/devtools/inspector.html?ws=127.0.0.1:9222/devtools/page/{self.session_id}"


@pytest.fixture
def settings(tmp_path: Path):
    from mcpkit.config import Settings

    return Settings(model_provider="openai/gpt-4o-mini", model_api_key="sk-test", home=tmp_path)


@pytest.fixture
def mcpkit_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("MCPKIT_HOME", str(home))
    return home
