"""Browser session shared by authentication, discovery and generated servers.

``BrowserSession`` owns one persistent Chromium context (see ``profiles``) and
exposes natural-language operations on top of it:

* ``act``      carry out one instruction ("click the Sign in button")
* ``observe``  list candidate elements for an instruction without acting
* ``extract``  read the page into a pydantic model
* ``agent``    hand a multi-step task to ``ExplorationAgent``

All calls block until complete, so callers get strict sequencing for free.
"""

from __future__ import annotations

import logging
import tempfile
import time
from pathlib import Path
from typing import List, Mapping, Optional, Type, TypeVar

from playwright.sync_api import BrowserContext, Error as PlaywrightError, Page, Playwright

from mcpkit.agent import ExplorationAgent
from mcpkit.config import Settings
from mcpkit.errors import ActionError, NoActivePageError, SessionError
from mcpkit.executor import execute_observed_action, summarize_page_state
from mcpkit.planner import Planner
from mcpkit.profiles import launch_persistent, profile_dir_for, shutdown
from mcpkit.schemas import ObservedAction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BrowserSession:
    def __init__(
        self,
        settings: Settings,
        domain: str,
        *,
        planner: Optional[Planner] = None,
        persist_profile: bool = True,
        headless: Optional[bool] = None,
    ):
        self.settings = settings
        self.domain = domain
        self.planner = planner or Planner.from_settings(settings)
        self.persist_profile = persist_profile
        self.headless = settings.headless if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._session_id: Optional[str] = None
        self._temp_profile: Optional[tempfile.TemporaryDirectory] = None

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> "BrowserSession":
        if self._context is not None:
            return self
        if self.persist_profile:
            profile_dir = profile_dir_for(self.settings.profiles_dir, self.domain)
        else:
            self._temp_profile = tempfile.TemporaryDirectory(prefix="mcpkit-")
            profile_dir = Path(self._temp_profile.name)
        logger.debug("launching chromium with profile %s", profile_dir)
        self._playwright, self._context, page = launch_persistent(
            None,
            str(profile_dir),
            headless=self.headless,
            debug_port=self.settings.debug_port,
        )
        self._session_id = self._resolve_session_id(page)
        return self

    def close(self) -> None:
        try:
            shutdown(self._playwright, self._context)
        finally:
            self._playwright = None
            self._context = None
            self._session_id = None
            if self._temp_profile is not None:
                self._temp_profile.cleanup()
                self._temp_profile = None

    def __enter__(self) -> "BrowserSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _resolve_session_id(self, page: Page) -> Optional[str]:
        cdp = None
        try:
            cdp = self._context.new_cdp_session(page)
            info = cdp.send("Target.getTargetInfo")
            return info.get("targetInfo", {}).get("targetId")
        except PlaywrightError as exc:
            logger.debug("could not resolve CDP target id: %s", exc)
            return None
        finally:
            if cdp is not None:
                try:
                    cdp.detach()
                except PlaywrightError:
                    pass

    # -- pages ---------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def page(self) -> Page:
        if self._context is None:
            raise SessionError("Browser session has not been started.")
        pages = [page for page in self._context.pages if not page.is_closed()]
        if not pages:
            raise NoActivePageError("The browser session has no open page.")
        return pages[-1]

    def await_active_page(self, timeout: Optional[float] = None) -> Page:
        """Wait up to ``timeout`` seconds for the session to expose an open page."""
        if self._context is None:
            raise SessionError("Browser session has not been started.")
        limit = self.settings.active_page_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit
        while True:
            pages = [page for page in self._context.pages if not page.is_closed()]
            if pages:
                return pages[-1]
            if time.monotonic() >= deadline:
                raise NoActivePageError(f"No active page became available within {limit:.0f}s.")
            time.sleep(0.25)

    def goto(self, url: str, page: Optional[Page] = None) -> None:
        (page or self.page).goto(url, wait_until="domcontentloaded")

    def debug_url(self) -> str:
        """Live DevTools view of the session, used for manual sign-in."""
        if not self._session_id:
            raise SessionError("Browser session has no session id; cannot build a live debug URL.")
        port = self.settings.debug_port
        return (
            f"http://127.0.0.1:{port}/devtools/inspector.html"
            f"?ws=127.0.0.1:{port}/devtools/page/{self._session_id}"
        )

    # -- natural-language operations ----------------------------------------

    def observe(self, instruction: str, page: Optional[Page] = None) -> List[ObservedAction]:
        page = page or self.page
        try:
            return self.planner.observe(instruction, summarize_page_state(page))
        except RuntimeError as exc:
            raise ActionError(str(exc)) from exc

    def act(
        self,
        instruction: str,
        variables: Optional[Mapping[str, str]] = None,
        page: Optional[Page] = None,
    ) -> str:
        """Carry out ``instruction``; ``%name%`` tokens are filled from ``variables``."""
        page = page or self.page
        candidates = self.observe(instruction, page)
        if not candidates:
            raise ActionError(f"Could not find anything on the page to '{instruction}'.")
        message = ""
        for candidate in candidates:
            success, message = execute_observed_action(page, candidate, variables)
            if success:
                logger.debug("act '%s' -> %s", instruction, message)
                return message
        raise ActionError(f"Could not '{instruction}': {message}")

    def extract(self, instruction: str, schema: Type[T], page: Optional[Page] = None) -> T:
        page = page or self.page
        return self.planner.extract(instruction, summarize_page_state(page), schema)

    def agent(self, system_prompt: str) -> ExplorationAgent:
        return ExplorationAgent(lambda: self.page, self.planner, system_prompt)

    def wait_for_network_idle(self, timeout_ms: int, page: Optional[Page] = None) -> bool:
        """Bounded wait for network idle. Returns False on timeout instead of raising."""
        try:
            (page or self.page).wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightError as exc:
            logger.debug("network idle wait ended early: %s", exc)
            return False
        return True
