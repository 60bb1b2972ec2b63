"""Sign-in flow run before discovery.

detect -> (click login) -> (autofill stored credentials) -> manual sign-in in the
live session -> verify. Only ``AuthAnalysis.requires_auth`` decides whether the
flow is finished; everything else the inspector reports is advisory.
"""

from __future__ import annotations

import enum
import logging
import webbrowser
from dataclasses import dataclass
from typing import Callable, Optional

from mcpkit.config import Settings
from mcpkit.credentials import CredentialLookup, OnePasswordStore
from mcpkit.errors import AuthenticationRequiredError
from mcpkit.inspector import analyze_authentication_state, log_authentication_analysis
from mcpkit.schemas import AuthAnalysis, Credentials

logger = logging.getLogger(__name__)

SKIP_TOKEN = "skip"
MANUAL_PROMPT = "\n👉 Sign in using the browser session, then press Enter to continue (or type 'skip'): "
STILL_REQUIRED_MESSAGE = (
    "Authentication still required after manual verification. Please sign in and re-run the command."
)


class AuthOutcome(enum.Enum):
    NOT_REQUIRED = "not_required"
    AUTOFILLED = "autofilled"
    CONFIRMED = "confirmed"
    SKIPPED = "skipped"


@dataclass
class AuthenticationResult:
    outcome: AuthOutcome
    analysis: Optional[AuthAnalysis] = None
    stored_credentials_found: bool = False

    @property
    def authenticated(self) -> bool:
        return self.outcome is not AuthOutcome.SKIPPED


def _read_line(prompt: str) -> str:
    try:
        return input(prompt)
    except EOFError:
        return ""


def is_skip(user_input: Optional[str]) -> bool:
    return (user_input or "").strip().lower() == SKIP_TOKEN


def _try_autofill(session, page, credentials: Credentials, settings: Settings) -> bool:
    """Type stored credentials and submit. True when the site no longer asks for sign-in."""
    print("\n🤖 Attempting to sign in with stored credentials...")
    variables = {"username": credentials.username, "password": credentials.password}
    try:
        session.act("Type %username% into the username or email field", variables=variables, page=page)
        session.act("Type %password% into the password field", variables=variables, page=page)
        session.act("Click the sign in / log in / submit button", page=page)
    except Exception as exc:
        print(f"⚠️ Autofill failed: {exc}")
        return False

    session.wait_for_network_idle(settings.autofill_idle_timeout_ms, page=page)
    analysis = analyze_authentication_state(session, page)
    if analysis.requires_auth:
        print("⚠️ Still signed out after autofill; switching to manual sign-in.")
        return False
    print("✅ Signed in with stored credentials.")
    return True


def authenticate_to_website(
    session,
    url: str,
    domain: str,
    *,
    credential_store: Optional[OnePasswordStore] = None,
    settings: Optional[Settings] = None,
    read_input: Callable[[str], str] = _read_line,
    open_url: Callable[[str], object] = webbrowser.open,
) -> AuthenticationResult:
    """Make sure ``session`` is signed into ``url`` before discovery runs.

    Returns ``SKIPPED`` when the user types ``skip`` at the manual prompt; the
    page is sent back to ``url`` and no further verification happens. Raises
    ``AuthenticationRequiredError`` when the site still asks for sign-in after
    the user confirmed a manual login.
    """
    settings = settings or session.settings
    page = session.await_active_page(settings.active_page_timeout)

    print(f"\n🌐 Opening {url}...")
    session.goto(url, page=page)
    analysis = analyze_authentication_state(session, page)
    if not analysis.requires_auth:
        print(f"✅ No sign-in needed for {domain}.")
        return AuthenticationResult(AuthOutcome.NOT_REQUIRED, analysis)

    log_authentication_analysis(analysis, domain)

    if credential_store is not None:
        lookup = credential_store.lookup(domain)
    else:
        lookup = CredentialLookup(reason="No credential store configured.")
    if not lookup.found:
        logger.debug("no stored credentials: %s", lookup.reason)

    if analysis.login_button:
        print(f"\n🖱️ {analysis.login_button}")
        try:
            session.act(analysis.login_button, page=page)
            session.wait_for_network_idle(settings.login_idle_timeout_ms, page=page)
            analysis = analyze_authentication_state(session, page)
        except Exception as exc:
            print(f"⚠️ Could not open the sign-in form automatically: {exc}")

    if lookup.found and analysis.can_autofill is True:
        if _try_autofill(session, page, lookup.credentials, settings):
            return AuthenticationResult(AuthOutcome.AUTOFILLED, analysis, stored_credentials_found=True)

    debug_url = session.debug_url()
    print("\n🔑 Manual sign-in required.")
    print(f"🔗 Live session: {debug_url}")
    if session.headless:
        open_url(debug_url)
    else:
        print("  • Use the Chromium window that mcpkit opened.")

    user_input = read_input(MANUAL_PROMPT)
    if is_skip(user_input):
        print("⏭️ Skipping sign-in; continuing without authentication.")
        session.goto(url, page=page)
        return AuthenticationResult(AuthOutcome.SKIPPED, analysis, stored_credentials_found=lookup.found)

    final = analyze_authentication_state(session, page)
    if final.requires_auth:
        raise AuthenticationRequiredError(STILL_REQUIRED_MESSAGE)
    print(f"✅ Signed into {domain}.")
    return AuthenticationResult(AuthOutcome.CONFIRMED, final, stored_credentials_found=lookup.found)
