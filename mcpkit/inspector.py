"""Classify whether the current page needs a sign-in."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from mcpkit.schemas import AuthAnalysis

logger = logging.getLogger(__name__)

AUTH_URL_PATTERN = re.compile(r"login|signin|auth|sign-in|account", re.IGNORECASE)

AUTH_ANALYSIS_INSTRUCTION = """
Inspect the current page for authentication state.

Key questions to answer:
1. Does the user need to sign in before they can use this site (requiresAuth)?
2. If so, what should be clicked to start signing in (loginButton)? Describe it as a short instruction, e.g. "click the 'Log in' button in the header".
3. Is a plain username/email and password form available so credentials could be filled automatically (canAutofill)?
4. Which strategy fits best: autofill, manual, passwordless (magic link, passkey) or unknown (recommendedStrategy)? List the sign-in steps you would take.
5. Is anything blocking automation, such as a captcha, SSO-only sign-in or a second factor (blockers, mfa)?

Return a complete analysis following the schema, with a one or two sentence summary.
""".strip()


@dataclass
class InspectionResult:
    analysis: AuthAnalysis
    fallback_reason: Optional[str] = None

    @property
    def is_heuristic(self) -> bool:
        return self.fallback_reason is not None


def _page_url(page) -> str:
    try:
        return page.url or ""
    except Exception:
        return ""


def heuristic_analysis(url: str, reason: str) -> AuthAnalysis:
    """URL-only guess used when structured extraction is unavailable."""
    return AuthAnalysis(
        requires_auth=bool(AUTH_URL_PATTERN.search(url or "")),
        summary=f"Heuristic result after extract error: {reason}",
    )


def inspect_authentication_state(session, page) -> InspectionResult:
    try:
        analysis = session.extract(AUTH_ANALYSIS_INSTRUCTION, AuthAnalysis, page=page)
    except Exception as exc:
        reason = str(exc) or exc.__class__.__name__
        logger.debug("auth extraction failed, falling back to URL heuristic", exc_info=True)
        return InspectionResult(heuristic_analysis(_page_url(page), reason), fallback_reason=reason)
    return InspectionResult(analysis)


def analyze_authentication_state(session, page) -> AuthAnalysis:
    """Return the page's auth analysis. Never raises for extraction failures."""
    return inspect_authentication_state(session, page).analysis


def log_authentication_analysis(analysis: AuthAnalysis, domain: str) -> None:
    print(f"\n🔐 {analysis.summary or f'Sign-in required for {domain}.'}")
    if analysis.login_button:
        print(f"  • Login action: {analysis.login_button}")
    if analysis.recommended_strategy:
        print(f"  • Recommended strategy: {analysis.recommended_strategy}")
    if analysis.steps:
        print("  • Suggested steps:")
        for idx, step in enumerate(analysis.steps, start=1):
            print(f"      {idx}. {step}")
    if analysis.blockers:
        print(f"  • Blockers: {', '.join(analysis.blockers)}")
    if analysis.mfa and analysis.mfa.required:
        print(f"  • MFA: {analysis.mfa.description or 'Complete MFA in the live session.'}")
