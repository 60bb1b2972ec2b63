"""``mcpkit create``: sign in, discover actions, write the server project."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

from mcpkit.authentication import AuthOutcome, authenticate_to_website
from mcpkit.config import Settings, load_env, read_global_env
from mcpkit.credentials import OnePasswordStore, prompt_for_credentials
from mcpkit.discovery import discover_actions
from mcpkit.driver import BrowserSession
from mcpkit.errors import McpkitError
from mcpkit.generation import project_dir_name, write_server_project

logger = logging.getLogger(__name__)

BOT_PROTECTION_MARKERS = ("403", "Forbidden", "blocked", "captcha", "Cloudflare")
AUTOMATION_FRIENDLY_SITES = (
    "https://news.ycombinator.com (Hacker News)",
    "https://lobste.rs (tech news)",
    "https://docs.github.com (documentation)",
)


def domain_from_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise McpkitError(f"Invalid URL '{url}'. Use a full address such as https://example.com.")
    return parsed.hostname


def looks_bot_blocked(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in BOT_PROTECTION_MARKERS)


def _print_bot_protection_hint(session) -> None:
    print("\n❌ Site appears to have anti-bot protection.\n")
    print("💡 Try one of these automation-friendly sites instead:\n")
    for site in AUTOMATION_FRIENDLY_SITES:
        print(f"  • {site}")
    print("  • Your own website or internal tools\n")
    if session.session_id:
        print(f"🔗 Live session: {session.debug_url()}\n")


def _offer_credential_save(
    store: OnePasswordStore, domain: str, read_input: Callable[[str], str] = input
) -> None:
    answer = read_input(f"\n💾 Save credentials for {domain} to 1Password for next time? [y/N]: ")
    if answer.strip().lower() not in {"y", "yes"}:
        return
    store.save(domain, prompt_for_credentials(domain))


def _print_next_steps(output_dir: Path, domain: str) -> None:
    server_name = project_dir_name(domain).replace("_mcp_server", "")
    client_config = {
        "mcpServers": {
            server_name: {"command": sys.executable, "args": [str(output_dir / "server.py")]},
        }
    }
    print("\nNext steps:")
    print(f"  cd {output_dir.name}")
    print("  pip install -e .")
    print("  python server.py")
    print("\n💡 The server was written with your global secrets and is ready to use.")
    print("\nTo register it with an MCP client, add:")
    print(json.dumps(client_config, indent=2))


def create_mcp_server(
    url: str,
    *,
    skip_auth: bool = False,
    persist_profile: bool = True,
    headless: Optional[bool] = None,
    output_root: Optional[Path] = None,
    settings: Optional[Settings] = None,
) -> Path:
    """Run the full create flow for ``url`` and return the generated project directory."""
    domain = domain_from_url(url)
    settings = settings or load_env()
    store = OnePasswordStore(settings.op_service_account_token) if settings.op_service_account_token else None

    with BrowserSession(settings, domain, persist_profile=persist_profile, headless=headless) as session:
        if skip_auth:
            print("⏭️ Skipping authentication as requested...")
            page = session.await_active_page(settings.active_page_timeout)
            session.goto(url, page=page)
        else:
            try:
                result = authenticate_to_website(session, url, domain, credential_store=store, settings=settings)
            except Exception as exc:
                if looks_bot_blocked(exc):
                    _print_bot_protection_hint(session)
                raise
            if result.outcome is AuthOutcome.CONFIRMED and store is not None and not result.stored_credentials_found:
                _offer_credential_save(store, domain)

        actions = discover_actions(session, domain, max_steps=settings.agent_max_steps)

    if not actions:
        print("\n⚠️ Warning: no actions were discovered. The server will have no tools.\n")
    else:
        print(f"\n✅ Generating MCP server with {len(actions)} discovered actions\n")

    output_dir = write_server_project(domain, url, actions, output_root, secrets=read_global_env())
    print("✅ MCP server project generated!")
    print(f"📁 Location: {output_dir}")
    _print_next_steps(output_dir, domain)
    return output_dir
