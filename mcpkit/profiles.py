"""Persistent Chromium profiles, one per domain.

A profile directory keeps cookies, localStorage and session data between runs,
so a site signed into during ``mcpkit create`` stays signed in for the generated
server. The ``contexts`` CLI command lists and prunes these directories.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from playwright.sync_api import BrowserContext, Page, Playwright, sync_playwright

PROFILE_MARKER = ".mcpkit-profile"


def slugify_domain(domain: str, fallback: str = "profile") -> str:
    tokens = re.findall(r"[a-z0-9-]+", domain.lower())
    slug = ".".join(tokens).strip(".")
    return slug[:80] if slug else fallback


def profile_dir_for(root: Path, domain: str) -> Path:
    return root / slugify_domain(domain)


def launch_persistent(
    start_url: Optional[str],
    profile_dir: str,
    *,
    headless: bool = False,
    debug_port: Optional[int] = None,
) -> Tuple[Playwright, BrowserContext, Page]:
    """Launch a persistent Chromium context backed by ``profile_dir``.

    Parameters
    ----------
    start_url:
        Optional URL to navigate to immediately after launch.
    profile_dir:
        Directory that stores Chromium profile state. Created when missing so
        repeated runs reuse the same profile.
    headless:
        Whether to launch Chromium in headless mode.
    debug_port:
        When set, Chromium exposes the DevTools protocol on this port so the
        session can be watched live from another browser.
    """

    profile_path = Path(profile_dir)
    profile_path.mkdir(parents=True, exist_ok=True)
    (profile_path / PROFILE_MARKER).touch(exist_ok=True)

    args: List[str] = []
    if debug_port:
        args.append(f"--remote-debugging-port={debug_port}")

    playwright = sync_playwright().start()
    try:
        context = playwright.chromium.launch_persistent_context(
            str(profile_path),
            headless=headless,
            args=args,
        )
    except Exception:
        playwright.stop()
        raise

    if context.pages:
        page = context.pages[0]
    else:
        page = context.new_page()

    if start_url:
        page.goto(start_url, wait_until="domcontentloaded")

    return playwright, context, page


def shutdown(playwright: Optional[Playwright], context: Optional[BrowserContext]) -> None:
    """Gracefully dispose of Playwright resources used by ``launch_persistent``."""

    try:
        if context:
            context.close()
    finally:
        if playwright:
            playwright.stop()


@dataclass
class ProfileInfo:
    domain: str
    path: Path
    size_bytes: int
    modified_at: datetime

    @property
    def size_label(self) -> str:
        size = float(self.size_bytes)
        for unit in ("B", "KB", "MB", "GB"):
            if size < 1024 or unit == "GB":
                return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"


def _directory_size(path: Path) -> int:
    total = 0
    for item in path.rglob("*"):
        try:
            if item.is_file() and not item.is_symlink():
                total += item.stat().st_size
        except OSError:
            continue
    return total


def load_profile(root: Path, domain: str) -> Optional[ProfileInfo]:
    path = profile_dir_for(root, domain)
    if not (path / PROFILE_MARKER).exists():
        return None
    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return ProfileInfo(domain=path.name, path=path, size_bytes=_directory_size(path), modified_at=modified)


def list_profiles(root: Path) -> List[ProfileInfo]:
    if not root.exists():
        return []
    profiles: List[ProfileInfo] = []
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        info = load_profile(root, child.name)
        if info:
            profiles.append(info)
    return profiles


def delete_profile(root: Path, domain: str) -> bool:
    """Remove the stored profile for ``domain``. Returns False when none exists."""
    info = load_profile(root, domain)
    if info is None:
        return False
    shutil.rmtree(info.path)
    return True
