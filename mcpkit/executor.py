"""Page-state capture and locator strategies used by the browser driver.

Everything here works on a live Playwright ``Page``. The planner never sees
selectors; it proposes human-visible labels and this module turns them into a
prioritized list of locators, trying each until one works.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from mcpkit.schemas import ObservedAction

logger = logging.getLogger(__name__)

# menus and dialogs are captured ahead of the base page
OVERLAY_LOCATORS = [
    ("role[dialog]", lambda page: page.locator("[role='dialog']")),
    ("aria-modal", lambda page: page.locator("[aria-modal='true']")),
    ("role[menu]", lambda page: page.locator("[role='menu']")),
    ("role[listbox]", lambda page: page.locator("[role='listbox']")),
]

VARIABLE_PATTERN = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)%")

_COLLECT_TEXT_JS = """
    (els, maxItems) => Array.from(els)
        .map((el) => {
            const primary = (el.innerText || el.textContent || '').trim();
            if (primary) {
                return primary;
            }
            const aria = (el.getAttribute('aria-label') || '').trim();
            if (aria) {
                return aria;
            }
            const title = (el.getAttribute('title') || '').trim();
            if (title) {
                return title;
            }
            return '';
        })
        .filter(Boolean)
        .map((text) => text.slice(0, 80))
        .slice(0, maxItems)
"""

_COLLECT_INPUTS_JS = """
    (els, maxItems) => Array.from(els)
        .filter((el) => el.type !== 'hidden')
        .map((el) => {
            const id = el.getAttribute('id');
            const labelEl = id ? document.querySelector(`label[for="${CSS.escape(id)}"]`) : null;
            return {
                type: (el.getAttribute('type') || el.tagName || '').toLowerCase(),
                name: el.getAttribute('name') || '',
                label: labelEl ? (labelEl.innerText || '').trim() : '',
                placeholder: el.getAttribute('placeholder') || '',
                aria_label: el.getAttribute('aria-label') || '',
            };
        })
        .slice(0, maxItems)
"""


def substitute_variables(text: str, variables: Optional[Mapping[str, str]]) -> str:
    """Replace ``%name%`` tokens with values only known at execution time."""
    if not variables or not text:
        return text

    def _repl(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return VARIABLE_PATTERN.sub(_repl, text)


def capture_prioritized_dom(page, limit: int = 30000) -> str:
    """
    Return HTML prioritizing overlay content (menus, dialogs) before the base page.
    """
    overlay_html: List[str] = []
    for desc, builder in OVERLAY_LOCATORS:
        try:
            locator = builder(page)
            count = min(locator.count(), 3)
            for idx in range(count):
                try:
                    snippet = locator.nth(idx).evaluate("node => node.outerHTML")
                except Exception as exc:
                    logger.debug("overlay capture failed for %s[%s]: %s", desc, idx, exc)
                    continue
                if snippet:
                    overlay_html.append(snippet)
        except Exception as exc:
            logger.debug("overlay locator %s failed: %s", desc, exc)

    try:
        base_html = page.content()
    except Exception as exc:
        logger.debug("base DOM capture failed: %s", exc)
        base_html = ""

    combined = "\n".join(overlay_html + [base_html])
    return combined[:limit]


def overlay_present(page) -> bool:
    for _, builder in OVERLAY_LOCATORS:
        try:
            if builder(page).count() > 0:
                return True
        except Exception:
            continue
    return False


def summarize_page_state(page, dom_limit: int = 30000, excerpt_limit: int = 2000) -> Dict[str, Any]:
    """
    Capture a structured snapshot of the current page so the planner can reason over it.
    """
    state: Dict[str, Any] = {
        "url": "",
        "title": "",
        "overlay_visible": False,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        state["url"] = page.url
    except Exception:
        state["url"] = ""

    try:
        state["title"] = page.title()
    except Exception:
        state["title"] = ""

    state["overlay_visible"] = overlay_present(page)

    def _collect(selector: str, script: str, max_items: int = 12) -> List[Any]:
        try:
            items = page.eval_on_selector_all(selector, script, max_items)
        except Exception:
            return []
        return items if isinstance(items, list) else []

    state["visible_headings"] = _collect("h1, h2, h3", _COLLECT_TEXT_JS, 10)
    state["visible_buttons"] = _collect("button, [role='button']", _COLLECT_TEXT_JS, 20)
    state["visible_links"] = _collect("nav a, [role='navigation'] a, aside a", _COLLECT_TEXT_JS, 25)
    state["visible_inputs"] = _collect("input, textarea, select, [contenteditable='true']", _COLLECT_INPUTS_JS, 15)
    state["dropdown_options"] = _collect(
        "[role='menu'] [role='menuitem'], [role='listbox'] [role='option']", _COLLECT_TEXT_JS, 10
    )

    try:
        rendered = page.inner_text("body", timeout=2000)
    except Exception:
        rendered = ""
    state["rendered_text"] = " ".join(rendered.split())[:6000]

    dom_snapshot = capture_prioritized_dom(page, limit=dom_limit)
    state["dom_snippet"] = dom_snapshot
    state["dom_excerpt"] = dom_snapshot[:excerpt_limit]
    return state


def detect_progress(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> tuple[bool, str]:
    """
    Determine whether the page state changed meaningfully after an action.
    """
    if after is None:
        return True, "Updated page state unavailable"
    if not before:
        return True, "No baseline to compare"

    comparisons = [
        ("url", "URL changed"),
        ("title", "Title changed"),
        ("overlay_visible", "Overlay visibility changed"),
        ("dropdown_options", "Dropdown options changed"),
        ("visible_headings", "Visible headings changed"),
    ]
    for key, reason in comparisons:
        if before.get(key) != after.get(key):
            return True, reason

    if (before.get("dom_excerpt") or "").strip() != (after.get("dom_excerpt") or "").strip():
        return True, "DOM excerpt changed"
    return False, "DOM excerpt unchanged"


def make_label_locators(label: str, hints: Optional[List[str]] = None) -> List[tuple]:
    """Return a prioritized list of locator builders for a given label."""
    label = label.strip()
    if not label:
        return []

    hints_set = {hint.lower() for hint in (hints or [])}
    prefers_exact = "exact" in hints_set or len(label.split()) <= 2
    include_dialog = "dialog" in hints_set or "overlay" in hints_set
    include_menu = "menu" in hints_set or "menuitem" in hints_set

    def overlay_button(page, label=label, exact=prefers_exact):
        return page.locator("[role='dialog']").get_by_role("button", name=label, exact=exact)

    def overlay_text(page, label=label, exact=prefers_exact):
        return page.locator("[role='dialog']").get_by_text(label, exact=exact)

    def role_button(page, label=label, exact=prefers_exact):
        return page.get_by_role("button", name=label, exact=exact)

    def role_link(page, label=label, exact=prefers_exact):
        return page.get_by_role("link", name=label, exact=exact)

    def role_tab(page, label=label, exact=prefers_exact):
        return page.get_by_role("tab", name=label, exact=exact)

    def role_menuitem(page, label=label):
        return page.get_by_role("menuitem", name=label, exact=False)

    def container_control(page, label=label, exact=prefers_exact):
        search_space = page.locator(":is(div, section, li, label, form, tr, article)")
        flags = 0 if exact else re.IGNORECASE
        try:
            pattern = re.compile(rf"\b{re.escape(label)}\b", flags)
        except re.error:
            pattern = re.compile(re.escape(label), flags)
        scope = search_space.filter(has_text=pattern)
        control_selector = ":is(button, [role='button'], [role='switch'], [role='menuitem'], [role='option'])"
        return scope.locator(control_selector).first

    def text_match(page, label=label, exact=prefers_exact):
        return page.get_by_text(label, exact=exact)

    def fuzzy_text(page, label=label):
        return page.get_by_text(label, exact=False)

    options: List[tuple] = []
    seen: set[str] = set()

    def add(desc: str, builder: Callable) -> None:
        if desc in seen:
            return
        seen.add(desc)
        options.append((desc, builder))

    if include_dialog:
        add(f"dialog role=button[{label}]", overlay_button)
        add(f"dialog text~='{label}'", overlay_text)
    if include_menu:
        add(f"role=menuitem[{label}]", role_menuitem)

    add(f"role=button[{label}]", role_button)
    add(f"role=link[{label}]", role_link)
    add(f"role=tab[{label}]", role_tab)
    add(f"control near '{label}'", container_control)
    add(f"text~='{label}'", text_match)
    if prefers_exact:
        add(f"text contains '{label}'", fuzzy_text)

    return options


def make_input_locators(label: str, hints: Optional[List[str]] = None) -> List[tuple]:
    """Return locator builders that target text entry controls matching the label."""
    label = label.strip()
    if not label:
        return []

    hints_set = {hint.lower() for hint in (hints or [])}
    prefers_exact = "fuzzy" not in hints_set and len(label.split()) <= 4

    def textbox(page, label=label, exact=prefers_exact):
        return page.get_by_role("textbox", name=label, exact=exact)

    def searchbox(page, label=label, exact=prefers_exact):
        return page.get_by_role("searchbox", name=label, exact=exact)

    def combobox(page, label=label, exact=prefers_exact):
        return page.get_by_role("combobox", name=label, exact=exact)

    def labeled(page, label=label, exact=prefers_exact):
        return page.get_by_label(label, exact=exact)

    def placeholder(page, label=label, exact=prefers_exact):
        return page.get_by_placeholder(label, exact=exact)

    def attribute_contains(page, label=label):
        escaped = label.replace("\\", "\\\\").replace('"', '\\"')
        return page.locator(
            f"input[name*=\"{escaped}\" i], input[id*=\"{escaped}\" i], [aria-label*=\"{escaped}\" i]"
        )

    def password_field(page):
        return page.locator("input[type='password']")

    options: List[tuple] = []
    seen: set[str] = set()

    def add(desc: str, builder: Callable) -> None:
        if desc in seen:
            return
        seen.add(desc)
        options.append((desc, builder))

    add(f"role=textbox[{label}]", textbox)
    add(f"role=searchbox[{label}]", searchbox)
    add(f"role=combobox[{label}]", combobox)
    add(f"label[{label}]", labeled)
    add(f"placeholder[{label}]", placeholder)
    add(f"attribute contains '{label}'", attribute_contains)
    if "password" in hints_set or "password" in label.lower():
        add("input[type=password]", password_field)

    return options


def attempt_click(page, label: str, hints: Optional[List[str]] = None) -> tuple[bool, str]:
    """
    Attempt to click a label using generated locator strategies.
    Returns (success, message).
    """
    options = make_label_locators(label, hints)
    if not options:
        return False, "No locator strategies generated."

    last_error = "No matching elements located."
    for desc, builder in options:
        try:
            locator = builder(page)
            if locator.count() == 0:
                last_error = f"{desc} matched 0 elements"
                continue
            target = locator.first
            target.wait_for(state="visible", timeout=5000)
            target.click(timeout=8000)
            return True, f"Clicked via {desc}"
        except Exception as exc:
            last_error = str(exc)
    return False, f"All strategies failed. Last error: {last_error}"


def attempt_type(
    page,
    label: str,
    text: str,
    hints: Optional[List[str]] = None,
    clear_first: bool = True,
    press_enter: bool = False,
    secret: bool = False,
) -> tuple[bool, str]:
    """
    Focus a textbox matching the label and enter the provided text.
    """
    label = (label or "").strip()
    if not label:
        return False, "Type skipped: empty label."
    text_value = str(text)
    shown = "***" if secret else text_value[:48]
    options = make_input_locators(label, hints)

    last_error = "No matching input elements located."
    for desc, builder in options:
        try:
            locator = builder(page)
            if locator.count() == 0:
                last_error = f"{desc} matched 0 elements"
                continue
            target = locator.first
            target.wait_for(state="visible", timeout=5000)
            try:
                target.click(timeout=3000)
            except Exception:
                pass

            typed_via = "fill"
            try:
                target.fill(text_value, timeout=5000)
            except Exception:
                typed_via = "type"
                if clear_first:
                    try:
                        target.press("Control+A", timeout=1000)
                        target.press("Backspace", timeout=1000)
                    except Exception:
                        pass
                target.type(text_value, delay=40, timeout=10000)

            if press_enter:
                target.press("Enter", timeout=2000)
            return True, f"Typed '{shown}' via {desc} ({typed_via})"
        except Exception as exc:
            last_error = str(exc)
    return False, f"Typing failed. Last error: {last_error}"


def execute_observed_action(
    page, candidate: ObservedAction, variables: Optional[Mapping[str, str]] = None
) -> tuple[bool, str]:
    """Run one planner candidate against the page, trying each label variant."""
    kind = candidate.action
    if kind == "navigate":
        if not candidate.url:
            return False, "Navigate candidate missing url."
        try:
            page.goto(candidate.url, wait_until="domcontentloaded")
        except Exception as exc:
            return False, f"Navigation failed: {exc}"
        return True, f"Navigated to {candidate.url}"

    if kind == "press":
        key = candidate.key or "Enter"
        try:
            page.keyboard.press(key)
        except Exception as exc:
            return False, f"Key press failed: {exc}"
        return True, f"Pressed {key}"

    if kind == "scroll":
        try:
            page.mouse.wheel(0, 900)
        except Exception as exc:
            return False, f"Scroll failed: {exc}"
        return True, "Scrolled down"

    variants = [label for label in candidate.label_variants if label.strip()]
    if not variants:
        return False, "Candidate missing label variants."

    message = "No label variants attempted."
    for label in variants:
        if kind == "type":
            if candidate.text is None:
                return False, "Type candidate missing text."
            text = substitute_variables(candidate.text, variables)
            success, message = attempt_type(
                page,
                label,
                text,
                candidate.locator_hints,
                clear_first=candidate.clear_first,
                press_enter=candidate.press_enter,
                secret=text != candidate.text,
            )
        else:
            success, message = attempt_click(page, label, candidate.locator_hints)
        logger.debug("tried %s '%s' -> %s", kind, label, message)
        if success:
            return True, message
    return False, message
