"""Write a runnable FastMCP server project for a validated action catalog.

Layout of the generated project::

    <domain>_mcp_server/
        server.py        one typed tool per action, all delegating to mcpkit.runtime
        actions.json     the catalog the tools execute
        pyproject.toml
        README.md
        .env.example
        .env             copied from the global mcpkit config when available
"""

from __future__ import annotations

import json
import keyword
import re
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from mcpkit import __version__
from mcpkit.config import CONFIG_KEYS, read_global_env
from mcpkit.errors import GenerationError
from mcpkit.schemas import DiscoveredAction

PYTHON_TYPES = {"string": "str", "number": "float", "boolean": "bool"}
# module-level names in the generated server that tools must not shadow
SERVER_NAMES = frozenset(
    {"mcp", "main", "ACTIONS", "RUNTIME", "DOMAIN", "START_URL", "FastMCP", "RuntimeSession", "load_catalog",
     "load_dotenv", "atexit", "contextlib", "json", "sys", "Path", "Any", "Dict", "Optional", "annotations"}
)


def project_dir_name(domain: str) -> str:
    return f"{re.sub(r'[^A-Za-z0-9]+', '_', domain).strip('_').lower()}_mcp_server"


def python_identifier(value: str, fallback: str = "value", reserved: frozenset = frozenset()) -> str:
    """Turn an arbitrary name into a valid, non-keyword Python identifier."""
    ident = re.sub(r"\W+", "_", value.strip()).strip("_")
    if not ident:
        ident = fallback
    if ident[0].isdigit():
        ident = f"_{ident}"
    if keyword.iskeyword(ident) or ident in reserved:
        ident = f"{ident}_"
    return ident


def _unique(name: str, used: set) -> str:
    candidate = name
    counter = 2
    while candidate in used:
        candidate = f"{name}_{counter}"
        counter += 1
    used.add(candidate)
    return candidate


def unique_action_names(actions: Sequence[DiscoveredAction]) -> List[DiscoveredAction]:
    """Rename repeated action names (``open_menu``, ``open_menu_2``...) so each stays addressable."""
    used: set = set()
    renamed: List[DiscoveredAction] = []
    for action in actions:
        name = _unique(action.name, used)
        renamed.append(action if name == action.name else action.model_copy(update={"name": name}))
    return renamed


@dataclass
class ToolSpec:
    function_name: str
    action_name: str
    description: str
    signature: str
    argument_map: Dict[str, str]


def build_tool_specs(actions: Sequence[DiscoveredAction]) -> List[ToolSpec]:
    used_functions: set = set()
    specs: List[ToolSpec] = []
    for action in actions:
        function_name = _unique(python_identifier(action.name, "action", SERVER_NAMES), used_functions)
        used_params: set = set()
        required_parts: List[str] = []
        optional_parts: List[str] = []
        argument_map: Dict[str, str] = {}
        for param in action.parameters or []:
            ident = _unique(python_identifier(param.name, "arg"), used_params)
            argument_map[param.name] = ident
            py_type = PYTHON_TYPES[param.type]
            if param.required:
                required_parts.append(f"{ident}: {py_type}")
            else:
                optional_parts.append(f"{ident}: Optional[{py_type}] = None")
        specs.append(
            ToolSpec(
                function_name=function_name,
                action_name=action.name,
                description=action.description,
                signature=", ".join(required_parts + optional_parts),
                argument_map=argument_map,
            )
        )
    return specs


SERVER_TEMPLATE = '''\
"""MCP server for <<DOMAIN>>, generated by mcpkit <<VERSION>>."""

from __future__ import annotations

import atexit
import contextlib
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from mcpkit.runtime import RuntimeSession, load_catalog

load_dotenv(Path(__file__).with_name(".env"), override=False)

DOMAIN = <<DOMAIN_LITERAL>>
START_URL = <<URL_LITERAL>>
ACTIONS = load_catalog(Path(__file__).with_name("actions.json"))
RUNTIME = RuntimeSession(DOMAIN, START_URL)
atexit.register(RUNTIME.close)

mcp = FastMCP(<<SERVER_NAME_LITERAL>>)


def _run(action_name: str, arguments: Dict[str, Any]) -> str:
    # stdout carries the MCP protocol; send browser narration to stderr
    with contextlib.redirect_stdout(sys.stderr):
        result = RUNTIME.run(ACTIONS[action_name], arguments)
    return json.dumps(result, indent=2, default=str)

<<TOOLS>>

def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
'''

TOOL_TEMPLATE = '''
@mcp.tool()
def <<FUNCTION>>(<<SIGNATURE>>) -> str:
    """<<DOCSTRING>>"""
    return _run(<<ACTION_LITERAL>>, {<<ARGUMENTS>>})
'''


def _docstring(text: str) -> str:
    return " ".join(text.replace("\\", "\\\\").replace('"', '\\"').split()) or "Run this action."


def render_server(domain: str, url: str, actions: Sequence[DiscoveredAction]) -> str:
    actions = unique_action_names(actions)
    tools: List[str] = []
    for spec in build_tool_specs(actions):
        arguments = ", ".join(f"{json.dumps(original)}: {ident}" for original, ident in spec.argument_map.items())
        tools.append(
            TOOL_TEMPLATE.replace("<<FUNCTION>>", spec.function_name)
            .replace("<<SIGNATURE>>", spec.signature)
            .replace("<<DOCSTRING>>", _docstring(spec.description))
            .replace("<<ACTION_LITERAL>>", json.dumps(spec.action_name))
            .replace("<<ARGUMENTS>>", arguments)
        )
    source = (
        SERVER_TEMPLATE.replace("<<DOMAIN>>", domain)
        .replace("<<VERSION>>", __version__)
        .replace("<<DOMAIN_LITERAL>>", json.dumps(domain))
        .replace("<<URL_LITERAL>>", json.dumps(url))
        .replace("<<SERVER_NAME_LITERAL>>", json.dumps(f"{domain} actions"))
        .replace("<<TOOLS>>", "\n".join(tools))
    )
    try:
        compile(source, "server.py", "exec")
    except SyntaxError as exc:
        raise GenerationError(f"Generated server code does not compile: {exc}") from exc
    return source


def render_pyproject(domain: str) -> str:
    name = project_dir_name(domain).replace("_", "-")
    return textwrap.dedent(
        f"""
        [build-system]
        requires = ["setuptools>=68"]
        build-backend = "setuptools.build_meta"

        [project]
        name = "{name}"
        version = "0.1.0"
        description = "MCP server exposing automated actions for {domain}"
        requires-python = ">=3.10"
        dependencies = [
            "mcp>=1.2",
            "python-dotenv>=1.0",
            "mcpkit>={__version__}",
        ]

        [project.scripts]
        {name} = "server:main"

        [tool.setuptools]
        py-modules = ["server"]
        """
    ).lstrip()


def render_readme(domain: str, url: str, actions: Sequence[DiscoveredAction]) -> str:
    lines = [
        f"# {domain} MCP server",
        "",
        f"Generated by mcpkit from {url}. Each tool drives a real browser session",
        f"(signed in through the persistent mcpkit profile for {domain}).",
        "",
        "## Tools",
        "",
    ]
    for action in actions:
        lines.append(f"### `{action.name}`")
        lines.append("")
        lines.append(action.description)
        lines.append("")
        if action.parameters:
            lines.append("Parameters:")
            lines.append("")
            for param in action.parameters:
                flag = "required" if param.required else "optional"
                lines.append(f"- `{param.name}` ({param.type}, {flag}): {param.description}")
            lines.append("")
        if action.steps:
            lines.append("Steps:")
            lines.append("")
            for idx, step in enumerate(action.steps, start=1):
                lines.append(f"{idx}. {step}")
            lines.append("")
        if action.extraction_schema:
            lines.append("Returns:")
            lines.append("")
            for key, description in action.extraction_schema.items():
                lines.append(f"- `{key}`: {description}")
            lines.append("")
    lines.extend(
        [
            "## Setup",
            "",
            "```bash",
            "pip install -e .",
            "playwright install chromium",
            "```",
            "",
            "Fill in `.env` (see `.env.example`), or run `mcpkit config` once to share",
            "credentials between all generated servers.",
            "",
            "## Run",
            "",
            "```bash",
            "python server.py",
            "```",
            "",
        ]
    )
    return "\n".join(lines)


def render_env(values: Optional[Dict[str, str]] = None) -> str:
    values = values or {}
    return "\n".join(f"{key}={values.get(key, '')}" for key in CONFIG_KEYS) + "\n"


def write_server_project(
    domain: str,
    url: str,
    actions: Sequence[DiscoveredAction],
    output_root: Optional[Path] = None,
    secrets: Optional[Dict[str, str]] = None,
) -> Path:
    """Write the server project and return its directory."""
    actions = unique_action_names(actions)
    target = Path(output_root or Path.cwd()) / project_dir_name(domain)
    server_source = render_server(domain, url, actions)
    target.mkdir(parents=True, exist_ok=True)

    catalog = {"actions": [action.to_wire() for action in actions]}
    (target / "server.py").write_text(server_source, encoding="utf-8")
    (target / "actions.json").write_text(json.dumps(catalog, indent=2) + "\n", encoding="utf-8")
    (target / "pyproject.toml").write_text(render_pyproject(domain), encoding="utf-8")
    (target / "README.md").write_text(render_readme(domain, url, actions), encoding="utf-8")
    (target / ".env.example").write_text(render_env(), encoding="utf-8")

    env_values = read_global_env() if secrets is None else secrets
    env_path = target / ".env"
    env_path.write_text(render_env(env_values), encoding="utf-8")
    env_path.chmod(0o600)
    return target
