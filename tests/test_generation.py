from __future__ import annotations

import ast
import json
import stat
from pathlib import Path
from typing import Dict

import pytest


def _actions():
    from mcpkit.schemas import DiscoveredAction

    return [
        DiscoveredAction(name="get_page_info", description="Get page info", steps=[], parameters=[]),
        DiscoveredAction(
            name="search",
            description='Search for "things"\n  across the site \\ fast',
            steps=["Type {query} into search", "Filter by {class}", "Limit to {limit}"],
            parameters=[
                {"name": "class", "type": "string", "description": "Category", "required": False},
                {"name": "query", "type": "string", "description": "Terms", "required": True},
                {"name": "limit", "type": "number", "description": "Max results"},
            ],
            extractionSchema={"results": "matching items"},
        ),
        DiscoveredAction(name="mcp", description="Shadowing name", steps=["Click home"]),
        DiscoveredAction(
            name="toggle-dark-mode",
            description="Toggle",
            steps=["Set dark mode to {enabled}"],
            parameters=[{"name": "enabled", "type": "boolean", "description": "On?", "required": True}],
        ),
    ]


def _functions(source: str) -> Dict[str, ast.FunctionDef]:
    tree = ast.parse(source)
    return {node.name: node for node in tree.body if isinstance(node, ast.FunctionDef)}


def test_project_dir_name() -> None:
    from mcpkit.generation import project_dir_name

    assert project_dir_name("news.ycombinator.com") == "news_ycombinator_com_mcp_server"
    assert project_dir_name("App.Linear.app") == "app_linear_app_mcp_server"


@pytest.mark.parametrize(
    "value, expected",
    [("class", "class_"), ("max-steps", "max_steps"), ("2fa code", "_2fa_code"), ("---", "value")],
)
def test_python_identifier(value: str, expected: str) -> None:
    from mcpkit.generation import python_identifier

    assert python_identifier(value) == expected


def test_rendered_server_compiles_with_one_tool_per_action() -> None:
    from mcpkit.generation import render_server

    source = render_server("example.com", "https://example.com/", _actions())
    functions = _functions(source)

    for name in ("get_page_info", "search", "mcp_", "toggle_dark_mode", "main", "_run"):
        assert name in functions
    tools = [fn for fn in functions.values() if any("mcp.tool" in ast.unparse(d) for d in fn.decorator_list)]
    assert len(tools) == 4


def test_required_parameters_come_first_and_optionals_default_to_none() -> None:
    from mcpkit.generation import render_server

    search = _functions(render_server("example.com", "https://example.com/", _actions()))["search"]

    names = [arg.arg for arg in search.args.args]
    assert names == ["query", "class_", "limit"]
    assert [ast.unparse(arg.annotation) for arg in search.args.args] == [
        "str",
        "Optional[str]",
        "Optional[float]",
    ]
    assert len(search.args.defaults) == 2
    assert all(isinstance(d, ast.Constant) and d.value is None for d in search.args.defaults)


def test_tool_forwards_original_parameter_names() -> None:
    from mcpkit.generation import render_server

    search = _functions(render_server("example.com", "https://example.com/", _actions()))["search"]
    call = ast.unparse(search.body[-1])

    assert "_run('search'" in call
    assert "'class': class_" in call
    assert "'query': query" in call


def test_descriptions_become_safe_docstrings() -> None:
    from mcpkit.generation import render_server

    search = _functions(render_server("example.com", "https://example.com/", _actions()))["search"]

    assert ast.get_docstring(search) == 'Search for "things" across the site \\ fast'


def test_duplicate_function_names_are_disambiguated() -> None:
    from mcpkit.generation import build_tool_specs
    from mcpkit.schemas import DiscoveredAction

    specs = build_tool_specs(
        [
            DiscoveredAction(name="open-menu", description="a", steps=[]),
            DiscoveredAction(name="open_menu", description="b", steps=[]),
        ]
    )
    assert [spec.function_name for spec in specs] == ["open_menu", "open_menu_2"]


def test_write_server_project(tmp_path: Path) -> None:
    from mcpkit.generation import write_server_project
    from mcpkit.runtime import load_catalog

    target = write_server_project(
        "example.com",
        "https://example.com/",
        _actions(),
        tmp_path,
        secrets={"MODEL_PROVIDER": "openai/gpt-4o-mini", "MODEL_API_KEY": "sk-live"},
    )

    assert target == tmp_path / "example_com_mcp_server"
    for name in ("server.py", "actions.json", "pyproject.toml", "README.md", ".env.example", ".env"):
        assert (target / name).is_file()

    catalog = load_catalog(target / "actions.json")
    assert list(catalog) == ["get_page_info", "search", "mcp", "toggle-dark-mode"]
    assert catalog["search"].extraction_schema == {"results": "matching items"}
    raw = json.loads((target / "actions.json").read_text())
    assert "extractionSchema" in raw["actions"][1]

    env = (target / ".env").read_text()
    assert "MODEL_API_KEY=sk-live" in env
    assert "sk-live" not in (target / ".env.example").read_text()
    assert stat.S_IMODE((target / ".env").stat().st_mode) == 0o600

    pyproject = (target / "pyproject.toml").read_text()
    assert 'name = "example-com-mcp-server"' in pyproject
    assert '"mcp>=1.2"' in pyproject
    assert "### `search`" in (target / "README.md").read_text()


def test_empty_catalog_still_renders_a_server() -> None:
    from mcpkit.generation import render_server

    functions = _functions(render_server("example.com", "https://example.com/", []))
    assert set(functions) == {"_run", "main"}


def test_repeated_action_names_stay_addressable(tmp_path: Path) -> None:
    from mcpkit.generation import write_server_project
    from mcpkit.runtime import load_catalog
    from mcpkit.schemas import DiscoveredAction

    actions = [
        DiscoveredAction(name="open_menu", description="Open the main menu", steps=["Click the hamburger icon"]),
        DiscoveredAction(name="open_menu", description="Open the user menu", steps=["Click the avatar"]),
    ]
    target = write_server_project("example.com", "https://example.com/", actions, tmp_path, secrets={})

    catalog = load_catalog(target / "actions.json")
    assert list(catalog) == ["open_menu", "open_menu_2"]
    assert catalog["open_menu"].steps == ["Click the hamburger icon"]
    assert catalog["open_menu_2"].steps == ["Click the avatar"]

    functions = _functions((target / "server.py").read_text())
    called = {}
    for name in ("open_menu", "open_menu_2"):
        call = functions[name].body[-1].value
        called[name] = call.args[0].value
    assert called == {"open_menu": "open_menu", "open_menu_2": "open_menu_2"}
    assert "### `open_menu_2`" in (target / "README.md").read_text()
