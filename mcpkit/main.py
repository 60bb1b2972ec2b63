# main.py
import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from mcpkit import __version__
from mcpkit.config import (
    CONFIG_KEYS,
    DEFAULT_MODEL_PROVIDER,
    global_env_path,
    mask_secret,
    profiles_root,
    read_global_env,
    split_model_provider,
    write_global_env,
)
from mcpkit.errors import ConfigError, McpkitError
from mcpkit.profiles import delete_profile, list_profiles, load_profile


def _prompt(label: str, key: str, current: Optional[str], secret: bool = False) -> Optional[str]:
    hint = f" [{mask_secret(key, current)}]" if current else ""
    reader = getpass.getpass if secret else input
    value = reader(f"{label}{hint}: ").strip()
    return value or current


def cmd_config(args: argparse.Namespace) -> int:
    existing = read_global_env()
    if args.action == "show":
        if not existing:
            print(f"ℹ️ No configuration at {global_env_path()}. Run 'mcpkit config' to create it.")
            return 0
        print(f"🔧 {global_env_path()}")
        for key in CONFIG_KEYS:
            print(f"  {key}={mask_secret(key, existing.get(key))}")
        return 0

    values = {
        "MODEL_PROVIDER": args.model_provider,
        "MODEL_API_KEY": args.model_api_key,
        "OP_SERVICE_ACCOUNT_TOKEN": args.op_token,
    }
    if not (values["MODEL_PROVIDER"] and values["MODEL_API_KEY"]):
        print("🔧 mcpkit global configuration\n")
        print(f"Settings are stored in {global_env_path()} and shared by every generated server.\n")
        values["MODEL_PROVIDER"] = values["MODEL_PROVIDER"] or _prompt(
            "Model provider", "MODEL_PROVIDER", existing.get("MODEL_PROVIDER") or DEFAULT_MODEL_PROVIDER
        )
        values["MODEL_API_KEY"] = values["MODEL_API_KEY"] or _prompt(
            "Model API key", "MODEL_API_KEY", existing.get("MODEL_API_KEY"), secret=True
        )
        values["OP_SERVICE_ACCOUNT_TOKEN"] = values["OP_SERVICE_ACCOUNT_TOKEN"] or _prompt(
            "1Password service account token (optional)",
            "OP_SERVICE_ACCOUNT_TOKEN",
            existing.get("OP_SERVICE_ACCOUNT_TOKEN"),
            secret=True,
        )

    if not values["MODEL_API_KEY"]:
        raise ConfigError("A model API key is required.")
    split_model_provider(values["MODEL_PROVIDER"] or "")
    path = write_global_env(values)
    print(f"✅ Configuration saved to {path}")
    return 0


def cmd_create(args: argparse.Namespace) -> int:
    from mcpkit.create import create_mcp_server, domain_from_url

    url = (args.url or "").strip()
    if not url:
        url = input("🌐 Website URL to automate (e.g. https://news.ycombinator.com): ").strip()
        domain_from_url(url)

    create_mcp_server(
        url,
        skip_auth=args.skip_auth,
        persist_profile=not args.no_persist,
        headless=True if args.headless else None,
        output_root=Path(args.output) if args.output else None,
    )
    return 0


def cmd_contexts(args: argparse.Namespace) -> int:
    root = profiles_root()
    if args.action == "list":
        profiles = list_profiles(root)
        if not profiles:
            print(f"ℹ️ No saved browser contexts in {root}.")
            return 0
        print(f"🗂️ Saved browser contexts ({root}):")
        for info in profiles:
            print(f"  • {info.domain}  {info.size_label}  last used {info.modified_at:%Y-%m-%d %H:%M}")
        return 0

    if not args.domain:
        raise McpkitError(f"'contexts {args.action}' needs a domain.")
    info = load_profile(root, args.domain)
    if info is None:
        print(f"ℹ️ No saved context for {args.domain}.")
        return 1

    if args.action == "show":
        print(f"🗂️ {info.domain}")
        print(f"  Path: {info.path}")
        print(f"  Size: {info.size_label}")
        print(f"  Last used: {info.modified_at.isoformat()}")
        return 0

    if not args.yes:
        answer = input(f"Delete saved context for {info.domain}? This signs you out. [y/N]: ")
        if answer.strip().lower() not in {"y", "yes"}:
            print("Cancelled.")
            return 0
    delete_profile(root, args.domain)
    print(f"🗑️ Deleted saved context for {info.domain}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpkit",
        description="Turn a website into an MCP server: sign in, discover actions, generate tools.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging.")
    sub = parser.add_subparsers(dest="command")

    create = sub.add_parser("create", help="Generate an MCP server for a website.")
    create.add_argument(
        "url", nargs="?", help="Website to automate, e.g. https://news.ycombinator.com (asked for when omitted)"
    )
    create.add_argument("--skip-auth", action="store_true", help="Do not try to sign in first.")
    create.add_argument("--no-persist", action="store_true", help="Use a throwaway browser profile.")
    create.add_argument("--headless", action="store_true", help="Run Chromium without a window.")
    create.add_argument("--output", help="Directory to write the server project into (default: cwd).")
    create.set_defaults(func=cmd_create)

    config = sub.add_parser("config", help="Set up or show the global configuration.")
    config.add_argument("action", nargs="?", choices=["setup", "show"], default="setup")
    config.add_argument("--model-provider", help=f"Provider/model, e.g. {DEFAULT_MODEL_PROVIDER}")
    config.add_argument("--model-api-key", help="API key for the model provider.")
    config.add_argument("--op-token", help="1Password service account token.")
    config.set_defaults(func=cmd_config)

    contexts = sub.add_parser("contexts", help="Manage saved browser contexts (signed-in profiles).")
    contexts.add_argument("action", nargs="?", choices=["list", "show", "delete"], default="list")
    contexts.add_argument("domain", nargs="?")
    contexts.add_argument("-y", "--yes", action="store_true", help="Do not ask before deleting.")
    contexts.set_defaults(func=cmd_contexts)

    version = sub.add_parser("version", help="Print the mcpkit version.")
    version.set_defaults(func=lambda _args: print(f"mcpkit {__version__}") or 0)

    help_cmd = sub.add_parser("help", help="Show this help.")
    help_cmd.set_defaults(func=lambda _args: parser.print_help() or 0)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted.")
        return 130
    except McpkitError as exc:
        print(f"❌ {exc}")
        return 1
    except Exception as exc:
        logging.getLogger("mcpkit").debug("unhandled error", exc_info=True)
        print(f"❌ Unexpected error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
