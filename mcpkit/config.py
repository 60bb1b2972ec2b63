"""Global configuration stored in ``~/.mcpkit/.env``.

Secrets (model key, 1Password service-account token) live in a single dotenv
file in the user's home directory so every generated server can share them.
Tunables fall back to defaults when the matching environment variable is
missing or malformed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values, load_dotenv, set_key

from mcpkit.errors import ConfigError

CONFIG_KEYS = ("MODEL_PROVIDER", "MODEL_API_KEY", "OP_SERVICE_ACCOUNT_TOKEN")
REQUIRED_KEYS = ("MODEL_PROVIDER", "MODEL_API_KEY")
SECRET_KEYS = {"MODEL_API_KEY", "OP_SERVICE_ACCOUNT_TOKEN"}
DEFAULT_MODEL_PROVIDER = "openai/gpt-4o-mini"
SUPPORTED_PROVIDERS = ("openai",)


def mcpkit_home() -> Path:
    override = os.environ.get("MCPKIT_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mcpkit"


def global_env_path() -> Path:
    return mcpkit_home() / ".env"


def profiles_root() -> Path:
    return mcpkit_home() / "profiles"


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = (environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"⚠️ Ignoring {key}={raw!r}: expected an integer, using {default}.")
        return default
    return value if value > 0 else default


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = (environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        print(f"⚠️ Ignoring {key}={raw!r}: expected a number, using {default}.")
        return default
    return value if value > 0 else default


def _env_flag(environ: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = (environ.get(key) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def split_model_provider(value: str) -> tuple[str, str]:
    """Split ``openai/gpt-4o-mini`` into ``("openai", "gpt-4o-mini")``."""
    provider, sep, model = value.strip().partition("/")
    provider = provider.strip().lower()
    model = model.strip()
    if not sep or not provider or not model:
        raise ConfigError(
            f"MODEL_PROVIDER must look like 'openai/<model>' (got {value!r}). Run 'mcpkit config' to fix it."
        )
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"Unsupported model provider '{provider}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}."
        )
    return provider, model


@dataclass(frozen=True)
class Settings:
    model_provider: str
    model_api_key: str
    op_service_account_token: Optional[str] = None
    headless: bool = False
    debug_port: int = 9222
    active_page_timeout: float = 10.0
    login_idle_timeout_ms: int = 5000
    autofill_idle_timeout_ms: int = 10000
    agent_max_steps: int = 200
    home: Path = Path.home() / ".mcpkit"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        missing = [key for key in REQUIRED_KEYS if not (env.get(key) or "").strip()]
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}. Please run 'mcpkit config' first."
            )
        model_provider = env["MODEL_PROVIDER"].strip()
        split_model_provider(model_provider)
        home_override = (env.get("MCPKIT_HOME") or "").strip()
        return cls(
            model_provider=model_provider,
            model_api_key=env["MODEL_API_KEY"].strip(),
            op_service_account_token=(env.get("OP_SERVICE_ACCOUNT_TOKEN") or "").strip() or None,
            headless=_env_flag(env, "MCPKIT_HEADLESS"),
            debug_port=_env_int(env, "MCPKIT_DEBUG_PORT", 9222),
            active_page_timeout=_env_float(env, "MCPKIT_ACTIVE_PAGE_TIMEOUT", 10.0),
            login_idle_timeout_ms=_env_int(env, "MCPKIT_LOGIN_IDLE_TIMEOUT_MS", 5000),
            autofill_idle_timeout_ms=_env_int(env, "MCPKIT_AUTOFILL_IDLE_TIMEOUT_MS", 10000),
            agent_max_steps=_env_int(env, "MCPKIT_AGENT_MAX_STEPS", 200),
            home=Path(home_override).expanduser() if home_override else mcpkit_home(),
        )

    @property
    def model_name(self) -> str:
        return split_model_provider(self.model_provider)[1]

    @property
    def profiles_dir(self) -> Path:
        return self.home / "profiles"


def load_env(env_path: Optional[Path] = None) -> Settings:
    """Load the global dotenv file into the process and build ``Settings``.

    Values already present in the environment win over the file so a single
    run can be tweaked with ``MCPKIT_HEADLESS=1 mcpkit create ...``.
    """
    path = env_path or global_env_path()
    if not path.exists():
        raise ConfigError(f"No configuration found at {path}. Please run 'mcpkit config' first.")
    load_dotenv(path, override=False)
    return Settings.from_env()


def read_global_env(env_path: Optional[Path] = None) -> Dict[str, str]:
    path = env_path or global_env_path()
    if not path.exists():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def write_global_env(values: Mapping[str, Optional[str]], env_path: Optional[Path] = None) -> Path:
    """Persist non-empty ``values`` into the global dotenv file."""
    path = env_path or global_env_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.touch(mode=0o600)
    for key, value in values.items():
        if value is None or not str(value).strip():
            continue
        set_key(str(path), key, str(value).strip(), quote_mode="never")
    return path


def mask_secret(key: str, value: Optional[str]) -> str:
    if not value:
        return "(not set)"
    if key not in SECRET_KEYS:
        return value
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}…{value[-4:]}"


def load_server_env() -> Settings:
    """Settings for a generated server: its own ``.env`` first, then the global file."""
    path = global_env_path()
    if path.exists():
        load_dotenv(path, override=False)
    return Settings.from_env()
