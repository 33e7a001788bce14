import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secrets - stay in .env
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")

# User config - loaded from ~/.datachat/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".datachat" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('tools.max_rounds', 5)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for logs and saved sessions.
# Priority: DATACHAT_DIR env var > "data_dir" config key > ~/.datachat

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``DATACHAT_DIR`` environment variable (highest, useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.datachat`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("DATACHAT_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".datachat"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- LLM provider config ------------------------------------------------------

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-5-nano",
    "anthropic": "claude-sonnet-4-5",
}
DEFAULT_IMAGE_MODELS = {
    "gemini": "gemini-2.5-flash-image",
    "openai": "dall-e-2",
    "anthropic": "",
}


def default_provider() -> str:
    """Configured provider, else OpenAI when its key is set, else Gemini."""
    configured = get("llm_provider")
    if configured:
        return str(configured).lower()
    return "openai" if OPENAI_API_KEY else "gemini"


def get_api_key(provider: str | None = None) -> str | None:
    """Return the API key for the given (or configured) LLM provider.

    Resolution order: llm_api_key config > provider-specific env var.
    """
    configured = get("llm_api_key")
    if configured:
        return configured
    prov = (provider or default_provider()).lower()
    if prov == "openai":
        return OPENAI_API_KEY
    if prov == "anthropic":
        return ANTHROPIC_API_KEY
    return GOOGLE_API_KEY


def read_system_prompt(path: Path | None) -> str:
    """Read the chat system prompt, or return '' if it is missing."""
    if path is None or not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup and passed to the agent.

    Attributes:
        provider: ``"gemini"``, ``"openai"`` or ``"anthropic"``.
        model: Chat model identifier for the provider.
        image_model: Model used by the image generation tool ('' = unsupported).
        api_key: Provider API key.
        base_url: Optional OpenAI-compatible endpoint.
        timeout_ms: Hard HTTP timeout for provider calls.
        system_prompt: Text of the system prompt file.
        max_tool_rounds: Round ceiling for the tabular catalog.
        max_record_tool_rounds: Round ceiling for the record + image catalog.
        max_tool_calls: Total tool invocations allowed in one turn.
        parallel_tool_calls: Run multiple calls of one round on a thread pool.
        parallel_max_workers: Thread pool size for parallel tool calls.
        encoded_data_limit: Max characters of CSV source embedded (encoded)
            in Python-analysis prompts.
        slim_csv_limit: Max characters of the slim CSV projection.
        fallback_model: Model to switch to after a quota error ('' = none).
        user_name: Display name prefixed to prompts ('' = none).
    """
    provider: str = "gemini"
    model: str = DEFAULT_MODELS["gemini"]
    image_model: str = DEFAULT_IMAGE_MODELS["gemini"]
    api_key: str | None = None
    base_url: str | None = None
    timeout_ms: int = 300_000
    system_prompt: str = ""
    max_tool_rounds: int = 5
    max_record_tool_rounds: int = 8
    max_tool_calls: int = 20
    parallel_tool_calls: bool = True
    parallel_max_workers: int = 4
    encoded_data_limit: int = 500_000
    slim_csv_limit: int = 40_000
    fallback_model: str = ""
    user_name: str = ""


def load_settings(
    provider: str | None = None,
    model: str | None = None,
    user_name: str | None = None,
) -> Settings:
    """Build the immutable Settings object from config.json and the environment."""
    prov = (provider or default_provider()).lower()
    prompt_path = get("system_prompt_path")
    if prompt_path:
        prompt_file = Path(prompt_path).expanduser()
    else:
        prompt_file = Path(__file__).resolve().parent / "prompt_chat.txt"
    return Settings(
        provider=prov,
        model=model or get(f"models.{prov}", DEFAULT_MODELS.get(prov, "")),
        image_model=get(f"image_models.{prov}", DEFAULT_IMAGE_MODELS.get(prov, "")),
        api_key=get_api_key(prov),
        base_url=get("llm_base_url"),
        timeout_ms=int(get("timeout_ms", 300_000)),
        system_prompt=read_system_prompt(prompt_file),
        max_tool_rounds=int(get("tools.max_rounds", 5)),
        max_record_tool_rounds=int(get("tools.max_record_rounds", 8)),
        max_tool_calls=int(get("tools.max_calls_per_turn", 20)),
        parallel_tool_calls=bool(get("tools.parallel", True)),
        parallel_max_workers=int(get("tools.parallel_max_workers", 4)),
        encoded_data_limit=int(get("attachments.encoded_limit", 500_000)),
        slim_csv_limit=int(get("attachments.slim_csv_limit", 40_000)),
        fallback_model=get(f"fallback_models.{prov}", ""),
        user_name=user_name if user_name is not None else get("user_name", ""),
    )
