from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, session lifetime, and storage paths."""
    gemini_api_key: str
    gemini_model: str
    classify_temperature: float
    classify_max_tokens: int
    response_temperature: float
    response_max_tokens: int
    model_timeout_sec: float
    session_ttl_hours: float
    history_limit: int
    cleanup_interval_sec: int
    data_dir: Path
    store_seed_path: Path
    prompts_dir: Path
    strict_arguments: bool

    @property
    def sessions_path(self) -> Path:
        return self.data_dir / "sessions.json"

    @property
    def session_ttl_sec(self) -> float:
        return self.session_ttl_hours * 3600


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values raise ValueError.
    If Removed: App cannot configure the model, sessions, or seed data and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data and seed paths, then build Settings.
    data_dir = os.getenv("DATA_DIR")
    seed_path = os.getenv("STORE_SEED_PATH")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
        classify_temperature=float(os.getenv("CLASSIFY_TEMPERATURE", "0.7")),
        classify_max_tokens=int(os.getenv("CLASSIFY_MAX_TOKENS", "1000")),
        response_temperature=float(os.getenv("RESPONSE_TEMPERATURE", "0.8")),
        response_max_tokens=int(os.getenv("RESPONSE_MAX_TOKENS", "500")),
        model_timeout_sec=float(os.getenv("MODEL_TIMEOUT_SEC", "30")),
        session_ttl_hours=float(os.getenv("SESSION_TTL_HOURS", "24")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "10")),
        cleanup_interval_sec=int(os.getenv("CLEANUP_INTERVAL_SEC", "3600")),
        data_dir=Path(data_dir).resolve() if data_dir else (BASE_DIR / "data").resolve(),
        store_seed_path=Path(seed_path).resolve()
        if seed_path
        else (BASE_DIR / ".." / "resources" / "store_seed.json").resolve(),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        strict_arguments=_env_flag("STRICT_ARGUMENTS"),
    )


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment flag ("1", "true", "yes", "on" are truthy)."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
