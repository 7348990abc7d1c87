"""Load runtime settings from the environment once at process start."""
from __future__ import annotations

from dataclasses import dataclass
import os

from expense_agent.errors import ConfigurationError

REQUIRED_KEYS = ("GEMINI_API_KEY", "SHEET_ID", "SHEET_NAME", "PROCESSED_LABEL")


def _int_setting(env, key, default):
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _float_setting(env, key, default):
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    # Required secrets
    gemini_api_key: str
    sheet_id: str
    sheet_name: str
    processed_label: str

    # Classification service
    gemini_model: str = "gemini-2.5-flash-lite"
    gemini_timeout_seconds: float = 60.0

    # Run shaping
    max_threads_per_run: int = 15
    extraction_delay_seconds: float = 10.0

    # Files / tabs
    category_rules_path: str = ""
    dashboard_sheet_name: str = "Dashboard"
    gmail_token_path: str = "token.json"
    gmail_client_secrets_path: str = "credentials.json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        """Build settings from *env* (defaults to os.environ).

        Raises ConfigurationError naming every missing required key.
        """
        if env is None:
            env = os.environ

        missing = [key for key in REQUIRED_KEYS if not (env.get(key) or "").strip()]
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )

        max_threads = _int_setting(env, "MAX_THREADS_PER_RUN", 15)
        if max_threads < 1:
            raise ConfigurationError("MAX_THREADS_PER_RUN must be >= 1")
        delay = _float_setting(env, "EXTRACTION_DELAY_SECONDS", 10.0)
        if delay < 0:
            raise ConfigurationError("EXTRACTION_DELAY_SECONDS must be >= 0")

        return cls(
            gemini_api_key=env["GEMINI_API_KEY"].strip(),
            sheet_id=env["SHEET_ID"].strip(),
            sheet_name=env["SHEET_NAME"].strip(),
            processed_label=env["PROCESSED_LABEL"].strip(),
            gemini_model=(env.get("GEMINI_MODEL") or "gemini-2.5-flash-lite").strip(),
            gemini_timeout_seconds=_float_setting(env, "GEMINI_TIMEOUT_SECONDS", 60.0),
            max_threads_per_run=max_threads,
            extraction_delay_seconds=delay,
            category_rules_path=(env.get("CATEGORY_RULES_PATH") or "").strip(),
            dashboard_sheet_name=(env.get("DASHBOARD_SHEET_NAME") or "Dashboard").strip(),
            gmail_token_path=(env.get("GMAIL_TOKEN_PATH") or "token.json").strip(),
            gmail_client_secrets_path=(env.get("GMAIL_CLIENT_SECRETS_PATH") or "credentials.json").strip(),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )

    def __repr__(self):
        # Keep the API key out of logs
        return (f"Settings(sheet_id={self.sheet_id!r}, sheet_name={self.sheet_name!r}, "
                f"processed_label={self.processed_label!r}, model={self.gemini_model!r}, "
                f"max_threads_per_run={self.max_threads_per_run})")
