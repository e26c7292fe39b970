"""Single source of truth for all configuration and secrets.

All modules import from here — never from os.environ directly.

Values are read from secrets/internal.env (or the SOPS-encrypted
secrets/internal.env.enc when MAILSORT_USE_SOPS=true). A key set in the
process environment wins over the file.
"""

import os
from pathlib import Path

from mailsort.secrets import load_scope

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("MAILSORT_USE_SOPS", "false").lower() == "true"

_internal = load_scope(PROJECT_ROOT, "internal", use_sops=USE_SOPS)


def _get(key: str, default: str = "") -> str:
    value = os.environ.get(key)
    if value is None:
        value = _internal.get(key)
    return default if value is None else value


def _get_bool(key: str, default: bool = False) -> bool:
    return _get(key, "true" if default else "false").lower() in ("1", "true", "yes")


# --- AI ---
OLLAMA_BASE_URL: str = _get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL: str = _get("OLLAMA_MODEL", "")
# "closed": an AI condition that errors counts as not matching. "open": as matching.
AI_FAILURE_POLICY: str = _get("AI_FAILURE_POLICY", "closed")

# --- Storage ---
MAILSORT_DB_PATH: str = _get("MAILSORT_DB_PATH", str(PROJECT_ROOT / "data" / "mailsort.db"))
ACTION_AUDIT_LOG_PATH: str = _get(
    "ACTION_AUDIT_LOG_PATH", str(PROJECT_ROOT / "data" / "action_audit.jsonl")
)

# --- Mail account ---
IMAP_SERVER: str = _get("IMAP_SERVER")
IMAP_PORT: int = int(_get("IMAP_PORT", "993"))
IMAP_EMAIL: str = _get("IMAP_EMAIL")
IMAP_PASSWORD: str = _get("IMAP_PASSWORD")
IMAP_IS_GMAIL: bool = _get_bool("IMAP_IS_GMAIL")
SMTP_SERVER: str = _get("SMTP_SERVER")
SMTP_PORT: int = int(_get("SMTP_PORT", "587"))

# --- Actions ---
ACTION_MAX_ATTEMPTS: int = int(_get("ACTION_MAX_ATTEMPTS", "3"))
ACTION_RETRY_BASE_DELAY: float = float(_get("ACTION_RETRY_BASE_DELAY", "1.0"))
WEBHOOK_SECRET: str = _get("WEBHOOK_SECRET")
WEBHOOK_TIMEOUT: float = float(_get("WEBHOOK_TIMEOUT", "10"))

# --- Sender categorization ---
CATEGORIZE_CONCURRENCY: int = int(_get("CATEGORIZE_CONCURRENCY", "3"))
SENDER_PAGE_SIZE: int = int(_get("SENDER_PAGE_SIZE", "100"))

# --- Cleanup ---
CLEANUP_PREVIEW_COUNT: int = int(_get("CLEANUP_PREVIEW_COUNT", "50"))
CLEANUP_BATCH_SIZE: int = int(_get("CLEANUP_BATCH_SIZE", "100"))
CLEANUP_CONTINUE_LIMIT: int = int(_get("CLEANUP_CONTINUE_LIMIT", "0"))  # 0 = unbounded
