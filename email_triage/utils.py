from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("email_triage")

_ADDRESS_RE = re.compile(r"<([^>]+)>")
_NAME_RE = re.compile(r"^([^<]+)<")
# Graph emits up to 7 fractional digits; datetime accepts at most 6.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def configure_logging(verbosity: int = 0) -> None:
    if logging.getLogger().handlers:
        return
    level = logging.INFO if verbosity <= 0 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_dir(path: str | Path) -> Path:
    p = Path(path).expanduser()
    p.mkdir(parents=True, exist_ok=True)
    return p


def load_json(path: str | Path, default: Any) -> Any:
    p = Path(path)
    if not p.exists():
        return default
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_json(path: str | Path, data: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if is_dataclass(data):
        data = asdict(data)
    with p.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


_ENV_LOADED = False


def load_env_file(path: str | Path = ".env") -> Optional[Path]:
    """
    Lightweight .env reader (no external dependency).
    - Lines starting with # are ignored.
    - Supports KEY=VALUE with optional surrounding quotes.
    - Does not override variables that are already set.
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return None

    env_path = Path(path).expanduser()
    if not env_path.exists():
        _ENV_LOADED = True
        return None

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value

    _ENV_LOADED = True
    return env_path


# -----------------------------
# Email header helpers
# -----------------------------


def extract_email_address(full_address: str) -> str:
    """'Jane Doe <jane@example.com>' -> 'jane@example.com'."""
    match = _ADDRESS_RE.search(full_address or "")
    return match.group(1) if match else full_address


def extract_name(full_address: str) -> str:
    """'"Jane Doe" <jane@example.com>' -> 'Jane Doe'."""
    match = _NAME_RE.match(full_address or "")
    if not match:
        return full_address
    return match.group(1).strip().replace('"', "")


def truncate_text(text: Optional[str], max_length: int = 100) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 (Gmail Date header) or ISO 8601 (Graph) timestamp.

    Naive values are assumed to be UTC. Returns None when nothing parses.
    """
    if not value:
        return None
    raw = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(_FRACTION_RE.sub(r"\1", raw).replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_date(value: str) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return value
    return parsed.strftime("%b %d, %Y, %I:%M %p")
