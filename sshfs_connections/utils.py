import os
import re
import sys
import json
from datetime import datetime
from typing import Any, Dict, Optional
from sshfs_connections.config import config

def _emit(level: str, message: str, scope: Optional[str]) -> None:
    prefix = f"[SSHFS] [{level}]"
    if scope:
        prefix += f" [{scope}]"
    print(f"{prefix} {message}", file=sys.stderr, flush=True)

def log_error(message: str, scope: Optional[str] = None) -> None:
    _emit("ERROR", message, scope)

def log_info(message: str, scope: Optional[str] = None) -> None:
    _emit("INFO", message, scope)

def log_debug(message: str, scope: Optional[str] = None) -> None:
    if config.DEBUG:
        _emit("DEBUG", message, scope)

def to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    s = str(value).lower().strip()
    if s in ("true", "1", "yes", "on"):
        return True
    if s in ("false", "0", "no", "off"):
        return False
    return default

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def safe_name(text: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", text.strip())
    return cleaned[:80] if cleaned else "unnamed"

def json_line(path: str, payload: Dict[str, Any]) -> None:
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except Exception as exc:
        log_error(f"log write failed ({path}): {exc}")

def build_connection_log_path(log_dir: str, name: str) -> str:
    os.makedirs(log_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(log_dir, f"{safe_name(name)}__{stamp}.log")
