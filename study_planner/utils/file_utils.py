import re
from pathlib import Path

_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]{1,128}")


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def is_safe_token(value: str) -> bool:
    """Return ``True`` when *value* can be used verbatim as a file stem."""
    return bool(_TOKEN_RE.fullmatch(value))
