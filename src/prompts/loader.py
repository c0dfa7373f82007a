from __future__ import annotations

from functools import lru_cache
from pathlib import Path

PROMPT_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(filename: str) -> str:
    """Load a prompt template shipped with the codebase."""

    path = PROMPT_DIR / filename
    if not path.exists():
        raise RuntimeError(f"Prompt file not found: {filename}")
    return path.read_text(encoding="utf-8").strip() + "\n"


def render_prompt(filename: str, **values: object) -> str:
    """Fill a ``str.format`` template; literal braces in the file are doubled."""

    return load_prompt(filename).format(**values)
