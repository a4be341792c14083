from __future__ import annotations

import json
import re
import unicodedata
from typing import Any, Optional


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip())


def remove_accent(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def safe_json_loads(text: Optional[str]) -> Optional[Any]:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
