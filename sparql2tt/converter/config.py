from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).resolve().parents[1] / "config.env"

if _ENV_PATH.exists():
    load_dotenv(_ENV_PATH)
else:
    load_dotenv()

DEFAULT_SPARQL_URL = os.getenv("WIKIDATA_SPARQL_URL", "https://query.wikidata.org/sparql")
DEFAULT_API_URL = os.getenv("WIKIDATA_API_URL", "https://www.wikidata.org/w/api.php")

DEFAULT_CACHE_PATH = os.getenv("SPARQL2TT_CACHE_PATH", "wikidata_cache.sqlite")
DEFAULT_TYPE_INDEX: Optional[str] = os.getenv("SPARQL2TT_TYPE_INDEX")

DEFAULT_HTTP_TIMEOUT = float(os.getenv("SPARQL2TT_HTTP_TIMEOUT", "30"))
DEFAULT_USER_AGENT = os.getenv("SPARQL2TT_USER_AGENT", "sparql2tt/0.1 (dataset construction)")

DEFAULT_LOG_LEVEL = os.getenv("SPARQL2TT_LOG_LEVEL", "INFO")
