from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx
from tenacity import retry, stop_after_attempt

from .config import (
    DEFAULT_API_URL,
    DEFAULT_CACHE_PATH,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_SPARQL_URL,
    DEFAULT_USER_AGENT,
)
from .utils import normalize_whitespace, safe_json_loads

logger = logging.getLogger(__name__)

ENTITY_PREFIX = "http://www.wikidata.org/entity/"
PROPERTY_PREFIX = "http://www.wikidata.org/prop/direct/"

INSTANCE_OF = "P31"
HUMAN = "Q5"
TAXON = "Q16521"

# wbgetentities accepts at most 50 ids per call
BATCH_SIZE = 50

_ID_PATTERN = re.compile(r"^[PQ][0-9]+$")

SQLITE_SCHEMA = """
create table if not exists http_requests (
    url text primary key,
    result text
);

create table if not exists labels (
    id varchar(16) primary key,
    label text
);
"""


def normalize_url(url: str) -> str:
    return normalize_whitespace(url)


def load_type_index(path: Optional[str]) -> Dict[str, str]:
    """Load a precomputed entity -> domain index (JSON object)."""
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return {str(k): str(v) for k, v in data.items()}


class KnowledgeBase:
    """Cached, retrying accessor over the Wikidata query service and entity API."""

    def __init__(
        self,
        cache_path: Optional[str] = DEFAULT_CACHE_PATH,
        *,
        type_index: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.Client] = None,
        sparql_url: str = DEFAULT_SPARQL_URL,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._cache_path = cache_path
        self._type_index: Mapping[str, str] = type_index or {}
        self._client = client
        self._owns_client = client is None
        self._sparql_url = sparql_url
        self._api_url = api_url
        self._timeout = timeout
        self._cache: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self.failures: List[str] = []

    def __enter__(self) -> "KnowledgeBase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._cache is not None:
                self._cache.close()
                self._cache = None
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    # -- cache -----------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        if self._cache is None:
            path = self._cache_path or ":memory:"
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            self._cache = sqlite3.connect(path, check_same_thread=False)
            self._cache.executescript(SQLITE_SCHEMA)
        return self._cache

    def _get_cache(self, table: str, field: str, key: str, value: str) -> Optional[Tuple[Any]]:
        with self._lock:
            cursor = self._connection().execute(f"select {field} from {table} where {key} = ?", (value,))
            return cursor.fetchone()

    def _set_cache(self, table: str, *values: Optional[str]) -> None:
        placeholders = ",".join("?" for _ in values)
        with self._lock:
            conn = self._connection()
            conn.execute(f"insert or ignore into {table} values ({placeholders})", values)
            conn.commit()

    # -- network ---------------------------------------------------------

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, headers={"User-Agent": DEFAULT_USER_AGENT})
        return self._client

    @retry(stop=stop_after_attempt(2), reraise=True)
    def _fetch(self, url: str) -> Tuple[str, Any]:
        response = self._http().get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
        text = response.text
        return text, json.loads(text)

    def _request(self, url: str, caching: bool = True) -> Optional[Any]:
        """GET a JSON document; None when it cannot be retrieved."""
        url = normalize_url(url)
        if caching:
            cached = self._get_cache("http_requests", "result", "url", url)
            if cached:
                parsed = safe_json_loads(cached[0])
                if parsed is not None:
                    return parsed
        try:
            text, parsed = self._fetch(url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning("Failed to retrieve result for: %s (%s)", url, exc)
            self.failures.append(url)
            return None
        if caching:
            self._set_cache("http_requests", url, text)
        return parsed

    def _query(self, sparql: str) -> Optional[List[Dict[str, Any]]]:
        url = f"{self._sparql_url}?query={quote(normalize_whitespace(sparql), safe='')}&format=json"
        result = self._request(url)
        if result is None:
            return None
        try:
            return result["results"]["bindings"]
        except (KeyError, TypeError):
            logger.warning("Unexpected SPARQL response for: %s", sparql)
            return None

    def _entities_url(self, ids: Iterable[str], props: str) -> str:
        params = {
            "action": "wbgetentities",
            "ids": "|".join(ids),
            "languages": "en",
            "props": props,
            "format": "json",
        }
        return f"{self._api_url}?{urlencode(params, safe='|')}"

    # -- lookups ---------------------------------------------------------

    def get_property_values(self, entity_id: str, property_id: str) -> List[str]:
        sparql = f"SELECT ?v WHERE {{ wd:{entity_id} wdt:{property_id} ?v. }}"
        bindings = self._query(sparql)
        if bindings is None:
            return []
        values = []
        for row in bindings:
            value = row["v"]["value"]
            values.append(value[len(ENTITY_PREFIX):] if value.startswith(ENTITY_PREFIX) else value)
        return values

    def get_domain(self, entity_id: str) -> Optional[str]:
        """
        Most informative type of an entity.

        With several declared types the one with the most instances wins, except
        for human and taxon whose counting query times out on the public endpoint.
        """
        indexed = self._type_index.get(entity_id)
        if indexed:
            return indexed
        domains = self.get_property_values(entity_id, INSTANCE_OF)
        if not domains:
            return None
        if HUMAN in domains:
            return HUMAN
        if len(domains) == 1:
            return domains[0]
        if TAXON in domains:
            return TAXON
        sparql = f"""SELECT ?v (COUNT(?s) as ?count) WHERE {{
            wd:{entity_id} wdt:{INSTANCE_OF} ?v.
            ?s wdt:{INSTANCE_OF} ?v.
        }} GROUP BY ?v ORDER BY DESC(?count)"""
        bindings = self._query(sparql)
        if not bindings:
            return domains[0]
        return bindings[0]["v"]["value"][len(ENTITY_PREFIX):]

    def get_label(self, entity_id: str) -> Optional[str]:
        if not _ID_PATTERN.match(entity_id):
            return None
        result = self._request(self._entities_url([entity_id], "labels"))
        try:
            entity = next(iter(result["entities"].values()))
            return entity["labels"]["en"]["value"]
        except (KeyError, TypeError, StopIteration):
            logger.info("Failed to retrieve label for %s", entity_id)
            return None

    def get_alt_labels(self, entity_id: str) -> List[str]:
        if not _ID_PATTERN.match(entity_id):
            return []
        result = self._request(self._entities_url([entity_id], "aliases"))
        try:
            entity = next(iter(result["entities"].values()))
            return [alias["value"] for alias in entity["aliases"]["en"]]
        except (KeyError, TypeError, StopIteration):
            logger.info("Found no alt label for %s", entity_id)
            return []

    def get_labels_by_batch(self, *ids: str) -> Dict[str, Optional[str]]:
        result: Dict[str, Optional[str]] = {}
        uncached: List[str] = []
        for entity_id in dict.fromkeys(ids):
            if not _ID_PATTERN.match(entity_id):
                continue
            cached = self._get_cache("labels", "label", "id", entity_id)
            if cached:
                result[entity_id] = cached[0]
            else:
                result[entity_id] = None
                uncached.append(entity_id)

        for start in range(0, len(uncached), BATCH_SIZE):
            batch = uncached[start : start + BATCH_SIZE]
            raw = self._request(self._entities_url(batch, "labels"))
            if raw is None or "entities" not in raw:
                continue
            for entity_id, entity in raw["entities"].items():
                # redirects come back under the alias; never cache them
                if entity_id not in result or entity.get("id") != entity_id:
                    continue
                label = ((entity.get("labels") or {}).get("en") or {}).get("value")
                result[entity_id] = label
                self._set_cache("labels", entity_id, label)
        return result


__all__ = [
    "ENTITY_PREFIX",
    "PROPERTY_PREFIX",
    "INSTANCE_OF",
    "KnowledgeBase",
    "load_type_index",
    "normalize_url",
]
