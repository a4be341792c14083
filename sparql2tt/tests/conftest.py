import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure project root is on path for imports when running pytest from repo root
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

MANIFEST_PATH = Path(__file__).resolve().parents[1] / "sample_manifest.txt"

LABELS = {
    "Q5": "human",
    "Q15": "Africa",
    "Q42": "Douglas Adams",
    "Q46": "Europe",
    "Q64": "Berlin",
    "Q90": "Paris",
    "Q142": "France",
    "Q145": "United Kingdom",
    "Q183": "Germany",
    "Q6256": "country",
}

ALT_LABELS = {
    "Q145": ["UK", "Britain"],
}

DOMAINS = {
    "Q42": "Q5",
    "Q142": "Q6256",
    "Q183": "Q6256",
}


class FakeKnowledgeBase:
    """In-memory stand-in for the Wikidata accessor."""

    def __init__(
        self,
        labels: Optional[Dict[str, str]] = None,
        alt_labels: Optional[Dict[str, List[str]]] = None,
        domains: Optional[Dict[str, str]] = None,
    ) -> None:
        self.labels = dict(LABELS if labels is None else labels)
        self.alt_labels = dict(ALT_LABELS if alt_labels is None else alt_labels)
        self.domains = dict(DOMAINS if domains is None else domains)
        self.failures: List[str] = []
        self.label_calls: List[str] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def get_domain(self, entity_id: str) -> Optional[str]:
        return self.domains.get(entity_id)

    def get_label(self, entity_id: str) -> Optional[str]:
        self.label_calls.append(entity_id)
        return self.labels.get(entity_id)

    def get_alt_labels(self, entity_id: str) -> List[str]:
        return list(self.alt_labels.get(entity_id, []))

    def close(self) -> None:
        pass


@pytest.fixture
def manifest_text() -> str:
    return MANIFEST_PATH.read_text(encoding="utf-8")


@pytest.fixture
def fake_kb() -> FakeKnowledgeBase:
    return FakeKnowledgeBase()
