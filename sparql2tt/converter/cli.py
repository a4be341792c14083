from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, List, Optional, TextIO

from .config import DEFAULT_CACHE_PATH, DEFAULT_LOG_LEVEL, DEFAULT_TYPE_INDEX
from .converter import SPARQLToThingTalkConverter
from .errors import ConversionError, ErrorCode
from .schema import WikidataSchema
from .wikidata import KnowledgeBase, load_type_index

logger = logging.getLogger(__name__)


@dataclass
class Example:
    id: str
    utterance: str
    sparql: str
    keywords: List[str]


@dataclass
class DroppedExample:
    id: str
    utterance: str
    sparql: str
    error: str
    kind: str


def read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read().strip()


def _english(question: Dict[str, Any]) -> Dict[str, Any]:
    for candidate in question.get("question") or []:
        if candidate.get("language") == "en":
            return candidate
    return {}


def iter_examples(dataset: Dict[str, Any]) -> Iterator[Example]:
    """Yield the English utterance, keywords and SPARQL of each QALD question."""
    for question in dataset.get("questions", []):
        english = _english(question)
        utterance = english.get("string", "")
        raw_keywords = english.get("keywords")
        keywords = [k.strip() for k in raw_keywords.split(", ")] if raw_keywords else [utterance]
        yield Example(
            id=str(question.get("id")),
            utterance=utterance,
            sparql=(question.get("query") or {}).get("sparql", ""),
            keywords=keywords,
        )


def _classify(exc: Exception, kb_failed: bool) -> str:
    if kb_failed:
        return ErrorCode.KNOWLEDGE_BASE_UNAVAILABLE.name.lower()
    if isinstance(exc, ConversionError):
        return exc.code.name.lower()
    return "parse_error"


def convert_dataset(
    converter: SPARQLToThingTalkConverter,
    examples: List[Example],
    output: TextIO,
    dropped: Optional[TextIO] = None,
) -> List[DroppedExample]:
    drops: List[DroppedExample] = []
    for example in examples:
        failures_before = len(converter.kb.failures)
        try:
            program = converter.convert(example.sparql, example.keywords)
        except Exception as exc:
            kind = _classify(exc, len(converter.kb.failures) > failures_before)
            logger.info("Dropped example %s (%s): %s", example.id, kind, exc)
            drop = DroppedExample(example.id, example.utterance, example.sparql, str(exc), kind)
            drops.append(drop)
            if dropped is not None:
                dropped.write(json.dumps(asdict(drop)) + "\n")
            continue
        utterance = " ".join(example.utterance.split())
        output.write(f"{example.id}\t{utterance}\t{program.render()}\n")
    return drops


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Convert QALD-style SPARQL over Wikidata into ThingTalk.")
    parser.add_argument("--manifest", required=True, help="Path to the schema manifest (tables and fields)")
    parser.add_argument("-i", "--input", required=True, help="QALD JSON dataset")
    parser.add_argument("-o", "--output", required=True, help="TSV output: id, utterance, program")
    parser.add_argument("--dropped", help="JSONL file for examples that failed to convert")
    parser.add_argument("--cache", default=DEFAULT_CACHE_PATH, help="sqlite cache for Wikidata requests")
    parser.add_argument("--type-index", default=DEFAULT_TYPE_INDEX, help="JSON map of entity -> domain")
    parser.add_argument("--verbose", action="store_true", help="Log every conversion")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else DEFAULT_LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        schema = WikidataSchema.from_text(read_text(args.manifest))
        with open(args.input, "r", encoding="utf-8") as fh:
            examples = list(iter_examples(json.load(fh)))
        type_index = load_type_index(args.type_index)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    with KnowledgeBase(args.cache, type_index=type_index) as kb:
        converter = SPARQLToThingTalkConverter(schema, kb)
        with open(args.output, "w", encoding="utf-8") as output:
            if args.dropped:
                with open(args.dropped, "w", encoding="utf-8") as dropped:
                    drops = convert_dataset(converter, examples, output, dropped)
            else:
                drops = convert_dataset(converter, examples, output)

    converted = len(examples) - len(drops)
    print(f"Converted {converted}/{len(examples)} examples")
    if drops:
        by_kind: Dict[str, int] = {}
        for drop in drops:
            by_kind[drop.kind] = by_kind.get(drop.kind, 0) + 1
        for kind, count in sorted(by_kind.items()):
            print(f"  - {kind}: {count}")
    return 0 if not drops else 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
