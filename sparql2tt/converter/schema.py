from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional

SCALAR_KINDS = {"String", "Number", "Boolean", "Date"}


@dataclass(frozen=True)
class FieldType:
    kind: str
    entity_type: Optional[str] = None
    is_array: bool = False

    @classmethod
    def parse(cls, text: str) -> "FieldType":
        text = text.strip()
        array_match = re.match(r"^Array\s*\((.+)\)$", text)
        if array_match:
            elem = cls.parse(array_match.group(1))
            return cls(kind=elem.kind, entity_type=elem.entity_type, is_array=True)
        entity_match = re.match(r"^Entity\s*\(\s*([A-Za-z0-9_.:]+)\s*\)$", text)
        if entity_match:
            return cls(kind="Entity", entity_type=entity_match.group(1))
        if text in SCALAR_KINDS:
            return cls(kind=text)
        raise ValueError(f"unknown field type: {text}")

    @property
    def is_entity(self) -> bool:
        return self.kind == "Entity"

    def describe(self) -> str:
        inner = f"Entity({self.entity_type})" if self.is_entity else self.kind
        return f"Array({inner})" if self.is_array else inner


@dataclass
class SchemaField:
    name: str
    pid: str
    type: FieldType


@dataclass
class WikidataSchema:
    """Maps Wikidata domain/property codes to table/field names and types."""

    tables: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, SchemaField] = field(default_factory=dict)

    @classmethod
    def from_text(cls, manifest: str) -> "WikidataSchema":
        tables: Dict[str, str] = {}
        fields: Dict[str, SchemaField] = {}
        for raw in manifest.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("- "):
                line = line[2:].strip()
            table_match = re.match(r"^table\s+([A-Za-z0-9_]+)\s*=\s*(Q[0-9]+)$", line)
            if table_match:
                tables[table_match.group(2)] = table_match.group(1)
                continue
            field_match = re.match(r"^field\s+([A-Za-z0-9_]+)\s*=\s*(P[0-9]+)\s*:\s*(.+)$", line)
            if field_match:
                name, pid, type_text = field_match.groups()
                fields[pid] = SchemaField(name=name, pid=pid, type=FieldType.parse(type_text))
                continue
            raise ValueError(f"unparsed manifest line: {raw!r}")
        return cls(tables=tables, fields=fields)

    def table_name_for(self, qid: str) -> Optional[str]:
        return self.tables.get(qid)

    def field_name_for(self, pid: str) -> Optional[str]:
        entry = self.fields.get(pid)
        return entry.name if entry else None

    def field_type_for(self, pid: str) -> Optional[FieldType]:
        entry = self.fields.get(pid)
        return entry.type if entry else None

    def has_table(self, qid: str) -> bool:
        return qid in self.tables

    def has_property(self, pid: str) -> bool:
        return pid in self.fields

    def describe_full(self) -> str:
        table_lines = [f"- {name} ({qid})" for qid, name in self.tables.items()]
        field_lines = [f"- {f.name} ({f.pid}): {f.type.describe()}" for f in self.fields.values()]
        return "TABLES:\n" + "\n".join(table_lines) + "\nFIELDS:\n" + "\n".join(field_lines)


__all__ = ["FieldType", "SchemaField", "WikidataSchema"]
