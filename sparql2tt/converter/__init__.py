from .converter import ConversionContext, Projection, SPARQLToThingTalkConverter, Table
from .errors import (
    AmbiguousSubjectError,
    ConversionError,
    CrossTableUnsupportedError,
    ErrorCode,
    UnresolvedEntityLabelError,
    UnsupportedConstructError,
)
from .resolver import closest, similarity, spans
from .schema import FieldType, SchemaField, WikidataSchema
from .sparql import Query, parse_query
from .thingtalk import Program
from .wikidata import KnowledgeBase

__all__ = [
    "SPARQLToThingTalkConverter",
    "ConversionContext",
    "Projection",
    "Table",
    "ConversionError",
    "ErrorCode",
    "UnsupportedConstructError",
    "AmbiguousSubjectError",
    "CrossTableUnsupportedError",
    "UnresolvedEntityLabelError",
    "closest",
    "similarity",
    "spans",
    "FieldType",
    "SchemaField",
    "WikidataSchema",
    "Query",
    "parse_query",
    "Program",
    "KnowledgeBase",
]
