import unittest
from pathlib import Path

import pytest

from sparql2tt.converter import (
    AmbiguousSubjectError,
    ConversionContext,
    CrossTableUnsupportedError,
    SPARQLToThingTalkConverter,
    UnresolvedEntityLabelError,
    UnsupportedConstructError,
    WikidataSchema,
    parse_query,
)

from conftest import FakeKnowledgeBase

MANIFEST_TEXT = (Path(__file__).resolve().parents[1] / "sample_manifest.txt").read_text(encoding="utf-8")

EUROPE = '"Q46"^^org.wikidata:p_continent("Europe")'
AFRICA = '"Q15"^^org.wikidata:p_continent("Africa")'


def _convert(sparql, keywords, kb=None):
    converter = SPARQLToThingTalkConverter(WikidataSchema.from_text(MANIFEST_TEXT), kb or FakeKnowledgeBase())
    return converter.convert(sparql, keywords).render()


def test_countries_in_europe_regression():
    program = _convert(
        "SELECT (COUNT(?x) AS ?count) WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P30 wd:Q46 . }",
        ["countries", "Europe"],
    )
    assert program == f"count(@org.wikidata.country() filter contains(continent, {EUROPE}));"


class TripleFoldingTests(unittest.TestCase):
    def test_type_triple_sets_table_in_any_order(self):
        expected = f"@org.wikidata.country() filter contains(continent, {EUROPE});"
        forward = _convert("SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 . ?x wdt:P30 wd:Q46 . }", ["Europe"])
        backward = _convert("SELECT ?x WHERE { ?x wdt:P30 wd:Q46 . ?x wdt:P31 wd:Q6256 . }", ["Europe"])
        self.assertEqual(forward, expected)
        self.assertEqual(backward, expected)

    def test_untyped_subject_uses_default_table(self):
        program = _convert("SELECT ?x WHERE { ?x wdt:P30 wd:Q46 . }", ["Europe"])
        self.assertEqual(program, f"@org.wikidata.entity() filter contains(continent, {EUROPE});")

    def test_concrete_subject_projection(self):
        program = _convert("SELECT ?c WHERE { wd:Q142 wdt:P36 ?c . }", "What is the capital of France?")
        self.assertEqual(
            program,
            '[capital] of (@org.wikidata.country() filter id == "Q142"^^org.wikidata:entity("France"));',
        )

    def test_scalar_values(self):
        program = _convert("SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P1082 1000 . }", ["countries"])
        self.assertEqual(program, "@org.wikidata.country() filter population == 1000;")

    def test_property_paths_are_simplified(self):
        program = _convert("SELECT ?x WHERE { ?x wdt:P31/wdt:P279* wd:Q6256 . }", ["countries"])
        self.assertEqual(program, "@org.wikidata.country();")

    def test_unknown_property_and_domain(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert("SELECT ?x WHERE { ?x wdt:P999 wd:Q46 . }", ["Europe"])
        with self.assertRaises(UnsupportedConstructError):
            _convert("SELECT ?x WHERE { ?x wdt:P31 wd:Q123456 . }", ["things"])
        with self.assertRaises(UnsupportedConstructError):
            _convert("SELECT ?x WHERE { ?x ?p wd:Q46 . }", ["Europe"])

    def test_missing_label(self):
        kb = FakeKnowledgeBase(labels={})
        with self.assertRaises(UnresolvedEntityLabelError) as ctx:
            _convert("SELECT ?x WHERE { ?x wdt:P30 wd:Q46 . }", ["Europe"], kb)
        self.assertEqual(ctx.exception.entity, "Q46")


class FoldingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.converter = SPARQLToThingTalkConverter(WikidataSchema.from_text(MANIFEST_TEXT), FakeKnowledgeBase())

    def _fold(self, body: str) -> ConversionContext:
        return self.converter.fold(parse_query(f"SELECT ?x WHERE {{ {body} }}"), ["Europe", "Berlin"])

    def test_filter_set_is_independent_of_triple_order(self):
        triples = ["?x wdt:P31 wd:Q6256 .", "?x wdt:P30 wd:Q46 .", "?x wdt:P36 wd:Q64 ."]
        forward = self._fold(" ".join(triples))
        backward = self._fold(" ".join(reversed(triples)))

        self.assertEqual(list(forward.tables), ["?x"])
        self.assertEqual(forward.tables["?x"].name, "country")
        self.assertEqual(backward.tables["?x"].name, "country")
        self.assertEqual(len(forward.tables["?x"].filters), 2)
        self.assertEqual(set(forward.tables["?x"].filters), set(backward.tables["?x"].filters))

    def test_union_yields_two_operand_or(self):
        ctx = self._fold("{ ?x wdt:P30 wd:Q46 } UNION { ?x wdt:P36 wd:Q64 }")
        (condition,) = ctx.tables["?x"].filters
        self.assertEqual(len(condition.operands), 2)

    def test_contexts_are_not_shared(self):
        first = self._fold("?x wdt:P31 wd:Q6256 .")
        second = self._fold("?x wdt:P30 wd:Q46 .")
        self.assertEqual(second.tables["?x"].name, "entity")
        self.assertIsNot(first.tables, second.tables)


class UnionTests(unittest.TestCase):
    def test_union_over_single_subject(self):
        program = _convert(
            "SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 . { ?x wdt:P30 wd:Q46 } UNION { ?x wdt:P30 wd:Q15 } }",
            ["countries", "Europe", "Africa"],
        )
        self.assertEqual(
            program,
            f"@org.wikidata.country() filter contains(continent, {EUROPE}) || contains(continent, {AFRICA});",
        )

    def test_union_over_two_subjects(self):
        with self.assertRaises(AmbiguousSubjectError):
            _convert(
                "SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 . { ?x wdt:P30 wd:Q46 } UNION { ?y wdt:P30 wd:Q15 } }",
                ["Europe", "Africa"],
            )

    def test_special_union_collapses(self):
        program = _convert(
            "SELECT ?x WHERE { { ?x wdt:P31 wd:Q6256 } UNION { ?x wdt:P31/wdt:P279* wd:Q6256 } }",
            ["countries"],
        )
        self.assertEqual(program, "@org.wikidata.country();")

    def test_filters_are_unsupported(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert(
                "SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P1082 ?p . FILTER(?p > 1000000) }",
                ["countries"],
            )


class GenerationTests(unittest.TestCase):
    def test_cross_table_output(self):
        with self.assertRaises(CrossTableUnsupportedError):
            _convert("SELECT ?x ?y WHERE { ?x wdt:P31 wd:Q6256 . ?y wdt:P31 wd:Q5 . }", ["countries", "humans"])

    def test_nothing_to_output(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert("SELECT ?z WHERE { ?x wdt:P31 wd:Q6256 . }", ["countries"])

    def test_select_star(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert("SELECT * WHERE { ?x wdt:P31 wd:Q6256 . }", ["countries"])

    def test_order_and_limit(self):
        program = _convert(
            "SELECT ?x ?p WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P1082 ?p . } ORDER BY DESC(?p) LIMIT 1",
            ["most populous country"],
        )
        self.assertEqual(
            program,
            "sort(population desc of ([id, population] of @org.wikidata.country()))[1:1];",
        )

    def test_count_of_projected_field(self):
        program = _convert(
            "SELECT (COUNT(?c) AS ?n) WHERE { wd:Q42 wdt:P40 ?c . }",
            "How many children did Douglas Adams have?",
        )
        self.assertEqual(
            program,
            'count(child of (@org.wikidata.human() filter id == "Q42"^^org.wikidata:entity("Douglas Adams")));',
        )

    def test_having_count(self):
        program = _convert(
            "SELECT ?x WHERE { ?x wdt:P31 wd:Q5 ; wdt:P40 ?c . } GROUP BY ?x HAVING (COUNT(?c) > 2)",
            ["people", "children"],
        )
        self.assertEqual(program, "@org.wikidata.human() filter count(child) >= 2;")

    def test_offset_is_unsupported(self):
        for modifiers in ("LIMIT 1 OFFSET 1", "OFFSET 2"):
            with self.assertRaises(UnsupportedConstructError):
                _convert(
                    f"SELECT ?x ?p WHERE {{ ?x wdt:P31 wd:Q6256 ; wdt:P1082 ?p . }} ORDER BY DESC(?p) {modifiers}",
                    ["second most populous country"],
                )

    def test_having_other_aggregates_are_unsupported(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert(
                "SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P1082 ?p . } GROUP BY ?x HAVING (SUM(?p) > 2)",
                ["countries"],
            )
        with self.assertRaises(UnsupportedConstructError):
            _convert(
                "SELECT ?x WHERE { ?x wdt:P31 wd:Q5 ; wdt:P40 ?c ; wdt:P27 ?y . } GROUP BY ?x ?y "
                "HAVING (COUNT(?c) > 2)",
                ["people"],
            )


class BooleanQuestionTests(unittest.TestCase):
    def test_ask_verification(self):
        program = _convert("ASK WHERE { wd:Q42 wdt:P27 wd:Q145 . }", ["Douglas Adams", "United Kingdom"])
        self.assertEqual(
            program,
            '[id == "Q42"^^org.wikidata:entity("Douglas Adams") && '
            'contains(country_of_citizenship, "Q145"^^org.wikidata:p_country_of_citizenship("United Kingdom"))] '
            "of @org.wikidata.human();",
        )

    def test_every_table_must_be_verified(self):
        for body in (
            "wd:Q42 wdt:P27 wd:Q145 . ?x wdt:P40 wd:Q42 .",
            "wd:Q42 wdt:P27 wd:Q145 . ?x wdt:P31 wd:Q5 .",
        ):
            with self.assertRaises(CrossTableUnsupportedError):
                _convert(f"ASK WHERE {{ {body} }}", ["Douglas Adams", "United Kingdom"])

    def test_question_without_verification(self):
        with self.assertRaises(UnsupportedConstructError):
            _convert("ASK WHERE { ?x wdt:P31 wd:Q5 ; wdt:P27 wd:Q145 . }", ["United Kingdom"])

    def test_display_falls_back_to_alt_labels(self):
        program = _convert("ASK WHERE { wd:Q42 wdt:P27 wd:Q145 . }", "Was Douglas Adams from the UK?")
        self.assertIn('"Q145"^^org.wikidata:p_country_of_citizenship("UK")', program)
        self.assertIn('"Q42"^^org.wikidata:entity("Douglas Adams")', program)

    def test_display_falls_back_to_label(self):
        program = _convert("ASK WHERE { wd:Q42 wdt:P27 wd:Q145 . }", "Is it true?")
        self.assertIn('("United Kingdom")', program)

    def test_verification_and_projection_are_exclusive(self):
        for body in (
            "wd:Q42 wdt:P27 wd:Q145 . wd:Q42 wdt:P40 ?c .",
            "wd:Q42 wdt:P40 ?c . wd:Q42 wdt:P27 wd:Q145 .",
        ):
            with self.assertRaises(UnsupportedConstructError):
                _convert(f"ASK WHERE {{ {body} }}", ["Douglas Adams"])


@pytest.mark.parametrize(
    "keywords",
    [["countries", "Europe"], "countries in Europe"],
)
def test_keywords_accept_string_or_list(keywords):
    program = _convert("SELECT ?x WHERE { ?x wdt:P31 wd:Q6256 ; wdt:P30 wd:Q46 . }", keywords)
    assert program.endswith(f"filter contains(continent, {EUROPE});")


if __name__ == "__main__":
    unittest.main()
