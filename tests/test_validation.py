"""
test_validation.py
==================
Unit tests for input handling around the classification engine.
Covers scheme lookup, input types, missing and duplicate element columns,
element-name normalisation, non-mutation, warnings, logging, rule-table
validation and the DataFrame utilities.
"""

import sys
import os
import unittest

import numpy as np
import pandas as pd

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "engine"))
from eds2min_engine import (
    eds2min, MineralClassifier, normalize_element_names, to_dataframe,
    KANDLER_ELEMENTS, PANTA_ELEMENTS,
    EdsClassificationError, ElementSchemaError, InputTypeError,
    RuleConfigError, UnknownSchemeError, _FlatRuleEngine,
)

eng = eds2min()

FULL_NAMES = {
    "Na": "Sodium", "Mg": "Magnesium", "Al": "Aluminium", "Si": "Silicon",
    "P": "Phosphorus", "S": "Sulfur", "Cl": "Chlorine", "K": "Potassium",
    "Ca": "Calcium", "Ti": "Titanium", "Cr": "Chromium", "Mn": "Manganese",
    "Fe": "Iron",
}


def frame(*rows):
    cols = list(KANDLER_ELEMENTS)
    return pd.DataFrame([{c: float(r.get(c, 0.0)) for c in cols} for r in rows], columns=cols)


# ─────────────────────────────────────────────────────────────────────────────
# Scheme lookup
# ─────────────────────────────────────────────────────────────────────────────

class TestSchemes(unittest.TestCase):

    def test_canonical_names(self):
        self.assertEqual(eng.schemes(), ["panta", "kandler", "donarummo"])

    def test_keys_case_insensitive(self):
        df = frame({"Si": 100})
        for key in ("kandler", "B", "b", " Kandler "):
            self.assertEqual(eng.classify(df, key).scheme, "kandler", msg=key)

    def test_unknown_scheme(self):
        with self.assertRaises(UnknownSchemeError):
            eng.classify(frame({"Si": 100}), "D")
        with self.assertRaises(ValueError):
            eng.vocabulary("smith")

    def test_scheme_info(self):
        info = eng.scheme_info("A")
        self.assertEqual(info["units"], "atomic percent")
        self.assertEqual(info["optional"], {"F": 0.0})
        self.assertEqual(eng.scheme_info("C")["units"], "net intensity")

    def test_alias(self):
        self.assertIs(MineralClassifier, eds2min)

    def test_matching_rules_flat_only(self):
        with self.assertRaises(UnknownSchemeError):
            eng.matching_rules(frame({"Si": 100}), "donarummo")


# ─────────────────────────────────────────────────────────────────────────────
# Input types
# ─────────────────────────────────────────────────────────────────────────────

class TestInputTypes(unittest.TestCase):

    def test_non_tabular(self):
        for bad in ("Si=100", 42, np.zeros((2, 13)), [], None):
            with self.assertRaises(InputTypeError, msg=repr(bad)):
                eng.classify(bad, "kandler")

    def test_is_type_error(self):
        with self.assertRaises(TypeError):
            eng.classify("Si=100", "kandler")

    def test_mapping_of_columns(self):
        table = {el: [0.0] for el in KANDLER_ELEMENTS}
        table["Si"] = [100.0]
        self.assertEqual(eng.classify(table, "kandler").labels, ["quartz"])

    def test_list_of_row_dicts(self):
        rows = [{el: (100.0 if el == "Ca" else 0.0) for el in KANDLER_ELEMENTS}]
        self.assertEqual(eng.classify(rows, "kandler").labels, ["Ca carbonate"])

    def test_string_column(self):
        df = frame({"Si": 100})
        df["Na"] = ["lots"]
        with self.assertRaises(InputTypeError):
            eng.classify(df, "kandler")

    def test_boolean_column(self):
        df = frame({"Si": 100})
        df["Mg"] = [False]
        with self.assertRaises(InputTypeError):
            eng.classify(df, "kandler")

    def test_datetime_column(self):
        df = frame({"Si": 100})
        df["Na"] = pd.to_datetime(["2020-01-01"])
        with self.assertRaises(InputTypeError):
            eng.classify(df, "panta")

    def test_timedelta_column(self):
        df = frame({"Si": 100})
        df["Na"] = pd.to_timedelta([5], unit="s")
        with self.assertRaises(InputTypeError):
            eng.classify(df, "kandler")

    def test_empty_record_list(self):
        with self.assertRaises(InputTypeError) as ctx:
            eng.classify([], "kandler")
        self.assertIn("empty record list", str(ctx.exception))

    def test_integer_columns(self):
        df = frame({"Si": 100}).astype(int)
        self.assertEqual(eng.classify(df, "kandler").labels, ["quartz"])

    def test_errors_share_base_class(self):
        for exc in (InputTypeError, ElementSchemaError, UnknownSchemeError, RuleConfigError):
            self.assertTrue(issubclass(exc, EdsClassificationError), msg=exc.__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Element columns
# ─────────────────────────────────────────────────────────────────────────────

class TestElementColumns(unittest.TestCase):

    def test_missing_columns_listed(self):
        df = frame({"Si": 100}).drop(columns=["Cr", "Ti"])
        with self.assertRaises(ElementSchemaError) as ctx:
            eng.classify(df, "kandler")
        self.assertEqual(ctx.exception.missing, ["Ti", "Cr"])
        self.assertEqual(ctx.exception.scheme, "kandler")
        self.assertIn("Cr", str(ctx.exception))

    def test_donarummo_needs_only_seven(self):
        df = pd.DataFrame({"Na": [0.0], "Mg": [0.0], "Al": [5.0], "Si": [100.0],
                           "K": [0.0], "Ca": [0.0], "Fe": [1.0]})
        self.assertEqual(eng.classify(df, "donarummo").labels, ["Htr"])
        with self.assertRaises(ElementSchemaError):
            eng.classify(df, "panta")

    def test_extra_columns_ignored(self):
        df = frame({"Si": 100})
        df["particle_id"] = ["p-1"]
        self.assertEqual(eng.classify(df, "kandler").labels, ["quartz"])

    def test_full_names(self):
        df = frame({"Si": 100}).rename(columns=FULL_NAMES)
        self.assertEqual(eng.classify(df, "kandler").labels, ["quartz"])

    def test_full_names_without_normalisation(self):
        df = frame({"Si": 100}).rename(columns=FULL_NAMES)
        with self.assertRaises(ElementSchemaError):
            eng.classify(df, "kandler", normalize_names=False)

    def test_two_columns_same_element(self):
        df = frame({"Fe": 100}).rename(columns={"Fe": "Iron"})
        df["iron (at%)"] = [100.0]
        with self.assertRaises(ElementSchemaError):
            eng.classify(df, "kandler")

    def test_two_exact_symbols_same_element(self):
        df = frame({"Fe": 100})
        df["FE "] = [100.0]
        with self.assertRaises(ElementSchemaError):
            eng.classify(df, "kandler")

    def test_exact_symbol_shadows_fragment(self):
        # "Environment" contains "iron"
        df = frame({"Fe": 100})
        df["Environment"] = ["urban"]
        self.assertEqual(eng.classify(df, "kandler").labels, ["Fe oxide"])

    def test_normalize_element_names(self):
        mapping = normalize_element_names(["Silicon", "AL", "aluminum (at%)", "cl", "Particle"])
        self.assertEqual(mapping, {"Silicon": "Si", "AL": "Al", "cl": "Cl"})

    def test_normalize_fragment_without_exact_symbol(self):
        mapping = normalize_element_names(["Iron", "Environment", "Silicon"])
        self.assertEqual(mapping, {"Iron": "Fe", "Environment": "Fe", "Silicon": "Si"})
        mapping = normalize_element_names(["Environment", "fe"])
        self.assertEqual(mapping, {"fe": "Fe"})


# ─────────────────────────────────────────────────────────────────────────────
# Input is never mutated; warnings and logging
# ─────────────────────────────────────────────────────────────────────────────

class TestSideEffects(unittest.TestCase):

    def test_input_not_mutated(self):
        df = frame({"Si": 100}, {"Ca": 100}).rename(columns=FULL_NAMES)
        before = df.copy()
        eng.classify(df, "kandler")
        eng.classify(df.rename(columns={v: k for k, v in FULL_NAMES.items()}), "panta")
        pd.testing.assert_frame_equal(df, before)

    def test_negative_value_warning(self):
        r = eng.classify(frame({"Si": 100, "Na": -1}), "kandler")
        self.assertTrue(any("negative" in w for w in r.warnings), msg=r.warnings)

    def test_unclassified_warning(self):
        r = eng.classify(frame({"Mg": 100}), "kandler")
        self.assertTrue(any("not classified" in w for w in r.warnings), msg=r.warnings)

    def test_clean_batch_has_no_warnings(self):
        self.assertEqual(eng.classify(frame({"Si": 100}), "kandler").warnings, [])

    def test_info_summary_logged(self):
        with self.assertLogs("eds2min_engine", level="INFO") as logs:
            eng.classify(frame({"Si": 100}, {"Mg": 100}), "kandler")
        self.assertTrue(any("kandler: classified 2 row(s), 1 unclassified" in line
                            for line in logs.output), msg=logs.output)


# ─────────────────────────────────────────────────────────────────────────────
# Rule-table validation
# ─────────────────────────────────────────────────────────────────────────────

class TestRuleValidation(unittest.TestCase):

    NAMES = list(PANTA_ELEMENTS) + ["sum"]

    def build(self, rules):
        return _FlatRuleEngine("test", rules, self.NAMES)

    def test_valid_table_sorted_by_priority(self):
        engine = self.build([
            {"id": "B", "priority": 2, "label": "b", "if": ["Si / sum > 0.5"]},
            {"id": "A", "priority": 1, "label": "a", "if": ["Ca / sum > 0.5"]},
        ])
        self.assertEqual([r.id for r in engine.rules], ["A", "B"])

    def test_duplicate_priority(self):
        with self.assertRaises(RuleConfigError):
            self.build([
                {"id": "A", "priority": 1, "label": "a", "if": ["Si / sum > 0.5"]},
                {"id": "B", "priority": 1, "label": "b", "if": ["Ca / sum > 0.5"]},
            ])

    def test_duplicate_id(self):
        with self.assertRaises(RuleConfigError):
            self.build([
                {"id": "A", "priority": 1, "label": "a", "if": ["Si / sum > 0.5"]},
                {"id": "A", "priority": 2, "label": "b", "if": ["Ca / sum > 0.5"]},
            ])

    def test_unknown_element(self):
        with self.assertRaises(RuleConfigError) as ctx:
            self.build([{"id": "A", "priority": 1, "label": "a", "if": ["Zr / sum > 0.5"]}])
        self.assertIn("'A'", str(ctx.exception))

    def test_missing_key(self):
        with self.assertRaises(RuleConfigError):
            self.build([{"id": "A", "priority": 1, "if": ["Si / sum > 0.5"]}])

    def test_empty_checks(self):
        with self.assertRaises(RuleConfigError):
            self.build([{"id": "A", "priority": 1, "label": "a", "if": []}])


# ─────────────────────────────────────────────────────────────────────────────
# DataFrame utilities and batches
# ─────────────────────────────────────────────────────────────────────────────

class TestUtilities(unittest.TestCase):

    def test_to_frame_index(self):
        df = frame({"Si": 100}, {"Ca": 100})
        df.index = ["x", "y"]
        out = eng.classify(df, "kandler").to_frame()
        self.assertEqual(list(out.index), ["x", "y"])
        self.assertEqual(out["Minerals"].tolist(), ["quartz", "Ca carbonate"])

    def test_to_dataframe(self):
        df = frame({"Si": 100})
        results = [eng.classify(df, "kandler", include_rule_trace=True),
                   eng.classify(df, "panta", include_rule_trace=True)]
        out = to_dataframe(results)
        self.assertEqual(list(out.columns), ["scheme", "Minerals", "rule_trace"])
        self.assertEqual(out["scheme"].tolist(), ["kandler", "panta"])
        self.assertEqual(out["rule_trace"].tolist(), ["QUARTZ", "QUARTZ"])

    def test_to_dataframe_single_result(self):
        out = to_dataframe(eng.classify(frame({"Si": 100}), "kandler"))
        self.assertEqual(list(out.columns), ["scheme", "Minerals"])

    def test_classify_many(self):
        tables = [frame({"Si": 100}), frame({"Ca": 100}, {"Mg": 100})]
        results = eng.classify_many(tables, "kandler")
        self.assertEqual([r.labels for r in results],
                         [["quartz"], ["Ca carbonate", "Unknown"]])


if __name__ == "__main__":
    unittest.main()
