"""
test_donarummo_tree.py
======================
Unit tests for scheme C (Donarummo et al. 2003) decision tree.
Covers every named leaf, published unidentified codes, node paths,
non-finite ratios and tree validation.
"""

import sys
import os
import unittest

import pandas as pd

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "engine"))
from eds2min_engine import (
    eds2min, donarummo_classification, DONARUMMO_ELEMENTS, DONARUMMO_TREE,
    MAX_TREE_DEPTH, RuleConfigError, _DecisionTreeEngine,
)

eng = eds2min()

NAMES = list(DONARUMMO_ELEMENTS) + ["sum"]


def frame(*rows):
    cols = list(DONARUMMO_ELEMENTS)
    return pd.DataFrame([{c: float(r.get(c, 0.0)) for c in cols} for r in rows], columns=cols)


def classify(**values):
    r = eng.classify(frame(values), "donarummo", include_rule_trace=True)
    return r.labels[0], r.rule_trace[0]


def label(**values):
    return classify(**values)[0]


# ─────────────────────────────────────────────────────────────────────────────
# Al-poor branch (Al / Si < 0.1)
# ─────────────────────────────────────────────────────────────────────────────

class TestAlPoor(unittest.TestCase):

    def test_hectorite(self):
        self.assertEqual(classify(Si=100, Al=5, Fe=1), ("Htr", "1>2A"))

    def test_augite(self):
        self.assertEqual(label(Si=100, Al=5, Fe=10, K=1), "Aug")

    def test_hornblende(self):
        self.assertEqual(label(Si=100, Al=5, Fe=10, K=3), "Hbl")

    def test_unidentified_a(self):
        self.assertEqual(label(Si=100, Al=5, Fe=10, K=2), "U-A")


# ─────────────────────────────────────────────────────────────────────────────
# Al-rich branch (Al / Si >= 0.7)
# ─────────────────────────────────────────────────────────────────────────────

class TestAlRich(unittest.TestCase):

    def test_chlorite(self):
        self.assertEqual(label(Si=100, Al=80, Mg=50, Fe=50), "Chl")

    def test_unidentified_e(self):
        self.assertEqual(label(Si=100, Al=80, Mg=25, Fe=25), "U-E")

    def test_muscovite(self):
        self.assertEqual(label(Si=100, Al=80, Mg=5, Fe=5, K=20), "Ms")

    def test_kaolinite(self):
        self.assertEqual(classify(Si=100, Al=90, Fe=2, K=1, Ca=1), ("Kln", "1>2C>3C>4C"))

    def test_anorthite(self):
        self.assertEqual(label(Si=100, Al=90, Ca=30, K=1), "An")

    def test_unidentified_f(self):
        self.assertEqual(label(Si=100, Al=90, Ca=10, K=1), "U-F")


# ─────────────────────────────────────────────────────────────────────────────
# Intermediate branch, K-poor (K / (K + Na + Ca) < 0.35)
# ─────────────────────────────────────────────────────────────────────────────

class TestIntermediateKPoor(unittest.TestCase):

    def test_montmorillonite(self):
        self.assertEqual(label(Si=100, Al=40, Mg=8, Fe=8, Na=5, Ca=5, K=1), "Mnt")

    def test_unidentified_b1(self):
        self.assertEqual(label(Si=100, Al=40, Mg=15, Fe=15, Na=5, Ca=5, K=1), "U-B1")

    def test_unidentified_c1(self):
        self.assertEqual(label(Si=100, Al=40, Mg=25, Fe=25, Na=5, Ca=5, K=1), "U-C1")

    def test_unidentified_b2(self):
        self.assertEqual(label(Si=100, Al=40, Mg=2, Fe=2, Na=2, Ca=2), "U-B2")

    def test_albite_longest_path(self):
        lab, path = classify(Si=100, Al=40, Na=20, Ca=2, Mg=2, Fe=2)
        self.assertEqual(lab, "Ab")
        self.assertEqual(path, "1>2B>3B1>4B1a>5B1a")
        self.assertEqual(len(path.split(">")), MAX_TREE_DEPTH)

    def test_oligoclase_andesine(self):
        self.assertEqual(label(Si=100, Al=40, Na=10, Ca=5, Mg=2, Fe=2), "Olig/Ans")

    def test_labradorite_bytownite(self):
        self.assertEqual(label(Si=100, Al=40, Na=4, Ca=12, Mg=2, Fe=2), "Lab/Byt")

    def test_unidentified_b3(self):
        self.assertEqual(label(Si=100, Al=40, Na=1, Ca=15, Mg=2, Fe=2), "U-B3")


# ─────────────────────────────────────────────────────────────────────────────
# Intermediate branch, K-rich (K / (K + Na + Ca) >= 0.35)
# ─────────────────────────────────────────────────────────────────────────────

class TestIntermediateKRich(unittest.TestCase):

    def test_unidentified_c2(self):
        lab, path = classify(Si=100, Al=50, K=2.5, Na=2.5, Ca=0, Mg=15, Fe=15)
        self.assertEqual(lab, "U-C2")
        self.assertEqual(path, "1>2B>3B2>4B2b")

    def test_vermiculite(self):
        self.assertEqual(label(Si=100, Al=20, K=50, Mg=10, Fe=10), "Vrm")

    def test_unidentified_d5(self):
        self.assertEqual(label(Si=100, Al=40, K=20, Mg=15, Fe=15), "U-D5")

    def test_biotite(self):
        self.assertEqual(label(Si=100, Al=40, K=60, Mg=20, Fe=20), "Bt")

    def test_alkali_feldspar(self):
        self.assertEqual(label(Si=100, Al=30, K=25, Mg=1, Fe=1), "Afs")

    def test_unidentified_d2(self):
        self.assertEqual(label(Si=100, Al=20, K=15, Mg=1, Fe=1), "U-D2")

    def test_unidentified_d1(self):
        self.assertEqual(label(Si=100, Al=50, K=40, Mg=1, Fe=1), "U-D1")

    def test_illite(self):
        self.assertEqual(label(Si=100, Al=60, K=24), "Ilt")

    def test_illite_smectite(self):
        self.assertEqual(label(Si=100, Al=60, K=12), "Ilt/Sme")

    def test_unidentified_d4(self):
        self.assertEqual(label(Si=100, Al=60, K=6), "U-D4")

    def test_unidentified_d3(self):
        self.assertEqual(label(Si=100, Al=60, K=41), "U-D3")


# ─────────────────────────────────────────────────────────────────────────────
# Non-finite ratios resolve to the node's unresolved code
# ─────────────────────────────────────────────────────────────────────────────

class TestNonFinite(unittest.TestCase):

    def test_no_silicon(self):
        self.assertEqual(classify(Al=5, Fe=1), ("U-1", "1"))

    def test_all_zero(self):
        self.assertEqual(label(), "U-1")

    def test_no_alkali(self):
        # K / (K + Na + Ca) = 0/0 at node 2B
        self.assertEqual(label(Si=100, Al=40, Mg=2, Fe=2), "U-2B")

    def test_unresolved_counted(self):
        r = eng.classify(frame({"Si": 100, "Al": 5, "Fe": 1}, {}), "C")
        self.assertEqual(r.n_unclassified, 1)
        self.assertEqual(r.label_counts, {"Htr": 1, "U-1": 1})


# ─────────────────────────────────────────────────────────────────────────────
# Vocabulary, validation, entry point
# ─────────────────────────────────────────────────────────────────────────────

class TestTreeStructure(unittest.TestCase):

    def test_vocabulary(self):
        vocab = eng.vocabulary("donarummo")
        for code in ("Htr", "Aug", "Hbl", "Chl", "Ms", "Kln", "An", "Mnt", "Ab",
                     "Olig/Ans", "Lab/Byt", "Vrm", "Bt", "Afs", "Ilt", "Ilt/Sme"):
            self.assertIn(code, vocab, msg=code)
        self.assertIn("U-C2", vocab)
        self.assertIn("U-5B2a1", vocab)
        self.assertEqual(len(vocab), len(set(vocab)))

    def test_shared_node_rejected(self):
        tree = dict(DONARUMMO_TREE)
        tree["2A"] = {"ratio": "Fe / Si",
                      "branches": [{"when": "r >= 0.02", "goto": "3A"},
                                   {"when": "r < 0.02", "goto": "2B"}]}
        with self.assertRaises(RuleConfigError):
            _DecisionTreeEngine("test", tree, "1", NAMES)

    def test_unknown_goto_rejected(self):
        tree = {"1": {"ratio": "Al / Si", "branches": [{"when": "r < 1", "goto": "9"}]}}
        with self.assertRaises(RuleConfigError):
            _DecisionTreeEngine("test", tree, "1", NAMES)

    def test_depth_limit(self):
        tree = {
            "1": {"ratio": "Al / Si", "branches": [{"when": "r < 1", "goto": "2"}]},
            "2": {"ratio": "Al / Si", "branches": [{"when": "r < 1", "label": "X"}]},
        }
        with self.assertRaises(RuleConfigError):
            _DecisionTreeEngine("test", tree, "1", NAMES, max_depth=1)
        self.assertEqual(_DecisionTreeEngine("test", tree, "1", NAMES).depth, 2)

    def test_default_unresolved_code(self):
        tree = {"root": {"ratio": "Al / Si", "branches": [{"when": "r < 1", "label": "X"}]}}
        engine = _DecisionTreeEngine("test", tree, "root", NAMES)
        self.assertEqual(engine.vocabulary(), ["X", "U-root"])

    def test_donarummo_classification_frame(self):
        df = frame({"Si": 100, "Al": 5, "Fe": 1}, {"Si": 100, "Al": 60, "K": 24})
        df.index = [10, 20]
        out = donarummo_classification(df)
        self.assertEqual(out.loc[20, "Minerals"], "Ilt")
        self.assertEqual(list(out.index), [10, 20])


if __name__ == "__main__":
    unittest.main()
