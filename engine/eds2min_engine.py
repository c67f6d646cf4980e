"""
eds2min_engine.py
=================
EDS particle chemistry → Mineral class translator

Assigns a mineral (or mineral-class) label to every row of a table of
energy-dispersive spectrometry (EDS) measurements using published,
threshold-based classification schemes:

  • Scheme A  Panta et al. (2023)      23 classes, priority-ordered rule list
  • Scheme B  Kandler et al. (2011)    40 classes, priority-ordered rule list
  • Scheme C  Donarummo et al. (2003)  16 minerals, binary/ternary decision tree

Single-file design — no external config files required.
Everything editable by the team lives in ZONE A below.

──────────────────────────────────────────────────────────────────────────────
FILE STRUCTURE
──────────────────────────────────────────────────────────────────────────────
  ZONE A  — CONFIGURATION  ← team edits here
              A1  Element Sets per Scheme
              A2  Element Name Aliases
              A3  Scheme A Rules (Panta et al. 2023)
              A4  Scheme B Rules (Kandler et al. 2011)
              A5  Scheme C Decision Tree (Donarummo et al. 2003)
              A6  Scheme Registry
              A7  Global Constants

  ZONE B  — ENGINE         ← do not edit
              ExpressionParser   (ratio expressions + range checks)
              _FlatRuleEngine    (schemes A and B)
              _DecisionTreeEngine(scheme C)
              eds2min            (main classification class)

  ZONE C  — UTILITIES
              normalize_element_names()
              to_dataframe()
              panta_classification() / kandler_classification() /
              donarummo_classification()

──────────────────────────────────────────────────────────────────────────────
RESULT FIELDS  (ClassificationResult)
──────────────────────────────────────────────────────────────────────────────
  scheme              canonical scheme name ("panta" | "kandler" | "donarummo")
  labels              list of labels, one per input row, input row order
  index               the input table's index
  rule_trace          per row: id of the rule that fired (flat schemes) or the
                      visited node path, e.g. "1>2B>3B2>4B2b" (tree); only
                      filled when include_rule_trace=True
  label_counts        {label: number of rows}
  n_rows              number of classified rows
  n_unclassified      rows left "Unknown" (flat) or given a "U-" code (tree)
  warnings            non-fatal observations about the batch

Usage
-----
    from eds2min_engine import eds2min

    eng = eds2min()
    result = eng.classify(df, "kandler")
    result.labels           # → ["quartz", "Ca carbonate", "Unknown", ...]
    result.to_frame()       # → DataFrame with a single "Minerals" column

    minerals = panta_classification(df)   # same frame, scheme A
"""

from __future__ import annotations
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
#  ZONE A — CONFIGURATION
#  ─────────────────────────────────────────────────────────────────────────────
#  This is the ONLY section the team should edit.
#  Each sub-section is clearly labelled.  Add rules as new list/dict entries.
#  Do NOT modify anything in ZONE B or ZONE C.
# ═══════════════════════════════════════════════════════════════════════════════

# ─────────────────────────────────────────────────────────────────────────────
# A1 — ELEMENT SETS PER SCHEME
# ─────────────────────────────────────────────────────────────────────────────
# Required elements must all be present as columns or the whole batch is
# rejected.  Optional elements are filled with their default when absent.
# The Elemental Sum ("sum" in rule expressions) is the row sum of the
# scheme's required elements, in the order listed here.
# ─────────────────────────────────────────────────────────────────────────────
PANTA_ELEMENTS: Tuple[str, ...] = (
    "Na", "Mg", "Al", "Si", "P", "S", "Cl", "K", "Ca", "Ti", "Cr", "Mn", "Fe",
)
PANTA_OPTIONAL: Dict[str, float] = {"F": 0.0}   # only hematite and quartz read F

KANDLER_ELEMENTS: Tuple[str, ...] = (
    "Na", "Mg", "Al", "Si", "P", "S", "Cl", "K", "Ca", "Ti", "Cr", "Mn", "Fe",
)

DONARUMMO_ELEMENTS: Tuple[str, ...] = ("Na", "Mg", "Al", "Si", "K", "Ca", "Fe")

# ─────────────────────────────────────────────────────────────────────────────
# A2 — ELEMENT NAME ALIASES
# ─────────────────────────────────────────────────────────────────────────────
# Lower-case full names (or name fragments) → canonical element symbol.
# A column whose lower-cased name CONTAINS a fragment is mapped to the symbol,
# so "Silicon", "SILICON (cps)" and "silicon_net" all become "Si".
# Columns whose name equals a symbol (any capitalisation) map directly, and
# such a symbol is no longer available to fragment matches.
# Add new spellings here as they are discovered in instrument exports.
# ─────────────────────────────────────────────────────────────────────────────
ELEMENT_NAME_ALIASES: List[Tuple[str, str]] = [
    ("aluminum",   "Al"),
    ("aluminium",  "Al"),     # British spelling
    ("silicon",    "Si"),
    ("iron",       "Fe"),
    ("sodium",     "Na"),
    ("magnesium",  "Mg"),
    ("potassium",  "K"),
    ("calcium",    "Ca"),
    ("phosphorus", "P"),
    ("sulfur",     "S"),
    ("sulphur",    "S"),      # British spelling
    ("chlorine",   "Cl"),
    ("titanium",   "Ti"),
    ("chromium",   "Cr"),
    ("manganese",  "Mn"),
    ("fluorine",   "F"),
]

# ─────────────────────────────────────────────────────────────────────────────
# A3 — SCHEME A RULES  (Panta et al. 2023, Atmos. Chem. Phys. 23, 3861-3885)
# ─────────────────────────────────────────────────────────────────────────────
# Input convention: EDS atomic percent.
#
# Ordered list of rules.  Engine evaluates in "priority" order; a rule only
# labels rows that still carry its "guard" label (default "Unknown"), so the
# FIRST matching rule wins.  Reordering rules changes results.
#
# Rule keys:
#   id        : unique string identifier
#   priority  : int — evaluation order (lower = first), unique per scheme
#   label     : class name assigned when the rule fires
#   guard     : (optional) label a row must currently carry; default "Unknown"
#   let       : (optional) named sub-expressions usable in the checks
#   if        : list of range checks (ALL must be true — AND logic)
#   doc       : explanation string
#
# Check syntax:
#   "0.5 <= Fe / sum <= 0.98999"     inclusive both sides
#   "0.7 < (K + Al + Si) / sum < 1.01"  exclusive both sides
#   "Mg / m < 0.1"                   upper bound only
#   "x >= 0.35"                      lower bound only
# Expressions use element symbols, "sum" (the Elemental Sum), numbers,
# names from "let", + - * / and parentheses.  A check fails wherever its
# expression is not finite (zero denominators, missing cells).
# ─────────────────────────────────────────────────────────────────────────────
PANTA_RULES: List[Dict[str, Any]] = [

    # ── OXIDES ───────────────────────────────────────────────────────────────
    {"id": "HEMATITE", "priority": 1, "label": "Hematite-like",
     "if": ["0.5 <= Fe / sum <= 0.98999",
            "0.0 <= Cr / (Cr + Fe) <= 0.1",
            "0.0 <= Cl / (Cl + Fe) <= 0.1",
            "0.0 <= (F + Si) / (F + sum) <= 0.499",
            "0.0 <= Ti / Fe <= 0.24999"],
     "doc": "Fe-dominated particle with little Cr, Cl, Si/F or Ti."},

    {"id": "RUTILE", "priority": 2, "label": "Rutile-like",
     "if": ["0.7 <= Ti / sum <= 1.01",
            "0.0 <= Ca / (Ca + Ti) <= 0.3"],
     "doc": "Ti-dominated particle, Ca-poor (separates titanite)."},

    {"id": "ILMENITE", "priority": 3, "label": "Ilmenite-like",
     "if": ["0.7 <= (Fe + Ti) / sum <= 1.01",
            "0.25 <= Ti / Fe <= 4"],
     "doc": "Fe + Ti dominated with comparable Fe and Ti."},

    # ── SILICA ───────────────────────────────────────────────────────────────
    {"id": "QUARTZ", "priority": 4, "label": "Quartz-like",
     "if": ["0.7 <= Si / sum <= 1.01",
            "0.0 <= (Na + Mg + K + Ca + Al) / Si <= 0.2",
            "0.0 <= F / (F + Si) <= 0.499"],
     "doc": "Si-dominated with negligible cations."},

    {"id": "COMPLEX_QUARTZ", "priority": 5, "label": "Complex quartz-like",
     "if": ["0.7 <= (Al + Si + Na + Mg + K + Ca + Fe) / sum <= 1.01",
            "0.05 <= Al / Si <= 0.25",
            "0.0 <= (Na + K + Ca) / Si <= 1.0",
            "0.0 <= Fe / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.5",
            "0.0 <= K / Si <= 0.5",
            "0.0 <= Mg / Si <= 0.5",
            "0.0 <= Na / Si <= 0.5",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Quartz with some Al and cation contamination."},

    # ── FELDSPARS ────────────────────────────────────────────────────────────
    {"id": "MICROCLINE", "priority": 6, "label": "Microcline-like",
     "if": ["0.7 <= (K + Al + Si) / sum <= 1.01",
            "0.2 <= Al / Si <= 0.45",
            "0.15 <= K / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.1",
            "0.0 <= Na / Si <= 0.1",
            "0.0 <= (Cl + 2 * S) / Na <= 0.3",
            "0.0 <= (Cl + 2 * S) / (Al + Si) <= 0.125"],
     "doc": "K-feldspar stoichiometry."},

    {"id": "ALBITE", "priority": 7, "label": "Albite-like",
     "if": ["0.7 <= (Na + Al + Si) / sum <= 1.01",
            "0.2 <= Al / Si <= 0.45",
            "0.15 <= Na / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.1",
            "0.0 <= K / Si <= 0.1",
            "0.0 <= (Cl + 2 * S) / Na <= 0.3",
            "0.0 <= (Cl + 2 * S) / (Al + Si) <= 0.125"],
     "doc": "Na-feldspar stoichiometry; Cl/S limit excludes sea-salt coating."},

    {"id": "COMPLEX_FELDSPAR", "priority": 8, "label": "Complex feldspar-like",
     "if": ["0.7 <= (Al + Si + Na + Mg + K + Ca + Fe) / sum <= 1.01",
            "0.25 <= Al / Si <= 0.5",
            "0.125 <= (Na + K + Ca) / Si <= 0.7",
            "0.0 <= Fe / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.5",
            "0.0 <= K / Si <= 0.5",
            "0.0 <= Mg / Si <= 0.5",
            "0.0 <= Na / Si <= 0.5",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Feldspar-range Al/Si with mixed alkali/alkaline-earth cations."},

    {"id": "COMPLEX_CLAY_FELDSPAR", "priority": 9, "label": "Complex Clay/Feldspar mix",
     "if": ["0.7 <= (Al + Si + Na + Mg + K + Ca + Fe) / sum <= 1.01",
            "0.25 <= Al / Si <= 0.5",
            "0.0 <= (Na + K + Ca) / Si <= 0.125",
            "0.0 <= Fe / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.5",
            "0.0 <= K / Si <= 0.5",
            "0.0 <= Mg / Si <= 0.5",
            "0.0 <= Na / Si <= 0.5",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Feldspar-range Al/Si but cation-poor."},

    # ── PHYLLOSILICATES ──────────────────────────────────────────────────────
    {"id": "MICA", "priority": 10, "label": "Mica-like",
     "if": ["0.7 <= (Ca + Na + K + Fe + Mg + Al + Si) / sum <= 1.01",
            "0.2 <= Al / Si <= 3.0",
            "0.5 <= (Na + K + Ca + Mg + Fe) / Si <= 2.5",
            "0.0 <= (Cl + 2 * S) / Na <= 0.3",
            "0.0 <= (Cl + 2 * S) / (Al + Si) <= 0.125"],
     "doc": "Cation-rich aluminosilicate."},

    {"id": "COMPLEX_CLAY", "priority": 11, "label": "Complex clay-like",
     "if": ["0.7 <= (Al + Si + Na + Mg + K + Ca + Fe) / sum <= 1.01",
            "0.5 <= Al / Si <= 1.5",
            "0.1 <= (Mg + Fe + K) / Si <= 1.0",
            "0.0 <= Fe / Si <= 0.5",
            "0.0 <= Ca / Si <= 0.5",
            "0.0 <= K / Si <= 0.5",
            "0.0 <= Mg / Si <= 0.5",
            "0.0 <= Na / Si <= 0.5",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Clay-range Al/Si with Mg/Fe/K."},

    {"id": "ILLITE", "priority": 12, "label": "Illite-like",
     "if": ["0.7 < (K + Al + Si) / sum < 1.01",
            "0.45 < Al / Si < 1.5",
            "0.0 < Mg / (Al + Si) < 0.2",
            "0.0 < Fe / (Al + Si) < 0.2",
            "0.0 < (Na + Ca) / (Al + Si) < 0.2",
            "0.1 < K / Si < 1.01",
            "0.0 < (Na + Cl + 2 * S) / (Al + Si) < 0.25"],
     "doc": "Published with strict inequalities throughout."},

    {"id": "CHLORITE", "priority": 13, "label": "Chlorite-like",
     "if": ["0.7 <= (Mg + Fe + Al + Si) / sum <= 1.01",
            "0.5 <= Al / Si <= 1.5",
            "0.2 <= Fe / (Al + Si) <= 1.01",
            "0.0 <= Ca / (Al + Si) <= 0.3",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Fe-bearing clay-range aluminosilicate."},

    {"id": "SMECTITE", "priority": 14, "label": "Smectite-like",
     "if": ["0.7 <= (Mg + Al + Si) / sum <= 1.01",
            "0.5 <= Al / Si <= 1.5",
            "0.0 <= Fe / (Al + Si) <= 0.2",
            "0.2 <= Mg / (Al + Si) <= 1.01",
            "0.0 <= Ca / (Al + Si) <= 0.2",
            "0.0 <= Na / (Al + Si) <= 0.2",
            "0.0 <= K / Si <= 0.1",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Mg-bearing clay-range aluminosilicate."},

    {"id": "KAOLINITE", "priority": 15, "label": "Kaolinite-like",
     "if": ["0.7 <= (Al + Si) / sum <= 1.01",
            "0.5 <= Al / Si <= 1.5",
            "0.0 <= Fe / (Al + Si) <= 0.2",
            "0.0 <= Mg / (Al + Si) <= 0.2",
            "0.0 <= Ca / (Al + Si) <= 0.2",
            "0.0 <= Na / (Al + Si) <= 0.15",
            "0.0 <= K / Si <= 0.1",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Nearly pure Al + Si."},

    {"id": "CA_SILICATE_MIX", "priority": 16, "label": "Ca-rich silicate/Ca-Si-mix",
     "if": ["0.7 <= (Ca + Al + Si) / sum <= 1.01",
            "0.3 <= Ca / (Al + Si) <= 3.333",
            "0.0 <= (Na + Cl + 2 * S) / (Al + Si) <= 0.25"],
     "doc": "Silicate with substantial Ca."},

    # ── CARBONATES, PHOSPHATES, SULFATES, HALIDES ────────────────────────────
    {"id": "CALCITE", "priority": 17, "label": "Calcite-like",
     "if": ["0.7 <= Ca / sum <= 1.01",
            "0.0 <= (Al + Si) / Ca <= 0.3",
            "0.0 <= Mg / Ca <= 0.3",
            "0.0 <= S / Ca <= 0.3",
            "0.0 <= Cl / Ca <= 0.3",
            "0.0 <= P / (Ca + P) <= 0.19",
            "0.0 <= S / (Ca + S) <= 0.19"],
     "doc": "Ca-dominated, little Mg, S, Cl or P."},

    {"id": "DOLOMITE", "priority": 18, "label": "Dolomite-like",
     "if": ["0.7 <= (Mg + Ca) / sum <= 1.01",
            "0.3 <= Mg / Ca <= 3.0",
            "0.0 <= S / Ca <= 0.3",
            "0.0 <= Cl / Ca <= 0.3",
            "0.0 <= (Al + Si) / Ca <= 0.3"],
     "doc": "Ca + Mg dominated."},

    {"id": "APATITE", "priority": 19, "label": "Apatite-like",
     "if": ["0.7 <= (Ca + P) / sum <= 1.01",
            "0.0 <= Mg / Ca <= 0.3",
            "0.2 <= P / (Ca + P) <= 0.8",
            "0.0 <= Cl / Ca <= 0.3",
            "0.0 <= (Al + Si) / (P + Ca) <= 0.25"],
     "doc": "Ca + P dominated."},

    {"id": "GYPSUM", "priority": 20, "label": "Gypsum-like",
     "if": ["0.7 <= (Ca + S) / sum <= 1.01",
            "0.2 <= Ca / (Ca + S) <= 0.8",
            "0.0 <= Mg / Ca <= 0.3",
            "0.0 <= Cl / Ca <= 0.3"],
     "doc": "Ca + S dominated."},

    {"id": "ALUNITE", "priority": 21, "label": "Alunite-like",
     "if": ["0.7 <= (Al + K + S) / sum <= 1.01",
            "0.0 <= Ca / (Ca + Al + K + S) <= 0.05",
            "0.0 <= Si / (Si + Al + K + S) <= 0.1",
            "0.05 <= K / (Al + K + S) <= 3.0",
            "0.15 <= S / (Al + K + S) <= 0.5",
            "0.3 <= Al / (Al + K + S) <= 0.8"],
     "doc": "K-Al sulfate."},

    {"id": "HALITE", "priority": 22, "label": "Halite-like",
     "if": ["0.7 <= (Na + Mg + Cl) / sum <= 1.01",
            "0.5 <= Cl / (Na + 0.5 * Mg) <= 2.0",
            "0.7 <= Cl / (Cl + S) <= 1.01",
            "0.0 <= S / (Na + 0.5 * Mg) <= 0.2",
            "0.0 <= K / Na <= 0.5",
            "0.0 <= Ca / Na <= 0.5",
            "0.0 <= Mg / Na <= 0.5",
            "0.0 <= (Al + Si) / (Na + Cl + S) <= 0.25"],
     "doc": "Sea-salt chloride, little sulfate."},

    {"id": "COMPLEX_SULFATE", "priority": 23, "label": "Complex sulfate-like",
     "if": ["0.7 <= (Na + Mg + K + Ca + S + Cl) / sum <= 1.01",
            "0.0 <= (Al + Si) / S <= 0.25",
            "0.0 <= Cl / (Cl + S) <= 0.3"],
     "doc": "Mixed-cation sulfate, silicate-poor."},
]

# ─────────────────────────────────────────────────────────────────────────────
# A4 — SCHEME B RULES  (Kandler et al. 2011, Tellus B 63, 475-496)
# ─────────────────────────────────────────────────────────────────────────────
# Input convention: EDS atomic percent.  Same rule keys as A3.
#
# Most classes bound the "minor" elements relative to the class-defining
# minisum, bound once per rule under "let": {"m": "..."}.
#
# Two guards are kept exactly as published and never match a row during
# a normal run:
#   NA_SULFATE  guard "Unknown " (trailing space)
#   OTHER_MG    guard "other"
# STEEL compares the absolute value Fe + Ti + Mn + Cr (not a ratio to sum)
# as published.
# ─────────────────────────────────────────────────────────────────────────────
KANDLER_RULES: List[Dict[str, Any]] = [

    # ── SULFATES AND SEA-SALT RELATED ───────────────────────────────────────
    {"id": "BIOLOGICAL", "priority": 1, "label": "biological",
     "let": {"m": "Na + S + P + Ca"},
     "if": ["0.4 <= (K + Na + S + P + Ca) / sum <= 1.1",
            "0.05 <= P / sum <= 0.8",
            "0.05 <= Na / sum <= 0.8",
            "0.05 <= Ca / sum <= 1.1",
            "0.025 <= K / sum <= 0.8",
            "0.025 <= S / sum <= 0.8",
            "Mg / m < 0.1", "Al / m < 0.05", "Si / m < 0.1", "Cl / m < 0.05",
            "Ti / m < 0.05", "Cr / m < 0.05", "Mn / m < 0.05", "Fe / m < 0.1"],
     "doc": "K-Na-S-P-Ca assemblage typical of primary biological particles."},

    {"id": "NA_RICH", "priority": 2, "label": "Na-rich",
     "if": ["0.2 <= Na / sum <= 1.1",
            "Cl / sum < 0.002499",
            "Mg / Na < 1.1", "Al / Na < 0.75", "Si / Na < 0.25", "P / Na < 0.1",
            "S / Na < 0.1", "Cl / Na < 0.05", "K / Na < 0.5", "Ca / Na < 0.5",
            "Ti / Na < 0.05", "Cr / Na < 0.05", "Mn / Na < 0.1", "Fe / Na < 0.1"],
     "doc": "Na without chloride (nitrate / carbonate salts)."},

    {"id": "AMMONIUM_SULFATE", "priority": 3, "label": "ammonium sulfate",
     "if": ["0.3 <= S / sum <= 1.1",
            "Na / S < 0.1", "Mg / S < 0.1", "Al / S < 0.2", "Si / S < 0.25",
            "P / S < 0.1", "Cl / S < 0.1", "K / S < 0.1", "Ca / S < 0.1",
            "Ti / S < 0.05", "Cr / S < 0.05", "Mn / S < 0.05", "Fe / S < 0.1"],
     "doc": "S without a detectable cation (N and H are not measured)."},

    {"id": "NA_SULFATE", "priority": 4, "label": "Na sulfate", "guard": "Unknown ",
     "let": {"m": "S + Na"},
     "if": ["0.101 <= Na / S <= 10",
            "0.1 <= (Na + S) / sum <= 1.1",
            "0.025 <= Na / sum <= 1.1",
            "0.025 <= S / sum <= 1.1",
            "Mg / m < 0.5", "Al / m < 0.1", "Si / m < 0.15", "P / m < 0.5",
            "Cl / m < 0.1", "K / m < 0.1", "Ca / m < 0.05", "Ti / m < 0.05",
            "Cr / m < 0.05", "Mn / m < 0.5", "Fe / m < 0.1"],
     "doc": "Published guard carries a trailing space."},

    {"id": "CA_NA_SULFATE", "priority": 5, "label": "Ca Na sulfate",
     "let": {"m": "S + Na + Ca"},
     "if": ["0.15 <= (Na + S + Ca) / sum <= 1.1",
            "0.025 <= Na / sum <= 1.1",
            "0.025 <= S / sum <= 1.1",
            "0.025 <= Ca / sum <= 1.1",
            "0.1 <= Na / Ca <= 10",
            "Mg / m < 0.5", "Al / m < 0.05", "Si / m < 0.05", "P / m < 0.2",
            "Cl / m < 0.1", "K / m < 0.1", "Ti / m < 0.05", "Cr / m < 0.1",
            "Mn / m < 0.5", "Fe / m < 0.1",
            "0.1001 <= Ca / (S + Na) <= 10"],
     "doc": "Mixed Ca/Na sulfate."},

    {"id": "CA_SULFATE", "priority": 6, "label": "Ca sulfate",
     "let": {"m": "S + Ca"},
     "if": ["0.2 <= Ca / S <= 10",
            "0.2 <= (Ca + S) / sum <= 1.1",
            "Na / m < 0.1", "Mg / m < 0.35", "Al / m < 0.1", "Si / m < 0.1",
            "P / m < 0.1", "Cl / m < 0.1", "K / m < 0.1", "Ti / m < 0.05",
            "Cr / m < 0.05", "Mn / m < 0.5", "Fe / m < 0.1"],
     "doc": "Gypsum / anhydrite."},

    {"id": "OTHER_SULFATE", "priority": 7, "label": "other sulfate",
     "if": ["0.2 <= S / sum <= 1.1",
            "Na / S < 2", "Mg / S < 2", "Al / S < 2.5", "Si / S < 0.25",
            "P / S < 0.2", "Cl / S < 0.2", "K / S < 10", "Ca / S < 2",
            "Ti / S < 0.5", "Cr / S < 0.5", "Mn / S < 2", "Fe / S < 2"],
     "doc": "S-rich particle not matched by a specific sulfate."},

    # ── CARBONATES AND PHOSPHATES ────────────────────────────────────────────
    {"id": "CA_CARBONATE", "priority": 8, "label": "Ca carbonate",
     "if": ["0.2 <= Ca / sum <= 1.1",
            "Na / Ca < 0.110", "Mg / Ca < 0.5", "Al / Ca < 0.151", "Si / Ca < 0.110",
            "P / Ca < 0.1", "S / Ca < 0.1", "Cl / Ca < 0.1", "K / Ca < 0.1",
            "Ti / Ca < 0.1", "Cr / Ca < 0.05", "Mn / Ca < 0.5", "Fe / Ca < 0.1"],
     "doc": "Calcite / aragonite (C and O are not evaluated)."},

    {"id": "CA_MG_CARBONATE", "priority": 9, "label": "Ca Mg carbonate",
     "let": {"m": "Ca + Mg"},
     "if": ["0.2 <= (Ca + Mg) / sum <= 1.1",
            "0.501 <= Mg / Ca <= 2.0",
            "Na / m < 0.5", "Al / m < 0.1", "Si / m < 0.2", "P / m < 0.1",
            "S / m < 0.1", "Cl / m < 0.1", "Ti / m < 0.1", "Cr / m < 0.05",
            "Fe / m < 0.1"],
     "doc": "Dolomite."},

    {"id": "PHOSPHATE", "priority": 10, "label": "phosphate",
     "let": {"m": "Ca / P"},
     "if": ["0.05 <= P / sum <= 1.1",
            "Al / m < 0.2",
            "Si / m < 0.1"],
     "doc": "Minor elements are bounded against the Ca/P ratio as published."},

    # ── CHLORIDES ────────────────────────────────────────────────────────────
    {"id": "NA_CHLORIDE", "priority": 11, "label": "Na chloride",
     "let": {"m": "Na + Cl"},
     "if": ["0.25 <= m / sum <= 1.1",
            "0.01 <= Na / sum <= 1.1",
            "0.01 <= Cl / sum <= 1.1",
            "Si / sum < 0.0499",
            "Al / sum < 0.0299",
            "Mg / m < 2", "P / m < 0.2", "S / m < 0.25", "K / m < 0.15",
            "Ti / m < 0.25", "Cr / m < 0.25", "Mn / m < 2", "Fe / m < 0.25"],
     "doc": "Fresh sea salt."},

    {"id": "K_CHLORIDE", "priority": 12, "label": "K chloride",
     "let": {"m": "K + Cl"},
     "if": ["0.3 <= m / sum <= 1.1",
            "0.01 <= Na / sum <= 1.1",
            "0.01 <= Cl / sum <= 1.1",
            "Na / m < 0.15", "Mg / m < 0.1", "Al / m < 0.2", "Si / m < 0.25",
            "P / m < 0.2", "S / m < 0.25", "Ca / m < 0.5", "Ti / m < 0.25",
            "Cr / m < 0.25", "Mn / m < 2", "Fe / m < 0.25"],
     "doc": "Sylvite; published lower bound is on Na / sum."},

    {"id": "OTHER_CHLORIDE", "priority": 13, "label": "other chloride",
     "if": ["0.25 <= Cl / sum <= 1.1",
            "Si / sum < 0.0699",
            "Al / sum < 0.0099",
            "Na / Cl < 2", "Mg / Cl < 2", "P / Cl < 0.1", "S / Cl < 0.2",
            "K / Cl < 2", "Ca / Cl < 2", "Ti / Cl < 0.1", "Cr / Cl < 0.1",
            "Mn / Cl < 2", "Fe / Cl < 10"],
     "doc": "Cl-rich particle not matched by Na or K chloride."},

    # ── OXIDES ───────────────────────────────────────────────────────────────
    {"id": "FE_OXIDE", "priority": 14, "label": "Fe oxide",
     "if": ["0.25 <= Fe / sum <= 1.1",
            "Na / Fe < 0.1", "Mg / Fe < 0.25", "Al / Fe < 0.2", "Si / Fe < 0.25",
            "P / Fe < 0.2", "S / Fe < 0.2", "Cl / Fe < 0.1", "K / Fe < 0.1",
            "Ca / Fe < 0.1", "Ti / Fe < 0.25", "Cr / Fe < 0.05", "Mn / Fe < 1.0"],
     "doc": "Hematite / goethite / magnetite."},

    {"id": "TI_OXIDE", "priority": 15, "label": "Ti oxide",
     "if": ["0.25 <= Ti / sum <= 1.1",
            "Na / Ti < 0.18", "Mg / Ti < 0.1", "Al / Ti < 0.2", "Si / Ti < 0.25",
            "P / Ti < 0.2", "S / Ti < 0.2", "Cl / Ti < 0.1", "K / Ti < 0.1",
            "Ca / Ti < 0.1", "Cr / Ti < 0.05", "Mn / Ti < 0.25", "Fe / Ti < 0.25"],
     "doc": "Rutile / anatase."},

    {"id": "FE_TI_OXIDE", "priority": 16, "label": "Fe Ti oxide",
     "let": {"m": "Ti + Fe"},
     "if": ["0.2501 <= Ti / Fe <= 4",
            "0.25 <= m / sum <= 1.1",
            "Na / m < 0.2", "Mg / m < 0.1", "Al / m < 0.2", "Si / m < 0.25",
            "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.1", "K / m < 0.1",
            "Ca / m < 0.1", "Cr / m < 0.05", "Mn / m < 0.05"],
     "doc": "Ilmenite."},

    {"id": "AL_OXIDE", "priority": 17, "label": "Al oxide",
     "if": ["0.2 <= Al / sum <= 1.1",
            "Na / Al < 0.2", "Mg / Al < 0.1", "Si / Al < 0.2499", "P / Al < 0.2",
            "S / Al < 0.2", "Cl / Al < 0.1", "K / Al < 0.1", "Ca / Al < 0.1",
            "Ti / Al < 0.1", "Fe / Al < 1.0"],
     "doc": "Corundum / gibbsite."},

    # ── SILICATES ────────────────────────────────────────────────────────────
    {"id": "QUARTZ", "priority": 18, "label": "quartz",
     "if": ["0.4 <= Si / sum <= 1.1",
            "Al / Si < 0.2", "Na / Si < 0.1", "Mg / Si < 0.1", "P / Si < 0.2",
            "S / Si < 0.2", "Cl / Si < 0.05", "K / Si < 0.1", "Ca / Si < 0.05",
            "Ti / Si < 0.1", "Cr / Si < 0.05", "Mn / Si < 0.25", "Fe / Si < 0.1"],
     "doc": "Si-dominated."},

    {"id": "SIAL", "priority": 19, "label": "SiAl",
     "let": {"m": "Si + Al"},
     "if": ["0.201 <= Al / Si <= 4",
            "0.4 <= m / sum <= 1.1",
            "0.05 <= Al / sum <= 1.1",
            "Na / m < 0.05", "Mg / m < 0.05", "P / m < 0.2", "S / m < 0.2",
            "Cl / m < 0.1", "K / m < 0.05", "Ca / m < 0.05", "Ti / m < 0.1",
            "Cr / m < 0.1", "Mn / m < 0.5", "Fe / m < 0.1"],
     "doc": "Kaolinite-type aluminosilicate."},

    {"id": "SIALK", "priority": 20, "label": "SiAlK",
     "let": {"m": "Si + Al + K"},
     "if": ["0.101 <= K / (Si + Al) <= 3",
            "0.2 <= Al / Si <= 2",
            "0.4 <= m / sum <= 1.1",
            "0.0025 <= K / sum <= 1.1",
            "Na / m < 0.05", "Mg / m < 0.08", "P / m < 0.2", "S / m < 0.1",
            "Cl / m < 0.1", "Ca / m < 0.1", "Ti / m < 0.05", "Cr / m < 0.05",
            "Mn / m < 0.05", "Fe / m < 0.05"],
     "doc": "K-feldspar / illite / muscovite."},

    {"id": "SIALNA", "priority": 21, "label": "SiAlNa",
     "let": {"m": "Si + Al + Na"},
     "if": ["0.101 <= Na / (Si + Al) <= 3",
            "0.2 <= Al / Si <= 2",
            "Ca / Na < 0.25",
            "0.4 <= m / sum <= 1.1",
            "Mg / m < 0.15", "P / m < 0.2", "S / m < 0.1", "Cl / m < 0.05",
            "K / m < 0.05", "Ca / m < 0.05", "Ti / m < 0.05", "Cr / m < 0.05",
            "Mn / m < 0.05", "Fe / m < 0.15"],
     "doc": "Albite."},

    {"id": "SIALNACA", "priority": 22, "label": "SiAlNaCa",
     "let": {"sa": "Si + Al", "m": "Si + Al + Na + Ca"},
     "if": ["0.101 <= (Ca + Na) / sa <= 3",
            "0.101 <= Ca / sa <= 3",
            "0.2 <= Al / Si <= 2",
            "0.2501 <= Ca / Na <= 5.5",
            "0.4 <= m / sum <= 1.1",
            "Mg / m < 0.1", "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.05",
            "K / m < 0.1", "Ti / m < 0.05", "Cr / m < 0.05", "Mn / m < 0.05",
            "Fe / m < 0.1"],
     "doc": "Plagioclase."},

    {"id": "SIALNAK", "priority": 23, "label": "SiAlNaK",
     "let": {"m": "Si + Al + Na + K"},
     "if": ["0.101 <= (K + Na) / (Si + Al) <= 3",
            "0.2 <= Al / Si <= 2",
            "0.25 <= K / Na <= 4",
            "0.4 <= m / sum <= 1.1",
            "0.05 <= Na / sum <= 1.1",
            "0.05 <= K / sum <= 1.1",
            "Mg / m < 0.05", "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.05",
            "Ca / m < 0.1", "Ti / m < 0.05", "Cr / m < 0.05", "Mn / m < 0.05",
            "Fe / m < 0.05"],
     "doc": "Alkali feldspar."},

    {"id": "SIALCAFEMG", "priority": 24, "label": "SiAlCaFeMg",
     "let": {"m": "Si + Al + Ca + Fe + Mg"},
     "if": ["0.101 <= (Ca + Fe + Mg) / (Si + Al) <= 3",
            "0.2 <= Al / Si <= 2",
            "0.25 <= Ca / (Fe + Mg) <= 10",
            "0.4 <= m / sum <= 1.1",
            "0.05 <= Ca / sum <= 1.1",
            "0.025 <= Fe / sum <= 1.1",
            "0.025 <= Mg / sum <= 1.1",
            "Ca / (Si + Al) < 0.5",
            "Na / m < 0.05", "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.1",
            "K / m < 0.05", "Ti / m < 0.05", "Cr / m < 0.05", "Mn / m < 0.05"],
     "doc": "Amphibole / pyroxene type."},

    {"id": "SIALKFEMG", "priority": 25, "label": "SiAlKFeMg",
     "let": {"sa": "Si + Al", "fm": "Fe + Mg", "m": "Si + Al + K + Fe + Mg"},
     "if": ["0.101 <= (K + Fe + Mg) / sa <= 3",
            "0.101 <= K / sa <= 3",
            "0.101 <= fm / sa <= 3",
            "0.25 <= K / fm <= 4",
            "0.4 <= m / sum <= 1.1",
            "Ca / sum < 0.05",
            "Na / m < 0.1", "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.1",
            "Ca / m < 0.05", "Ti / m < 0.05", "Cr / m < 0.05", "Mn / m < 0.05"],
     "doc": "Biotite."},

    {"id": "SIALFEMG", "priority": 26, "label": "SiAlFeMg",
     "let": {"sa": "Si + Al", "m": "Si + Al + Fe + Mg"},
     "if": ["0.1 <= Al / sum <= 0.8",
            "0.05 <= Fe / sum <= 0.8",
            "0.05 <= Mg / sum <= 0.8",
            "Ca / sum < 0.05",
            "0.101 <= (Mg + Fe) / sa <= 3",
            "0.201 <= Al / Si <= 2",
            "K / sa < 0.1",
            "0.05 <= m / sum <= 1.1",
            "Na / m < 0.05", "P / m < 0.2", "S / m < 0.2", "Cl / m < 0.05",
            "K / m < 0.1", "Ca / m < 0.1", "Ti / m < 0.05", "Cr / m < 0.05",
            "Mn / m < 0.05"],
     "doc": "Chlorite."},

    {"id": "SIMGFE", "priority": 27, "label": "SiMgFe",
     "let": {"m": "Si + Fe + Mg"},
     "if": ["0.201 <= Fe / (Si + Mg) <= 10",
            "0.25 <= (Mg + Fe) / Si <= 4",
            "Al / Si < 0.2",
            "0.4 <= m / sum <= 1.1",
            "Na / m < 0.1", "Al / m < 0.05", "P / m < 0.2", "S / m < 0.2",
            "Cl / m < 0.1", "K / m < 0.1", "Ca / m < 0.1", "Ti / m < 0.05",
            "Cr / m < 0.05", "Mn / m < 0.05"],
     "doc": "Olivine."},

    {"id": "SIMG", "priority": 28, "label": "SiMg",
     "let": {"m": "Si + Mg"},
     "if": ["0.25 <= Mg / Si <= 4",
            "Al / Si < 0.2",
            "0.4 <= m / sum <= 1.1",
            "Na / m < 0.1", "Al / m < 0.1", "P / m < 0.2", "S / m < 0.2",
            "Cl / m < 0.1", "K / m < 0.1", "Ca / m < 0.1", "Ti / m < 0.05",
            "Cr / m < 0.05", "Mn / m < 0.05", "Fe / m < 0.2"],
     "doc": "Talc / serpentine / enstatite."},

    {"id": "SICATI", "priority": 29, "label": "SiCaTi",
     "let": {"m": "Si + Ca + Ti"},
     "if": ["0.25 <= Ca / Ti <= 4",
            "Al / Si < 0.2",
            "0.4 <= m / sum <= 1.1",
            "0.101 <= Ca / Si <= 10",
            "0.101 <= Ti / Si <= 10",
            "Na / m < 0.1", "Mg / m < 0.1", "P / m < 0.2", "S / m < 0.2",
            "Cl / m < 0.1", "K / m < 0.1", "Cr / m < 0.05", "Mn / m < 0.05",
            "Fe / m < 0.2"],
     "doc": "Titanite."},

    # ── MIXTURES ─────────────────────────────────────────────────────────────
    {"id": "MIX_SI_S", "priority": 30, "label": "mixtures Si+S",
     "let": {"m": "Si + S"},
     "if": ["Al / sum < 0.05",
            "0.05 <= S / sum <= 0.9",
            "0.5 <= S / Si <= 3",
            "Al / Si < 0.2",
            "0.3 <= m / sum <= 1.1",
            "Na / m < 2", "Mg / m < 2", "Al / m < 0.2", "P / m < 0.2",
            "Cl / m < 0.05", "K / m < 2", "Ca / m < 2", "Ti / m < 0.2",
            "Cr / m < 0.1", "Mn / m < 0.05", "Fe / m < 0.2"],
     "doc": "Quartz internally or externally mixed with sulfate."},

    {"id": "MIX_SIAL_S", "priority": 31, "label": "mixtures SiAl+S",
     "let": {"m": "Al + Si + S"},
     "if": ["0.05 <= Al / sum <= 0.9",
            "0.1 <= Si / sum <= 0.9",
            "0.1 <= S / sum <= 0.9",
            "0.5 <= S / Si <= 10",
            "0.201 <= Al / Si <= 5",
            "0.3 <= m / sum <= 1.1",
            "Na / m < 5", "Mg / m < 5", "P / m < 0.2", "Cl / m < 0.05",
            "K / m < 5", "Ca / m < 5", "Ti / m < 0.2", "Cr / m < 0.2",
            "Mn / m < 0.2", "Fe / m < 5"],
     "doc": "Aluminosilicate mixed with sulfate."},

    {"id": "MIX_CL_S", "priority": 32, "label": "mixtures Cl+S",
     "let": {"m": "S + Cl"},
     "if": ["0.201 <= Cl / S <= 10",
            "0.2 <= m / sum <= 1.1",
            "0.025 <= Cl / sum <= 1.1",
            "0.025 <= S / sum <= 1.1",
            "0.1 <= S / (Na + Cl) <= 20",
            "Na / m < 3", "Mg / m < 3", "Al / m < 0.2", "Si / m < 0.25",
            "P / m < 0.25", "K / m < 3", "Fe / m < 2"],
     "doc": "Aged (partly sulfatised) sea salt."},

    {"id": "MIX_NACL_SIAL", "priority": 33, "label": "mixtures NaCl+SiAl",
     "if": ["0.075 <= (Si + Al) / (Na + Cl) <= 100",
            "0.201 <= Al / Si <= 100",
            "0.2 <= (Si + Na + Cl) / sum <= 1.1",
            "0.05 <= Cl / sum <= 1.1",
            "0.05 <= Na / sum <= 1.1",
            "0.025 <= Si / sum <= 1.1",
            "0.01 <= Al / sum <= 1.1"],
     "doc": "Sea salt mixed with aluminosilicate."},

    {"id": "MIX_CA_SI", "priority": 34, "label": "mixtures Ca+Si",
     "let": {"m": "Si + Ca"},
     "if": ["0.2501 <= Si / Ca <= 4",
            "Al / Si < 0.2",
            "0.2 <= m / sum <= 1.1",
            "0.01 <= Si / sum <= 1.1",
            "0.05 <= Ca / sum <= 1.1",
            "Mg / m < 0.1", "Al / m < 0.2", "P / m < 0.2", "S / m < 0.2"],
     "doc": "Quartz mixed with carbonate."},

    {"id": "MIX_CA_SIAL", "priority": 35, "label": "mixtures Ca+SiAl",
     "let": {"m": "Si + Ca"},
     "if": ["0.201 <= Al / Si <= 20",
            "0.2 <= (Ca + Si + Al) / sum <= 1.1",
            "0.01 <= Al / sum <= 1.1",
            "0.01 <= Si / sum <= 1.1",
            "0.05 <= Ca / sum <= 1.1",
            "0.1001 <= Si / Ca <= 100",
            "Na / m < 0.2", "Mg / m < 2", "P / m < 0.2", "S / m < 0.2",
            "Cl / m < 0.05", "K / m < 1"],
     "doc": "Aluminosilicate mixed with carbonate."},

    # ── CATCH-ALL ────────────────────────────────────────────────────────────
    {"id": "OTHER_SI", "priority": 36, "label": "other Si-dominated",
     "if": ["0.1 <= Si / sum <= 1.1"],
     "doc": "Residual Si-bearing particles."},

    {"id": "STEEL", "priority": 37, "label": "steel",
     "if": ["0.2 <= Fe + Ti + Mn + Cr <= 1.1",
            "0.2 <= Fe / sum <= 1.1"],
     "doc": "Published first check is an absolute sum, not a ratio."},

    {"id": "OTHER_MG", "priority": 38, "label": "other Mg-dominated", "guard": "other",
     "if": ["0.35 <= Mg / sum <= 1.1"],
     "doc": "Published guard is \"other\"."},

    {"id": "OTHER_K", "priority": 39, "label": "other K-dominated",
     "if": ["0.25 <= K / sum <= 1.1"],
     "doc": "Residual K-bearing particles."},

    {"id": "OTHER_CA", "priority": 40, "label": "other Ca-dominated",
     "if": ["0.15 <= Ca / sum <= 1.1"],
     "doc": "Residual Ca-bearing particles."},
]

# ─────────────────────────────────────────────────────────────────────────────
# A5 — SCHEME C DECISION TREE  (Donarummo et al. 2003, Geophys. Res. Lett. 30)
# ─────────────────────────────────────────────────────────────────────────────
# Input convention: EDS net peak intensities.
#
# Each node computes ONE ratio and routes the row through the first branch
# whose "when" check holds for r.  A branch either continues ("goto") or
# ends with a mineral code ("label").  When no branch holds (including a
# non-finite r from a zero denominator) the row receives the node's
# "unresolved" code.
#
# Leaf codes:
#   Htr  hectorite        Aug  augite          Hbl  hornblende
#   Chl  chlorite         Ms   muscovite       Kln  kaolinite
#   An   anorthite        Mnt  montmorillonite Ab   albite
#   Olig/Ans  oligoclase / andesine            Lab/Byt  labradorite / bytownite
#   Vrm  vermiculite      Bt   biotite         Afs  alkali feldspar
#   Ilt  illite           Ilt/Sme  illite / smectite
#   U-*  unidentified (published codes, or "U-<node>" where no branch holds)
# ─────────────────────────────────────────────────────────────────────────────
DONARUMMO_ROOT = "1"

DONARUMMO_TREE: Dict[str, Dict[str, Any]] = {
    "1": {"ratio": "Al / Si", "unresolved": "U-1",
          "branches": [{"when": "r < 0.1",        "goto": "2A"},
                       {"when": "r >= 0.7",       "goto": "2C"},
                       {"when": "0.1 <= r < 0.7", "goto": "2B"}]},

    # ── Al-poor silicates ────────────────────────────────────────────────────
    "2A": {"ratio": "Fe / Si", "unresolved": "U-2A",
           "branches": [{"when": "r >= 0.02", "goto": "3A"},
                        {"when": "r < 0.02",  "label": "Htr"}]},
    "3A": {"ratio": "K / Al", "unresolved": "U-3A",
           "branches": [{"when": "r < 0.3",          "label": "Aug"},
                        {"when": "r > 0.49",         "label": "Hbl"},
                        {"when": "0.3 <= r <= 0.49", "label": "U-A"}]},

    # ── Al-rich silicates ────────────────────────────────────────────────────
    "2C": {"ratio": "(Mg + Fe) / Si", "unresolved": "U-2C",
           "branches": [{"when": "r >= 0.9",       "label": "Chl"},
                        {"when": "r < 0.3",        "goto": "3C"},
                        {"when": "0.3 <= r < 0.9", "label": "U-E"}]},
    "3C": {"ratio": "K / Si", "unresolved": "U-3C",
           "branches": [{"when": "r >= 0.1", "label": "Ms"},
                        {"when": "r < 0.1",  "goto": "4C"}]},
    "4C": {"ratio": "Ca / Si", "unresolved": "U-4C",
           "branches": [{"when": "r < 0.05",         "label": "Kln"},
                        {"when": "r >= 0.25",        "label": "An"},
                        {"when": "0.05 <= r < 0.25", "label": "U-F"}]},

    # ── intermediate Al/Si: feldspars, smectites, micas ──────────────────────
    "2B": {"ratio": "K / (K + Na + Ca)", "unresolved": "U-2B",
           "branches": [{"when": "r < 0.35",  "goto": "3B1"},
                        {"when": "r >= 0.35", "goto": "3B2"}]},
    "3B1": {"ratio": "(Mg + Fe) / Al", "unresolved": "U-3B1",
            "branches": [{"when": "r < 0.3",          "goto": "4B1a"},
                         {"when": "r >= 1.0",         "label": "U-C1"},
                         {"when": "0.5 < r < 1.0",    "label": "U-B1"},
                         {"when": "0.3 <= r <= 0.5",  "label": "Mnt"}]},
    "4B1a": {"ratio": "(Ca + Na) / Al", "unresolved": "U-4B1a",
             "branches": [{"when": "r >= 0.23", "goto": "5B1a"},
                          {"when": "r < 0.23",  "label": "U-B2"}]},
    "5B1a": {"ratio": "Ca / Na", "unresolved": "U-5B1a",
             "branches": [{"when": "r < 0.2",       "label": "Ab"},
                          {"when": "r >= 10",       "label": "U-B3"},
                          {"when": "0.2 <= r < 1",  "label": "Olig/Ans"},
                          {"when": "1 <= r < 10",   "label": "Lab/Byt"}]},
    "3B2": {"ratio": "(Mg + Fe) / Al", "unresolved": "U-3B2",
            "branches": [{"when": "r < 0.55",  "goto": "4B2a"},
                         {"when": "r >= 0.55", "goto": "4B2b"}]},
    "4B2b": {"ratio": "K / Al", "unresolved": "U-4B2b",
             "branches": [{"when": "r <= 0.1",     "label": "U-C2"},
                          {"when": "r > 2",        "label": "Vrm"},
                          {"when": "0.1 < r < 1",  "label": "U-D5"},
                          {"when": "1 <= r <= 2",  "label": "Bt"}]},
    "4B2a": {"ratio": "K / Al", "unresolved": "U-4B2a",
             "branches": [{"when": "r >= 0.7", "goto": "5B2a1"},
                          {"when": "r < 0.7",  "goto": "5B2a2"}]},
    "5B2a1": {"ratio": "Al / Si", "unresolved": "U-5B2a1",
              "branches": [{"when": "r < 0.25",          "label": "U-D2"},
                           {"when": "0.25 <= r <= 0.35", "label": "Afs"},
                           {"when": "0.35 < r < 0.7",    "label": "U-D1"}]},
    "5B2a2": {"ratio": "K / (Al + Si)", "unresolved": "U-5B2a2",
              "branches": [{"when": "r <= 0.05",        "label": "U-D4"},
                           {"when": "r > 0.25",         "label": "U-D3"},
                           {"when": "0.05 < r <= 0.1",  "label": "Ilt/Sme"},
                           {"when": "0.1 < r <= 0.25",  "label": "Ilt"}]},
}

# ─────────────────────────────────────────────────────────────────────────────
# A6 — SCHEME REGISTRY
# ─────────────────────────────────────────────────────────────────────────────
# Canonical name → scheme definition.  "key" is the single-letter alias
# accepted by eds2min.classify(); names and keys are case-insensitive.
# ─────────────────────────────────────────────────────────────────────────────
SCHEMES: Dict[str, Dict[str, Any]] = {
    "panta": {
        "key":       "A",
        "reference": "Panta et al. (2023), Atmos. Chem. Phys. 23, 3861-3885",
        "units":     "atomic percent",
        "kind":      "flat",
        "elements":  PANTA_ELEMENTS,
        "optional":  PANTA_OPTIONAL,
        "rules":     PANTA_RULES,
    },
    "kandler": {
        "key":       "B",
        "reference": "Kandler et al. (2011), Tellus B 63(4), 475-496",
        "units":     "atomic percent",
        "kind":      "flat",
        "elements":  KANDLER_ELEMENTS,
        "optional":  {},
        "rules":     KANDLER_RULES,
    },
    "donarummo": {
        "key":       "C",
        "reference": "Donarummo et al. (2003), Geophys. Res. Lett. 30(6), 1269",
        "units":     "net intensity",
        "kind":      "tree",
        "elements":  DONARUMMO_ELEMENTS,
        "optional":  {},
        "root":      DONARUMMO_ROOT,
        "tree":      DONARUMMO_TREE,
    },
}

# ─────────────────────────────────────────────────────────────────────────────
# A7 — GLOBAL CONSTANTS
# ─────────────────────────────────────────────────────────────────────────────
UNKNOWN_LABEL: str = "Unknown"          # initial / fallback label, flat schemes
UNRESOLVED_PREFIX: str = "U-"           # tree codes that name no mineral
OUTPUT_COLUMN: str = "Minerals"         # column name of ClassificationResult.to_frame()
SUM_TOKEN: str = "sum"                  # Elemental Sum in rule expressions
MAX_TREE_DEPTH: int = 5                 # longest root-to-leaf path in scheme C
TRACE_SEPARATOR: str = ">"              # joins visited node ids in the rule trace


# ═══════════════════════════════════════════════════════════════════════════════
#  ZONE B — ENGINE
#  ─────────────────────────────────────────────────────────────────────────────
#  Do not edit unless extending the engine architecture itself.
# ═══════════════════════════════════════════════════════════════════════════════

# ── Errors ───────────────────────────────────────────────────────────────────

class EdsClassificationError(Exception):
    """Base class for every error raised by the classification engine."""


class InputTypeError(EdsClassificationError, TypeError):
    """Input is not tabular, or an element column does not hold numbers."""


class ElementSchemaError(EdsClassificationError, ValueError):
    """Required element columns are missing, or two columns name the same element."""

    def __init__(self, scheme: str, missing: Sequence[str] = (), message: Optional[str] = None) -> None:
        self.scheme = scheme
        self.missing = list(missing)
        if message is None:
            message = (f"Scheme '{scheme}' requires element column(s) missing from "
                       f"the input: {', '.join(self.missing)}")
        super().__init__(message)


class UnknownSchemeError(EdsClassificationError, ValueError):
    """Scheme name or key is not registered in SCHEMES."""


class RuleConfigError(EdsClassificationError, ValueError):
    """A rule table or decision tree in ZONE A is malformed."""


# ── Expressions ──────────────────────────────────────────────────────────────

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<num>\d+\.\d*|\.\d+|\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op><=|>=|[-+*/()<>]))"
)
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_BINARY_UFUNCS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.true_divide,
}
_COMPARATORS = ("<", "<=", ">", ">=")
_FLIPPED = {"<": ">", "<=": ">=", ">": "<", ">=": "<="}


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    text = text.rstrip()
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            bad = text[pos:].lstrip()[:1]
            raise RuleConfigError(f"Unexpected character {bad!r} in {text!r}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


def _compile(node: Tuple[Any, ...]) -> Callable[[Mapping[str, Any]], Any]:
    """Turn a parsed expression tree into a function of the column mapping."""
    kind = node[0]
    if kind == "num":
        value = node[1]
        return lambda cols: value
    if kind == "var":
        name = node[1]
        return lambda cols: cols[name]
    if kind == "neg":
        inner = _compile(node[1])
        return lambda cols: np.negative(inner(cols))
    ufunc = _BINARY_UFUNCS[node[1]]
    left, right = _compile(node[2]), _compile(node[3])
    return lambda cols: ufunc(left(cols), right(cols))


def _names_in(node: Tuple[Any, ...]) -> List[str]:
    kind = node[0]
    if kind == "num":
        return []
    if kind == "var":
        return [node[1]]
    if kind == "neg":
        return _names_in(node[1])
    return _names_in(node[2]) + _names_in(node[3])


class Expression:
    """A compiled arithmetic expression over element columns."""

    def __init__(self, source: str, tree: Tuple[Any, ...]) -> None:
        self.source = source
        self.tree = tree
        self._fn = _compile(tree)

    @property
    def names(self) -> List[str]:
        return sorted(set(_names_in(self.tree)))

    def evaluate(self, columns: Mapping[str, np.ndarray], n: int) -> np.ndarray:
        # IEEE-754 semantics: x/0 → ±inf, 0/0 → nan; inf may cancel later (a / inf → 0)
        with np.errstate(all="ignore"):
            values = self._fn(columns)
        return np.broadcast_to(np.asarray(values, dtype=float), (n,))

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


@dataclass
class Check:
    """Range test on one expression.  None bounds are open."""
    source:       str
    expression:   Expression
    lo:           Optional[float] = None
    hi:           Optional[float] = None
    lo_inclusive: bool = True
    hi_inclusive: bool = True

    def holds(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=float)
        with np.errstate(invalid="ignore"):
            ok = np.isfinite(values)
            if self.lo is not None:
                ok &= (values >= self.lo) if self.lo_inclusive else (values > self.lo)
            if self.hi is not None:
                ok &= (values <= self.hi) if self.hi_inclusive else (values < self.hi)
        return ok

    def test(self, columns: Mapping[str, np.ndarray], n: int) -> np.ndarray:
        return self.holds(self.expression.evaluate(columns, n))


class _Cursor:
    def __init__(self, tokens: List[Tuple[str, str]], text: str) -> None:
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def done(self) -> bool:
        return self.pos >= len(self.tokens)

    def peek_op(self) -> Optional[str]:
        if self.done():
            return None
        kind, value = self.tokens[self.pos]
        return value if kind == "op" else None

    def take(self) -> Tuple[str, str]:
        if self.done():
            raise RuleConfigError(f"Unexpected end of expression in {self.text!r}")
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def expect(self, value: str) -> None:
        kind, got = self.take()
        if kind != "op" or got != value:
            raise RuleConfigError(f"Expected {value!r} but found {got!r} in {self.text!r}")


class ExpressionParser:
    """
    Parses the expression strings used in ZONE A.

    Grammar (usual precedence, left associative):
        expr   := term (("+" | "-") term)*
        term   := factor (("*" | "/") factor)*
        factor := NUMBER | NAME | "(" expr ")" | "-" factor
        check  := expr CMP expr [CMP expr]      CMP ∈ { <, <=, >, >= }

    A check compares one expression against numeric bounds, e.g.
    "0.2 <= Al / Si < 0.7" or "Mg / m < 0.1".  Names must be one of the
    names given at construction or a name bound through parse_lets().
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._names = frozenset(names)

    # ── Public API ─────────────────────────────────────────────────────────

    def parse_lets(self, lets: Mapping[str, str]) -> Dict[str, Tuple[Any, ...]]:
        """Parse named sub-expressions in order; later ones may use earlier ones."""
        bound: Dict[str, Tuple[Any, ...]] = {}
        for name, text in lets.items():
            if not _NAME_RE.fullmatch(name):
                raise RuleConfigError(f"Invalid let-name {name!r}")
            if name in self._names:
                raise RuleConfigError(f"let-name {name!r} shadows an element or {SUM_TOKEN!r}")
            bound[name] = self._parse_tokens(_tokenize(text), text, bound)
        return bound

    def parse_expression(self, text: str,
                         lets: Optional[Mapping[str, Tuple[Any, ...]]] = None) -> Expression:
        return Expression(text, self._parse_tokens(_tokenize(text), text, lets or {}))

    def parse_check(self, text: str,
                    lets: Optional[Mapping[str, Tuple[Any, ...]]] = None) -> Check:
        lets = lets or {}
        segments: List[List[Tuple[str, str]]] = [[]]
        ops: List[str] = []
        depth = 0
        for kind, value in _tokenize(text):
            if kind == "op" and value == "(":
                depth += 1
            elif kind == "op" and value == ")":
                depth -= 1
            if kind == "op" and value in _COMPARATORS and depth == 0:
                ops.append(value)
                segments.append([])
            else:
                segments[-1].append((kind, value))

        if len(ops) not in (1, 2):
            raise RuleConfigError(f"Check {text!r} needs one or two comparisons, found {len(ops)}")
        trees = [self._parse_tokens(seg, text, lets) for seg in segments]

        if len(ops) == 1:
            (left, right), op = trees, ops[0]
            left_src, right_src = segments
            if left[0] == "num" and right[0] != "num":
                left, right, op = right, left, _FLIPPED[op]
                left_src = right_src
            if left[0] == "num" or right[0] != "num":
                raise RuleConfigError(f"Check {text!r} must compare one expression with a number")
            expr = Expression(_join(left_src), left)
            if op in ("<", "<="):
                return Check(text, expr, hi=right[1], hi_inclusive=(op == "<="))
            return Check(text, expr, lo=right[1], lo_inclusive=(op == ">="))

        low, mid, high = trees
        if low[0] != "num" or high[0] != "num" or mid[0] == "num":
            raise RuleConfigError(f"Check {text!r} must read 'number CMP expression CMP number'")
        if all(op in ("<", "<=") for op in ops):
            lo, hi = low[1], high[1]
            lo_inc, hi_inc = ops[0] == "<=", ops[1] == "<="
        elif all(op in (">", ">=") for op in ops):
            lo, hi = high[1], low[1]
            lo_inc, hi_inc = ops[1] == ">=", ops[0] == ">="
        else:
            raise RuleConfigError(f"Check {text!r} mixes '<' and '>' comparisons")
        if lo > hi:
            raise RuleConfigError(f"Check {text!r} has an empty range [{lo}, {hi}]")
        return Check(text, Expression(_join(segments[1]), mid),
                     lo=lo, hi=hi, lo_inclusive=lo_inc, hi_inclusive=hi_inc)

    # ── Recursive descent ──────────────────────────────────────────────────

    def _parse_tokens(self, tokens: List[Tuple[str, str]], text: str,
                      lets: Mapping[str, Tuple[Any, ...]]) -> Tuple[Any, ...]:
        if not tokens:
            raise RuleConfigError(f"Empty expression in {text!r}")
        cur = _Cursor(tokens, text)
        tree = self._expr(cur, lets)
        if not cur.done():
            raise RuleConfigError(f"Unexpected token {cur.take()[1]!r} in {text!r}")
        return tree

    def _expr(self, cur: _Cursor, lets: Mapping[str, Tuple[Any, ...]]) -> Tuple[Any, ...]:
        node = self._term(cur, lets)
        while cur.peek_op() in ("+", "-"):
            op = cur.take()[1]
            node = ("bin", op, node, self._term(cur, lets))
        return node

    def _term(self, cur: _Cursor, lets: Mapping[str, Tuple[Any, ...]]) -> Tuple[Any, ...]:
        node = self._factor(cur, lets)
        while cur.peek_op() in ("*", "/"):
            op = cur.take()[1]
            node = ("bin", op, node, self._factor(cur, lets))
        return node

    def _factor(self, cur: _Cursor, lets: Mapping[str, Tuple[Any, ...]]) -> Tuple[Any, ...]:
        kind, value = cur.take()
        if kind == "num":
            return ("num", float(value))
        if kind == "name":
            if value in lets:
                return lets[value]
            if value in self._names:
                return ("var", value)
            raise RuleConfigError(f"Unknown name {value!r} in {cur.text!r}")
        if value == "(":
            node = self._expr(cur, lets)
            cur.expect(")")
            return node
        if value == "-":
            inner = self._factor(cur, lets)
            if inner[0] == "num":
                return ("num", -inner[1])
            return ("neg", inner)
        raise RuleConfigError(f"Unexpected token {value!r} in {cur.text!r}")


def _join(tokens: List[Tuple[str, str]]) -> str:
    return " ".join(value for _, value in tokens).replace("( ", "(").replace(" )", ")")


# ── Flat rule lists (schemes A and B) ────────────────────────────────────────

@dataclass
class CompiledRule:
    id:       str
    priority: int
    label:    str
    guard:    str
    checks:   List[Check]
    doc:      str = ""

    def matches(self, columns: Mapping[str, np.ndarray], n: int,
                candidates: Optional[np.ndarray] = None) -> np.ndarray:
        """Rows for which every check holds, restricted to ``candidates``."""
        mask = np.ones(n, dtype=bool) if candidates is None else candidates.copy()
        for check in self.checks:
            if not mask.any():
                break
            mask &= check.test(columns, n)
        return mask


class _FlatRuleEngine:
    """Applies a priority-ordered rule list; the first rule to fire on a row wins."""

    def __init__(self, scheme: str, rules: Sequence[Dict[str, Any]], names: Iterable[str]) -> None:
        self.scheme = scheme
        self.rules = self._compile_rules(rules, ExpressionParser(names))

    def _compile_rules(self, rules: Sequence[Dict[str, Any]],
                       parser: ExpressionParser) -> List[CompiledRule]:
        compiled: List[CompiledRule] = []
        seen_ids: set = set()
        seen_priorities: set = set()
        for raw in rules:
            rule_id = raw.get("id", "?")
            try:
                priority = int(raw["priority"])
                label = raw["label"]
                conditions = raw["if"]
            except KeyError as exc:
                raise RuleConfigError(
                    f"{self.scheme}: rule {rule_id!r} lacks key {exc.args[0]!r}") from exc
            if rule_id in seen_ids:
                raise RuleConfigError(f"{self.scheme}: duplicate rule id {rule_id!r}")
            if priority in seen_priorities:
                raise RuleConfigError(f"{self.scheme}: duplicate priority {priority} ({rule_id!r})")
            if not conditions:
                raise RuleConfigError(f"{self.scheme}: rule {rule_id!r} has no checks")
            seen_ids.add(rule_id)
            seen_priorities.add(priority)
            try:
                lets = parser.parse_lets(raw.get("let", {}))
                checks = [parser.parse_check(text, lets) for text in conditions]
            except RuleConfigError as exc:
                raise RuleConfigError(f"{self.scheme}: rule {rule_id!r}: {exc}") from exc
            compiled.append(CompiledRule(
                id=rule_id, priority=priority, label=label,
                guard=raw.get("guard", UNKNOWN_LABEL), checks=checks,
                doc=raw.get("doc", "")))
        compiled.sort(key=lambda r: r.priority)
        return compiled

    def apply(self, columns: Mapping[str, np.ndarray], n: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return (labels, id of the rule that fired or None) per row."""
        labels = np.full(n, UNKNOWN_LABEL, dtype=object)
        fired = np.full(n, None, dtype=object)
        for rule in self.rules:
            candidates = labels == rule.guard
            if not candidates.any():
                logger.debug("%s %s: no candidate rows", self.scheme, rule.id)
                continue
            hits = rule.matches(columns, n, candidates)
            n_hits = int(hits.sum())
            logger.debug("%s %s (%s): %d of %d candidate row(s) matched",
                         self.scheme, rule.id, rule.label, n_hits, int(candidates.sum()))
            if n_hits:
                labels = np.where(hits, rule.label, labels)
                fired = np.where(hits, rule.id, fired)
        return labels, fired

    def matching(self, columns: Mapping[str, np.ndarray], n: int) -> List[List[str]]:
        """Ids of every rule whose checks hold on each row, guards ignored."""
        out: List[List[str]] = [[] for _ in range(n)]
        for rule in self.rules:
            for row in np.flatnonzero(rule.matches(columns, n)):
                out[row].append(rule.id)
        return out

    def vocabulary(self) -> List[str]:
        labels: List[str] = []
        for rule in self.rules:
            if rule.label not in labels:
                labels.append(rule.label)
        labels.append(UNKNOWN_LABEL)
        return labels


# ── Decision tree (scheme C) ─────────────────────────────────────────────────

@dataclass
class _Branch:
    check: Check
    goto:  Optional[str] = None
    label: Optional[str] = None


@dataclass
class DecisionNode:
    id:         str
    ratio:      Expression
    branches:   List[_Branch]
    unresolved: str


class _DecisionTreeEngine:
    """
    Routes every row from the root to a leaf code.

    Rows are processed level by level: all rows sitting at the same node are
    evaluated together, so one level costs one vectorised ratio per node.
    The tree is validated at construction: every "goto" target exists, each
    node has exactly one parent (no sharing, no cycles), every node is
    reachable and no path is longer than max_depth.
    """

    def __init__(self, scheme: str, tree: Mapping[str, Dict[str, Any]], root: str,
                 names: Iterable[str], max_depth: int = MAX_TREE_DEPTH) -> None:
        self.scheme = scheme
        self.max_depth = max_depth
        parser = ExpressionParser(names)
        self.nodes: Dict[str, DecisionNode] = {
            node_id: self._compile_node(node_id, spec, parser) for node_id, spec in tree.items()
        }
        if root not in self.nodes:
            raise RuleConfigError(f"{scheme}: root node {root!r} is not defined")
        self.root = root
        self.depth = self._validate()

    def _compile_node(self, node_id: str, spec: Dict[str, Any],
                      parser: ExpressionParser) -> DecisionNode:
        branch_parser = ExpressionParser(["r"])
        try:
            ratio = parser.parse_expression(spec["ratio"])
            branches: List[_Branch] = []
            for raw in spec["branches"]:
                if ("goto" in raw) == ("label" in raw):
                    raise RuleConfigError("each branch needs exactly one of 'goto' or 'label'")
                branches.append(_Branch(branch_parser.parse_check(raw["when"]),
                                        goto=raw.get("goto"), label=raw.get("label")))
        except KeyError as exc:
            raise RuleConfigError(
                f"{self.scheme}: node {node_id!r} lacks key {exc.args[0]!r}") from exc
        except RuleConfigError as exc:
            raise RuleConfigError(f"{self.scheme}: node {node_id!r}: {exc}") from exc
        if not branches:
            raise RuleConfigError(f"{self.scheme}: node {node_id!r} has no branches")
        return DecisionNode(node_id, ratio, branches,
                            spec.get("unresolved", f"{UNRESOLVED_PREFIX}{node_id}"))

    def _validate(self) -> int:
        seen = {self.root}
        stack = [(self.root, 1)]
        depth = 0
        while stack:
            node_id, level = stack.pop()
            depth = max(depth, level)
            for branch in self.nodes[node_id].branches:
                if branch.goto is None:
                    continue
                if branch.goto not in self.nodes:
                    raise RuleConfigError(
                        f"{self.scheme}: node {node_id!r} points at unknown node {branch.goto!r}")
                if branch.goto in seen:
                    raise RuleConfigError(
                        f"{self.scheme}: node {branch.goto!r} is reached twice (shared or cyclic)")
                seen.add(branch.goto)
                stack.append((branch.goto, level + 1))
        unreachable = sorted(set(self.nodes) - seen)
        if unreachable:
            raise RuleConfigError(f"{self.scheme}: unreachable node(s) {', '.join(unreachable)}")
        if depth > self.max_depth:
            raise RuleConfigError(
                f"{self.scheme}: tree depth {depth} exceeds the limit of {self.max_depth}")
        return depth

    def apply(self, columns: Mapping[str, np.ndarray], n: int,
              trace: bool = False) -> Tuple[np.ndarray, Optional[List[str]]]:
        labels = np.full(n, None, dtype=object)
        pointer = np.full(n, self.root, dtype=object)
        paths: Optional[List[List[str]]] = [[] for _ in range(n)] if trace else None
        active = np.arange(n)

        for level in range(1, self.max_depth + 1):
            if active.size == 0:
                break
            advanced: List[np.ndarray] = []
            for node_id in sorted(set(pointer[active])):
                rows = active[pointer[active] == node_id]
                node = self.nodes[node_id]
                sub = {name: values[rows] for name, values in columns.items()}
                ratio = {"r": node.ratio.evaluate(sub, rows.size)}
                open_rows = np.ones(rows.size, dtype=bool)
                for branch in node.branches:
                    hit = open_rows & branch.check.test(ratio, rows.size)
                    if not hit.any():
                        continue
                    open_rows &= ~hit
                    if branch.goto is None:
                        labels[rows[hit]] = branch.label
                    else:
                        pointer[rows[hit]] = branch.goto
                        advanced.append(rows[hit])
                labels[rows[open_rows]] = node.unresolved
                if paths is not None:
                    for row in rows:
                        paths[row].append(node_id)
                logger.debug("%s level %d node %s (%s): %d row(s), %d unresolved",
                             self.scheme, level, node_id, node.ratio.source,
                             rows.size, int(open_rows.sum()))
            active = np.concatenate(advanced) if advanced else np.empty(0, dtype=int)

        if active.size:
            raise RuleConfigError(f"{self.scheme}: rows still routing after {self.max_depth} levels")
        return labels, ([TRACE_SEPARATOR.join(p) for p in paths] if paths is not None else None)

    def vocabulary(self) -> List[str]:
        labels: List[str] = []
        unresolved: List[str] = []
        stack = [self.root]
        while stack:
            node = self.nodes[stack.pop(0)]
            for branch in node.branches:
                if branch.goto is not None:
                    stack.append(branch.goto)
                elif branch.label not in labels:
                    labels.append(branch.label)
            unresolved.append(node.unresolved)
        return labels + [code for code in unresolved if code not in labels]


# ── Results ──────────────────────────────────────────────────────────────────

@dataclass
class ClassificationResult:
    """One classified batch.  Labels follow the input row order."""
    scheme:          str
    labels:          List[str]
    index:           Any                          # pandas Index of the input table
    label_counts:    Dict[str, int]
    n_rows:          int
    n_unclassified:  int
    warnings:        List[str] = field(default_factory=list)
    rule_trace:      Optional[List[Optional[str]]] = None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({OUTPUT_COLUMN: pd.Series(self.labels, index=self.index, dtype=object)})


@dataclass
class _Scheme:
    name:      str
    key:       str
    reference: str
    units:     str
    kind:      str
    elements:  Tuple[str, ...]
    optional:  Dict[str, float]
    engine:    Any


def _as_frame(table: Any) -> pd.DataFrame:
    if isinstance(table, pd.DataFrame):
        return table
    if isinstance(table, (list, tuple)) and len(table) == 0:
        raise InputTypeError("Got an empty record list; pass an empty DataFrame with the "
                             "element columns to classify zero rows")
    is_records = (isinstance(table, (list, tuple)) and len(table) > 0
                  and all(isinstance(row, Mapping) for row in table))
    if isinstance(table, Mapping) or is_records:
        try:
            return pd.DataFrame(table)
        except (ValueError, TypeError) as exc:
            raise InputTypeError(f"Could not build a table from the input: {exc}") from exc
    raise InputTypeError(
        f"Expected a pandas DataFrame, a mapping of columns or a list of row dicts, "
        f"got {type(table).__name__}")


def _numeric_column(series: pd.Series, column: Any, symbol: str) -> np.ndarray:
    # to_numeric would turn these into nanosecond counts
    if pd.api.types.is_datetime64_any_dtype(series.dtype) or pd.api.types.is_timedelta64_dtype(series.dtype):
        raise InputTypeError(f"Column {column!r} ({symbol}) holds {series.dtype} values, expected numbers")
    if not pd.api.types.is_bool_dtype(series.dtype) and not pd.api.types.is_numeric_dtype(series.dtype):
        try:
            series = pd.to_numeric(series, errors="raise")
        except (ValueError, TypeError) as exc:
            raise InputTypeError(f"Column {column!r} ({symbol}) holds non-numeric values") from exc
    if pd.api.types.is_bool_dtype(series.dtype):
        raise InputTypeError(f"Column {column!r} ({symbol}) is boolean, expected numbers")
    return series.to_numpy(dtype=float, na_value=np.nan)


class eds2min:
    """
    Main classification engine.

    Usage:
        eng = eds2min()
        result = eng.classify(df, "panta")       # or "A", "kandler", "B", ...
        result.labels          # → ["Quartz-like", "Unknown", ...]
        result.label_counts    # → {"Quartz-like": 1, "Unknown": 1}
        result.to_frame()      # → DataFrame with a "Minerals" column

    All rule tables are compiled and validated once, in the constructor;
    a malformed table raises RuleConfigError here rather than mid-batch.
    """

    def __init__(self) -> None:
        self._schemes: Dict[str, _Scheme] = {}
        self._aliases: Dict[str, str] = {}
        for name, spec in SCHEMES.items():
            self._schemes[name] = self._build_scheme(name, spec)
            self._aliases[name.lower()] = name
            self._aliases[spec["key"].lower()] = name

    @staticmethod
    def _build_scheme(name: str, spec: Dict[str, Any]) -> _Scheme:
        optional = dict(spec.get("optional", {}))
        names = list(spec["elements"]) + list(optional) + [SUM_TOKEN]
        if spec["kind"] == "flat":
            engine: Any = _FlatRuleEngine(name, spec["rules"], names)
        elif spec["kind"] == "tree":
            engine = _DecisionTreeEngine(name, spec["tree"], spec["root"], names)
        else:
            raise RuleConfigError(f"Scheme {name!r} has unknown kind {spec['kind']!r}")
        return _Scheme(name=name, key=spec["key"], reference=spec.get("reference", ""),
                       units=spec.get("units", ""), kind=spec["kind"],
                       elements=tuple(spec["elements"]), optional=optional, engine=engine)

    # ── Public API ─────────────────────────────────────────────────────────

    def schemes(self) -> List[str]:
        return list(self._schemes)

    def scheme_info(self, scheme: str) -> Dict[str, Any]:
        s = self._resolve(scheme)
        return {"name": s.name, "key": s.key, "reference": s.reference, "units": s.units,
                "kind": s.kind, "elements": list(s.elements), "optional": dict(s.optional)}

    def vocabulary(self, scheme: str) -> List[str]:
        return self._resolve(scheme).engine.vocabulary()

    def classify(
        self,
        table: Any,
        scheme: str,
        *,
        normalize_names: bool = True,
        include_rule_trace: bool = False,
    ) -> ClassificationResult:
        s = self._resolve(scheme)
        columns, index, warnings_list = self._prepare(table, s, normalize_names)
        n = len(index)

        if s.kind == "flat":
            raw_labels, fired = s.engine.apply(columns, n)
            trace = list(fired) if include_rule_trace else None
        else:
            raw_labels, trace = s.engine.apply(columns, n, trace=include_rule_trace)
        labels = [str(label) for label in raw_labels]

        n_unclassified = sum(1 for label in labels if self._is_unclassified(s, label))
        if n_unclassified:
            warnings_list.append(
                f"{n_unclassified} of {n} row(s) not classified by scheme '{s.name}'.")
        logger.info("%s: classified %d row(s), %d unclassified", s.name, n, n_unclassified)

        return ClassificationResult(
            scheme=s.name,
            labels=labels,
            index=index,
            label_counts=dict(Counter(labels)),
            n_rows=n,
            n_unclassified=n_unclassified,
            warnings=warnings_list,
            rule_trace=trace,
        )

    def classify_many(self, tables: Sequence[Any], scheme: str, **kwargs) -> List[ClassificationResult]:
        return [self.classify(t, scheme, **kwargs) for t in tables]

    def matching_rules(self, table: Any, scheme: str, *,
                       normalize_names: bool = True) -> List[List[str]]:
        """
        For each row, the ids of ALL rules whose checks hold, in priority
        order, ignoring guards.  The first id is the rule classify() reports
        unless an earlier rule's guard excluded the row.  Flat schemes only.
        """
        s = self._resolve(scheme)
        if s.kind != "flat":
            raise UnknownSchemeError(f"Scheme '{s.name}' is a decision tree, not a rule list")
        columns, index, _ = self._prepare(table, s, normalize_names)
        return s.engine.matching(columns, len(index))

    # ── Internals ──────────────────────────────────────────────────────────

    def _resolve(self, scheme: Any) -> _Scheme:
        if isinstance(scheme, str):
            name = self._aliases.get(scheme.strip().lower())
            if name is not None:
                return self._schemes[name]
        known = ", ".join(f"{n} ({s.key})" for n, s in self._schemes.items())
        raise UnknownSchemeError(f"Unknown scheme {scheme!r}; expected one of {known}")

    @staticmethod
    def _is_unclassified(s: _Scheme, label: str) -> bool:
        if s.kind == "flat":
            return label == UNKNOWN_LABEL
        return label.startswith(UNRESOLVED_PREFIX)

    @staticmethod
    def _locate_columns(columns: Iterable[Any], s: _Scheme, normalize_names: bool) -> Dict[str, Any]:
        wanted = set(s.elements) | set(s.optional)
        if normalize_names:
            mapping = normalize_element_names(columns)
        else:
            mapping = {col: col for col in columns if col in wanted}
        located: Dict[str, Any] = {}
        for col, symbol in mapping.items():
            if symbol not in wanted:
                continue
            if symbol in located:
                raise ElementSchemaError(
                    s.name, message=f"Columns {located[symbol]!r} and {col!r} both "
                                    f"resolve to element {symbol!r}")
            located[symbol] = col
        return located

    def _prepare(self, table: Any, s: _Scheme,
                 normalize_names: bool) -> Tuple[Dict[str, np.ndarray], Any, List[str]]:
        frame = _as_frame(table)
        located = self._locate_columns(frame.columns, s, normalize_names)
        missing = [el for el in s.elements if el not in located]
        if missing:
            raise ElementSchemaError(s.name, missing)

        n = len(frame)
        columns: Dict[str, np.ndarray] = {}
        for symbol, col in located.items():
            series = frame[col]
            if isinstance(series, pd.DataFrame):
                raise ElementSchemaError(
                    s.name, message=f"Column {col!r} appears more than once in the input")
            columns[symbol] = _numeric_column(series, col, symbol)
        for symbol, default in s.optional.items():
            if symbol not in columns:
                columns[symbol] = np.full(n, float(default))

        block = np.column_stack([columns[el] for el in s.elements]) if s.elements else np.empty((n, 0))
        columns[SUM_TOKEN] = block.sum(axis=1)

        warnings_list: List[str] = []
        used = np.column_stack([columns[el] for el in list(s.elements) + list(s.optional)])
        with np.errstate(invalid="ignore"):
            n_negative = int((used < 0).any(axis=1).sum())
        n_missing = int(np.isnan(used).any(axis=1).sum())
        n_zero_sum = int((columns[SUM_TOKEN] == 0).sum())
        if n_negative:
            warnings_list.append(f"{n_negative} row(s) contain negative element values.")
        if n_missing:
            warnings_list.append(f"{n_missing} row(s) contain missing values; "
                                 f"checks involving them fail.")
        if n_zero_sum:
            warnings_list.append(f"{n_zero_sum} row(s) have an Elemental Sum of zero.")
        for w in warnings_list:
            logger.debug("%s: %s", s.name, w)
        return columns, frame.index, warnings_list


# Descriptive class alias
MineralClassifier = eds2min


# ═══════════════════════════════════════════════════════════════════════════════
#  ZONE C — UTILITIES
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_element_names(columns: Iterable[Any]) -> Dict[Any, str]:
    """
    Map column labels to element symbols using ELEMENT_NAME_ALIASES.

    A label equal to a symbol (any capitalisation, surrounding blanks
    ignored) maps to that symbol; otherwise the first alias fragment found
    in the lower-cased label decides.  A symbol already claimed by an exact
    match is not handed out again by fragment, so a "Fe" column keeps an
    "Environment" column out of the mapping.  Unrecognised columns are left
    out.  The input is not modified; rename with ``df.rename(columns=mapping)``.

        normalize_element_names(["Silicon", "AL", "Particle"])
        # → {"Silicon": "Si", "AL": "Al"}
    """
    symbols = {symbol.lower(): symbol for _, symbol in ELEMENT_NAME_ALIASES}
    columns = list(columns)
    mapping: Dict[Any, str] = {}
    for col in columns:
        lowered = str(col).strip().lower()
        if lowered in symbols:
            mapping[col] = symbols[lowered]
    claimed = set(mapping.values())
    for col in columns:
        if col in mapping:
            continue
        lowered = str(col).strip().lower()
        for fragment, symbol in ELEMENT_NAME_ALIASES:
            if fragment in lowered:
                if symbol not in claimed:
                    mapping[col] = symbol
                break
    return mapping


def to_dataframe(results: Union[ClassificationResult, Sequence[ClassificationResult]]) -> pd.DataFrame:
    """Stack ClassificationResult objects into one DataFrame with a "scheme" column."""
    if isinstance(results, ClassificationResult):
        results = [results]
    frames = []
    for r in results:
        frame = r.to_frame()
        frame.insert(0, "scheme", r.scheme)
        if r.rule_trace is not None:
            frame["rule_trace"] = r.rule_trace
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=["scheme", OUTPUT_COLUMN])
    return pd.concat(frames)


_DEFAULT_ENGINE: Optional[eds2min] = None


def _default_engine() -> eds2min:
    global _DEFAULT_ENGINE
    if _DEFAULT_ENGINE is None:
        _DEFAULT_ENGINE = eds2min()
    return _DEFAULT_ENGINE


def panta_classification(df: Any) -> pd.DataFrame:
    """Scheme A (atomic percent) → one-column "Minerals" frame on the input index."""
    return _default_engine().classify(df, "panta").to_frame()


def kandler_classification(df: Any) -> pd.DataFrame:
    """Scheme B (atomic percent) → one-column "Minerals" frame on the input index."""
    return _default_engine().classify(df, "kandler").to_frame()


def donarummo_classification(df: Any) -> pd.DataFrame:
    """Scheme C (net intensities) → one-column "Minerals" frame on the input index."""
    return _default_engine().classify(df, "donarummo").to_frame()


# ─────────────────────────────────────────────────────────────────────────────
# Quick smoke-test (run: python eds2min_engine.py)
# ─────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    ELEMENTS = ["Na", "Mg", "Al", "Si", "P", "S", "Cl", "K", "Ca", "Ti", "Cr", "Mn", "Fe"]
    SAMPLES = {
        "hematite":  {"Fe": 90, "Al": 10},
        "rutile":    {"Ti": 80, "Ca": 4, "Al": 16},
        "quartz":    {"Si": 95, "P": 5},
        "calcite":   {"Ca": 100},
        "sea salt":  {"Na": 50, "Cl": 50},
        "feldspar":  {"K": 15, "Al": 25, "Si": 60, "Na": 2},
        "pure P":    {"P": 100},
        "empty":     {},
    }
    df = pd.DataFrame([{el: float(v.get(el, 0.0)) for el in ELEMENTS} for v in SAMPLES.values()],
                      index=list(SAMPLES))

    eng = eds2min()
    panta = eng.classify(df, "panta", include_rule_trace=True)
    kandler = eng.classify(df, "kandler", include_rule_trace=True)
    print(f"{'sample':<10} {'Panta':<26} {'Kandler':<20}")
    print("-" * 58)
    for name, a, b in zip(df.index, panta.labels, kandler.labels):
        print(f"{name:<10} {a:<26} {b:<20}")
    for w in panta.warnings + kandler.warnings:
        print(f"  ⚠  {w}")

    TREE_SAMPLES = {
        "hectorite": {"Si": 100, "Al": 5, "Fe": 1},
        "albite":    {"Si": 100, "Al": 40, "Na": 20, "Ca": 2, "Mg": 2, "Fe": 2},
        "U-C2":      {"Si": 100, "Al": 50, "K": 2.5, "Na": 2.5, "Mg": 15, "Fe": 15},
    }
    tree_df = pd.DataFrame([{el: float(v.get(el, 0.0)) for el in DONARUMMO_ELEMENTS}
                            for v in TREE_SAMPLES.values()], index=list(TREE_SAMPLES))
    donarummo = eng.classify(tree_df, "donarummo", include_rule_trace=True)
    print()
    print(f"{'sample':<10} {'Donarummo':<10} path")
    print("-" * 40)
    for name, label, path in zip(tree_df.index, donarummo.labels, donarummo.rule_trace):
        print(f"{name:<10} {label:<10} {path}")
