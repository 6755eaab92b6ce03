"""Pairwise name comparison for alias grouping.

Scores how plausibly one surface form names the same entity as another,
using normalization, fuzzy matching and phonetic comparison.

Pipeline:
1. Normalize: strip accents, lowercase, '&' -> 'and', drop punctuation
2. Human name decomposition: nameparser.HumanName for persons
3. Business suffix strip: cleanco.basename() for organizations
4. Fuzzy score: rapidfuzz.fuzz.token_sort_ratio (handles word reordering)
5. Phonetic check: jellyfish.soundex per word as a secondary signal
6. Short-form check: a person alias that is the canonical's surname or
   "initial + surname" ("Epstein", "J. Epstein" for "Jeffrey Epstein")
7. Composite score: fuzzy(0.70) + phonetic(0.15) + exact(0.15), with
   short forms floored at the probable threshold

Thresholds:
- >= 0.95 = confirmed
- >= 0.80 = probable
- >= 0.60 = possible
- <  0.60 = unresolved

The normalization helpers are shared with the cross-reference matcher,
so both sides of a match are normalized the same way.
"""

from __future__ import annotations

import re
import string
import unicodedata
from dataclasses import dataclass

import jellyfish
from cleanco import basename as cleanco_basename
from nameparser import HumanName
from rapidfuzz import fuzz


@dataclass
class MatchResult:
    """Result of comparing two surface forms.

    Attributes
    ----------
    score : float
        Composite score between 0.0 and 1.0.
    name_similarity : float
        Raw fuzzy similarity from rapidfuzz (0.0-1.0).
    phonetic_match : bool
        Whether the soundex codes of the two names match.
    short_form : bool
        Whether one name is a surname-only or initialed form of the other.
    normalized_a : str
        Normalized version of the first name.
    normalized_b : str
        Normalized version of the second name.
    match_type : str
        Classification: 'exact', 'fuzzy', 'short_form', 'phonetic', or 'weak'.
    """

    score: float
    name_similarity: float
    phonetic_match: bool
    short_form: bool
    normalized_a: str
    normalized_b: str
    match_type: str

    def describe(self) -> str:
        """One-line explanation suitable for an alias decision's reasoning."""
        signals = [f"similarity {self.name_similarity:.2f}"]
        if self.phonetic_match:
            signals.append("soundex match")
        if self.short_form:
            signals.append("short form of full name")
        return (
            f"{self.match_type} match ({score_to_confidence(self.score)}, "
            f"score {self.score:.2f}): " + ", ".join(signals)
        )


# -- Thresholds ---------------------------------------------------------------

THRESHOLD_CONFIRMED = 0.95
THRESHOLD_PROBABLE = 0.80
THRESHOLD_POSSIBLE = 0.60

# -- Weights ------------------------------------------------------------------

WEIGHT_FUZZY = 0.70
WEIGHT_PHONETIC_BONUS = 0.15
WEIGHT_EXACT_BONUS = 0.15

_PUNCT_TABLE = str.maketrans({ch: " " for ch in string.punctuation})


def strip_accents(text: str) -> str:
    """Remove combining marks after NFKD decomposition ('Müller' -> 'Muller')."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(name: str) -> str:
    """Accent-strip, lowercase, '&' -> 'and', punctuation to spaces, collapse whitespace."""
    name = strip_accents(name).lower()
    name = name.replace("&", " and ")
    name = name.translate(_PUNCT_TABLE)
    return re.sub(r"\s+", " ", name).strip()


def strip_business_suffix(name: str) -> str:
    """Remove legal suffixes (LLC, Inc, Corp, Ltd, AG, ...) using cleanco."""
    stripped = cleanco_basename(name).strip()
    # a name that is only a suffix stays as is
    return stripped if stripped else name


def decompose_human_name(name: str) -> str:
    """Reorder a person name to 'first middle last'.

    'SMITH, JOHN' -> 'john smith'; titles and suffixes (Dr, Jr) are dropped.
    Runs on the raw input since nameparser relies on the comma.
    """
    parsed = HumanName(name)
    parts = [p for p in (parsed.first, parsed.middle, parsed.last) if p]
    return " ".join(parts) if parts else name


def normalize_name(name: str, entity_type: str = "unknown") -> str:
    """Type-aware normalization used on both sides of every comparison."""
    if not name or not name.strip():
        return ""
    if entity_type == "person":
        return normalize_text(decompose_human_name(name))
    normalized = normalize_text(name)
    if entity_type in ("organization", "unknown"):
        normalized = normalize_text(strip_business_suffix(normalized))
    return normalized


def _fuzzy_score(name_a: str, name_b: str) -> float:
    return fuzz.token_sort_ratio(name_a, name_b) / 100.0


def _phonetic_match(name_a: str, name_b: str) -> bool:
    """Soundex comparison of each sorted word pair, or of the whole strings."""
    words_a = sorted(name_a.split())
    words_b = sorted(name_b.split())
    if not words_a or not words_b:
        return False
    if len(words_a) != len(words_b):
        return jellyfish.soundex(name_a) == jellyfish.soundex(name_b)
    return all(
        jellyfish.soundex(wa) == jellyfish.soundex(wb)
        for wa, wb in zip(words_a, words_b)
    )


def _is_short_form(short: str, full: str) -> bool:
    """True if ``short`` is the surname of ``full``, optionally with a first initial."""
    short_words = short.split()
    full_words = full.split()
    if len(full_words) < 2 or not short_words or len(short_words) >= len(full_words):
        return False
    if short_words[-1] != full_words[-1]:
        return False
    if len(short_words) == 1:
        return True
    # "j epstein", "j e epstein" against "jeffrey e epstein"
    leading = short_words[:-1]
    return all(len(w) == 1 for w in leading) and leading[0] == full_words[0][0]


def _classify_match(score: float, exact: bool, short_form: bool, phonetic: bool) -> str:
    if exact:
        return "exact"
    if score >= THRESHOLD_CONFIRMED:
        return "fuzzy"
    if short_form:
        return "short_form"
    if phonetic and score >= THRESHOLD_POSSIBLE:
        return "phonetic"
    if score >= THRESHOLD_PROBABLE:
        return "fuzzy"
    return "weak"


def compare_names(
    name_a: str,
    name_b: str,
    entity_type: str = "unknown",
) -> MatchResult:
    """Compare two surface forms and return a MatchResult.

    Parameters
    ----------
    name_a : str
        First name (typically the alias).
    name_b : str
        Second name (typically the canonical name).
    entity_type : str
        Entity type of both names; drives the normalization.

    Returns
    -------
    MatchResult
        Composite comparison result with score, classification, and details.
    """
    norm_a = normalize_name(name_a, entity_type)
    norm_b = normalize_name(name_b, entity_type)
    if not norm_a or not norm_b:
        return MatchResult(
            score=0.0,
            name_similarity=0.0,
            phonetic_match=False,
            short_form=False,
            normalized_a=norm_a,
            normalized_b=norm_b,
            match_type="weak",
        )

    fuzzy = _fuzzy_score(norm_a, norm_b)
    phonetic = _phonetic_match(norm_a, norm_b)
    exact = norm_a == norm_b
    short_form = entity_type == "person" and (
        _is_short_form(norm_a, norm_b) or _is_short_form(norm_b, norm_a)
    )

    composite = fuzzy * WEIGHT_FUZZY
    if phonetic:
        composite += WEIGHT_PHONETIC_BONUS
    if exact:
        composite += WEIGHT_EXACT_BONUS
    if short_form:
        composite = max(composite, THRESHOLD_PROBABLE)
    composite = max(0.0, min(1.0, composite))

    return MatchResult(
        score=composite,
        name_similarity=fuzzy,
        phonetic_match=phonetic,
        short_form=short_form,
        normalized_a=norm_a,
        normalized_b=norm_b,
        match_type=_classify_match(composite, exact, short_form, phonetic),
    )


def score_to_confidence(score: float) -> str:
    """Convert a numeric score to a confidence tier string.

    Returns
    -------
    str
        One of: 'confirmed', 'probable', 'possible', 'unresolved'.
    """
    if score >= THRESHOLD_CONFIRMED:
        return "confirmed"
    if score >= THRESHOLD_PROBABLE:
        return "probable"
    if score >= THRESHOLD_POSSIBLE:
        return "possible"
    return "unresolved"
