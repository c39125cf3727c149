"""Normalisation et similarité des noms de commerces (Levenshtein)."""
import re
import unicodedata
from functools import lru_cache
from typing import Iterable, Optional

import Levenshtein as lev

from discovery.config import settings

_APOSTROPHES = re.compile(r"['’`]")
_PUNCTUATION = re.compile(r"[^\w\s]|_")


class NameSimilarity:
    """Compare des noms de commerces après normalisation."""

    def __init__(self, noise_words: Optional[Iterable[str]] = None):
        words = settings.NAME_NOISE_WORDS if noise_words is None else noise_words
        self.noise_words = frozenset(w.casefold() for w in words)

    @lru_cache(maxsize=4096)
    def normalize(self, name: str) -> str:
        """
        Case-fold, strip accents and punctuation, collapse whitespace.

        Legal-form words (inc, llc...) are dropped unless nothing else is
        left. "Tony's Pizza, Inc." becomes "tonys pizza".
        """
        if not name:
            return ""
        folded = unicodedata.normalize("NFKD", name.casefold())
        folded = "".join(c for c in folded if not unicodedata.combining(c))
        folded = _APOSTROPHES.sub("", folded)
        folded = _PUNCTUATION.sub(" ", folded)

        tokens = folded.split()
        kept = [t for t in tokens if t not in self.noise_words]
        return " ".join(kept or tokens)

    @lru_cache(maxsize=4096)
    def similarity(self, name1: str, name2: str) -> float:
        """
        Similarité dans [0, 1] entre deux noms bruts.

        Best of three views of the normalized names: as-is, tokens sorted
        (word order ignored) and spaces removed ("mc donalds" ~ "mcdonalds").
        """
        a = self.normalize(name1 or "")
        b = self.normalize(name2 or "")
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0

        sorted_a = " ".join(sorted(a.split()))
        sorted_b = " ".join(sorted(b.split()))
        return max(
            lev.ratio(a, b),
            lev.ratio(sorted_a, sorted_b),
            lev.ratio(a.replace(" ", ""), b.replace(" ", "")),
        )


# Instance globale réutilisable
name_similarity = NameSimilarity()
