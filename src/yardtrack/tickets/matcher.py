# src/yardtrack/tickets/matcher.py
import json, re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

# productId -> phrases seen on vendor tickets
DEFAULT_ALIASES = {
    "limestone-3/4": ["3/4 limestone", "limestone 3/4", "3/4 lime", "#57 limestone", "57 stone"],
    "limestone-base": ["limestone base", "crushed limestone base", "flex base", "road base"],
    "limestone-screenings": ["limestone screenings", "lime screenings", "screenings"],
    "masonry-sand": ["masonry sand", "masonry sand #2", "mason sand"],
    "concrete-sand": ["concrete sand", "washed sand"],
    "river-rock": ["river rock", "washed river rock", "river gravel"],
    "pea-gravel": ["pea gravel", "pea rock"],
    "quarter-minus": ["qm-1/4 minus", "1/4 minus", "quarter minus", "decomposed granite"],
    "topsoil": ["topsoil", "top soil", "screened topsoil"],
    "select-fill": ["select fill", "fill dirt", "fill"],
}

REVIEW_THRESHOLD = Decimal("0.6")


def normalize(text) -> str:
    return re.sub(r"\s+", " ", str(text or "").strip().lower())


def load_aliases(path: str | None = None) -> dict[str, list[str]]:
    if not path:
        return DEFAULT_ALIASES
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return {str(k): [str(a) for a in v] for k, v in data.items()}


@dataclass(frozen=True)
class Match:
    product_id: str | None
    confidence: float
    needs_review: bool


def containment_score(alias: str, text: str) -> float:
    if alias in text or text in alias:
        return len(alias) / max(len(alias), len(text))
    return 0.0


def word_overlap_score(alias: str, text: str) -> float:
    alias_words, words = alias.split(), text.split()
    if not alias_words or not words:
        return 0.0
    hits = sum(1 for a in alias_words if any(a in w or w in a for w in words))
    return hits / len(alias_words)


class MaterialMatcher:
    """Resolves a free-text material name to a canonical productId.

    Best score wins; equal scores go to the shorter alias, then to the
    alphabetically first productId, so results do not depend on table order.
    """

    def __init__(self, aliases: dict[str, list[str]] | None = None,
                 threshold: Decimal = REVIEW_THRESHOLD):
        self.aliases = {k: [normalize(a) for a in v] for k, v in (aliases or DEFAULT_ALIASES).items()}
        self._keys = {normalize(k): k for k in self.aliases}
        self.threshold = float(threshold)

    def match(self, material) -> Match:
        text = normalize(material)
        if not text:
            return Match(None, 0.0, True)
        if text in self._keys:
            return Match(self._keys[text], 1.0, False)

        best = None  # (-score, len(alias), productId, alias)
        for product_id, aliases in self.aliases.items():
            for alias in aliases:
                score = max(containment_score(alias, text), word_overlap_score(alias, text))
                if score <= 0:
                    continue
                key = (-score, len(alias), product_id, alias)
                if best is None or key < best:
                    best = key
        if best is None:
            return Match(None, 0.0, True)
        score, alias = round(-best[0], 4), best[3]
        # a fragment of a longer alias ("sand", "e") scores 1.0 but proves little
        fragment = text in alias and len(text) < len(alias)
        return Match(best[2], score, score < self.threshold or fragment)
