# backend/tier_hints.py
"""
Decide which price tier a bare {{price_per_applicant}} refers to.

Templates usually read "For 2 applicants- {{price_per_applicant}}", so the
text just before the token says which band is meant. Rules are tried most
specific band first; a template whose wording no rule recognises falls back
to handing out the configured (non-zero) tiers in ascending order.

Rules are data: pass a different list to TierMatcher to support new phrasing
or another language without touching the resolver.
"""
import re
import logging
from collections import Counter
from dataclasses import dataclass

from config import TIER_CONTEXT_WINDOW
from pricing import TIER_KEYS, as_number

logger = logging.getLogger(__name__)

_APPLICANTS_HE = r"(?:מבקשים|פונים|אנשים)"
_APPLICANT_HE = r"(?:מבקש|פונה)"
_DASH = r"\s*(?:[-–—]|to|עד)\s*"
_PRICE_TOKEN = re.compile(r"\{\{\s*price_[^{}]*\}\}", re.IGNORECASE)


@dataclass(frozen=True)
class TierRule:
    tier_key: str
    patterns: tuple

    def matches(self, context: str) -> bool:
        return any(p.search(context) for p in self.patterns)


def _rule(tier_key, *patterns):
    return TierRule(tier_key, tuple(re.compile(p, re.IGNORECASE) for p in patterns))


def _range_rule(tier_key, low, high):
    return _rule(
        tier_key,
        rf"(?<![\d.]){low}{_DASH}{high}\s*applicants?\b",
        rf"(?<![\d.]){low}{_DASH}{high}\s*{_APPLICANTS_HE}",
        rf"(?:בין\s*)?(?<![\d.]){low}\s*(?:ל|עד|[-–—])\s*-?\s*{high}\s*{_APPLICANTS_HE}",
    )


# Ordered: first match wins, so wider/open bands are checked before the
# single counts they contain ("10-15 applicants" also contains "15 applicants").
DEFAULT_TIER_RULES = (
    _rule(
        "16+",
        r"(?<![\d.])16\s*(?:\+|or\s+more|and\s+(?:more|above|up))",
        r"(?<![\d.])16\s+applicants?\s+(?:or\s+more|and\s+(?:more|above|up))",
        r"more\s+than\s+15\s+applicants",
        rf"(?<![\d.])16\s*{_APPLICANTS_HE}?\s*(?:ומעלה|או\s*יותר|\+)",
    ),
    _range_rule("10-15", 10, 15),
    _range_rule("8-9", 8, 9),
    _range_rule("4-7", 4, 7),
    _rule(
        "3",
        r"(?<![\d.\-–])\b(?:3|three)\s+applicants\b",
        rf"(?<![\d.\-–])(?:3|שלושה)\s*{_APPLICANTS_HE}",
    ),
    _rule(
        "2",
        r"(?<![\d.\-–])\b(?:2|two)\s+applicants\b",
        rf"(?<![\d.\-–])(?:2|שני|שניים)\s*{_APPLICANTS_HE}",
    ),
    _rule(
        "1",
        r"\b(?:one|a\s+single|single)\s+applicant\b(?!s)",
        r"(?<![\d.\-–])\b1\s+applicant\b(?!s)",
        rf"{_APPLICANT_HE}\s*(?:אחד|אחת|יחיד)",
        rf"(?<![\d.\-–])1\s*{_APPLICANT_HE}(?!ים)",
    ),
)


def context_before(flat_text: str, position: int, window: int = TIER_CONTEXT_WINDOW) -> str:
    """
    Up to `window` characters of document text ending at `position`.

    The window is cut after the previous price placeholder, so the label
    that belonged to an earlier price line is not read again. Other
    placeholders ({{currency}}, fields) inside the label are kept.
    """
    start = max(0, position - window)
    context = flat_text[start:position]
    last = None
    for last in _PRICE_TOKEN.finditer(context):
        pass
    if last is not None:
        context = context[last.end():]
    return context


@dataclass
class TierAssignment:
    occurrence: int
    tier_key: str | None
    method: str  # "context", "sequential" or "unresolved"


class TierMatcher:
    """
    Stateful across one resolution pass: the sequential cursor and the
    assignment log are shared by every occurrence in the document.
    """

    def __init__(self, pricing_tiers: dict, rules=DEFAULT_TIER_RULES):
        self.rules = tuple(rules)
        self.sequence = [k for k in TIER_KEYS if as_number((pricing_tiers or {}).get(k)) > 0]
        self.cursor = 0
        self.assignments: list[TierAssignment] = []

    def match_context(self, context: str):
        for rule in self.rules:
            if rule.matches(context):
                return rule.tier_key
        return None

    def resolve(self, context: str):
        """Tier key for the next occurrence, or None when nothing fits."""
        occurrence = len(self.assignments) + 1
        tier = self.match_context(context)
        if tier is not None:
            self.assignments.append(TierAssignment(occurrence, tier, "context"))
            return tier
        if self.cursor < len(self.sequence):
            tier = self.sequence[self.cursor]
            self.cursor += 1
            self.assignments.append(TierAssignment(occurrence, tier, "sequential"))
            logger.debug("[TIERS] Occurrence %d fell back to tier %s", occurrence, tier)
            return tier
        self.assignments.append(TierAssignment(occurrence, None, "unresolved"))
        logger.warning("[TIERS] Could not determine a tier for price placeholder #%d", occurrence)
        return None

    def report(self) -> list[str]:
        """Human-readable problems with how price placeholders were matched."""
        if not self.assignments:
            return []
        problems = []
        unresolved = [a.occurrence for a in self.assignments if a.method == "unresolved"]
        if unresolved:
            problems.append(
                "No price tier could be determined for price placeholder(s) "
                + ", ".join(f"#{n}" for n in unresolved) + "; shown as 0"
            )
        counts = Counter(a.tier_key for a in self.assignments if a.tier_key)
        for tier, n in counts.items():
            if n > 1:
                problems.append(f"Price tier {tier} was used by {n} price placeholders")
        by_position = [a.occurrence for a in self.assignments if a.method == "sequential"]
        if by_position and len(self.assignments) > 1:
            problems.append(
                "Price placeholder(s) " + ", ".join(f"#{n}" for n in by_position)
                + " were matched to tiers by position, not by their wording"
            )
        return problems
