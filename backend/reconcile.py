# reconcile.py
# Match free-text place names (user typed or LLM generated) to geocoded candidates.
# Strategies run in fixed priority order; first strategy with any hit wins.

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Union
import logging
import math

from models import Candidate

log = logging.getLogger("wanderlust.reconcile")

# english landmark name -> localized / alternate spellings seen in OSM data
LANDMARK_ALIASES: dict[str, list[str]] = {
    "colosseum": ["colosseo", "amphitheatrum flavium", "anfiteatro flavio"],
    "trevi fountain": ["fontana di trevi", "trevi", "fontana"],
    "vatican museums": ["musei vaticani", "vatican", "vaticani", "sistine chapel"],
    "sistine chapel": ["cappella sistina", "sistina", "musei vaticani"],
    "pantheon": ["pantheon"],
    "spanish steps": ["scalinata di trinità dei monti", "trinità dei monti", "spanish"],
    "roman forum": ["foro romano", "forum romanum", "forum"],
    "st peters basilica": ["basilica di san pietro", "san pietro", "st peter"],
    "castel santangelo": ["castel sant'angelo", "mausoleum of hadrian", "castello"],
}


def normalize(text: str | None) -> str:
    return (text or "").lower().strip()


def significant_tokens(text: str) -> list[str]:
    """Whitespace tokens longer than 2 chars ("di", "of", "st" are noise)."""
    return [t for t in text.split() if len(t) > 2]


class Matcher(Protocol):
    name: str

    def matches(self, reference: str, candidate: Candidate) -> bool: ...


class ExactMatcher:
    name = "exact"

    def matches(self, reference: str, candidate: Candidate) -> bool:
        return normalize(reference) == normalize(candidate.name)


class SubstringMatcher:
    name = "substring"

    def matches(self, reference: str, candidate: Candidate) -> bool:
        ref, cand = normalize(reference), normalize(candidate.name)
        if not ref or not cand:
            # "" is a substring of everything
            return False
        return ref in cand or cand in ref


class AliasMatcher:
    name = "alias"

    def __init__(self, aliases: dict[str, list[str]] | None = None):
        self.aliases = LANDMARK_ALIASES if aliases is None else aliases

    def matches(self, reference: str, candidate: Candidate) -> bool:
        ref, cand = normalize(reference), normalize(candidate.name)
        for canonical, variants in self.aliases.items():
            if canonical in ref and any(v in cand for v in variants):
                return True
        return False


class TokenOverlapMatcher:
    name = "token_overlap"

    def __init__(self, ratio: float = 0.5):
        self.ratio = ratio

    def threshold(self, token_count: int) -> int:
        return math.ceil(token_count * self.ratio)

    def matches(self, reference: str, candidate: Candidate) -> bool:
        ref_tokens = significant_tokens(normalize(reference))
        if not ref_tokens:
            return False
        cand_tokens = significant_tokens(normalize(candidate.name))
        overlap = [
            r for r in ref_tokens
            if any(c in r or r in c for c in cand_tokens)
        ]
        return len(overlap) >= self.threshold(len(ref_tokens))


DEFAULT_MATCHERS: tuple[Matcher, ...] = (
    ExactMatcher(),
    SubstringMatcher(),
    AliasMatcher(),
    TokenOverlapMatcher(),
)


# --- typed outcomes: callers handle all three


@dataclass(frozen=True)
class Resolved:
    reference: str
    candidate: Candidate
    strategy: str

    @property
    def lat(self) -> str:
        return self.candidate.lat

    @property
    def lon(self) -> str:
        return self.candidate.lon


@dataclass(frozen=True)
class Fallback:
    """Reference placed at the destination's own coordinates."""
    reference: str
    lat: str
    lon: str
    reason: str = "no match"


@dataclass(frozen=True)
class Unresolved:
    reference: str


Outcome = Union[Resolved, Fallback, Unresolved]


@dataclass
class ReconciliationResult:
    outcomes: List[Outcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def resolved(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Resolved))

    @property
    def matched(self) -> list[Resolved]:
        return [o for o in self.outcomes if isinstance(o, Resolved)]

    @property
    def unresolved(self) -> list[str]:
        return [o.reference for o in self.outcomes if not isinstance(o, Resolved)]


def find_match(
    reference: str,
    pool: Sequence[Candidate],
    matchers: Iterable[Matcher] = DEFAULT_MATCHERS,
) -> Optional[Resolved]:
    """
    Strategy-first search: every candidate is tried against the exact
    matcher before any candidate is tried against the substring matcher,
    and so on. Within a strategy the first candidate in pool order wins.
    """
    for matcher in matchers:
        for cand in pool:
            if matcher.matches(reference, cand):
                return Resolved(reference=reference, candidate=cand, strategy=matcher.name)
    return None


def reconcile(
    pool: Sequence[Candidate],
    references: Iterable[str],
    matchers: Iterable[Matcher] = DEFAULT_MATCHERS,
) -> ReconciliationResult:
    """Match each reference against the pool. Misses are recorded, never raised."""
    matchers = tuple(matchers)
    result = ReconciliationResult()
    for ref in references:
        hit = find_match(ref, pool, matchers)
        if hit:
            log.info('matched "%s" -> "%s" (%s)', ref, hit.candidate.name, hit.strategy)
            result.outcomes.append(hit)
        else:
            log.info('no match for "%s"; nearby: %s', ref, [c.name for c in pool[:10]])
            result.outcomes.append(Unresolved(reference=ref))
    return result


def apply_fallback(outcome: Outcome, lat: str, lon: str) -> Union[Resolved, Fallback]:
    """Unresolved -> Fallback at (lat, lon); anything else passes through."""
    if isinstance(outcome, Unresolved):
        return Fallback(reference=outcome.reference, lat=lat, lon=lon)
    return outcome
