"""Assign crawled addresses to stored locations that lack a street address.

Each target gets at most one winner. Candidates whose structured city/state/ZIP
agree with the target's known components are preferred; otherwise the best
token-overlap similarity with the target's current raw address wins if it
clears ``min_similarity``. A candidate picked on similarity alone is handed
to one target only, never one already matched by structure; targets that lose
a candidate fall back to their next best.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AbstractSet, Any, Dict, List, Optional, Sequence, Set

from crm_enrich.models import ExtractedAddress, MatchTarget

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 0.3

_STREET_SUFFIX_REGEX = re.compile(
    r"\d+[\s\w.]+\s+(st|street|ave|avenue|blvd|boulevard|drive|dr|road|rd|way|ln|lane|cir|ct|court|pkwy|parkway|hwy|highway)\b",
    re.IGNORECASE,
)
_LEADING_NUMBER_REGEX = re.compile(r"^\d+\s+[A-Za-z]")
_TOKEN_SPLIT_REGEX = re.compile(r"[\s,;]+")


def has_street_number(raw: Optional[str]) -> bool:
    text = (raw or "").strip()
    return bool(_STREET_SUFFIX_REGEX.search(text) or _LEADING_NUMBER_REGEX.match(text))


def is_better_than_existing(new_address: str, existing: Optional[str]) -> bool:
    existing = existing or ""
    new_has_street = has_street_number(new_address)
    if not new_has_street:
        return False
    if not has_street_number(existing):
        return True
    return len(new_address) >= len(existing)


def _tokens(value: str) -> set:
    return {token for token in _TOKEN_SPLIT_REGEX.split(value.lower()) if token}


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Token overlap in [0, 1]: exact tokens count 1, substring tokens count 0.5."""

    if not a or not b:
        return 0.0
    tokens_a = _tokens(a)
    tokens_b = _tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0

    score = 0.0
    for token in tokens_a:
        if token in tokens_b:
            score += 1
        elif any(token in other or other in token for other in tokens_b):
            score += 0.5
    return score / max(len(tokens_a), len(tokens_b), 1)


def _component(components: Optional[Dict[str, Any]], *names: str) -> str:
    for name in names:
        value = (components or {}).get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


@dataclass
class _TargetParts:
    city: str
    state: str
    postal: str

    @classmethod
    def from_target(cls, target: MatchTarget) -> "_TargetParts":
        components = target.address_components
        return cls(
            city=_component(components, "city", "addressLocality").lower(),
            state=re.sub(r"\s", "", _component(components, "state", "addressRegion")).lower(),
            postal=re.sub(r"\s", "", _component(components, "postal_code", "postalCode")),
        )


def structured_overlap(candidate: ExtractedAddress, parts: _TargetParts) -> Optional[int]:
    """Count agreeing fields; ``None`` when a field known on both sides disagrees."""

    overlap = 0
    c_city = (candidate.city or "").lower()
    if parts.city and c_city:
        if parts.city not in c_city and c_city not in parts.city:
            return None
        overlap += 1

    c_state = re.sub(r"\s", "", candidate.state or "").lower()
    if parts.state and c_state:
        if parts.state != c_state:
            return None
        overlap += 1

    c_postal = re.sub(r"\s", "", candidate.postal_code or "")
    if parts.postal and c_postal:
        if parts.postal not in c_postal and c_postal not in parts.postal:
            return None
        overlap += 1

    return overlap


@dataclass
class _Choice:
    target_index: int
    candidate_index: int
    by_structure: bool
    similarity: float


def _best_choice(
    target_index: int,
    target: MatchTarget,
    candidates: Sequence[ExtractedAddress],
    *,
    min_similarity: float,
    require_street: bool,
    exclude: AbstractSet[int] = frozenset(),
) -> Optional[_Choice]:
    parts = _TargetParts.from_target(target)
    existing = target.address_raw or ""

    structured_ranked = []
    fallback_ranked = []
    for index, candidate in enumerate(candidates):
        if index in exclude:
            continue
        if require_street and not has_street_number(candidate.raw):
            continue
        if not is_better_than_existing(candidate.raw, existing):
            continue

        similarity = string_similarity(candidate.raw, existing)
        overlap = structured_overlap(candidate, parts)
        if overlap is None:
            continue
        # Earlier candidates win exact ties, hence the negated index.
        rank = (similarity, 1 if candidate.is_structured else 0, -index)
        if overlap > 0:
            structured_ranked.append(((overlap,) + rank, index, similarity))
        elif similarity >= min_similarity:
            fallback_ranked.append((rank, index, similarity))

    if structured_ranked:
        _, index, similarity = max(structured_ranked)
        return _Choice(target_index, index, True, similarity)
    if fallback_ranked:
        _, index, similarity = max(fallback_ranked)
        return _Choice(target_index, index, False, similarity)
    return None


def match_addresses_to_locations(
    candidates: Sequence[ExtractedAddress],
    targets: Sequence[MatchTarget],
    *,
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
    require_street: bool = True,
) -> Dict[str, str]:
    """Return ``{location external id: winning raw address}``."""

    matches: Dict[str, str] = {}
    if not candidates or not targets:
        return matches

    taken: Set[int] = set()
    pending: List[int] = []
    for target_index, target in enumerate(targets):
        choice = _best_choice(
            target_index,
            target,
            candidates,
            min_similarity=min_similarity,
            require_street=require_street,
        )
        if choice is None:
            continue
        if choice.by_structure:
            matches[target.external_id] = candidates[choice.candidate_index].raw
            taken.add(choice.candidate_index)
        else:
            pending.append(target_index)

    # Similarity claims are exclusive: each round hands every claimed candidate
    # to its best claimant and the losers retry without the taken candidates.
    while pending:
        claims: Dict[int, List[_Choice]] = {}
        for target_index in pending:
            choice = _best_choice(
                target_index,
                targets[target_index],
                candidates,
                min_similarity=min_similarity,
                require_street=require_street,
                exclude=taken,
            )
            if choice is not None:
                claims.setdefault(choice.candidate_index, []).append(choice)
        if not claims:
            break

        assigned: Set[int] = set()
        for candidate_index, claimants in claims.items():
            # max() keeps the first of equal scores, so input order breaks ties.
            winner = max(claimants, key=lambda claim: claim.similarity)
            if len(claimants) > 1:
                logger.debug(
                    "Candidate %r claimed by %d targets on similarity; assigning to %s",
                    candidates[candidate_index].raw,
                    len(claimants),
                    targets[winner.target_index].external_id,
                )
            matches[targets[winner.target_index].external_id] = candidates[candidate_index].raw
            taken.add(candidate_index)
            assigned.add(winner.target_index)
        pending = [target_index for target_index in pending if target_index not in assigned]

    return matches
