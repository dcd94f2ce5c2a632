"""Weighted, recency-aware choice of which disease a new case is built around."""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, List, MutableSequence, Sequence, Tuple

from ..logging_config import logger
from ..models.schemas import GENERAL_MEDICINE, DiseaseEntry, Rarity, RaritySelection, Selection
from .fallback import narrow

Catalog = Dict[str, List[DiseaseEntry]]

RECENT_HISTORY_LIMIT = 15

# Listed in draw order; the weighted walk in draw_bucket depends on it.
RARITY_BUCKETS: Tuple[Tuple[frozenset, float], ...] = (
    (frozenset({Rarity.VERY_COMMON, Rarity.COMMON}), 0.60),
    (frozenset({Rarity.UNCOMMON}), 0.30),
    (frozenset({Rarity.RARE}), 0.05),
    (frozenset({Rarity.VERY_RARE}), 0.05),
)


class CatalogError(Exception):
    """Raised when a domain has no diseases at all; this is a data-loading defect."""


@dataclass
class Bucket:
    members: List[DiseaseEntry]
    weight: float


def resolve_domain(requested: str, catalog: Catalog, rng: random.Random) -> str:
    if requested != GENERAL_MEDICINE and requested in catalog:
        return requested
    if not catalog:
        raise CatalogError("Disease catalog is empty")
    domain = rng.choice(sorted(catalog))
    if requested != GENERAL_MEDICINE:
        logger.info("selector.domain_fallback", requested=requested, domain=domain)
    return domain


def partition(eligible: Sequence[DiseaseEntry]) -> List[Bucket]:
    return [
        Bucket(members=[entry for entry in eligible if entry.rarity in rarities], weight=weight)
        for rarities, weight in RARITY_BUCKETS
    ]


def draw_bucket(buckets: Sequence[Bucket], rng: random.Random) -> Bucket:
    """Pick a bucket by weight among the non-empty ones.

    Boundaries are inclusive-lower/exclusive-upper: a draw of exactly 0.60 with all
    buckets present lands in the second bucket.
    """
    available = narrow(buckets, lambda bucket: bool(bucket.members))
    total_weight = sum(bucket.weight for bucket in available)
    draw = rng.random() * total_weight
    cumulative = 0.0
    for bucket in available:
        cumulative += bucket.weight
        if cumulative > draw:
            return bucket
    return available[-1]


def remember(history: MutableSequence[str], name: str, limit: int = RECENT_HISTORY_LIMIT) -> None:
    history.append(name)
    overflow = len(history) - limit
    if overflow > 0:
        del history[:overflow]


def pick(
    requested_domain: str,
    rarity_selection: RaritySelection,
    recent_history: MutableSequence[str],
    catalog: Catalog,
    rng: random.Random | None = None,
    history_limit: int = RECENT_HISTORY_LIMIT,
) -> Selection:
    """Choose a disease for a new case and record it in ``recent_history``.

    Only an empty disease list for the resolved domain is an error; an empty pool after
    the recency or rarity filters falls back to the wider pool instead.
    """
    rng = rng or random.Random()
    domain = resolve_domain(requested_domain, catalog, rng)
    diseases = catalog.get(domain) or []
    if not diseases:
        raise CatalogError(f'No diseases found for specialty "{domain}"')

    recent = set(recent_history)
    eligible = narrow(diseases, lambda entry: entry.name not in recent)

    rarity_selection = RaritySelection(rarity_selection)
    if rarity_selection is RaritySelection.ANY:
        pool = draw_bucket(partition(eligible), rng).members
    else:
        wanted = Rarity(rarity_selection.value)
        pool = narrow(eligible, lambda entry: entry.rarity is wanted)

    chosen = rng.choice(pool)
    remember(recent_history, chosen.name, history_limit)
    return Selection(domain=domain, disease_name=chosen.name, disease_rarity=chosen.rarity)
