from __future__ import annotations

import random
from collections import Counter

import pytest

from plexus.governance.fallback import narrow
from plexus.governance.selector import (
    CatalogError,
    Bucket,
    draw_bucket,
    partition,
    pick,
    remember,
)
from plexus.models.schemas import GENERAL_MEDICINE, DiseaseEntry, Rarity, RaritySelection


def entries(*pairs):
    return [DiseaseEntry(name=name, rarity=rarity) for name, rarity in pairs]


CARDIOLOGY = entries(("Myocardial Infarction", "Common"), ("Pericarditis", "Rare"))

MIXED = entries(
    ("Hypertension", "Very Common"),
    ("Angina", "Common"),
    ("Pericarditis", "Uncommon"),
    ("Myocarditis", "Uncommon"),
    ("Cardiomyopathy", "Rare"),
    ("Amyloidosis", "Very Rare"),
)


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def test_specific_rarity_returns_matching_disease():
    selection = pick("Cardiology", "Common", [], {"Cardiology": CARDIOLOGY}, random.Random(1))
    assert selection.disease_name == "Myocardial Infarction"
    assert selection.disease_rarity is Rarity.COMMON
    assert selection.domain == "Cardiology"


def test_missing_rarity_falls_back_to_eligible_pool():
    catalog = {"Cardiology": entries(("Angina", "Common"), ("Pericarditis", "Uncommon"))}
    selection = pick("Cardiology", RaritySelection.RARE, [], catalog, random.Random(3))
    assert selection.disease_name in {"Angina", "Pericarditis"}


def test_recency_filter_excludes_recent_names():
    history = ["Pericarditis"]
    for seed in range(20):
        selection = pick("Cardiology", "Any", list(history), {"Cardiology": CARDIOLOGY}, random.Random(seed))
        assert selection.disease_name == "Myocardial Infarction"


def test_recency_never_blocks_generation():
    history = ["Myocardial Infarction", "Pericarditis"]
    selection = pick("Cardiology", "Any", history, {"Cardiology": CARDIOLOGY}, random.Random(5))
    assert selection.disease_name in {"Myocardial Infarction", "Pericarditis"}


def test_history_is_appended_and_bounded():
    catalog = {"Cardiology": entries(*[(f"Disease {i}", "Common") for i in range(40)])}
    history: list[str] = []
    rng = random.Random(11)
    chosen = [pick("Cardiology", "Any", history, catalog, rng).disease_name for _ in range(30)]
    assert len(history) == 15
    assert history == chosen[-15:]


def test_remember_evicts_oldest_first():
    history = [f"d{i}" for i in range(15)]
    remember(history, "newest")
    assert len(history) == 15
    assert history[0] == "d1"
    assert history[-1] == "newest"


def test_umbrella_domain_resolves_to_catalog_key():
    catalog = {"Cardiology": CARDIOLOGY, "Neurology": entries(("Migraine", "Common"))}
    seen = {pick(GENERAL_MEDICINE, "Any", [], catalog, random.Random(seed)).domain for seed in range(50)}
    assert seen == {"Cardiology", "Neurology"}


def test_unknown_domain_resolves_to_catalog_key():
    catalog = {"Neurology": entries(("Migraine", "Common"))}
    selection = pick("Podiatry", "Any", [], catalog, random.Random(2))
    assert selection.domain == "Neurology"
    assert selection.disease_name == "Migraine"


def test_empty_domain_is_a_hard_error():
    with pytest.raises(CatalogError):
        pick("Cardiology", "Any", [], {"Cardiology": []}, random.Random(0))


def test_empty_catalog_is_a_hard_error():
    with pytest.raises(CatalogError):
        pick(GENERAL_MEDICINE, "Any", [], {}, random.Random(0))


def test_seeded_selection_is_reproducible():
    catalog = {"Cardiology": MIXED}
    first = [pick("Cardiology", "Any", [], catalog, random.Random(42)).disease_name for _ in range(5)]
    second = [pick("Cardiology", "Any", [], catalog, random.Random(42)).disease_name for _ in range(5)]
    assert first == second


def test_any_rarity_matches_bucket_weights():
    catalog = {"Cardiology": MIXED}
    rng = random.Random(2026)
    buckets = Counter()
    trials = 100_000
    for _ in range(trials):
        rarity = pick("Cardiology", RaritySelection.ANY, [], catalog, rng).disease_rarity
        if rarity in (Rarity.VERY_COMMON, Rarity.COMMON):
            buckets["common"] += 1
        else:
            buckets[rarity.value] += 1
    assert abs(buckets["common"] / trials - 0.60) < 0.02
    assert abs(buckets["Uncommon"] / trials - 0.30) < 0.02
    assert abs(buckets["Rare"] / trials - 0.05) < 0.02
    assert abs(buckets["Very Rare"] / trials - 0.05) < 0.02


def test_empty_buckets_are_dropped_and_weights_renormalised():
    eligible = entries(("Pericarditis", "Uncommon"), ("Amyloidosis", "Very Rare"))
    buckets = partition(eligible)
    # 0.30 / 0.35 of the draw lands on Uncommon.
    assert draw_bucket(buckets, FixedRandom(0.85)).members[0].name == "Pericarditis"
    assert draw_bucket(buckets, FixedRandom(0.86)).members[0].name == "Amyloidosis"


def test_bucket_boundary_is_exclusive_upper():
    buckets = [
        Bucket(members=entries(("Angina", "Common")), weight=0.5),
        Bucket(members=entries(("Pericarditis", "Uncommon")), weight=0.5),
    ]
    assert draw_bucket(buckets, FixedRandom(0.5)).members[0].name == "Pericarditis"
    assert draw_bucket(buckets, FixedRandom(0.49)).members[0].name == "Angina"


def test_rounding_overflow_defaults_to_last_non_empty_bucket():
    buckets = [Bucket(members=entries(("Angina", "Common")), weight=0.6), Bucket(members=[], weight=0.4)]
    assert draw_bucket(buckets, FixedRandom(1.0)).members[0].name == "Angina"


def test_narrow_widens_when_nothing_matches():
    assert narrow([1, 2, 3], lambda value: value > 1) == [2, 3]
    assert narrow([1, 2, 3], lambda value: value > 5) == [1, 2, 3]
