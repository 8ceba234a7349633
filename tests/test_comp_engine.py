"""
Tests for the Comparables Engine scoring stages

Verifies:
- Haversine distance is symmetric and zero for identical points
- Normalization applies each adjustment in order and skips missing inputs
- Normalization clamps non-positive prices to the configured floor
- Cosine similarity ignores attributes missing on either side
- KNN weights sum to 1 and respect k and the distance cap
- Quality tiers follow the A/B/C decision table and are monotonic
"""

import logging
import math
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comparables import (
    Comparable,
    ConfigurationError,
    NormalizationEngine,
    NormalizeRules,
    Quality,
    QualityClassifier,
    ScoreMethod,
    ScoreParams,
    SimilarityScorer,
    Source,
    SqmRule,
    SubjectRef,
    cosine_similarity,
    distance_to,
    haversine_m,
    knn_weights,
    ppsqm,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def reference_date():
    """Fixed reference date for deterministic tests."""
    return date(2024, 6, 1)


@pytest.fixture
def create_comp(reference_date):
    """Factory fixture for creating comparables."""
    def _create(
        price: float = 300000,
        sqm: float = 100,
        days_old: int = 30,
        comp_id: str = None,
        **kwargs,
    ) -> Comparable:
        return Comparable(
            id=comp_id or f"comp-{price}-{sqm}-{days_old}",
            date=reference_date - timedelta(days=days_old),
            source=kwargs.pop("source", Source.PORTAL),
            lat=kwargs.pop("lat", 40.4168),
            lng=kwargs.pop("lng", -3.7038),
            price=price,
            sqm=sqm,
            **kwargs,
        )
    return _create


@pytest.fixture
def engine(reference_date):
    """Normalization engine with fixed reference date."""
    return NormalizationEngine(reference_date=reference_date)


@pytest.fixture
def classifier(reference_date):
    """Quality classifier with fixed reference date."""
    return QualityClassifier(reference_date=reference_date)


# =============================================================================
# Test: GeoDistance
# =============================================================================

class TestHaversine:
    """Tests for great-circle distance."""

    @pytest.mark.parametrize("a,b", [
        ((40.4168, -3.7038), (41.3874, 2.1686)),
        ((-33.8688, 151.2093), (51.5074, -0.1278)),
        ((0.0, 179.9), (0.0, -179.9)),
    ])
    def test_distance_is_symmetric(self, a, b):
        assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a))

    def test_identical_points_are_zero(self):
        assert haversine_m(40.4168, -3.7038, 40.4168, -3.7038) == 0.0

    def test_one_degree_of_latitude(self):
        """One degree of latitude is R * pi / 180 meters."""
        expected = 6_371_000 * math.pi / 180
        assert haversine_m(40.0, -3.0, 41.0, -3.0) == pytest.approx(expected, rel=1e-9)

    def test_madrid_to_barcelona(self):
        """Roughly 505 km between city centres."""
        distance = haversine_m(40.4168, -3.7038, 41.3874, 2.1686)
        assert 500_000 < distance < 510_000

    def test_out_of_range_does_not_raise(self):
        """Invalid degrees produce a number, not an error."""
        assert haversine_m(120.0, 400.0, -95.0, -200.0) >= 0

    def test_distance_to_without_subject_coordinates(self, create_comp):
        assert distance_to(SubjectRef(sqm=80), create_comp()) is None


# =============================================================================
# Test: Price Per Square Meter
# =============================================================================

class TestPricePerSqm:
    """Degenerate areas return 0 rather than raising."""

    def test_regular_value(self):
        assert ppsqm(300000, 100) == 3000

    @pytest.mark.parametrize("sqm", [0, None, -5])
    def test_degenerate_area_returns_zero(self, sqm):
        assert ppsqm(300000, sqm) == 0.0


# =============================================================================
# Test: NormalizationEngine
# =============================================================================

class TestNormalizationArea:
    """Area adjustment (step 1)."""

    def test_linear_scenario(self, engine, create_comp):
        """Subject 80 sqm vs comp 100 sqm at 3000/sqm removes 60000."""
        comp = create_comp(price=300000, sqm=100)
        rules = NormalizeRules(sqm_rule=SqmRule.LINEAR)

        assert engine.normalize(comp, rules, SubjectRef(sqm=80)) == pytest.approx(240000)

    def test_noop_rules_with_equal_area_keep_price(self, engine, create_comp):
        comp = create_comp(price=275000, sqm=90)

        assert engine.normalize(comp, NormalizeRules(), SubjectRef(sqm=90)) == pytest.approx(275000)

    def test_sqrt_rule(self, engine, create_comp):
        comp = create_comp(price=100000, sqm=25)
        rules = NormalizeRules(sqm_rule=SqmRule.SQRT)

        assert engine.normalize(comp, rules, SubjectRef(sqm=100)) == pytest.approx(200000)

    def test_unknown_subject_area_skips_step(self, engine, create_comp):
        comp = create_comp(price=300000, sqm=100)

        assert engine.normalize(comp, NormalizeRules(), SubjectRef()) == pytest.approx(300000)
        assert engine.normalize(comp, NormalizeRules(), None) == pytest.approx(300000)


class TestNormalizationAdjustments:
    """Steps 2-8, each in isolation."""

    def test_condition_factor(self, engine, create_comp):
        comp = create_comp(condition="reformar")
        rules = NormalizeRules(state_factors={"reformar": 0.9})

        assert engine.normalize(comp, rules) == pytest.approx(270000)

    def test_condition_without_mapping_entry_is_skipped(self, engine, create_comp):
        comp = create_comp(condition="nuevo")
        rules = NormalizeRules(state_factors={"reformar": 0.9})

        assert engine.normalize(comp, rules) == pytest.approx(300000)

    def test_floor_bonus(self, engine, create_comp):
        comp = create_comp(floor=3)
        rules = NormalizeRules(floor_bonus=1000)

        assert engine.normalize(comp, rules) == pytest.approx(303000)

    def test_floor_zero_is_known(self, engine, create_comp):
        """Ground floor is a known value and adds nothing."""
        comp = create_comp(floor=0)

        assert engine.normalize(comp, NormalizeRules(floor_bonus=1000)) == pytest.approx(300000)

    def test_elevator_factor(self, engine, create_comp):
        rules = NormalizeRules(elevator_factor=1.05)

        assert engine.normalize(create_comp(elevator=True), rules) == pytest.approx(315000)
        assert engine.normalize(create_comp(elevator=False), rules) == pytest.approx(300000)
        assert engine.normalize(create_comp(elevator=None), rules) == pytest.approx(300000)

    def test_terrace_value(self, engine, create_comp):
        comp = create_comp(terrace=10)

        assert engine.normalize(comp, NormalizeRules(terrace_ppsqm=1500)) == pytest.approx(315000)

    def test_parking_value(self, engine, create_comp):
        comp = create_comp(parking=True)

        assert engine.normalize(comp, NormalizeRules(parking_value=20000)) == pytest.approx(320000)

    def test_age_depreciation(self, engine, create_comp):
        """One year old at 2% per year."""
        comp = create_comp(days_old=365)

        result = engine.normalize(comp, NormalizeRules(age_depreciation_pct=2))

        assert result == pytest.approx(294000)

    def test_micro_location_bonus_decays_linearly(self, engine, create_comp):
        comp = create_comp().with_computed(distance=500)
        subject = SubjectRef(lat=40.4168, lng=-3.7038)

        result = engine.normalize(comp, NormalizeRules(micro_loc_bonus_m=1000), subject)

        assert result == pytest.approx(300000 * 1.025)

    def test_micro_location_full_bonus_at_subject(self, engine, create_comp):
        """Distance is derived from subject coordinates when not annotated."""
        comp = create_comp()
        subject = SubjectRef(lat=comp.lat, lng=comp.lng)

        result = engine.normalize(comp, NormalizeRules(micro_loc_bonus_m=1000), subject)

        assert result == pytest.approx(315000)

    def test_micro_location_outside_radius(self, engine, create_comp):
        comp = create_comp().with_computed(distance=1000)
        subject = SubjectRef(lat=40.4168, lng=-3.7038)

        result = engine.normalize(comp, NormalizeRules(micro_loc_bonus_m=1000), subject)

        assert result == pytest.approx(300000)

    def test_micro_location_needs_subject_coordinates(self, engine, create_comp):
        comp = create_comp().with_computed(distance=100)

        result = engine.normalize(comp, NormalizeRules(micro_loc_bonus_m=1000), SubjectRef(sqm=100))

        assert result == pytest.approx(300000)


class TestNormalizationPipeline:
    """Ordering, clamping and determinism."""

    def test_area_then_condition(self, engine, create_comp):
        comp = create_comp(price=300000, sqm=100, condition="reformar")
        rules = NormalizeRules(state_factors={"reformar": 0.5})

        assert engine.normalize(comp, rules, SubjectRef(sqm=80)) == pytest.approx(120000)

    def test_negative_result_is_clamped_to_zero(self, engine, create_comp, caplog):
        comp = create_comp(floor=-10)
        rules = NormalizeRules(floor_bonus=100000)

        with caplog.at_level(logging.WARNING):
            result = engine.normalize(comp, rules)

        assert result == 0.0
        assert "clamping" in caplog.text

    def test_clamp_uses_configured_floor(self, engine, create_comp):
        comp = create_comp(floor=-10)
        rules = NormalizeRules(floor_bonus=100000, price_floor=1000)

        assert engine.normalize(comp, rules) == 1000

    def test_deterministic(self, engine, create_comp):
        comp = create_comp(condition="nuevo", floor=4, elevator=True, terrace=8, parking=True)
        rules = NormalizeRules(
            state_factors={"nuevo": 1.1},
            floor_bonus=500,
            elevator_factor=1.02,
            terrace_ppsqm=1200,
            parking_value=15000,
            age_depreciation_pct=1.5,
        )
        subject = SubjectRef(sqm=95)

        results = {engine.normalize(comp, rules, subject) for _ in range(5)}

        assert len(results) == 1

    def test_normalize_all_annotates_copies(self, engine, create_comp):
        comp = create_comp(price=300000, sqm=100)

        [normalized] = engine.normalize_all([comp], NormalizeRules(), SubjectRef(sqm=80))

        assert normalized.adj_total == 240000
        assert normalized.ppsqm == 3000
        assert comp.adj_total is None
        assert normalized.raw() == comp

    def test_invalid_rules_rejected(self):
        with pytest.raises(ConfigurationError):
            NormalizeRules(state_factors={"reformar": -1})
        with pytest.raises(ConfigurationError):
            NormalizeRules(micro_loc_bonus_m=-5)
        with pytest.raises(ConfigurationError):
            NormalizeRules(price_floor=-1)

    @pytest.mark.parametrize("kwargs", [
        {"state_factors": {"reformar": "0.9"}},
        {"floor_bonus": "alto"},
        {"terrace_ppsqm": True},
        {"price_floor": None},
    ])
    def test_non_numeric_rules_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            NormalizeRules(**kwargs)

    def test_non_numeric_rules_from_dict_rejected(self):
        with pytest.raises(ConfigurationError):
            NormalizeRules.from_dict({"state_factors": {"nuevo": None}})


# =============================================================================
# Test: Cosine Similarity
# =============================================================================

class TestCosineSimilarity:
    """Weighted cosine over contribution terms."""

    def test_identical_attributes(self, create_comp):
        """All five terms are 1: sum of weights over number of terms."""
        subject = SubjectRef(sqm=100, rooms=3, baths=2, condition="nuevo")
        comp = create_comp(sqm=100, rooms=3, baths=2, condition="nuevo").with_computed(distance=0)

        assert cosine_similarity(subject, comp) == pytest.approx(0.9 / 5)

    def test_no_comparable_attributes_is_zero(self, create_comp):
        assert cosine_similarity(SubjectRef(), create_comp()) == 0.0

    def test_missing_attribute_is_neither_penalty_nor_bonus(self, create_comp):
        subject = SubjectRef(sqm=100, baths=2)
        with_rooms = create_comp(sqm=90, baths=2, rooms=3)
        without_rooms = create_comp(sqm=90, baths=2)

        assert cosine_similarity(subject, with_rooms) == cosine_similarity(subject, without_rooms)

    def test_custom_weights_override_defaults(self, create_comp):
        subject = SubjectRef(sqm=100)
        comp = create_comp(sqm=80)

        assert cosine_similarity(subject, comp, {"sqm": 1.0}) == pytest.approx(1.0)

    def test_distance_beyond_decay_contributes_nothing(self, create_comp):
        comp = create_comp().with_computed(distance=6000)

        assert cosine_similarity(SubjectRef(), comp) == 0.0

    def test_result_within_unit_interval(self, create_comp):
        subject = SubjectRef(sqm=70, rooms=2, baths=1, condition="reformar")
        comp = create_comp(sqm=140, rooms=4, baths=2, condition="nuevo").with_computed(distance=1200)

        assert 0.0 <= cosine_similarity(subject, comp) <= 1.0


# =============================================================================
# Test: Weighted KNN
# =============================================================================

class TestKnnWeights:
    """Top-k selection and weight normalization."""

    @pytest.fixture
    def subject(self):
        return SubjectRef(lat=40.4168, lng=-3.7038, sqm=100, rooms=3, baths=2, condition="nuevo")

    @pytest.fixture
    def neighbours(self, create_comp):
        specs = [
            ("a", 100, 3, 2, "nuevo", 150),
            ("b", 85, 2, 2, "nuevo", 400),
            ("c", 130, 4, 1, "reformar", 900),
            ("d", 60, 1, 1, None, 1800),
        ]
        return [
            create_comp(comp_id=cid, sqm=sqm, rooms=rooms, baths=baths, condition=cond)
            .with_computed(distance=dist)
            for cid, sqm, rooms, baths, cond, dist in specs
        ]

    def test_weights_sum_to_one_when_k_is_n(self, subject, neighbours):
        weights = knn_weights(subject, neighbours, k=len(neighbours))

        assert set(weights) == {"a", "b", "c", "d"}
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_selects_highest_similarity(self, subject, neighbours):
        ranked = sorted(neighbours, key=lambda c: cosine_similarity(subject, c), reverse=True)

        weights = knn_weights(subject, neighbours, k=2)

        assert set(weights) == {ranked[0].id, ranked[1].id}
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_distance_cap_excludes_candidates(self, subject, neighbours):
        weights = knn_weights(subject, neighbours, k=4, dist_cap_m=1000)

        assert "d" not in weights
        assert len(weights) == 3

    def test_default_cap_is_2000m(self, subject, neighbours, create_comp):
        far = create_comp(comp_id="far", sqm=100, rooms=3).with_computed(distance=2500)

        weights = knn_weights(subject, neighbours + [far], k=10)

        assert "far" not in weights

    def test_k_larger_than_candidates_reduces(self, subject, neighbours):
        weights = knn_weights(subject, neighbours[:2], k=10)

        assert len(weights) == 2

    def test_ties_keep_input_order(self, subject, create_comp):
        twins = [
            create_comp(comp_id=f"twin-{i}", sqm=100, rooms=3).with_computed(distance=100)
            for i in range(4)
        ]

        weights = knn_weights(subject, twins, k=2)

        assert list(weights) == ["twin-0", "twin-1"]
        assert weights["twin-0"] == pytest.approx(0.5)

    def test_zero_similarity_gives_zero_weights(self, create_comp):
        comps = [create_comp(comp_id="x"), create_comp(comp_id="y")]

        weights = knn_weights(SubjectRef(), comps, k=2)

        assert weights == {"x": 0.0, "y": 0.0}

    def test_non_positive_k_rejected(self, subject, neighbours):
        with pytest.raises(ConfigurationError):
            knn_weights(subject, neighbours, k=0)

    @pytest.mark.parametrize("k", [2.5, "3", True])
    def test_non_integer_k_rejected(self, subject, neighbours, k):
        with pytest.raises(ConfigurationError):
            knn_weights(subject, neighbours, k=k)


class TestSimilarityScorer:
    """Annotation of similarity and weight."""

    def test_cosine_sets_similarity_only(self, create_comp):
        comps = [create_comp(comp_id="a", sqm=90, rooms=3), create_comp(comp_id="b", sqm=60)]

        scored = SimilarityScorer().score(SubjectRef(sqm=100, rooms=3), comps, ScoreParams())

        assert all(c.similarity is not None for c in scored)
        assert all(c.weight is None for c in scored)

    def test_knn_leaves_unselected_weight_absent(self, create_comp):
        comps = [
            create_comp(comp_id="near", sqm=100, rooms=3).with_computed(distance=100),
            create_comp(comp_id="far", sqm=100, rooms=3).with_computed(distance=3000),
        ]
        params = ScoreParams(method=ScoreMethod.KNN, k=5)

        scored = SimilarityScorer().score(SubjectRef(sqm=100, rooms=3), comps, params)
        by_id = {c.id: c for c in scored}

        assert by_id["near"].weight == pytest.approx(1.0)
        assert by_id["far"].weight is None
        assert by_id["far"].similarity is not None

    def test_knn_uses_default_k(self, create_comp):
        comps = [create_comp(comp_id=f"c{i}", sqm=100 - i).with_computed(distance=50) for i in range(8)]
        params = ScoreParams(method=ScoreMethod.KNN)

        scored = SimilarityScorer(default_k=3).score(SubjectRef(sqm=100), comps, params)

        assert sum(1 for c in scored if c.weight is not None) == 3

    @pytest.mark.parametrize("kwargs", [
        {"k": 0},
        {"k": -2},
        {"dist_cap_m": -1},
        {"weights": {"sqm": -0.1}},
        {"weights": {"garden": 0.2}},
        {"k": 2.5},
        {"k": "5"},
        {"k": True},
        {"dist_cap_m": "far"},
        {"weights": {"sqm": "x"}},
        {"weights": {"rooms": None}},
    ])
    def test_invalid_params_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            ScoreParams(method=ScoreMethod.KNN, **kwargs)


# =============================================================================
# Test: QualityClassifier
# =============================================================================

class TestQualityClassifier:
    """A/B/C decision table."""

    @pytest.fixture
    def complete_comp(self, create_comp):
        def _create(days_old: int, distance, **overrides):
            fields = dict(rooms=3, baths=2, condition="buen_estado", floor=2)
            fields.update(overrides)
            return create_comp(days_old=days_old, **fields).with_computed(distance=distance)
        return _create

    def test_recent_close_complete_is_a(self, classifier, complete_comp):
        """About three months old, 200 m away, all fields present."""
        assert classifier.classify(complete_comp(90, 200)) == Quality.A

    def test_missing_condition_falls_to_b(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(90, 200, condition=None)) == Quality.B

    def test_boundaries_are_inclusive(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(180, 500)) == Quality.A
        assert classifier.classify(complete_comp(360, 1000)) == Quality.B

    def test_distance_between_500_and_1000_is_b(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(60, 750)) == Quality.B

    def test_older_than_a_year_is_c(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(400, 100)) == Quality.C

    def test_far_is_c(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(30, 1500)) == Quality.C

    def test_unknown_distance_is_c(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(30, None)) == Quality.C

    def test_zero_distance_counts_as_close(self, classifier, complete_comp):
        assert classifier.classify(complete_comp(30, 0)) == Quality.A

    def test_monotonic_in_age_and_distance(self, classifier, complete_comp):
        rank = {Quality.A: 0, Quality.B: 1, Quality.C: 2}
        ages = [0, 100, 180, 250, 360, 500]
        distances = [0, 300, 500, 800, 1000, 2000]

        for distance in distances:
            tiers = [rank[classifier.classify(complete_comp(age, distance))] for age in ages]
            assert tiers == sorted(tiers)

        for age in ages:
            tiers = [rank[classifier.classify(complete_comp(age, d))] for d in distances]
            assert tiers == sorted(tiers)

    def test_classify_all_annotates(self, classifier, complete_comp):
        [annotated] = classifier.classify_all([complete_comp(30, 100)])

        assert annotated.quality == Quality.A
