"""
Unit Tests - Segmentation
"""
from datetime import date, timedelta

import pytest

from studyspace_analytics.analytics.models import (
    CustomerFact,
    PurchaseFact,
    TicketSegment,
    TicketType,
    VisitFact,
    VisitSegment,
)
from studyspace_analytics.analytics.segments import (
    VISIT_SEGMENT_RULES,
    SegmentRule,
    build_segment_features,
    classify_customers,
    classify_ticket_segment,
    classify_visit_segment,
    customers_in_segment,
    favorite_ticket_type,
    infer_ticket_type,
    segment_counts,
)

REF = date(2024, 6, 30)
RANGE_START = REF - timedelta(days=29)


def classify(last_visit, count=0, first_visit=None, previous=None, fixed=False, term=False, **kwargs):
    customer = CustomerFact(
        customer_id="c1",
        first_visit_date=first_visit or REF - timedelta(days=365),
        last_visit_date=last_visit,
    )
    return classify_visit_segment(
        customer,
        recent_visit_count=count,
        reference_date=REF,
        range_start=RANGE_START,
        previous_last_visit=previous,
        has_remaining_fixed_seat=fixed,
        has_remaining_term_ticket=term,
        **kwargs,
    )


class TestVisitSegmentRules:
    """Tests for the ordered visit-segment rule table"""

    def test_at_risk_after_twenty_days(self):
        """Last visit 20 days ago without a fixed seat is at risk"""
        segment = classify(REF - timedelta(days=20), count=1, previous=REF - timedelta(days=35))
        assert segment == VisitSegment.AT_RISK_14

    @pytest.mark.parametrize("days,expected", [
        (13, VisitSegment.VISIT_UNDER10),
        (14, VisitSegment.AT_RISK_14),
        (29, VisitSegment.AT_RISK_14),
        (30, VisitSegment.CHURNED),
    ])
    def test_recency_boundaries(self, days, expected):
        """At-risk starts at 14 days; churned starts after 29"""
        segment = classify(REF - timedelta(days=days), count=1, previous=REF - timedelta(days=40))
        assert segment == expected

    def test_never_visited_is_churned(self):
        """No last visit and no holder resource means churned"""
        assert classify(None) == VisitSegment.CHURNED

    def test_fixed_seat_overrides_churn(self):
        """A fixed-seat holder is never churned or at risk"""
        for days in (20, 45, 300):
            segment = classify(REF - timedelta(days=days), count=0, fixed=True)
            assert segment not in (VisitSegment.CHURNED, VisitSegment.AT_RISK_14)

    def test_term_holder_without_visits_is_general(self):
        """A term ticket holder with no recent visits lands in the general segment"""
        assert classify(REF - timedelta(days=60), count=0, term=True) == VisitSegment.VISIT_UNDER10

    def test_returned_beats_new(self):
        """Dormant before the window then one visit inside is returned, not new"""
        segment = classify(
            REF - timedelta(days=3),
            count=1,
            first_visit=RANGE_START - timedelta(days=90),
            previous=RANGE_START - timedelta(days=45),
        )
        assert segment == VisitSegment.RETURNED

    def test_short_gap_is_not_returned(self):
        """A gap of 29 days before the window is not dormant"""
        segment = classify(REF - timedelta(days=2), count=3, previous=RANGE_START - timedelta(days=29))
        assert segment == VisitSegment.VISIT_UNDER10

    def test_new_customer(self):
        """First visit inside the window is new"""
        segment = classify(REF - timedelta(days=1), count=2, first_visit=REF - timedelta(days=5))
        assert segment == VisitSegment.NEW_0_7

    @pytest.mark.parametrize("count,expected", [
        (25, VisitSegment.VISIT_OVER20),
        (20, VisitSegment.VISIT_OVER20),
        (19, VisitSegment.VISIT_10_20),
        (10, VisitSegment.VISIT_10_20),
        (9, VisitSegment.VISIT_UNDER10),
    ])
    def test_engagement_bands(self, count, expected):
        """Visit-count cutoffs at 20 and 10"""
        segment = classify(REF, count=count, previous=RANGE_START - timedelta(days=1))
        assert segment == expected

    def test_thresholds_come_from_config(self, segmentation_config):
        """Raising the VIP threshold moves a 20-visit customer down"""
        config = segmentation_config.model_copy(update={"vip_min_visits": 25})
        segment = classify(REF, count=20, previous=RANGE_START - timedelta(days=1), config=config)
        assert segment == VisitSegment.VISIT_10_20

    def test_custom_rule_table(self):
        """A custom table without a catch-all falls back to the general segment"""
        rules = [SegmentRule("never", VisitSegment.CHURNED, lambda ctx, cfg: False)]
        assert classify(None, rules=rules) == VisitSegment.VISIT_UNDER10

    def test_rule_table_ends_with_catch_all(self):
        """The default table is total"""
        assert VISIT_SEGMENT_RULES[-1].name == "general"

    @pytest.mark.parametrize("days_ago", [None, 0, 5, 14, 20, 29, 30, 100])
    @pytest.mark.parametrize("count", [0, 1, 10, 20])
    @pytest.mark.parametrize("fixed", [False, True])
    def test_totality(self, days_ago, count, fixed):
        """Every input combination yields exactly one known segment"""
        last = None if days_ago is None else REF - timedelta(days=days_ago)
        segment = classify(last, count=count, fixed=fixed, previous=REF - timedelta(days=120))
        assert segment in set(VisitSegment)


class TestTicketSegment:
    """Tests for ticket segment priority"""

    @pytest.mark.parametrize("flags,expected", [
        ((True, True, True), TicketSegment.FIXED_TICKET),
        ((False, True, True), TicketSegment.TERM_TICKET),
        ((False, False, True), TicketSegment.TIME_TICKET),
        ((False, False, False), TicketSegment.DAY_TICKET),
    ])
    def test_priority(self, flags, expected):
        """fixed > term > time > day"""
        assert classify_ticket_segment(*flags) == expected


class TestTicketTypeInference:
    """Tests for ticket-name inference"""

    @pytest.mark.parametrize("name,expected", [
        ("고정석 4주", TicketType.FIXED),
        ("Fixed seat monthly", TicketType.FIXED),
        ("4주 정기권", TicketType.TERM),
        ("2주 기간권", TicketType.TERM),
        ("시간패키지 50시간", TicketType.TIME),
        ("100시간권", TicketType.TIME),
        ("4시간권", TicketType.DAY),
        ("12 hours", TicketType.DAY),
        ("13 hours", TicketType.TIME),
        ("당일권", TicketType.DAY),
        ("기타 상품", TicketType.TIME),
        ("", TicketType.TIME),
    ])
    def test_infer(self, name, expected):
        """Keyword and hour-count rules"""
        assert infer_ticket_type(name) == expected

    def test_favorite_ignores_refunds(self):
        """Zero-amount purchases do not count"""
        purchases = [
            PurchaseFact("c1", REF, "4주 정기권", 0.0),
            PurchaseFact("c1", REF, "4주 정기권", 0.0),
            PurchaseFact("c1", REF, "당일권", 6000.0),
        ]
        assert favorite_ticket_type(purchases) == TicketType.DAY

    def test_favorite_tie_prefers_lower_class(self):
        """Ties resolve to the lowest ticket class"""
        purchases = [
            PurchaseFact("c1", REF, "4주 정기권", 160000.0),
            PurchaseFact("c1", REF, "당일권", 6000.0),
        ]
        assert favorite_ticket_type(purchases) == TicketType.DAY

    def test_favorite_without_purchases(self):
        assert favorite_ticket_type([]) is None


class TestSegmentFeatures:
    """Tests for batch feature derivation"""

    def test_features(self):
        """Last visit, window count and previous last visit"""
        visits = [
            VisitFact("c1", RANGE_START - timedelta(days=40)),
            VisitFact("c1", RANGE_START - timedelta(days=10)),
            VisitFact("c1", RANGE_START + timedelta(days=1)),
            VisitFact("c1", REF - timedelta(days=1), has_remaining_fixed_seat=True),
            VisitFact("c1", REF + timedelta(days=3)),
        ]
        features = build_segment_features(visits, as_of=REF, range_start=RANGE_START)

        feat = features["c1"]
        assert feat.last_visit == REF - timedelta(days=1)
        assert feat.recent_visit_count == 2
        assert feat.previous_last_visit == RANGE_START - timedelta(days=10)
        assert feat.has_remaining_fixed_seat is True

    def test_no_visits(self):
        assert build_segment_features([], as_of=REF, range_start=RANGE_START) == {}

    def test_sample_population(self, sample_customers, sample_visits):
        """Each sample customer lands in its intended segment"""
        features = build_segment_features(sample_visits, as_of=REF, range_start=RANGE_START)
        segments = classify_customers(sample_customers, features, REF, RANGE_START)

        assert segments == {
            "vip": VisitSegment.VISIT_OVER20,
            "regular": VisitSegment.VISIT_10_20,
            "at_risk": VisitSegment.AT_RISK_14,
            "churned": VisitSegment.CHURNED,
            "newbie": VisitSegment.NEW_0_7,
            "returner": VisitSegment.RETURNED,
        }

    def test_future_customers_skipped(self):
        """Customers whose first visit is after the reference date are not classified"""
        customers = [CustomerFact("later", REF + timedelta(days=1), REF + timedelta(days=1))]
        assert classify_customers(customers, {}, REF, RANGE_START) == {}

    def test_counts_and_members(self, sample_customers, sample_visits):
        """Counts are zero-filled and conserve the population"""
        features = build_segment_features(sample_visits, as_of=REF, range_start=RANGE_START)
        segments = classify_customers(sample_customers, features, REF, RANGE_START)

        counts = segment_counts(segments)
        assert set(counts) == set(VisitSegment)
        assert sum(counts.values()) == len(sample_customers)
        assert customers_in_segment(segments, VisitSegment.CHURNED) == ["churned"]
