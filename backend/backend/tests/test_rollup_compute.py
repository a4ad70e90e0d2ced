import logging
from decimal import Decimal
from types import SimpleNamespace

import pytest

from services.costing.rollup import COST_FIELDS, MARGIN_LIMIT, compute_summary
from services.quotes.store import QuoteView

D = Decimal


def quote(total_amount="10000.00", labour_estimate="1500.00"):
    return QuoteView(
        id="q-1",
        status="draft",
        total_amount=D(total_amount) if total_amount is not None else None,
        labour_estimate=D(labour_estimate) if labour_estimate is not None else None,
        job_id=None,
    )


def component(category, total_cost, unit="count", quantity="1", id="c"):
    return SimpleNamespace(id=id, category=category, unit=unit, quantity=quantity, total_cost=total_cost)


def trip(travel_cost_total, duration_minutes=None, id="t"):
    return SimpleNamespace(id=id, travel_cost_total=travel_cost_total, duration_minutes=duration_minutes)


def admin(total_cost, duration_minutes=0, id="a"):
    return SimpleNamespace(id=id, total_cost=total_cost, duration_minutes=duration_minutes)


def ground(additional_cost, id="g"):
    return SimpleNamespace(id=id, additional_cost=additional_cost)


class TestComputeSummary:
    """Pure P&L reduction over in-memory records"""

    def test_scenario_a(self):
        figures = compute_summary(
            quote(),
            [
                component("materials", D("4000.00")),
                component("install_labour", D("100.00"), unit="hours", quantity=D("2")),
            ],
            [trip(D("80.00"), duration_minutes=45)],
            [admin(D("40.00"), duration_minutes=30)],
            [],
        )
        assert figures.total_cost == D("4220.00")
        assert figures.profit_amount == D("5780.00")
        assert figures.profit_margin_percent == D("57.80")
        assert figures.materials_cost == D("4000.00")
        assert figures.installation_labour_cost == D("100.00")
        assert figures.travel_cost == D("80.00")
        assert figures.admin_cost == D("40.00")
        assert figures.total_install_minutes == 120
        assert figures.total_travel_minutes == 45
        assert figures.total_admin_minutes == 30
        assert figures.actual_trip_count == 1

    def test_unpriced_draft_has_zero_margin(self):
        """Scenario B: zero revenue never divides"""
        figures = compute_summary(
            quote(total_amount="0"),
            [component("materials", D("250.00")), component("third_party", D("75.50"))],
            [trip(D("20.00"))],
            [],
            [ground(D("300.00"))],
        )
        assert figures.total_revenue == D("0.00")
        assert figures.total_cost == D("645.50")
        assert figures.profit_amount == D("-645.50")
        assert figures.profit_margin_percent == D("0.00")

    def test_negative_revenue_margin_is_zero(self):
        figures = compute_summary(quote(total_amount="-100.00"), [component("materials", D("10"))], [], [], [])
        assert figures.profit_margin_percent == D("0.00")

    def test_loss_making_quote_has_negative_margin(self):
        figures = compute_summary(quote(total_amount="1000.00"), [component("materials", D("1500.00"))], [], [], [])
        assert figures.profit_amount == D("-500.00")
        assert figures.profit_margin_percent == D("-50.00")

    def test_margin_rounds_half_up_to_two_places(self):
        # 1/3 of revenue left as profit -> 33.333...%
        figures = compute_summary(quote(total_amount="300.00"), [component("materials", D("200.00"))], [], [], [])
        assert figures.profit_margin_percent == D("33.33")

    def test_total_is_exact_sum_of_categories(self):
        components = [component("materials", D("0.10"), id=f"m{i}") for i in range(33)]
        components += [
            component("manufacturing_labour", D("12.345"), unit="hours", quantity=D("0.5")),
            component("supplier_fees", D("0.01")),
            component("third_party", D("199.99")),
        ]
        figures = compute_summary(
            quote(), components, [trip(D("0.07")), trip(None)], [admin(D("1.11"))], [ground(D("2.22"))]
        )
        assert figures.materials_cost == D("3.30")
        assert figures.manufacturing_labour_cost == D("12.35")
        assert figures.total_cost == sum((getattr(figures, f) for f in COST_FIELDS), D("0"))
        assert figures.total_cost == D("219.05")

    def test_every_category_is_routed(self):
        figures = compute_summary(
            quote(),
            [
                component("materials", D("1")),
                component("manufacturing_labour", D("2"), unit="hours"),
                component("install_labour", D("3"), unit="hours"),
                component("supplier_fees", D("4")),
                component("third_party", D("5")),
            ],
            [trip(D("6"))],
            [admin(D("7"))],
            [ground(D("8"))],
        )
        assert [getattr(figures, f) for f in COST_FIELDS] == [
            D("1.00"), D("2.00"), D("3.00"), D("6.00"), D("7.00"), D("4.00"), D("5.00"), D("8.00"),
        ]
        assert figures.total_cost == D("36.00")

    def test_stored_total_wins_over_quantity_times_unit_cost(self):
        c = component("materials", D("99.00"), quantity=D("10"))
        c.unit_cost = D("50.00")
        figures = compute_summary(quote(), [c], [], [], [])
        assert figures.materials_cost == D("99.00")

    def test_empty_quote(self):
        figures = compute_summary(quote(labour_estimate=None), [], [], [], [])
        assert figures.total_cost == D("0.00")
        assert figures.profit_amount == D("10000.00")
        assert figures.profit_margin_percent == D("100.00")
        assert figures.actual_trip_count == 0
        assert figures.is_supply_only is True


class TestMarginBounds:
    def test_token_revenue_against_huge_cost_is_clamped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(quote(total_amount="0.01"), [component("materials", D("1000000000"))],
                                      [], [], [])
        assert figures.profit_amount == D("-999999999.99")
        assert figures.profit_margin_percent == -MARGIN_LIMIT
        assert "clamped" in caplog.text

    def test_ordinary_loss_is_not_clamped(self):
        figures = compute_summary(quote(total_amount="100.00"), [component("materials", D("350.00"))], [], [], [])
        assert figures.profit_margin_percent == D("-250.00")


class TestLabourMinutes:
    def test_hours_convert_to_minutes(self):
        figures = compute_summary(
            quote(),
            [
                component("manufacturing_labour", D("90"), unit="hours", quantity=D("1.5")),
                component("manufacturing_labour", D("30"), unit="hours", quantity=D("0.25")),
                component("install_labour", D("200"), unit="hours", quantity=D("4")),
            ],
            [], [], [],
        )
        assert figures.total_manufacturing_minutes == 105
        assert figures.total_install_minutes == 240

    def test_materials_quantity_is_never_minutes(self):
        figures = compute_summary(
            quote(),
            [component("materials", D("500"), unit="length", quantity=D("42"))],
            [], [], [],
        )
        assert figures.total_manufacturing_minutes == 0
        assert figures.total_install_minutes == 0

    def test_labour_in_a_non_hour_unit_adds_cost_but_no_minutes(self):
        figures = compute_summary(
            quote(),
            [component("install_labour", D("80"), unit="count", quantity=D("3"))],
            [], [], [],
        )
        assert figures.installation_labour_cost == D("80.00")
        assert figures.total_install_minutes == 0

    def test_fractional_minutes_round_half_up(self):
        figures = compute_summary(
            quote(),
            [component("install_labour", D("1"), unit="hours", quantity=D("0.0125"))],
            [], [], [],
        )
        assert figures.total_install_minutes == 1


class TestSupplyOnly:
    @pytest.mark.parametrize("labour_estimate, expected", [
        (None, True),
        ("0", True),
        ("0.00", True),
        ("1200.00", False),
    ])
    def test_classification(self, labour_estimate, expected):
        figures = compute_summary(quote(labour_estimate=labour_estimate), [], [], [], [])
        assert figures.is_supply_only is expected


class TestMalformedRecords:
    """One bad record contributes zero and never blocks the rollup"""

    @pytest.mark.parametrize("raw", ["abc", "NaN", D("NaN"), float("inf"), D("-Infinity")])
    def test_bad_component_total_counts_as_zero(self, raw, caplog):
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(
                quote(),
                [component("materials", raw, id="bad"), component("materials", D("100.00"), id="good")],
                [], [], [],
            )
        assert figures.materials_cost == D("100.00")
        assert figures.total_cost == D("100.00")
        assert "bad" in caplog.text
        assert "total_cost" in caplog.text

    def test_null_values_are_silent_zeroes(self, caplog):
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(
                quote(),
                [],
                [trip(None, duration_minutes=None)],
                [admin(None, duration_minutes=None)],
                [ground(None)],
            )
        assert figures.total_cost == D("0.00")
        assert figures.actual_trip_count == 1
        assert caplog.text == ""

    def test_bad_trip_duration_is_isolated(self, caplog):
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(
                quote(), [], [trip(D("10"), duration_minutes="soon", id="t-bad"), trip(D("5"), duration_minutes=20)],
                [], [],
            )
        assert figures.total_travel_minutes == 20
        assert figures.travel_cost == D("15.00")
        assert "t-bad" in caplog.text

    def test_unknown_category_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(
                quote(), [component("travel", D("55.00"), id="legacy"), component("materials", D("5"))], [], [], []
            )
        assert figures.total_cost == D("5.00")
        assert "legacy" in caplog.text

    def test_bad_revenue_counts_as_zero(self, caplog):
        q = QuoteView(id="q-x", status="draft", total_amount="n/a", labour_estimate=None, job_id=None)
        with caplog.at_level(logging.WARNING, logger="services.costing.rollup"):
            figures = compute_summary(q, [component("materials", D("10"))], [], [], [])
        assert figures.total_revenue == D("0.00")
        assert figures.profit_margin_percent == D("0.00")
        assert "q-x" in caplog.text


class TestPayload:
    def test_money_serializes_as_strings(self):
        figures = compute_summary(quote(), [component("materials", D("4000"))], [], [], [])
        payload = figures.as_payload()
        assert payload["total_cost"] == "4000.00"
        assert payload["profit_margin_percent"] == "60.00"
        assert payload["actual_trip_count"] == 0
        assert payload["is_supply_only"] is False
