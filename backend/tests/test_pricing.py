# backend/tests/test_pricing.py
import pytest

from pricing import (
    DEFAULT_TIER_TABLES, PaymentRow, PricingError, PricingState, add_payment_row, apply_pricing_change,
    delete_payment_row, derive_payment_plan, new_pricing_state, plan_percent_warning, round_half_up,
    tier_key_for_count, update_payment_row,
)


def bases(state):
    return [r.base for r in state.payment_plan]


class TestTotals:
    def test_single_applicant_ils_default_plan(self):
        s = new_pricing_state(currency="ILS", applicant_count=1)
        assert s.total_amount == 15000
        assert s.final_amount == 15000
        assert [r.percent for r in s.payment_plan] == [50, 25, 25]
        assert bases(s) == [7500, 3750, 3750]
        assert [r.value for r in s.payment_plan] == ["7500 + 1350", "3750 + 675", "3750 + 675"]
        assert [r.label for r in s.payment_plan] == ["First Payment", "Intermediate Payment", "Final Payment"]

    def test_non_vat_currency_has_no_vat(self):
        s = new_pricing_state(currency="USD", applicant_count=1, vat_included=True)
        assert bases(s) == [2500, 1250, 1250]
        assert all(r.vat == 0 for r in s.payment_plan)
        assert s.payment_plan[0].value == "2500"

    def test_vat_excluded_for_vat_currency(self):
        s = apply_pricing_change(new_pricing_state(currency="₪"), {"vat_included": False})
        assert all(r.vat == 0 for r in s.payment_plan)

    @pytest.mark.parametrize("count", list(range(1, 21)) + [50])
    def test_total_and_final_follow_tier_and_discount(self, count):
        s = new_pricing_state(currency="USD", applicant_count=count, discount_percentage=15)
        unit = DEFAULT_TIER_TABLES["USD"][tier_key_for_count(count)]
        assert s.total_amount == unit * count
        assert s.final_amount == s.total_amount - s.discount_amount
        assert s.discount_amount == round_half_up(s.total_amount * 15 / 100)

    def test_applicant_count_clamped(self):
        s = apply_pricing_change(new_pricing_state(currency="USD"), {"applicant_count": 0})
        assert s.applicant_count == 1
        assert s.total_amount == 5000


class TestPlan:
    def test_plan_conserves_discounted_total(self):
        s = new_pricing_state(currency="ILS", applicant_count=3, archival_research_fee=1000,
                              discount_percentage=5)
        assert s.payment_plan[0].label == "Archival Research"
        assert s.payment_plan[0].base == 1000
        assert s.payment_plan[0].vat == 0
        assert abs(sum(bases(s)) - s.discounted_base_total) <= len(s.payment_plan)

    def test_derivation_is_idempotent(self):
        s = new_pricing_state(currency="ILS", applicant_count=5, archival_research_fee=750,
                              discount_percentage=10)
        once = derive_payment_plan(s)
        assert derive_payment_plan(once).to_dict() == once.to_dict()

    def test_last_instalment_relabelled_final(self):
        s = add_payment_row(new_pricing_state(currency="USD"))
        assert len(s.payment_plan) == 4
        assert s.payment_plan[-1].label == "Final Payment"

    def test_percent_edit_reweights_and_warns(self):
        s = update_payment_row(new_pricing_state(currency="ILS"), 0, "percent", 60)
        assert s.payment_plan[0].base == round_half_up(15000 * 60 / 110)
        assert "110" in plan_percent_warning(s.payment_plan)

    def test_value_edit_recomputes_percent(self):
        s = update_payment_row(new_pricing_state(currency="USD"), 0, "value", "2000")
        assert s.payment_plan[0].percent == 40
        s = update_payment_row(new_pricing_state(currency="ILS"), 1, "value", "7500 + 1350")
        assert s.payment_plan[1].percent == 50

    @pytest.mark.parametrize("currency,value", [("USD", "2500"), ("ILS", "7500 + 1350")])
    def test_reentering_a_value_with_archival_row_is_stable(self, currency, value):
        s = new_pricing_state(currency=currency, archival_research_fee=1000)
        assert s.payment_plan[0].label == "Archival Research"
        assert s.payment_plan[1].value == value
        after = update_payment_row(s, 1, "value", value)
        assert after.payment_plan[1].percent == 50
        assert after.to_dict() == s.to_dict()

    def test_archival_row_value_is_not_editable(self):
        s = new_pricing_state(currency="USD", archival_research_fee=1000)
        with pytest.raises(PricingError):
            update_payment_row(s, 0, "value", "500")

    def test_text_fields_editable(self):
        s = update_payment_row(new_pricing_state(currency="USD"), 1, "due_date", "March 1")
        assert s.payment_plan[1].due_date == "March 1"
        with pytest.raises(PricingError):
            update_payment_row(s, 1, "base", 1)

    def test_deleting_every_row_regenerates_default_plan(self):
        s = new_pricing_state(currency="USD")
        for _ in range(3):
            s = delete_payment_row(s, 0)
        assert s.payment_plan == []
        assert [r.percent for r in derive_payment_plan(s).payment_plan] == [50, 25, 25]
        with pytest.raises(PricingError):
            delete_payment_row(s, 0)

    def test_full_plan_sums_to_100_without_warning(self):
        assert plan_percent_warning(new_pricing_state(currency="USD").payment_plan) is None
        assert plan_percent_warning([]) == "Payment plan is empty"


class TestChanges:
    def test_currency_change_rebuilds_tiers(self):
        s = apply_pricing_change(new_pricing_state(currency="USD", applicant_count=2), {"currency": "₪"})
        assert s.pricing_tiers == DEFAULT_TIER_TABLES["ILS"]
        assert s.total_amount == 28000
        assert s.payment_plan[0].vat > 0

    def test_same_family_currency_keeps_custom_tiers(self):
        s = apply_pricing_change(new_pricing_state(currency="USD"), {"pricing_tiers": {"1": 6000}})
        s = apply_pricing_change(s, {"currency": "$"})
        assert s.pricing_tiers["1"] == 6000
        assert s.total_amount == 6000

    def test_tier_price_change_recomputes_totals(self):
        s = new_pricing_state(currency="USD", applicant_count=5, discount_percentage=10)
        s = apply_pricing_change(s, {"pricing_tiers": {"4-7": 4000}})
        assert s.total_amount == 20000
        assert s.discount_amount == 2000
        assert s.final_amount == 18000

    @pytest.mark.parametrize("flag,expected", [("false", False), ("0", False), ("True", True), (False, False), (1, True)])
    def test_vat_flag_parses_form_strings(self, flag, expected):
        s = apply_pricing_change(new_pricing_state(currency="ILS"), {"vat_included": flag})
        assert s.vat_included is expected
        assert (s.payment_plan[0].vat > 0) is expected

    @pytest.mark.parametrize("changes", [
        {"discount_percentage": 7},
        {"bogus": 1},
        {"pricing_tiers": {"99": 1}},
        {"pricing_tiers": {"1": -5}},
        {"archival_research_fee": -1},
        {"currency": ""},
        {"vat_included": "maybe"},
    ])
    def test_invalid_changes_raise(self, changes):
        with pytest.raises(PricingError):
            apply_pricing_change(new_pricing_state(currency="USD"), changes)


class TestSerialisation:
    def test_legacy_values_are_parsed(self):
        row = PaymentRow.from_dict({"percent": 50, "value": "7500 + 1350"})
        assert (row.base, row.vat) == (7500, 1350)
        row = PaymentRow.from_dict({"due_percent": 25, "value": 3750})
        assert (row.percent, row.base, row.vat) == (25, 3750, 0)

    def test_round_trip_through_dict(self):
        s = new_pricing_state(currency="ILS", applicant_count=4, archival_research_fee=500)
        data = s.to_dict()
        assert data["payment_plan"][1]["value_base"] == s.payment_plan[1].base
        assert "value" in data["payment_plan"][1]
        assert PricingState.from_dict(data).to_dict() == data


def test_tier_bands():
    assert [tier_key_for_count(n) for n in (0, 1, 2, 3, 4, 7, 8, 9, 10, 15, 16, 100)] == [
        "1", "1", "2", "3", "4-7", "4-7", "8-9", "8-9", "10-15", "10-15", "16+", "16+"]


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(19237.5) == 19238


def test_stored_string_vat_flag_is_parsed():
    data = new_pricing_state(currency="ILS").to_dict()
    data["vat_included"] = "false"
    assert PricingState.from_dict(data).vat_included is False
    data["vat_included"] = "garbled"
    assert PricingState.from_dict(data).vat_included is True
