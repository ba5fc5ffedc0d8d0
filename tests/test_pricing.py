"""
Tests for the price calculator.
"""
import pytest

from cart_engine.pricing import PriceBaselinePolicy, PriceCalculator, prices_differ
from cart_engine.selection import SelectionState


@pytest.fixture
def calculator(catalog, trace):
    return PriceCalculator(catalog, trace)


def _burger(**kwargs):
    fields = {"menu_item_id": "m_burger", "restaurant_id": "r1", "variant_id": "v_classic",
              "pricing_id": "p_menu"}
    fields.update(kwargs)
    return SelectionState(**fields)


def _pack(**kwargs):
    fields = {"menu_item_id": "m_pack", "restaurant_id": "r1", "is_special_pack": True,
              "pricing_id": "p_pack",
              "pack_selections": {"v_burger": {0: "Poulet", 1: "Viande"}}}
    fields.update(kwargs)
    return SelectionState(**fields)


class TestUnitPrice:
    """Base price, size surcharge and global supplements per item type."""

    def test_regular_price_comes_from_pricing_option(self, calculator):
        selection = _burger()
        assert calculator.base_price(selection) == 0.0
        assert calculator.size_surcharge(selection) == 200.0
        assert calculator.unit_price(selection) == 200.0

    def test_regular_with_supplements(self, calculator):
        selection = _burger(supplements=["cheese", "bacon"])
        assert calculator.unit_price(selection) == 255.0

    def test_limited_offer_without_size(self, calculator):
        selection = SelectionState(menu_item_id="m_lto", restaurant_id="r1", is_limited_offer=True)
        assert calculator.unit_price(selection) == 120.0

    def test_limited_offer_size_is_a_surcharge(self, calculator):
        selection = SelectionState(
            menu_item_id="m_lto", restaurant_id="r1", is_limited_offer=True, pricing_id="p_lto_large",
        )
        assert calculator.base_price(selection) == 120.0
        assert calculator.size_surcharge(selection) == 30.0
        assert calculator.unit_price(selection) == 150.0

    def test_pack_base_is_pricing_price(self, calculator):
        selection = _pack(supplements=["cheese"])
        assert calculator.base_price(selection) == 200.0
        assert calculator.size_surcharge(selection) == 0.0
        assert calculator.unit_price(selection) == 220.0

    def test_pack_prefixed_names_not_global(self, calculator):
        selection = _burger(supplements=["cheese", "pack_Cheddar"])
        assert calculator.global_supplement_prices(selection) == {"cheese": 20.0}

    def test_unknown_supplement_priced_zero_and_traced(self, calculator, trace):
        selection = _burger(supplements=["truffle"])
        assert calculator.unit_price(selection) == 200.0
        event = trace.events("catalog.unknown_reference")[0]
        assert event.fields["reference"] == "truffle"

    def test_unknown_menu_item_prices_zero(self, calculator, trace):
        selection = SelectionState(menu_item_id="ghost")
        assert calculator.unit_price(selection) == 0.0
        assert trace.events("catalog.unknown_reference")


class TestLineTotal:
    """total = unit_price * quantity + pack supplements + paid drinks."""

    def test_regular_example(self, calculator):
        selection = _burger(supplements=["cheese"], quantity=3)
        assert calculator.line_total(selection, paid_drinks_contribution=30.0) == 690.0

    def test_pack_total_is_for_one_unit(self, calculator):
        selection = _pack(supplements=["cheese"], quantity=3)
        assert calculator.line_total(selection) == 220.0
        assert calculator.line_total(selection, 30.0) == 250.0

    def test_pack_supplements_added_once(self, calculator):
        selection = _pack(pack_supplement_selections={"v_burger": {0: ["Cheddar"], 1: ["Cheddar", "Oignons"]}})
        assert calculator.pack_supplement_prices(selection) == {
            "v_burger": {0: {"Cheddar": 50.0}, 1: {"Cheddar": 50.0, "Oignons": 0.0}},
        }
        assert calculator.pack_supplement_total(selection) == 100.0
        assert calculator.line_total(selection) == 300.0

    def test_total_for_line_item(self):
        assert PriceCalculator.total_for_line_item(220.0, 3, 0.0, 30.0) == 690.0


class TestPriceHelpers:
    def test_prices_differ_uses_epsilon(self):
        assert not prices_differ(10.0, 10.005)
        assert prices_differ(10.0, 10.02)

    @pytest.mark.parametrize("value,expected", [
        (None, PriceBaselinePolicy.RECOMPUTE),
        ("recompute", PriceBaselinePolicy.RECOMPUTE),
        ("PRESERVE_STORED", PriceBaselinePolicy.PRESERVE_STORED),
        ("bogus", PriceBaselinePolicy.RECOMPUTE),
    ])
    def test_policy_from_setting(self, value, expected):
        assert PriceBaselinePolicy.from_setting(value) == expected
