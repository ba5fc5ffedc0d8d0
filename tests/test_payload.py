"""
Tests for customizations payload migration.

Stored payloads from older clients must load into the current model without
raising, field by field.
"""
import json

from cart_engine.cart_store import CartLineItem
from cart_engine.payload import PAYLOAD_VERSION, CustomizationsPayload, migrate_payload
from cart_engine.tracing import DecisionTrace


class TestLegacyPayloads:
    """Test version 1 payloads."""

    def test_drinks_list_becomes_free_and_paid_maps(self):
        payload = migrate_payload({
            "menu_item_id": "m_burger",
            "drinks": [
                {"id": "d_cola", "name": "Cola", "price": 15, "is_free": False},
                {"id": "d_water", "name": "Water", "price": 0, "is_free": "true"},
            ],
            "drink_quantities": {"d_cola": 2, "d_water": 1},
        })
        assert payload.payload_version == PAYLOAD_VERSION
        assert payload.paid_drink_quantities == {"d_cola": 2}
        assert payload.free_drink_quantities == {"d_water": 1}

    def test_string_slot_keys_and_list_slots(self):
        payload = migrate_payload({
            "is_special_pack": True,
            "pack_selections": {"Burger": {"0": "Poulet", "1": "Viande"}},
            "pack_supplement_selections": {"Burger": [["Cheddar"], []]},
        })
        assert payload.pack_selections == {"Burger": {0: "Poulet", 1: "Viande"}}
        assert payload.pack_supplement_selections == {"Burger": {0: ["Cheddar"], 1: []}}

    def test_unwanted_preference_and_bare_supplement_names(self):
        payload = migrate_payload({
            "ingredient_preferences": {"Oignons": "unwanted", "Tomate": "neutral"},
            "supplements": ["cheese"],
        })
        assert payload.ingredient_preferences == {"Oignons": "none"}
        assert payload.supplements[0].name == "cheese"
        assert payload.supplements[0].price == 0.0

    def test_variant_stored_as_object(self):
        payload = migrate_payload({"variant": {"id": 7, "name": "Classic"}})
        assert payload.variant_id == "7"
        assert payload.variant == "Classic"

    def test_aliases(self):
        payload = migrate_payload({
            "quantity": "3",
            "special_instructions": "bien cuit",
            "drink_size_by_id": {"d_cola": "50cl"},
        })
        assert payload.main_item_quantity == 3
        assert payload.note == "bien cuit"
        assert payload.drink_sizes == {"d_cola": "50cl"}

    def test_zero_quantities_pruned(self):
        payload = migrate_payload({
            "payload_version": 2,
            "free_drink_quantities": {"d_water": 0, "d_juice": 1},
            "paid_drink_quantities": {"d_cola": 0},
        })
        assert payload.free_drink_quantities == {"d_juice": 1}
        assert payload.paid_drink_quantities == {}


class TestMalformedPayloads:
    """Unusable fields are dropped, never fatal."""

    def test_bad_field_dropped_and_traced(self):
        trace = DecisionTrace()
        payload = migrate_payload(
            {"menu_item_id": "m_burger", "drinks": {"d_cola": 1}, "note": ["x"]}, trace=trace,
        )
        assert payload.menu_item_id == "m_burger"
        assert payload.drinks == []
        assert payload.note == ""
        assert {e.fields["field"] for e in trace.events("payload.field_dropped")} == {"drinks", "note"}

    def test_invalid_json_string(self):
        assert migrate_payload("{not json") == CustomizationsPayload()

    def test_json_string_and_none(self):
        payload = migrate_payload(json.dumps({"menu_item_id": "m_lto", "is_limited_offer": 1}))
        assert payload.is_limited_offer is True
        assert migrate_payload(None).menu_item_id == ""

    def test_quantity_floor(self):
        assert migrate_payload({"main_item_quantity": 0}).main_item_quantity == 1


class TestWireFormat:
    def test_slot_keys_written_as_strings(self):
        payload = CustomizationsPayload(pack_selections={"Burger": {0: "Poulet"}})
        assert payload.to_json()["pack_selections"] == {"Burger": {"0": "Poulet"}}

    def test_line_item_migrates_raw_customizations(self):
        item = CartLineItem(
            id="1000_addtocart",
            name="Burger",
            unit_price=200.0,
            restaurant_id="r1",
            customizations={"drinks": [{"id": "d_cola", "price": 15}]},
        )
        assert item.customizations.paid_drink_quantities == {"d_cola": 1}
        assert item.to_dict()["customizations"]["payload_version"] == PAYLOAD_VERSION
