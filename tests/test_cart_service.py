"""
Tests for the cart service: ordering sessions, commits into an existing
restaurant order, edits and removals against a cart store.
"""
import pytest

from cart_engine.builder import IncompleteSelectionError
from cart_engine.cart_store import LineItemNotFoundError
from cart_engine.catalog import UnknownMenuItemError
from cart_engine.drinks import GlobalDrinkPool
from cart_engine.notifications import CatalogUpdate, CatalogUpdateCoalescer, CatalogUpdateKind, catalog_applier
from cart_engine.pricing import PriceBaselinePolicy
from cart_engine.selection import SelectionState
from cart_engine.services.cart import CartService, restaurant_lock


def _burger_session(service, variant_id="v_classic"):
    session = service.start_order("m_burger")
    session.selection.set_variant(variant_id)
    return session


class TestOrderingSession:
    def test_start_order_defaults(self, service):
        session = service.start_order("m_burger")
        assert session.selection.pricing_id == "p_menu"
        assert session.selection.restaurant_id == "r1"
        assert session.queue.has_any() is False

    def test_unknown_menu_item(self, service):
        with pytest.raises(UnknownMenuItemError):
            service.start_order("ghost")

    def test_save_and_add_another(self, service, store):
        session = _burger_session(service)
        session.selection.toggle_supplement("cheese")
        session.save_and_add_another()
        assert session.selection.supplements == []
        assert session.selection.pricing_id == "p_menu"

        session.selection.set_variant("v_spicy")
        session.save_and_add_another()
        items = service.commit(session)

        assert [i.name for i in items] == ["Burger - Classic", "Burger - Spicy"]
        assert [i.unit_price for i in items] == [220.0, 200.0]
        assert len(session.queue) == 0
        assert len(store.list_by_restaurant("r1")) == 2

    def test_incomplete_commit_writes_nothing(self, service, store):
        session = service.start_order("m_burger")
        with pytest.raises(IncompleteSelectionError):
            service.commit(session)
        assert store.list_by_restaurant("r1") == []


class TestSinglePayer:
    """One payer per restaurant order, across commits."""

    def test_second_commit_merges_paid_drinks_into_payer(self, service, store):
        first = _burger_session(service)
        first.selection.toggle_supplement("cheese")
        first.pool.set_paid_quantity("d_cola", 1)
        service.commit(first)

        second = service.start_order("m_lto")
        second.pool.set_paid_quantity("d_juice", 1)
        service.commit(second)

        payer, lto = store.list_by_restaurant("r1")
        assert payer.unit_price == pytest.approx(245.0)
        assert payer.customizations.paid_drink_quantities == {"d_cola": 1, "d_juice": 1}
        assert lto.unit_price == pytest.approx(120.0)
        assert lto.customizations.paid_drink_quantities == {}
        assert service.restaurant_total("r1") == pytest.approx(365.0)

    def test_commit_without_restaurant_joins_catalog_restaurant(self, service, store):
        burger = _burger_session(service)
        burger.pool.set_paid_quantity("d_cola", 1)
        service.commit(burger)

        service.commit_selection(
            SelectionState(menu_item_id="m_lto"), None,
            GlobalDrinkPool(paid_drink_quantities={"d_juice": 1}),
        )

        payer, lto = store.list_by_restaurant("r1")
        assert lto.restaurant_id == "r1"
        assert payer.unit_price == pytest.approx(225.0)
        assert payer.customizations.paid_drink_quantities == {"d_cola": 1, "d_juice": 1}
        assert store.list_by_restaurant("") == []

    def test_commit_unknown_menu_item(self, service, store):
        with pytest.raises(UnknownMenuItemError):
            service.commit_selection(SelectionState(menu_item_id="ghost"), None, GlobalDrinkPool())
        assert store.list_all() == []

    def test_restaurants_have_separate_payers(self, service, store):
        burger = _burger_session(service)
        burger.pool.set_paid_quantity("d_cola", 1)
        service.commit(burger)

        tacos = service.start_order("m_tacos")
        tacos.pool.set_paid_quantity("d_tea", 1)
        service.commit(tacos)

        assert store.list_by_restaurant("r1")[0].unit_price == 215.0
        assert store.list_by_restaurant("r2")[0].unit_price == 88.0


class TestEditAndRemove:
    def test_save_edit_keeps_identity_fields(self, service, store):
        session = _burger_session(service)
        item = service.commit(session)[0]

        edit = service.open_edit(item.id)
        edit.selection.menu_item_id = "m_tacos"
        edit.selection.set_variant("v_spicy")
        service.save_edit(item.id, edit.selection, edit.pool)

        saved = store.get_line_item(item.id)
        assert saved.menu_item_id == "m_burger"
        assert saved.name == "Burger - Spicy"

    def test_edit_unknown_item(self, service):
        with pytest.raises(LineItemNotFoundError):
            service.open_edit("404_addtocart")
        with pytest.raises(LineItemNotFoundError):
            service.remove_line_item("404_addtocart")

    def test_pack_edit_round_trip_through_store(self, service, store):
        session = service.start_order("m_pack")
        session.selection.set_pack_slot_option("v_burger", 0, "Poulet")
        session.selection.set_pack_slot_option("v_burger", 1, "Viande")
        session.selection.set_quantity(3)
        session.pool.set_paid_quantity("d_cola", 2)
        units = service.commit(session)

        edit = service.open_edit(units[0].id)
        edit.pool.set_paid_quantity("d_cola", 0)
        changes = service.save_edit(units[0].id, edit.selection, edit.pool)

        assert [i.id for i in changes.updated] == [units[0].id]
        assert [i.unit_price for i in store.list_by_restaurant("r1")] == [200.0, 200.0, 200.0]

    def test_remove_payer(self, service, store):
        first = _burger_session(service)
        first.pool.set_paid_quantity("d_cola", 2)
        service.commit(first)
        service.commit(service.start_order("m_lto"))
        payer_id = store.list_by_restaurant("r1")[0].id

        service.remove_line_item(payer_id)

        (remaining,) = store.list_by_restaurant("r1")
        assert remaining.unit_price == pytest.approx(150.0)
        assert remaining.customizations.paid_drink_quantities == {"d_cola": 2}

    def test_preserve_stored_policy_from_constructor(self, catalog, store, id_factory):
        service = CartService(
            catalog, store, policy=PriceBaselinePolicy.PRESERVE_STORED, id_factory=id_factory,
        )
        assert service.reconciler.policy == PriceBaselinePolicy.PRESERVE_STORED


class TestQuantityAndClear:
    """Cart screen quantity changes and clearing a restaurant's cart."""

    def test_update_quantity_bills_paid_drinks_once(self, service, store):
        session = _burger_session(service)
        session.selection.toggle_supplement("cheese")
        session.selection.set_quantity(3)
        session.pool.set_paid_quantity("d_cola", 2)
        item = service.commit(session)[0]
        assert item.line_total == pytest.approx(690.0)

        service.update_quantity(item.id, 2)

        saved = store.get_line_item(item.id)
        assert saved.quantity == 2
        assert saved.line_total == pytest.approx(470.0)
        assert service.restaurant_total("r1") == pytest.approx(470.0)

    def test_update_quantity_zero_removes_and_hands_off(self, service, store):
        first = _burger_session(service)
        first.pool.set_paid_quantity("d_cola", 2)
        payer = service.commit(first)[0]
        service.commit(service.start_order("m_lto"))

        changes = service.update_quantity(payer.id, 0)

        assert changes.removed_ids == [payer.id]
        (remaining,) = store.list_by_restaurant("r1")
        assert remaining.unit_price == pytest.approx(150.0)
        assert remaining.customizations.paid_drink_quantities == {"d_cola": 2}

    def test_update_quantity_unknown_item(self, service):
        with pytest.raises(LineItemNotFoundError):
            service.update_quantity("404_addtocart", 2)

    def test_clear_restaurant(self, service, store):
        service.commit(_burger_session(service))
        service.commit(service.start_order("m_tacos"))

        assert service.clear_restaurant("r1") == 1
        assert store.list_by_restaurant("r1") == []
        assert len(store.list_by_restaurant("r2")) == 1
        assert service.clear_restaurant("r1") == 0

class TestCoalescerHold:
    def test_updates_wait_for_commit(self, catalog, store, id_factory):
        coalescer = CatalogUpdateCoalescer(catalog_applier(catalog), window=0.0)
        service = CartService(catalog, store, coalescer=coalescer, id_factory=id_factory)
        seen = []

        original_apply = store.apply_changes

        def apply_and_flush(changes):
            coalescer.push(CatalogUpdate(
                kind=CatalogUpdateKind.AVAILABILITY, target_type="drink", target_id="d_cola",
                is_available=False,
            ))
            seen.append(coalescer.flush())
            original_apply(changes)

        store.apply_changes = apply_and_flush
        service.commit(_burger_session(service))

        assert seen == [[]]
        assert catalog.get_drink("r1", "d_cola").is_available
        assert len(coalescer.flush()) == 1
        assert not catalog.get_drink("r1", "d_cola").is_available


def test_restaurant_lock_is_shared():
    assert restaurant_lock("r1") is restaurant_lock("r1")
    assert restaurant_lock("r1") is not restaurant_lock("r2")
