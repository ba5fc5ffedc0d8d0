"""
Tests for the saved-orders queue ("save and add another").
"""
from cart_engine.saved_orders import SavedOrdersQueue, queue_key
from cart_engine.selection import SelectionState


def _burger(variant_id="v_classic"):
    return SelectionState(
        menu_item_id="m_burger", restaurant_id="r1", variant_id=variant_id, pricing_id="p_menu",
    )


class TestSavedOrdersQueue:
    def test_saved_copy_is_frozen_in_time(self):
        queue = SavedOrdersQueue()
        selection = _burger()
        queue.save(selection)
        selection.toggle_supplement("cheese")

        assert queue.list("v_classic")[0].selection.supplements == []

    def test_grouped_by_variant_and_packs_share_a_key(self):
        queue = SavedOrdersQueue()
        queue.save(_burger("v_classic"))
        queue.save(_burger("v_spicy"))
        queue.save(SelectionState(menu_item_id="m_pack", is_special_pack=True))

        assert len(queue) == 3
        assert len(queue.list("v_spicy")) == 1
        assert len(queue.list("pack")) == 1
        assert queue_key(SelectionState(menu_item_id="m_lto")) == ""

    def test_all_in_creation_order(self):
        queue = SavedOrdersQueue()
        queue.save(_burger("v_spicy"))
        queue.save(_burger("v_classic"))
        queue.save(_burger("v_spicy"))

        assert [o.selection.variant_id for o in queue.all()] == ["v_spicy", "v_classic", "v_spicy"]

    def test_remove(self):
        queue = SavedOrdersQueue()
        queue.save(_burger())

        assert not queue.remove("v_classic", 5)
        assert not queue.remove("v_missing", 0)
        assert queue.remove("v_classic", 0)
        assert not queue.has_any()
        assert queue.list("v_classic") == []

    def test_export_returns_independent_copy(self):
        queue = SavedOrdersQueue()
        saved = queue.save(_burger())
        exported = saved.export()
        exported.set_quantity(5)
        assert saved.selection.quantity == 1

    def test_saved_order_cannot_be_changed_through_its_selection(self):
        queue = SavedOrdersQueue()
        saved = queue.save(_burger())

        saved.selection.supplements.append("cheese")
        saved.selection.set_quantity(4)

        assert saved.export().supplements == []
        assert saved.export().quantity == 1
        assert queue.all()[0].selection.supplements == []

    def test_clear(self):
        queue = SavedOrdersQueue()
        queue.save(_burger())
        queue.clear()
        assert len(queue) == 0
