"""
Tests for the SQLAlchemy cart store and the catalog loader.
"""
import pytest

from cart_engine.builder import LineItemIdFactory, OrderBuilder
from cart_engine.cart_store import CartChangeSet, CartLineItem, LineItemNotFoundError
from cart_engine.catalog import ItemType
from cart_engine.drinks import GlobalDrinkPool
from cart_engine.models import CartLineItemRecord
from cart_engine.selection import SelectionState
from cart_engine.services.cart import CartService
from cart_engine.services.catalog_loader import CatalogCache, build_menu_data
from cart_engine.services.sql_cart_store import SqlCartStore


def _item(item_id, restaurant_id="r1", unit_price=100.0):
    return CartLineItem(
        id=item_id, name="Burger", unit_price=unit_price, restaurant_id=restaurant_id,
        menu_item_id="m_burger",
    )


class TestCatalogLoader:
    def test_menu_loaded_from_tables(self, db_session):
        catalog = CatalogCache().get(db_session)

        assert catalog.get_menu_item("m_pack").item_type == ItemType.SPECIAL_PACK
        assert [v.name for v in catalog.get_variants("m_pack")] == ["Burger", "Frites"]
        assert catalog.get_pricing_option("m_burger", "p_menu").global_supplements == {
            "cheese": 20.0, "bacon": 35.0,
        }
        assert catalog.get_drink("r1", "d_cola").price == 15.0

    def test_cache_reused_until_invalidated(self, db_session):
        cache = CatalogCache()
        first = cache.get(db_session)
        assert cache.get(db_session) is first
        assert cache.peek() is first

        cache.invalidate()
        assert cache.peek() is None
        assert cache.get(db_session) is not first

    def test_build_menu_data_shape(self, db_session):
        data = build_menu_data(db_session)
        assert {i["id"] for i in data["menu_items"]} == {"m_burger", "m_pack", "m_lto", "m_tacos"}
        assert set(data["drinks"]) == {"r1", "r2"}


class TestSqlCartStore:
    """Test persistence of line items."""

    def test_add_and_list_in_creation_order(self, db_session):
        store = SqlCartStore(db_session)
        store.add_line_item(_item("1002_addtocart"))
        store.add_line_item(_item("1001_addtocart"))
        store.add_line_item(_item("1003_addtocart", restaurant_id="r2"))

        assert [i.id for i in store.list_by_restaurant("r1")] == ["1001_addtocart", "1002_addtocart"]
        assert len(store.list_all()) == 3

    def test_update_and_remove(self, db_session):
        store = SqlCartStore(db_session)
        store.add_line_item(_item("1001_addtocart"))

        store.update_line_item("1001_addtocart", _item("1001_addtocart", unit_price=150.0))
        assert store.get_line_item("1001_addtocart").unit_price == 150.0

        store.remove_line_item("1001_addtocart")
        assert store.get_line_item("1001_addtocart") is None
        with pytest.raises(LineItemNotFoundError):
            store.remove_line_item("1001_addtocart")

    def test_failed_change_set_rolls_back(self, db_session, caplog):
        store = SqlCartStore(db_session)
        store.add_line_item(_item("1001_addtocart"))

        changes = CartChangeSet(
            added=[_item("1002_addtocart")],
            updated=[_item("9999_addtocart")],
        )
        with pytest.raises(LineItemNotFoundError):
            store.apply_changes(changes)

        assert [i.id for i in store.list_by_restaurant("r1")] == ["1001_addtocart"]
        assert "rolled back" in caplog.text

    def test_legacy_row_payload_migrated_on_read(self, db_session):
        db_session.add(CartLineItemRecord(
            id="1000_addtocart",
            restaurant_id="r1",
            menu_item_id="m_burger",
            name="Burger",
            unit_price=215.0,
            quantity=1,
            customizations={
                "variant": "Classic",
                "size": "Menu",
                "drinks": [{"id": "d_cola", "name": "Cola", "price": 15, "is_free": False}],
            },
        ))
        db_session.commit()

        item = SqlCartStore(db_session).get_line_item("1000_addtocart")
        assert item.customizations.paid_drink_quantities == {"d_cola": 1}
        assert item.customizations.variant == "Classic"

    def test_pack_payload_persists_string_slot_keys(self, db_session):
        catalog = CatalogCache().get(db_session)
        builder = OrderBuilder(catalog, id_factory=LineItemIdFactory(clock=lambda: 1000))
        selection = SelectionState(
            menu_item_id="m_pack", restaurant_id="r1", is_special_pack=True, pricing_id="p_pack",
            pack_selections={"v_burger": {0: "Poulet", 1: "Viande"}},
        )
        store = SqlCartStore(db_session)
        store.apply_changes(CartChangeSet(added=builder.commit(selection, None, GlobalDrinkPool())))

        record = db_session.get(CartLineItemRecord, "1000_addtocart_pack_0")
        assert record.customizations["pack_selections"] == {"Burger": {"0": "Poulet", "1": "Viande"}}
        loaded = store.get_line_item("1000_addtocart_pack_0")
        assert loaded.customizations.pack_selections == {"Burger": {0: "Poulet", 1: "Viande"}}


class TestServiceOverSql:
    def test_edit_flow_against_database(self, db_session):
        catalog = CatalogCache().get(db_session)
        service = CartService(catalog, SqlCartStore(db_session))

        session = service.start_order("m_burger")
        session.selection.set_variant("v_classic")
        session.selection.set_quantity(3)
        session.selection.toggle_supplement("cheese")
        session.pool.set_paid_quantity("d_cola", 2)
        item = service.commit(session)[0]
        assert service.restaurant_total("r1") == pytest.approx(690.0)

        edit = service.open_edit(item.id)
        assert edit.pool.paid_drink_quantities == {"d_cola": 2}
        edit.pool.set_paid_quantity("d_cola", 0)
        service.save_edit(item.id, edit.selection, edit.pool)

        assert service.restaurant_total("r1") == pytest.approx(660.0)
