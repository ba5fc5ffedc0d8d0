import copy
import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cart_engine.db as db
from cart_engine.builder import LineItemIdFactory, OrderBuilder
from cart_engine.cart_store import InMemoryCartStore
from cart_engine.catalog import MenuCatalog
from cart_engine.main import app
from cart_engine.models import Base, MenuItem, MenuItemPricing, MenuItemVariant, RestaurantDrink
from cart_engine.services.cart import CartService
from cart_engine.services.catalog_loader import catalog_cache
from cart_engine.tracing import DecisionTrace


MENU_DATA = {
    "menu_items": [
        {
            "id": "m_burger",
            "restaurant_id": "r1",
            "name": "Burger",
            "category": "Burgers",
            "price": 0.0,
            "main_ingredients": ["Tomate", "Salade", "Oignons"],
            "variants": [
                {"id": "v_classic", "name": "Classic", "display_order": 0},
                {"id": "v_spicy", "name": "Spicy", "display_order": 1},
            ],
            "pricing": [
                {
                    "id": "p_menu", "size": "Menu", "price": 200.0, "is_default": True,
                    "display_order": 0, "free_drinks_included": True,
                    "free_drinks_list": ["d_water", "d_cola"], "free_drinks_quantity": 1,
                    "offer_details": {"global_supplements": {"cheese": 20.0, "bacon": 35.0}},
                },
                {
                    "id": "p_solo", "size": "Solo", "price": 150.0, "display_order": 1,
                    "offer_details": {"global_supplements": {"cheese": 20.0}},
                },
            ],
        },
        {
            "id": "m_pack",
            "restaurant_id": "r1",
            "name": "Pack Familial",
            "category": "Pack",
            "price": 0.0,
            "variants": [
                {
                    "id": "v_burger", "name": "Burger", "display_order": 0,
                    "description": "qty:2|options:Poulet,Viande|ingredients:Tomate,Salade"
                                   "|supplements:Cheddar:50,Oignons",
                },
                {"id": "v_fries", "name": "Frites", "display_order": 1, "description": "qty:1"},
            ],
            "pricing": [
                {
                    "id": "p_pack", "size": "Standard", "price": 200.0, "is_default": True,
                    "free_drinks_included": True, "free_drinks_list": ["d_water"],
                    "free_drinks_quantity": 1,
                    "offer_details": {"global_supplements": {"cheese": 20.0}},
                },
            ],
        },
        {
            "id": "m_lto",
            "restaurant_id": "r1",
            "name": "Menu du Jour",
            "category": "Offres",
            "price": 120.0,
            "is_limited_offer": True,
            "pricing": [
                {"id": "p_lto_large", "size": "Large", "price": 30.0},
            ],
        },
        {
            "id": "m_tacos",
            "restaurant_id": "r2",
            "name": "Tacos",
            "category": "Tacos",
            "price": 0.0,
            "pricing": [
                {"id": "p_tacos", "size": "M", "price": 80.0, "is_default": True},
            ],
        },
    ],
    "drinks": {
        "r1": [
            {"id": "d_cola", "name": "Cola", "price": 15.0, "size": "33cl"},
            {"id": "d_water", "name": "Water", "price": 5.0},
            {"id": "d_juice", "name": "Juice", "price": 10.0},
        ],
        "r2": [
            {"id": "d_tea", "name": "Tea", "price": 8.0},
        ],
    },
}


def seed_menu(session, menu_data=MENU_DATA):
    """Write a menu_data dict into the menu tables."""
    for raw in menu_data["menu_items"]:
        item = MenuItem(
            id=raw["id"],
            restaurant_id=raw["restaurant_id"],
            name=raw["name"],
            category=raw["category"],
            base_price=raw.get("price", 0.0),
            is_limited_offer=raw.get("is_limited_offer", False),
            main_ingredients=raw.get("main_ingredients"),
            offer_details=raw.get("offer_details"),
        )
        for rv in raw.get("variants", []):
            item.variants.append(MenuItemVariant(
                id=rv["id"],
                name=rv["name"],
                description=rv.get("description"),
                display_order=rv.get("display_order", 0),
            ))
        for rp in raw.get("pricing", []):
            item.pricing_options.append(MenuItemPricing(
                id=rp["id"],
                size=rp.get("size"),
                portion=rp.get("portion"),
                price=rp["price"],
                is_default=rp.get("is_default", False),
                display_order=rp.get("display_order", 0),
                free_drinks_included=rp.get("free_drinks_included", False),
                free_drinks_list=rp.get("free_drinks_list"),
                free_drinks_quantity=rp.get("free_drinks_quantity", 1),
                offer_details=rp.get("offer_details"),
            ))
        session.add(item)
    for restaurant_id, drinks in menu_data["drinks"].items():
        for d in drinks:
            session.add(RestaurantDrink(
                id=d["id"],
                restaurant_id=restaurant_id,
                name=d["name"],
                price=d["price"],
                size=d.get("size"),
            ))
    session.commit()


@pytest.fixture
def menu_data():
    return copy.deepcopy(MENU_DATA)


@pytest.fixture
def catalog(menu_data):
    return MenuCatalog(menu_data)


@pytest.fixture
def trace():
    return DecisionTrace()


@pytest.fixture
def id_factory():
    """Deterministic ids: 1000_..., 1001_..., in creation order."""
    ticks = itertools.count(1000)
    return LineItemIdFactory(clock=lambda: next(ticks))


@pytest.fixture
def builder(catalog, id_factory, trace):
    return OrderBuilder(catalog, id_factory=id_factory, trace=trace)


@pytest.fixture
def store():
    return InMemoryCartStore()


@pytest.fixture
def service(catalog, store, id_factory, trace):
    return CartService(catalog, store, id_factory=id_factory, trace=trace)


@pytest.fixture
def db_session():
    """In-memory SQLite session with the menu seeded."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    seed_menu(session)
    yield session
    session.close()


@pytest.fixture
def client():
    """Shared FastAPI TestClient using an in-memory SQLite DB.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # Patch the db module used by the app
    db.engine = engine
    db.SessionLocal = TestingSessionLocal

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    seed_menu(session)
    session.close()

    def override_get_db():
        db_sess = TestingSessionLocal()
        try:
            yield db_sess
        finally:
            db_sess.close()

    app.dependency_overrides[db.get_db] = override_get_db
    catalog_cache.invalidate()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    catalog_cache.invalidate()
