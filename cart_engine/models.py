from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    JSON,
    DateTime,
    ForeignKey,
    Text,
    Index,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(String, primary_key=True, index=True)
    restaurant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="", index=True)  # 'burgers', 'pack familial', ...
    base_price = Column(Float, nullable=False, default=0.0)
    is_limited_offer = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    main_ingredients = Column(JSON, nullable=True)  # ["Tomate", "Salade"]
    supplements = Column(JSON, nullable=True)  # [{"name": "Cheddar", "price": 1.0}]
    offer_details = Column(JSON, nullable=True)  # {"global_supplements": {...}}

    variants = relationship(
        "MenuItemVariant",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        order_by="MenuItemVariant.display_order",
    )
    pricing_options = relationship(
        "MenuItemPricing",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        order_by="MenuItemPricing.display_order",
    )


class MenuItemVariant(Base):
    """A variant of a menu item. For packs, one kind of sub-item; its description declares slots."""
    __tablename__ = "menu_item_variants"

    id = Column(String, primary_key=True, index=True)
    menu_item_id = Column(String, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)  # "qty:2|options:A,B|supplements:X:1.5"
    is_available = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)

    menu_item = relationship("MenuItem", back_populates="variants")


class MenuItemPricing(Base):
    """Size/portion pricing option, with its free-drink entitlement."""
    __tablename__ = "menu_item_pricing"

    id = Column(String, primary_key=True, index=True)
    menu_item_id = Column(String, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(String, nullable=True)
    size = Column(String, nullable=True)
    portion = Column(String, nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    is_default = Column(Boolean, default=False, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    free_drinks_included = Column(Boolean, default=False, nullable=False)
    free_drinks_list = Column(JSON, nullable=True)  # ["d_cola", "d_water"]
    free_drinks_quantity = Column(Integer, default=1, nullable=False)
    offer_details = Column(JSON, nullable=True)

    menu_item = relationship("MenuItem", back_populates="pricing_options")


class RestaurantDrink(Base):
    __tablename__ = "restaurant_drinks"

    id = Column(String, primary_key=True, index=True)
    restaurant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    size = Column(String, nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)


class CartLineItemRecord(Base):
    """Persisted cart line item. The payer is derived from id order, never stored."""
    __tablename__ = "cart_line_items"

    id = Column(String, primary_key=True, index=True)  # "{epoch_millis}_{suffix}"
    restaurant_id = Column(String, nullable=False, index=True)
    menu_item_id = Column(String, nullable=False, default="")
    name = Column(String, nullable=False)
    unit_price = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=1)
    customizations = Column(JSON, nullable=True)
    drink_quantities = Column(JSON, nullable=True)
    special_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_cart_line_items_restaurant_id_id", "restaurant_id", "id"),
    )
