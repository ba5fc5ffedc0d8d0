"""
Edit Reconciler
===============

Re-opens an existing cart line item for editing and writes the result back
without disturbing the rest of the restaurant order.

Restore:
--------
1. The payer of the restaurant's line items holds the authoritative paid
   drinks. Whatever paid data the edited item carries is ignored in favor of
   the payer's.
2. The selection is rebuilt from the item's customizations payload. Global
   supplements keep their namespaced ids; pack-scoped ones are skipped. For
   packs every slot of every catalog variant is read, so empty-but-present
   slots survive.
3. The drink pool gets the payer's paid drinks and the item's own free
   drinks, brought back to a per-unit choice.

Reconcile:
----------
1. The edited item is priced from its new customizations. Paid drinks are
   added to it only if it is the payer.
2. The payer, when it is another item, moves by the change in the paid
   total. Other items keep their price and only lose stale paid bookkeeping.
3. For a pack unit, raising the quantity adds units and lowering it removes
   the newest units of the same commit (never the edited unit or the payer).

Baseline Policy:
----------------
A stored price can disagree with a recalculation of the same
customizations. PriceBaselinePolicy.RECOMPUTE (default) trusts the
recalculation. PriceBaselinePolicy.PRESERVE_STORED keeps the stored price
and applies only the change, for carts written by older releases.

Removal:
--------
reconcile_removal hands the paid drinks of a removed payer to the next
earliest item so the order keeps exactly one payer. A removed pack unit
lowers the recorded quantity of the units left from its commit; pack
quantities are always read from the units that exist.

Quantity Changes:
-----------------
reconcile_quantity is an edit that only changes the quantity. Paid drinks
are still billed once, never scaled with the new quantity.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from .builder import OrderBuilder
from .cart_store import CartChangeSet, CartLineItem
from .catalog import CatalogAdapter, Variant
from .config import GLOBAL_SUPPLEMENT_PREFIX, NOT_SELECTED_PLACEHOLDER, PACK_SUPPLEMENT_PREFIX
from .drinks import DrinkSynchronizer, GlobalDrinkPool, find_payer, stored_paid_prices
from .pricing import PriceBaselinePolicy, PriceCalculator, prices_differ
from .selection import SelectionState
from .tracing import DecisionTrace

logger = logging.getLogger(__name__)


class EditSession(BaseModel):
    """One open edit: the item being edited plus the state restored from it."""

    target: CartLineItem
    selection: SelectionState
    pool: GlobalDrinkPool
    original_selection: SelectionState
    original_pool: GlobalDrinkPool
    payer_id: Optional[str] = None


class EditReconciler:
    def __init__(
        self,
        catalog: CatalogAdapter,
        builder: Optional[OrderBuilder] = None,
        policy: PriceBaselinePolicy = PriceBaselinePolicy.RECOMPUTE,
        trace: Optional[DecisionTrace] = None,
    ):
        self.catalog = catalog
        self.trace = trace if trace is not None else DecisionTrace()
        self.builder = builder or OrderBuilder(catalog, trace=self.trace)
        self.calculator: PriceCalculator = self.builder.calculator
        self.synchronizer: DrinkSynchronizer = self.builder.synchronizer
        self.policy = policy

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, target: CartLineItem, siblings: List[CartLineItem]) -> EditSession:
        group = self._group(target, siblings)
        target = next(i for i in group if i.id == target.id)
        payer = find_payer(group)

        paid: Dict[str, int] = {}
        sizes: Dict[str, str] = {}
        if payer is not None:
            paid = dict(payer.customizations.paid_drink_quantities)
            sizes.update({k: v for k, v in payer.customizations.drink_sizes.items() if k in paid})
            if payer.id != target.id and target.customizations.paid_drink_quantities:
                logger.info("Ignoring stale paid drinks stored on %s", target.id)
        sizes.update(target.customizations.drink_sizes)

        selection = self.restore_selection(target)
        if selection.is_special_pack:
            units = self._pack_units(target, group)
            if units and len(units) != selection.quantity:
                logger.info(
                    "Pack %s records quantity %d but %d units exist",
                    target.id, selection.quantity, len(units),
                )
                selection.quantity = len(units)
        pool = GlobalDrinkPool(
            free_drink_quantities=self._per_unit_free(target, selection),
            paid_drink_quantities=paid,
            drink_size_by_id=sizes,
        )
        logger.info(
            "Restored %s for editing (payer %s, %d paid drink ids)",
            target.id, payer.id if payer else None, len(paid),
        )
        return EditSession(
            target=target,
            selection=selection,
            pool=pool,
            original_selection=selection.snapshot(),
            original_pool=pool.copy_pool(),
            payer_id=payer.id if payer else None,
        )

    def restore_selection(self, item: CartLineItem) -> SelectionState:
        """Rebuild the selection a line item was committed from."""
        payload = item.customizations
        menu_item_id = payload.menu_item_id or item.menu_item_id
        catalog_item = self.catalog.get_menu_item(menu_item_id)
        is_pack = payload.is_special_pack or bool(catalog_item and catalog_item.is_special_pack)

        variant_id = payload.variant_id
        if variant_id is None and payload.variant:
            variant = self.catalog.find_variant(menu_item_id, payload.variant)
            variant_id = variant.id if variant else None

        selection = SelectionState(
            menu_item_id=menu_item_id,
            restaurant_id=payload.restaurant_id or item.restaurant_id,
            is_special_pack=is_pack,
            is_limited_offer=payload.is_limited_offer or bool(catalog_item and catalog_item.is_limited_offer),
            variant_id=variant_id,
            pricing_id=payload.pricing_id or self._match_pricing(menu_item_id, payload.size, payload.portion),
            quantity=max(1, payload.main_item_quantity if is_pack else item.quantity),
            note=payload.note or item.special_instructions,
        )

        offered = self.catalog.get_global_supplements(
            self.catalog.get_pricing_option(menu_item_id, selection.pricing_id), menu_item_id,
        )
        for entry in payload.supplements:
            if entry.id.startswith(PACK_SUPPLEMENT_PREFIX) or entry.name in selection.supplements:
                continue
            if entry.id.startswith(GLOBAL_SUPPLEMENT_PREFIX) or entry.name in offered:
                selection.supplements.append(entry.name)
            else:
                self.trace.record(
                    "catalog.unknown_reference", kind="supplement",
                    menu_item_id=menu_item_id, reference=entry.name,
                )

        for ingredient, pref in payload.ingredient_preferences.items():
            selection.set_ingredient_preference(ingredient, pref)
        for ingredient in payload.removed_ingredients:
            if ingredient not in selection.ingredient_preferences:
                selection.set_ingredient_preference(ingredient, "none")

        if is_pack:
            for variant in self.catalog.get_variants(menu_item_id):
                self._restore_pack_variant(selection, variant, payload)
        return selection

    def _restore_pack_variant(self, selection: SelectionState, variant: Variant, payload) -> None:
        chosen = self._variant_slots(payload.pack_selections, variant)
        prefs = self._variant_slots(payload.pack_ingredient_preferences, variant)
        supplements = self._variant_slots(payload.pack_supplement_selections, variant)
        for slot in range(variant.slot_count):
            value = chosen.get(slot)
            if value and value != NOT_SELECTED_PLACEHOLDER:
                selection.set_pack_slot_option(variant.id, slot, value)
            for ingredient, pref in prefs.get(slot, {}).items():
                selection.set_pack_ingredient_preference(variant.id, slot, ingredient, pref)
            for name in supplements.get(slot, []):
                if name not in selection.pack_supplement_selections.get(variant.id, {}).get(slot, []):
                    selection.toggle_pack_supplement(variant.id, slot, name)

    @staticmethod
    def _variant_slots(data: Dict[str, dict], variant: Variant) -> dict:
        if variant.name in data:
            return data[variant.name]
        return data.get(variant.id, {})

    def _match_pricing(self, menu_item_id: str, size: Optional[str], portion: Optional[str]) -> Optional[str]:
        if not size and not portion:
            return None
        for option in self.catalog.get_pricing_options(menu_item_id):
            if option.size == size and option.portion == portion:
                return option.id
        return None

    @staticmethod
    def _per_unit_free(item: CartLineItem, selection: SelectionState) -> Dict[str, int]:
        divisor = 1 if selection.is_special_pack else max(1, item.quantity)
        return {
            drink_id: max(1, qty // divisor)
            for drink_id, qty in item.customizations.free_drink_quantities.items()
            if qty > 0
        }

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(self, session: EditSession, siblings: List[CartLineItem]) -> CartChangeSet:
        """
        Compute every line item write caused by saving an edit.

        Args:
            session: The edit session, with selection and pool as edited.
            siblings: Current line items of the restaurant (the target may be included).

        Returns:
            The change set to apply atomically.
        """
        group = self._group(session.target, siblings)
        originals = {item.id: item for item in group}
        target = originals[session.target.id]
        payer = find_payer(group)
        payer_id = payer.id if payer else None
        is_payer = payer_id == target.id

        selection = session.selection.snapshot()
        pool = session.pool.copy_pool()
        pool.normalize()
        paid = dict(pool.paid_drink_quantities)
        hints = stored_paid_prices(payer) if payer else {}
        restaurant_id = target.restaurant_id

        new_paid_total = self.synchronizer.paid_total(restaurant_id, paid, hints) if is_payer else 0.0
        new_total = self.calculator.line_total(selection, new_paid_total)
        if self.policy == PriceBaselinePolicy.PRESERVE_STORED:
            old_paid_total = (
                self.synchronizer.paid_total(restaurant_id, session.original_pool.paid_drink_quantities, hints)
                if is_payer else 0.0
            )
            old_total = self.calculator.line_total(session.original_selection, old_paid_total)
            if prices_differ(target.line_total, old_total):
                preserved = target.line_total + (new_total - old_total)
                self.trace.record(
                    "price.baseline_preserved", line_item_id=target.id,
                    stored_total=target.line_total, recalculated_total=old_total, final_total=preserved,
                )
                logger.info(
                    "Keeping stored baseline for %s: %.2f stored vs %.2f recalculated",
                    target.id, target.line_total, old_total,
                )
                new_total = preserved

        line_quantity = 1 if selection.is_special_pack else selection.quantity
        edited = self._rewrite_target(target, selection, pool, new_total, line_quantity, is_payer, hints)
        self.trace.record(
            "price.recomputed", line_item_id=target.id,
            old_total=target.line_total, new_total=new_total, is_payer=is_payer,
        )

        changes = CartChangeSet()
        removed_ids: List[str] = []
        if selection.is_special_pack:
            changes, removed_ids = self._resize_pack(session, selection, pool, group, payer_id)

        others = [i for i in group if i.id != target.id and i.id not in removed_ids]
        rebalance = self.synchronizer.rebalance(others, paid, pool.drink_size_by_id, payer_id=payer_id)
        updated_others = rebalance.items
        if self.policy == PriceBaselinePolicy.RECOMPUTE and not is_payer and payer is not None:
            updated_others = [
                self._recompute_payer(i, rebalance.new_total) if i.id == payer_id else i
                for i in updated_others
            ]

        if selection.is_special_pack:
            unit_ids = {i.id for i in self._pack_units(target, group)}
            if unit_ids:
                count = len(unit_ids) + len(changes.added) - len(removed_ids)
                for item in [edited] + updated_others:
                    if item.id in unit_ids:
                        item.customizations.main_item_quantity = count
                for item in changes.added:
                    item.customizations.main_item_quantity = count

        candidates = [edited] + updated_others
        changes.updated = [item for item in candidates if item != originals[item.id]]
        logger.info(
            "Reconciled edit of %s: %d updated, %d added, %d removed",
            target.id, len(changes.updated), len(changes.added), len(changes.removed_ids),
        )
        return changes

    def _rewrite_target(
        self,
        target: CartLineItem,
        selection: SelectionState,
        pool: GlobalDrinkPool,
        total: float,
        line_quantity: int,
        is_payer: bool,
        hints: Dict[str, float],
    ) -> CartLineItem:
        pricing = self.catalog.get_pricing_option(selection.menu_item_id, selection.pricing_id)
        free = self.synchronizer.free_allocation(
            pool, pricing, selection.quantity, is_pack=selection.is_special_pack,
        )
        rebuilt = target.model_copy(deep=True)
        rebuilt.customizations = self.builder.build_payload(
            selection, target.customizations.popup_session_id,
        )
        rebuilt.customizations.drinks = list(target.customizations.drinks)
        if selection.is_special_pack:
            rebuilt.name = self.builder.pack_name(selection)
        else:
            rebuilt.name = self.builder.regular_name(
                self.catalog.get_menu_item(selection.menu_item_id), selection,
            )
        rebuilt.quantity = line_quantity
        rebuilt.unit_price = total / line_quantity
        rebuilt.special_instructions = selection.note
        paid = pool.paid_drink_quantities if is_payer else {}
        return self.synchronizer.apply_drinks(rebuilt, free, paid, pool.drink_size_by_id, hints)

    def _recompute_payer(self, payer: CartLineItem, paid_total: float) -> CartLineItem:
        selection = self.restore_selection(payer)
        total = self.calculator.line_total(selection, paid_total)
        line_quantity = 1 if selection.is_special_pack else max(1, payer.quantity)
        updated = payer.model_copy(deep=True)
        updated.unit_price = total / line_quantity
        if prices_differ(updated.line_total, payer.line_total):
            self.trace.record(
                "price.recomputed", line_item_id=payer.id,
                old_total=payer.line_total, new_total=updated.line_total, is_payer=True,
            )
        return updated

    def _resize_pack(
        self,
        session: EditSession,
        selection: SelectionState,
        pool: GlobalDrinkPool,
        group: List[CartLineItem],
        payer_id: Optional[str],
    ):
        changes = CartChangeSet()
        removed_ids: List[str] = []
        units = self._pack_units(session.target, group)
        old_quantity = len(units) or session.original_selection.quantity
        new_quantity = selection.quantity
        session_id = session.target.customizations.popup_session_id or ""

        if new_quantity > old_quantity:
            changes.added = self.builder.build_pack_units(
                selection, pool, new_quantity - old_quantity, session_id,
                payer=False, start_index=old_quantity,
            )
            self.trace.record(
                "reconcile.pack_units_added", line_item_id=session.target.id,
                added=[i.id for i in changes.added],
            )
        elif new_quantity < old_quantity:
            candidates = [
                item for item in sorted(units, key=lambda i: i.creation_order, reverse=True)
                if item.id not in (session.target.id, payer_id)
            ]
            removed_ids = [item.id for item in candidates[: old_quantity - new_quantity]]
            if len(removed_ids) < old_quantity - new_quantity:
                logger.info(
                    "Only %d of %d pack units of %s can be removed",
                    len(removed_ids), old_quantity - new_quantity, session.target.id,
                )
            changes.removed_ids = removed_ids
            self.trace.record(
                "reconcile.pack_units_removed", line_item_id=session.target.id, removed=removed_ids,
            )
        return changes, removed_ids

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def reconcile_removal(self, removed: CartLineItem, siblings: List[CartLineItem]) -> CartChangeSet:
        """
        Remove a line item, handing its paid drinks to the next payer.

        Removing a pack unit also lowers the recorded pack quantity on the
        units of the same commit that remain.
        """
        changes = CartChangeSet(removed_ids=[removed.id])
        others = [
            i for i in siblings
            if i.id != removed.id and i.restaurant_id == removed.restaurant_id
        ]
        if not others:
            return changes

        originals = {item.id: item for item in others}
        current = dict(originals)

        current_payer = find_payer(others + [removed])
        paid = removed.customizations.paid_drink_quantities
        if current_payer.id == removed.id and paid:
            sizes = {k: v for k, v in removed.customizations.drink_sizes.items() if k in paid}
            rebalance = self.synchronizer.rebalance(
                others, dict(paid), sizes, price_hints=stored_paid_prices(removed),
            )
            current.update({item.id: item for item in rebalance.items})
            logger.info(
                "Paid drinks of removed %s handed to %s (%.2f)",
                removed.id, rebalance.payer_id, rebalance.new_total,
            )

        if removed.is_special_pack:
            remaining = [u for u in self._pack_units(removed, others + [removed]) if u.id != removed.id]
            for unit in remaining:
                if unit.customizations.main_item_quantity != len(remaining):
                    updated = current[unit.id].model_copy(deep=True)
                    updated.customizations.main_item_quantity = len(remaining)
                    current[unit.id] = updated

        changes.updated = [item for item in current.values() if item != originals[item.id]]
        return changes

    def reconcile_quantity(
        self, target: CartLineItem, siblings: List[CartLineItem], quantity: int
    ) -> CartChangeSet:
        """Change only the quantity of a line item, keeping its customizations."""
        session = self.restore(target, siblings)
        session.selection.set_quantity(quantity)
        self.trace.record(
            "reconcile.quantity_changed", line_item_id=target.id,
            old_quantity=session.original_selection.quantity, new_quantity=quantity,
        )
        return self.reconcile(session, siblings)

    @staticmethod
    def _pack_units(target: CartLineItem, items: List[CartLineItem]) -> List[CartLineItem]:
        """Units produced for the same pack by the commit that produced `target`."""
        session_id = target.customizations.popup_session_id
        if not session_id:
            return []
        units = {
            item.id: item for item in items
            if item.customizations.popup_session_id == session_id
            and item.menu_item_id == target.menu_item_id
        }
        units.setdefault(target.id, target)
        return list(units.values())

    @staticmethod
    def _group(target: CartLineItem, siblings: List[CartLineItem]) -> List[CartLineItem]:
        group = {
            item.id: item for item in siblings
            if item.restaurant_id == target.restaurant_id
        }
        group.setdefault(target.id, target)
        return list(group.values())
