import logging
from decimal import Decimal

from config.constants import NO_STORE_ADMIN_CUT_PERCENT, STORE_DEFAULT_ADMIN_CUT_PERCENT
from utils.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def resolve_admin_cut(store: dict | None) -> Decimal:
    """
    Commission rate for an order's store.
    No resolvable store means an admin-direct product: 100% platform.
    An out-of-range percentage is clamped to 0..100.
    """
    if not store:
        return Decimal(NO_STORE_ADMIN_CUT_PERCENT)

    pct = store.get("adminCutPercentage")
    if pct is None:
        pct = STORE_DEFAULT_ADMIN_CUT_PERCENT

    pct = to_decimal(pct)
    if pct < ZERO or pct > HUNDRED:
        logger.warning("ADMIN_CUT_OUT_OF_RANGE store=%s pct=%s", store.get("_id"), pct)
        pct = min(max(pct, ZERO), HUNDRED)
    return pct


def split_item_revenue(price, quantity, admin_cut_pct) -> dict:
    item_revenue = round_money(to_decimal(price) * to_decimal(quantity))
    platform_share = round_money(item_revenue * to_decimal(admin_cut_pct) / HUNDRED)

    # vendor share is the remainder so both always add up to the item revenue
    vendor_share = item_revenue - platform_share

    return {
        "itemRevenue": item_revenue,
        "platformShare": platform_share,
        "vendorShare": vendor_share,
    }


def split_order_revenue(order: dict, admin_cut_pct) -> dict:
    totals = {"itemRevenue": ZERO, "platformShare": ZERO, "vendorShare": ZERO}
    items = []

    for item in order.get("items") or []:
        split = split_item_revenue(item.get("price"), item.get("quantity") or 0, admin_cut_pct)
        for key in totals:
            totals[key] += split[key]
        items.append({**item, **split, "adminCutPercentage": to_decimal(admin_cut_pct)})

    return {**totals, "items": items}
