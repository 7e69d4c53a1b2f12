"""
Cart and order bookkeeping.

Stock is reserved when a line enters a cart, not when the order is placed,
so for every product `stock + quantities held in carts` stays constant
outside of admin edits.

Stock moves are single-document conditional updates. Cart writes replace the
embedded cart only if the user's cart_version is unchanged since it was read.
Stock is taken before a cart write and given back after one, so it never goes
below zero even when the cart write loses a race.
"""

import logging
from typing import Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import settings
from database import collection, create_document, get_document_by_id, now, object_id, serialize_doc, update_document
from errors import Conflict, InsufficientStock, InvalidRequest, InvalidStatus, InvalidTransition, NotFound
from schemas import ORDER_STATUSES, DeliveryCoords, Order, OrderLine

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    "Pending": {"Processing", "Cancelled"},
    "Processing": {"Shipped", "Cancelled"},
    "Shipped": {"Delivered"},
    "Delivered": set(),
    "Cancelled": set(),
}


# ------------------------- Stock ------------------------------
def reserve_stock(product_id: str, quantity: int) -> dict:
    """Take `quantity` units out of stock, or raise InsufficientStock naming what is left"""
    oid = object_id(product_id)
    if oid is None:
        raise NotFound("Product not found")
    product = collection("product").find_one_and_update(
        {"_id": oid, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        current = collection("product").find_one({"_id": oid})
        if current is None:
            raise NotFound("Product not found")
        available = int(current.get("stock", 0))
        logger.info("Rejected reservation of %d x %s, %d in stock", quantity, product_id, available)
        raise InsufficientStock(available, current.get("name"))
    return product


def release_stock(product_id: str, quantity: int) -> bool:
    """Put units back; a product deleted in the meantime is skipped"""
    oid = object_id(product_id)
    if oid is None or quantity <= 0:
        return False
    res = collection("product").update_one({"_id": oid}, {"$inc": {"stock": quantity}})
    if res.matched_count == 0:
        logger.info("Product %s no longer exists, %d units not returned", product_id, quantity)
    return res.matched_count > 0


# ------------------------- Cart -------------------------------
def _load_user(user_id) -> dict:
    user = get_document_by_id("user", str(user_id))
    if not user:
        raise NotFound("User not found")
    return user


def _normalize_id(product_id: str) -> str:
    """Canonical string form of an id, so hex case does not matter when matching cart lines"""
    oid = object_id(product_id)
    return str(oid) if oid is not None else product_id


def _find_line(cart: List[dict], product_id: str) -> Optional[dict]:
    for line in cart:
        if line.get("product_id") == product_id:
            return line
    return None


def _save_cart(user: dict, lines: List[dict]) -> bool:
    """Replace the cart if nobody else wrote it since `user` was read"""
    if "cart_version" in user:
        guard = {"_id": user["_id"], "cart_version": user["cart_version"]}
    else:
        guard = {"_id": user["_id"], "cart_version": {"$exists": False}}
    res = collection("user").update_one(
        guard,
        {"$set": {"cart": lines, "updated_at": now()}, "$inc": {"cart_version": 1}},
    )
    return res.matched_count > 0


def _cart_conflict(user: dict) -> Conflict:
    logger.warning("Concurrent cart write for user %s", user["_id"])
    return Conflict("Cart was modified by another request, please retry")


def _products_by_id(product_ids: Iterable[str]) -> dict:
    oids = [oid for oid in (object_id(pid) for pid in product_ids) if oid is not None]
    if not oids:
        return {}
    return {str(p["_id"]): p for p in collection("product").find({"_id": {"$in": oids}})}


def read_cart(user_id) -> List[dict]:
    """Cart lines joined with the current product; deleted products are flagged, not dropped"""
    user = _load_user(user_id)
    cart = user.get("cart", [])
    products = _products_by_id(line["product_id"] for line in cart)
    result = []
    for line in cart:
        product = products.get(line["product_id"])
        result.append({
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "available": product is not None,
            "product": serialize_doc(product),
        })
    return result


def set_cart_quantity(user_id, product_id: str, quantity: int) -> Optional[dict]:
    """Upsert a cart line to `quantity`, moving the difference in or out of stock.

    A quantity of 0 removes the line, exactly like remove_cart_line().
    Returns the resulting line, or None when it was removed.
    """
    if quantity < 0:
        raise InvalidRequest("Quantity must be 0 or more")
    if quantity == 0:
        remove_cart_line(user_id, product_id)
        return None

    product = get_document_by_id("product", product_id)
    if not product:
        raise NotFound("Product not found")
    product_id = str(product["_id"])

    user = _load_user(user_id)
    cart = [dict(line) for line in user.get("cart", [])]
    line = _find_line(cart, product_id)
    current = line["quantity"] if line else 0
    delta = quantity - current
    if delta == 0:
        return line

    if line:
        line["quantity"] = quantity
    else:
        line = {"product_id": product_id, "quantity": quantity}
        cart.append(line)

    if delta > 0:
        reserve_stock(product_id, delta)
        if not _save_cart(user, cart):
            release_stock(product_id, delta)
            raise _cart_conflict(user)
    else:
        if not _save_cart(user, cart):
            raise _cart_conflict(user)
        release_stock(product_id, -delta)

    logger.debug("Cart of %s: %s set to %d (delta %d)", user["_id"], product_id, quantity, delta)
    return line


def remove_cart_line(user_id, product_id: str) -> dict:
    """Drop a line from the cart and return its quantity to stock"""
    product_id = _normalize_id(product_id)
    user = _load_user(user_id)
    cart = user.get("cart", [])
    line = _find_line(cart, product_id)
    if line is None:
        raise NotFound("Item not in cart")
    remaining = [dict(other) for other in cart if other.get("product_id") != product_id]
    if not _save_cart(user, remaining):
        raise _cart_conflict(user)
    release_stock(product_id, line["quantity"])
    return line


def release_cart(user: dict) -> int:
    """Return every reserved unit of a (deleted) user's cart to stock"""
    released = 0
    for line in user.get("cart", []):
        if release_stock(line["product_id"], line["quantity"]):
            released += line["quantity"]
    return released


# ------------------------- Orders -----------------------------
def place_order(user_id, product_ids: List[str], delivery: Optional[DeliveryCoords] = None) -> dict:
    """Turn the selected cart lines into a Pending order.

    Lines are snapshotted from the current product, so later catalog edits do
    not touch the order. Stock is left alone: it was reserved at add time.
    """
    wanted = list(dict.fromkeys(_normalize_id(pid) for pid in product_ids or []))
    if not wanted:
        raise InvalidRequest("Select at least one cart item")

    user = _load_user(user_id)
    cart = user.get("cart", [])
    selected = [line for line in cart if line.get("product_id") in wanted]
    products = _products_by_id(line["product_id"] for line in selected)

    items: List[OrderLine] = []
    for line in selected:
        product = products.get(line["product_id"])
        if product is None:
            continue
        items.append(OrderLine(
            product_id=line["product_id"],
            name=product.get("name", ""),
            price=float(product.get("price", 0)),
            quantity=line["quantity"],
            image=product.get("image"),
        ))
    if not items:
        raise InvalidRequest("None of the selected items are in the cart")

    ordered = {item.product_id for item in items}
    claimed = [dict(line) for line in cart if line.get("product_id") in ordered]
    remaining = [dict(line) for line in cart if line.get("product_id") not in ordered]
    if not _save_cart(user, remaining):
        raise _cart_conflict(user)

    order = Order(
        user_id=str(user["_id"]),
        items=items,
        total_amount=round(sum(item.price * item.quantity for item in items), 2),
        status="Pending",
        delivery=delivery,
    )
    try:
        order_id = create_document("order", order)
    except PyMongoError:
        logger.exception("Order insert failed for user %s, restoring %d cart lines", user["_id"], len(claimed))
        collection("user").update_one(
            {"_id": user["_id"]},
            {"$push": {"cart": {"$each": claimed}}, "$inc": {"cart_version": 1}},
        )
        raise

    logger.info("Order %s placed by %s: %d lines, total %.2f", order_id, user["_id"], len(items), order.total_amount)
    return get_document_by_id("order", order_id)


def set_order_status(order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise InvalidStatus(f"Invalid status. Use one of: {', '.join(ORDER_STATUSES)}")
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")

    current = order.get("status")
    if settings.ORDER_STATUS_WORKFLOW == "strict" and status != current:
        if status not in STATUS_TRANSITIONS.get(current, set()):
            raise InvalidTransition(current, status)

    update_document("order", order_id, {"status": status})
    logger.info("Order %s status %s -> %s", order_id, current, status)
    return get_document_by_id("order", order_id)
