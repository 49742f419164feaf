"""
Order lifecycle.

    pending --accept--> accepted --deliver--> delivered
    pending --cancel--> (deleted)

Transitions are conditional single-document writes: the filter carries the
state the transition starts from, so when two agents race for the same
order the second write matches nothing and is reported as a conflict
instead of overwriting the winner.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from config import (
    DELIVERY_ZONES,
    EMERGENCY_DELIVERY_CHARGE,
    MIN_ADDRESS_LENGTH,
    NORMAL_DELIVERY_CHARGE,
)
from database import create_document, delete_document, get_document, get_documents, to_object_id, update_document
from errors import AuthError, ConflictError, EmptyCartError, NotFoundError, PolicyError, ValidationError
from periods import is_delivery_hours, now_local, timestamp
from schemas import CheckoutRequest, DeliveryType, Order, OrderStatus
from users import save_delivery_address

logger = logging.getLogger(__name__)

COLLECTION = "order"

DELIVERY_CHARGES = {
    DeliveryType.NORMAL: NORMAL_DELIVERY_CHARGE,
    DeliveryType.EMERGENCY: EMERGENCY_DELIVERY_CHARGE,
}


def validate_address(address: str) -> Optional[str]:
    if not address.strip():
        return "Delivery address is required"
    if len(address.strip()) < MIN_ADDRESS_LENGTH:
        return "Please provide a complete address"
    return None


def build_order(customer: Dict[str, Any], request: CheckoutRequest, now: Optional[datetime] = None) -> Order:
    """Turn a cart into a pending order snapshot. Nothing is written."""
    address_error = validate_address(request.delivery_address)
    if address_error:
        raise ValidationError(address_error)

    location = (customer.get("location") or "").strip()
    if not location:
        raise ValidationError("Please select your location first")
    if location not in DELIVERY_ZONES:
        raise ValidationError(f"Unknown delivery location: {location}")

    if not request.items:
        raise EmptyCartError("Your cart is empty")

    subtotal = sum(item.price * item.quantity for item in request.items)
    delivery_charge = DELIVERY_CHARGES[request.delivery_type]

    return Order(
        customer_id=customer["id"],
        customer_name=customer.get("name") or "",
        customer_phone=customer.get("phone") or "",
        items=request.items,
        delivery_type=request.delivery_type,
        delivery_address=request.delivery_address.strip(),
        special_request=request.special_request.strip(),
        location=location,
        subtotal=subtotal,
        delivery_charge=delivery_charge,
        total=subtotal + delivery_charge,
        status=OrderStatus.PENDING,
        created_at=timestamp(now),
    )


def place_order(db: Database, customer: Dict[str, Any], request: CheckoutRequest,
                now: Optional[datetime] = None) -> Dict[str, Any]:
    order = build_order(customer, request, now)
    order_id = create_document(db, COLLECTION, order)
    save_delivery_address(db, customer["id"], order.delivery_address)
    logger.info("Order %s placed by %s in %s (%s, total %s)",
                order_id, customer["id"], order.location, order.delivery_type.value, order.total)
    return get_order(db, order_id)


def get_order(db: Database, order_id: str) -> Dict[str, Any]:
    order = get_document(db, COLLECTION, to_object_id(order_id))
    if order is None:
        raise NotFoundError("Order not found")
    return order


def accept_order(db: Database, agent: Dict[str, Any], order_id: str,
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    moment = now or now_local()
    if not is_delivery_hours(moment.hour):
        raise PolicyError("Delivery service is available from 6:00 AM to 11:59 PM only")
    if not agent.get("is_paid_agent"):
        raise PolicyError("Your agent account is not paid. Please contact support to activate your account")

    order = get_order(db, order_id)
    if order["location"] != agent.get("location"):
        raise PolicyError("This order is outside your selected location")
    if order["status"] != OrderStatus.PENDING.value:
        raise ConflictError("This order has already been accepted")

    fields = {
        "status": OrderStatus.ACCEPTED.value,
        "agent_id": agent["id"],
        "agent_name": agent.get("name"),
        "agent_phone": agent.get("phone"),
        "accepted_at": timestamp(moment),
    }
    if not update_document(db, COLLECTION, to_object_id(order_id), fields,
                           expected={"status": OrderStatus.PENDING.value}):
        logger.warning("Agent %s lost the race for order %s", agent["id"], order_id)
        raise ConflictError("This order has already been accepted")

    logger.info("Order %s accepted by agent %s", order_id, agent["id"])
    return get_order(db, order_id)


def deliver_order(db: Database, agent: Dict[str, Any], order_id: str,
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    order = get_order(db, order_id)
    if order.get("agent_id") != agent["id"]:
        raise AuthError("Only the agent who accepted this order can deliver it",
                        code="permission-denied", status_code=403)
    if order["status"] == OrderStatus.DELIVERED.value:
        raise ConflictError("This order has already been delivered")

    expected = {"status": OrderStatus.ACCEPTED.value, "agent_id": agent["id"]}
    fields = {"status": OrderStatus.DELIVERED.value, "delivered_at": timestamp(now)}
    if not update_document(db, COLLECTION, to_object_id(order_id), fields, expected=expected):
        raise ConflictError("This order is no longer awaiting delivery")

    logger.info("Order %s delivered by agent %s", order_id, agent["id"])
    return get_order(db, order_id)


def cancel_order(db: Database, customer: Dict[str, Any], order_id: str) -> None:
    order = get_order(db, order_id)
    if order["customer_id"] != customer["id"]:
        raise AuthError("You can only cancel your own orders", code="permission-denied", status_code=403)
    if order["status"] != OrderStatus.PENDING.value:
        raise PolicyError("Only pending orders can be cancelled")

    if not delete_document(db, COLLECTION, to_object_id(order_id),
                           expected={"status": OrderStatus.PENDING.value}):
        raise PolicyError("Only pending orders can be cancelled")
    logger.info("Order %s cancelled by customer %s", order_id, customer["id"])


def claim_priority(orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Emergency orders first, newest first within each delivery type."""
    newest_first = sorted(orders, key=lambda o: o.get("created_at") or "", reverse=True)
    return sorted(newest_first, key=lambda o: o.get("delivery_type") != DeliveryType.EMERGENCY.value)


# -----------------------------
# Queries
# -----------------------------

def pending_orders(db: Database, location: str) -> List[Dict[str, Any]]:
    docs = get_documents(db, COLLECTION, {"location": location, "status": OrderStatus.PENDING.value})
    return claim_priority(docs)


def active_orders(db: Database, agent_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, COLLECTION, {"agent_id": agent_id, "status": OrderStatus.ACCEPTED.value},
                         sort=[("accepted_at", DESCENDING)])


def delivered_orders(db: Database, agent_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, COLLECTION, {"agent_id": agent_id, "status": OrderStatus.DELIVERED.value},
                         sort=[("delivered_at", DESCENDING)])


def customer_orders(db: Database, customer_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, COLLECTION, {"customer_id": customer_id}, sort=[("created_at", DESCENDING)])
