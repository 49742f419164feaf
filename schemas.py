"""
Database Schemas

MongoDB collection schemas for the delivery marketplace, as Pydantic models.
These schemas are used for data validation in the application.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection (document _id is the identity subject)
- Order -> "order" collection
- SettlementClaim -> "settlementclaim" collection
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DELIVERED = "delivered"


class DeliveryType(str, Enum):
    NORMAL = "normal"
    EMERGENCY = "emergency"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    NOT_MATCHED = "not_matched"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    NOT_MATCHED = "not_matched"


# -----------------------------
# Core Marketplace Models
# -----------------------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    name: str = Field("User", description="Full name")
    email: str = Field("", description="Email address")
    phone: str = Field("", description="Contact phone")
    role: Role = Field(Role.CUSTOMER, description="customer | agent | admin")
    verified: bool = Field(False, description="Mirrors the identity provider's email verification")
    location: Optional[str] = Field(None, description="Current operating / delivery zone")
    delivery_address: Optional[str] = Field(None, description="Last used delivery address")

    # agent-only
    is_paid_agent: Optional[bool] = None
    rating: Optional[float] = None
    total_ratings: Optional[int] = None
    transaction_id: Optional[str] = None
    match_status: Optional[MatchStatus] = None
    last_payment_period: Optional[str] = Field(None, description="YYYY-MM-DD of the last settlement claim")

    created_at: Optional[str] = None


class OrderItem(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    unit: str = ""


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "order"
    """
    customer_id: str
    customer_name: str
    customer_phone: str = ""
    items: List[OrderItem]
    delivery_type: DeliveryType
    delivery_address: str
    special_request: str = ""
    location: str
    subtotal: float = Field(..., ge=0)
    delivery_charge: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = Field(OrderStatus.PENDING, description="pending, accepted, delivered")
    created_at: str
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    accepted_at: Optional[str] = None
    delivered_at: Optional[str] = None


class SettlementClaim(BaseModel):
    """
    Settlement claims collection schema
    Collection: "settlementclaim"

    One document per submitted transaction id. Documents are never deleted;
    only status and resolved_at change, once, when an admin gives a verdict.
    """
    agent_id: str
    agent_name: str = ""
    period: str = Field(..., description="Delivery period (YYYY-MM-DD) being settled")
    transaction_id: str
    amount: float = Field(..., ge=0)
    status: ClaimStatus = ClaimStatus.PENDING
    created_at: str
    resolved_at: Optional[str] = None


# -----------------------------
# Request payloads
# -----------------------------

class CheckoutRequest(BaseModel):
    items: List[OrderItem] = Field(default_factory=list)
    delivery_type: DeliveryType = DeliveryType.NORMAL
    delivery_address: str = ""
    special_request: str = ""


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    delivery_address: Optional[str] = None


class SettlementSubmission(BaseModel):
    transaction_id: str


class RoleChange(BaseModel):
    role: Role


class VerifiedChange(BaseModel):
    verified: bool


class PaidChange(BaseModel):
    is_paid_agent: bool


class Verdict(BaseModel):
    match_status: MatchStatus
