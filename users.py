"""
User records.

The user document is written by three parties: the user (profile fields),
the agent/admin pair (settlement claim fields, see settlement.py) and the
admin (role, verification, paid flag). Each function here $sets only the
fields of one group so concurrent writers of different groups never clobber
each other.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from config import DELIVERY_ZONES
from database import create_document, delete_document, get_document, get_documents, update_document
from errors import NotFoundError, PolicyError, ValidationError
from periods import timestamp
from schemas import ProfileUpdate, Role, User

logger = logging.getLogger(__name__)

COLLECTION = "user"

PROFILE_FIELDS = ("name", "phone", "location", "delivery_address")
AGENT_FIELDS = ("is_paid_agent", "rating", "total_ratings", "transaction_id", "match_status", "last_payment_period")


def get_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = get_document(db, COLLECTION, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def ensure_user(db: Database, user_id: str, email: str = "", name: Optional[str] = None,
                email_verified: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Load the user's record, creating a customer record on first sight."""
    user = get_document(db, COLLECTION, user_id)
    if user is None:
        record = User(
            name=name or "User",
            email=email,
            role=Role.CUSTOMER,
            verified=email_verified,
            created_at=timestamp(now),
        )
        create_document(db, COLLECTION, record, document_id=user_id)
        logger.info("Created customer record for %s", user_id)
        return get_user(db, user_id)
    return mirror_verification(db, user, email_verified)


def mirror_verification(db: Database, user: Dict[str, Any], email_verified: bool) -> Dict[str, Any]:
    # only ever copies a true flag; admins may still unverify by hand
    if email_verified and not user.get("verified"):
        update_document(db, COLLECTION, user["id"], {"verified": True})
        logger.info("Mirrored email verification for %s", user["id"])
        user = dict(user, verified=True)
    return user


def update_profile(db: Database, user_id: str, changes: ProfileUpdate) -> Dict[str, Any]:
    fields = {}
    for key, value in changes.model_dump(exclude_unset=True).items():
        if key not in PROFILE_FIELDS or value is None:
            continue
        fields[key] = value.strip()

    location = fields.get("location")
    if location is not None and location not in DELIVERY_ZONES:
        raise ValidationError(f"Unknown delivery location: {location}")

    if fields:
        if not update_document(db, COLLECTION, user_id, fields):
            raise NotFoundError("User not found")
    return get_user(db, user_id)


def save_delivery_address(db: Database, user_id: str, address: str) -> None:
    update_document(db, COLLECTION, user_id, {"delivery_address": address})


def role_change_fields(role: Role) -> Dict[str, Any]:
    if role == Role.CUSTOMER:
        fields = {key: None for key in AGENT_FIELDS}
    elif role == Role.AGENT:
        fields = {"is_paid_agent": False, "rating": 0, "total_ratings": 0}
    else:
        raise ValidationError("Only customer and agent roles can be assigned")
    fields["role"] = role.value
    return fields


def change_role(db: Database, user_id: str, role: Role) -> Dict[str, Any]:
    user = get_user(db, user_id)
    if user.get("role") == Role.ADMIN.value:
        raise PolicyError("Admin accounts cannot be reassigned")
    if user.get("role") == role.value:
        return user
    update_document(db, COLLECTION, user_id, role_change_fields(role))
    logger.info("Role of %s changed %s -> %s", user_id, user.get("role"), role.value)
    return get_user(db, user_id)


def set_verified(db: Database, user_id: str, verified: bool) -> Dict[str, Any]:
    if not update_document(db, COLLECTION, user_id, {"verified": verified}):
        raise NotFoundError("User not found")
    logger.info("User %s %s by admin", user_id, "verified" if verified else "unverified")
    return get_user(db, user_id)


def delete_user(db: Database, user_id: str) -> None:
    """Remove the store record only; the identity account is left alone."""
    user = get_user(db, user_id)
    if user.get("role") == Role.ADMIN.value:
        raise PolicyError("Admin accounts cannot be deleted")
    delete_document(db, COLLECTION, user_id)
    logger.warning("Deleted user record %s (%s)", user_id, user.get("email"))


def list_users(db: Database, role: Optional[Role] = None) -> List[Dict[str, Any]]:
    if role is not None:
        filter_dict = {"role": role.value}
    else:
        filter_dict = {"role": {"$ne": Role.ADMIN.value}}
    return get_documents(db, COLLECTION, filter_dict, sort=[("created_at", DESCENDING)])
