"""
Agent income, payment due and cash settlement.

Each delivered order earns the agent a fixed income and makes them owe the
platform a fixed cut. An agent settles a delivery period by paying the cut
by hand and submitting the transaction reference; an admin then matches it
against the received payment.

Claims are kept twice: every submission is appended to the
"settlementclaim" collection (the history), and the agent's user record
carries the current claim in transaction_id / match_status /
last_payment_period (the slot the agent dashboard reads).

Note the two different hour rules below. The per-period figures ignore
orders delivered before the delivery day opens (00:00-05:59) while the
monthly and daily-history reports count every delivered order. Both are
kept as they are; see DESIGN.md.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database

from config import DELIVERY_HOURS, INCOME_PER_DELIVERY, PAYMENT_PER_DELIVERY
from database import aggregate, create_document, get_documents, update_document, to_object_id
from errors import ConflictError, PolicyError, ValidationError
from lifecycle import delivered_orders
from periods import (
    current_delivery_period,
    is_payment_window,
    month_of,
    now_local,
    parse_timestamp,
    settlement_period,
    timestamp,
)
from schemas import ClaimStatus, MatchStatus, OrderStatus, Role, SettlementClaim
from users import COLLECTION as USERS, get_user, list_users

logger = logging.getLogger(__name__)

COLLECTION = "settlementclaim"

# states of the agent's claim slot for one period
NO_CLAIM = "none"
AWAITING_VERIFICATION = "pending"
REJECTED = "not_matched"
SETTLED = "settled"


class PeriodSummary(BaseModel):
    period: str
    deliveries: int
    income: int
    payment_due: int


class MonthlySummary(BaseModel):
    month: str
    deliveries: int
    income: int


class DailyStats(BaseModel):
    deliveries: int = 0
    income: int = 0
    payment: int = 0


# -----------------------------
# Aggregation
# -----------------------------

def counts_toward_period(order: Dict[str, Any], period: str) -> bool:
    delivered_at = order.get("delivered_at")
    if not delivered_at:
        return False
    delivered = parse_timestamp(delivered_at)
    return delivered.date().isoformat() == period and delivered.hour >= DELIVERY_HOURS[0]


def period_orders(orders: Iterable[Dict[str, Any]], period: str) -> List[Dict[str, Any]]:
    return [o for o in orders if counts_toward_period(o, period)]


def summarize_period(orders: Iterable[Dict[str, Any]], period: str) -> PeriodSummary:
    count = len(period_orders(orders, period))
    return PeriodSummary(
        period=period,
        deliveries=count,
        income=count * INCOME_PER_DELIVERY,
        payment_due=count * PAYMENT_PER_DELIVERY,
    )


def monthly_summary(orders: Iterable[Dict[str, Any]], month: str) -> MonthlySummary:
    # every delivery in the month counts, whatever the hour
    count = sum(1 for o in orders if (o.get("delivered_at") or "").startswith(month))
    return MonthlySummary(month=month, deliveries=count, income=count * INCOME_PER_DELIVERY)


def daily_history(orders: Iterable[Dict[str, Any]]) -> Dict[str, DailyStats]:
    history: Dict[str, DailyStats] = {}
    for order in orders:
        delivered_at = order.get("delivered_at")
        if not delivered_at:
            continue
        day = history.setdefault(delivered_at[:10], DailyStats())
        day.deliveries += 1
        day.income += INCOME_PER_DELIVERY
        day.payment += PAYMENT_PER_DELIVERY
    return dict(sorted(history.items(), reverse=True))


def period_bounds(period: str) -> tuple:
    """String range of delivered_at values that count toward ``period``."""
    try:
        day = datetime.strptime(period, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid period {period!r}, expected YYYY-MM-DD")
    start = f"{day.isoformat()}T{DELIVERY_HOURS[0]:02d}:00:00"
    end = (day + timedelta(days=1)).isoformat()
    return start, end


# -----------------------------
# Claim slot
# -----------------------------

def claim_status(agent: Dict[str, Any], period: str) -> str:
    if agent.get("last_payment_period") != period:
        return NO_CLAIM
    if agent.get("match_status") == MatchStatus.NOT_MATCHED.value:
        return REJECTED
    if agent.get("transaction_id"):
        return AWAITING_VERIFICATION
    return SETTLED


def submit_claim(db: Database, agent: Dict[str, Any], transaction_id: str,
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    transaction_id = (transaction_id or "").strip()
    if not transaction_id:
        raise ValidationError("Please enter transaction ID")

    moment = now or now_local()
    if not is_payment_window(moment.hour):
        raise PolicyError("Payment can only be submitted between 12:00 AM to 5:59 AM")

    period = settlement_period(moment)
    summary = summarize_period(delivered_orders(db, agent["id"]), period)
    if summary.payment_due <= 0:
        raise PolicyError("No payment due for this period")

    status = claim_status(agent, period)
    if status == AWAITING_VERIFICATION:
        raise PolicyError("A payment for this period is already awaiting verification")
    if status == SETTLED:
        raise PolicyError("Payment for this period is already complete")
    earlier = agent.get("last_payment_period")
    if status == NO_CLAIM and earlier and claim_status(agent, earlier) == AWAITING_VERIFICATION:
        raise PolicyError(f"Your payment for {earlier} is still awaiting verification")

    # the slot takes a new claim only when empty or holding a rejected one
    slot_free = {"$or": [
        {"transaction_id": None, "last_payment_period": {"$ne": period}},
        {"match_status": MatchStatus.NOT_MATCHED.value},
    ]}
    fields = {"transaction_id": transaction_id, "last_payment_period": period, "match_status": None}
    if not update_document(db, USERS, agent["id"], fields, expected=slot_free):
        raise ConflictError("A payment for this period was just submitted")

    claim = SettlementClaim(
        agent_id=agent["id"],
        agent_name=agent.get("name") or "",
        period=period,
        transaction_id=transaction_id,
        amount=summary.payment_due,
        created_at=timestamp(moment),
    )
    claim_id = create_document(db, COLLECTION, claim)
    logger.info("Agent %s submitted settlement %s for %s (due %s)",
                agent["id"], transaction_id, period, summary.payment_due)
    return dict(claim.model_dump(mode="json"), id=claim_id)


def _open_claim(db: Database, agent: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    claims = get_documents(db, COLLECTION, {
        "agent_id": agent["id"],
        "period": agent.get("last_payment_period"),
        "transaction_id": agent.get("transaction_id"),
        "status": {"$in": [ClaimStatus.PENDING.value, ClaimStatus.NOT_MATCHED.value]},
    }, limit=1, sort=[("created_at", DESCENDING)])
    return claims[0] if claims else None


def verify_claim(db: Database, agent_id: str, verdict: MatchStatus,
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    """Record the admin's verdict on the agent's current claim.

    matched: the agent becomes a paid agent and the claim slot is emptied so
    the next period can be submitted.
    not_matched: the agent is marked unpaid and the transaction id stays on
    the record for another look.
    """
    agent = get_user(db, agent_id)
    if agent.get("role") != Role.AGENT.value:
        raise PolicyError("Only agents have payments to verify")
    if not agent.get("transaction_id"):
        raise PolicyError("This agent has no payment awaiting verification")

    if verdict == MatchStatus.MATCHED:
        fields = {"is_paid_agent": True, "transaction_id": None, "match_status": None}
        claim_state = ClaimStatus.MATCHED
    else:
        fields = {"is_paid_agent": False, "match_status": MatchStatus.NOT_MATCHED.value}
        claim_state = ClaimStatus.NOT_MATCHED

    claim = _open_claim(db, agent)
    expected = {"transaction_id": agent["transaction_id"], "last_payment_period": agent.get("last_payment_period")}
    if not update_document(db, USERS, agent_id, fields, expected=expected):
        raise ConflictError("The agent's payment changed, refresh and try again")

    if claim is not None:
        update_document(db, COLLECTION, to_object_id(claim["id"]),
                        {"status": claim_state.value, "resolved_at": timestamp(now)})
    else:
        logger.warning("No settlement claim document for agent %s transaction %s",
                       agent_id, agent["transaction_id"])

    logger.info("Settlement %s of agent %s marked %s", agent["transaction_id"], agent_id, verdict.value)
    return get_user(db, agent_id)


def set_agent_paid(db: Database, agent_id: str, is_paid: bool) -> Dict[str, Any]:
    agent = get_user(db, agent_id)
    if agent.get("role") != Role.AGENT.value:
        raise PolicyError("Payment status only applies to agents")
    update_document(db, USERS, agent_id, {"is_paid_agent": is_paid})
    logger.info("Agent %s set %s by admin", agent_id, "paid" if is_paid else "unpaid")
    return get_user(db, agent_id)


def set_all_paid(db: Database) -> int:
    agents = list_users(db, Role.AGENT)
    for agent in agents:
        update_document(db, USERS, agent["id"], {"is_paid_agent": True})
    logger.info("All %d agents set as paid", len(agents))
    return len(agents)


def claim_history(db: Database, agent_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, COLLECTION, {"agent_id": agent_id}, sort=[("created_at", DESCENDING)])


# -----------------------------
# Reports
# -----------------------------

def agent_earnings(db: Database, agent: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    moment = now or now_local()
    orders = delivered_orders(db, agent["id"])
    today = current_delivery_period(moment)
    settling = settlement_period(moment)
    return {
        "today": summarize_period(orders, today).model_dump(),
        "settlement": summarize_period(orders, settling).model_dump(),
        "claim_status": claim_status(agent, settling),
        "transaction_id": agent.get("transaction_id"),
        "match_status": agent.get("match_status"),
        "payment_window_open": is_payment_window(moment.hour),
        "monthly": monthly_summary(orders, month_of(moment)).model_dump(),
        "daily": {day: stats.model_dump() for day, stats in daily_history(orders).items()},
    }


def settlement_overview(db: Database, period: str) -> List[Dict[str, Any]]:
    """Per-agent figures for one period, for the admin payments view."""
    start, end = period_bounds(period)
    pipeline = [
        {"$match": {
            "status": OrderStatus.DELIVERED.value,
            "delivered_at": {"$gte": start, "$lt": end},
        }},
        {"$group": {"_id": "$agent_id", "deliveries": {"$sum": 1}}},
    ]
    counts = {row["_id"]: int(row.get("deliveries", 0)) for row in aggregate(db, "order", pipeline)}

    overview = []
    for agent in list_users(db, Role.AGENT):
        deliveries = counts.get(agent["id"], 0)
        overview.append({
            "agent_id": agent["id"],
            "name": agent.get("name"),
            "phone": agent.get("phone"),
            "location": agent.get("location"),
            "period": period,
            "deliveries": deliveries,
            "income": deliveries * INCOME_PER_DELIVERY,
            "payment_due": deliveries * PAYMENT_PER_DELIVERY,
            "is_paid_agent": bool(agent.get("is_paid_agent")),
            "transaction_id": agent.get("transaction_id"),
            "match_status": agent.get("match_status"),
            "claim_status": claim_status(agent, period),
        })
    return overview
