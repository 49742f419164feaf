from datetime import datetime

import pytest

import settlement
from errors import ConflictError, PolicyError, ValidationError
from schemas import MatchStatus

DAY = "2024-01-15"
NIGHT = datetime(2024, 1, 16, 2, 0)  # payment window settling 2024-01-15


def add_delivery(db, agent_id, delivered_at):
    db["order"].insert_one({
        "customer_id": "cust",
        "status": "delivered",
        "agent_id": agent_id,
        "delivery_type": "normal",
        "location": "Dhanmondi",
        "created_at": delivered_at,
        "delivered_at": delivered_at,
    })


@pytest.fixture
def agent(db, make_user):
    user = make_user("agent", "agent")
    add_delivery(db, "agent", f"{DAY}T09:00:00")
    add_delivery(db, "agent", f"{DAY}T17:30:00")
    return user


def reload(db, uid="agent"):
    doc = db["user"].find_one({"_id": uid})
    doc["id"] = doc.pop("_id")
    return doc


def test_submit_records_claim_and_fills_slot(db, agent):
    claim = settlement.submit_claim(db, agent, "  BK123  ", NIGHT)
    assert claim["period"] == DAY
    assert claim["amount"] == 20
    assert claim["status"] == "pending"
    assert claim["transaction_id"] == "BK123"

    user = reload(db)
    assert user["transaction_id"] == "BK123"
    assert user["last_payment_period"] == DAY
    assert user["match_status"] is None
    assert settlement.claim_status(user, DAY) == settlement.AWAITING_VERIFICATION


def test_submit_outside_payment_window(db, agent):
    with pytest.raises(PolicyError, match="12:00 AM"):
        settlement.submit_claim(db, agent, "BK123", datetime(2024, 1, 15, 22, 0))


def test_submit_without_transaction_id(db, agent):
    with pytest.raises(ValidationError):
        settlement.submit_claim(db, agent, "   ", NIGHT)


def test_submit_with_nothing_due(db, make_user):
    idle = make_user("idle", "agent")
    add_delivery(db, "idle", f"{DAY}T03:00:00")  # before the delivery day opened
    with pytest.raises(PolicyError, match="No payment due"):
        settlement.submit_claim(db, idle, "BK123", NIGHT)


def test_resubmit_while_awaiting_verification(db, agent):
    settlement.submit_claim(db, agent, "BK123", NIGHT)
    with pytest.raises(PolicyError, match="awaiting verification"):
        settlement.submit_claim(db, reload(db), "BK999", NIGHT)


def test_stale_agent_snapshot_hits_conditional_write(db, agent):
    settlement.submit_claim(db, agent, "BK123", NIGHT)
    with pytest.raises(ConflictError):
        settlement.submit_claim(db, agent, "BK999", NIGHT)
    assert db["settlementclaim"].count_documents({}) == 1


def test_matched_verdict_clears_claim_and_pays_agent(db, agent):
    settlement.submit_claim(db, agent, "BK123", NIGHT)
    user = settlement.verify_claim(db, "agent", MatchStatus.MATCHED, NIGHT)

    assert user["is_paid_agent"] is True
    assert user["transaction_id"] is None
    assert user["match_status"] is None
    assert settlement.claim_status(user, DAY) == settlement.SETTLED

    history = settlement.claim_history(db, "agent")
    assert history[0]["status"] == "matched"
    assert history[0]["resolved_at"] == "2024-01-16T02:00:00"

    with pytest.raises(PolicyError, match="already complete"):
        settlement.submit_claim(db, user, "BK124", NIGHT)


def test_not_matched_keeps_transaction_and_allows_resubmission(db, agent):
    settlement.submit_claim(db, agent, "BK123", NIGHT)
    user = settlement.verify_claim(db, "agent", MatchStatus.NOT_MATCHED, NIGHT)

    assert user["is_paid_agent"] is False
    assert user["match_status"] == "not_matched"
    assert user["transaction_id"] == "BK123"

    settlement.submit_claim(db, user, "BK777", datetime(2024, 1, 16, 3, 0))
    user = reload(db)
    assert user["transaction_id"] == "BK777"
    assert user["match_status"] is None

    statuses = [c["status"] for c in settlement.claim_history(db, "agent")]
    assert statuses == ["pending", "not_matched"]


def test_rejected_claim_can_still_be_matched_on_review(db, agent):
    settlement.submit_claim(db, agent, "BK123", NIGHT)
    settlement.verify_claim(db, "agent", MatchStatus.NOT_MATCHED, NIGHT)
    user = settlement.verify_claim(db, "agent", MatchStatus.MATCHED, NIGHT)
    assert user["is_paid_agent"] is True
    assert user["transaction_id"] is None
    assert settlement.claim_history(db, "agent")[0]["status"] == "matched"


def test_verdict_without_claim(db, agent, make_user):
    with pytest.raises(PolicyError):
        settlement.verify_claim(db, "agent", MatchStatus.MATCHED, NIGHT)
    make_user("cust", "customer")
    with pytest.raises(PolicyError):
        settlement.verify_claim(db, "cust", MatchStatus.MATCHED, NIGHT)


def test_set_all_paid_ignores_claim_state(db, make_user):
    make_user("a1", "agent", is_paid_agent=False)
    make_user("a2", "agent", is_paid_agent=False, transaction_id="TX", last_payment_period=DAY)
    make_user("cust", "customer")

    assert settlement.set_all_paid(db) == 2
    assert reload(db, "a1")["is_paid_agent"] is True
    assert reload(db, "a2")["is_paid_agent"] is True
    assert reload(db, "a2")["transaction_id"] == "TX"
    assert reload(db, "cust")["is_paid_agent"] is None


def test_set_agent_paid_only_for_agents(db, agent, make_user):
    assert settlement.set_agent_paid(db, "agent", False)["is_paid_agent"] is False
    make_user("cust", "customer")
    with pytest.raises(PolicyError):
        settlement.set_agent_paid(db, "cust", True)


def test_agent_earnings_report(db, agent):
    add_delivery(db, "agent", "2024-01-16T01:00:00")
    add_delivery(db, "agent", "2024-01-16T08:00:00")
    report = settlement.agent_earnings(db, agent, datetime(2024, 1, 16, 12, 0))

    assert report["today"] == {"period": "2024-01-16", "deliveries": 1, "income": 40, "payment_due": 10}
    assert report["settlement"]["period"] == "2024-01-16"
    assert report["monthly"] == {"month": "2024-01", "deliveries": 4, "income": 160}
    assert report["daily"]["2024-01-16"]["deliveries"] == 2
    assert report["daily"]["2024-01-15"]["payment"] == 20
    assert report["payment_window_open"] is False
    assert report["claim_status"] == settlement.NO_CLAIM


def test_settlement_overview(db, agent, make_user):
    make_user("idle", "agent")
    add_delivery(db, "idle", f"{DAY}T04:00:00")
    settlement.submit_claim(db, agent, "BK123", NIGHT)

    rows = {row["agent_id"]: row for row in settlement.settlement_overview(db, DAY)}
    assert rows["agent"]["deliveries"] == 2
    assert rows["agent"]["income"] == 80
    assert rows["agent"]["payment_due"] == 20
    assert rows["agent"]["transaction_id"] == "BK123"
    assert rows["agent"]["claim_status"] == settlement.AWAITING_VERIFICATION
    assert rows["idle"]["deliveries"] == 0
    assert rows["idle"]["claim_status"] == settlement.NO_CLAIM


def test_new_period_waits_for_earlier_claim_review(db, agent):
    add_delivery(db, "agent", "2024-01-16T09:00:00")
    settlement.submit_claim(db, agent, "TX1", datetime(2024, 1, 16, 1, 0))

    next_night = datetime(2024, 1, 17, 1, 0)
    with pytest.raises(PolicyError, match="2024-01-15 is still awaiting verification"):
        settlement.submit_claim(db, reload(db), "TX2", next_night)
    with pytest.raises(ConflictError):
        settlement.submit_claim(db, agent, "TX2", next_night)
    assert reload(db)["transaction_id"] == "TX1"

    settlement.verify_claim(db, "agent", MatchStatus.MATCHED, next_night)
    settlement.submit_claim(db, reload(db), "TX2", next_night)

    history = [(c["period"], c["transaction_id"], c["status"]) for c in settlement.claim_history(db, "agent")]
    assert history == [("2024-01-16", "TX2", "pending"), ("2024-01-15", "TX1", "matched")]


def test_new_period_allowed_after_earlier_claim_rejected(db, agent):
    add_delivery(db, "agent", "2024-01-16T09:00:00")
    settlement.submit_claim(db, agent, "TX1", datetime(2024, 1, 16, 1, 0))
    settlement.verify_claim(db, "agent", MatchStatus.NOT_MATCHED, datetime(2024, 1, 16, 2, 0))

    settlement.submit_claim(db, reload(db), "TX2", datetime(2024, 1, 17, 1, 0))
    statuses = {c["transaction_id"]: c["status"] for c in settlement.claim_history(db, "agent")}
    assert statuses == {"TX1": "not_matched", "TX2": "pending"}
