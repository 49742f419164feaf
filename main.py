import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import lifecycle
import settlement
import users
from config import DELIVERY_ZONES, settings
from database import get_db, get_optional_db, ping
from errors import AuthError, MarketError, PolicyError, StoreError
from identity import Identity, IdentityProvider, bearer_token, decode_token
from live import LiveQuery, VerificationWatcher, stream
from periods import (
    current_delivery_period,
    delivery_window_message,
    hours_until_delivery_window,
    is_delivery_hours,
    is_payment_window,
    now_local,
    settlement_period,
)
from schemas import (
    CheckoutRequest,
    PaidChange,
    ProfileUpdate,
    Role,
    RoleChange,
    SettlementSubmission,
    Verdict,
    VerifiedChange,
)

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Grocery Delivery Marketplace API")
app.state.identity_provider = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    if isinstance(exc, StoreError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# -----------------------------
# Dependencies
# -----------------------------

def get_now() -> datetime:
    return now_local()


def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    return decode_token(bearer_token(authorization))


def get_identity_provider(request: Request) -> IdentityProvider:
    provider = request.app.state.identity_provider
    if provider is None:
        raise HTTPException(status_code=500, detail="Identity provider not configured")
    return provider


def get_current_user(identity: Identity = Depends(get_identity), db: Database = Depends(get_db),
                     now: datetime = Depends(get_now)) -> Dict[str, Any]:
    return users.ensure_user(db, identity.id, identity.email, identity.name, identity.email_verified, now)


def check_access(user: Dict[str, Any], roles: tuple) -> Dict[str, Any]:
    if user.get("role") != Role.ADMIN.value and not user.get("verified"):
        raise AuthError("Your account is not yet verified. Please verify your email address",
                        code="email-not-verified", status_code=403)
    if user.get("role") not in roles:
        raise AuthError("Access denied. Please check your permissions", code="permission-denied", status_code=403)
    return user


def require_role(*roles: Role):
    allowed = tuple(role.value for role in roles)

    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        return check_access(user, allowed)

    return dependency


customer_only = require_role(Role.CUSTOMER)
agent_only = require_role(Role.AGENT)
admin_only = require_role(Role.ADMIN)


# -----------------------------
# Service
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Grocery Delivery Backend Running"}


@app.get("/test")
def test_database(db: Optional[Database] = Depends(get_optional_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }

    if db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = ping(db)[:10]
            response["database"] = "✅ Connected & Working"
        except StoreError as e:
            response["database"] = f"⚠️ Connected but Error: {e.message[:50]}"

    return response


@app.get("/api/zones")
def list_zones() -> List[str]:
    return DELIVERY_ZONES


@app.get("/api/windows")
def delivery_windows(now: datetime = Depends(get_now)):
    return {
        "period": current_delivery_period(now),
        "settlement_period": settlement_period(now),
        "is_delivery_hours": is_delivery_hours(now.hour),
        "is_payment_window": is_payment_window(now.hour),
        "hours_until_delivery": hours_until_delivery_window(now),
        "message": delivery_window_message(now),
    }


# -----------------------------
# Profile
# -----------------------------

@app.get("/api/me")
def read_me(user: Dict[str, Any] = Depends(get_current_user)):
    return user


@app.patch("/api/me")
def update_me(changes: ProfileUpdate, user: Dict[str, Any] = Depends(get_current_user),
              db: Database = Depends(get_db)):
    return users.update_profile(db, user["id"], changes)


@app.post("/api/me/verification")
def refresh_verification(identity: Identity = Depends(get_identity), db: Database = Depends(get_db),
                         provider: IdentityProvider = Depends(get_identity_provider)):
    user = users.get_user(db, identity.id)
    return users.mirror_verification(db, user, provider.reload(identity))


# -----------------------------
# Orders: customers
# -----------------------------

@app.post("/api/orders", status_code=201)
def checkout(payload: CheckoutRequest, customer: Dict[str, Any] = Depends(customer_only),
             db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return lifecycle.place_order(db, customer, payload, now)


@app.get("/api/orders")
def my_orders(customer: Dict[str, Any] = Depends(customer_only), db: Database = Depends(get_db)):
    return lifecycle.customer_orders(db, customer["id"])


@app.delete("/api/orders/{order_id}")
def cancel_order(order_id: str, customer: Dict[str, Any] = Depends(customer_only),
                 db: Database = Depends(get_db)):
    lifecycle.cancel_order(db, customer, order_id)
    return {"id": order_id, "status": "cancelled"}


# -----------------------------
# Orders: agents
# -----------------------------

@app.post("/api/orders/{order_id}/accept")
def accept_order(order_id: str, agent: Dict[str, Any] = Depends(agent_only),
                 db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return lifecycle.accept_order(db, agent, order_id, now)


@app.post("/api/orders/{order_id}/deliver")
def deliver_order(order_id: str, agent: Dict[str, Any] = Depends(agent_only),
                  db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return lifecycle.deliver_order(db, agent, order_id, now)


@app.get("/api/agent/queue")
def agent_queue(agent: Dict[str, Any] = Depends(agent_only), db: Database = Depends(get_db)):
    location = agent.get("location")
    return {"location": location, "orders": lifecycle.pending_orders(db, location) if location else []}


@app.get("/api/agent/orders")
def agent_active_orders(agent: Dict[str, Any] = Depends(agent_only), db: Database = Depends(get_db)):
    return lifecycle.active_orders(db, agent["id"])


@app.get("/api/agent/deliveries")
def agent_deliveries(agent: Dict[str, Any] = Depends(agent_only), db: Database = Depends(get_db)):
    return lifecycle.delivered_orders(db, agent["id"])


# -----------------------------
# Settlement: agents
# -----------------------------

@app.get("/api/agent/earnings")
def agent_earnings(agent: Dict[str, Any] = Depends(agent_only), db: Database = Depends(get_db),
                   now: datetime = Depends(get_now)):
    return settlement.agent_earnings(db, agent, now)


@app.post("/api/agent/settlements", status_code=201)
def submit_settlement(payload: SettlementSubmission, agent: Dict[str, Any] = Depends(agent_only),
                      db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return settlement.submit_claim(db, agent, payload.transaction_id, now)


@app.get("/api/agent/settlements")
def my_settlements(agent: Dict[str, Any] = Depends(agent_only), db: Database = Depends(get_db)):
    return settlement.claim_history(db, agent["id"])


# -----------------------------
# Admin
# -----------------------------

@app.get("/api/admin/users")
def admin_list_users(role: Optional[Role] = None, admin: Dict[str, Any] = Depends(admin_only),
                     db: Database = Depends(get_db)):
    return users.list_users(db, role)


@app.put("/api/admin/users/{user_id}/role")
def admin_change_role(user_id: str, payload: RoleChange, admin: Dict[str, Any] = Depends(admin_only),
                      db: Database = Depends(get_db)):
    return users.change_role(db, user_id, payload.role)


@app.put("/api/admin/users/{user_id}/verified")
def admin_set_verified(user_id: str, payload: VerifiedChange, admin: Dict[str, Any] = Depends(admin_only),
                       db: Database = Depends(get_db)):
    return users.set_verified(db, user_id, payload.verified)


@app.put("/api/admin/users/{user_id}/paid")
def admin_set_paid(user_id: str, payload: PaidChange, admin: Dict[str, Any] = Depends(admin_only),
                   db: Database = Depends(get_db)):
    return settlement.set_agent_paid(db, user_id, payload.is_paid_agent)


@app.post("/api/admin/users/{user_id}/verdict")
def admin_verdict(user_id: str, payload: Verdict, admin: Dict[str, Any] = Depends(admin_only),
                  db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return settlement.verify_claim(db, user_id, payload.match_status, now)


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin: Dict[str, Any] = Depends(admin_only),
                      db: Database = Depends(get_db)):
    users.delete_user(db, user_id)
    return {"id": user_id, "status": "deleted"}


@app.post("/api/admin/agents/paid")
def admin_set_all_paid(admin: Dict[str, Any] = Depends(admin_only), db: Database = Depends(get_db)):
    return {"updated": settlement.set_all_paid(db)}


@app.get("/api/admin/agents/{user_id}/settlements")
def admin_agent_settlements(user_id: str, admin: Dict[str, Any] = Depends(admin_only),
                            db: Database = Depends(get_db)):
    return settlement.claim_history(db, user_id)


@app.get("/api/admin/settlements")
def admin_settlement_overview(period: Optional[str] = None, admin: Dict[str, Any] = Depends(admin_only),
                              db: Database = Depends(get_db), now: datetime = Depends(get_now)):
    return settlement.settlement_overview(db, period or settlement_period(now))


# -----------------------------
# Live feeds
# -----------------------------

def _socket_identity(db: Database, token: str) -> Tuple[Identity, Dict[str, Any]]:
    identity = decode_token(token)
    user = users.ensure_user(db, identity.id, identity.email, identity.name, identity.email_verified)
    return identity, user


def _socket_user(db: Database, token: str, roles: tuple) -> Dict[str, Any]:
    _, user = _socket_identity(db, token)
    return check_access(user, roles)


@app.websocket("/ws/agent/queue")
async def agent_queue_feed(websocket: WebSocket, token: str = Query(""), db: Database = Depends(get_db)):
    roles = (Role.AGENT.value,)
    try:
        agent = await run_in_threadpool(_socket_user, db, token, roles)
    except MarketError as exc:
        logger.warning("Rejected queue feed: %s", exc.message)
        await websocket.close(code=4401)
        return
    await websocket.accept()

    def fetch():
        # re-read the record each time: a zone change re-targets the feed, a role change ends it
        current = users.get_user(db, agent["id"])
        if current.get("role") not in roles:
            raise PolicyError("Your account no longer has agent access")
        location = current.get("location")
        return {"location": location, "orders": lifecycle.pending_orders(db, location) if location else []}

    async def push():
        async for snapshot in LiveQuery(fetch, settings.live_poll_seconds).snapshots():
            await websocket.send_json(snapshot)

    await stream(websocket, push)


@app.websocket("/ws/me/verification")
async def verification_feed(websocket: WebSocket, token: str = Query(""), db: Database = Depends(get_db)):
    provider = websocket.app.state.identity_provider
    try:
        identity, user = await run_in_threadpool(_socket_identity, db, token)
    except MarketError as exc:
        logger.warning("Rejected verification feed: %s", exc.message)
        await websocket.close(code=4401)
        return
    await websocket.accept()

    if user.get("verified"):
        await websocket.send_json({"verified": True})
        await websocket.close()
        return
    if provider is None:
        await websocket.send_json({"error": {"code": "unavailable", "message": "Identity provider not configured",
                                             "logout": False}})
        await websocket.close(code=1011)
        return

    watcher = VerificationWatcher(
        provider,
        identity,
        on_verified=lambda: users.mirror_verification(db, user, True),
        interval=settings.verification_poll_seconds,
        max_attempts=settings.verification_max_attempts,
    )

    async def watch():
        await websocket.send_json({"verified": await watcher.wait()})

    await stream(websocket, watch)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
