# backend/app/routers/realtime.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket
from starlette.concurrency import run_in_threadpool

from ..auth import Principal, resolve_principal
from ..config import settings
from ..db import SessionLocal
from ..domain.errors import AppraisalHubError
from ..domain.lifecycle import PUBLISHED, Role
from ..services.change_relay import UPDATE, ChangeEvent, Subscription

log = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

ENTITY_TYPES = ("appraisals", "comparable_properties", "reports", "profiles")
# non-admins only follow appraisal rows
PUBLIC_ENTITY_TYPES = ("appraisals",)

POLL_SECONDS = 0.5


def visible_to(p: Principal, entity_type: str, record: dict[str, Any]) -> bool:
    if p.role == Role.admin:
        return True
    if entity_type not in PUBLIC_ENTITY_TYPES:
        return False
    if p.role == Role.customer:
        return record.get("customer_id") == p.user_id
    if record.get("agent_id") == p.user_id:
        return True
    return record.get("status") == PUBLISHED and record.get("agent_id") is None


def left_feed(p: Principal, ev: ChangeEvent) -> bool:
    """True when an open feed item was just taken or withdrawn."""
    if p.role != Role.agent or ev.entity_type != "appraisals" or ev.kind != UPDATE or ev.previous is None:
        return False
    was_open = ev.previous.get("status") == PUBLISHED and ev.previous.get("agent_id") is None
    return was_open and ev.record.get("status") != PUBLISHED


def view_for(p: Principal, ev: ChangeEvent) -> Optional[dict[str, Any]]:
    """The message `p` receives for `ev`, or None."""
    if visible_to(p, ev.entity_type, ev.record):
        return ev.as_dict()
    if left_feed(p, ev):
        # other agents only learn that the item is gone from the feed
        return {**ev.as_dict(), "record": {"id": ev.record.get("id"), "status": ev.record.get("status")}}
    return None


def subscription_filter(p: Principal) -> Optional[dict[str, Any]]:
    # agents need unfiltered rows: the feed is everybody's published work
    if p.role == Role.customer:
        return {"customer_id": p.user_id}
    return None


def _authenticate(ws: WebSocket) -> Principal:
    token = ws.query_params.get("token") or ws.cookies.get(settings.jwt_cookie_name)
    with SessionLocal() as db:
        return resolve_principal(
            db,
            token=token,
            dev_email=ws.headers.get(settings.dev_header_user_email),
            dev_role=ws.headers.get(settings.dev_header_user_role),
        )


async def _pump(ws: WebSocket, sub: Subscription, p: Principal) -> None:
    while not sub.closed:
        ev = await run_in_threadpool(sub.get, POLL_SECONDS)
        if ev is None:
            continue
        msg = view_for(p, ev)
        if msg is not None:
            await ws.send_json(msg)


async def _until_disconnect(ws: WebSocket) -> None:
    while True:
        msg = await ws.receive()
        if msg["type"] == "websocket.disconnect":
            return


@router.websocket("/{entity_type}")
async def realtime(ws: WebSocket, entity_type: str):
    """
    Streams change events for `entity_type` as JSON, restricted to the
    records the caller may see. Auth: ?token=<jwt>, the JWT cookie, or the
    dev headers.
    """
    try:
        p = await run_in_threadpool(_authenticate, ws)
    except AppraisalHubError as e:
        log.info("realtime auth rejected: %s", e.message)
        await ws.close(code=4401)
        return

    if entity_type not in ENTITY_TYPES or (p.role != Role.admin and entity_type not in PUBLIC_ENTITY_TYPES):
        await ws.close(code=4403)
        return

    relay = ws.app.state.change_relay
    # subscribe before accepting so nothing committed after the handshake is missed
    with relay.open(entity_type, subscription_filter(p)) as sub:
        await ws.accept()
        log.info("realtime subscriber joined %s", entity_type, extra={"user_id": p.user_id, "role": p.role.value})
        pump = asyncio.ensure_future(_pump(ws, sub, p))
        closer = asyncio.ensure_future(_until_disconnect(ws))
        done, pending = await asyncio.wait({pump, closer}, return_when=asyncio.FIRST_COMPLETED)

        # wakes a pump blocked in sub.get()
        sub.close()
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if pump in done and pump.exception() is not None:
            log.warning("realtime stream ended: %s", pump.exception(), extra={"user_id": p.user_id})
    log.info("realtime subscriber left %s", entity_type, extra={"user_id": p.user_id})
