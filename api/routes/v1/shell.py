"""
api/routes/v1/shell.py -- Shell state, UI-level intents and the audit log.

Routes:
  GET    /api/v1/shell/state         -- current snapshot + smoothed instability
  PATCH  /api/v1/shell/form          -- partial form write (no subscriber fan-out)
  POST   /api/v1/shell/navigate      -- NAVIGATE_TO_* intent for the requested view
  DELETE /api/v1/shell/error         -- MEMORY_CLEAR_ERROR_STATE intent
  GET    /api/v1/shell/intents       -- declarations with live admission verdicts
  GET    /api/v1/shell/audit         -- audit ring, newest first
  GET    /api/v1/shell/audit/stats   -- aggregate audit statistics

Form writes are direct store mutations: they are keystroke-rate and carry no
authority, so they do not go through the gateway.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuditEntryResponse,
    AuditStatsResponse,
    FormUpdate,
    IntentInfo,
    NavigateRequest,
    StateResponse,
)
from api.responses import intent_response
from core.gateway import ActionGateway
from core.intents import IntentCategory
from core.models import View
from core.store import StateStore

router = APIRouter()


def _state_response(store: StateStore) -> StateResponse:
    return StateResponse.from_state(store.get_state(), store.get_smoothed_instability())


@router.get("/shell/state", response_model=StateResponse)
async def get_state(request: Request) -> StateResponse:
    return _state_response(request.app.state.store)


@router.patch("/shell/form", response_model=StateResponse)
async def update_form(request: Request, body: FormUpdate) -> StateResponse:
    store: StateStore = request.app.state.store
    store.update_form(**body.fields)
    return _state_response(store)


@router.post("/shell/navigate")
async def navigate(request: Request, body: NavigateRequest) -> JSONResponse:
    if body.view == View.LOADING:
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_view", "message": "The loading view cannot be navigated to."},
        )
    return intent_response(await request.app.state.auth_service.navigate(body.view))


@router.delete("/shell/error")
async def clear_error(request: Request) -> JSONResponse:
    return intent_response(await request.app.state.auth_service.clear_error())


@router.get("/shell/intents", response_model=list[IntentInfo])
async def list_intents(request: Request, category: Optional[IntentCategory] = None) -> list[IntentInfo]:
    """List declared intents; `allowed` is what the gateway would decide right now."""
    gateway: ActionGateway = request.app.state.gateway
    decls = gateway.registry.by_category(category) if category else list(gateway.registry)
    infos = []
    for decl in decls:
        admission = gateway.can_execute(decl.name)
        infos.append(IntentInfo.from_declaration(decl, admission.allowed, admission.reason))
    return infos


@router.get("/shell/audit", response_model=list[AuditEntryResponse])
async def audit_log(request: Request, limit: int = Query(default=50, ge=1, le=1000)) -> list[AuditEntryResponse]:
    entries = request.app.state.gateway.get_log()
    return [AuditEntryResponse.from_entry(e) for e in reversed(entries[-limit:])]


@router.get("/shell/audit/stats", response_model=AuditStatsResponse)
async def audit_stats(request: Request) -> AuditStatsResponse:
    return AuditStatsResponse.from_stats(request.app.state.gateway.get_stats())
