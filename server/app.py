"""FastAPI server for the report ordering core"""
from __future__ import annotations

import inspect
import json
import time
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ordering import tools
from ordering.artifacts import ArtifactCollector
from ordering.catalog import LAND_TITLE_OPTIONS, SELECT_ALL, Category, SearchType
from ordering.composer import OrderComposer
from ordering.config import ABR_GUID, PORT, REPORT_API_BASE_URL
from ordering.errors import FlowStateError, LookupFailed, OrderingError, OrderValidationError, SubmissionError
from ordering.lookup import LookupAdapter
from ordering.pricing import price
from ordering.sequencer import (
    BulkLandTitleSequence,
    LandTitleFlow,
    OrganisationConfirmFlow,
    PersonDisambiguationSequence,
    flows_for,
)
from ordering.store import SelectionStore


# ────────── SESSION STORE ──────────

sessions: dict = {}


# ────────── SESSION LOGGING ──────────

LOG_DIR = Path(__file__).parent.parent / "logs"
LOG_DIR.mkdir(exist_ok=True)


def _log_turn(session_id: str, turn: dict):
    """Append a turn entry to the session's JSONL log file."""
    log_file = LOG_DIR / f"{session_id}.jsonl"
    turn["timestamp"] = datetime.utcnow().isoformat() + "Z"
    with open(log_file, "a") as f:
        f.write(json.dumps(turn, default=str) + "\n")


# ────────── APP ──────────

app = FastAPI(title="Report Ordering")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    print(f"[STARTUP] Report service at {REPORT_API_BASE_URL}")
    if not ABR_GUID:
        print("[STARTUP] ABR_GUID not set, organisation suggestions use mock results")


@app.on_event("shutdown")
async def shutdown():
    await tools._http_client.aclose()


# ────────── MODELS ──────────

class StartRequest(BaseModel):
    category: str = Category.ORGANISATION.value
    user_id: Any = None
    matter_id: Any = None
    matter_name: str = ""

class CategoryRequest(BaseModel):
    category: str

class ToggleRequest(BaseModel):
    scope: str          # main | sub_type | enrichment
    option: str

class ResetRequest(BaseModel):
    scope: str = "all"

class CompanyRequest(BaseModel):
    name: str
    abn: str

class IndividualRequest(BaseModel):
    first_name: str
    last_name: str
    dob: str = ""

class AddressRequest(BaseModel):
    address: str

class StatesRequest(BaseModel):
    states: list[str]

class LandTitleDetailRequest(BaseModel):
    option: str
    detail: str

class LandTitleAddOnRequest(BaseModel):
    option: str
    enabled: bool

class LandTitleOptionRequest(BaseModel):
    option: str

class FlowActionRequest(BaseModel):
    action: str
    value: Any = None

class EmailRequest(BaseModel):
    email: str


# ────────── FLOW DISPATCH ──────────

FLOW_ACTIONS = {
    "asic_type": {"toggle", "confirm", "cancel"},
    "court_type": {"choose", "confirm", "cancel"},
    "document_id": {"confirm", "cancel"},
    "land_title": {"load_counts", "continue_to_detail", "choose_detail",
                   "continue_to_add_on", "choose_add_on", "confirm", "cancel"},
    "title_reference": {"load_references", "toggle_reference", "confirm", "cancel"},
    "person": {"load_candidates", "pick", "cancel_stage", "cancel"},
    "organisation": {"confirm", "cancel"},
    "bulk_land_title": {"advance", "cancel"},
}


async def run_flow_action(session: dict, action: str, value: Any = None) -> Any:
    """Send one action to the active flow; finished flows leave the queue."""
    flows = session["flows"]
    if not flows:
        raise FlowStateError("No confirmation is pending")
    active = flows[0]

    target = active
    if isinstance(active, BulkLandTitleSequence) and action not in FLOW_ACTIONS[active.kind]:
        target = active.current

    if action not in FLOW_ACTIONS.get(target.kind, set()):
        raise FlowStateError(f"{target.kind} flow does not accept {action}")

    method = getattr(target, action)
    try:
        result = method() if value is None else method(value)
        if inspect.isawaitable(result):
            result = await result
    finally:
        # A land-title flow aborted by a failed lookup still moves the bulk sequence on
        if target is not active and target.finished:
            active.advance()
        if active.finished:
            flows.pop(0)
    return result


# ────────── HELPERS ──────────

def _get_session(session_id: str) -> dict:
    session = sessions.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _http_error(e: OrderingError) -> HTTPException:
    if isinstance(e, OrderValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, FlowStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LookupFailed):
        return HTTPException(status_code=502, detail={"error": str(e), "kind": e.kind})
    if isinstance(e, SubmissionError):
        return HTTPException(status_code=502, detail={
            "error": str(e),
            "report_type": e.report_type,
            "submitted": e.submitted,
            "artifacts": e.artifacts,
        })
    return HTTPException(status_code=400, detail=str(e))


def _still_pending(flow, store: SelectionStore, scope: str) -> bool:
    """Whether a queued flow survives a reset of `scope`."""
    staged = store.staged()
    if isinstance(flow, BulkLandTitleSequence):
        return any(f.change in staged for f in flow.flows[flow.index:])
    if flow.change:
        return flow.change in staged
    if isinstance(flow, LandTitleFlow):
        return store.is_selected(flow.option)
    return scope != "all"


def _json_safe(value):
    if isinstance(value, set):
        return sorted(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _quote(session: dict) -> dict:
    store: SelectionStore = session["store"]
    return _json_safe(price(store.category, store.state))


def _safe_state(session: dict) -> dict:
    """Return a JSON-safe view of the session for the UI."""
    store: SelectionStore = session["store"]
    flows = session["flows"]
    return {
        "session_id": session["session_id"],
        "order": _json_safe(store.state),
        "quote": _quote(session),
        "flow": flows[0].describe() if flows else None,
        "pending_flows": len(flows),
        "status": session["composer"].status.value,
        "artifacts": session["collector"].list(),
    }


def _respond(session: dict, event: str, **extra) -> dict:
    _log_turn(session["session_id"], {
        "event": event,
        "category": session["store"].state["category"],
        "flow": session["flows"][0].kind if session["flows"] else "",
        **{k: v for k, v in extra.items() if k != "result"},
    })
    return {"session_id": session["session_id"], **_json_safe(extra), "state": _safe_state(session)}


# ────────── ENDPOINTS ──────────

@app.get("/health")
async def health():
    return {"status": "healthy", "sessions": len(sessions)}


@app.post("/api/session")
async def create_session(req: StartRequest):
    """Create a new ordering session."""
    session_id = str(uuid.uuid4())[:8]
    try:
        store = SelectionStore()
        store.set_category(req.category)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown category {req.category}")

    collector = ArtifactCollector()
    sessions[session_id] = {
        "session_id": session_id,
        "store": store,
        "lookup": LookupAdapter(),
        "collector": collector,
        "composer": OrderComposer(collector),
        "flows": [],
        "user_id": req.user_id,
        "matter_id": req.matter_id,
        "matter_name": req.matter_name,
    }
    return _respond(sessions[session_id], "start")


@app.get("/api/session/{session_id}")
async def get_session(session_id: str):
    """Get current session state."""
    return {"session_id": session_id, "state": _safe_state(_get_session(session_id))}


@app.post("/api/session/{session_id}/category")
async def set_category(session_id: str, req: CategoryRequest):
    session = _get_session(session_id)
    try:
        session["store"].set_category(req.category)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown category {req.category}")
    session["flows"] = []
    return _respond(session, "category", category=req.category)


@app.post("/api/session/{session_id}/toggle")
async def toggle(session_id: str, req: ToggleRequest):
    """Toggle a main search, sub-type or additional search."""
    session = _get_session(session_id)
    store: SelectionStore = session["store"]
    if session["flows"]:
        raise HTTPException(status_code=409, detail="Finish the open confirmation first")

    try:
        if req.scope == "main":
            staged = store.toggle_main(req.option)
        elif req.scope == "sub_type":
            store.toggle_sub_type(req.option)
            staged = []
        elif req.scope == "enrichment":
            staged = store.toggle_enrichment(req.option)
        else:
            raise HTTPException(status_code=422, detail=f"Unknown scope {req.scope}")
        bulk = req.scope == "enrichment" and req.option == SELECT_ALL
        session["flows"].extend(flows_for(store, staged, session["lookup"], bulk=bulk))
    except OrderingError as e:
        raise _http_error(e)

    return _respond(session, "toggle", scope=req.scope, option=req.option, staged=len(staged))


@app.post("/api/session/{session_id}/reset")
async def reset(session_id: str, req: ResetRequest):
    session = _get_session(session_id)
    try:
        session["store"].reset(req.scope)
    except OrderingError as e:
        raise _http_error(e)
    session["flows"] = [f for f in session["flows"] if _still_pending(f, session["store"], req.scope)]
    return _respond(session, "reset", scope=req.scope)


@app.post("/api/session/{session_id}/flow")
async def flow_action(session_id: str, req: FlowActionRequest):
    """Drive the open confirmation flow."""
    session = _get_session(session_id)
    try:
        result = await run_flow_action(session, req.action, req.value)
    except OrderingError as e:
        raise _http_error(e)
    if isinstance(result, dict) and "status" in result and "token" in result:
        result = {"status": result["status"], "error": result["error"]}
    elif not isinstance(result, (str, bool, int, list, set, type(None))):
        result = None
    return _respond(session, "flow", action=req.action, result=result)


# ────────── IDENTITY ──────────

@app.get("/api/session/{session_id}/suggestions")
async def suggestions(session_id: str, q: str = ""):
    """Organisation suggestions for the search box (debounced; stale results are empty)."""
    session = _get_session(session_id)
    result = await session["lookup"].organisation_suggestions(q)
    return {"status": result["status"], "token": result["token"],
            "results": result["results"], "error": result["error"]}


@app.post("/api/session/{session_id}/company")
async def pick_company(session_id: str, req: CompanyRequest):
    """A suggestion was picked: hold it as pending and queue its confirmation."""
    session = _get_session(session_id)
    store: SelectionStore = session["store"]
    try:
        store.set_pending_company(req.name, req.abn)
    except OrderingError as e:
        raise _http_error(e)
    session["lookup"].suppress_next("organisation", req.name)
    session["flows"] = [f for f in session["flows"] if f.kind != "organisation"]
    session["flows"].insert(0, OrganisationConfirmFlow(store, None, session["lookup"]))
    return _respond(session, "company", name=req.name, abn=req.abn)


@app.delete("/api/session/{session_id}/company")
async def clear_company(session_id: str):
    session = _get_session(session_id)
    session["store"].clear_company()
    session["flows"] = [f for f in session["flows"] if f.kind != "organisation"]
    return _respond(session, "company_cleared")


@app.post("/api/session/{session_id}/individual")
async def set_individual(session_id: str, req: IndividualRequest):
    session = _get_session(session_id)
    session["store"].set_individual(req.first_name, req.last_name, req.dob)
    return _respond(session, "individual", first_name=req.first_name, last_name=req.last_name)


@app.post("/api/session/{session_id}/individual/confirm")
async def confirm_individual(session_id: str):
    """Start the record-by-record name confirmation."""
    session = _get_session(session_id)
    try:
        sequence = PersonDisambiguationSequence(session["store"], None, session["lookup"])
    except OrderingError as e:
        raise _http_error(e)
    if not sequence.finished:
        session["flows"].insert(0, sequence)
    return _respond(session, "individual_confirm", stages=sequence.stages)


@app.post("/api/session/{session_id}/address")
async def set_address(session_id: str, req: AddressRequest):
    session = _get_session(session_id)
    session["store"].set_address(req.address)
    return _respond(session, "address")


# ────────── LAND TITLE ──────────

@app.post("/api/session/{session_id}/land-title/states")
async def set_states(session_id: str, req: StatesRequest):
    session = _get_session(session_id)
    try:
        session["store"].set_land_title_states(req.states)
    except OrderingError as e:
        raise _http_error(e)
    return _respond(session, "land_title_states", states=req.states)


@app.post("/api/session/{session_id}/land-title/detail")
async def set_detail(session_id: str, req: LandTitleDetailRequest):
    session = _get_session(session_id)
    try:
        session["store"].set_land_title_detail(req.option, req.detail)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown detail {req.detail}")
    except OrderingError as e:
        raise _http_error(e)
    return _respond(session, "land_title_detail", option=req.option, detail=req.detail)


@app.post("/api/session/{session_id}/land-title/add-on")
async def set_add_on(session_id: str, req: LandTitleAddOnRequest):
    session = _get_session(session_id)
    try:
        session["store"].set_land_title_add_on(req.option, req.enabled)
    except OrderingError as e:
        raise _http_error(e)
    return _respond(session, "land_title_add_on", option=req.option, enabled=req.enabled)


@app.post("/api/session/{session_id}/land-title/configure")
async def configure_land_title(session_id: str, req: LandTitleOptionRequest):
    """Open the land-title flow again for an option that is already selected."""
    session = _get_session(session_id)
    if session["flows"]:
        raise HTTPException(status_code=409, detail="Finish the open confirmation first")
    if req.option not in LAND_TITLE_OPTIONS or req.option == SearchType.TITLE_REFERENCE.value:
        raise HTTPException(status_code=422, detail=f"{req.option} has no detail to configure")
    try:
        session["flows"].append(LandTitleFlow(session["store"], None, session["lookup"], option=req.option))
    except OrderingError as e:
        raise _http_error(e)
    return _respond(session, "land_title_configure", option=req.option)


# ────────── ORDER ──────────

@app.get("/api/session/{session_id}/quote")
async def quote(session_id: str):
    return _quote(_get_session(session_id))


@app.post("/api/session/{session_id}/submit")
async def submit(session_id: str):
    """Validate the order and request every report, one after another."""
    session = _get_session(session_id)
    if session["flows"]:
        raise HTTPException(status_code=409, detail="Finish the open confirmation first")

    start_time = time.time()
    try:
        result = await session["composer"].submit(session["store"].snapshot(), {
            "user_id": session["user_id"],
            "matter_id": session["matter_id"],
            "matter_name": session["matter_name"],
        })
    except OrderingError as e:
        _log_turn(session_id, {"event": "submit_failed", "error": str(e),
                               "artifacts": session["collector"].count()})
        raise _http_error(e)

    turn_time = round(time.time() - start_time, 2)
    return _respond(session, "submit", submitted=result["submitted"], turn_time=turn_time)


@app.post("/api/session/{session_id}/email")
async def email(session_id: str, req: EmailRequest):
    session = _get_session(session_id)
    store: SelectionStore = session["store"]
    try:
        result = await session["collector"].send_by_email(
            req.email, session["matter_name"] or "Matter", store.state["document_id"] or None,
        )
    except OrderingError as e:
        raise _http_error(e)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error") or "Email delivery failed")
    return _respond(session, "email", sent=result["count"])


@app.get("/api/session/{session_id}/artifacts")
async def artifacts(session_id: str):
    collector: ArtifactCollector = _get_session(session_id)["collector"]
    return {
        "count": collector.count(),
        "artifacts": [{"filename": f, "url": collector.url_for(f)} for f in collector.list()],
    }


@app.get("/api/logs")
async def list_logs():
    """List recent session logs."""
    logs = sorted(LOG_DIR.glob("*.jsonl"), key=lambda f: f.stat().st_mtime, reverse=True)
    return [
        {
            "session_id": f.stem,
            "size_kb": round(f.stat().st_size / 1024, 1),
            "modified": datetime.fromtimestamp(f.stat().st_mtime).isoformat(),
        }
        for f in logs[:50]
    ]


@app.get("/api/logs/{session_id}")
async def get_log(session_id: str):
    """Get full session log."""
    log_file = LOG_DIR / f"{session_id}.jsonl"
    if not log_file.exists():
        raise HTTPException(status_code=404, detail="Log not found")

    turns = [json.loads(line) for line in log_file.read_text().strip().split("\n") if line.strip()]
    submit_time = sum(t.get("turn_time", 0) for t in turns)
    return {
        "session_id": session_id,
        "total_turns": len(turns),
        "submit_time": round(submit_time, 2),
        "submitted": any(t.get("event") == "submit" for t in turns),
        "turns": turns,
    }


# ────────── MAIN ──────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
