"""FastAPI server for the Business Onboarding wizard"""
from __future__ import annotations

import json
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from wizard.backend import OnboardingAPI
from wizard.config import MAX_KYC_FILE_SIZE, ONBOARDING_API_URL, PORT
from wizard.kyc import PendingFile
from wizard.session import WizardSession
from wizard.validation import StepValidationError


# ────────── BACKEND CLIENT ──────────

api = OnboardingAPI()


# ────────── SESSION STORE ──────────

sessions: dict[str, WizardSession] = {}


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

app = FastAPI(title="Business Onboarding Wizard")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def announce():
    print(f"[STARTUP] Onboarding backend at {ONBOARDING_API_URL}")


@app.on_event("shutdown")
async def close_backend():
    await api.aclose()


# ────────── MODELS ──────────

class StartRequest(BaseModel):
    # Existing draft row (backend field names) to resume, if any
    draft: Optional[dict] = None


class StepRequest(BaseModel):
    data: Any = None


class BusinessTypeRequest(BaseModel):
    business_type: Any


class NavigateRequest(BaseModel):
    index: Optional[int] = None
    direction: Optional[str] = None


# ────────── HELPERS ──────────

def _get_session(session_id: str) -> WizardSession:
    session = sessions.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _result(session_id: str, session: WizardSession, result) -> dict:
    return {
        "session_id": session_id,
        "ok": result.ok,
        "message": result.message,
        "warning": result.warning,
        "duplicate": result.duplicate,
        "state": session.snapshot(),
    }


def _requirements(session: WizardSession) -> list:
    return [
        {
            **req.model_dump(exclude={"pending_local_file"}),
            "show_upload": req.show_upload(),
            "is_expired": req.is_expired(),
            "satisfied": req.satisfies_gate(),
            "pending_file": req.pending_local_file.filename if req.pending_local_file else None,
        }
        for req in session.requirements or []
    ]


def _validation_failed(e: StepValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"ok": False, "message": f"Please fix the {e.step_key} form", "errors": e.errors},
    )


# ────────── ROUTES ──────────

@app.get("/health")
async def health():
    return {"status": "healthy", "sessions": len(sessions)}


@app.post("/api/session")
async def create_session(req: StartRequest):
    """Open the wizard, fresh or on an existing draft."""
    session_id = str(uuid.uuid4())[:8]

    def draft_saved(business_id):
        print(f"[SESSION {session_id}] Draft saved for business {business_id}")

    def completed(business_id):
        print(f"[SESSION {session_id}] Onboarding of business {business_id} confirmed, closing wizard")
        _log_turn(session_id, {"action": "closed_after_completion", "business_id": business_id})

    start_time = time.time()
    session = WizardSession(api, draft=req.draft, on_draft_saved=draft_saved, on_success=completed)
    result = await session.open()
    sessions[session_id] = session

    _log_turn(session_id, {
        "action": "open",
        "turn_time": round(time.time() - start_time, 2),
        "business_id": session.business_id,
        "ok": result.ok,
        "message": result.message,
    })
    return _result(session_id, session, result)


@app.get("/api/session/{session_id}")
async def get_session(session_id: str):
    """Get current session state."""
    session = _get_session(session_id)
    return {"session_id": session_id, "state": session.snapshot()}


@app.delete("/api/session/{session_id}")
async def close_session(session_id: str):
    """Host dialog closed: reset the wizard and forget the session."""
    session = _get_session(session_id)
    session.close()
    sessions.pop(session_id, None)
    _log_turn(session_id, {"action": "close"})
    return {"ok": True}


@app.post("/api/session/{session_id}/steps/{step_key}")
async def submit_step(session_id: str, step_key: str, req: StepRequest):
    """Validate, save and reconcile one form step, then advance."""
    session = _get_session(session_id)

    start_time = time.time()
    try:
        result = await session.submit(step_key, req.data)
    except StepValidationError as e:
        _log_turn(session_id, {"action": "submit", "step": step_key, "ok": False, "errors": e.errors})
        raise _validation_failed(e)

    _log_turn(session_id, {
        "action": "submit",
        "step": step_key,
        "turn_time": round(time.time() - start_time, 2),
        "ok": result.ok,
        "message": result.message,
        "warning": result.warning,
        "business_id": session.business_id,
        "active_step": session.active_step.key,
    })
    return _result(session_id, session, result)


@app.post("/api/session/{session_id}/business-type")
async def change_business_type(session_id: str, req: BusinessTypeRequest):
    """Business type picked in the details form, before it is saved."""
    session = _get_session(session_id)
    session.change_business_type(req.business_type)
    return {"session_id": session_id, "state": session.snapshot()}


@app.post("/api/session/{session_id}/navigate")
async def navigate(session_id: str, req: NavigateRequest):
    """Stepper click (index) or Back button (direction="back")."""
    session = _get_session(session_id)
    if req.direction == "back":
        session.back()
        moved = True
    elif req.index is not None:
        moved = session.go_to(req.index)
    else:
        raise HTTPException(status_code=400, detail="Provide an index or direction='back'")
    return {"session_id": session_id, "ok": moved, "state": session.snapshot()}


@app.get("/api/session/{session_id}/admins")
async def admins_prefill(session_id: str):
    session = _get_session(session_id)
    return {"admins": await session.admins_prefill()}


# ────────── KYC ──────────

@app.get("/api/session/{session_id}/kyc")
async def kyc_requirements(session_id: str, refresh: bool = False):
    """Reconciled document requirements for the current business type."""
    session = _get_session(session_id)
    result = await session.load_kyc(force=refresh)
    return {**_result(session_id, session, result), "requirements": _requirements(session)}


@app.post("/api/session/{session_id}/kyc/{index}")
async def attach_document(
    session_id: str,
    index: int,
    file: UploadFile = File(...),
    expires_on: Optional[str] = Form(None),
):
    """Attach a file to one requirement. Nothing is uploaded until the step is submitted."""
    session = _get_session(session_id)
    if session.requirements is None:
        raise HTTPException(status_code=400, detail="Load the KYC requirements first")

    data = await file.read()
    if len(data) > MAX_KYC_FILE_SIZE:
        raise HTTPException(status_code=400, detail=f"File exceeds {MAX_KYC_FILE_SIZE // (1024 * 1024)}MB limit")

    try:
        session.attach_document(
            index,
            PendingFile(filename=file.filename or "document", content_type=file.content_type or "", content=data),
            expires_on or None,
        )
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"ok": True, "index": index, "requirements": _requirements(session)}


@app.post("/api/session/{session_id}/kyc")
async def submit_documents(session_id: str):
    """Upload attached documents (or confirm the ones already on file) and advance."""
    session = _get_session(session_id)

    start_time = time.time()
    try:
        result = await session.submit_kyc()
    except StepValidationError as e:
        _log_turn(session_id, {"action": "submit_kyc", "ok": False, "errors": e.errors})
        raise _validation_failed(e)

    _log_turn(session_id, {
        "action": "submit_kyc",
        "turn_time": round(time.time() - start_time, 2),
        "ok": result.ok,
        "message": result.message,
        "business_id": session.business_id,
    })
    return {**_result(session_id, session, result), "requirements": _requirements(session)}


# ────────── COMPLETION ──────────

@app.get("/api/session/{session_id}/summary")
async def summary(session_id: str):
    session = _get_session(session_id)
    return {"session_id": session_id, "completion": session.gate.status, "summary": session.summary()}


@app.post("/api/session/{session_id}/complete")
async def complete(session_id: str):
    """Finalize onboarding. Repeat calls never reach the backend twice."""
    session = _get_session(session_id)

    start_time = time.time()
    result = await session.finalize()

    _log_turn(session_id, {
        "action": "complete",
        "turn_time": round(time.time() - start_time, 2),
        "ok": result.ok,
        "duplicate": result.duplicate,
        "message": result.message,
        "business_id": session.business_id,
        "completed": session.gate.status == "completed",
    })
    return _result(session_id, session, result)


# ────────── LOOKUPS ──────────

@app.get("/api/lookups/business-types")
async def business_types():
    resp = await api.business_types()
    if not resp.get("success"):
        raise HTTPException(status_code=502, detail=resp.get("message") or "Failed to load business types")
    return resp.get("data") or []


@app.get("/api/lookups/business-levels")
async def business_levels():
    resp = await api.business_levels()
    if not resp.get("success"):
        raise HTTPException(status_code=502, detail=resp.get("message") or "Failed to load business levels")
    return resp.get("data") or []


# ────────── LOGS ──────────

@app.get("/api/logs")
async def list_logs():
    """List all session logs."""
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
    total_time = sum(t.get("turn_time", 0) for t in turns)
    return {
        "session_id": session_id,
        "total_turns": len(turns),
        "total_time": round(total_time, 2),
        "completed": any(t.get("completed") for t in turns),
        "business_id": next((t["business_id"] for t in reversed(turns) if t.get("business_id")), None),
        "turns": turns,
    }


# ────────── MAIN ──────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
