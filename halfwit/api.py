"""
FastAPI transport for the halfwit bisection server.

Runs are synchronous: POST /v1/sessions returns once the session is done,
stalled or cancelled.

What the adapter runs is fixed by the server configuration, read from the
YAML file named by HALFWIT_CONFIG. Requests may tune the search and the
verdict mapping but never the command, shell, cwd or environment names.
"""

import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import BisectConfig, load_config
from .errors import ConfigurationError, HalfwitError
from .server import BisectServer
from .stores.jsonl import JsonlJournal

CONFIG_ENV = "HALFWIT_CONFIG"
SERVER_ONLY_KEYS = ("command", "shell", "cwd", "enabled_var", "disabled_var")

app = FastAPI(title="halfwit")
server: Optional[BisectServer] = None
config: Optional[BisectConfig] = None


def get_config() -> BisectConfig:
    global config
    if config is None:
        path = os.environ.get(CONFIG_ENV)
        config = load_config(path) if path else BisectConfig()
    return config


def get_server() -> BisectServer:
    global server
    if server is None:
        server = BisectServer(journal=JsonlJournal(get_config().journal_dir))
    return server


def session_config(requested: Optional[Dict[str, Any]]) -> BisectConfig:
    """Overlay a request's config on the server's, refusing adapter settings."""
    data = dict(requested or {})
    for section in ("oracle", "search"):
        if not isinstance(data.get(section) or {}, dict):
            raise ConfigurationError(f"'{section}' must be a mapping.")
    oracle = dict(data.get("oracle") or {})
    supplied = sorted(k for k in SERVER_ONLY_KEYS if k in oracle)
    if supplied:
        raise ConfigurationError(
            "Adapter settings are fixed by the server configuration.",
            details={"keys": supplied},
        )
    base = get_config()
    data["oracle"] = {**base.oracle.to_dict(), **oracle}
    data["search"] = {**base.search.to_dict(), **(data.get("search") or {})}
    data["journal_dir"] = base.journal_dir
    return BisectConfig.from_dict(data)


class StartSessionRequest(BaseModel):
    universe: List[str]
    config: Optional[Dict[str, Any]] = None
    run: bool = True


class ResumeSessionRequest(BaseModel):
    max_retries: Optional[int] = None
    trial_budget: Optional[int] = None


ERROR_STATUS = {
    "SESSION_NOT_FOUND": 404,
    "SESSION_CLOSED": 409,
    "CONFIGURATION": 400,
    "JOURNAL_CORRUPTION": 500,
    "ORACLE_INVOCATION": 502,
    "VERDICT_AMBIGUITY": 409,
}


@app.exception_handler(HalfwitError)
async def _halfwit_error_handler(_, exc: HalfwitError):
    status = ERROR_STATUS.get(exc.code, 400)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


@app.post("/v1/sessions")
def start_session(req: StartSessionRequest):
    report = get_server().start_session(
        universe=req.universe, config=session_config(req.config), run=req.run
    )
    return report.to_dict()


@app.post("/v1/sessions/{session_id}/resume")
def resume_session(session_id: str, req: ResumeSessionRequest):
    report = get_server().resume_session(
        session_id=session_id,
        max_retries=req.max_retries,
        trial_budget=req.trial_budget,
    )
    return report.to_dict()


@app.get("/v1/sessions")
def list_sessions():
    return {"sessions": get_server().sessions()}


@app.get("/v1/sessions/{session_id}")
def session_status(session_id: str):
    return get_server().status(session_id).to_dict()


@app.get("/v1/sessions/{session_id}/trials")
def session_trials(session_id: str):
    state = get_server().journal.load(session_id)
    return {"trials": [t.to_dict(order=state.universe) for t in state.trials]}


@app.post("/v1/sessions/{session_id}/abort")
def abort_session(session_id: str):
    return get_server().abort(session_id).to_dict()
