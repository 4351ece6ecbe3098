"""
Durable trial journal: one JSON line per record, one directory per session.

Layout:
    <root>/<session_id>/journal.jsonl   header, trials and policy changes, optional abort
    <root>/<session_id>/run.log         human-readable controller log

Every record carries a SHA-256 hash chained to the previous record. Appends
are flushed and fsynced before returning. Loading validates every record and
the chain; any failure raises JournalCorruption. Nothing is ever repaired.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ValidationError

from ..config import BisectConfig, SearchConfig
from ..errors import ConfigurationError, JournalCorruption, SessionClosed, SessionNotFound
from ..model import Trial, Verdict
from ..spi.journal import JournalState


JOURNAL_FILE = "journal.jsonl"
LOG_FILE = "run.log"
GENESIS = "0" * 64


class SessionRecord(BaseModel):
    kind: Literal["session"]
    session_id: str
    universe: List[str]
    config: Dict[str, Any]
    created: float
    hash: str


class TrialRecord(BaseModel):
    kind: Literal["trial"]
    seq: int
    mask: List[str]
    verdict: Verdict
    duration: float
    timestamp: float
    reason: Optional[str] = None
    hash: str


class PolicyRecord(BaseModel):
    kind: Literal["policy"]
    search: Dict[str, Any]
    timestamp: float
    hash: str


class AbortRecord(BaseModel):
    kind: Literal["abort"]
    timestamp: float
    hash: str


RECORD_MODELS = {
    "session": SessionRecord,
    "trial": TrialRecord,
    "policy": PolicyRecord,
    "abort": AbortRecord,
}


class JsonlJournal:
    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        # session_id -> (head hash, last seq, universe, aborted)
        self._heads: Dict[str, Tuple[str, int, Tuple[str, ...], bool]] = {}
        # Guards _heads and the journal files.
        self._lock = threading.RLock()

    def session_dir(self, session_id: str) -> Path:
        return self.root / session_id

    def create_session(
        self,
        session_id: str,
        universe: Tuple[str, ...],
        config: BisectConfig,
    ) -> None:
        directory = self.session_dir(session_id)
        with self._lock:
            try:
                directory.mkdir(parents=True, exist_ok=False)
            except FileExistsError:
                raise ConfigurationError(
                    f"Session '{session_id}' already exists.", details={"session_id": session_id}
                ) from None
            _fsync_dir(self.root)

            record = {
                "kind": "session",
                "session_id": session_id,
                "universe": list(universe),
                "config": config.to_dict(),
                "created": time.time(),
            }
            head = self._write(session_id, record, GENESIS)
            self._heads[session_id] = (head, 0, tuple(universe), False)

    def append(self, session_id: str, trial: Trial) -> None:
        with self._lock:
            head, last_seq, universe, aborted = self._head(session_id)
            if aborted:
                raise SessionClosed(f"Session '{session_id}' was aborted.")
            if trial.seq != last_seq + 1:
                raise JournalCorruption(
                    f"Out-of-order append: expected seq {last_seq + 1}, got {trial.seq}.",
                    details={"expected": last_seq + 1, "seq": trial.seq},
                )
            unknown = trial.mask - set(universe)
            if unknown:
                raise JournalCorruption(
                    "Trial mask references candidates outside the universe.",
                    details={"unknown": sorted(unknown)},
                )
            record = {"kind": "trial"}
            record.update(trial.to_dict(order=universe))
            head = self._write(session_id, record, head)
            self._heads[session_id] = (head, trial.seq, universe, False)

    def update_policy(self, session_id: str, search: SearchConfig) -> None:
        with self._lock:
            head, last_seq, universe, aborted = self._head(session_id)
            if aborted:
                raise SessionClosed(f"Session '{session_id}' was aborted.")
            record = {"kind": "policy", "search": search.to_dict(), "timestamp": time.time()}
            head = self._write(session_id, record, head)
            self._heads[session_id] = (head, last_seq, universe, False)

    def mark_aborted(self, session_id: str) -> None:
        with self._lock:
            head, last_seq, universe, aborted = self._head(session_id)
            if aborted:
                return
            head = self._write(session_id, {"kind": "abort", "timestamp": time.time()}, head)
            self._heads[session_id] = (head, last_seq, universe, True)

    def load(self, session_id: str) -> JournalState:
        with self._lock:
            return self._load(session_id)

    def _load(self, session_id: str) -> JournalState:
        path = self.session_dir(session_id) / JOURNAL_FILE
        if not path.exists():
            raise SessionNotFound(f"Unknown session_id '{session_id}'.")

        text = self._read(path)
        if text and not text.endswith("\n"):
            raise JournalCorruption(
                "Journal ends with an incomplete record.",
                details={"path": str(path)},
            )

        prev = GENESIS
        header: Optional[SessionRecord] = None
        trials: List[Trial] = []
        policy: Optional[PolicyRecord] = None
        aborted = False
        for lineno, line in enumerate(text.splitlines(), start=1):
            raw, record = _parse(line, lineno)
            expected = _chain(prev, raw)
            if record.hash != expected:
                raise JournalCorruption(
                    f"Hash chain broken at line {lineno}.",
                    details={"line": lineno, "path": str(path)},
                )
            prev = record.hash

            if isinstance(record, SessionRecord):
                if header is not None:
                    raise JournalCorruption(f"Duplicate session header at line {lineno}.")
                if record.session_id != session_id:
                    raise JournalCorruption(
                        "Journal header names a different session.",
                        details={"header": record.session_id, "requested": session_id},
                    )
                if len(set(record.universe)) != len(record.universe) or not record.universe:
                    raise JournalCorruption("Journal universe is empty or has duplicates.")
                header = record
                continue

            if header is None:
                raise JournalCorruption(f"Record before session header at line {lineno}.")
            if aborted:
                raise JournalCorruption(f"Record after abort at line {lineno}.")

            if isinstance(record, AbortRecord):
                aborted = True
                continue

            if isinstance(record, PolicyRecord):
                policy = record
                continue

            expected_seq = trials[-1].seq + 1 if trials else 1
            if record.seq != expected_seq:
                raise JournalCorruption(
                    f"Trial sequence gap at line {lineno}.",
                    details={"expected": expected_seq, "seq": record.seq},
                )
            unknown = set(record.mask) - set(header.universe)
            if unknown:
                raise JournalCorruption(
                    f"Trial {record.seq} references candidates outside the universe.",
                    details={"unknown": sorted(unknown)},
                )
            trials.append(Trial.from_dict(record.model_dump()))

        if header is None:
            raise JournalCorruption("Journal has no session header.", details={"path": str(path)})
        try:
            config = BisectConfig.from_dict(header.config)
            if policy is not None:
                config = replace(config, search=SearchConfig.from_dict(policy.search))
        except ConfigurationError as exc:
            raise JournalCorruption(f"Journal configuration is invalid: {exc.message}") from exc

        universe = tuple(header.universe)
        last_seq = trials[-1].seq if trials else 0
        self._heads[session_id] = (prev, last_seq, universe, aborted)
        return JournalState(
            session_id=session_id,
            universe=universe,
            config=config,
            trials=tuple(trials),
            created=header.created,
            aborted=aborted,
            log_path=str(self.session_dir(session_id) / LOG_FILE),
        )

    def sessions(self) -> List[str]:
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and (p / JOURNAL_FILE).exists()
        )

    def _head(self, session_id: str) -> Tuple[str, int, Tuple[str, ...], bool]:
        if session_id not in self._heads:
            self._load(session_id)
        return self._heads[session_id]

    def _read(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def _write(self, session_id: str, record: Dict[str, Any], prev: str) -> str:
        record = dict(record)
        record["hash"] = _chain(prev, record)
        line = json.dumps(record, sort_keys=True) + "\n"
        path = self.session_dir(session_id) / JOURNAL_FILE
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        return record["hash"]


def _parse(line: str, lineno: int):
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise JournalCorruption(f"Unreadable record at line {lineno}: {exc}") from exc
    if not isinstance(raw, dict):
        raise JournalCorruption(f"Record at line {lineno} is not an object.")
    model = RECORD_MODELS.get(raw.get("kind"))
    if model is None:
        raise JournalCorruption(
            f"Unknown record kind at line {lineno}.", details={"kind": raw.get("kind")}
        )
    try:
        return raw, model.model_validate(raw)
    except ValidationError as exc:
        raise JournalCorruption(
            f"Invalid record at line {lineno}.", details={"errors": str(exc)}
        ) from exc


def _chain(prev: str, record: Dict[str, Any]) -> str:
    body = {k: v for k, v in record.items() if k != "hash"}
    payload = f"{json.dumps(body, sort_keys=True, separators=(',', ':'))}|{prev}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _fsync_dir(path: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(str(path), os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
