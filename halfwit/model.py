"""
halfwit data model.

Opaque candidate identifiers, tagged verdicts, immutable trials and the
outcomes the search engine hands back to the controller.

Nothing here knows how a candidate is toggled or how a verdict was reached.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


Candidate = str
Mask = FrozenSet[str]


class Verdict(str, Enum):
    """Normalized outcome of one oracle run."""
    REPRODUCES = "reproduces"
    DOES_NOT_REPRODUCE = "does_not_reproduce"
    INCONCLUSIVE = "inconclusive"

    @property
    def conclusive(self) -> bool:
        return self is not Verdict.INCONCLUSIVE


class StallReason(str, Enum):
    """Why a search stopped without converging."""
    AMBIGUOUS = "ambiguous"
    NON_MONOTONIC = "non_monotonic"
    BASELINE_CLEAN = "baseline_clean"
    EMPTY_REPRODUCES = "empty_reproduces"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass(frozen=True)
class Judgement:
    """What the oracle reports for a mask. No exit codes past this point."""
    verdict: Verdict
    duration: float = 0.0
    reason: Optional[str] = None


@dataclass(frozen=True)
class Trial:
    """One journaled observation. Appended once, never edited."""
    seq: int
    mask: Mask
    verdict: Verdict
    duration: float
    timestamp: float
    reason: Optional[str] = None

    def to_dict(self, order: Optional[Tuple[str, ...]] = None) -> dict:
        if order is None:
            members = sorted(self.mask)
        else:
            members = [c for c in order if c in self.mask]
        data = {
            "seq": self.seq,
            "mask": members,
            "verdict": self.verdict.value,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, d: dict) -> "Trial":
        return cls(
            seq=int(d["seq"]),
            mask=frozenset(d["mask"]),
            verdict=Verdict(d["verdict"]),
            duration=float(d.get("duration", 0.0)),
            timestamp=float(d.get("timestamp", time.time())),
            reason=d.get("reason"),
        )


@dataclass(frozen=True)
class CulpritSet:
    """
    A minimal reproducing mask, with the trials that prove it.

    sufficiency: seqs of trials where exactly these members reproduced
    necessity: member -> seqs of trials where the set minus that member
               did not reproduce
    """
    members: Tuple[str, ...]
    sufficiency: Tuple[int, ...]
    necessity: Dict[str, Tuple[int, ...]] = field(default_factory=dict)

    @property
    def mask(self) -> Mask:
        return frozenset(self.members)

    def evidence_seqs(self) -> List[int]:
        seqs = set(self.sufficiency)
        for member_seqs in self.necessity.values():
            seqs.update(member_seqs)
        return sorted(seqs)

    def to_dict(self) -> dict:
        return {
            "members": list(self.members),
            "sufficiency": list(self.sufficiency),
            "necessity": {k: list(v) for k, v in self.necessity.items()},
        }


@dataclass(frozen=True)
class TrialRequest:
    """The engine wants this mask tested next."""
    mask: Mask
    attempt: int = 1


@dataclass(frozen=True)
class Done:
    """Search converged; no further minimization possible."""
    culprits: Tuple[CulpritSet, ...]

    def to_dict(self) -> dict:
        return {
            "outcome": "done",
            "culprits": [c.to_dict() for c in self.culprits],
        }


@dataclass(frozen=True)
class Stalled:
    """Search halted without guessing. Resumable with adjusted policy."""
    reason: StallReason
    detail: str
    masks: Tuple[Mask, ...] = ()
    culprits: Tuple[CulpritSet, ...] = ()

    def to_dict(self) -> dict:
        return {
            "outcome": "stalled",
            "reason": self.reason.value,
            "detail": self.detail,
            "masks": [sorted(m) for m in self.masks],
            "culprits": [c.to_dict() for c in self.culprits],
        }


@dataclass(frozen=True)
class Frontier:
    """Replayed view of the search: what is still suspected."""
    phase: int
    suspects: Tuple[str, ...]
    granularity: int
    pinned: Tuple[str, ...]
    culprits: Tuple[CulpritSet, ...]
    trials_used: int
    pending: Optional[Mask] = None

    @property
    def size(self) -> int:
        return len(self.suspects)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "suspects": list(self.suspects),
            "size": self.size,
            "granularity": self.granularity,
            "pinned": list(self.pinned),
            "culprits": [c.to_dict() for c in self.culprits],
            "trials_used": self.trials_used,
            "pending": sorted(self.pending) if self.pending is not None else None,
        }
