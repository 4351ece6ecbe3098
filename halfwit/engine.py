"""
halfwit search engine.

Chooses the next mask to test from (universe, trial history) alone.

The algorithm is written as a generator that yields masks and receives
conclusive verdicts. Every call replays it from the start against the
journaled history, so the frontier is never stored: it is whatever the
generator reached when the history ran out. Replaying the same history
always reaches the same point and asks for the same next mask.

Search outline:
- baseline: full universe must reproduce, empty mask must not
- per phase: delta-debugging partition of the suspects (n = 2, doubling),
  then a linear single-candidate scan that leaves a 1-minimal culprit set
- confirmed culprits are pinned disabled and the search restarts over the
  remaining universe until the remainder stops reproducing

Verdicts are cached per mask; a conclusively resolved mask is never retested.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Generator, List, Optional, Sequence, Tuple, Union

from .config import SearchConfig
from .errors import JournalCorruption, VerdictAmbiguity
from .model import (
    CulpritSet,
    Done,
    Frontier,
    Judgement,
    Mask,
    Stalled,
    StallReason,
    Trial,
    TrialRequest,
    Verdict,
)
from .registry import CandidateRegistry


Decision = Union[TrialRequest, Done, Stalled]
Search = Generator[Mask, Verdict, Union[Done, Stalled]]

EMPTY: Mask = frozenset()


@dataclass
class _SearchState:
    suspects: Tuple[str, ...]
    phase: int = 1
    granularity: int = 2
    pinned: List[str] = field(default_factory=list)
    culprits: List[CulpritSet] = field(default_factory=list)


class _Evidence:
    """Conclusive verdicts per mask, with the trials that established them."""

    def __init__(self) -> None:
        self._resolved: Dict[Mask, Tuple[Verdict, Tuple[int, ...]]] = {}
        self._reproducing: List[Mask] = []
        self._clean: List[Mask] = []

    def verdict(self, mask: Mask) -> Optional[Verdict]:
        entry = self._resolved.get(mask)
        return entry[0] if entry else None

    def seqs(self, mask: Mask) -> Tuple[int, ...]:
        entry = self._resolved.get(mask)
        return entry[1] if entry else ()

    def contradiction(self, mask: Mask, verdict: Verdict) -> Optional[Mask]:
        """A cached mask that this verdict contradicts under monotonicity."""
        if verdict is Verdict.REPRODUCES:
            for other in self._clean:
                if mask <= other:
                    return other
        else:
            for other in self._reproducing:
                if other <= mask:
                    return other
        return None

    def record(self, mask: Mask, verdict: Verdict, seqs: Tuple[int, ...]) -> None:
        self._resolved[mask] = (verdict, seqs)
        if verdict is Verdict.REPRODUCES:
            self._reproducing.append(mask)
        else:
            self._clean.append(mask)


class SearchEngine:
    """
    Pure decision function over the trial history.

    The engine holds no session state. Everything it reports is derived by
    replaying the history it is handed.
    """

    def __init__(
        self,
        registry: CandidateRegistry,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self._registry = registry
        self._config = config or SearchConfig()

    @property
    def registry(self) -> CandidateRegistry:
        return self._registry

    @property
    def config(self) -> SearchConfig:
        return self._config

    def initialize(self) -> Frontier:
        """Frontier before any trial: the whole universe is suspect."""
        return Frontier(
            phase=1,
            suspects=self._registry.universe,
            granularity=2,
            pinned=(),
            culprits=(),
            trials_used=0,
        )

    def next_trial(self, history: Sequence[Trial]) -> Decision:
        decision, _, _ = self._replay(history)
        return decision

    def frontier(self, history: Sequence[Trial]) -> Frontier:
        decision, state, consumed = self._replay(history)
        pending = decision.mask if isinstance(decision, TrialRequest) else None
        return Frontier(
            phase=state.phase,
            suspects=state.suspects,
            granularity=state.granularity,
            pinned=tuple(state.pinned),
            culprits=tuple(state.culprits),
            trials_used=consumed,
            pending=pending,
        )

    def record_verdict(
        self,
        history: Sequence[Trial],
        mask: Mask,
        verdict: Union[Verdict, Judgement],
        duration: float = 0.0,
        timestamp: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> Tuple[Trial, ...]:
        """
        Append a trial and return the new history.

        Inconclusive trials are kept for audit and retry accounting; they
        never narrow the frontier. Whether a conclusive verdict narrows it
        is decided on replay, against prior evidence for the same mask.
        """
        if isinstance(verdict, Judgement):
            duration = verdict.duration
            reason = verdict.reason
            verdict = verdict.verdict
        mask = self._registry.validate(mask)
        history = tuple(history)
        seq = history[-1].seq + 1 if history else 1
        trial = Trial(
            seq=seq,
            mask=mask,
            verdict=Verdict(verdict),
            duration=duration,
            timestamp=time.time() if timestamp is None else timestamp,
            reason=reason,
        )
        return history + (trial,)

    # ------------------------------------------------------------------
    # replay driver
    # ------------------------------------------------------------------

    def _replay(self, history: Sequence[Trial]) -> Tuple[Decision, _SearchState, int]:
        history = tuple(history)
        self._check_history(history)

        state = _SearchState(suspects=self._registry.universe)
        evidence = _Evidence()
        search = self._search(state, evidence)
        cursor = 0
        decision: Optional[Decision] = None

        try:
            mask = next(search)
            while decision is None:
                verdict = evidence.verdict(mask)
                if verdict is None:
                    attempts: List[Trial] = []
                    try:
                        while verdict is None and cursor < len(history):
                            trial = history[cursor]
                            if trial.mask != mask:
                                raise JournalCorruption(
                                    f"Trial {trial.seq} tested a different mask than the search asks for.",
                                    details={
                                        "seq": trial.seq,
                                        "recorded": list(self._registry.ordered(trial.mask)),
                                        "expected": list(self._registry.ordered(mask)),
                                    },
                                )
                            cursor += 1
                            attempts.append(trial)
                            verdict = self._settle(mask, attempts)
                    except VerdictAmbiguity as exc:
                        decision = Stalled(
                            reason=StallReason.AMBIGUOUS,
                            detail=exc.message,
                            masks=(mask,),
                            culprits=tuple(state.culprits),
                        )
                        break

                    if verdict is None:
                        budget = self._config.trial_budget
                        if budget is not None and len(history) >= budget:
                            decision = Stalled(
                                reason=StallReason.BUDGET_EXHAUSTED,
                                detail=f"Trial budget of {budget} exhausted.",
                                masks=(mask,),
                                culprits=tuple(state.culprits),
                            )
                        else:
                            decision = TrialRequest(mask=mask, attempt=len(attempts) + 1)
                        break

                    conflict = evidence.contradiction(mask, verdict)
                    if conflict is not None:
                        decision = Stalled(
                            reason=StallReason.NON_MONOTONIC,
                            detail=(
                                "A reproducing mask is contained in a non-reproducing one; "
                                "the oracle is not monotonic."
                            ),
                            masks=(mask, conflict),
                            culprits=tuple(state.culprits),
                        )
                        break
                    evidence.record(
                        mask,
                        verdict,
                        tuple(t.seq for t in attempts if t.verdict is verdict),
                    )
                mask = search.send(verdict)
        except StopIteration as stop:
            decision = stop.value
        finally:
            search.close()

        if not isinstance(decision, TrialRequest) and cursor < len(history):
            raise JournalCorruption(
                "Journal continues past the end of the search.",
                details={"first_unused_seq": history[cursor].seq},
            )
        return decision, state, cursor

    def _settle(self, mask: Mask, attempts: Sequence[Trial]) -> Optional[Verdict]:
        reproduces = sum(1 for t in attempts if t.verdict is Verdict.REPRODUCES)
        clean = sum(1 for t in attempts if t.verdict is Verdict.DOES_NOT_REPRODUCE)
        inconclusive = sum(1 for t in attempts if not t.verdict.conclusive)
        details = {
            "mask": list(self._registry.ordered(mask)),
            "seqs": [t.seq for t in attempts],
        }

        if reproduces and clean:
            raise VerdictAmbiguity(
                f"Conflicting verdicts for one mask ({reproduces} reproducing, {clean} not).",
                details=details,
            )
        if reproduces >= self._config.confirmations:
            return Verdict.REPRODUCES
        if clean >= self._config.confirmations:
            return Verdict.DOES_NOT_REPRODUCE
        if inconclusive > self._config.max_retries:
            raise VerdictAmbiguity(
                f"No conclusive verdict after {len(attempts)} attempts.",
                details=details,
            )
        return None

    def _check_history(self, history: Tuple[Trial, ...]) -> None:
        previous = 0
        for trial in history:
            if trial.seq <= previous:
                raise JournalCorruption(
                    "Trial sequence numbers must strictly increase.",
                    details={"seq": trial.seq, "previous": previous},
                )
            previous = trial.seq
            if not trial.mask <= self._registry.baseline:
                raise JournalCorruption(
                    f"Trial {trial.seq} references candidates outside the universe.",
                    details={"unknown": sorted(trial.mask - self._registry.baseline)},
                )

    # ------------------------------------------------------------------
    # search algorithm
    # ------------------------------------------------------------------

    def _search(self, state: _SearchState, evidence: _Evidence) -> Search:
        universe = self._registry.universe

        if (yield self._registry.baseline) is not Verdict.REPRODUCES:
            return Stalled(
                reason=StallReason.BASELINE_CLEAN,
                detail="The full universe does not reproduce the behavior.",
                masks=(self._registry.baseline,),
            )
        if (yield EMPTY) is Verdict.REPRODUCES:
            return Stalled(
                reason=StallReason.EMPTY_REPRODUCES,
                detail="The behavior reproduces with every candidate disabled.",
                masks=(EMPTY,),
            )

        while True:
            yield from self._minimize(state)
            culprit = yield from self._confirm(state, evidence)
            state.culprits.append(culprit)
            state.pinned.extend(culprit.members)

            limit = self._config.max_culprit_sets
            if limit is not None and len(state.culprits) >= limit:
                state.suspects = ()
                return Done(culprits=tuple(state.culprits))

            pinned = set(state.pinned)
            state.phase += 1
            state.granularity = 2
            state.suspects = tuple(c for c in universe if c not in pinned)
            if (yield frozenset(state.suspects)) is not Verdict.REPRODUCES:
                state.suspects = ()
                return Done(culprits=tuple(state.culprits))

    def _minimize(self, state: _SearchState) -> Generator[Mask, Verdict, None]:
        ceiling = self._config.granularity_ceiling
        while len(state.suspects) > 1 and state.granularity < len(state.suspects):
            suspects = state.suspects
            n = state.granularity
            parts = _partition(suspects, n)
            narrowed: Optional[Tuple[Tuple[str, ...], int]] = None

            for part in parts:
                if (yield frozenset(part)) is Verdict.REPRODUCES:
                    narrowed = (part, 2)
                    break

            # with two parts each complement is the other part
            if narrowed is None and n > 2:
                for part in parts:
                    dropped = set(part)
                    complement = tuple(c for c in suspects if c not in dropped)
                    if (yield frozenset(complement)) is Verdict.REPRODUCES:
                        narrowed = (complement, max(n - 1, 2))
                        break

            if narrowed is not None:
                state.suspects, state.granularity = narrowed
            elif n * 2 > ceiling:
                break
            else:
                state.granularity = n * 2

        yield from self._scan(state)

    def _scan(self, state: _SearchState) -> Generator[Mask, Verdict, None]:
        """Drop single candidates until a full pass drops nothing."""
        while True:
            dropped = False
            for candidate in state.suspects:
                trimmed = tuple(c for c in state.suspects if c != candidate)
                if (yield frozenset(trimmed)) is Verdict.REPRODUCES:
                    state.suspects = trimmed
                    dropped = True
            if not dropped:
                return

    def _confirm(
        self,
        state: _SearchState,
        evidence: _Evidence,
    ) -> Generator[Mask, Verdict, CulpritSet]:
        # cache hits after a scan
        members = state.suspects
        mask = frozenset(members)
        yield mask
        necessity: Dict[str, Tuple[int, ...]] = {}
        for member in members:
            without = mask - {member}
            yield without
            necessity[member] = evidence.seqs(without)
        return CulpritSet(
            members=members,
            sufficiency=evidence.seqs(mask),
            necessity=necessity,
        )


def _partition(items: Tuple[str, ...], n: int) -> List[Tuple[str, ...]]:
    """Split items into n contiguous, nearly equal parts."""
    size, extra = divmod(len(items), n)
    parts: List[Tuple[str, ...]] = []
    start = 0
    for i in range(n):
        end = start + size + (1 if i < extra else 0)
        if end > start:
            parts.append(items[start:end])
        start = end
    return parts
