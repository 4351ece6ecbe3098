import math
from dataclasses import replace

import pytest

from halfwit.config import SearchConfig
from halfwit.engine import SearchEngine
from halfwit.errors import JournalCorruption
from halfwit.model import Done, Judgement, Stalled, StallReason, TrialRequest, Verdict
from halfwit.registry import CandidateRegistry

R = Verdict.REPRODUCES
DNR = Verdict.DOES_NOT_REPRODUCE
INC = Verdict.INCONCLUSIVE


def _engine(universe, **search):
    return SearchEngine(CandidateRegistry(universe), SearchConfig(**search))


def _needs(*culprits):
    """Monotonic oracle: reproduces iff some culprit set is fully enabled."""
    sets = [frozenset(c) for c in culprits]
    return lambda mask: R if any(c <= mask for c in sets) else DNR


def _drive(engine, oracle, history=(), limit=1000):
    history = tuple(history)
    for _ in range(limit):
        decision = engine.next_trial(history)
        if not isinstance(decision, TrialRequest):
            return decision, history
        history = engine.record_verdict(history, decision.mask, oracle(decision.mask))
    raise AssertionError("search did not terminate")


def _scripted(script, fallback):
    """Per-mask verdict queues; masks without a queue use the fallback oracle."""
    queues = {frozenset(k): list(v) for k, v in script.items()}

    def oracle(mask):
        queue = queues.get(mask)
        if queue:
            return queue.pop(0)
        return fallback(mask)
    return oracle


def test_initialize_suspects_whole_universe():
    engine = _engine(["A", "B", "C"])
    frontier = engine.initialize()
    assert frontier.suspects == ("A", "B", "C")
    assert frontier.trials_used == 0
    assert frontier.culprits == ()


def test_first_trials_check_baseline_then_empty():
    engine = _engine(["A", "B", "C"])
    first = engine.next_trial(())
    assert first == TrialRequest(mask=frozenset({"A", "B", "C"}), attempt=1)
    history = engine.record_verdict((), first.mask, R)
    assert engine.next_trial(history).mask == frozenset()


def test_scenario_single_culprit_among_four():
    engine = _engine(["A", "B", "C", "D"])
    outcome, history = _drive(engine, _needs({"B"}))

    assert isinstance(outcome, Done)
    assert [c.members for c in outcome.culprits] == [("B",)]
    assert len(history) <= 6
    assert [sorted(t.mask) for t in history] == [
        ["A", "B", "C", "D"],
        [],
        ["A", "B"],
        ["B"],
        ["A", "C", "D"],
    ]


def test_scenario_two_independent_culprits():
    engine = _engine(["A", "B"])
    outcome, history = _drive(engine, _needs({"A"}, {"B"}))

    assert isinstance(outcome, Done)
    assert [c.members for c in outcome.culprits] == [("B",), ("A",)]
    assert len(history) == 4


def test_scenario_persistent_inconclusive_stalls_after_retries():
    engine = _engine(["A", "B", "C", "D"], max_retries=2)
    monotonic = _needs({"B"})
    oracle = lambda mask: INC if mask == frozenset({"A", "B"}) else monotonic(mask)

    outcome, history = _drive(engine, oracle)

    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.AMBIGUOUS
    assert outcome.masks == (frozenset({"A", "B"}),)
    attempts = [t for t in history if t.mask == frozenset({"A", "B"})]
    assert len(attempts) == 3
    assert all(t.verdict is INC for t in attempts)


def test_stalled_search_resumes_with_more_retries():
    registry = CandidateRegistry(["A", "B", "C", "D"])
    monotonic = _needs({"B"})
    flaky = _scripted({("A", "B"): [INC, INC, INC]}, monotonic)

    strict = SearchEngine(registry, SearchConfig(max_retries=2))
    stalled, history = _drive(strict, flaky)
    assert isinstance(stalled, Stalled)

    relaxed = SearchEngine(registry, SearchConfig(max_retries=4))
    outcome, history = _drive(relaxed, flaky, history)
    assert isinstance(outcome, Done)
    assert [c.members for c in outcome.culprits] == [("B",)]
    assert sum(1 for t in history if t.mask == frozenset({"A", "B"})) == 4


@pytest.mark.parametrize(
    "universe,culprit",
    [
        (list("ABCDEFGH"), {"F"}),
        (list("ABCDEFGH"), {"B", "G"}),
        ([f"c{i:02d}" for i in range(20)], {"c03", "c04", "c17"}),
        ([f"c{i:02d}" for i in range(9)], {"c00", "c01", "c02", "c03", "c04", "c05", "c06", "c07", "c08"}),
    ],
)
def test_monotonic_oracle_converges_to_exact_culprit(universe, culprit):
    engine = _engine(universe)
    outcome, _ = _drive(engine, _needs(culprit))

    assert isinstance(outcome, Done)
    assert len(outcome.culprits) == 1
    assert outcome.culprits[0].mask == frozenset(culprit)
    assert outcome.culprits[0].members == tuple(c for c in universe if c in culprit)


@pytest.mark.parametrize("size", [2, 16, 64, 200])
def test_single_culprit_is_found_in_logarithmic_trials(size):
    universe = [f"p{i:03d}" for i in range(size)]
    for culprit in (universe[0], universe[size // 3], universe[-1]):
        engine = _engine(universe)
        outcome, history = _drive(engine, _needs({culprit}))
        assert outcome.culprits[0].members == (culprit,)
        assert len(history) <= 3 * math.ceil(math.log2(size)) + 5


def test_culprit_evidence_exists_in_journal():
    universe = [f"c{i}" for i in range(12)]
    engine = _engine(universe)
    outcome, history = _drive(engine, _needs({"c2", "c9"}, {"c5"}))

    by_seq = {t.seq: t for t in history}
    assert len(outcome.culprits) == 2
    for culprit in outcome.culprits:
        assert culprit.sufficiency
        for seq in culprit.sufficiency:
            assert by_seq[seq].mask == culprit.mask
            assert by_seq[seq].verdict is R
        assert set(culprit.necessity) == set(culprit.members)
        for member, seqs in culprit.necessity.items():
            assert seqs
            for seq in seqs:
                assert by_seq[seq].mask == culprit.mask - {member}
                assert by_seq[seq].verdict is DNR
        assert set(culprit.evidence_seqs()) <= set(by_seq)


def test_replaying_any_prefix_asks_for_the_recorded_next_mask():
    universe = [f"c{i}" for i in range(16)]
    engine = _engine(universe)
    _, history = _drive(engine, _needs({"c1", "c14"}, {"c7"}))

    for k in range(len(history)):
        decision = engine.next_trial(history[:k])
        assert isinstance(decision, TrialRequest)
        assert decision.mask == history[k].mask


def test_frontier_is_derived_from_history():
    engine = _engine(["A", "B", "C", "D"])
    oracle = _needs({"B"})
    _, history = _drive(engine, oracle)

    partial = history[:3]
    frontier = engine.frontier(partial)
    assert frontier.suspects == ("A", "B")
    assert frontier.trials_used == 3
    assert frontier.pending == frozenset({"B"})
    assert engine.frontier(partial) == frontier

    final = engine.frontier(history)
    assert final.suspects == ()
    assert final.pinned == ("B",)
    assert final.pending is None
    assert [c.members for c in final.culprits] == [("B",)]


def test_replay_rejects_divergent_history():
    engine = _engine(["A", "B", "C", "D"])
    _, history = _drive(engine, _needs({"B"}))

    tampered = history[:2] + (replace(history[2], mask=frozenset({"C", "D"})),) + history[3:]
    with pytest.raises(JournalCorruption):
        engine.next_trial(tampered)


def test_replay_rejects_trials_after_the_end():
    engine = _engine(["A", "B", "C", "D"])
    _, history = _drive(engine, _needs({"B"}))
    extra = engine.record_verdict(history, frozenset({"A"}), DNR)
    with pytest.raises(JournalCorruption):
        engine.next_trial(extra)


def test_replay_rejects_non_increasing_seq():
    engine = _engine(["A", "B"])
    history = engine.record_verdict((), frozenset({"A", "B"}), R)
    duplicated = history + (history[0],)
    with pytest.raises(JournalCorruption):
        engine.next_trial(duplicated)


def test_baseline_that_does_not_reproduce_stalls():
    engine = _engine(["A", "B"])
    outcome, history = _drive(engine, lambda mask: DNR)
    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.BASELINE_CLEAN
    assert len(history) == 1


def test_empty_mask_that_reproduces_stalls():
    engine = _engine(["A", "B"])
    outcome, history = _drive(engine, lambda mask: R)
    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.EMPTY_REPRODUCES
    assert len(history) == 2


def test_non_monotonic_oracle_is_reported():
    engine = _engine(["A", "B", "C", "D"])
    everything = frozenset({"A", "B", "C", "D"})
    oracle = lambda mask: R if mask in (everything, frozenset({"A"})) else DNR

    outcome, history = _drive(engine, oracle)

    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.NON_MONOTONIC
    assert outcome.masks == (frozenset({"A"}), frozenset({"A", "B"}))
    assert len(history) == 5


def test_conflicting_verdicts_stall_as_ambiguous():
    engine = _engine(["A", "B", "C", "D"], confirmations=2)
    oracle = _scripted({("A", "B"): [R, DNR]}, _needs({"B"}))

    outcome, history = _drive(engine, oracle)

    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.AMBIGUOUS
    assert [t.verdict for t in history[-2:]] == [R, DNR]


def test_confirmations_repeat_each_mask():
    engine = _engine(["A", "B", "C", "D"], confirmations=2)
    outcome, history = _drive(engine, _needs({"B"}))

    assert [c.members for c in outcome.culprits] == [("B",)]
    assert len(history) == 10
    assert outcome.culprits[0].sufficiency == (7, 8)


def test_trial_budget_stalls_and_can_be_raised():
    registry = CandidateRegistry(["A", "B", "C", "D"])
    oracle = _needs({"B"})

    limited = SearchEngine(registry, SearchConfig(trial_budget=3))
    outcome, history = _drive(limited, oracle)
    assert isinstance(outcome, Stalled)
    assert outcome.reason is StallReason.BUDGET_EXHAUSTED
    assert len(history) == 3

    raised = SearchEngine(registry, SearchConfig(trial_budget=10))
    outcome, history = _drive(raised, oracle, history)
    assert isinstance(outcome, Done)
    assert len(history) == 5


def test_max_culprit_sets_stops_early():
    engine = _engine(["A", "B"], max_culprit_sets=1)
    outcome, history = _drive(engine, _needs({"A"}, {"B"}))
    assert isinstance(outcome, Done)
    assert len(outcome.culprits) == 1
    assert len(history) == 3


def test_inconclusive_trials_never_narrow():
    engine = _engine(["A", "B", "C", "D"])
    history = engine.record_verdict((), frozenset({"A", "B", "C", "D"}), R)
    history = engine.record_verdict(history, frozenset(), DNR)
    before = engine.frontier(history)
    history = engine.record_verdict(
        history, frozenset({"A", "B"}), Judgement(verdict=INC, duration=1.5, reason="timeout")
    )
    after = engine.frontier(history)

    assert after.suspects == before.suspects
    assert history[-1].reason == "timeout"
    assert history[-1].duration == 1.5
    assert engine.next_trial(history) == TrialRequest(mask=frozenset({"A", "B"}), attempt=2)


def test_stall_keeps_culprits_found_so_far():
    engine = _engine(["A", "B"])
    oracle = _scripted({("A",): [INC, INC, INC]}, _needs({"A"}, {"B"}))
    outcome, _ = _drive(engine, oracle)
    assert isinstance(outcome, Stalled)
    assert [c.members for c in outcome.culprits] == [("B",)]


def test_granularity_increases_when_no_part_reproduces():
    engine = _engine(list("ABCDEFGH"))
    outcome, history = _drive(engine, _needs({"D", "E"}))

    assert outcome.culprits[0].members == ("D", "E")
    masks = [frozenset(t.mask) for t in history]
    assert frozenset("ABCD") in masks
    assert frozenset("EFGH") in masks
    # four-way split after both halves came back clean
    assert frozenset("AB") in masks


def test_frontier_shrinks_within_each_phase():
    universe = [f"c{i}" for i in range(10)]
    engine = _engine(universe)
    decision, history = _drive(engine, _needs({"c3"}, {"c8"}))
    assert isinstance(decision, Done)

    frontiers = [engine.frontier(history[:k]) for k in range(len(history) + 1)]
    grew = False
    for before, after in zip(frontiers, frontiers[1:]):
        if after.phase == before.phase:
            assert after.size <= before.size
        elif after.size > before.size:
            grew = True
    assert grew
