import os
import threading
import time

import pytest

from halfwit.config import OracleConfig
from halfwit.errors import ConfigurationError, OracleInvocationError
from halfwit.model import Verdict
from halfwit.oracle import CommandOracle
from halfwit.registry import CandidateRegistry

pytestmark = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")

REGISTRY = CandidateRegistry(["A", "B", "C"])
ALL = frozenset({"A", "B", "C"})


def _oracle(command, **kwargs) -> CommandOracle:
    return CommandOracle(OracleConfig(command=command, poll_interval=0.01, **kwargs))


def _is_gone(pid: int) -> bool:
    """Dead or a zombie waiting for init to reap it."""
    try:
        with open(f"/proc/{pid}/status") as f:
            for line in f:
                if line.startswith("State:"):
                    return "Z" in line.split()[1]
    except FileNotFoundError:
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


def test_argv_forms():
    assert _oracle("make test").argv() == ["sh", "-c", "make test"]
    assert _oracle(["./check", "--fast"]).argv() == ["./check", "--fast"]
    assert _oracle(["./check", "a b"], shell="bash").argv() == ["bash", "-c", "./check 'a b'"]
    assert _oracle("make test", shell="bash").argv() == ["bash", "-c", "make test"]


def test_missing_command_is_configuration_error():
    with pytest.raises(ConfigurationError):
        CommandOracle(OracleConfig())


@pytest.mark.parametrize(
    "command,verdict,reason",
    [
        ("exit 0", Verdict.DOES_NOT_REPRODUCE, None),
        ("exit 1", Verdict.REPRODUCES, None),
        ("exit 42", Verdict.REPRODUCES, None),
        ("exit 125", Verdict.INCONCLUSIVE, "skip"),
        ("kill -9 $$", Verdict.REPRODUCES, None),
    ],
)
def test_exit_status_becomes_verdict(command, verdict, reason):
    judgement = _oracle(command).judge(ALL, REGISTRY)
    assert judgement.verdict is verdict
    assert judgement.reason == reason
    assert judgement.duration >= 0


def test_custom_skip_status():
    judgement = _oracle("exit 77", skip_status=77).judge(ALL, REGISTRY)
    assert judgement.verdict is Verdict.INCONCLUSIVE
    assert judgement.reason == "skip"
    assert _oracle("exit 125", skip_status=77).judge(ALL, REGISTRY).verdict is Verdict.REPRODUCES


def test_mask_is_passed_in_environment(tmp_path):
    enabled = tmp_path / "enabled"
    disabled = tmp_path / "disabled"
    command = (
        f'printf "%s" "$HALFWIT_ENABLED" > {enabled}; '
        f'printf "%s" "$HALFWIT_DISABLED" > {disabled}'
    )
    judgement = _oracle(command).judge(frozenset({"C", "A"}), REGISTRY)

    assert judgement.verdict is Verdict.DOES_NOT_REPRODUCE
    assert enabled.read_text() == "A\nC"
    assert disabled.read_text() == "B"


def test_environment_names_and_separator_are_configurable(tmp_path):
    out = tmp_path / "out"
    oracle = _oracle(
        f'printf "%s|%s" "$ON" "$OFF" > {out}',
        enabled_var="ON",
        disabled_var="OFF",
        separator=",",
    )
    oracle.judge(frozenset({"A", "B"}), REGISTRY)
    assert out.read_text() == "A,B|C"


def test_adapter_runs_in_configured_cwd(tmp_path):
    _oracle("touch here", cwd=str(tmp_path)).judge(ALL, REGISTRY)
    assert (tmp_path / "here").exists()


def test_hang_times_out_and_process_group_is_reaped(tmp_path):
    pidfile = tmp_path / "child.pid"
    command = f"sleep 30 & echo $! > {pidfile}; wait"
    oracle = _oracle(command, timeout=0.5)

    start = time.monotonic()
    judgement = oracle.judge(ALL, REGISTRY)
    elapsed = time.monotonic() - start

    assert judgement.verdict is Verdict.INCONCLUSIVE
    assert judgement.reason == "timeout"
    assert elapsed < 10

    child = int(pidfile.read_text().strip())
    deadline = time.monotonic() + 5
    while not _is_gone(child) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert _is_gone(child)


def test_timeout_can_count_as_reproducing():
    judgement = _oracle("sleep 30", timeout=0.3, timeout_verdict="reproduces").judge(ALL, REGISTRY)
    assert judgement.verdict is Verdict.REPRODUCES
    assert judgement.reason == "timeout"


def test_interrupt_cancels_running_adapter():
    interrupt = threading.Event()
    interrupt.set()
    start = time.monotonic()
    judgement = _oracle("sleep 30").judge(ALL, REGISTRY, interrupt=interrupt)
    assert judgement.verdict is Verdict.INCONCLUSIVE
    assert judgement.reason == "cancelled"
    assert time.monotonic() - start < 10


def test_launch_failure_raises_invocation_error(tmp_path):
    oracle = _oracle([str(tmp_path / "no-such-adapter")])
    with pytest.raises(OracleInvocationError):
        oracle.judge(ALL, REGISTRY)


def test_check_reports_unreachable_adapter(tmp_path):
    with pytest.raises(ConfigurationError):
        _oracle([str(tmp_path / "no-such-adapter")]).check()
    with pytest.raises(ConfigurationError):
        _oracle("true", shell="no-such-shell-halfwit").check()
    with pytest.raises(ConfigurationError):
        _oracle("true", cwd=str(tmp_path / "missing")).check()
    _oracle("true").check()
