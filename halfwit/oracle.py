"""
halfwit command oracle.

Runs the user's adapter for one mask and turns its exit status into a
Verdict. Exit statuses never leave this module.

Exit status protocol:
- 0                     -> DOES_NOT_REPRODUCE
- skip_status (125)     -> INCONCLUSIVE, reason "skip"
- anything else         -> REPRODUCES (signals included)
- timeout               -> INCONCLUSIVE "timeout", or REPRODUCES for hang hunting

The adapter runs in its own process group. The group is killed and reaped
after every run, so nothing it spawned outlives the trial.
"""

from __future__ import annotations

import os
import shlex
import shutil
import signal
import subprocess
import threading
import time
from typing import Dict, FrozenSet, List, Optional

from .config import OracleConfig
from .errors import ConfigurationError, OracleInvocationError
from .model import Judgement, Verdict
from .registry import CandidateRegistry


DEFAULT_SHELL = "sh"


class CommandOracle:
    def __init__(self, config: OracleConfig):
        if config.command is None:
            raise ConfigurationError("No oracle command configured.")
        self.config = config

    def argv(self) -> List[str]:
        command = self.config.command
        if isinstance(command, list) and self.config.shell is None:
            return list(command)
        if isinstance(command, list):
            command = shlex.join(command)
        return [self.config.shell or DEFAULT_SHELL, "-c", command]

    def check(self) -> None:
        """Fail fast if the adapter (or its shell) cannot be found."""
        executable = self.argv()[0]
        if os.sep in executable:
            reachable = os.path.isfile(executable) and os.access(executable, os.X_OK)
        else:
            reachable = shutil.which(executable) is not None
        if not reachable:
            raise ConfigurationError(
                f"Adapter executable '{executable}' is not reachable.",
                details={"executable": executable},
            )
        if self.config.cwd is not None and not os.path.isdir(self.config.cwd):
            raise ConfigurationError(
                f"Adapter working directory '{self.config.cwd}' does not exist.",
                details={"cwd": self.config.cwd},
            )

    def environment(self, mask: FrozenSet[str], registry: CandidateRegistry) -> Dict[str, str]:
        sep = self.config.separator
        env = dict(os.environ)
        env[self.config.enabled_var] = sep.join(registry.ordered(mask))
        env[self.config.disabled_var] = sep.join(registry.ordered(registry.complement(mask)))
        return env

    def judge(
        self,
        mask: FrozenSet[str],
        registry: CandidateRegistry,
        interrupt: Optional[threading.Event] = None,
    ) -> Judgement:
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                self.argv(),
                env=self.environment(mask, registry),
                cwd=self.config.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise OracleInvocationError(
                f"Adapter failed to launch: {exc}",
                details={"argv": self.argv()},
            ) from exc

        timeout = self.config.timeout
        deadline = start + timeout if timeout is not None else None
        status: Optional[int] = None
        try:
            while status is None:
                wait = self.config.poll_interval
                if deadline is not None:
                    wait = max(0.0, min(wait, deadline - time.monotonic()))
                try:
                    status = proc.wait(timeout=wait)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if interrupt is not None and interrupt.is_set():
                    return Judgement(
                        verdict=Verdict.INCONCLUSIVE,
                        duration=time.monotonic() - start,
                        reason="cancelled",
                    )
                if deadline is not None and time.monotonic() >= deadline:
                    verdict = (
                        Verdict.REPRODUCES
                        if self.config.timeout_verdict == "reproduces"
                        else Verdict.INCONCLUSIVE
                    )
                    return Judgement(
                        verdict=verdict,
                        duration=time.monotonic() - start,
                        reason="timeout",
                    )
        finally:
            reap_group(proc)

        duration = time.monotonic() - start
        if status == 0:
            return Judgement(verdict=Verdict.DOES_NOT_REPRODUCE, duration=duration)
        if status == self.config.skip_status:
            return Judgement(verdict=Verdict.INCONCLUSIVE, duration=duration, reason="skip")
        return Judgement(verdict=Verdict.REPRODUCES, duration=duration)


def reap_group(proc: subprocess.Popen) -> None:
    """Kill the adapter's process group and wait for the leader."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        # group already gone
        pass
    proc.wait()
