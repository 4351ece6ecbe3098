"""
halfwit command line.

    halfwit start 'make test' src/*.patch
    halfwit resume 20260101-120000-1a2b3c4d --max-retries 4
    halfwit status 20260101-120000-1a2b3c4d
    halfwit abort 20260101-120000-1a2b3c4d

Candidates are files. A disabled file is removed from its place for the
duration of the trial and put back afterwards. The command exits 0 when the
behavior does not occur and nonzero when it does; 125 means "cannot tell".

Ctrl-C stops after the running trial, a second Ctrl-C kills it. The files
are put back and the session can be resumed.

Exit status: 0 done, 1 stalled or unfinished, 2 error.
"""

from __future__ import annotations

import argparse
import glob
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, List, Optional, Sequence

from .config import BisectConfig, load_config
from .controller import RunStatus, SessionReport
from .errors import ConfigurationError, HalfwitError
from .server import BisectServer, new_session_id
from .stores.jsonl import JsonlJournal
from .togglers.files import FileToggler

EXIT_DONE = 0
EXIT_STALLED = 1
EXIT_ERROR = 2

STASH_DIR = "stash"


def expand_files(patterns: Sequence[str]) -> List[str]:
    """Expand glob patterns; keep regular files only, first occurrence wins."""
    files: List[str] = []
    seen = set()
    for pattern in patterns:
        matches = sorted(glob.glob(pattern, recursive=True)) or [pattern]
        for path in matches:
            if os.path.isfile(path) and path not in seen:
                seen.add(path)
                files.append(path)
    return files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="halfwit",
        description="Find the files responsible for a behavior by bisecting subsets",
    )
    parser.add_argument(
        "--journal-dir",
        type=str,
        default=None,
        help="Directory holding session journals (default: .halfwit/sessions)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )
    commands = parser.add_subparsers(dest="action", required=True)

    start = commands.add_parser("start", help="Start a new session")
    start.add_argument("command", help="Adapter command; exit 0 means the behavior is absent")
    start.add_argument("files", nargs="+", help="Candidate files or glob patterns")
    start.add_argument(
        "--shell",
        type=str,
        default=None,
        help="Shell used to run the command with -c (default: sh)",
    )
    start.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before a trial is killed and counted as inconclusive",
    )
    start.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML configuration file",
    )
    _add_policy_arguments(start)

    resume = commands.add_parser("resume", help="Continue a session from its journal")
    resume.add_argument("session_id")
    _add_policy_arguments(resume)

    status = commands.add_parser("status", help="Show the replayed state of a session")
    status.add_argument("session_id")

    abort = commands.add_parser("abort", help="Abort a session and restore every file")
    abort.add_argument("session_id")

    commands.add_parser("list", help="List known sessions")
    return parser


def _add_policy_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Inconclusive attempts allowed per mask beyond the first",
    )
    parser.add_argument(
        "--trial-budget",
        type=int,
        default=None,
        help="Stop after this many trials",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return _dispatch(args)
    except HalfwitError as exc:
        print(f"halfwit: error [{exc.code}]: {exc.message}", file=sys.stderr)
        for key, value in exc.details.items():
            print(f"  {key}: {value}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("halfwit: interrupted; files restored, session can be resumed", file=sys.stderr)
        return EXIT_ERROR


def _dispatch(args: argparse.Namespace) -> int:
    if args.action == "start":
        return _start(args)

    config = load_config(args.config) if getattr(args, "config", None) else BisectConfig()
    journal = JsonlJournal(args.journal_dir or config.journal_dir)

    if args.action == "list":
        for session_id in journal.sessions():
            print(session_id)
        return EXIT_DONE

    if args.action == "status":
        report = BisectServer(journal=journal).status(args.session_id)
        print(report.summary())
        return EXIT_DONE

    state = journal.load(args.session_id)
    toggler = FileToggler(state.universe, stash_dir=_stash_dir(journal, args.session_id))
    server = BisectServer(journal=journal, toggler=toggler, verbose=args.verbose)

    if args.action == "abort":
        report = server.abort(args.session_id)
        _release(toggler)
        print(report.summary())
        return EXIT_DONE

    with _cancel_on_interrupt(server, args.session_id):
        report = server.resume_session(
            args.session_id,
            max_retries=args.max_retries,
            trial_budget=args.trial_budget,
        )
    return _finish(report, toggler)


def _start(args: argparse.Namespace) -> int:
    config = load_config(args.config) if args.config else BisectConfig()
    oracle = replace(
        config.oracle,
        command=args.command,
        shell=args.shell if args.shell is not None else config.oracle.shell,
        timeout=args.timeout if args.timeout is not None else config.oracle.timeout,
    )
    search = config.search.adjusted(max_retries=args.max_retries, trial_budget=args.trial_budget)
    journal_dir = args.journal_dir or config.journal_dir
    config = replace(
        config,
        oracle=oracle,
        search=search,
        journal_dir=journal_dir,
        verbose=args.verbose or config.verbose,
    )

    files = expand_files(args.files)
    if not files:
        raise ConfigurationError("No regular files matched.", details={"patterns": list(args.files)})

    journal = JsonlJournal(journal_dir)
    session_id = new_session_id()
    toggler = FileToggler(files, stash_dir=_stash_dir(journal, session_id))
    server = BisectServer(journal=journal, toggler=toggler, verbose=config.verbose)
    if config.verbose:
        print(f"[halfwit] Session {session_id}: {len(files)} candidate file(s)")
    with _cancel_on_interrupt(server, session_id):
        report = server.start_session(files, config=config, session_id=session_id)
    return _finish(report, toggler)


def _finish(report: SessionReport, toggler: FileToggler) -> int:
    print(report.summary())
    if report.status is RunStatus.DONE:
        _release(toggler)
        return EXIT_DONE
    print(f"Resume with: halfwit resume {report.session_id}")
    return EXIT_STALLED


def _stash_dir(journal: JsonlJournal, session_id: str) -> str:
    return str(journal.session_dir(session_id) / STASH_DIR)


def _release(toggler: FileToggler) -> None:
    toggler.restore()
    toggler.discard()


class _InterruptHandler:
    """First Ctrl-C stops after the running trial, the second kills it."""

    def __init__(self, server: BisectServer, session_id: str) -> None:
        self.server = server
        self.session_id = session_id
        self.count = 0

    def __call__(self, signum, frame) -> None:
        self.count += 1
        if not self.server.cancel(self.session_id, force=self.count > 1):
            raise KeyboardInterrupt
        if self.count == 1:
            print(
                "halfwit: stopping after the current trial; interrupt again to kill it",
                file=sys.stderr,
            )


@contextmanager
def _cancel_on_interrupt(server: BisectServer, session_id: str) -> Iterator[_InterruptHandler]:
    handler = _InterruptHandler(server, session_id)
    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield handler
    finally:
        signal.signal(signal.SIGINT, previous)
