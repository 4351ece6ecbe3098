"""
halfwit configuration.

Plain dataclasses, validated on construction, loadable from YAML.
The whole configuration is written into the journal header so a session can
be resumed from the journal alone.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError


TIMEOUT_VERDICTS = ("inconclusive", "reproduces")


@dataclass(frozen=True)
class SearchConfig:
    """Knobs of the search engine. Only max_retries and trial_budget may change on resume."""
    granularity_ceiling: int = 64
    confirmations: int = 1
    max_retries: int = 2
    trial_budget: Optional[int] = None
    max_culprit_sets: Optional[int] = None

    def __post_init__(self) -> None:
        if self.granularity_ceiling < 2:
            raise ConfigurationError("granularity_ceiling must be at least 2.")
        if self.confirmations < 1:
            raise ConfigurationError("confirmations must be at least 1.")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative.")
        if self.trial_budget is not None and self.trial_budget < 1:
            raise ConfigurationError("trial_budget must be positive when set.")
        if self.max_culprit_sets is not None and self.max_culprit_sets < 1:
            raise ConfigurationError("max_culprit_sets must be positive when set.")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "SearchConfig":
        return _build(cls, d or {})

    def adjusted(
        self,
        max_retries: Optional[int] = None,
        trial_budget: Optional[int] = None,
    ) -> "SearchConfig":
        changes: Dict[str, Any] = {}
        if max_retries is not None:
            changes["max_retries"] = max_retries
        if trial_budget is not None:
            changes["trial_budget"] = trial_budget
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class OracleConfig:
    """
    How to run the adapter.

    command: argv list, or a string run through `shell -c`
    skip_status: exit status meaning "cannot determine" (git bisect uses 125)
    timeout_verdict: "inconclusive", or "reproduces" to treat hangs as the behavior
    """
    command: Union[str, List[str], None] = None
    shell: Optional[str] = None
    timeout: Optional[float] = None
    skip_status: int = 125
    timeout_verdict: str = "inconclusive"
    enabled_var: str = "HALFWIT_ENABLED"
    disabled_var: str = "HALFWIT_DISABLED"
    separator: str = "\n"
    cwd: Optional[str] = None
    poll_interval: float = 0.05

    def __post_init__(self) -> None:
        if isinstance(self.command, list):
            object.__setattr__(self, "command", list(self.command))
            if not self.command:
                raise ConfigurationError("Oracle command must not be empty.")
        elif isinstance(self.command, str) and not self.command.strip():
            raise ConfigurationError("Oracle command must not be empty.")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("Oracle timeout must be positive when set.")
        if self.timeout_verdict not in TIMEOUT_VERDICTS:
            raise ConfigurationError(
                f"timeout_verdict must be one of {TIMEOUT_VERDICTS}.",
                details={"timeout_verdict": self.timeout_verdict},
            )
        if not 0 < self.skip_status < 256:
            raise ConfigurationError("skip_status must be a nonzero exit status.")
        if not self.enabled_var or not self.disabled_var:
            raise ConfigurationError("Environment variable names must not be empty.")
        if self.enabled_var == self.disabled_var:
            raise ConfigurationError("enabled_var and disabled_var must differ.")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive.")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "OracleConfig":
        return _build(cls, d or {})


@dataclass(frozen=True)
class BisectConfig:
    search: SearchConfig = field(default_factory=SearchConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    journal_dir: str = ".halfwit/sessions"
    verbose: bool = False

    def to_dict(self) -> dict:
        return {
            "search": self.search.to_dict(),
            "oracle": self.oracle.to_dict(),
            "journal_dir": self.journal_dir,
            "verbose": self.verbose,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "BisectConfig":
        d = dict(d or {})
        unknown = set(d) - {"search", "oracle", "journal_dir", "verbose"}
        if unknown:
            raise ConfigurationError(
                "Unknown configuration keys.", details={"unknown": sorted(unknown)}
            )
        return cls(
            search=SearchConfig.from_dict(d.get("search")),
            oracle=OracleConfig.from_dict(d.get("oracle")),
            journal_dir=str(d.get("journal_dir", ".halfwit/sessions")),
            verbose=bool(d.get("verbose", False)),
        )


def load_config(path: str) -> BisectConfig:
    data = _load_yaml(path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file '{path}' must contain a mapping.", details={"path": path}
        )
    return BisectConfig.from_dict(data)


def _build(cls, d: dict):
    known = set(cls.__dataclass_fields__)
    unknown = set(d) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} keys.", details={"unknown": sorted(unknown)}
        )
    try:
        return cls(**d)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid {cls.__name__}: {exc}") from exc


def _load_yaml(path: str) -> Any:
    try:
        import yaml  # type: ignore
    except ImportError as exc:  # pragma: no cover - depends on optional dep
        raise RuntimeError(
            "pyyaml is required to load config files. Install with `pip install pyyaml`."
        ) from exc
    try:
        return yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read config file '{path}': {exc}", details={"path": path}
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Config file '{path}' is not valid YAML: {exc}", details={"path": path}
        ) from exc
