"""
Configuration for parashrink reduction runs.
"""

import json
import shlex
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


class AcceptancePolicy(Enum):
    """How the arbiter picks a winner among interesting candidates."""
    FIRST = "first"        # First interesting candidate wins
    SMALLEST = "smallest"  # Smallest of the concurrently interesting ones wins


@dataclass
class ReductionConfig:
    """Main reduction configuration."""
    # File reduced in place
    fixture_path: Path

    # Interestingness test command (path appended)
    predicate: List[str]

    # Reducer commands (seed path appended)
    reducers: List[List[str]] = field(default_factory=list)

    # Predicate timeout in ms (None = unbounded)
    predicate_timeout: Optional[int] = None

    # Arbitration strategy
    policy: AcceptancePolicy = AcceptancePolicy.FIRST

    # Accept same-size candidates whose content differs
    allow_equal_size: bool = False

    # Parent directory for candidate temp files (None = system temp)
    work_dir: Optional[Path] = None

    # Additional log file
    log_file: Optional[Path] = None

    # Print the final test case to stdout when it is small enough
    print_result: bool = True

    # Seconds to wait for a reducer to exit before killing it
    session_shutdown_timeout: float = 1.0

    @property
    def backup_path(self) -> Path:
        """Sibling path holding the untouched original."""
        return self.fixture_path.with_name(self.fixture_path.name + ".orig")


def split_command(command: Union[str, List[str]]) -> List[str]:
    """Split a shell-style command string; lists pass through."""
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command]


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw (JSON or CLI) values to ReductionConfig field types."""
    known = {f.name for f in fields(ReductionConfig)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    out = dict(values)
    for key in ("fixture_path", "work_dir", "log_file"):
        if out.get(key) is not None:
            out[key] = Path(out[key])
    if "predicate" in out:
        out["predicate"] = split_command(out["predicate"])
    if "reducers" in out:
        out["reducers"] = [split_command(r) for r in out["reducers"]]
    if "policy" in out and not isinstance(out["policy"], AcceptancePolicy):
        out["policy"] = AcceptancePolicy(out["policy"])
    return out


def load_config(config_path: Optional[Path] = None, **overrides) -> ReductionConfig:
    """
    Load configuration from a JSON file, then apply overrides.

    Overrides whose value is None are ignored, so unset CLI flags do not
    clobber values from the file.
    """
    values: Dict[str, Any] = {}
    if config_path is not None:
        with open(config_path) as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict):
            raise ValueError(f"{config_path}: expected a JSON object")
        values.update(loaded)

    values.update({k: v for k, v in overrides.items() if v is not None})

    for required in ("fixture_path", "predicate"):
        if values.get(required) is None:
            raise ValueError(f"Missing required configuration: {required}")

    return ReductionConfig(**_coerce(values))
