"""Configuration loading — voting settings files and environment overrides.

Settings live in a JSON file (``config/voting_settings.json`` by default).
Deployment-specific paths come from the environment, optionally seeded from a
``.env`` file:

- ``SUBGOV_CONFIG``: path to the voting settings JSON file.
- ``SUBGOV_DATA_DIR``: directory holding ``state.json`` and ``events.jsonl``.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from subgovernance.engine.policy import validate_settings
from subgovernance.models.voting import VotingSettings

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config" / "voting_settings.json"
DEFAULT_DATA = ROOT / "data"


@dataclass(frozen=True)
class Environment:
    """Resolved file locations for a CLI or embedding process."""
    config_path: Path
    data_dir: Path

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def events_path(self) -> Path:
        return self.data_dir / "events.jsonl"


def load_environment(env_file: Optional[Path] = None) -> Environment:
    """Resolve config/data paths from the environment (and ``.env``)."""
    load_dotenv(env_file or ROOT / ".env")
    return Environment(
        config_path=Path(os.environ.get("SUBGOV_CONFIG", DEFAULT_CONFIG)),
        data_dir=Path(os.environ.get("SUBGOV_DATA_DIR", DEFAULT_DATA)),
    )


def load_voting_settings(path: Path = DEFAULT_CONFIG) -> VotingSettings:
    """Read and validate voting settings from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        RatioOutOfBounds / MinDurationOutOfBounds: If values are out of range.
    """
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    settings = VotingSettings.from_dict(data)
    validate_settings(settings)
    return settings
