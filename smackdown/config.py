"""
smackdown/config.py - Local configuration management

Reads config from a platform-appropriate config directory:
  - macOS/Linux: ~/.smackdown/config.toml
  - Windows: %APPDATA%\\smackdown\\config.toml

Example:
    [arena]
    db = "~/smackdown/smackdown.db"
    host = "0.0.0.0"
    port = 8000

    [scoring]
    auto_approve_threshold = 90
    default_match_length = 9

    [bracket]
    starting_table = 1
    seed = 42  # omit for a random draw

    [sms]
    phone_number = "+15550100"
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "smackdown"
    return Path.home() / ".smackdown"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_DB_PATH = "smackdown.db"
DEFAULT_PORT = 8000


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class ArenaConfig:
    """Where the server listens and keeps its database."""

    db_path: str = DEFAULT_DB_PATH
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT


@dataclass
class ScoringConfig:
    """Score report trust settings."""

    auto_approve_threshold: int = 90
    default_match_length: int = 9  # race-to-N for new divisions


@dataclass
class BracketConfig:
    """Draw settings."""

    starting_table: int = 1
    seed: int | None = None  # None = random draw


@dataclass
class SmsConfig:
    """The number players text their scores to."""

    phone_number: str | None = None


@dataclass
class SmackdownConfig:
    """Top-level configuration."""

    arena: ArenaConfig
    scoring: ScoringConfig
    bracket: BracketConfig
    sms: SmsConfig

    def __init__(
        self,
        arena: ArenaConfig | None = None,
        scoring: ScoringConfig | None = None,
        bracket: BracketConfig | None = None,
        sms: SmsConfig | None = None,
    ):
        self.arena = arena or ArenaConfig()
        self.scoring = scoring or ScoringConfig()
        self.bracket = bracket or BracketConfig()
        self.sms = sms or SmsConfig()


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    return str(Path(path).expanduser())


def _section(raw: dict, name: str) -> dict:
    data = raw.get(name, {})
    return data if isinstance(data, dict) else {}


def load_config(path: Path | None = None) -> SmackdownConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.smackdown/config.toml)

    Returns:
        SmackdownConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return SmackdownConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return SmackdownConfig()

    # Parse [arena] section
    arena_data = _section(raw, "arena")
    _arena = ArenaConfig()
    arena = ArenaConfig(
        db_path=_expand(arena_data.get("db")) or _arena.db_path,
        host=arena_data.get("host", _arena.host),
        port=arena_data.get("port", _arena.port),
    )

    # Parse [scoring] section
    scoring_data = _section(raw, "scoring")
    _scoring = ScoringConfig()
    scoring = ScoringConfig(
        auto_approve_threshold=scoring_data.get(
            "auto_approve_threshold", _scoring.auto_approve_threshold
        ),
        default_match_length=scoring_data.get(
            "default_match_length", _scoring.default_match_length
        ),
    )

    # Parse [bracket] section
    bracket_data = _section(raw, "bracket")
    bracket = BracketConfig(
        starting_table=bracket_data.get("starting_table", 1),
        seed=bracket_data.get("seed"),
    )

    # Parse [sms] section
    sms = SmsConfig(phone_number=_section(raw, "sms").get("phone_number"))

    return SmackdownConfig(arena=arena, scoring=scoring, bracket=bracket, sms=sms)
