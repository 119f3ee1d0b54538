"""
Coach Configuration

Environment settings (loaded with python-dotenv) and the file-backed
provider for trigger rules, writing modes and methodology text.

Loaded configuration is an immutable snapshot; a reload builds a new
one and swaps it in whole.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional
import json
import logging
import os

from dotenv import load_dotenv

from .rules import (
    TriggerRuleSet,
    WritingModeCatalog,
    default_trigger_rules,
    default_writing_modes,
)

logger = logging.getLogger(__name__)

# Load .env.local first (for local development), then .env as fallback
env_local = Path.cwd() / '.env.local'
env_file = Path.cwd() / '.env'

if env_local.exists():
    load_dotenv(env_local)
elif env_file.exists():
    load_dotenv(env_file)


RULES_FILE = "trigger-rules.json"
MODES_FILE = "writing-types.json"

MISSING_METHODOLOGY = "# Default Methodology\n\nNo methodology file found."
BROKEN_METHODOLOGY = "# Methodology Error\n\nFailed to load methodology file."


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def parse_enabled_triggers(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """Comma-separated rule names; empty means every rule is enabled."""
    if not value or not value.strip():
        return None
    return frozenset(name.strip() for name in value.split(",") if name.strip())


@dataclass(frozen=True)
class Settings:
    """Process-level settings read from the environment."""
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    config_dir: Path = Path("config")
    methodology_file: Path = Path("methodologies/creative-nonfiction.md")
    metrics_interval_seconds: float = 5.0
    trigger_interval_seconds: float = 30.0
    config_poll_seconds: float = 2.0
    backend_timeout_seconds: float = 30.0
    dev_mode: bool = False
    enabled_triggers: Optional[FrozenSet[str]] = None
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if not api_key:
            logger.warning("GOOGLE_API_KEY not found, advisories will use fallback mode")

        return cls(
            gemini_api_key=api_key,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            config_dir=Path(os.getenv("COACH_CONFIG_DIR", "config")),
            methodology_file=Path(os.getenv("METHODOLOGY_FILE", "methodologies/creative-nonfiction.md")),
            metrics_interval_seconds=_env_float("METRICS_INTERVAL_SECONDS", 5.0),
            trigger_interval_seconds=_env_float("TRIGGER_INTERVAL_SECONDS", 30.0),
            config_poll_seconds=_env_float("CONFIG_POLL_SECONDS", 2.0),
            backend_timeout_seconds=_env_float("BACKEND_TIMEOUT_SECONDS", 30.0),
            dev_mode=_env_bool("COACH_DEV_MODE"),
            enabled_triggers=parse_enabled_triggers(os.getenv("ENABLED_TRIGGERS")),
            host=os.getenv("COACH_HOST", "0.0.0.0"),
            port=_env_int("COACH_PORT", 8000),
        )


@dataclass(frozen=True)
class CoachConfig:
    """One consistent snapshot of everything read from disk."""
    rules: TriggerRuleSet
    modes: WritingModeCatalog
    methodology: str


def default_config() -> CoachConfig:
    return CoachConfig(
        rules=default_trigger_rules(),
        modes=default_writing_modes(),
        methodology=MISSING_METHODOLOGY,
    )


def load_trigger_rules(path: Path) -> TriggerRuleSet:
    """Read a rule file; missing or invalid files give the built-in rules."""
    if not path.exists():
        logger.warning(f"Trigger rules not found at {path}, using defaults")
        return default_trigger_rules()
    try:
        rules = TriggerRuleSet.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.warning(f"Invalid trigger rules in {path}, using defaults: {e}")
        return default_trigger_rules()

    logger.info(f"Loaded {len(rules.triggers)} trigger rules from {path}")
    return rules


def load_writing_modes(path: Path) -> WritingModeCatalog:
    """Read a writing-mode file; missing or invalid files give the built-in modes."""
    if not path.exists():
        logger.warning(f"Writing types not found at {path}, using defaults")
        return default_writing_modes()
    try:
        modes = WritingModeCatalog.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.warning(f"Invalid writing types in {path}, using defaults: {e}")
        return default_writing_modes()

    logger.info(f"Loaded {len(modes.types)} writing types from {path}")
    return modes


def load_methodology(path: Path) -> str:
    if not path.exists():
        logger.warning(f"Methodology file not found: {path}")
        return MISSING_METHODOLOGY
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to load methodology {path}: {e}")
        return BROKEN_METHODOLOGY

    logger.info(f"Loaded methodology: {text[:100]!r}...")
    return text


ConfigListener = Callable[[CoachConfig], None]


class ConfigProvider:
    """
    Loads configuration files and watches them for changes.

    Changes are detected by polling modification times; the caller
    decides how often to poll.
    """

    def __init__(self, config_dir: Path, methodology_file: Path):
        self.config_dir = Path(config_dir)
        self.methodology_file = Path(methodology_file)
        self.config: CoachConfig = default_config()
        self._mtimes: Dict[Path, Optional[float]] = {}
        self._listeners: List[ConfigListener] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfigProvider":
        return cls(settings.config_dir, settings.methodology_file)

    @property
    def rules_path(self) -> Path:
        return self.config_dir / RULES_FILE

    @property
    def modes_path(self) -> Path:
        return self.config_dir / MODES_FILE

    def _watched(self) -> List[Path]:
        return [self.rules_path, self.modes_path, self.methodology_file]

    @staticmethod
    def _mtime(path: Path) -> Optional[float]:
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    def add_listener(self, callback: ConfigListener):
        self._listeners.append(callback)

    def load(self) -> CoachConfig:
        """Read every file and replace the current snapshot."""
        self._mtimes = {path: self._mtime(path) for path in self._watched()}
        self.config = CoachConfig(
            rules=load_trigger_rules(self.rules_path),
            modes=load_writing_modes(self.modes_path),
            methodology=load_methodology(self.methodology_file),
        )
        return self.config

    def reload_if_changed(self) -> bool:
        """
        Re-read files whose modification time changed.

        Returns True and notifies listeners when a new snapshot was built.
        """
        current = {path: self._mtime(path) for path in self._watched()}
        changed = [path for path in current if current[path] != self._mtimes.get(path)]
        if not changed:
            return False

        self._mtimes = current
        rules, modes, methodology = self.config.rules, self.config.modes, self.config.methodology

        if self.rules_path in changed:
            logger.info("Trigger rules changed, reloading...")
            rules = load_trigger_rules(self.rules_path)
        if self.modes_path in changed:
            logger.info("Writing types changed, reloading...")
            modes = load_writing_modes(self.modes_path)
        if self.methodology_file in changed:
            logger.info("Methodology updated, reloading...")
            methodology = load_methodology(self.methodology_file)

        self.config = CoachConfig(rules=rules, modes=modes, methodology=methodology)

        for callback in self._listeners:
            try:
                callback(self.config)
            except Exception:
                logger.exception("Config listener failed")
        return True
