"""
Configuration loader for Ralph.

Sources, highest priority first:
1. Process environment (RALPH_*, ANTHROPIC_API_KEY)
2. ralph.yaml in the working directory (or the file given with -c)
3. .env in the working directory
4. Built-in defaults

The .env parser never executes anything: lines are KEY=value, optionally
quoted, and values containing shell constructs are rejected.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "ralph.yaml"
DOTENV_FILENAME = ".env"

DEFAULT_MODEL = "claude-sonnet-4-20250514"
AUTH_MODES = ("api_key", "oauth")
PROGRESS_MODES = ("git", "file")

# Config field -> environment variable
ENV_VARS = {
    "api_key": "ANTHROPIC_API_KEY",
    "auth_mode": "RALPH_AUTH_MODE",
    "model": "RALPH_MODEL",
    "max_turns": "RALPH_MAX_TURNS",
    "working_dir": "RALPH_WORKING_DIR",
    "prd_file": "RALPH_PRD_FILE",
    "progress_file": "RALPH_PROGRESS_FILE",
    "progress_mode": "RALPH_PROGRESS_MODE",
    "git_log_count": "RALPH_GIT_LOG_COUNT",
    "gate_timeout": "RALPH_GATE_TIMEOUT",
    "run_gates": "RALPH_RUN_GATES",
    "verbose": "RALPH_VERBOSE",
}

# field -> (min, max)
INT_BOUNDS = {
    "max_turns": (1, 500),
    "git_log_count": (1, 100),
    "gate_timeout": (1, 3600),
}
BOOL_FIELDS = ("run_gates", "verbose")

FORBIDDEN_PATTERNS = [r'`', r'\$\(', r'\$\{', r';', r'&&', r'\|']
KEY_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class ConfigError(Exception):
    """Raised when a configuration file can't be parsed."""
    pass


@dataclass
class RalphConfig:
    """Settings for one Ralph run."""
    working_dir: Path
    api_key: str = ""
    auth_mode: str = "api_key"
    model: str = DEFAULT_MODEL
    max_turns: int = 50
    prd_file: str | None = None
    progress_file: str = "progress.txt"
    progress_mode: str = "git"
    git_log_count: int = 10
    gate_timeout: int = 300
    run_gates: bool = True
    verbose: bool = False
    # Raw values that failed to convert, reported by validate_config
    invalid: dict[str, str] | None = None


def load_dotenv(path: Path) -> dict[str, str]:
    """
    Parse a .env file into a dict.

    Raises:
        ConfigError: On a malformed line or a forbidden shell construct
    """
    values: dict[str, str] = {}
    for lineno, line in enumerate(path.read_text().splitlines(), 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].strip()
        if '=' not in line:
            raise ConfigError(f"{path}:{lineno}: invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key, value = key.strip(), value.strip()
        if not KEY_PATTERN.match(key):
            raise ConfigError(f"{path}:{lineno}: invalid key '{key}'")

        quote = value[0] if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'") else None
        if quote:
            value = value[1:-1]
        # Single quotes mean literal text
        if quote != "'":
            for pattern in FORBIDDEN_PATTERNS:
                if re.search(pattern, value):
                    raise ConfigError(f"{path}:{lineno}: forbidden pattern in value for {key}")
        values[key] = value
    return values


def _load_yaml(path: Path) -> dict:
    """Read a YAML config file; malformed files are ignored with a warning."""
    try:
        data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, OSError) as e:
        logger.warning(f"Failed to parse {path}: {e}")
        print(f"WARNING: Ignoring unreadable config file {path}")
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"{path} must contain a mapping, ignoring")
        return {}
    return data


def _dotenv_layer(working_dir: Path) -> dict[str, str]:
    path = working_dir / DOTENV_FILENAME
    if not path.exists():
        return {}
    try:
        env = load_dotenv(path)
    except ConfigError as e:
        logger.warning(str(e))
        print(f"WARNING: Ignoring {path}: {e}")
        return {}
    return {field: env[var] for field, var in ENV_VARS.items() if var in env}


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(working_dir: Path | None = None, config_path: Path | None = None) -> RalphConfig:
    """Build a RalphConfig from all sources.

    Values that fail to convert are kept in `invalid` rather than raising,
    so validate_config can report everything at once.
    """
    env_dir = os.environ.get(ENV_VARS["working_dir"])
    base_dir = Path(env_dir) if env_dir else (working_dir or Path.cwd())

    merged: dict = {}
    merged.update(_dotenv_layer(base_dir))

    yaml_path = config_path or base_dir / CONFIG_FILENAME
    if config_path is not None and not config_path.exists():
        logger.warning(f"Config file not found: {config_path}")
        print(f"WARNING: Config file not found: {config_path}")
    elif yaml_path.exists():
        data = _load_yaml(yaml_path)
        merged.update({k: v for k, v in data.items() if k in ENV_VARS})
        unknown = sorted(set(data) - set(ENV_VARS))
        if unknown:
            logger.warning(f"Unknown keys in {yaml_path}: {', '.join(unknown)}")

    for field_name, var in ENV_VARS.items():
        if var in os.environ:
            merged[field_name] = os.environ[var]

    config = RalphConfig(working_dir=base_dir)
    invalid: dict[str, str] = {}

    for key, value in merged.items():
        if key == "working_dir":
            config.working_dir = Path(str(value)).expanduser()
        elif key in INT_BOUNDS:
            try:
                setattr(config, key, int(value))
            except (TypeError, ValueError):
                invalid[key] = str(value)
        elif key in BOOL_FIELDS:
            setattr(config, key, _parse_bool(value))
        elif value is not None:
            setattr(config, key, str(value))

    config.invalid = invalid or None
    return config


def validate_config(config: RalphConfig, require_auth: bool = True) -> list[str]:
    """Return every configuration error (empty list when valid)."""
    errors = []

    if config.auth_mode not in AUTH_MODES:
        errors.append(f"auth_mode must be one of {', '.join(AUTH_MODES)} (got '{config.auth_mode}')")
    elif require_auth and config.auth_mode == "api_key" and not config.api_key:
        errors.append("ANTHROPIC_API_KEY is required (or set RALPH_AUTH_MODE=oauth to use CLI login)")

    if not config.model:
        errors.append("model is required")

    for key, raw in (config.invalid or {}).items():
        errors.append(f"{key} must be an integer (got '{raw}')")

    for key, (low, high) in INT_BOUNDS.items():
        if config.invalid and key in config.invalid:
            continue
        value = getattr(config, key)
        if not low <= value <= high:
            errors.append(f"{key} must be between {low} and {high} (got {value})")

    if config.progress_mode not in PROGRESS_MODES:
        errors.append(f"progress_mode must be one of {', '.join(PROGRESS_MODES)} (got '{config.progress_mode}')")

    if not config.working_dir.is_dir():
        errors.append(f"working directory does not exist: {config.working_dir}")

    return errors
