"""
Agent command configuration.

Loads agents.yaml from the working directory to decide which CLI command
runs each agent stage. Without a file, the defaults below drive the
Claude CLI in streaming JSON mode.

    stages:
      implement: "claude -p --output-format stream-json --verbose --model {model} ..."

Templates are split with shlex first and placeholders are substituted per
argument afterwards, so values containing spaces or quotes stay a single
argument.

The default templates keep both prompts off the command line: the stage
context (memory, AGENTS.md, task) easily outgrows the 128 KiB Linux limit
on a single argument, so it is written to stdin ahead of the user prompt.

Placeholders:
- {prompt}:           the user prompt; when absent it is sent on stdin
- {system_prompt}:    context prompt for the stage; when absent it is sent on
                      stdin before the user prompt
- {model}:            model name
- {max_turns}:        turn budget
- {allowed_tools}:    comma-separated tool names the agent may use
- {disallowed_tools}: comma-separated tool names the agent may not use
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

AGENTS_FILENAME = "agents.yaml"

_STREAM = "claude -p --output-format stream-json --verbose --model {model} --max-turns {max_turns}"

DEFAULT_STAGE_COMMANDS = {
    "select": f"{_STREAM} --disallowedTools {{disallowed_tools}}",
    # Picks one task from the summary; no tools

    "implement": f"{_STREAM} --allowedTools {{allowed_tools}} --permission-mode acceptEdits",
    # Implements the selected task with full tool access

    "legacy": f"{_STREAM} --allowedTools {{allowed_tools}} --permission-mode acceptEdits",
    # Single-phase fallback: choose, implement and commit in one run
}

_PLACEHOLDER_RE = re.compile(r'\{(\w+)\}')

STDIN_SEPARATOR = "\n\n---\n\n"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())


def load_agents_config(working_dir: Path | None) -> AgentsConfig:
    """Load agents.yaml, falling back to defaults when missing or malformed."""
    if working_dir is None:
        return AgentsConfig()

    config_path = working_dir / AGENTS_FILENAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("stages"), dict):
        for stage, command in data["stages"].items():
            if stage not in DEFAULT_STAGE_COMMANDS:
                logger.warning(f"Ignoring unknown stage '{stage}' in {config_path}")
                continue
            stages[stage] = str(command)
    return AgentsConfig(stages=stages)


@dataclass
class StageCommand:
    """Result of building a stage command."""
    cmd: list[str]
    prompt_via_stdin: bool
    system_prompt_via_stdin: bool = False

    def get_stdin_input(self, prompt: str, system_prompt: str = "") -> str | None:
        """Return what the template doesn't carry in argv, or None if it carries everything."""
        parts = []
        if self.system_prompt_via_stdin and system_prompt:
            parts.append(system_prompt)
        if self.prompt_via_stdin:
            parts.append(prompt)
        return STDIN_SEPARATOR.join(parts) if parts else None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> StageCommand:
    """Build the argv for a stage.

    Raises:
        ValueError: If the stage is unknown

    Example:
        >>> cfg = AgentsConfig(stages={"select": "agent --sys {system_prompt}"})
        >>> get_stage_command(cfg, "select", {"system_prompt": "be brief"}).cmd
        ['agent', '--sys', 'be brief']
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    template = config.stages[stage]
    context = context or {}
    prompt_via_stdin = "{prompt}" not in template
    system_prompt_via_stdin = "{system_prompt}" not in template

    cmd = []
    for arg in shlex.split(template):
        missing = [name for name in _PLACEHOLDER_RE.findall(arg) if name not in context]
        if missing:
            logger.error(f"Stage '{stage}' has unsubstituted variables: {missing}")
        cmd.append(_PLACEHOLDER_RE.sub(lambda m: str(context.get(m.group(1), m.group(0))), arg))

    return StageCommand(
        cmd=cmd,
        prompt_via_stdin=prompt_via_stdin,
        system_prompt_via_stdin=system_prompt_via_stdin,
    )


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")
    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


@dataclass
class BinaryCheckResult:
    """Result of checking stage binaries."""
    ok: bool
    missing_binary: str | None = None
    stages_affected: list[str] = field(default_factory=list)
    error_message: str | None = None


def validate_stage_binaries(config: AgentsConfig, stages: list[str]) -> BinaryCheckResult:
    """Check that every binary the given stages need is on PATH."""
    binary_to_stages: dict[str, list[str]] = {}
    for stage in stages:
        if stage not in config.stages:
            continue
        binary_to_stages.setdefault(get_stage_binary(config, stage), []).append(stage)

    for binary, affected in binary_to_stages.items():
        if check_binary_available(binary):
            continue
        error_lines = [
            f"Required tool '{binary}' is not installed.",
            f"Stages that need it: {', '.join(affected)}",
            "",
            "To fix this, either:",
            f"  1. Install {binary}",
            f"  2. Create {AGENTS_FILENAME} in your project to use a different command:",
            "",
            "     stages:",
        ]
        error_lines.extend(f'       {stage}: "your-agent ..."' for stage in affected)
        return BinaryCheckResult(
            ok=False,
            missing_binary=binary,
            stages_affected=affected,
            error_message="\n".join(error_lines),
        )

    return BinaryCheckResult(ok=True)
