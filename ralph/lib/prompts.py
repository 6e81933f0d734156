"""
Prompt templates for the agent stages (select, implement, legacy).

Templates ship in the package's prompts/ directory. A project can replace
any of them by dropping a file with the same name into
.ralph/prompts/ in its working directory; the override must use the same
{placeholders} as the packaged template.

Templates are rendered with str.format(), so literal braces (the JSON
completion block example) are written {{ and }}. HTML comments are
stripped before rendering.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "PromptError",
    "load_prompt",
    "render_prompt",
    "build_section",
    "clear_cache",
    "PROMPTS_DIR",
    "PROJECT_PROMPTS_DIR",
]

_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
PROJECT_PROMPTS_DIR = Path(".ralph") / "prompts"


class PromptError(Exception):
    """Raised when prompt loading or rendering fails."""
    pass


def _template_path(name: str, project_dir: Path | None) -> Path:
    if project_dir is not None:
        override = project_dir / PROJECT_PROMPTS_DIR / f"{name}.md"
        if override.exists():
            logger.debug(f"Using project prompt override: {override}")
            return override
    return PROMPTS_DIR / f"{name}.md"


@lru_cache(maxsize=16)
def load_prompt(name: str, project_dir: Path | None = None) -> str:
    """
    Load a prompt template by name (cached per project).

    Raises:
        PromptError: If neither an override nor a packaged template exists,
                     or the template is empty once comments are removed
    """
    prompt_path = _template_path(name, project_dir)
    if not prompt_path.exists():
        raise PromptError(f"Prompt template '{name}' not found. Expected file: {prompt_path}")

    content = _HTML_COMMENT_PATTERN.sub('', prompt_path.read_text()).strip()
    if not content:
        raise PromptError(f"Prompt template '{name}' is empty: {prompt_path}")
    return content + "\n"


def render_prompt(name: str, project_dir: Path | None = None, **kwargs) -> str:
    """
    Load and render a stage template.

    Raises:
        PromptError: If the template is missing or uses a variable the stage
                     doesn't provide
    """
    template = load_prompt(name, project_dir)
    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise PromptError(
            f"Prompt '{name}' uses {e}, which the {name} stage doesn't provide. "
            f"Available: {', '.join(sorted(kwargs))}"
        ) from e


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """Markdown section with a header, or "" when there is nothing to show."""
    if content:
        return f"{header}\n\n{content}\n"
    if empty_msg is not None:
        return f"{header}\n\n{empty_msg}\n"
    return ""


def clear_cache():
    load_prompt.cache_clear()
