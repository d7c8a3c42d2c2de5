"""Prompt template loader.

Loads Markdown prompt templates from this directory and renders them
with Jinja2 variable substitution.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import BaseLoader, Environment

_PROMPTS_DIR = Path(__file__).parent


def render_prompt(template_name: str, **variables: object) -> str:
    """Load a prompt template and render it with Jinja2 variables.

    Args:
        template_name: Template file name without the .md extension.
        **variables: Template variables to inject.

    Raises:
        FileNotFoundError: If the template file does not exist.
    """
    path = _PROMPTS_DIR / f"{template_name}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    # Default Undefined renders as empty so {% if %} blocks skip missing vars
    env = Environment(loader=BaseLoader(), keep_trailing_newline=False)
    return env.from_string(path.read_text(encoding="utf-8")).render(**variables).strip()
