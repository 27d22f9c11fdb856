"""
Oracle prompt rendering.

Every name declared on `Template` must exist as `templates/<name>.jinja2`;
a missing file fails the import rather than the first investigation.
Rendering is strict: a variable the template uses but the caller did not
pass raises instead of rendering as an empty string.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from .templates import Template

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
SUFFIX = ".jinja2"


def declared_templates() -> List[str]:
    return [value for name, value in vars(Template).items() if not name.startswith("_")]


def _check_templates_exist():
    missing = [name for name in declared_templates() if not (TEMPLATES_DIR / f"{name}{SUFFIX}").is_file()]
    if missing:
        raise FileNotFoundError(f"Prompt templates missing from {TEMPLATES_DIR}: {', '.join(missing)}")


_check_templates_exist()


def as_json(value) -> str:
    """Pretty JSON for context blobs the Oracle should read verbatim."""
    return json.dumps(value, indent=2, sort_keys=True, default=str)


@lru_cache(maxsize=1)
def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(default=False),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["tojson_pretty"] = as_json
    return env


def render(template_name: str, **context) -> str:
    prompt = _environment().get_template(f"{template_name}{SUFFIX}").render(**context)
    logger.debug(f"Rendered {template_name} ({len(prompt)} chars)")
    return prompt
