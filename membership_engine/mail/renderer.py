"""Rendering helpers for membership emails."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Tuple

_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")


def _load_template(template: str) -> str:
    path = _TEMPLATE_PATH / template
    return path.read_text(encoding="utf-8")


def _render_template(template: str, context: Dict[str, Any]) -> str:
    source = _load_template(template)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key, "")
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


def render_template_set(template_id: str, context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Render ``(subject, text_body, html_body)`` for a template family."""

    subject = _render_template(f"{template_id}_subject.txt.j2", context)
    text_body = _render_template(f"{template_id}_body.txt.j2", context)
    html_body = _render_template(f"{template_id}_body.html.j2", context)
    return subject.strip(), text_body.strip(), html_body.strip()


def template_exists(template_id: str) -> bool:
    return (_TEMPLATE_PATH / f"{template_id}_subject.txt.j2").is_file()
