"""Mustache-style ``{{path}}`` rendering for comment, notification, and webhook templates."""

from __future__ import annotations

import json
import re
from typing import Any

_TEMPLATE_VAR_RE = re.compile(r"{{\s*([a-zA-Z0-9_.]+)\s*}}")


def resolve_path(container: Any, path: str) -> Any:
    """Walk dotted ``path`` through nested dicts and lists; None when missing."""
    current: Any = container
    for part in [item for item in path.strip().split(".") if item]:
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
            continue
        if isinstance(current, list):
            if not part.isdigit() or int(part) >= len(current):
                return None
            current = current[int(part)]
            continue
        return None
    return current


def render_template(template: str, context: dict[str, Any]) -> str:
    """Substitute placeholders; unknown placeholders render as empty text."""

    def _replace(match: re.Match[str]) -> str:
        resolved = resolve_path(context, match.group(1))
        if resolved is None:
            return ""
        if isinstance(resolved, (dict, list)):
            return json.dumps(resolved, ensure_ascii=True, default=str)
        return str(resolved)

    return _TEMPLATE_VAR_RE.sub(_replace, template)


def render_value(value: Any, context: dict[str, Any]) -> Any:
    """Render strings nested anywhere inside dicts and lists."""
    if isinstance(value, str):
        return render_template(value, context)
    if isinstance(value, dict):
        return {key: render_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, context) for item in value]
    return value
