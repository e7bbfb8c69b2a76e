"""Human-readable templates for ``ChatLogger.log_event``.

Templates live in ``event_templates.json`` as ``{domain: {action: text}}``
and are flattened into ``EVENT_TEMPLATES`` keyed by ``(domain, action)``.
A catalog that cannot be read leaves a single ``("app", "load_error")``
entry so the failure shows up in the log output.
"""

from __future__ import annotations

import json
from pathlib import Path

EventKey = tuple[str, str]

DEFAULT_TEMPLATE_PATH = Path(__file__).with_name("event_templates.json")
EVENT_TEMPLATES: dict[EventKey, str] = {}


def _flatten(document: object) -> dict[EventKey, str]:
    if not isinstance(document, dict):
        return {}
    return {
        (domain, action): text
        for domain, actions in document.items()
        if isinstance(actions, dict)
        for action, text in actions.items()
        if isinstance(text, str)
    }


def load_event_templates(path: Path | None = None) -> dict[EventKey, str]:
    """Read and flatten a template file; entries that are not strings are skipped."""
    source = path or DEFAULT_TEMPLATE_PATH
    try:
        document = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {("app", "load_error"): f"Event templates file missing: {source.name}"}
    except (OSError, ValueError) as e:
        return {("app", "load_error"): f"Failed to load event templates: {e}"[:200]}
    return _flatten(document)


def reload_event_templates(path: Path | None = None) -> None:
    """Replace ``EVENT_TEMPLATES`` in place so existing references see the update."""
    templates = load_event_templates(path)
    EVENT_TEMPLATES.clear()
    EVENT_TEMPLATES.update(templates)


reload_event_templates()

__all__ = [
    "DEFAULT_TEMPLATE_PATH",
    "EVENT_TEMPLATES",
    "load_event_templates",
    "reload_event_templates",
]
