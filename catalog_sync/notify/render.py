"""Notification message rendering."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).with_name("templates")
# Telegram parses messages as HTML, so interpolated values are escaped.
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("txt",)),
    trim_blocks=False,
)

EVENT_TEMPLATES = {
    "started": "started.txt",
    "completed": "finished.txt",
    "failed": "finished.txt",
    "cancelled": "finished.txt",
    "comparison": "comparison.txt",
}


def render_message(summary: Mapping[str, Any]) -> str:
    event = summary.get("event", "completed")
    template = ENV.get_template(EVENT_TEMPLATES.get(event, "finished.txt"))
    return template.render(**summary).strip()
