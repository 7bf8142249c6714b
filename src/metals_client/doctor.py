# File: metals_client/doctor.py

"""Renders the Metals doctor report (`-Dmetals.doctor-format=json`) as text."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from metals_client.errors import MalformedPayloadError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Metals Doctor"

_TARGET_COLUMNS = (
    ("buildTarget", "Build target"),
    ("scalaVersion", "Scala"),
    ("diagnostics", "Diagnostics"),
    ("gotoDefinition", "Goto definition"),
    ("completions", "Completions"),
    ("findReferences", "Find references"),
    ("recommendation", "Recommendation"),
)


@dataclass
class DoctorReport:
    title: str = DEFAULT_TITLE
    header_text: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    targets: List[Dict[str, Any]] = field(default_factory=list)
    explanations: List[Dict[str, Any]] = field(default_factory=list)


def parse_doctor(raw: Any) -> DoctorReport:
    """Parses the doctor payload sent as the first command argument.

    Raises:
        MalformedPayloadError: If `raw` is not a JSON object string.
    """
    if not isinstance(raw, str):
        raise MalformedPayloadError(f"Doctor payload must be a JSON string, got {type(raw).__name__}.")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"Invalid doctor JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPayloadError("Doctor JSON must be an object.")

    def _list_of_dicts(key: str) -> List[Dict[str, Any]]:
        value = data.get(key) or []
        if not isinstance(value, list):
            raise MalformedPayloadError(f"Doctor field '{key}' must be a list.")
        return [v for v in value if isinstance(v, dict)]

    return DoctorReport(
        title=str(data.get("title") or DEFAULT_TITLE),
        header_text=str(data.get("headerText") or ""),
        messages=_list_of_dicts("messages"),
        targets=_list_of_dicts("targets"),
        explanations=_list_of_dicts("explanations"),
    )


def render_doctor(report: DoctorReport) -> List[str]:
    """Lays the report out as Markdown lines for a preview window."""
    lines = [f"# {report.title}", ""]
    if report.header_text:
        lines += report.header_text.splitlines() + [""]

    for message in report.messages:
        lines.append(f"## {message.get('title', '')}")
        for recommendation in message.get("recommendations") or []:
            lines.append(f"  - {recommendation}")
        lines.append("")

    if report.targets:
        lines += ["## Build targets", ""]
        for target in report.targets:
            lines.append(f"### {target.get('buildTarget', '?')}")
            for key, label in _TARGET_COLUMNS[1:]:
                value = target.get(key)
                if value:
                    lines.append(f"  {label}: {value}")
            lines.append("")

    for explanation in report.explanations:
        lines.append(f"## {explanation.get('title', '')}")
        for text in explanation.get("explanations") or []:
            lines.append(f"  {text}")
        lines.append("")

    while lines and not lines[-1]:
        lines.pop()
    return lines
