"""Parse Godot CLI output into structured diagnostics."""

import re
from dataclasses import dataclass
from typing import Literal

# res://scripts/player.gd:15 - Parse Error: Expected ":"
_LOCATED_PATTERN = re.compile(r"^(res://[^:]+):(\d+)(?::(\d+))?\s*-\s*(.*)$", re.IGNORECASE)
_LEVEL_PATTERN = re.compile(r"^(ERROR|WARNING):\s*(.*)$", re.IGNORECASE)
_SCRIPT_ERROR_PATTERN = re.compile(r"SCRIPT ERROR:\s*(.*)$", re.IGNORECASE)


@dataclass
class GodotDiagnostic:
    """One error or warning reported by Godot.

    Attributes:
        file: Project-relative file (``res://`` stripped), empty when unknown
        line: 1-based line number, 0 when unknown
        column: 1-based column, 0 when unknown
        message: Diagnostic text
        severity: "error" or "warning"
        raw: The original output line
    """

    file: str
    line: int
    column: int
    message: str
    severity: Literal["error", "warning"]
    raw: str


def parse_godot_errors(output: str) -> list[GodotDiagnostic]:
    """Extract diagnostics from Godot stderr/stdout.

    Recognized line shapes:
    - ``res://path.gd:LINE[:COL] - message``
    - ``ERROR: message`` / ``WARNING: message``
    - ``SCRIPT ERROR: message``

    Args:
        output: Raw CLI output

    Returns:
        Diagnostics in output order. Unrecognized lines are skipped.
    """
    diagnostics: list[GodotDiagnostic] = []

    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        located = _LOCATED_PATTERN.match(stripped)
        if located:
            diagnostics.append(
                GodotDiagnostic(
                    file=located.group(1).removeprefix("res://"),
                    line=int(located.group(2)),
                    column=int(located.group(3)) if located.group(3) else 0,
                    message=located.group(4).strip(),
                    severity="warning" if "warning" in stripped.lower() else "error",
                    raw=line,
                )
            )
            continue

        level = _LEVEL_PATTERN.match(stripped)
        if level:
            diagnostics.append(
                GodotDiagnostic(
                    file="",
                    line=0,
                    column=0,
                    message=level.group(2).strip(),
                    severity="warning" if level.group(1).upper() == "WARNING" else "error",
                    raw=line,
                )
            )
            continue

        script_error = _SCRIPT_ERROR_PATTERN.search(stripped)
        if script_error:
            diagnostics.append(
                GodotDiagnostic(
                    file="",
                    line=0,
                    column=0,
                    message=script_error.group(1).strip(),
                    severity="error",
                    raw=line,
                )
            )

    return diagnostics
