"""Project validation and file access.

This module provides the Godot CLI validator, the Godot output parser,
and the path-checked writer used to land generated files in a project.
"""

from validation.error_parser import GodotDiagnostic, parse_godot_errors
from validation.godot_cli import (
    GodotNotFoundError,
    GodotValidator,
    ValidationOutcome,
    detect_godot,
)
from validation.security import sanitize_output, validate_path
from validation.workspace import UnsafePathError, write_project_file

__all__ = [
    "GodotDiagnostic",
    "GodotNotFoundError",
    "GodotValidator",
    "UnsafePathError",
    "ValidationOutcome",
    "detect_godot",
    "parse_godot_errors",
    "sanitize_output",
    "validate_path",
    "write_project_file",
]
