"""Writes generated files into a Godot project on local disk."""

from pathlib import Path

import structlog

from validation.security import validate_path

logger = structlog.get_logger()


class UnsafePathError(ValueError):
    """Raised when a generated path would escape the project root."""


def write_project_file(project_root: str | Path, relative_path: str, content: str) -> Path:
    """Write a file under the project root, creating parent directories.

    Args:
        project_root: The Godot project directory.
        relative_path: Target path relative to the project root.
        content: UTF-8 file content.

    Returns:
        The absolute path that was written.

    Raises:
        UnsafePathError: If the path is empty, absolute or escapes the root.
    """
    is_valid, error_msg, resolved = validate_path(project_root, relative_path)
    if not is_valid:
        raise UnsafePathError(f"{relative_path!r}: {error_msg}")

    target = Path(resolved)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")

    logger.debug("project_file_written", path=relative_path, size=len(content))
    return target
