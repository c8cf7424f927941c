"""Path and output safety checks for project file access.

Model output decides where generated files land, so every relative path
is checked to stay inside the project root before anything touches disk.
"""

from pathlib import Path


def validate_path(project_root: str | Path, relative_path: str) -> tuple[bool, str, str]:
    """Validate a file path to prevent directory traversal.

    Ensures that the resolved path remains within the project root.

    Args:
        project_root: Absolute or relative path of the Godot project.
        relative_path: The path relative to the project root.

    Returns:
        A tuple of (is_valid, error_message, resolved_absolute_path).
        If valid, error_message is empty and resolved_absolute_path contains
        the full validated path.
        If invalid, error_message explains the issue and resolved_absolute_path
        is empty.

    Examples:
        >>> validate_path("/games/demo", "scripts/player.gd")
        (True, "", "/games/demo/scripts/player.gd")
        >>> validate_path("/games/demo", "../etc/passwd")
        (False, "Path traversal blocked: contains '..'", "")
        >>> validate_path("/games/demo", "/etc/passwd")
        (False, "Absolute paths not allowed", "")
    """
    if not relative_path or not relative_path.strip():
        return False, "Path cannot be empty", ""

    if "\x00" in relative_path:
        return False, "Path contains null byte", ""

    normalized = relative_path.replace("\\", "/")

    if normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        return False, "Absolute paths not allowed", ""

    # Reject parent traversal components while allowing names like
    # "file..bak" that contain ".." but not as a path component.
    components = [part for part in normalized.split("/") if part not in ("", ".")]
    if ".." in components:
        return False, "Path traversal blocked: contains '..'", ""
    if not components:
        return False, "Path cannot be empty", ""

    try:
        root = Path(project_root).resolve()
        resolved = (root / Path(*components)).resolve()
    except (ValueError, OSError) as e:
        return False, f"Invalid path: {e}", ""

    # Symlinks inside the project could still point outside it.
    try:
        resolved.relative_to(root)
    except ValueError:
        return False, f"Path traversal blocked: {relative_path}", ""

    return True, "", str(resolved)


def sanitize_output(output: str, max_length: int = 50000) -> str:
    """Truncate excessively long tool output.

    Args:
        output: The raw output string.
        max_length: Maximum allowed length before truncation.

    Returns:
        The sanitized output string.
    """
    if not output:
        return ""

    if len(output) > max_length:
        truncated_chars = len(output) - max_length
        output = (
            output[:max_length]
            + f"\n... [truncated, {truncated_chars} chars omitted]"
        )

    return output
