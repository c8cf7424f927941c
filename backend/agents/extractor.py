"""Extract path-addressed files from free-form model output.

The Game Coder is instructed to emit every file as a fenced code block
whose first line declares the target path::

    ```gdscript
    # filename: scripts/player.gd
    extends CharacterBody2D
    ```

Blocks without the declaration are treated as prose and ignored.
Extraction is a pure function of the input text.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

# Opening fence with optional info string, body, closing fence.
_FENCE_PATTERN = re.compile(r"```([^\n`]*)\n(.*?)```", re.DOTALL)

# "# filename: x", "// filename: x" (C#/shader comments), "; filename: x" (.tscn/.cfg)
_FILENAME_PATTERN = re.compile(
    r"^\s*(?:#|//|;)\s*filename:\s*(?P<path>\S.*?)\s*$",
    re.IGNORECASE,
)

_EXTENSION_TYPES: dict[str, str] = {
    ".gd": "gdscript",
    ".tscn": "tscn",
    ".tres": "tres",
    ".godot": "godot",
}


@dataclass(frozen=True)
class GeneratedFile:
    """A single file parsed out of model output.

    Attributes:
        path: Path relative to the project root, as declared in the block
        content: File body without the filename declaration line
        type: Content-kind tag (the fence language, lower-cased)
    """

    path: str
    content: str
    type: str


def infer_type(path: str) -> str:
    """Guess a content-kind tag from a file extension."""
    return _EXTENSION_TYPES.get(PurePosixPath(path).suffix.lower(), "other")


def _split_declaration(body: str) -> tuple[str, str] | None:
    """Return (path, remaining content) when the body opens with a filename line."""
    lines = body.split("\n")
    for index, line in enumerate(lines):
        if not line.strip():
            continue
        match = _FILENAME_PATTERN.match(line)
        if match is None:
            return None
        return match.group("path"), "\n".join(lines[index + 1:])
    return None


def extract_files(response: str) -> list[GeneratedFile]:
    """Parse every filename-tagged fenced block out of a model response.

    Args:
        response: Raw model text

    Returns:
        Files in document order. Empty when no block qualifies.
    """
    files: list[GeneratedFile] = []

    for match in _FENCE_PATTERN.finditer(response):
        info = match.group(1).strip()
        declared = _split_declaration(match.group(2))
        if declared is None:
            continue

        path, content = declared
        content = content.strip("\n")
        if not content.strip():
            continue

        language = info.split()[0].lower() if info else ""
        files.append(
            GeneratedFile(
                path=path,
                content=content,
                type=language or infer_type(path),
            )
        )

    return files
