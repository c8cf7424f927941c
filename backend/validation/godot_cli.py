"""Godot CLI validator.

This module runs the Godot binary headlessly against a project and
normalizes the outcome to exit code / stdout / stderr / timed-out. It
imposes no retry policy; callers decide what a failed check means.
"""

import asyncio
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog

from config import settings
from validation.security import sanitize_output, validate_path

logger = structlog.get_logger()

# Exit code reported for checks killed on timeout (matches coreutils `timeout`).
TIMEOUT_EXIT_CODE = 124

_HOME = Path.home()

_COMMON_LOCATIONS: dict[str, list[Path]] = {
    "darwin": [
        Path("/Applications/Godot.app/Contents/MacOS/Godot"),
        Path("/Applications/Godot_mono.app/Contents/MacOS/Godot"),
        _HOME / "Applications/Godot.app/Contents/MacOS/Godot",
        Path("/opt/homebrew/bin/godot"),
        Path("/usr/local/bin/godot"),
    ],
    "linux": [
        Path("/usr/bin/godot"),
        Path("/usr/local/bin/godot"),
        Path("/snap/bin/godot"),
        _HOME / ".local/bin/godot",
        Path("/opt/godot/godot"),
    ],
    "win32": [
        Path("C:/Program Files/Godot/Godot.exe"),
        Path("C:/Program Files (x86)/Godot/Godot.exe"),
        Path(os.environ.get("LOCALAPPDATA", "")) / "Godot/Godot.exe",
        _HOME / "scoop/apps/godot/current/godot.exe",
    ],
}


class GodotNotFoundError(RuntimeError):
    """Raised when no Godot binary can be located."""


@dataclass
class ValidationOutcome:
    """Result of one Godot check."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    @property
    def diagnostic_text(self) -> str:
        """Failure text for humans and corrective prompts: stderr, else stdout."""
        return self.stderr or self.stdout or "Unknown validation error"


def detect_godot(configured_path: str | None = None) -> str | None:
    """Locate a Godot binary.

    Search order: explicit/configured path, ``PATH`` (``godot``, ``godot4``),
    then well-known install locations for the current platform.

    Args:
        configured_path: Explicit binary path; falls back to settings.godot_path

    Returns:
        Path to the binary, or None when nothing was found
    """
    explicit = configured_path or settings.godot_path
    if explicit:
        if Path(explicit).is_file():
            return explicit
        logger.warning("godot_configured_path_missing", path=explicit)

    for name in ("godot", "godot4"):
        found = shutil.which(name)
        if found:
            return found

    platform_key = "linux" if sys.platform.startswith("linux") else sys.platform
    for location in _COMMON_LOCATIONS.get(platform_key, []):
        if location.is_file():
            return str(location)

    return None


class GodotValidator:
    """Runs ``godot --headless`` checks against a project.

    Attributes:
        godot_path: Explicit binary path; autodetected on first use when None
        check_timeout: Seconds allowed for a single-script check
        import_timeout: Seconds allowed for a whole-project import
    """

    def __init__(
        self,
        godot_path: str | None = None,
        check_timeout: int | None = None,
        import_timeout: int | None = None,
    ) -> None:
        self.godot_path = godot_path
        self.check_timeout = check_timeout or settings.godot_check_timeout_seconds
        self.import_timeout = import_timeout or settings.godot_import_timeout_seconds

    def resolve_binary(self) -> str:
        """Return the Godot binary path, detecting it if needed.

        Raises:
            GodotNotFoundError: If no binary can be found
        """
        binary = detect_godot(self.godot_path)
        if binary is None:
            raise GodotNotFoundError(
                "Godot not found. Install Godot or set GODOT_PATH."
            )
        return binary

    def is_available(self) -> bool:
        return detect_godot(self.godot_path) is not None

    async def check_only(
        self,
        project_path: str | Path,
        script_path: str | None = None,
    ) -> ValidationOutcome:
        """Validate a project, or a single script within it.

        Without a script the project is imported headlessly, which parses
        every scene and script. With a script, ``--check-only`` parses just
        that file in the project context.

        Args:
            project_path: Godot project directory
            script_path: Optional project-relative script to check

        Returns:
            ValidationOutcome for the check

        Raises:
            GodotNotFoundError: If no Godot binary is available
            ValueError: If script_path escapes the project
        """
        project = Path(project_path).resolve()

        if script_path:
            is_valid, error_msg, _ = validate_path(project, script_path)
            if not is_valid:
                raise ValueError(error_msg)
            args = [
                "--headless", "--path", str(project),
                "--check-only", "--script", script_path,
            ]
            timeout = self.check_timeout
        else:
            args = ["--headless", "--import", "--path", str(project)]
            timeout = self.import_timeout

        return await self._run(args, timeout)

    async def _run(self, args: list[str], timeout: int) -> ValidationOutcome:
        binary = self.resolve_binary()

        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("godot_spawn_failed", binary=binary, error=str(e))
            return ValidationOutcome(
                exit_code=1,
                stdout="",
                stderr=f"Failed to spawn Godot: {e}",
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("godot_check_timeout", args=args, timeout=timeout)
            return ValidationOutcome(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout="",
                stderr=f"Godot timed out after {timeout} seconds",
                timed_out=True,
            )

        outcome = ValidationOutcome(
            exit_code=process.returncode if process.returncode is not None else 1,
            stdout=sanitize_output(stdout_bytes.decode("utf-8", errors="replace")),
            stderr=sanitize_output(stderr_bytes.decode("utf-8", errors="replace")),
        )
        logger.debug("godot_check_complete", args=args, exit_code=outcome.exit_code)
        return outcome
