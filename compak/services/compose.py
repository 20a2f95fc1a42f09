# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Compose Engine adapter.

Drives whichever compose CLI is installed (Docker Compose plugin,
docker-compose, podman-compose or ``podman compose``) through subprocess.
The env file is handed to the engine with ``--env-file``; the process
environment is left untouched.
"""

import json
import shutil
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from compak.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

COMPOSE_FILE = "docker-compose.yaml"
ENV_FILE = ".env"

CANDIDATE_COMMANDS: Tuple[Tuple[str, ...], ...] = (
    ("docker", "compose"),
    ("docker-compose",),
    ("podman-compose",),
    ("podman", "compose"),
)

NO_COMPOSE_MESSAGE = (
    "no compose command found: please install Docker Compose, docker-compose, or podman-compose"
)

LogConsumer = Callable[[str], None]


@dataclass(frozen=True)
class ContainerSummary:
    """One row of ``compose ps``"""
    name: str
    service: str
    state: str
    status: str

    @classmethod
    def from_ps(cls, row: dict) -> "ContainerSummary":
        return cls(
            name=str(row.get("Name") or row.get("Names") or ""),
            service=str(row.get("Service") or ""),
            state=str(row.get("State") or ""),
            status=str(row.get("Status") or ""),
        )


@dataclass(frozen=True)
class ComposeProject:
    """A compose file loaded under a fixed project name"""
    name: str
    working_dir: Path
    compose_file: Path
    env_file: Optional[Path] = None


def detect_compose_command(
    which: Callable[[str], Optional[str]] = shutil.which,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run
) -> Tuple[str, ...]:
    """
    First available compose command.

    ``docker`` and ``podman`` only count when their compose plugin answers
    ``compose version``.

    Raises:
        ExternalToolError: if no compose command is installed
    """
    for candidate in CANDIDATE_COMMANDS:
        if not which(candidate[0]):
            continue
        if len(candidate) > 1:
            result = run([*candidate, "version"], capture_output=True, text=True, check=False)
            if result.returncode != 0:
                continue
        logger.debug(f"Using compose command: {' '.join(candidate)}")
        return candidate

    raise ExternalToolError(NO_COMPOSE_MESSAGE)


def parse_ps_output(output: str) -> List[ContainerSummary]:
    """``ps --format json`` prints a JSON array or one object per line depending on version."""
    output = output.strip()
    if not output:
        return []

    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        data = [json.loads(line) for line in output.splitlines() if line.strip()]

    if isinstance(data, dict):
        data = [data]
    return [ContainerSummary.from_ps(row) for row in data]


class ComposeEngine:
    """Lifecycle calls against a compose CLI"""

    def __init__(self, command: Optional[Sequence[str]] = None):
        """
        Args:
            command: Compose command line prefix; detected on first use when omitted
        """
        self._command: Optional[Tuple[str, ...]] = tuple(command) if command else None

    @property
    def command(self) -> Tuple[str, ...]:
        if self._command is None:
            self._command = detect_compose_command()
        return self._command

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        """
        Run a compose command and capture its output.

        Raises:
            ExternalToolError: on non-zero exit or missing executable
        """
        cmd = [*self.command, *args]
        cmd_str = " ".join(cmd)
        logger.debug(f"Running: {cmd_str}")
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False
            )
        except OSError as e:
            raise ExternalToolError(f"Compose command failed to start: {cmd_str}: {e}", command=cmd_str) from e

        if result.returncode != 0:
            raise ExternalToolError(
                f"Compose command failed: {cmd_str}\n{result.stderr.strip()}",
                command=cmd_str,
                stderr=result.stderr
            )
        return result

    def _stream(self, args: List[str], consumer: LogConsumer, cwd: Optional[Path] = None):
        """Run a compose command, handing each output line to ``consumer``."""
        cmd = [*self.command, *args]
        cmd_str = " ".join(cmd)
        try:
            process = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True
            )
        except OSError as e:
            raise ExternalToolError(f"Compose command failed to start: {cmd_str}: {e}", command=cmd_str) from e

        with process:
            for line in process.stdout:
                consumer(line.rstrip("\n"))
        if process.returncode != 0:
            raise ExternalToolError(
                f"Compose command failed: {cmd_str} (exit {process.returncode})",
                command=cmd_str
            )

    @staticmethod
    def _project_args(project: ComposeProject) -> List[str]:
        args = [
            "-p", project.name,
            "-f", str(project.compose_file),
            "--project-directory", str(project.working_dir),
        ]
        if project.env_file:
            args += ["--env-file", str(project.env_file)]
        return args

    def load_project(self, working_dir: Path, project_name: str) -> ComposeProject:
        """
        Load and validate ``docker-compose.yaml`` (with ``.env`` when present).

        Raises:
            ExternalToolError: if the compose file is missing or rejected by the engine
        """
        working_dir = Path(working_dir)
        compose_file = working_dir / COMPOSE_FILE
        if not compose_file.is_file():
            raise ExternalToolError(f"failed to load project: {compose_file} not found")

        env_file = working_dir / ENV_FILE
        project = ComposeProject(
            name=project_name,
            working_dir=working_dir,
            compose_file=compose_file,
            env_file=env_file if env_file.is_file() else None,
        )
        self._run([*self._project_args(project), "config", "--quiet"], cwd=working_dir)
        return project

    def up(self, project: ComposeProject, detach: bool = True, log_consumer: Optional[LogConsumer] = None):
        """Create and start the project; when not detached, follow its logs."""
        if not detach and log_consumer is None:
            raise ExternalToolError("log consumer required when not running detached")

        self._run([*self._project_args(project), "up", "-d", "--remove-orphans"], cwd=project.working_dir)
        if not detach:
            self.logs(project.name, log_consumer, follow=True, working_dir=project.working_dir)

    @staticmethod
    def _existing_project_args(project_name: str, working_dir: Optional[Path]) -> List[str]:
        """Arguments addressing an already deployed project, pinned to its directory when known."""
        args = ["-p", project_name]
        if working_dir is None:
            return args
        working_dir = Path(working_dir)
        if (working_dir / COMPOSE_FILE).is_file():
            args += ["-f", str(working_dir / COMPOSE_FILE)]
        args += ["--project-directory", str(working_dir)]
        if (working_dir / ENV_FILE).is_file():
            args += ["--env-file", str(working_dir / ENV_FILE)]
        return args

    def down(self, project_name: str, working_dir: Optional[Path] = None):
        self._run(
            [*self._existing_project_args(project_name, working_dir), "down", "--remove-orphans"],
            cwd=working_dir
        )

    def ps(self, project_name: str, working_dir: Optional[Path] = None) -> List[ContainerSummary]:
        result = self._run(
            [*self._existing_project_args(project_name, working_dir), "ps", "--all", "--format", "json"],
            cwd=working_dir
        )
        try:
            return parse_ps_output(result.stdout)
        except json.JSONDecodeError as e:
            raise ExternalToolError(f"unexpected ps output: {e}", command="ps", stderr=result.stdout) from e

    def pull(self, project: ComposeProject):
        self._run([*self._project_args(project), "pull"], cwd=project.working_dir)

    def logs(
        self,
        project_name: str,
        consumer: LogConsumer,
        follow: bool = False,
        working_dir: Optional[Path] = None
    ):
        args = [*self._existing_project_args(project_name, working_dir), "logs", "--no-color"]
        if follow:
            args.append("--follow")
        self._stream(args, consumer, cwd=working_dir)
