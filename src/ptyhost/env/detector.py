"""Environment detector — find Python environments belonging to a project.

Read-only: conventional virtualenv directories are checked on disk, and
environment managers (conda, poetry, pipenv) are asked in collecting mode
only when their manifest file is present in the project.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ptyhost.process.runner import CommandResult, run_sync

logger = logging.getLogger(__name__)

VENV_DIR_NAMES = ("venv", ".venv", "env", ".env", "virtualenv")
CONDA_DIR_NAMES = (*VENV_DIR_NAMES, ".conda")

CommandRunner = Callable[[str, list[str], "str | None"], CommandResult]


@dataclass(frozen=True)
class VirtualEnv:
    """One detected interpreter environment."""

    path: str
    kind: str  # venv | virtualenv | conda | poetry | pipenv

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "type": self.kind}


def _python_candidates(env_dir: Path) -> list[Path]:
    if sys.platform == "win32":
        scripts = env_dir / "Scripts"
        return [scripts / "python.exe", scripts / "python3.exe"]
    return [env_dir / "bin" / "python", env_dir / "bin" / "python3"]


def _venv_kind(env_dir: Path) -> str:
    cfg = env_dir / "pyvenv.cfg"
    try:
        text = cfg.read_text(errors="replace")
    except OSError:
        return "venv"
    return "virtualenv" if re.search(r"^\s*virtualenv\s*=", text, re.M) else "venv"


def _scan_directories(project: Path) -> list[VirtualEnv]:
    found: list[VirtualEnv] = []
    for name in CONDA_DIR_NAMES:
        env_dir = project / name
        if not env_dir.is_dir():
            continue
        if (env_dir / "conda-meta").is_dir():
            found.append(VirtualEnv(path=str(env_dir), kind="conda"))
        elif name in VENV_DIR_NAMES and any(
            p.exists() for p in _python_candidates(env_dir)
        ):
            found.append(VirtualEnv(path=str(env_dir), kind=_venv_kind(env_dir)))
    return found


def _conda_env_name(manifest: Path) -> str | None:
    try:
        text = manifest.read_text(errors="replace")
    except OSError:
        return None
    match = re.search(r"^name:\s*['\"]?([^'\"\s#]+)", text, re.M)
    return match.group(1) if match else None


def _detect_conda(project: Path, run: CommandRunner) -> list[VirtualEnv]:
    manifest = next(
        (
            project / name
            for name in ("environment.yml", "environment.yaml")
            if (project / name).is_file()
        ),
        None,
    )
    if manifest is None:
        return []
    env_name = _conda_env_name(manifest)
    if env_name is None:
        return []

    result = run("conda", ["env", "list", "--json"], str(project))
    if result.is_error:
        logger.debug("conda env list failed: %s", result.output.strip())
        return []
    try:
        envs = json.loads(result.output).get("envs", [])
    except (ValueError, AttributeError):
        logger.debug("Unparseable conda env list output")
        return []
    return [
        VirtualEnv(path=env_path, kind="conda")
        for env_path in envs
        if os.path.basename(os.path.normpath(env_path)) == env_name
    ]


def _uses_poetry(project: Path) -> bool:
    try:
        text = (project / "pyproject.toml").read_text(errors="replace")
    except OSError:
        return False
    return re.search(r"^\[tool\.poetry\]", text, re.M) is not None


def _single_path(
    run: CommandRunner, command: str, args: list[str], project: Path, kind: str
) -> list[VirtualEnv]:
    result = run(command, args, str(project))
    if result.is_error:
        logger.debug("%s %s failed: %s", command, " ".join(args), result.output.strip())
        return []
    lines = [line.strip() for line in result.output.splitlines() if line.strip()]
    if not lines or not os.path.isdir(lines[-1]):
        return []
    return [VirtualEnv(path=lines[-1], kind=kind)]


def detect_environments(
    project_path: str | os.PathLike[str],
    run: CommandRunner | None = None,
) -> list[VirtualEnv]:
    """Return the interpreter environments associated with a project.

    Args:
        project_path: Project root directory.
        run: Collecting-mode command runner, ``run_sync`` by default.

    Returns:
        Environments in discovery order, de-duplicated by path. A missing
        project directory yields an empty list.
    """
    run = run or run_sync
    project = Path(project_path)
    if not project.is_dir():
        return []

    found = _scan_directories(project)
    found += _detect_conda(project, run)
    if _uses_poetry(project):
        found += _single_path(run, "poetry", ["env", "info", "--path"], project, "poetry")
    if (project / "Pipfile").is_file():
        found += _single_path(run, "pipenv", ["--venv"], project, "pipenv")

    seen: set[str] = set()
    unique: list[VirtualEnv] = []
    for env in found:
        key = os.path.normcase(os.path.realpath(env.path))
        if key in seen:
            continue
        seen.add(key)
        unique.append(env)
    return unique
