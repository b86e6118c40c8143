"""Directory walking for project file lists.

Exclusions are glob patterns matched against forward-slash relative paths
with fnmatch semantics (``*`` also crosses ``/``). ``.gitignore`` lines are
translated to such globs.
"""

import fnmatch
import os
from pathlib import Path
from typing import Iterable, List, Sequence

from loguru import logger

from .models import Project


def gitignore_to_globs(lines: Iterable[str]) -> List[str]:
    """Translate .gitignore lines into exclude globs.

    Negations (``!pattern``) are not supported and are skipped.
    """
    patterns: List[str] = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith("!"):
            continue

        if line.endswith("/"):
            # Directory only
            name = line[:-1]
            if name.startswith("/"):
                patterns.append(name[1:] + "/**")
            else:
                patterns.extend([name + "/**", "**/" + name + "/**"])
        elif line.startswith("/"):
            # Anchored at the project root
            name = line[1:]
            patterns.extend([name, name + "/**"])
        elif "/" not in line and "*" not in line:
            # Bare name, matches at any depth
            patterns.extend([
                "**/" + line,
                "**/" + line + "/**",
                line,
                line + "/**",
            ])
        else:
            patterns.extend([line, line + "/**"])

    return patterns


def read_gitignore(root: Path) -> List[str]:
    """Exclude globs derived from the project's .gitignore, if any."""
    gitignore = Path(root) / ".gitignore"
    if not gitignore.is_file():
        return []

    try:
        content = gitignore.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.error(f"Failed to read {gitignore}: {e}")
        return []

    return gitignore_to_globs(content.splitlines())


def is_excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(rel_path, pattern) for pattern in patterns)


def scan_files(root: Path, patterns: Sequence[str]) -> List[str]:
    """
    List every file under root as a sorted relative path.

    Dotfiles are included. A directory is pruned when ``<dir>/`` matches an
    exclude pattern, so excluded trees such as ``node_modules`` are never
    walked.
    """
    root = Path(root)
    if not root.is_dir():
        logger.warning(f"Project directory does not exist: {root}")
        return []

    files: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        dirnames[:] = [
            name for name in dirnames
            if not is_excluded(prefix + name + "/", patterns)
        ]

        for name in filenames:
            rel_path = prefix + name
            if not is_excluded(rel_path, patterns):
                files.append(rel_path)

    files.sort()
    return files


def scan_project(project: Project, static_excludes: Sequence[str]) -> List[str]:
    """Scan a project honoring its own excludes, .gitignore and static excludes."""
    root = Path(project.path).expanduser()
    gitignore_patterns = read_gitignore(root)
    logger.debug(f"Project {project.name} .gitignore patterns: {gitignore_patterns}")

    patterns = [
        *project.exclude_patterns,
        *gitignore_patterns,
        *static_excludes,
    ]
    return scan_files(root, patterns)
