"""@-mention handling and safe access to project files."""

import re
from pathlib import Path
from typing import List, Tuple
from urllib.parse import unquote

import aiofiles
from loguru import logger

from .errors import Forbidden, NotFound

MENTION_PATTERN = re.compile(r"@(\S+)")

SOURCE_BLOCK = "{path} source (inside content tags)\n<content>\n{content}\n</content>\n\n"


def extract_mentions(content: str) -> List[str]:
    """File paths mentioned as ``@path``, unique, in first-seen order."""
    return list(dict.fromkeys(MENTION_PATTERN.findall(content or "")))


def strip_mentions(content: str) -> str:
    return MENTION_PATTERN.sub(r"\1", content or "")


def _decode(file_path: str) -> str:
    # Undo any layering of percent-encoding
    previous = None
    while previous != file_path:
        previous = file_path
        file_path = unquote(file_path)
    return file_path.replace("\\", "/")


def resolve_project_path(root: Path, file_path: str) -> Path:
    """
    Resolve a project-relative path, refusing anything outside root.

    Raises Forbidden for absolute paths, NUL bytes and for paths that
    resolve (after decoding and following symlinks) outside the project
    directory. Paths the OS refuses to resolve raise NotFound.
    """
    decoded = _decode(file_path)
    if "\x00" in decoded:
        raise Forbidden("access denied")

    root = Path(root).expanduser().resolve()

    if decoded.startswith("/") or Path(decoded).is_absolute():
        raise Forbidden("access denied")

    try:
        resolved = (root / decoded).resolve()
    except (OSError, ValueError) as e:
        raise NotFound(f"file not found: {file_path}") from e

    if not resolved.is_relative_to(root):
        raise Forbidden("access denied")
    return resolved


async def read_project_file(root: Path, file_path: str) -> str:
    """Read a text file inside the project directory."""
    resolved = resolve_project_path(root, file_path)
    try:
        is_file = resolved.is_file()
    except (OSError, ValueError):
        is_file = False
    if not is_file:
        raise NotFound(f"file not found: {file_path}")

    async with aiofiles.open(resolved, 'r', encoding='utf-8', errors='replace') as f:
        return await f.read()


async def compose_with_sources(content: str, root: Path) -> Tuple[str, int]:
    """
    Inline the contents of every mentioned file after the prompt text.

    Mentions that are missing, unreadable or outside the project are left
    as plain text and skipped. Returns the composed text and how many files
    were inlined.
    """
    blocks = []
    for file_path in extract_mentions(content):
        try:
            text = await read_project_file(root, file_path)
        except (Forbidden, NotFound):
            logger.debug(f"Skipping mention {file_path}")
            continue
        except OSError as e:
            logger.error(f"Failed to read {file_path}: {e}")
            continue
        blocks.append(SOURCE_BLOCK.format(path=file_path, content=text))

    composed = strip_mentions(content)
    if blocks:
        composed += "\n\n" + "".join(blocks)
    return composed, len(blocks)
