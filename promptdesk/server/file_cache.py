"""Per-project cache of scanned file lists."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from .metrics import MetricsCollector
from .models import Project
from .scanner import scan_project

Scanner = Callable[[Project, Sequence[str]], List[str]]


@dataclass
class FileSnapshot:
    """File list of one project as of one scan."""
    files: List[str]
    generation: int
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class FileListCache:
    """
    Maps project id to its latest file list snapshot.

    Each project has a generation counter, bumped by invalidate(). A scan
    that finishes after its project was invalidated is returned to its caller
    but not stored. Concurrent scans of one project are not deduplicated.
    """

    def __init__(
        self,
        static_excludes: Sequence[str] = (),
        metrics: Optional[MetricsCollector] = None,
        scanner: Scanner = scan_project
    ):
        self._static_excludes = list(static_excludes)
        self._metrics = metrics or MetricsCollector()
        self._scanner = scanner
        self._snapshots: Dict[str, FileSnapshot] = {}
        self._generations: Dict[str, int] = {}
        self._loading: Dict[str, int] = {}

    def get(self, project_id: str) -> Optional[FileSnapshot]:
        return self._snapshots.get(project_id)

    def is_loading(self, project_id: str) -> bool:
        return self._loading.get(project_id, 0) > 0

    def generation(self, project_id: str) -> int:
        return self._generations.get(project_id, 0)

    async def load(self, project: Project) -> FileSnapshot:
        """Scan the project in a worker thread and cache the result."""
        generation = self.generation(project.id)
        self._loading[project.id] = self._loading.get(project.id, 0) + 1

        try:
            with self._metrics.timer("files.scan") as timer:
                files = await asyncio.to_thread(
                    self._scanner, project, self._static_excludes
                )
        finally:
            self._loading[project.id] -= 1
            if self._loading[project.id] <= 0:
                del self._loading[project.id]

        self._metrics.increment_counter("files.scan")
        snapshot = FileSnapshot(files=files, generation=generation)

        if self.generation(project.id) == generation:
            self._snapshots[project.id] = snapshot
            logger.info(
                f"Scanned {len(files)} files for project {project.name} "
                f"in {timer.elapsed_ms:.0f}ms"
            )
        else:
            logger.debug(f"Discarding stale scan of project {project.id}")

        return snapshot

    async def get_or_load(self, project: Project) -> FileSnapshot:
        snapshot = self.get(project.id)
        if snapshot is None:
            logger.info(f"No cached file list for project {project.name}, scanning...")
            snapshot = await self.load(project)
        return snapshot

    def invalidate(self, project_id: str) -> None:
        self._snapshots.pop(project_id, None)
        self._generations[project_id] = self.generation(project_id) + 1

    def stats(self) -> Dict:
        return {
            "projects": len(self._snapshots),
            "files": sum(len(s.files) for s in self._snapshots.values()),
            "loading": sorted(self._loading),
        }
