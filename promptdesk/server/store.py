"""JSON file persistence for projects, prompts, favorites and proxies.

The whole document is loaded at startup and rewritten on every change.
Writes go to a temporary file that replaces the data file, so a crash never
leaves a half-written document behind.
"""

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, TypeVar

import aiofiles
from loguru import logger

from .errors import InvalidInput, NotFound, Unavailable
from .models import (
    Favorite,
    FavoriteIn,
    FavoriteUpdate,
    Project,
    ProjectIn,
    ProxyConfig,
    ProxyIn,
    StoreData,
    new_id,
    utc_timestamp,
)

T = TypeVar("T", Project, Favorite, ProxyConfig)

MOVE_UP = "up"
MOVE_DOWN = "down"


def _index_of(items: Sequence[T], item_id: str, label: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise NotFound(f"{label} not found: {item_id}")


def _move(items: List[T], item_id: str, direction: str, label: str) -> None:
    index = _index_of(items, item_id, label)
    if direction == MOVE_UP:
        if index == 0:
            raise InvalidInput(f"{label} is already at the top")
        other = index - 1
    elif direction == MOVE_DOWN:
        if index == len(items) - 1:
            raise InvalidInput(f"{label} is already at the bottom")
        other = index + 1
    else:
        raise InvalidInput(f"unknown direction: {direction}")
    items[index], items[other] = items[other], items[index]


class JsonStore:
    """Load-all / save-all store backed by one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.data = StoreData()
        self._lock = asyncio.Lock()

    async def load(self) -> StoreData:
        """Read the data file, starting empty when it is missing."""
        if not self.path.exists():
            logger.info(f"No data file at {self.path}, starting empty")
            self.data = StoreData()
            return self.data

        try:
            async with aiofiles.open(self.path, 'r', encoding='utf-8') as f:
                raw = await f.read()
            self.data = StoreData.model_validate(json.loads(raw))
        except (OSError, ValueError) as e:
            backup = self.path.with_name(
                f"{self.path.name}.corrupt-{datetime.now():%Y%m%d%H%M%S}"
            )
            logger.error(f"Failed to load {self.path}: {e}; moving it to {backup}")
            os.replace(self.path, backup)
            self.data = StoreData()

        logger.info(
            f"Loaded {len(self.data.projects)} projects, "
            f"{len(self.data.favorites)} favorites, "
            f"{len(self.data.proxies)} proxies"
        )
        return self.data

    async def save(self) -> None:
        """Write the whole document atomically. Mutators call this under the store lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        payload = json.dumps(self.data.to_json(), indent=2, ensure_ascii=False)

        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(payload)
            await f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, self.path)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        return self.data.projects[_index_of(self.data.projects, project_id, "project")]

    async def add_project(self, body: ProjectIn) -> Project:
        project = Project(**body.model_dump())
        async with self._lock:
            self.data.projects.append(project)
            await self.save()
        return project

    async def update_project(self, project_id: str, body: ProjectIn) -> Project:
        async with self._lock:
            index = _index_of(self.data.projects, project_id, "project")
            project = Project(id=project_id, **body.model_dump())
            self.data.projects[index] = project
            await self.save()
        return project

    async def delete_project(self, project_id: str) -> None:
        async with self._lock:
            index = _index_of(self.data.projects, project_id, "project")
            del self.data.projects[index]
            self.data.prompts.pop(project_id, None)
            if self.data.active_project_id == project_id:
                self.data.active_project_id = None
            await self.save()

    async def move_project(self, project_id: str, direction: str) -> List[Project]:
        async with self._lock:
            _move(self.data.projects, project_id, direction, "project")
            await self.save()
        return self.data.projects

    async def set_active_project(self, project_id: str) -> None:
        async with self._lock:
            _index_of(self.data.projects, project_id, "project")
            self.data.active_project_id = project_id
            await self.save()

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def get_prompt(self, project_id: str) -> str:
        return self.data.prompts.get(project_id, "")

    async def set_prompt(self, project_id: str, prompt: str) -> None:
        async with self._lock:
            self.data.prompts[project_id] = prompt
            await self.save()

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def add_favorite(self, body: FavoriteIn) -> Favorite:
        favorite = Favorite(**body.model_dump())
        async with self._lock:
            self.data.favorites.append(favorite)
            await self.save()
        return favorite

    async def update_favorite(self, favorite_id: str, body: FavoriteUpdate) -> Favorite:
        async with self._lock:
            favorite = self.data.favorites[
                _index_of(self.data.favorites, favorite_id, "favorite")
            ]
            if body.name:
                favorite.name = body.name
            if body.description is not None:
                favorite.description = body.description
            favorite.updated_at = utc_timestamp()
            await self.save()
        return favorite

    async def delete_favorite(self, favorite_id: str) -> None:
        async with self._lock:
            del self.data.favorites[_index_of(self.data.favorites, favorite_id, "favorite")]
            await self.save()

    # ------------------------------------------------------------------
    # Proxies
    # ------------------------------------------------------------------

    def active_proxy(self) -> ProxyConfig:
        """The proxy the relay forwards to right now."""
        active_id = self.data.active_proxy_id
        if not active_id:
            raise Unavailable("no active proxy configured")
        for proxy in self.data.proxies:
            if proxy.id == active_id:
                return proxy
        raise Unavailable(f"active proxy {active_id} does not exist")

    def _has_valid_active_proxy(self) -> bool:
        return any(p.id == self.data.active_proxy_id for p in self.data.proxies)

    async def add_proxy(self, body: ProxyIn) -> ProxyConfig:
        proxy = ProxyConfig(**body.model_dump())
        async with self._lock:
            self.data.proxies.append(proxy)
            if not self._has_valid_active_proxy():
                self.data.active_proxy_id = proxy.id
            await self.save()
        return proxy

    async def update_proxy(self, proxy_id: str, body: ProxyIn) -> ProxyConfig:
        async with self._lock:
            index = _index_of(self.data.proxies, proxy_id, "proxy")
            proxy = ProxyConfig(id=proxy_id, **body.model_dump())
            self.data.proxies[index] = proxy
            await self.save()
        return proxy

    async def delete_proxy(self, proxy_id: str) -> None:
        async with self._lock:
            del self.data.proxies[_index_of(self.data.proxies, proxy_id, "proxy")]
            if self.data.active_proxy_id == proxy_id:
                self.data.active_proxy_id = None
            await self.save()

    async def activate_proxy(self, proxy_id: str) -> ProxyConfig:
        async with self._lock:
            proxy = self.data.proxies[_index_of(self.data.proxies, proxy_id, "proxy")]
            self.data.active_proxy_id = proxy_id
            await self.save()
        logger.info(f"Activated proxy {proxy.name}")
        return proxy

    async def move_proxy(self, proxy_id: str, direction: str) -> List[ProxyConfig]:
        async with self._lock:
            _move(self.data.proxies, proxy_id, direction, "proxy")
            await self.save()
        return self.data.proxies

    async def copy_proxy(self, proxy_id: str) -> ProxyConfig:
        async with self._lock:
            index = _index_of(self.data.proxies, proxy_id, "proxy")
            source = self.data.proxies[index]
            copy = source.model_copy(update={"id": new_id(), "name": f"{source.name} (copy)"})
            self.data.proxies.insert(index + 1, copy)
            await self.save()
        return copy
