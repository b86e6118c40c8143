"""Data models for promptdesk.

Persisted records and request bodies share one convention: Python attributes
are snake_case, the JSON store and the HTTP API use camelCase.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import ulid
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return str(ulid.ULID())


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Record(BaseModel):
    """Base for everything that crosses the JSON boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class Project(Record):
    id: str = Field(default_factory=new_id)
    name: str
    path: str
    include_full_path: bool = False
    exclude_patterns: List[str] = Field(default_factory=list)


class Favorite(Record):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    content: str
    project_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_timestamp)
    updated_at: Optional[str] = None


class ProxyConfig(Record):
    """An upstream the relay can forward to."""
    id: str = Field(default_factory=new_id)
    name: str
    base_url: str = Field(
        validation_alias=AliasChoices("baseUrl", "base_url", "url"),
        serialization_alias="baseUrl",
    )
    token: str


class StoreData(Record):
    projects: List[Project] = Field(default_factory=list)
    prompts: Dict[str, str] = Field(default_factory=dict)
    favorites: List[Favorite] = Field(default_factory=list)
    proxies: List[ProxyConfig] = Field(default_factory=list)
    active_proxy_id: Optional[str] = None
    active_project_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RequestBody(Record):
    """Incoming JSON bodies, validated before any handler logic runs."""


class ProjectIn(RequestBody):
    name: str = Field(min_length=1)
    path: str = Field(min_length=1)
    include_full_path: bool = False
    exclude_patterns: List[str] = Field(default_factory=list)


class PromptIn(RequestBody):
    prompt: str = ""


class CopyWithSourceIn(RequestBody):
    content: str = ""
    project_id: Optional[str] = None


class FavoriteIn(RequestBody):
    name: str = Field(min_length=1)
    description: str = ""
    content: str = Field(min_length=1)
    project_id: Optional[str] = None


class FavoriteUpdate(RequestBody):
    name: Optional[str] = None
    description: Optional[str] = None


class ProxyIn(RequestBody):
    name: str = Field(min_length=1)
    base_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("baseUrl", "base_url", "url"),
    )
    token: str = Field(min_length=1)
