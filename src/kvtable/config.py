"""Configuration for kvtable."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError


@dataclass
class KvTableConfig:
    """Configuration for stores and models."""

    __pydantic_config__ = ConfigDict(extra="forbid")

    default_shard_count: int = 16
    default_bucket: str = "kvtable"
    memory_history: int = 1
    truncate_purge: bool = True
    watch_poll_interval_sec: float = 1.0
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_request_timeout_s: float = 10.0
    s3_max_attempts: int = 5


class ModelSpec(BaseModel):
    """A model declaration read from a config file."""

    model_config = ConfigDict(extra="forbid")

    name: str
    shard_count: Optional[int] = Field(default=None, ge=1)
    indexes: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("indexes", "attributes", mode="before")
    @classmethod
    def _null_is_empty(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "indexes" else {}
        return value


class _ConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storage_uri: Optional[str] = None
    config: KvTableConfig = Field(default_factory=KvTableConfig)
    models: list[ModelSpec] = Field(default_factory=list)


@dataclass
class LoadedConfig:
    """Result of loading a YAML config file."""

    storage_uri: str | None
    config: KvTableConfig
    models: list[ModelSpec] = field(default_factory=list)


def _describe(err: PydanticValidationError) -> str:
    parts = []
    for detail in err.errors():
        loc = "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in detail["loc"])
        loc = loc.lstrip(".")
        parts.append(f"{loc}: {detail['msg']}" if loc else detail["msg"])
    return "; ".join(parts)


def load_config_file(path: str) -> LoadedConfig:
    """Load storage URI, config overrides and model declarations from YAML.

    Raises ValueError when the file does not match the expected shape.

    Example::

        storage_uri: s3://my-bucket/app
        config:
          default_shard_count: 8
        models:
          - name: User
            indexes: [email]
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file '{path}' must contain a mapping at the top level")
    # Empty YAML sections (``models:``) load as None.
    raw = {key: value for key, value in raw.items() if value is not None}
    try:
        parsed = _ConfigFile.model_validate(raw)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid config file '{path}': {_describe(e)}") from None

    return LoadedConfig(
        storage_uri=parsed.storage_uri or None,
        config=parsed.config,
        models=list(parsed.models),
    )
