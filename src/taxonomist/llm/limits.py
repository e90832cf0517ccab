"""Model context/output limits, looked up from a models.dev-style catalog.

The catalog is loaded once per lookup object: from the on-disk cache when
present, otherwise from the network (and then written to the cache). Any
failure falls back to the configured default limits.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.request import urlopen

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger("taxonomist.limits")

Fetcher = Callable[[str], Any]


class ModelLimits(BaseModel):
    """Advertised limits of one model, in tokens."""

    model_config = ConfigDict(frozen=True)

    context: int
    output: int


class _CatalogLimit(BaseModel):
    context: int | None = None
    output: int | None = None


class _CatalogModel(BaseModel):
    id: str
    limit: _CatalogLimit | None = None


class _CatalogProvider(BaseModel):
    id: str
    models: dict[str, _CatalogModel] = Field(default_factory=dict)


_CATALOG = TypeAdapter(dict[str, _CatalogProvider])


def fetch_json(url: str, timeout: float = 10.0) -> Any:
    """Download and decode a JSON document."""
    with urlopen(url, timeout=timeout) as response:
        return json.loads(response.read().decode("utf-8"))


class ModelLimitsLookup:
    """Cached ``model id -> ModelLimits`` lookup with default fallback."""

    def __init__(
        self,
        default_context: int = 128_000,
        default_output: int = 8192,
        url: str = "https://models.dev/api.json",
        cache_path: Path | None = None,
        fetcher: Fetcher | None = None,
        table: dict[str, ModelLimits] | None = None,
    ) -> None:
        self.defaults = ModelLimits(context=default_context, output=default_output)
        self.url = url
        self.cache_path = cache_path
        self._fetcher = fetcher or fetch_json
        # A fixed table (tests, offline runs) survives invalidation
        self._static = dict(table) if table is not None else None
        self._table: dict[str, ModelLimits] | None = self._static

    def limits_for(self, model_id: str) -> ModelLimits:
        """Return the limits for ``model_id``, or the defaults if unknown."""
        table = self._ensure_loaded()
        if model_id in table:
            return table[model_id]
        # "openai/gpt-4o" style ids are also tried by their bare model name
        bare = model_id.rsplit("/", 1)[-1]
        return table.get(bare, self.defaults)

    def invalidate(self) -> None:
        """Drop the in-memory catalog; the next lookup reloads it."""
        self._table = dict(self._static) if self._static is not None else None

    def _ensure_loaded(self) -> dict[str, ModelLimits]:
        if self._table is not None:
            return self._table

        payload = self._read_cache()
        if payload is None:
            try:
                payload = self._fetcher(self.url)
                self._table = self._parse(payload)
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(f"Failed to load model limits from {self.url}: {e}")
                self._table = {}
                return self._table
            self._write_cache(payload)
            return self._table

        self._table = self._parse(payload)
        return self._table

    def _read_cache(self) -> Any | None:
        if self.cache_path is None or not self.cache_path.exists():
            return None
        try:
            payload = json.loads(self.cache_path.read_text())
            _CATALOG.validate_python(payload)
        except (OSError, ValueError, ValidationError):
            logger.debug(f"Ignoring unreadable model cache at {self.cache_path}")
            return None
        return payload

    def _write_cache(self, payload: Any) -> None:
        if self.cache_path is None:
            return
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(payload, indent=2))
        except OSError as e:
            logger.warning(f"Could not write model cache {self.cache_path}: {e}")

    def _parse(self, payload: Any) -> dict[str, ModelLimits]:
        catalog = _CATALOG.validate_python(payload)
        table: dict[str, ModelLimits] = {}
        for provider in catalog.values():
            for model_id, model in provider.models.items():
                limit = model.limit or _CatalogLimit()
                limits = ModelLimits(
                    context=limit.context or self.defaults.context,
                    output=limit.output or self.defaults.output,
                )
                table[model_id] = limits
                table[f"{provider.id}/{model_id}"] = limits
        return table
