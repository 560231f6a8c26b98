"""
Query service owning the index lifecycle.

The service holds one immutable :class:`IndexState` (snapshots plus the
cluster index built from them). Readers grab the current reference once per
call and never see a partially built state: a new state is published by a
single attribute assignment after it is fully built.

Lifecycle:
- first use (or :meth:`MapQueryService.warm` at startup) builds the state
  under a lock; later calls reuse it
- a failed build is re-attempted from a fresh snapshot, but not more often
  than once per ``rebuild_cooldown_sec``
- :meth:`MapQueryService.reload` rebuilds on a background worker while
  queries keep using the previous state
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cachetools import LRUCache

from src.errors import IndexUnavailable, MapServiceError
from src.search.ranker import Catalog, SearchConfig, SearchResultEntry, normalize_query, search
from src.spatial.cluster_index import ClusterIndex, ClusterIndexConfig, ClusterNode
from src.store.loader import PointStore, store_from_config
from src.store.points import Point, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexState:
    """Everything a reader needs, published as one unit."""

    generation: int
    entities: Snapshot
    places: Optional[Snapshot]
    index: ClusterIndex
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ClusterPage:
    index_version: int
    nodes: List[ClusterNode]


@dataclass(frozen=True)
class LeafPage:
    index_version: int
    points: List[Point]


class MapQueryService:
    """Build-once, read-many façade over the cluster index and ranker."""

    def __init__(
        self,
        entity_store: PointStore,
        place_store: Optional[PointStore] = None,
        *,
        index_config: Optional[ClusterIndexConfig] = None,
        search_config: Optional[SearchConfig] = None,
        rebuild_cooldown_sec: float = 5.0,
        search_cache_size: int = 1024,
    ):
        self.entity_store = entity_store
        self.place_store = place_store
        self.index_config = index_config or ClusterIndexConfig()
        self.search_config = search_config or SearchConfig()
        self.rebuild_cooldown_sec = rebuild_cooldown_sec

        self._state: Optional[IndexState] = None
        self._generation = 0
        self._build_lock = threading.Lock()
        self._last_error: Optional[Exception] = None
        self._last_failure_at: Optional[float] = None

        self._search_cache: LRUCache = LRUCache(maxsize=max(1, search_cache_size))
        self._cache_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="index-reload")
        self._reload_lock = threading.Lock()
        self._pending_reload: Optional[Future] = None

    @classmethod
    def from_settings(cls, settings) -> "MapQueryService":
        """Create a service from :class:`~src.tools.config_loader.ServiceSettings`."""
        return cls(
            store_from_config(settings.entities),
            store_from_config(settings.places) if settings.places else None,
            index_config=settings.index,
            search_config=settings.search,
            rebuild_cooldown_sec=settings.rebuild_cooldown_sec,
            search_cache_size=settings.search_cache_size,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def _build_state(self) -> IndexState:
        entities = self.entity_store.load()
        places = self.place_store.load() if self.place_store is not None else None
        index = ClusterIndex.build(entities, self.index_config)
        self._generation += 1
        return IndexState(
            generation=self._generation,
            entities=entities,
            places=places,
            index=index,
        )

    def _rebuild_locked(self) -> IndexState:
        """Build and publish a new state. Caller holds ``_build_lock``."""
        try:
            state = self._build_state()
        except MapServiceError as exc:
            self._record_failure(exc)
            raise
        except Exception as exc:
            wrapped = IndexUnavailable(f"Index build failed: {exc}")
            self._record_failure(wrapped)
            raise wrapped from exc

        self._state = state
        self._last_error = None
        self._last_failure_at = None
        with self._cache_lock:
            self._search_cache.clear()

        logger.info(
            "Published index generation %d (build #%d, %d entities, %s places)",
            state.generation,
            state.index.build_id,
            len(state.entities),
            len(state.places) if state.places is not None else "no",
        )
        return state

    def _record_failure(self, exc: Exception) -> None:
        self._last_error = exc
        self._last_failure_at = time.monotonic()
        logger.exception("Index build failed: %s", exc)

    def _in_cooldown(self) -> bool:
        if self._last_failure_at is None:
            return False
        return time.monotonic() - self._last_failure_at < self.rebuild_cooldown_sec

    def state(self) -> IndexState:
        """Current state, building it on first use."""
        state = self._state
        if state is not None:
            return state

        with self._build_lock:
            if self._state is not None:
                return self._state
            if self._in_cooldown():
                cause = self._last_error
                raise IndexUnavailable(
                    f"Index is unavailable; last build failed: {cause}"
                ) from cause
            return self._rebuild_locked()

    def warm(self) -> bool:
        """Build at startup. Failures are logged, not raised."""
        try:
            self.state()
        except Exception as exc:
            logger.warning("Startup index build failed, will retry on demand: %s", exc)
            return False
        return True

    def reload(self, wait: bool = False) -> "Future[IndexState]":
        """Rebuild from fresh snapshots on the background worker.

        Requests arriving while a rebuild is queued or running share it.

        With ``wait`` the call blocks until the new state is published and
        re-raises a build failure.
        """
        with self._reload_lock:
            future = self._pending_reload
            if future is None or future.done():
                future = self._executor.submit(self._reload_job)
                self._pending_reload = future
            else:
                logger.info("Reload already pending; joining it")
        if wait:
            future.result()
        return future

    def _reload_job(self) -> IndexState:
        with self._build_lock:
            previous = self._state
            try:
                return self._rebuild_locked()
            except Exception:
                if previous is not None:
                    logger.warning("Reload failed; still serving generation %d", previous.generation)
                raise

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # -----------------------------
    # Queries
    # -----------------------------

    def clusters(self, bbox: Sequence[float], zoom) -> ClusterPage:
        index = self.state().index
        return ClusterPage(index_version=index.build_id, nodes=index.query(bbox, zoom))

    def expand(self, cluster_id, limit: Optional[int] = None, offset: int = 0) -> LeafPage:
        index = self.state().index
        return LeafPage(
            index_version=index.build_id,
            points=index.expand(cluster_id, limit=limit, offset=offset),
        )

    def children(self, cluster_id) -> ClusterPage:
        index = self.state().index
        return ClusterPage(index_version=index.build_id, nodes=index.children(cluster_id))

    def expansion_zoom(self, cluster_id) -> Tuple[int, int]:
        """Return ``(index_version, zoom)``."""
        index = self.state().index
        return index.build_id, index.expansion_zoom(cluster_id)

    def _catalogs(self, state: IndexState) -> List[Catalog]:
        catalogs = []
        if state.places is not None:
            catalogs.append(Catalog(state.places.category, state.places, self.search_config.place_cap))
        catalogs.append(Catalog(state.entities.category, state.entities, self.search_config.entity_cap))
        return catalogs

    def search(self, query: Optional[str]) -> List[SearchResultEntry]:
        term = normalize_query(query)
        state = self.state()
        key = (state.generation, term)

        with self._cache_lock:
            cached = self._search_cache.get(key)
        if cached is not None:
            return list(cached)

        results = search(term, self._catalogs(state), max_results=self.search_config.max_results)
        with self._cache_lock:
            self._search_cache[key] = tuple(results)
        return results

    def status(self) -> Dict[str, Any]:
        """Health summary. Never triggers a build."""
        state = self._state
        last_error = None
        if self._last_error is not None:
            last_error = {
                "code": getattr(self._last_error, "code", "internal_error"),
                "message": str(self._last_error),
            }
        if state is None:
            return {"status": "unavailable", "generation": None, "last_error": last_error}

        return {
            "status": "ok",
            "generation": state.generation,
            "index_version": state.index.build_id,
            "entities": len(state.entities),
            "places": len(state.places) if state.places is not None else 0,
            "clusters": state.index.cluster_count,
            "index": state.index.stats(),
            "built_at": state.built_at.isoformat(),
            "last_error": last_error,
        }


__all__ = [
    "ClusterPage",
    "IndexState",
    "LeafPage",
    "MapQueryService",
]
