"""
Cache Manager

Two-tier cache for venue data: a byte-bounded in-memory LRU tier in
front of a persistent key-value store. Entries carry TTLs per data
class, tags for bulk invalidation and access statistics used for
promotion from the cold tier.
"""
import asyncio
import hashlib
import json
import time
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
from loguru import logger

from venue_aggregator.data_providers.kv_store import KeyValueStore


@dataclass
class CacheConfig:
    """Cache configuration."""
    memory_budget_bytes: int = 100 * 1024 * 1024
    small_object_bytes: int = 10_000     # Below this, entries also go to memory
    promotion_threshold: int = 5         # Cold hits before promotion to memory

    # TTL in seconds per data class
    raw_response_ttl: int = 1800         # Provider responses: 30 minutes
    normalized_ttl: int = 3600           # Merged venues: 1 hour
    geo_query_ttl: int = 900             # Location queries: 15 minutes
    details_ttl: int = 3600              # Venue details: 1 hour

    # Key prefixes
    key_prefix: str = "cache_"
    index_key: str = "cache_index"

    # Health thresholds
    low_hit_rate: float = 0.3
    memory_warning_ratio: float = 0.9
    old_entry_hours: float = 24.0


class CachePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class CacheEntry:
    """Cached value with lifecycle metadata."""
    value: Any
    created_at: float
    ttl_seconds: float
    tags: frozenset = field(default_factory=frozenset)
    source: Optional[str] = None
    size_bytes: int = 0
    priority: CachePriority = CachePriority.NORMAL
    access_count: int = 0
    last_accessed: float = 0.0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "created_at": self.created_at,
            "ttl_seconds": self.ttl_seconds,
            "tags": sorted(self.tags),
            "source": self.source,
            "size_bytes": self.size_bytes,
            "priority": self.priority.value,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            value=data["value"],
            created_at=float(data["created_at"]),
            ttl_seconds=float(data["ttl_seconds"]),
            tags=frozenset(data.get("tags", ())),
            source=data.get("source"),
            size_bytes=int(data.get("size_bytes", 0)),
            priority=CachePriority(data.get("priority", CachePriority.NORMAL.value)),
            access_count=int(data.get("access_count", 0)),
            last_accessed=float(data.get("last_accessed", 0.0)),
        )

    def index_record(self) -> dict:
        return {
            "tags": sorted(self.tags),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "source": self.source,
            "size_bytes": self.size_bytes,
            "access_count": self.access_count,
        }


def _digest(data: Any) -> str:
    payload = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class CacheManager:
    """
    Two-tier cache manager for venue data.

    Features:
    - Memory tier bounded by a byte budget with LRU eviction
    - Write-through to the persistent store
    - Promotion of frequently read cold entries
    - Tag- and source-based invalidation
    - Hit-rate statistics and health diagnostics
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._store = store
        self._clock = clock
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory_bytes = 0
        self._index: dict[str, dict] = {}
        self._generations: defaultdict[str, int] = defaultdict(int)
        self._lock = asyncio.Lock()
        self.reset_stats()

    # ==================== Keys ====================

    @staticmethod
    def api_key(source: str, endpoint: str, params: Optional[dict] = None) -> str:
        """Key for a raw provider response."""
        return f"api_{source}_{endpoint.strip('/').replace('/', '_')}_{_digest(params or {})}"

    @staticmethod
    def query_key(fingerprint: dict) -> str:
        """Key for merged search results."""
        return f"venues_query_{_digest(fingerprint)}"

    @staticmethod
    def location_key(lat: float, lng: float, radius_meters: float, extra: Optional[dict] = None) -> str:
        """Key for geographic queries; ~100m coordinate and 1m radius granularity."""
        suffix = f"_{_digest(extra)}" if extra else ""
        return f"venues_location_{round(lat, 3):.3f}_{round(lng, 3):.3f}_{int(round(radius_meters))}{suffix}"

    @staticmethod
    def details_key(venue_id: str) -> str:
        return f"venue_details_{venue_id}"

    @staticmethod
    def venue_key(venue_id: str) -> str:
        return f"venue_{venue_id}"

    def _store_key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    # ==================== Read / Write ====================

    async def get(self, key: str) -> Optional[Any]:
        """Memory first, then persistent store. Returns None on miss or expiry."""
        now = self._clock()

        async with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if entry.is_expired(now):
                    self._drop_memory(key)
                    self._index.pop(key, None)
                    self._generations[key] += 1
                    await self._delete_persistent(key)
                    self._stats["expirations"] += 1
                    self._stats["misses"] += 1
                    return None
                entry.touch(now)
                self._memory.move_to_end(key)
                self._index_touch(key, entry)
                self._stats["hits"] += 1
                self._stats["memory_hits"] += 1
                logger.debug(f"Cache hit (memory): {key}")
                return entry.value
            generation = self._generations.get(key, 0)

        entry = await self._read_persistent(key)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug(f"Cache miss: {key}")
            return None

        async with self._lock:
            # A set or delete landed while the store read was in flight;
            # the copy read is superseded and must not be written back.
            superseded = self._generations.get(key, 0) != generation

            if entry.is_expired(now):
                if not superseded:
                    self._index.pop(key, None)
                    self._generations[key] += 1
                    await self._delete_persistent(key)
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return None

            entry.touch(now)
            if not superseded:
                self._index_touch(key, entry)
                if entry.access_count > self.config.promotion_threshold:
                    if self._put_memory(key, entry):
                        self._stats["promotions"] += 1
                        logger.debug(f"Promoted {key} to memory after {entry.access_count} reads")
                await self._write_persistent(key, entry)

        self._stats["hits"] += 1
        self._stats["persistent_hits"] += 1
        logger.debug(f"Cache hit (persistent): {key}")
        return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float,
        tags: tuple[str, ...] = (),
        priority: CachePriority = CachePriority.NORMAL,
        source: Optional[str] = None,
    ) -> bool:
        """
        Cache a JSON-serializable value.

        Always written to the persistent store; also kept in memory when
        priority is HIGH or the serialized size is below small_object_bytes.

        Raises:
            ValueError: ttl is not positive or value is not JSON-serializable
        """
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")

        try:
            payload = json.dumps(value, sort_keys=True)
        except TypeError as e:
            raise ValueError(f"Cache value for {key} is not JSON-serializable: {e}") from e
        now = self._clock()
        entry = CacheEntry(
            value=json.loads(payload),
            created_at=now,
            ttl_seconds=ttl,
            tags=frozenset(tags) | ({f"source:{source}"} if source else frozenset()),
            source=source,
            size_bytes=len(payload.encode("utf-8")),
            priority=priority,
            last_accessed=now,
        )

        async with self._lock:
            self._drop_memory(key)
            self._generations[key] += 1
            self._index[key] = entry.index_record()
            if priority == CachePriority.HIGH or entry.size_bytes < self.config.small_object_bytes:
                self._put_memory(key, entry)
            written = await self._write_persistent(key, entry)

        self._stats["sets"] += 1
        return written

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._drop_memory(key)
            self._index.pop(key, None)
            self._generations[key] += 1
            await self._delete_persistent(key)
        self._stats["deletes"] += 1

    # ==================== Invalidation ====================

    async def invalidate_by_tag(self, tag: str) -> int:
        """Remove every entry whose tag set contains tag."""
        async with self._lock:
            keys = [k for k, meta in self._index.items() if tag in meta.get("tags", ())]
            keys += [k for k, e in self._memory.items() if tag in e.tags and k not in keys]

        for key in keys:
            await self.delete(key)

        if keys:
            logger.info(f"Invalidated {len(keys)} cache entries tagged {tag}")
        return len(keys)

    async def invalidate_by_source(self, source: str) -> int:
        return await self.invalidate_by_tag(f"source:{source}")

    async def clear(self) -> int:
        """Remove every cache entry from both tiers."""
        try:
            stored = await self._store.list_keys(self.config.key_prefix)
        except Exception as e:
            logger.error(f"Cache store list error: {e}")
            stored = []

        async with self._lock:
            keys = set(self._index) | set(self._memory)
            self._memory.clear()
            self._memory_bytes = 0
            self._index.clear()

            prefix_len = len(self.config.key_prefix)
            keys |= {k[prefix_len:] for k in stored if k != self.config.index_key}
            for key in keys:
                self._generations[key] += 1
                await self._delete_persistent(key)
        logger.info(f"Cache cleared ({len(keys)} entries)")
        return len(keys)

    # ==================== Lifecycle ====================

    async def load_index(self) -> int:
        """Load the persisted index, rebuilding it from the store when absent."""
        try:
            raw = await self._store.get(self.config.index_key)
            if raw is not None:
                index = json.loads(raw)
            else:
                index = await self._rebuild_index()
        except Exception as e:
            logger.error(f"Failed to load cache index: {e}")
            return 0

        now = self._clock()
        async with self._lock:
            self._index = {k: v for k, v in index.items() if v.get("expires_at", 0) > now}
        logger.info(f"Cache index loaded with {len(self._index)} entries")
        return len(self._index)

    async def _rebuild_index(self) -> dict:
        index = {}
        prefix_len = len(self.config.key_prefix)
        for store_key in await self._store.list_keys(self.config.key_prefix):
            if store_key == self.config.index_key:
                continue
            key = store_key[prefix_len:]
            entry = await self._read_persistent(key)
            if entry is not None:
                index[key] = entry.index_record()
        return index

    async def warm_up(self, min_access_count: int = 10, tags: tuple[str, ...] = ("high_priority",)) -> int:
        """Load frequently accessed critical entries into memory."""
        candidates = [
            key for key, meta in self._index.items()
            if meta.get("access_count", 0) > min_access_count
            and set(tags) & set(meta.get("tags", ()))
            and key not in self._memory
        ]
        loaded = 0
        now = self._clock()
        for key in candidates:
            entry = await self._read_persistent(key)
            if entry is None or entry.is_expired(now):
                continue
            async with self._lock:
                if self._put_memory(key, entry):
                    loaded += 1
        if loaded:
            logger.info(f"Warmed {loaded} critical cache entries into memory")
        return loaded

    def stale_keys(self, fraction: float = 0.8) -> list[str]:
        """Keys past the given fraction of their TTL; candidates for refresh."""
        now = self._clock()
        stale = []
        for key, meta in self._index.items():
            created, expires = meta.get("created_at", 0), meta.get("expires_at", 0)
            if expires > now and now - created >= (expires - created) * fraction:
                stale.append(key)
        return stale

    async def flush(self) -> None:
        """Persist hot entries and the index; called on shutdown."""
        async with self._lock:
            hot = list(self._memory.items())
            index = dict(self._index)
        for key, entry in hot:
            await self._write_persistent(key, entry)
        try:
            await self._store.set(self.config.index_key, json.dumps(index).encode("utf-8"))
            logger.info(f"Cache flushed ({len(hot)} hot entries, {len(index)} indexed)")
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache index flush error: {e}")

    async def close(self) -> None:
        """Release the persistent store; call flush() first."""
        await self._store.close()

    # ==================== Internals ====================

    def _put_memory(self, key: str, entry: CacheEntry) -> bool:
        """Insert into the memory tier, evicting LRU entries to fit. Caller holds the lock."""
        budget = self.config.memory_budget_bytes
        if entry.size_bytes > budget:
            return False

        self._drop_memory(key)
        while self._memory and self._memory_bytes + entry.size_bytes > budget:
            evicted_key, evicted = self._memory.popitem(last=False)
            self._memory_bytes -= evicted.size_bytes
            self._stats["evictions"] += 1
            logger.debug(f"Evicted {evicted_key} from memory cache")

        self._memory[key] = entry
        self._memory_bytes += entry.size_bytes
        return True

    def _drop_memory(self, key: str) -> None:
        entry = self._memory.pop(key, None)
        if entry is not None:
            self._memory_bytes -= entry.size_bytes

    def _index_touch(self, key: str, entry: CacheEntry) -> None:
        meta = self._index.get(key)
        if meta is None:
            self._index[key] = entry.index_record()
        else:
            meta["access_count"] = entry.access_count

    async def _read_persistent(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._store.get(self._store_key(key))
            if raw is None:
                return None
            return CacheEntry.from_dict(json.loads(raw))
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def _write_persistent(self, key: str, entry: CacheEntry) -> bool:
        try:
            payload = json.dumps(entry.to_dict()).encode("utf-8")
            await self._store.set(self._store_key(key), payload)
            return True
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def _delete_persistent(self, key: str) -> None:
        try:
            await self._store.delete(self._store_key(key))
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Cache delete error for {key}: {e}")

    # ==================== Statistics ====================

    @property
    def hit_rate(self) -> float:
        total = self._stats["hits"] + self._stats["misses"]
        return self._stats["hits"] / total if total else 0.0

    @property
    def memory_bytes(self) -> int:
        return self._memory_bytes

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "total_requests": total,
            "hit_rate": round(self.hit_rate, 4),
            "memory_entries": len(self._memory),
            "memory_bytes": self._memory_bytes,
            "memory_budget_bytes": self.config.memory_budget_bytes,
            "indexed_entries": len(self._index),
        }

    def get_health(self) -> dict[str, Any]:
        """Diagnose hit rate, memory pressure and entry age."""
        issues = []
        total = self._stats["hits"] + self._stats["misses"]
        if total >= 10 and self.hit_rate < self.config.low_hit_rate:
            issues.append(f"Low hit rate: {self.hit_rate:.0%}")

        usage = self._memory_bytes / self.config.memory_budget_bytes
        if usage > self.config.memory_warning_ratio:
            issues.append(f"Memory usage high: {usage:.0%} of budget")

        if self._index:
            cutoff = self._clock() - self.config.old_entry_hours * 3600
            old = sum(1 for meta in self._index.values() if meta.get("created_at", 0) < cutoff)
            if old / len(self._index) > 0.5:
                issues.append(f"{old} of {len(self._index)} entries older than {self.config.old_entry_hours:.0f}h")

        if not issues:
            status = "healthy"
        elif len(issues) < 3:
            status = "warning"
        else:
            status = "critical"

        return {
            "status": status,
            "issues": issues,
            "hit_rate": round(self.hit_rate, 4),
            "memory_usage": round(usage, 4),
            "evictions": self._stats["evictions"],
        }

    def reset_stats(self) -> None:
        """Reset cache statistics."""
        self._stats = {
            "hits": 0,
            "misses": 0,
            "memory_hits": 0,
            "persistent_hits": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "promotions": 0,
            "expirations": 0,
            "errors": 0,
        }
