"""
Build Cache - Caches built calc.js modules by input hash.

The cache:
- Uses a content hash of the input, the raw plan and the builder version as key
- Stores one JSON file per entry on local disk
- No database required
- Cache is the ONLY persistence in the system

Design decisions:
- Simple file-based storage
- Cache is optional (can always rebuild)
"""

from __future__ import annotations
import hashlib
import json
import logging
import shutil
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    A cached build entry.
    """
    cache_key: str
    input_hash: str
    builder_version: str
    result: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)

    # Cache metadata
    created_at: float = 0.0
    last_accessed: float = 0.0
    access_count: int = 0


def canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


class BuildCache:
    """
    File-based cache for built modules.

    Usage:
        cache = BuildCache(cache_dir="~/.calcplan/cache")

        result = cache.get(input_dict, plan_dict)
        if result:
            return result

        result = build(...)
        cache.put(input_dict, plan_dict, result)
    """

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        builder_version: str = "1.0.0",
    ):
        if cache_dir is None:
            cache_dir = Path.home() / ".calcplan" / "cache"
        self.cache_dir = Path(cache_dir).expanduser()
        self.builder_version = builder_version

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get(self, input: dict[str, Any], plan: dict[str, Any] | None) -> dict[str, Any] | None:
        """
        Get the cached build result.

        Returns None if not cached or the entry is unreadable.
        """
        cache_path = self._get_cache_path(self.make_key(input, plan))
        if not cache_path.exists():
            return None

        try:
            entry = self._load_entry(cache_path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("invalid cache entry %s removed: %s", cache_path.name, e)
            cache_path.unlink(missing_ok=True)
            return None

        if entry.builder_version != self.builder_version:
            return None
        entry.last_accessed = time.time()
        entry.access_count += 1
        self._save_entry(cache_path, entry)
        return entry.result

    def put(
        self,
        input: dict[str, Any],
        plan: dict[str, Any] | None,
        result: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ):
        """
        Cache a build result.
        """
        input_hash = self._hash_content(canonical_json(input))
        cache_key = self.make_key(input, plan)
        now = time.time()
        entry = CacheEntry(
            cache_key=cache_key,
            input_hash=input_hash,
            builder_version=self.builder_version,
            result=result,
            metadata=metadata or {},
            created_at=now,
            last_accessed=now,
            access_count=1,
        )
        self._save_entry(self._get_cache_path(cache_key), entry)

    def invalidate(self, input: dict[str, Any], plan: dict[str, Any] | None):
        self._get_cache_path(self.make_key(input, plan)).unlink(missing_ok=True)

    def clear(self):
        """
        Clear entire cache.
        """
        if self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def list_cached(self) -> list[str]:
        if not self.cache_dir.exists():
            return []
        return sorted(f.stem for f in self.cache_dir.glob("*.json"))

    def make_key(self, input: dict[str, Any], plan: dict[str, Any] | None) -> str:
        """
        Cache key from the input hash, the plan hash and the builder version.
        """
        input_hash = self._hash_content(canonical_json(input))
        plan_hash = self._hash_content(canonical_json(plan))[:8]
        version_hash = hashlib.sha256(self.builder_version.encode()).hexdigest()[:8]
        return f"{input_hash}_{plan_hash}_{version_hash}"

    def _hash_content(self, text: str) -> str:
        """
        SHA-256 truncated to 16 chars.
        """
        return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    def _get_cache_path(self, cache_key: str) -> Path:
        return self.cache_dir / f"{cache_key}.json"

    def _load_entry(self, path: Path) -> CacheEntry:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return CacheEntry(**data)

    def _save_entry(self, path: Path, entry: CacheEntry):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(entry), f, ensure_ascii=False, indent=2)
