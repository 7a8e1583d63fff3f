"""
zai-cli Response Cache - avoid repeat calls for identical requests.

Caches normalized capability results keyed by capability id + arguments.
Stored as YAML under the configured cache directory (~/.zai/cache/ by default).
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from zaicli.mcp.schema import CapabilityRequest, NormalizedResult

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Filesystem-based cache for capability results.

    Cache structure:
    - responses/   - one YAML file per cached request
    - meta.yaml    - hit/set counters

    Results with ``is_error`` set are never stored.
    """

    def __init__(self, cache_dir: Path, ttl_hours: int = 24):
        self.cache_dir = Path(cache_dir)
        self.responses_dir = self.cache_dir / "responses"
        self.responses_dir.mkdir(parents=True, exist_ok=True)
        self.ttl = timedelta(hours=ttl_hours)

    @staticmethod
    def key_for(request: CapabilityRequest) -> str:
        """Stable key: the request id is excluded, argument order is not significant."""
        raw = json.dumps(
            {"capability": request.capability_id, "arguments": request.arguments},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(raw.encode()).hexdigest()[:24]

    def get(self, request: CapabilityRequest) -> Optional[NormalizedResult]:
        """
        Get the cached result for a request.

        Returns None if not cached or expired. Unreadable entries are
        removed and count as a miss.
        """
        cache_file = self.responses_dir / f"{self.key_for(request)}.yaml"
        if not cache_file.exists():
            return None

        try:
            with open(cache_file) as f:
                data = yaml.safe_load(f)
            cached_at = datetime.fromisoformat(data["cached_at"])
            expired = datetime.now(timezone.utc) - cached_at > self.ttl
            result = NormalizedResult.model_validate(data["result"])
        except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.debug("dropping unreadable cache entry %s: %s", cache_file.name, e)
            cache_file.unlink(missing_ok=True)
            return None

        if expired:
            cache_file.unlink()
            return None

        self._bump("hits")
        logger.debug("cache hit for %s (%s)", request.capability_id, cache_file.name)
        return result

    def set(self, request: CapabilityRequest, result: NormalizedResult) -> None:
        """Cache a result."""
        if result.is_error:
            return

        cache_file = self.responses_dir / f"{self.key_for(request)}.yaml"
        data = {
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "capability": request.capability_id,
            "result": result.model_dump(by_alias=True),
        }

        with open(cache_file, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)

        self._bump("sets")

    def clear(self, older_than_hours: Optional[int] = None) -> int:
        """
        Clear cache entries.

        Args:
            older_than_hours: Only clear entries older than this.
                            If None, clear all.

        Returns:
            Number of entries cleared.
        """
        cleared = 0
        cutoff = None
        if older_than_hours:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)

        for cache_file in self.responses_dir.glob("*.yaml"):
            should_clear = True

            if cutoff:
                try:
                    with open(cache_file) as f:
                        data = yaml.safe_load(f)
                    should_clear = datetime.fromisoformat(data["cached_at"]) < cutoff
                except (yaml.YAMLError, KeyError, TypeError, ValueError):
                    should_clear = True  # unreadable entries always go

            if should_clear:
                cache_file.unlink()
                cleared += 1

        return cleared

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        meta = self._load_meta()
        entries = list(self.responses_dir.glob("*.yaml"))
        total_size = sum(f.stat().st_size for f in entries)

        return {
            "entries": len(entries),
            "total_size_kb": round(total_size / 1024, 1),
            "hits": meta.get("hits", 0),
            "sets": meta.get("sets", 0),
        }

    def _bump(self, counter: str) -> None:
        meta = self._load_meta()
        meta[counter] = meta.get(counter, 0) + 1
        self._save_meta(meta)

    def _load_meta(self) -> Dict[str, Any]:
        """Load cache metadata."""
        meta_file = self.cache_dir / "meta.yaml"
        if meta_file.exists():
            with open(meta_file) as f:
                return yaml.safe_load(f) or {}
        return {}

    def _save_meta(self, meta: Dict[str, Any]) -> None:
        """Save cache metadata."""
        meta_file = self.cache_dir / "meta.yaml"
        with open(meta_file, "w") as f:
            yaml.dump(meta, f, default_flow_style=False)
