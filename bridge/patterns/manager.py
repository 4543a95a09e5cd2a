"""
Pattern Manager

Owns the current theme tree and quality clusters, persists them to
~/.bridge/patterns.json and serializes every writer behind one lock.

Workflow:
1. New record ids arrive (update) or a full pass is requested (rediscover)
2. Missing embeddings are generated through the gateway, one record at a time
3. The incremental engine or batch discovery produces the next snapshot
4. The snapshot replaces the current one and is written to disk
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.config import PatternConfig
from ..common.embedding_service import EmbeddingGateway
from ..common.errors import BridgeError, ValidationError
from ..common.schemas import EmbeddingRecord, ExperienceRecord
from ..common.store import RecordStore
from .discovery import DiscoveryResult, PatternDiscovery
from .engine import PatternEngine
from .models import PatternTree, QualityPattern, UpdateResult

logger = logging.getLogger("bridge.patterns.manager")


class PatternManager:
    """
    Serialized access to the pattern snapshot.

    Usage:
        manager = PatternManager(store, gateway)
        result = await manager.update(["exp_1", "exp_2"])
        discovery = await manager.rediscover()
    """

    def __init__(
        self,
        store: RecordStore,
        gateway: Optional[EmbeddingGateway] = None,
        config: Optional[PatternConfig] = None,
        engine: Optional[PatternEngine] = None,
        discovery: Optional[PatternDiscovery] = None,
        cache_path: Optional[Path] = None,
    ):
        """
        Initialize the manager and load the cached snapshot.

        Args:
            store: Record store
            gateway: Embedding gateway for records that lack a vector
            config: Pattern thresholds and cache location
            engine: Incremental engine (default: built from config)
            discovery: Batch discovery (default: built from config)
            cache_path: Snapshot file (default: config.cache_path)
        """
        self.config = config or PatternConfig()
        self._store = store
        self._gateway = gateway
        self._engine = engine or PatternEngine(self.config)
        self._discovery = discovery or PatternDiscovery(self.config)
        self._cache_path = Path(cache_path or self.config.cache_path)
        self._lock = asyncio.Lock()

        self._tree = PatternTree()
        self._clusters: List[QualityPattern] = []
        self._outliers: List[str] = []
        self._updated_at: Optional[str] = None
        self._load_cache()

    @property
    def tree(self) -> PatternTree:
        return self._tree

    @property
    def clusters(self) -> List[QualityPattern]:
        return self._clusters

    @property
    def outliers(self) -> List[str]:
        return self._outliers

    # ---------- Persistence ---------- #

    def _load_cache(self) -> None:
        """Load the snapshot from disk"""
        if not self._cache_path.exists():
            return

        try:
            with open(self._cache_path) as f:
                data = json.load(f)

            self._tree = PatternTree.from_dict(data.get("tree", {}))
            self._clusters = [QualityPattern.from_dict(c) for c in data.get("clusters", [])]
            self._outliers = list(data.get("outliers", []))
            self._updated_at = data.get("updated_at")
        except (json.JSONDecodeError, IOError, KeyError, ValueError) as e:
            logger.warning("Failed to load pattern cache %s: %s", self._cache_path, e)
            self._tree = PatternTree()
            self._clusters = []
            self._outliers = []

    def _save_cache(self) -> None:
        """Save the snapshot to disk"""
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._updated_at = datetime.now(timezone.utc).isoformat()

        data = {
            "updated_at": self._updated_at,
            "tree": self._tree.to_dict(),
            "clusters": [c.to_dict() for c in self._clusters],
            "outliers": self._outliers,
        }

        with open(self._cache_path, "w") as f:
            json.dump(data, f, indent=2, default=str)

    # ---------- Embeddings ---------- #

    async def _embedding_enabled(self) -> bool:
        if self._gateway is None:
            return False
        await self._gateway.initialize()
        return self._gateway.provider.name != "none"

    async def ensure_embeddings(
        self,
        records: Sequence[ExperienceRecord],
    ) -> Tuple[List[ExperienceRecord], List[str]]:
        """
        Embed records that have no vector yet and persist the vectors.

        A failure leaves that record without an embedding and does not
        stop the batch.

        Returns:
            (records with embeddings filled in where possible, ids that failed)
        """
        if not await self._embedding_enabled():
            return list(records), []

        updated: List[ExperienceRecord] = []
        failed: List[str] = []
        for record in records:
            if record.embedding:
                updated.append(record)
                continue
            try:
                vector = await self._gateway.generate_embedding(record.text)
            except BridgeError as e:
                logger.warning("Embedding failed for %s: %s", record.id, e)
                failed.append(record.id)
                updated.append(record)
                continue

            self._store.save_embedding(EmbeddingRecord(
                source_id=record.id,
                vector=vector,
                generated=datetime.now(timezone.utc),
            ))
            updated.append(record.model_copy(update={"embedding": vector}))
        return updated, failed

    # ---------- Operations ---------- #

    async def update(self, record_ids: Sequence[str]) -> UpdateResult:
        """
        Fold the given records into the current snapshot.

        Args:
            record_ids: Ids of new or changed records

        Returns:
            UpdateResult from the incremental engine

        Raises:
            ValidationError: no ids given
        """
        ids = list(dict.fromkeys(i for i in record_ids if i))
        if not ids:
            raise ValidationError("record_ids must contain at least one id")

        async with self._lock:
            all_records = self._store.get_all_records()
            by_id = {r.id: r for r in all_records}

            missing = [i for i in ids if i not in by_id]
            for record_id in missing:
                logger.warning("Pattern update skipped unknown record %s", record_id)

            new_records, failed = await self.ensure_embeddings([by_id[i] for i in ids if i in by_id])
            for record in new_records:
                by_id[record.id] = record

            result = self._engine.update_patterns(
                new_records, self._tree, self._clusters, list(by_id.values())
            )
            result.stats.records_failed += len(failed) + len(missing)

            self._tree = result.updated_tree
            self._clusters = result.updated_clusters
            self._save_cache()

            if result.rediscovery_recommended and self.config.auto_rediscover:
                logger.info("Running automatic rediscovery")
                await self._rediscover_locked()

        logger.info(
            "Pattern update: %d processed, %d failed, %d patterns affected",
            result.stats.records_processed, result.stats.records_failed, result.stats.patterns_affected,
        )
        return result

    async def rediscover(self) -> DiscoveryResult:
        """Rebuild the tree and clusters from the whole store"""
        async with self._lock:
            return await self._rediscover_locked()

    async def _rediscover_locked(self) -> DiscoveryResult:
        records, failed = await self.ensure_embeddings(self._store.get_all_records())
        result = self._discovery.discover(records)
        result.stats["embedding_failures"] = len(failed)

        self._tree = result.tree
        self._clusters = result.clusters
        self._outliers = result.outliers
        self._save_cache()
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "patterns": len(self._tree),
            "root_patterns": len(self._tree.root_ids),
            "quality_clusters": len(self._clusters),
            "outliers": len(self._outliers),
            "updated_at": self._updated_at,
            "cache_path": str(self._cache_path),
        }
