#!/usr/bin/env python3
"""
Re-embedding Script

Regenerates embeddings for stored experiences with the configured backend.
Run this after switching embedding provider or model: vectors of different
widths are never compared, so old vectors silently drop out of semantic search.

Usage:
    python scripts/rebuild_embeddings.py [--dry-run] [--missing-only] [--batch-size 50]
"""

import sys
import asyncio
import argparse
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


async def rebuild(args) -> int:
    from bridge.common.config import load_config
    from bridge.common.embedding_service import EmbeddingGateway
    from bridge.common.store import JsonRecordStore

    config = load_config()
    if args.provider:
        config.embedding.provider = args.provider

    store = JsonRecordStore(Path(args.data_file or config.storage.data_file).expanduser())
    gateway = EmbeddingGateway.from_config(config)
    try:
        return await _embed_records(args, store, gateway)
    finally:
        await gateway.close()


async def _embed_records(args, store, gateway) -> int:
    from bridge.common.errors import BridgeError
    from bridge.common.schemas import EmbeddingRecord

    print("[Rebuild] Initializing embedding gateway...")
    await gateway.initialize()
    print(f"[Rebuild] Provider: {gateway.provider.name} ({gateway.get_dimensions()} dims)")

    if gateway.provider.name == "none":
        print("[Rebuild] ERROR: No embedding backend available")
        return 1

    records = store.get_all_records()
    if args.missing_only:
        records = [r for r in records if not r.embedding]

    total = len(records)
    print(f"[Rebuild] Found {total} records to embed")

    if args.dry_run:
        print("[Rebuild] DRY RUN - no changes will be made")
        print(f"[Rebuild] Would re-embed {total} records in {store.path}")
        return 0

    if total == 0:
        print("[Rebuild] Nothing to do")
        return 0

    rebuilt = 0
    errors = 0
    for i in range(0, total, args.batch_size):
        batch = records[i:i + args.batch_size]
        print(f"[Rebuild] Batch {i // args.batch_size + 1} ({len(batch)} records)...")

        for record in batch:
            try:
                vector = await gateway.generate_embedding(record.text)
            except BridgeError as e:
                print(f"[Rebuild] WARNING: Failed to embed {record.id}: {e}")
                errors += 1
                continue
            store.save_embedding(EmbeddingRecord(
                source_id=record.id,
                vector=vector,
                generated=datetime.now(timezone.utc),
            ))
            rebuilt += 1

    print(f"[Rebuild] Complete: {rebuilt} embedded, {errors} errors, {total} total")
    return 0 if errors == 0 else 2


def main():
    parser = argparse.ArgumentParser(description="Regenerate experience embeddings")
    parser.add_argument("--dry-run", action="store_true", help="Print what would be done without executing")
    parser.add_argument("--missing-only", action="store_true", help="Only embed records without a vector")
    parser.add_argument("--batch-size", type=int, default=50, help="Number of records to process per batch")
    parser.add_argument("--provider", type=str, default=None, help="Override the configured embedding provider")
    parser.add_argument("--data-file", type=str, default=None, help="Experience store JSON file")
    args = parser.parse_args()

    sys.exit(asyncio.run(rebuild(args)))


if __name__ == "__main__":
    main()
