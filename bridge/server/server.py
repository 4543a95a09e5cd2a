"""
Bridge MCP Server

Transport: stdio only.

Expected MCP Tool Return Format:
{
    "ok": bool,
    ...                      # tool-specific payload
}

Invalid arguments raise ToolError; backend trouble during recall is reported
inside the response's debug block instead.
"""

import argparse
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncIterator, Dict, List, Optional, Union

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import Field

from ..common.config import BridgeConfig, load_config
from ..common.embedding_service import EmbeddingGateway
from ..common.errors import ValidationError
from ..common.store import JsonRecordStore, RecordStore
from ..patterns.manager import PatternManager
from ..retriever.recall import RecallService
from ..retriever.scoring import ScoringWeights, UnifiedScorer

logger = logging.getLogger("bridge.server")


class BridgeServerApp:
    """
    Main application class for the MCP server.

    Tools:
    - recall: filtered, scored retrieval over experiences
    - update_patterns: fold records into the pattern snapshot
    - discover_patterns: full pattern rediscovery
    - embedding_status: backend and circuit breaker state
    """

    def __init__(
            self,
            store: RecordStore,
            recall_service: RecallService,
            pattern_manager: PatternManager,
            gateway: Optional[EmbeddingGateway] = None,
            mcp_server_name: str = "bridge",
        ) -> None:
        """
        Initializes the BridgeServerApp.

        Args:
            store (RecordStore): Experience record store.
            recall_service (RecallService): Retrieval pipeline.
            pattern_manager (PatternManager): Pattern snapshot owner.
            gateway (EmbeddingGateway): Embedding gateway, if semantic features are enabled.
            mcp_server_name (str): The name of the MCP server.
        """
        self.store = store
        self.recall_service = recall_service
        self.patterns = pattern_manager
        self.gateway = gateway
        # mcp
        self.mcp = FastMCP(name=mcp_server_name, lifespan=self.lifespan)

        # ---------- MCP Tools: Recall ---------- #
        @self.mcp.tool(
            name="recall",
            description=(
                "Recall experiences by text, meaning, metadata and quality evidence. "
                "Results carry a relevance score with a per-signal breakdown. "
                "Without any query or filter, the most recent experiences are returned."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_recall(
            query: Annotated[Optional[str], Field(description="free-text query")] = None,
            semantic_query: Annotated[Optional[str], Field(
                description="text to search by meaning (defaults to query)"
            )] = None,
            semantic_threshold: Annotated[Optional[float], Field(
                description="minimum cosine similarity for the semantic signal (0-1)"
            )] = None,
            qualities: Annotated[Optional[Dict[str, Any]], Field(
                description=(
                    "quality filter, e.g. {'affective': {'min': 0.6}} or "
                    "{'$or': [{'embodied': {'present': true}}, {'spatial': {'manifestation': 'kitchen'}}]}"
                )
            )] = None,
            who: Annotated[Optional[str], Field(description="experiencer name")] = None,
            perspective: Annotated[Optional[str], Field(description="perspective filter")] = None,
            processing: Annotated[Optional[str], Field(description="processing filter")] = None,
            crafted: Annotated[Optional[bool], Field(description="crafted filter")] = None,
            created: Annotated[Optional[Union[str, Dict[str, str]]], Field(
                description="ISO date (one day) or {'start': ..., 'end': ...}"
            )] = None,
            id: Annotated[Optional[str], Field(description="exact experience id")] = None,
            sort: Annotated[str, Field(description="'relevance' or 'created'")] = "created",
            group_by: Annotated[str, Field(description="'similarity', 'dimension' or 'none'")] = "none",
            limit: Annotated[Optional[int], Field(description="page size (1-100, default from config)")] = None,
            offset: Annotated[int, Field(description="results to skip")] = 0,
        ) -> Dict[str, Any]:
            """
            MCP tool to run a recall request.

            Returns:
                Dict[str, Any]: RecallResponse as JSON plus "ok".
            """
            request = {
                "query": query,
                "semantic_query": semantic_query,
                "semantic_threshold": semantic_threshold,
                "qualities": qualities,
                "who": who,
                "perspective": perspective,
                "processing": processing,
                "crafted": crafted,
                "created": created,
                "id": id,
                "sort": sort,
                "group_by": group_by,
                "limit": limit,
                "offset": offset,
            }
            request = {k: v for k, v in request.items() if v is not None}
            try:
                response = await self.recall_service.recall(request)
            except ValidationError as exc:
                raise ToolError(f"Invalid recall request: {exc}") from exc
            return {"ok": True, **response.model_dump(mode="json")}

        # ---------- MCP Tools: Update Patterns ---------- #
        @self.mcp.tool(
            name="update_patterns",
            description=(
                "Assign new or changed experiences to existing patterns and quality clusters. "
                "Reports split/merge candidates; structure only changes through discover_patterns."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_update_patterns(
            record_ids: Annotated[List[str], Field(description="ids of experiences to fold in")],
        ) -> Dict[str, Any]:
            """
            MCP tool to run an incremental pattern update.

            Returns:
                Dict[str, Any]: changes, stats and the rediscovery flag.
            """
            try:
                result = await self.patterns.update(record_ids)
            except ValidationError as exc:
                raise ToolError(str(exc)) from exc
            return {"ok": True, **result.to_dict()}

        # ---------- MCP Tools: Discover Patterns ---------- #
        @self.mcp.tool(
            name="discover_patterns",
            description="Rebuild the pattern tree and quality clusters from every stored experience.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_discover_patterns() -> Dict[str, Any]:
            """
            MCP tool to run a full rediscovery.

            Returns:
                Dict[str, Any]: root patterns, quality clusters, outliers and stats.
            """
            result = await self.patterns.rediscover()
            return {
                "ok": True,
                "stats": result.stats,
                "patterns": [
                    {
                        "id": p.id,
                        "name": p.name,
                        "size": p.size,
                        "coherence": p.coherence,
                        "children": list(p.child_ids),
                        "semantic_meaning": p.metadata.semantic_meaning,
                    }
                    for p in result.tree.walk()
                ],
                "clusters": [c.to_dict() for c in result.clusters],
                "outliers": result.outliers,
            }

        # ---------- MCP Tools: Embedding Status ---------- #
        @self.mcp.tool(
            name="embedding_status",
            description="Report the embedding backend, its availability and circuit breaker state.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_embedding_status() -> Dict[str, Any]:
            """
            Returns the current embedding gateway status.

            Returns:
                Dict with provider, dimensions, breaker state and pattern snapshot counts.
            """
            if self.gateway is None:
                return {
                    "ok": True,
                    "provider": "none",
                    "available": False,
                    "records": len(self.store.get_all_records()),
                    "patterns": self.patterns.status(),
                    "warning": "Semantic search disabled (no embedding gateway configured).",
                }
            available = await self.gateway.is_available()
            return {
                "ok": True,
                **self.gateway.status(),
                "available": available,
                "records": len(self.store.get_all_records()),
                "patterns": self.patterns.status(),
            }

    @asynccontextmanager
    async def lifespan(self, server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
        """Server lifetime; the gateway's clients are released on shutdown."""
        try:
            yield {}
        finally:
            if self.gateway is not None:
                await self.gateway.close()

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def create_app(config: Optional[BridgeConfig] = None, mcp_server_name: str = "bridge") -> BridgeServerApp:
    """Wire the store, gateway, recall service and pattern manager from configuration"""
    config = config or load_config()

    store = JsonRecordStore(os.path.expanduser(config.storage.data_file))
    gateway = EmbeddingGateway.from_config(config)
    scorer = UnifiedScorer(
        weights=ScoringWeights.from_config(config.scoring),
        recency_decay_days=config.scoring.recency_half_life_days,
    )
    recall_service = RecallService(store, gateway=gateway, scorer=scorer, config=config.recall)
    pattern_manager = PatternManager(
        store,
        gateway=gateway,
        config=config.patterns,
        cache_path=os.path.expanduser(config.patterns.cache_path),
    )
    logger.info(
        "Bridge server ready: %d records, provider '%s'",
        len(store), gateway.provider.name,
    )
    return BridgeServerApp(
        store=store,
        recall_service=recall_service,
        pattern_manager=pattern_manager,
        gateway=gateway,
        mcp_server_name=mcp_server_name,
    )


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the Bridge MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("MCP_SERVER_NAME", "bridge"),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--embedding-provider",
        default=None,
        choices=("auto", "none", "openai", "voyage", "fastembed", "femb"),
        help="Embedding backend (overrides config and BRIDGE_EMBEDDING_PROVIDER).",
    )
    parser.add_argument(
        "--data-file",
        default=None,
        help="Experience store JSON file.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("BRIDGE_LOG_LEVEL", "INFO"),
        help="Logging level.",
    )
    args = parser.parse_args()

    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    config = load_config()
    if args.embedding_provider:
        config.embedding.provider = args.embedding_provider
    if args.data_file:
        config.storage.data_file = args.data_file

    app = create_app(config, mcp_server_name=args.server_name)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
