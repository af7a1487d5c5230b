"""Semantic index over node context snippets.

A LanceDB table of embedded context snippets, searched by vector
similarity. It is a derived cache of the structured store: losing it costs
search quality, never data. When no embedder is configured the index is
inert: writes are no-ops and reads return nothing.
"""

import asyncio
import threading
import time
from pathlib import Path

import lancedb
import pyarrow as pa
import pyarrow.compute as pc

from stickygraph.embeddings import Embedder
from stickygraph.exceptions import EmbeddingError
from stickygraph.log_config import get_logger
from stickygraph.models import DEFAULT_BOARD_ID, VectorContext

log = get_logger("index")

TABLE_NAME = "contexts"


def _quote(value: str) -> str:
    """SQL string literal for a LanceDB filter."""
    return "'" + value.replace("'", "''") + "'"


class SemanticIndex:
    """LanceDB-backed vector index of context snippets.

    Args:
        vectors_dir: Directory of the LanceDB database
        embedder: Embedding provider; None disables the index
        timeout: Seconds allowed for one embedding call
    """

    def __init__(self, vectors_dir: Path | str, embedder: Embedder | None, timeout: float = 30.0):
        self.vectors_dir = Path(vectors_dir)
        self.embedder = embedder
        self.timeout = timeout
        self._write_lock = threading.RLock()
        self._db = None
        self._table = None
        if self.enabled:
            log.info(f"SemanticIndex enabled at {self.vectors_dir} ({embedder.dimension} dims)")
        else:
            log.info("SemanticIndex disabled (no embedder configured)")

    @property
    def enabled(self) -> bool:
        return self.embedder is not None

    def _schema(self) -> pa.Schema:
        return pa.schema([
            pa.field("node_id", pa.string()),
            pa.field("board_id", pa.string()),
            pa.field("text", pa.string()),
            pa.field("vector", pa.list_(pa.float32(), self.embedder.dimension)),
            pa.field("source", pa.string()),
            pa.field("created_at", pa.float64()),
        ])

    def _open(self, create: bool = False):
        """The contexts table, or None if it does not exist and create is False."""
        if self._table is not None:
            return self._table
        with self._write_lock:
            if self._db is None:
                self.vectors_dir.mkdir(parents=True, exist_ok=True)
                self._db = lancedb.connect(str(self.vectors_dir))
            if TABLE_NAME in self._db.table_names():
                self._table = self._db.open_table(TABLE_NAME)
            elif create:
                log.info(f"Creating LanceDB table: {TABLE_NAME}")
                self._table = self._db.create_table(TABLE_NAME, schema=self._schema(), exist_ok=True)
        return self._table

    @staticmethod
    def _to_context(row: dict) -> VectorContext:
        return VectorContext(
            node_id=row["node_id"],
            board_id=row["board_id"],
            text=row["text"],
            source=row["source"],
            created_at=row["created_at"],
            score=row.get("_distance"),
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def embed(self, text: str) -> list[float] | None:
        """Embed text, or None when the index is disabled.

        Raises:
            EmbeddingError: provider failure or timeout
        """
        if not self.enabled:
            return None
        try:
            return await asyncio.wait_for(self.embedder.embed(text), timeout=self.timeout)
        except EmbeddingError:
            raise
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e

    def add_vector(
        self,
        node_id: str,
        board_id: str,
        text: str,
        vector: list[float],
        source: str,
    ) -> None:
        """Store a snippet whose vector was computed beforehand."""
        if not self.enabled:
            return
        table = self._open(create=True)
        row = {
            "node_id": node_id,
            "board_id": board_id,
            "text": text,
            "vector": [float(v) for v in vector],
            "source": source,
            "created_at": time.time(),
        }
        with self._write_lock:
            table.add([row])
        log.trace(f"Indexed context for node {node_id} ({len(text)} chars)")

    async def add_context(
        self, node_id: str, text: str, source: str, board_id: str = DEFAULT_BOARD_ID
    ) -> None:
        if not self.enabled:
            return
        vector = await self.embed(text)
        self.add_vector(node_id, board_id, text, vector, source)

    async def add_contexts(self, items: list[dict]) -> None:
        """Index several snippets; each item has node_id, text, source and optional board_id."""
        for item in items:
            await self.add_context(
                item["node_id"], item["text"], item["source"], item.get("board_id", DEFAULT_BOARD_ID)
            )

    def _delete(self, where: str) -> None:
        if not self.enabled:
            return
        table = self._open()
        if table is None:
            return
        with self._write_lock:
            table.delete(where)

    def delete_node_contexts(self, node_id: str) -> None:
        self._delete(f"node_id = {_quote(node_id)}")
        log.trace(f"Removed vectors for node {node_id}")

    def delete_board_contexts(self, board_id: str) -> None:
        self._delete(f"board_id = {_quote(board_id)}")
        log.debug(f"Removed vectors for board {board_id}")

    async def update_context(
        self,
        node_id: str,
        old_text: str,
        new_text: str,
        source: str,
        board_id: str = DEFAULT_BOARD_ID,
    ) -> None:
        """Replace one snippet: embed the new text, drop the old row, insert."""
        if not self.enabled:
            return
        vector = await self.embed(new_text)
        self._delete(f"node_id = {_quote(node_id)} AND text = {_quote(old_text)}")
        self.add_vector(node_id, board_id, new_text, vector, source)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _search(self, query: str, limit: int, where: str | None) -> list[VectorContext]:
        if not self.enabled:
            return []
        table = self._open()
        if table is None:
            return []
        vector = await self.embed(query)
        with self._write_lock:
            # Searching an empty table errors in some LanceDB releases
            if table.count_rows() == 0:
                return []
            search = table.search(vector).limit(limit)
            if where:
                search = search.where(where, prefilter=True)
            rows = search.to_list()
        log.debug(f"Vector search returned {len(rows)} result(s)")
        return [self._to_context(row) for row in rows]

    async def search(self, query: str, limit: int = 5, board_id: str | None = None) -> list[VectorContext]:
        where = f"board_id = {_quote(board_id)}" if board_id else None
        return await self._search(query, limit, where)

    async def search_in_node(self, node_id: str, query: str, limit: int = 5) -> list[VectorContext]:
        return await self._search(query, limit, f"node_id = {_quote(node_id)}")

    async def get_related_contexts(
        self, text: str, exclude_node_id: str | None = None, limit: int = 10
    ) -> list[VectorContext]:
        where = f"node_id != {_quote(exclude_node_id)}" if exclude_node_id else None
        return await self._search(text, limit, where)

    def _rows(self) -> pa.Table | None:
        if not self.enabled:
            return None
        table = self._open()
        if table is None:
            return None
        with self._write_lock:
            return table.to_arrow()

    def get_contexts_for_node(self, node_id: str) -> list[VectorContext]:
        rows = self._rows()
        if rows is None:
            return []
        matched = rows.filter(pc.equal(rows["node_id"], node_id)).to_pylist()
        matched.sort(key=lambda row: row["created_at"])
        return [self._to_context(row) for row in matched]

    def get_stats(self) -> dict[str, int]:
        rows = self._rows()
        if rows is None or rows.num_rows == 0:
            return {"total_contexts": 0, "unique_nodes": 0}
        return {
            "total_contexts": rows.num_rows,
            "unique_nodes": len(pc.unique(rows["node_id"])),
        }

    def close(self) -> None:
        """Compact the table if it was opened; safe to call more than once."""
        if self._table is None:
            return
        with self._write_lock:
            try:
                self._table.optimize()
            except Exception as e:
                log.warning(f"Failed to optimize {TABLE_NAME} table: {e}")
            self._table = None
            self._db = None
        log.debug("SemanticIndex closed")
