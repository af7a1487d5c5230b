"""Graph manager: the single entry point for graph mutations.

Coordinates the structured store (source of truth) and the semantic index
(derived cache). Writes go to the store first and to the index second; if
indexing fails the store write is undone, so a caller never observes a
node the index refused. After each successful write a MutationEvent is
handed to every subscriber.
"""

import json
import uuid
from typing import Any, Callable

from stickygraph.config import Config
from stickygraph.db.sqlite_store import StructuredStore
from stickygraph.db.vector_index import SemanticIndex
from stickygraph.embeddings import create_embedder
from stickygraph.exceptions import NotFoundError, ValidationError
from stickygraph.log_config import get_logger
from stickygraph.models import (
    ALL_BOARDS,
    DEFAULT_BOARD_ID,
    DEFAULT_PROJECT_ID,
    Board,
    ContextEntry,
    ContextSource,
    Edge,
    Node,
    Project,
    VectorContext,
    Viewport,
    slugify,
)
from stickygraph.notifications import MutationEvent, NotificationChannel, create_channel

log = get_logger("graph")

Subscriber = Callable[[MutationEvent], None]


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def mask_api_key(key: str) -> str:
    """Show the first 7 and last 4 characters of a key longer than 12."""
    if len(key) > 12:
        return f"{key[:7]}...{key[-4:]}"
    return "****"


def _serialize_content(content: Any) -> str:
    return content if isinstance(content, str) else json.dumps(content)


def _new_id() -> str:
    return str(uuid.uuid4())


class GraphManager:
    """Façade over the structured store and semantic index.

    Args:
        store: Structured store (source of truth)
        index: Semantic index; may be disabled
        channel: Optional notification channel, subscribed automatically
    """

    def __init__(
        self,
        store: StructuredStore,
        index: SemanticIndex,
        channel: NotificationChannel | None = None,
    ):
        self.store = store
        self.index = index
        self.channel = channel
        self._subscribers: list[Subscriber] = []
        if channel is not None:
            self.subscribe(lambda e: channel.publish(e.event, e.data, e.board_id))

    @classmethod
    def from_config(cls, config: Config) -> "GraphManager":
        """Wire store, index and channel from configuration."""
        store = StructuredStore(config.sqlite_path)
        index = SemanticIndex(config.vectors_dir, create_embedder(config), timeout=config.embedding_timeout)
        return cls(store, index, create_channel(config))

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an event callback; returns a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: str, data: Any, board_id: str) -> None:
        message = MutationEvent(event, data, board_id)
        log.trace(f"Emitting {event} for board {board_id}")
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception as e:
                log.warning(f"Subscriber failed on {event}: {e}")

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def create_node(
        self,
        type: str,
        content: Any,
        context: str = "",
        parent_id: str | None = None,
        board_id: str = DEFAULT_BOARD_ID,
        id: str | None = None,
    ) -> Node:
        """Create a node and index its initial context.

        Raises:
            ValidationError: unknown node type
            NotFoundError: unknown parent or board
            ConstraintViolation: duplicate id
            EmbeddingError: indexing failed (the node is removed again)
        """
        if parent_id is not None and self.store.get_node(parent_id) is None:
            raise NotFoundError("node", parent_id)
        if self.store.get_board(board_id) is None:
            raise NotFoundError("board", board_id)
        node = self.store.create_node(
            id=id or _new_id(),
            type=type,
            content=_serialize_content(content),
            context=context,
            parent_id=parent_id,
            board_id=board_id,
        )
        if node.context:
            try:
                await self.index.add_context(node.id, node.context, ContextSource.USER.value, node.board_id)
            except Exception as e:
                log.error(f"Indexing failed for new node {node.id}, rolling back: {e}")
                self.store.delete_node(node.id)
                raise
        log.info(f"Node created: {node.id} ({node.type})")
        self._emit("node_created", node.to_dict(), node.board_id)
        return node

    def _check_parent(self, node_id: str, parent_id: str | None) -> None:
        """Reject a missing parent, the node itself or one of its descendants."""
        if parent_id is None:
            return
        if parent_id == node_id:
            raise ValidationError(f"Node {node_id} cannot be its own parent")
        if self.store.get_node(parent_id) is None:
            raise NotFoundError("node", parent_id)
        ancestor_ids = {n.id for n in self.store.get_ancestor_path(parent_id)}
        if node_id in ancestor_ids:
            raise ValidationError(f"Setting parent {parent_id} on {node_id} would create a cycle")

    async def update_node(
        self,
        id: str,
        content: Any = UNSET,
        context: str = UNSET,
        type: str = UNSET,
        parent_id: str | None = UNSET,
    ) -> Node | None:
        """Apply the supplied fields. Returns None if the node does not exist.

        With no fields the current node is returned and no event is emitted.

        A supplied context replaces the node's vectors. The new context is
        embedded before anything is written, and the previous row is
        restored if the index cannot be updated.
        """
        fields: dict[str, Any] = {}
        if content is not UNSET:
            fields["content"] = _serialize_content(content)
        if context is not UNSET:
            fields["context"] = context or ""
        if type is not UNSET:
            fields["type"] = type
        previous = self.store.get_node(id)
        if previous is None:
            return None
        if parent_id is not UNSET:
            self._check_parent(id, parent_id)
            fields["parent_id"] = parent_id
        if not fields:
            return previous

        vector = None
        if fields.get("context"):
            vector = await self.index.embed(fields["context"])

        node = self.store.update_node(id, **fields)
        if node is None:
            return None

        if "context" in fields:
            try:
                self.index.delete_node_contexts(id)
                if vector is not None:
                    self.index.add_vector(id, node.board_id, node.context, vector, ContextSource.USER.value)
            except Exception as e:
                log.error(f"Re-indexing failed for node {id}, restoring previous state: {e}")
                self.store.restore_node(previous)
                raise

        log.info(f"Node updated: {id} ({', '.join(fields)})")
        self._emit("node_updated", node.to_dict(), node.board_id)
        return node

    async def delete_node(self, id: str) -> bool:
        node = self.store.get_node(id)
        if node is None:
            return False
        try:
            self.index.delete_node_contexts(id)
        except Exception as e:
            log.warning(f"Could not remove vectors for node {id}: {e}")
        if not self.store.delete_node(id):
            return False
        log.info(f"Node deleted: {id}")
        self._emit("node_deleted", {"id": id}, node.board_id)
        return True

    async def branch_node(
        self,
        parent_id: str,
        type: str,
        content: Any,
        id: str | None = None,
    ) -> Node | None:
        """Fork a child off ``parent_id`` carrying its inherited context.

        Returns None when the parent does not exist.
        """
        node = self.store.branch_node(parent_id, id or _new_id(), type, _serialize_content(content))
        if node is None:
            return None
        if node.context:
            try:
                await self.index.add_context(node.id, node.context, ContextSource.AGENT.value, node.board_id)
            except Exception as e:
                log.error(f"Indexing failed for branch {node.id}, rolling back: {e}")
                self.store.delete_node(node.id)
                raise
        log.info(f"Branched {node.id} from {parent_id}")
        self._emit("node_created", node.to_dict(), node.board_id)
        return node

    async def add_context(self, node_id: str, text: str, source: str) -> ContextEntry:
        """Append a context entry to a node and index the text.

        Raises:
            NotFoundError: the node does not exist
            ValidationError: unknown source
            EmbeddingError: indexing failed (the entry is removed again)
        """
        if source not in ContextSource.values():
            raise ValidationError(
                f"Invalid context source: {source}. Must be one of: {', '.join(ContextSource.values())}"
            )
        previous = self.store.get_node(node_id)
        if previous is None:
            raise NotFoundError("node", node_id)
        appended = self.store.append_context(node_id, text, source)
        if appended is None:
            raise NotFoundError("node", node_id)
        entry, node = appended
        try:
            await self.index.add_context(node_id, text, source, node.board_id)
        except Exception as e:
            log.error(f"Indexing failed for context on {node_id}, rolling back: {e}")
            self.store.remove_context_entry(entry.id, restore_context=previous.context)
            raise
        log.info(f"Context added to {node_id} ({source}, {len(text)} chars)")
        self._emit("context_added", entry.to_dict(), node.board_id)
        return entry

    def get_node(self, id: str) -> Node | None:
        return self.store.get_node(id)

    def get_all_nodes(self, board_id: str | None = None, node_type: str | None = None) -> list[Node]:
        return self.store.get_all_nodes(board_id=board_id, node_type=node_type)

    def get_child_nodes(self, parent_id: str) -> list[Node]:
        return self.store.get_child_nodes(parent_id)

    def get_context_entries(self, node_id: str) -> list[ContextEntry]:
        return self.store.get_context_entries(node_id)

    def get_context_for_node(self, node_id: str) -> list[VectorContext]:
        """Snippets the semantic index holds for a node."""
        return self.index.get_contexts_for_node(node_id)

    def get_inherited_context(self, node_id: str) -> str:
        return self.store.get_inherited_context(node_id)

    def get_conversation_path(self, node_id: str) -> list[Node]:
        """Ancestors of a node, root first, ending with the node."""
        return self.store.get_ancestor_path(node_id)

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    async def create_edge(
        self,
        source_id: str,
        target_id: str,
        label: str | None = None,
        id: str | None = None,
    ) -> Edge:
        source = self.store.get_node(source_id)
        if source is None:
            raise NotFoundError("node", source_id)
        if self.store.get_node(target_id) is None:
            raise NotFoundError("node", target_id)
        edge = self.store.create_edge(id or _new_id(), source_id, target_id, label)
        log.info(f"Edge created: {edge.id} ({source_id} -> {target_id})")
        self._emit("edge_created", edge.to_dict(), source.board_id)
        return edge

    def _edge_board(self, edge: Edge) -> str:
        source = self.store.get_node(edge.source_id)
        return source.board_id if source else DEFAULT_BOARD_ID

    async def update_edge(self, id: str, label: str | None) -> Edge | None:
        edge = self.store.update_edge(id, label)
        if edge is None:
            return None
        self._emit("edge_updated", edge.to_dict(), self._edge_board(edge))
        return edge

    async def delete_edge(self, id: str) -> bool:
        edge = self.store.get_edge(id)
        if edge is None:
            return False
        board_id = self._edge_board(edge)
        if not self.store.delete_edge(id):
            return False
        log.info(f"Edge deleted: {id}")
        self._emit("edge_deleted", {"id": id}, board_id)
        return True

    def get_edge(self, id: str) -> Edge | None:
        return self.store.get_edge(id)

    def get_edges_for_node(self, node_id: str) -> dict[str, list[Edge]]:
        return self.store.get_edges_for_node(node_id)

    def get_all_edges(self, board_id: str | None = None) -> list[Edge]:
        return self.store.get_all_edges(board_id)

    # -------------------------------------------------------------------------
    # Boards and projects
    # -------------------------------------------------------------------------

    async def create_board(
        self,
        name: str,
        project_id: str = DEFAULT_PROJECT_ID,
        slug: str | None = None,
        id: str | None = None,
    ) -> Board:
        if self.store.get_project(project_id) is None:
            raise NotFoundError("project", project_id)
        board = self.store.create_board(id or _new_id(), name, project_id, slug)
        self._emit("board_created", board.to_dict(), board.id)
        return board

    async def get_or_create_board(self, project_id: str, slug: str, name: str | None = None) -> Board:
        board, created = self.store.get_or_create_board(project_id, slugify(slug) or slug, name)
        if created:
            self._emit("board_created", board.to_dict(), board.id)
        return board

    async def update_board_viewport(self, id: str, x: float, y: float, zoom: float) -> Board | None:
        board = self.store.update_board_viewport(id, x, y, zoom)
        if board is None:
            return None
        self._emit("board_updated", board.to_dict(), board.id)
        return board

    async def delete_board(self, id: str) -> bool:
        """Delete a board and everything on it.

        Raises:
            ProtectedEntityError: the default board
        """
        if self.store.get_board(id) is None and id != DEFAULT_BOARD_ID:
            return False
        if id != DEFAULT_BOARD_ID:
            try:
                self.index.delete_board_contexts(id)
            except Exception as e:
                log.warning(f"Could not remove vectors for board {id}: {e}")
        if not self.store.delete_board(id):
            return False
        self._emit("board_deleted", {"id": id}, id)
        return True

    def get_board(self, id: str) -> Board | None:
        return self.store.get_board(id)

    def get_board_by_slug(self, project_id: str, slug: str) -> Board | None:
        return self.store.get_board_by_slug(project_id, slug)

    def list_boards(self, project_id: str | None = None) -> list[Board]:
        return self.store.list_boards(project_id)

    def get_board_viewport(self, id: str) -> Viewport | None:
        return self.store.get_board_viewport(id)

    async def create_project(self, name: str, id: str | None = None) -> Project:
        project = self.store.create_project(id or slugify(name) or _new_id(), name)
        self._emit("project_created", project.to_dict(), ALL_BOARDS)
        return project

    async def get_or_create_project(self, id: str, name: str | None = None) -> Project:
        project, created = self.store.get_or_create_project(id, name or id)
        if created:
            self._emit("project_created", project.to_dict(), ALL_BOARDS)
        return project

    async def delete_project(self, id: str) -> bool:
        """Delete a project with all of its boards.

        Raises:
            ProtectedEntityError: the default project
        """
        if id != DEFAULT_PROJECT_ID:
            for board in self.store.list_boards(project_id=id):
                try:
                    self.index.delete_board_contexts(board.id)
                except Exception as e:
                    log.warning(f"Could not remove vectors for board {board.id}: {e}")
        if not self.store.delete_project(id):
            return False
        self._emit("project_deleted", {"id": id}, ALL_BOARDS)
        return True

    def get_project(self, id: str) -> Project | None:
        return self.store.get_project(id)

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    # -------------------------------------------------------------------------
    # Search, export, stats
    # -------------------------------------------------------------------------

    async def search_context(self, query: str, limit: int = 5, board_id: str | None = None) -> list[VectorContext]:
        return await self.index.search(query, limit=limit, board_id=board_id)

    async def search_in_node(self, node_id: str, query: str, limit: int = 5) -> list[VectorContext]:
        return await self.index.search_in_node(node_id, query, limit=limit)

    async def get_related_contexts(self, node_id: str, limit: int = 10) -> list[VectorContext]:
        """Snippets from other nodes that resemble this node's context."""
        node = self.store.get_node(node_id)
        if node is None:
            raise NotFoundError("node", node_id)
        if not node.context:
            return []
        return await self.index.get_related_contexts(node.context, exclude_node_id=node_id, limit=limit)

    def export_graph(self, board_id: str | None = None) -> dict[str, list[dict[str, Any]]]:
        return {
            "nodes": [n.to_dict() for n in self.store.get_all_nodes(board_id=board_id)],
            "edges": [e.to_dict() for e in self.store.get_all_edges(board_id)],
        }

    async def get_stats(self, board_id: str | None = None) -> dict[str, Any]:
        by_type = self.store.node_type_counts(board_id)
        return {
            "total_nodes": sum(by_type.values()),
            "total_edges": self.store.count_edges(board_id),
            "nodes_by_type": by_type,
            "semantic_search_enabled": self.index.enabled,
            **self.index.get_stats(),
        }

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        return self.store.get_setting(key)

    def set_setting(self, key: str, value: str) -> None:
        self.store.set_setting(key, value)

    def get_masked_settings(self) -> dict[str, str]:
        """All settings, with values of ``*api_key`` keys masked."""
        return {
            key: mask_api_key(value) if key.endswith("api_key") else value
            for key, value in self.store.get_all_settings().items()
        }

    async def close(self) -> None:
        """Close the store, index and notification channel."""
        self.store.close()
        self.index.close()
        if self.channel is not None:
            self.channel.close()
        log.info("GraphManager closed")
