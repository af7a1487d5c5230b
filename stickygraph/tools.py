"""Remote control tools over the graph manager.

Every tool takes a dict of arguments and returns a ToolResult. Required
arguments, identifiers and enum values are checked before the graph is
touched; domain errors come back as error results rather than exceptions.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from stickygraph.canvas import analyze_layout, format_review_summary, node_title, review_content, with_position
from stickygraph.exceptions import (
    ConstraintViolation,
    EmbeddingError,
    NotFoundError,
    ProtectedEntityError,
    StickyGraphError,
    ValidationError,
)
from stickygraph.graph import GraphManager
from stickygraph.log_config import get_logger
from stickygraph.models import DEFAULT_BOARD_ID, DEFAULT_PROJECT_ID, ContextSource, NodeType

log = get_logger("tools")

# Arguments that name an entity and must be non-empty strings when given
IDENTIFIER_ARGS = ("id", "node_id", "parent_id", "source_id", "target_id", "board_id", "project_id")

REQUIRED_ARGS: dict[str, tuple[str, ...]] = {
    "create_node": ("type", "content"),
    "get_node": ("id",),
    "update_node": ("id",),
    "delete_node": ("id",),
    "create_edge": ("source_id", "target_id"),
    "delete_edge": ("id",),
    "branch_conversation": ("parent_id", "type", "content"),
    "add_context": ("node_id", "text", "source"),
    "get_context": ("node_id",),
    "search_context": ("query",),
    "get_conversation_path": ("node_id",),
    "get_all_nodes": (),
    "export_graph": (),
    "get_stats": (),
    "create_board": ("name",),
    "delete_board": ("id",),
    "list_boards": (),
    "get_canvas_layout": (),
    "move_node": ("id", "x", "y"),
    "create_review": ("title", "content"),
    "get_review_summary": ("node_id",),
}


@dataclass
class ToolResult:
    text: str
    is_error: bool = False


def _json(value: Any) -> str:
    return json.dumps(value, indent=2)


def validate_arguments(name: str, args: dict[str, Any]) -> None:
    """Check required arguments, identifiers and enum values for a tool.

    Raises:
        ValidationError: describing the first problem found
    """
    missing = [key for key in REQUIRED_ARGS[name] if args.get(key) is None]
    if missing:
        raise ValidationError(f"Missing required arguments: {', '.join(missing)}")

    for key in IDENTIFIER_ARGS:
        value = args.get(key)
        if value is not None and (not isinstance(value, str) or not value.strip()):
            raise ValidationError(f"Invalid identifier for '{key}': {value!r}")

    node_type = args.get("type")
    if node_type is not None and node_type not in NodeType.values():
        raise ValidationError(
            f"Invalid node type: {node_type}. Must be one of: {', '.join(NodeType.values())}"
        )
    source = args.get("source")
    if source is not None and source not in ContextSource.values():
        raise ValidationError(
            f"Invalid context source: {source}. Must be one of: {', '.join(ContextSource.values())}"
        )

    for key in ("x", "y"):
        value = args.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValidationError(f"Argument '{key}' must be a number")
    limit = args.get("limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise ValidationError("Argument 'limit' must be a positive integer")


class GraphTools:
    """Named tool handlers bound to one graph manager."""

    def __init__(self, manager: GraphManager):
        self.manager = manager
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[str]]] = {
            name: getattr(self, f"_{name}") for name in REQUIRED_ARGS
        }

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Run a tool by name. Never raises for domain errors."""
        args = arguments or {}
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult(f"Unknown tool: {name}", is_error=True)

        log.info(f"Tool: {name} called")
        try:
            validate_arguments(name, args)
            return ToolResult(await handler(args))
        except (NotFoundError, ValidationError, ProtectedEntityError) as e:
            log.debug(f"Tool {name} rejected: {e}")
            return ToolResult(str(e), is_error=True)
        except ConstraintViolation as e:
            log.warning(f"Tool {name} hit a constraint: {e}")
            return ToolResult(f"Constraint violation: {e}", is_error=True)
        except EmbeddingError as e:
            log.warning(f"Tool {name} failed to embed: {e}")
            return ToolResult(str(e), is_error=True)
        except StickyGraphError as e:
            return ToolResult(str(e), is_error=True)
        except Exception as e:
            log.exception(f"Tool {name} failed")
            return ToolResult(f"Error: {e}", is_error=True)

    # -------------------------------------------------------------------------
    # Nodes and edges
    # -------------------------------------------------------------------------

    async def _create_node(self, args: dict[str, Any]) -> str:
        node = await self.manager.create_node(
            type=args["type"],
            content=args["content"],
            context=args.get("context") or "",
            parent_id=args.get("parent_id"),
            board_id=args.get("board_id") or DEFAULT_BOARD_ID,
        )
        return _json(node.to_dict())

    async def _get_node(self, args: dict[str, Any]) -> str:
        node = self.manager.get_node(args["id"])
        if node is None:
            raise NotFoundError("node", args["id"])
        return _json(node.to_dict())

    async def _update_node(self, args: dict[str, Any]) -> str:
        updates = {
            key: args[key]
            for key in ("content", "context", "type", "parent_id")
            if args.get(key) is not None
        }
        if args.get("detach"):
            if "parent_id" in updates:
                raise ValidationError("Pass either parent_id or detach, not both")
            updates["parent_id"] = None
        node = await self.manager.update_node(args["id"], **updates)
        if node is None:
            raise NotFoundError("node", args["id"])
        return _json(node.to_dict())

    async def _delete_node(self, args: dict[str, Any]) -> str:
        if not await self.manager.delete_node(args["id"]):
            raise NotFoundError("node", args["id"])
        return f"Deleted node: {args['id']}"

    async def _create_edge(self, args: dict[str, Any]) -> str:
        edge = await self.manager.create_edge(args["source_id"], args["target_id"], args.get("label"))
        return _json(edge.to_dict())

    async def _delete_edge(self, args: dict[str, Any]) -> str:
        if not await self.manager.delete_edge(args["id"]):
            raise NotFoundError("edge", args["id"])
        return f"Deleted edge: {args['id']}"

    async def _branch_conversation(self, args: dict[str, Any]) -> str:
        node = await self.manager.branch_node(args["parent_id"], args["type"], args["content"])
        if node is None:
            raise NotFoundError("parent node", args["parent_id"])
        return _json(node.to_dict())

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    async def _add_context(self, args: dict[str, Any]) -> str:
        await self.manager.add_context(args["node_id"], args["text"], args["source"])
        return f"Context added to node {args['node_id']}"

    async def _get_context(self, args: dict[str, Any]) -> str:
        node = self.manager.get_node(args["node_id"])
        if node is None:
            raise NotFoundError("node", args["node_id"])
        if args.get("include_inherited", True):
            text = self.manager.get_inherited_context(node.id)
        else:
            text = node.context
        return text or "No context found"

    async def _search_context(self, args: dict[str, Any]) -> str:
        results = await self.manager.search_context(
            args["query"], limit=args.get("limit") or 5, board_id=args.get("board_id")
        )
        return _json([r.to_dict() for r in results])

    async def _get_conversation_path(self, args: dict[str, Any]) -> str:
        path = self.manager.get_conversation_path(args["node_id"])
        if not path:
            raise NotFoundError("node", args["node_id"])
        return _json([n.to_dict() for n in path])

    # -------------------------------------------------------------------------
    # Listing, export, stats
    # -------------------------------------------------------------------------

    async def _get_all_nodes(self, args: dict[str, Any]) -> str:
        nodes = self.manager.get_all_nodes(board_id=args.get("board_id"), node_type=args.get("type"))
        return _json([n.to_dict() for n in nodes])

    async def _export_graph(self, args: dict[str, Any]) -> str:
        return _json(self.manager.export_graph(args.get("board_id")))

    async def _get_stats(self, args: dict[str, Any]) -> str:
        return _json(await self.manager.get_stats(args.get("board_id")))

    # -------------------------------------------------------------------------
    # Boards
    # -------------------------------------------------------------------------

    async def _create_board(self, args: dict[str, Any]) -> str:
        board = await self.manager.create_board(
            args["name"], project_id=args.get("project_id") or DEFAULT_PROJECT_ID, slug=args.get("slug")
        )
        return _json(board.to_dict())

    async def _delete_board(self, args: dict[str, Any]) -> str:
        if not await self.manager.delete_board(args["id"]):
            raise NotFoundError("board", args["id"])
        return f"Deleted board: {args['id']}"

    async def _list_boards(self, args: dict[str, Any]) -> str:
        return _json([b.to_dict() for b in self.manager.list_boards(args.get("project_id"))])

    # -------------------------------------------------------------------------
    # Layout and review
    # -------------------------------------------------------------------------

    async def _get_canvas_layout(self, args: dict[str, Any]) -> str:
        board_id = args.get("board_id")
        nodes = self.manager.get_all_nodes(board_id=board_id)
        edges = self.manager.get_all_edges(board_id)
        return _json(analyze_layout(nodes, len(edges)))

    async def _move_node(self, args: dict[str, Any]) -> str:
        node = self.manager.get_node(args["id"])
        if node is None:
            raise NotFoundError("node", args["id"])
        x, y = args["x"], args["y"]
        await self.manager.update_node(node.id, content=with_position(node, x, y))
        title = node.content_data().get("title") or node.id
        return f'Moved "{title}" to ({x}, {y})'

    async def _create_review(self, args: dict[str, Any]) -> str:
        node = await self.manager.create_node(
            type=NodeType.RICHTEXT.value,
            content=review_content(args["title"], args["content"]),
            context=args.get("context") or "",
            board_id=args.get("board_id") or DEFAULT_BOARD_ID,
        )
        return _json({"id": node.id, "title": node_title(node.content_data()), "board_id": node.board_id})

    async def _get_review_summary(self, args: dict[str, Any]) -> str:
        node = self.manager.get_node(args["node_id"])
        if node is None:
            raise NotFoundError("review node", args["node_id"])
        return format_review_summary(node)
