"""MCP server for stickygraph.

Exposes the graph tools over the MCP protocol. Each tool is a thin wrapper
that forwards its arguments to GraphTools; error results are raised as
ToolError so the client sees them flagged as errors.
"""

from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from stickygraph.config import Config
from stickygraph.graph import GraphManager
from stickygraph.log_config import get_logger
from stickygraph.tools import GraphTools

log = get_logger("server")


class Dependencies:
    """Lazily built object graph behind the MCP tools.

    Nothing is opened until a tool first needs it, so importing this module
    never touches the data directory.
    """

    def __init__(self):
        self._config: Config | None = None
        self._manager: GraphManager | None = None
        self._tools: GraphTools | None = None
        self._initialized = False

    def configure_for_testing(
        self,
        config: Config | None = None,
        manager: GraphManager | None = None,
        tools: GraphTools | None = None,
    ) -> None:
        """Inject collaborators; anything left None is built on first use."""
        self._config = config
        self._manager = manager
        self._tools = tools
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if self._config is None:
            self._config = Config()
        if self._manager is None:
            self._manager = GraphManager.from_config(self._config)
        if self._tools is None:
            self._tools = GraphTools(self._manager)
        self._initialized = True
        log.info("Server dependencies initialized")

    @property
    def config(self) -> Config:
        self._ensure_initialized()
        return self._config

    @property
    def manager(self) -> GraphManager:
        self._ensure_initialized()
        return self._manager

    @property
    def tools(self) -> GraphTools:
        self._ensure_initialized()
        return self._tools

    async def close(self) -> None:
        if self._manager is not None:
            await self._manager.close()
        self._config = self._manager = self._tools = None
        self._initialized = False


_dependencies = Dependencies()


def get_dependencies() -> Dependencies:
    """The process-wide dependency container."""
    return _dependencies


async def _call(name: str, **arguments: Any) -> str:
    result = await get_dependencies().tools.call(name, arguments)
    if result.is_error:
        raise ToolError(result.text)
    return result.text


mcp = FastMCP(
    "stickygraph",
    instructions="""stickygraph: a context graph behind a canvas of boards.

Nodes carry opaque JSON content and a free-text context. Children inherit
their ancestors' context: use `get_context` to read it and `branch_conversation`
to fork a node with a snapshot of it. Record knowledge with `add_context` and
find it again with `search_context` (semantic search, needs an embedding key).

Use `get_canvas_layout` to check positions and overlaps without a screenshot,
and `move_node` to fix them. `create_review` puts a document on the canvas for
comment; `get_review_summary` reads the feedback back.
""",
)


# ═══════════════════════════════════════════════════════════════════════════════
# NODES AND EDGES
# ═══════════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def create_node(
    type: str,
    content: Any,
    context: str | None = None,
    parent_id: str | None = None,
    board_id: str | None = None,
) -> str:
    """Create a node on the canvas.

    Args:
        type: conversation, diagram, diagramBox, container, terminal, richtext, stickyNote or list
        content: Node content (JSON object or string)
        context: Initial context text
        parent_id: Parent node for context inheritance
        board_id: Board to place the node on (default board if omitted)
    """
    return await _call(
        "create_node", type=type, content=content, context=context, parent_id=parent_id, board_id=board_id
    )


@mcp.tool()
async def get_node(id: str) -> str:
    """Get a node by id."""
    return await _call("get_node", id=id)


@mcp.tool()
async def update_node(
    id: str,
    content: Any = None,
    context: str | None = None,
    type: str | None = None,
    parent_id: str | None = None,
    detach: bool = False,
) -> str:
    """Update a node. Omitted fields are unchanged.

    Args:
        id: Node to update
        content: New content (JSON object or string)
        context: Replacement context text
        type: New node type
        parent_id: Re-parent the node under this node
        detach: Remove the node's parent
    """
    return await _call(
        "update_node",
        id=id,
        content=content,
        context=context,
        type=type,
        parent_id=parent_id,
        detach=detach,
    )


@mcp.tool()
async def delete_node(id: str) -> str:
    """Delete a node together with its edges and context history."""
    return await _call("delete_node", id=id)


@mcp.tool()
async def create_edge(source_id: str, target_id: str, label: str | None = None) -> str:
    """Connect two nodes with an optional label."""
    return await _call("create_edge", source_id=source_id, target_id=target_id, label=label)


@mcp.tool()
async def delete_edge(id: str) -> str:
    """Delete an edge by id."""
    return await _call("delete_edge", id=id)


@mcp.tool()
async def branch_conversation(parent_id: str, type: str, content: Any) -> str:
    """Fork a new node off a parent, seeded with the parent's inherited context."""
    return await _call("branch_conversation", parent_id=parent_id, type=type, content=content)


# ═══════════════════════════════════════════════════════════════════════════════
# CONTEXT
# ═══════════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def add_context(node_id: str, text: str, source: str) -> str:
    """Append context to a node.

    Args:
        node_id: Target node
        text: Context text
        source: user, agent, codebase or diagram
    """
    return await _call("add_context", node_id=node_id, text=text, source=source)


@mcp.tool()
async def get_context(node_id: str, include_inherited: bool = True) -> str:
    """Read a node's context, by default including its ancestors' (root first)."""
    return await _call("get_context", node_id=node_id, include_inherited=include_inherited)


@mcp.tool()
async def search_context(query: str, limit: int = 5, board_id: str | None = None) -> str:
    """Semantic search over context snippets, optionally within one board."""
    return await _call("search_context", query=query, limit=limit, board_id=board_id)


@mcp.tool()
async def get_conversation_path(node_id: str) -> str:
    """The chain of nodes from the root down to this node."""
    return await _call("get_conversation_path", node_id=node_id)


# ═══════════════════════════════════════════════════════════════════════════════
# GRAPH AND BOARDS
# ═══════════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def get_all_nodes(type: str | None = None, board_id: str | None = None) -> str:
    """List nodes, newest first, optionally filtered by type and board."""
    return await _call("get_all_nodes", type=type, board_id=board_id)


@mcp.tool()
async def export_graph(board_id: str | None = None) -> str:
    """Export nodes and edges as JSON."""
    return await _call("export_graph", board_id=board_id)


@mcp.tool()
async def get_stats(board_id: str | None = None) -> str:
    """Node, edge and index counts."""
    return await _call("get_stats", board_id=board_id)


@mcp.tool()
async def create_board(name: str, project_id: str | None = None, slug: str | None = None) -> str:
    """Create a board in a project (default project if omitted)."""
    return await _call("create_board", name=name, project_id=project_id, slug=slug)


@mcp.tool()
async def delete_board(id: str) -> str:
    """Delete a board and everything on it. The default board cannot be deleted."""
    return await _call("delete_board", id=id)


@mcp.tool()
async def list_boards(project_id: str | None = None) -> str:
    """List boards, optionally for one project."""
    return await _call("list_boards", project_id=project_id)


# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT AND REVIEW
# ═══════════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def get_canvas_layout(board_id: str | None = None) -> str:
    """Node positions, sizes, bounds and overlaps."""
    return await _call("get_canvas_layout", board_id=board_id)


@mcp.tool()
async def move_node(id: str, x: float, y: float) -> str:
    """Move a node to a canvas position."""
    return await _call("move_node", id=id, x=x, y=y)


@mcp.tool()
async def create_review(
    title: str,
    content: str,
    context: str | None = None,
    board_id: str | None = None,
) -> str:
    """Put a rich text document on the canvas for the user to comment on."""
    return await _call("create_review", title=title, content=content, context=context, board_id=board_id)


@mcp.tool()
async def get_review_summary(node_id: str) -> str:
    """Markdown summary of a review node's comment threads."""
    return await _call("get_review_summary", node_id=node_id)


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════


def main():
    """Run the MCP server over stdio."""
    log.info("Starting MCP server run loop")
    mcp.run()
    log.info("MCP server stopped")


if __name__ == "__main__":
    main()
