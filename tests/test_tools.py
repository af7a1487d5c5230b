"""Tests for the remote control tools."""

import json
from unittest.mock import MagicMock

import pytest

from stickygraph.models import DEFAULT_BOARD_ID
from stickygraph.tools import REQUIRED_ARGS, GraphTools, validate_arguments
from stickygraph.exceptions import ValidationError


@pytest.fixture
def tools(manager):
    return GraphTools(manager)


async def _ok(tools, name, /, **args):
    result = await tools.call(name, args)
    assert not result.is_error, result.text
    return result.text


class TestValidation:
    """Arguments are checked before the graph is touched."""

    @pytest.mark.asyncio
    async def test_missing_arguments_listed(self, tools):
        result = await tools.call("create_edge", {})
        assert result.is_error
        assert result.text == "Missing required arguments: source_id, target_id"

    @pytest.mark.asyncio
    async def test_validation_happens_before_storage(self):
        manager = MagicMock()
        tools = GraphTools(manager)
        result = await tools.call("add_context", {"node_id": "n1", "text": "x"})
        assert result.text == "Missing required arguments: source"
        assert manager.method_calls == []

    @pytest.mark.asyncio
    async def test_blank_identifier_rejected(self, tools):
        result = await tools.call("get_node", {"id": "  "})
        assert result.is_error
        assert "Invalid identifier" in result.text

    @pytest.mark.asyncio
    async def test_unknown_node_type(self, tools):
        result = await tools.call("create_node", {"type": "spreadsheet", "content": {}})
        assert result.is_error
        assert result.text.startswith("Invalid node type: spreadsheet")

    @pytest.mark.asyncio
    async def test_unknown_source(self, tools):
        result = await tools.call("add_context", {"node_id": "n1", "text": "x", "source": "rumor"})
        assert result.text.startswith("Invalid context source")

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        result = await tools.call("arrange_nodes", {})
        assert result.is_error
        assert result.text == "Unknown tool: arrange_nodes"

    def test_non_numeric_position(self):
        with pytest.raises(ValidationError):
            validate_arguments("move_node", {"id": "n", "x": "10", "y": 0})

    def test_every_tool_has_a_handler(self, tools):
        assert sorted(tools.names) == sorted(REQUIRED_ARGS)


class TestNodeTools:

    @pytest.mark.asyncio
    async def test_create_and_get(self, tools):
        created = json.loads(await _ok(tools, "create_node", type="conversation", content={"question": "q"}))
        fetched = json.loads(await _ok(tools, "get_node", id=created["id"]))
        assert fetched["content"] == '{"question": "q"}'
        assert fetched["board_id"] == DEFAULT_BOARD_ID

    @pytest.mark.asyncio
    async def test_not_found_is_error(self, tools):
        for name, args in [
            ("get_node", {"id": "ghost"}),
            ("update_node", {"id": "ghost", "context": "x"}),
            ("delete_node", {"id": "ghost"}),
        ]:
            result = await tools.call(name, args)
            assert result.is_error
            assert result.text == "Node not found: ghost"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, tools):
        node = json.loads(await _ok(tools, "create_node", type="stickyNote", content="{}"))
        updated = json.loads(await _ok(tools, "update_node", id=node["id"], context="new"))
        assert updated["context"] == "new"
        assert await _ok(tools, "delete_node", id=node["id"]) == f"Deleted node: {node['id']}"

    @pytest.mark.asyncio
    async def test_reparent_and_detach(self, tools):
        root = json.loads(await _ok(tools, "create_node", type="conversation", content={}, context="R"))
        node = json.loads(await _ok(tools, "create_node", type="conversation", content={}, context="N"))

        moved = json.loads(await _ok(tools, "update_node", id=node["id"], parent_id=root["id"]))
        assert moved["parent_id"] == root["id"]
        assert await _ok(tools, "get_context", node_id=node["id"]) == "R\n\nN"

        detached = json.loads(await _ok(tools, "update_node", id=node["id"], detach=True))
        assert detached["parent_id"] is None

    @pytest.mark.asyncio
    async def test_reparent_to_missing_node(self, tools):
        node = json.loads(await _ok(tools, "create_node", type="conversation", content={}))
        result = await tools.call("update_node", {"id": node["id"], "parent_id": "ghost"})
        assert result.is_error
        assert result.text == "Node not found: ghost"

    @pytest.mark.asyncio
    async def test_parent_and_detach_conflict(self, tools):
        node = json.loads(await _ok(tools, "create_node", type="conversation", content={}))
        result = await tools.call("update_node", {"id": node["id"], "parent_id": "x", "detach": True})
        assert result.is_error
        assert "either parent_id or detach" in result.text

    @pytest.mark.asyncio
    async def test_branch_missing_parent(self, tools):
        result = await tools.call("branch_conversation", {"parent_id": "ghost", "type": "conversation", "content": {}})
        assert result.text == "Parent node not found: ghost"

    @pytest.mark.asyncio
    async def test_edges(self, tools):
        a = json.loads(await _ok(tools, "create_node", type="diagramBox", content={}))
        b = json.loads(await _ok(tools, "create_node", type="diagramBox", content={}))
        edge = json.loads(await _ok(tools, "create_edge", source_id=a["id"], target_id=b["id"], label="x"))
        assert edge["label"] == "x"
        assert await _ok(tools, "delete_edge", id=edge["id"]) == f"Deleted edge: {edge['id']}"
        result = await tools.call("delete_edge", {"id": edge["id"]})
        assert result.text == f"Edge not found: {edge['id']}"


class TestContextTools:

    @pytest.mark.asyncio
    async def test_context_inheritance(self, tools):
        root = json.loads(await _ok(tools, "create_node", type="conversation", content={}, context="alpha"))
        child = json.loads(await _ok(
            tools, "branch_conversation", parent_id=root["id"], type="conversation", content={}
        ))
        await _ok(tools, "add_context", node_id=child["id"], text="beta", source="user")

        assert await _ok(tools, "get_context", node_id=child["id"]) == "alpha\n\nbeta"
        own = await _ok(tools, "get_context", node_id=root["id"], include_inherited=False)
        assert own == "alpha"

        path = json.loads(await _ok(tools, "get_conversation_path", node_id=child["id"]))
        assert [n["id"] for n in path] == [root["id"], child["id"]]

    @pytest.mark.asyncio
    async def test_empty_context(self, tools):
        node = json.loads(await _ok(tools, "create_node", type="conversation", content={}))
        assert await _ok(tools, "get_context", node_id=node["id"]) == "No context found"

    @pytest.mark.asyncio
    async def test_search_without_embeddings_is_empty(self, tools):
        assert json.loads(await _ok(tools, "search_context", query="anything")) == []

    @pytest.mark.asyncio
    async def test_conversation_path_missing(self, tools):
        result = await tools.call("get_conversation_path", {"node_id": "ghost"})
        assert result.is_error


class TestGraphTools:

    @pytest.mark.asyncio
    async def test_listing_export_stats(self, tools):
        await _ok(tools, "create_node", type="conversation", content={})
        await _ok(tools, "create_node", type="stickyNote", content={})

        notes = json.loads(await _ok(tools, "get_all_nodes", type="stickyNote"))
        assert [n["type"] for n in notes] == ["stickyNote"]
        exported = json.loads(await _ok(tools, "export_graph", board_id=DEFAULT_BOARD_ID))
        assert len(exported["nodes"]) == 2
        stats = json.loads(await _ok(tools, "get_stats"))
        assert stats["total_nodes"] == 2

    @pytest.mark.asyncio
    async def test_boards(self, tools):
        board = json.loads(await _ok(tools, "create_board", name="Sprint Plan"))
        assert board["slug"] == "sprint-plan"
        boards = json.loads(await _ok(tools, "list_boards"))
        assert {b["id"] for b in boards} == {DEFAULT_BOARD_ID, board["id"]}
        assert await _ok(tools, "delete_board", id=board["id"]) == f"Deleted board: {board['id']}"

    @pytest.mark.asyncio
    async def test_default_board_delete_refused(self, tools):
        result = await tools.call("delete_board", {"id": DEFAULT_BOARD_ID})
        assert result.is_error
        assert result.text == "Cannot delete the default board"

    @pytest.mark.asyncio
    async def test_duplicate_board_slug(self, tools):
        await _ok(tools, "create_board", name="Roadmap")
        result = await tools.call("create_board", {"name": "Roadmap"})
        assert result.is_error
        assert result.text.startswith("Constraint violation")

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self):
        manager = MagicMock()
        manager.get_node.side_effect = RuntimeError("disk on fire")
        result = await GraphTools(manager).call("get_node", {"id": "n1"})
        assert result.is_error
        assert result.text == "Error: disk on fire"


class TestLayoutAndReviewTools:

    @pytest.mark.asyncio
    async def test_move_node_and_layout(self, tools):
        a = json.loads(await _ok(tools, "create_node", type="stickyNote", content={"title": "A"}))
        await _ok(tools, "create_node", type="stickyNote", content={"title": "B", "position": {"x": 100, "y": 50}})

        layout = json.loads(await _ok(tools, "get_canvas_layout"))
        assert layout["overlaps"] == ['"B" overlaps with "A"']

        moved = await _ok(tools, "move_node", id=a["id"], x=1000, y=0)
        assert moved == 'Moved "A" to (1000, 0)'
        layout = json.loads(await _ok(tools, "get_canvas_layout"))
        assert layout["overlaps"] == "none"
        assert layout["total"] == 2

    @pytest.mark.asyncio
    async def test_review_round_trip(self, tools, manager):
        created = json.loads(await _ok(tools, "create_review", title="API doc", content="Endpoints..."))
        node = manager.get_node(created["id"])
        assert node.type == "richtext"

        summary = await _ok(tools, "get_review_summary", node_id=created["id"])
        assert summary.startswith("# Review Summary: API doc")
        assert "No comments were made." in summary

    @pytest.mark.asyncio
    async def test_review_missing(self, tools):
        result = await tools.call("get_review_summary", {"node_id": "ghost"})
        assert result.text == "Review node not found: ghost"
