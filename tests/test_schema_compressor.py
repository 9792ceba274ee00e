"""Tests for SchemaCompressor naming, truncation and reverse lookup."""
import copy
import pytest
from src.mcpbridge.models import ToolWithServer
from src.mcpbridge.retrieval.compressor import (
    SchemaCompressor,
    make_compressed_name,
    sanitize_name,
    truncate_description,
    truncate_property_description,
)


def _make_tool(name="create_page", server="notion", description="Create a page. Returns its id.", schema=None):
    return ToolWithServer(
        name=name,
        server_name=server,
        description=description,
        input_schema=schema
        if schema is not None
        else {
            "type": "object",
            "properties": {
                "title": {
                    "type": "string",
                    "description": "Page title",
                    "examples": ["Roadmap"],
                    "pattern": "^.+$",
                    "default": "Untitled",
                },
                "parent_id": {"type": "string"},
                "icon": {"type": "string"},
            },
            "required": ["title"],
        },
    )


class TestNaming:
    def test_sanitize_name(self):
        assert sanitize_name("My-Server.v2") == "my_server_v2"
        assert sanitize_name("a  b__c") == "a_b_c"

    def test_compressed_name_format(self):
        assert make_compressed_name("Notion", "create-page") == "mcp_notion_create_page"


class TestTruncation:
    def test_first_sentence_only(self):
        assert truncate_description("Create a page. Returns its id.") == "Create a page"

    def test_stops_at_newline_and_question_mark(self):
        assert truncate_description("List things\nmore detail") == "List things"
        assert truncate_description("Ready? Then go") == "Ready"

    def test_leading_terminator_keeps_whole_text(self):
        assert truncate_description(".hidden file reader") == ".hidden file reader"

    def test_long_text_cut_at_word_boundary(self):
        desc = "word " * 30
        result = truncate_description(desc)
        assert len(result) <= 80
        assert result.endswith("…")
        assert not result[:-1].endswith(" ")

    def test_long_word_hard_cut(self):
        result = truncate_description("x" * 200)
        assert result == "x" * 79 + "…"

    def test_short_text_untouched(self):
        assert truncate_description("  Short  ") == "Short"

    def test_property_description_limit(self):
        result = truncate_property_description("alpha " * 20)
        assert len(result) <= 60
        assert result.endswith("…")


class TestSchemaCompressor:
    def setup_method(self):
        self.compressor = SchemaCompressor()

    def test_keeps_only_required_properties(self):
        compressed = self.compressor.compress(_make_tool())
        assert compressed.name == "mcp_notion_create_page"
        assert compressed.short_description == "Create a page"
        assert compressed.parameters == {
            "type": "object",
            "properties": {"title": {"type": "string", "description": "Page title"}},
            "required": ["title"],
        }

    def test_optional_hint_lists_dropped_properties(self):
        compressed = self.compressor.compress(_make_tool())
        assert compressed.optional_hint == "Also accepts: parent_id, icon"
        assert compressed.description == "Create a page. Also accepts: parent_id, icon"

    def test_no_optional_properties_means_no_hint(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        compressed = self.compressor.compress(_make_tool(schema=schema))
        assert compressed.optional_hint is None
        assert compressed.description == "Create a page"

    def test_no_required_omits_required_key(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        compressed = self.compressor.compress(_make_tool(schema=schema))
        assert compressed.parameters == {"type": "object", "properties": {}}

    def test_missing_schema(self):
        tool = ToolWithServer(name="ping", server_name="misc")
        compressed = self.compressor.compress(tool)
        assert compressed.parameters == {"type": "object", "properties": {}}
        assert compressed.short_description == "misc/ping"

    def test_never_mutates_original(self):
        tool = _make_tool()
        snapshot = copy.deepcopy(tool)
        self.compressor.compress(tool)
        assert tool == snapshot

    def test_compression_is_deterministic(self):
        tool = _make_tool()
        assert self.compressor.compress(tool) == self.compressor.compress(tool)

    def test_decompress_passes_params_through(self):
        tool = _make_tool()
        compressed = self.compressor.compress(tool)
        params = {"title": "Roadmap", "icon": "🚀", "unknown": 1}
        result = self.compressor.decompress(compressed.name, params)
        assert result.server_name == "notion"
        assert result.tool_name == "create_page"
        assert result.full_params is params
        assert self.compressor.get_original(compressed.name) is tool

    def test_unknown_name(self):
        assert self.compressor.decompress("mcp_nope_nothing", {}) is None
        assert self.compressor.get_original("mcp_nope_nothing") is None

    def test_last_write_wins_on_name_collision(self):
        first = _make_tool(server="my-server")
        second = _make_tool(server="my_server")
        self.compressor.compress(first)
        self.compressor.compress(second)
        assert self.compressor.get_original("mcp_my_server_create_page") is second

    @pytest.mark.parametrize("required", [["title", "title"], ("title",)])
    def test_required_list_is_normalised(self, required):
        schema = {"type": "object", "properties": {"title": {"type": "string"}}, "required": required}
        compressed = self.compressor.compress(_make_tool(schema=schema))
        assert compressed.parameters["required"] == ["title"]
