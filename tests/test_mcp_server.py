"""
Tests for the MCP stdio server.

Builds a small index with SearchIndexBuilder and drives the JSON-RPC
handlers directly.
"""

import io
import json

import pytest

from indexer.build_index import SearchIndexBuilder
from pipelines.transform import write_markdown
from server.mcp_server import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    MCPServer,
    serve_stdio,
)


@pytest.fixture
def server(tmp_path):
    docs = tmp_path / "docs"
    evolution = tmp_path / "swift-evolution"
    write_markdown(docs, "documentation/swiftui/view.md",
                   "# View\n\nA type that represents part of your app's user interface.\n\n"
                   "## Overview\n\nConform to the View protocol and implement body.\n",
                   {"source_url": "https://developer.apple.com/documentation/swiftui/view"})
    write_markdown(docs, "documentation/swift/array.md",
                   "# Array\n\nAn ordered, random-access collection.\n", {})
    write_markdown(evolution, "SE-0296.md",
                   "# Async/await\n\nThis proposal introduces async functions to Swift.\n",
                   {"source_url": "https://github.com/swiftlang/swift-evolution/blob/main/proposals/0296-async-await.md"})
    (tmp_path / "secret.txt").write_text("do not serve", encoding="utf-8")

    roots = {"docs": docs, "swift-evolution": evolution}
    db = tmp_path / "search.db"
    SearchIndexBuilder(db, roots).build()
    return MCPServer(db, roots)


def request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize(self, server):
        response = await server.handle_request(request("initialize", {"clientInfo": {"name": "test"}}))

        result = response["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["serverInfo"]["name"] == "docharbor"
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_initialized_notification_has_no_response(self, server):
        response = await server.handle_request({"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert response is None
        assert server.session_initialized

    @pytest.mark.asyncio
    async def test_ping(self, server):
        assert (await server.handle_request(request("ping")))["result"] == {}


class TestErrors:

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        response = await server.handle_request(request("resources/subscribe"))
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_wrong_protocol_version(self, server):
        response = await server.handle_request({"jsonrpc": "1.0", "id": 7, "method": "ping"})
        assert response["id"] == 7
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_missing_index(self, tmp_path):
        server = MCPServer(tmp_path / "missing.db", {})
        response = await server.handle_request(request("resources/list"))
        assert "docharbor index" in response["error"]["message"]


class TestResources:

    @pytest.mark.asyncio
    async def test_list_is_paginated_by_path(self, server):
        first = (await server.handle_request(request("resources/list", {"limit": 2})))["result"]

        assert [r["uri"] for r in first["resources"]] == [
            "docharbor://docs/documentation/swift/array.md",
            "docharbor://docs/documentation/swiftui/view.md",
        ]
        assert first["nextCursor"] == "docs/documentation/swiftui/view.md"

        second = (await server.handle_request(
            request("resources/list", {"limit": 2, "cursor": first["nextCursor"]})))["result"]
        assert [r["name"] for r in second["resources"]] == ["Async/await"]
        assert "nextCursor" not in second

    @pytest.mark.asyncio
    async def test_read(self, server):
        uri = "docharbor://swift-evolution/SE-0296.md"
        result = (await server.handle_request(request("resources/read", {"uri": uri})))["result"]

        content = result["contents"][0]
        assert content["uri"] == uri
        assert content["mimeType"] == "text/markdown"
        assert "async functions" in content["text"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("uri", [
        "docharbor://docs/../secret.txt",
        "docharbor://docs/../../etc/passwd",
        "docharbor://unknown/file.md",
        "file:///etc/passwd",
    ])
    async def test_read_outside_roots_is_denied(self, server, uri):
        response = await server.handle_request(request("resources/read", {"uri": uri}))
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_read_missing_file(self, server):
        response = await server.handle_request(request("resources/read", {"uri": "docharbor://docs/nope.md"}))
        assert response["error"]["code"] == INVALID_PARAMS


class TestTools:

    @pytest.mark.asyncio
    async def test_tools_list(self, server):
        result = (await server.handle_request(request("tools/list")))["result"]
        assert [t["name"] for t in result["tools"]] == ["search_docs", "get_document_info"]

    @pytest.mark.asyncio
    async def test_search_finds_matching_chunk(self, server):
        result = (await server.handle_request(
            request("tools/call", {"name": "search_docs", "arguments": {"query": "protocol"}})))["result"]

        text = result["content"][0]["text"]
        assert "Found 1 results" in text
        assert "docharbor://docs/documentation/swiftui/view.md" in text
        assert "Section: Overview" in text

    @pytest.mark.asyncio
    async def test_search_can_filter_by_source(self, server):
        result = (await server.handle_request(request("tools/call", {
            "name": "search_docs", "arguments": {"query": "async", "source": "docs"}})))["result"]

        assert result["content"][0]["text"].startswith("No results")

    @pytest.mark.asyncio
    async def test_invalid_fts_syntax_falls_back_to_substring(self, server):
        result = (await server.handle_request(request("tools/call", {
            "name": "search_docs", "arguments": {"query": "random-access \""}})))["result"]

        assert "isError" not in result

    @pytest.mark.asyncio
    async def test_empty_query(self, server):
        result = (await server.handle_request(request("tools/call", {
            "name": "search_docs", "arguments": {"query": "  "}})))["result"]
        assert result["isError"] is True

    @pytest.mark.asyncio
    async def test_document_info(self, server):
        result = (await server.handle_request(request("tools/call", {
            "name": "get_document_info",
            "arguments": {"path": "docharbor://docs/documentation/swiftui/view.md"}})))["result"]

        text = result["content"][0]["text"]
        assert "Title: View" in text
        assert "Source: docs" in text
        assert "Chunks: 2" in text

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server):
        response = await server.handle_request(request("tools/call", {"name": "rm", "arguments": {}}))
        assert response["error"]["code"] == INVALID_PARAMS


@pytest.mark.asyncio
async def test_serve_stdio_answers_each_line(server):
    stdin = io.StringIO("\n".join([
        json.dumps(request("ping", request_id=1)),
        "{not json",
        json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
        "",
        json.dumps(request("tools/list", request_id=2)),
    ]) + "\n")
    stdout = io.StringIO()

    await serve_stdio(server, stdin=stdin, stdout=stdout)

    responses = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [r.get("id") for r in responses] == [1, None, 2]
    assert responses[1]["error"]["code"] == PARSE_ERROR
