# DocHarbor MCP Server - JSON-RPC 2.0 over stdio
# Serves the indexed documentation as Model Context Protocol resources and tools

import sys, json, pathlib, sqlite3, asyncio, logging
from typing import Dict, Any, Optional, TextIO, Union

from config.settings import MCP_SERVER_NAME, VERSION

logger = logging.getLogger(__name__)

URI_SCHEME = "docharbor://"
PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class MCPError(Exception):
    """Error reported to the client as a JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class MCPServer:
    def __init__(self, db_path: Union[str, pathlib.Path],
                 roots: Dict[str, Union[str, pathlib.Path]]):
        """
        Args:
            db_path: Search database built by ``SearchIndexBuilder``
            roots: Source name -> directory, as passed to the index builder.
                ``resources/read`` never serves files outside these roots.
        """
        self.db_path = pathlib.Path(db_path).expanduser()
        self.roots = {name: pathlib.Path(p).expanduser().resolve() for name, p in roots.items()}
        self.capabilities = {
            "resources": {
                "subscribe": False,
                "listChanged": False
            },
            "tools": {
                "listChanged": False
            }
        }
        self.server_info = {
            "name": MCP_SERVER_NAME,
            "version": VERSION
        }
        self.session_initialized = False

    def db_connection(self):
        """Get database connection with row factory"""
        if not self.db_path.exists():
            raise MCPError(INTERNAL_ERROR, f"Search index not found at {self.db_path}; run 'docharbor index' first")
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    async def handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle MCP initialize request"""
        client_info = params.get("clientInfo", {})
        logger.info(f"Initializing MCP session with client: {client_info.get('name', 'unknown')}")

        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info
        }

    async def handle_initialized(self, params: Dict[str, Any]) -> None:
        """Handle MCP initialized notification"""
        self.session_initialized = True
        logger.info("MCP session initialized")

    async def handle_resources_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """List indexed documents, paginated by path"""
        cursor = params.get("cursor")
        limit = max(1, min(int(params.get("limit", 100)), 200))

        conn = self.db_connection()
        try:
            if cursor:
                query = "SELECT path, title, source_url FROM documents WHERE path > ? ORDER BY path LIMIT ?"
                rows = conn.execute(query, (cursor, limit)).fetchall()
            else:
                query = "SELECT path, title, source_url FROM documents ORDER BY path LIMIT ?"
                rows = conn.execute(query, (limit,)).fetchall()

            resources = []
            for row in rows:
                resources.append({
                    "uri": f"{URI_SCHEME}{row['path']}",
                    "name": row['title'] or row['path'],
                    "description": f"Documentation from {row['source_url'] or 'local'}",
                    "mimeType": "text/markdown"
                })

            result = {"resources": resources}
            if len(rows) == limit:
                result["nextCursor"] = rows[-1]['path']

            return result
        finally:
            conn.close()

    def resolve_path(self, path: str) -> pathlib.Path:
        """Map ``<source>/<relative path>`` to a file inside its root."""
        source, _, rel = path.partition("/")
        root = self.roots.get(source)
        if root is None or not rel:
            raise MCPError(INVALID_PARAMS, f"Unknown resource path: {path}")

        file_path = (root / rel).resolve()
        if file_path != root and root not in file_path.parents:
            raise MCPError(INVALID_PARAMS, "Access denied: path outside allowed directories")
        return file_path

    async def handle_resources_read(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Read a specific documentation resource"""
        uri = params.get("uri", "")
        if not uri.startswith(URI_SCHEME):
            raise MCPError(INVALID_PARAMS, f"Invalid URI scheme: {uri}")

        file_path = self.resolve_path(uri[len(URI_SCHEME):])
        if not file_path.is_file():
            raise MCPError(INVALID_PARAMS, f"Resource not found: {uri}")

        return {
            "contents": [{
                "uri": uri,
                "mimeType": "text/markdown",
                "text": file_path.read_text(encoding="utf-8", errors="ignore")
            }]
        }

    async def handle_tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """List available MCP tools"""
        return {
            "tools": [
                {
                    "name": "search_docs",
                    "description": "Search the crawled documentation using full-text search",
                    "inputSchema": {
                        "type": "object",
                        "properties": {
                            "query": {
                                "type": "string",
                                "description": "Search query"
                            },
                            "source": {
                                "type": "string",
                                "description": "Restrict results to one source (e.g. docs, swift-evolution)"
                            },
                            "limit": {
                                "type": "integer",
                                "description": "Maximum number of results",
                                "default": 5,
                                "minimum": 1,
                                "maximum": 20
                            }
                        },
                        "required": ["query"]
                    }
                },
                {
                    "name": "get_document_info",
                    "description": "Get metadata about a specific document",
                    "inputSchema": {
                        "type": "object",
                        "properties": {
                            "path": {
                                "type": "string",
                                "description": "Document path as listed by resources/list"
                            }
                        },
                        "required": ["path"]
                    }
                }
            ]
        }

    async def handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute MCP tool calls"""
        name = params.get("name")
        arguments = params.get("arguments") or {}

        if name == "search_docs":
            return await self._tool_search_docs(arguments)
        elif name == "get_document_info":
            return await self._tool_get_document_info(arguments)
        else:
            raise MCPError(INVALID_PARAMS, f"Unknown tool: {name}")

    async def _tool_search_docs(self, args: Dict[str, Any]) -> Dict[str, Any]:
        query = str(args.get("query", ""))
        limit = max(1, min(int(args.get("limit", 5)), 20))
        source = args.get("source")

        if not query.strip():
            return {"content": [{"type": "text", "text": "Error: Empty search query"}], "isError": True}

        source_filter = "AND d.source = ?" if source else ""
        extra = (source,) if source else ()

        conn = self.db_connection()
        try:
            try:
                rows = conn.execute(f"""
                    SELECT d.path, d.title, d.source_url, c.heading, c.anchor,
                           snippet(chunks_fts, 0, '**', '**', '...', 12) AS snippet
                    FROM chunks_fts
                    JOIN chunks c ON c.id = chunks_fts.rowid
                    JOIN documents d ON d.id = c.document_id
                    WHERE chunks_fts MATCH ? {source_filter}
                    ORDER BY rank
                    LIMIT ?
                """, (query, *extra, limit)).fetchall()
            except sqlite3.OperationalError:
                # Not valid FTS5 query syntax; fall back to a substring match
                rows = conn.execute(f"""
                    SELECT d.path, d.title, d.source_url, c.heading, c.anchor,
                           substr(c.text, 1, 240) as snippet
                    FROM chunks c
                    JOIN documents d ON d.id = c.document_id
                    WHERE c.text LIKE ? {source_filter}
                    LIMIT ?
                """, (f"%{query}%", *extra, limit)).fetchall()

            if not rows:
                return {"content": [{"type": "text", "text": f"No results found for: {query}"}]}

            results = []
            for row in rows:
                result_text = f"**{row['title']}**\n"
                if row['heading']:
                    result_text += f"Section: {row['heading']}\n"
                result_text += f"URI: {URI_SCHEME}{row['path']}\n"
                if row['source_url']:
                    result_text += f"Source: {row['source_url']}\n"
                result_text += f"\n{row['snippet']}\n"
                results.append(result_text)

            return {
                "content": [{
                    "type": "text",
                    "text": f"Found {len(results)} results for '{query}':\n\n" + "\n---\n".join(results)
                }]
            }
        finally:
            conn.close()

    async def _tool_get_document_info(self, args: Dict[str, Any]) -> Dict[str, Any]:
        path = str(args.get("path", ""))
        if path.startswith(URI_SCHEME):
            path = path[len(URI_SCHEME):]
        if not path:
            return {"content": [{"type": "text", "text": "Error: No path provided"}], "isError": True}

        conn = self.db_connection()
        try:
            row = conn.execute(
                "SELECT id, path, source, title, source_url, captured_at, hash FROM documents WHERE path = ?",
                (path,)
            ).fetchone()

            if not row:
                return {"content": [{"type": "text", "text": f"Document not found: {path}"}], "isError": True}

            chunk_count = conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (row['id'],)
            ).fetchone()[0]

            info_text = "**Document Information**\n\n"
            info_text += f"Path: {row['path']}\n"
            info_text += f"Source: {row['source']}\n"
            info_text += f"Title: {row['title']}\n"
            if row['source_url']:
                info_text += f"Source URL: {row['source_url']}\n"
            if row['captured_at']:
                info_text += f"Captured: {row['captured_at']}\n"
            info_text += f"Chunks: {chunk_count}\n"
            info_text += f"Hash: {row['hash'][:16]}...\n"

            return {"content": [{"type": "text", "text": info_text}]}
        finally:
            conn.close()

    async def handle_request(self, request_data: Any) -> Optional[Dict[str, Any]]:
        """Dispatch one JSON-RPC message; returns None for notifications"""
        request_id = request_data.get("id") if isinstance(request_data, dict) else None
        try:
            if not isinstance(request_data, dict) or request_data.get("jsonrpc") != "2.0":
                raise MCPError(INVALID_REQUEST, "Invalid JSON-RPC version")

            method = request_data.get("method")
            params = request_data.get("params") or {}

            if not method:
                raise MCPError(INVALID_REQUEST, "Missing method")

            if method in ("initialized", "notifications/initialized"):
                await self.handle_initialized(params)
                return None

            handlers = {
                "initialize": self.handle_initialize,
                "resources/list": self.handle_resources_list,
                "resources/read": self.handle_resources_read,
                "tools/list": self.handle_tools_list,
                "tools/call": self.handle_tools_call,
            }
            if method == "ping":
                result = {}
            elif method in handlers:
                result = await handlers[method](params)
            else:
                raise MCPError(METHOD_NOT_FOUND, f"Unknown method: {method}")

            return {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": result
            }

        except MCPError as e:
            logger.warning(f"Request failed: {e.message}")
            return _error_response(request_id, e.code, e.message)
        except Exception as e:
            logger.error(f"Error handling request: {e}")
            return _error_response(request_id, INTERNAL_ERROR, str(e))


def _error_response(request_id, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {
            "code": code,
            "message": message
        }
    }


async def serve_stdio(server: MCPServer, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout):
    """Read newline-delimited JSON-RPC from ``stdin`` until EOF."""
    logger.info(f"Starting MCP server on stdio (index: {server.db_path})")
    loop = asyncio.get_running_loop()

    while True:
        line = await loop.run_in_executor(None, stdin.readline)
        if not line:
            break
        if not line.strip():
            continue

        try:
            request_data = json.loads(line)
        except json.JSONDecodeError as e:
            response = _error_response(None, PARSE_ERROR, f"Parse error: {e}")
        else:
            response = await server.handle_request(request_data)

        if response:  # Don't send response for notifications
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()

    logger.info("MCP client disconnected")
