"""
ApiFlora MCP Server — JSON-RPC 2.0 over stdio transport.

Bridges stdio-only MCP clients to the HTTP endpoint at /api/mcp:
- Claude Desktop
- Cursor
- Windsurf
- Any MCP-compatible AI agent

Tools (served by the backend):
- search_apis: Find APIs by keyword or use case
- get_api_detail: Overview and endpoint index, or one endpoint in full
- get_live_docs: Documentation page as markdown

Usage:
    python mcp_server.py

Configuration for Claude Desktop (claude_desktop_config.json):
    {
        "mcpServers": {
            "apiflora": {
                "command": "python",
                "args": ["/path/to/mcp_server.py"],
                "env": {"APIFLORA_URL": "https://apiflora.com"}
            }
        }
    }
"""

import json
import os
import sys

import httpx

# Default base URL, override with the APIFLORA_URL env var
BASE_URL = os.environ.get("APIFLORA_URL", "http://localhost:8000")

# Live extraction can take a while on the first call for an API
REQUEST_TIMEOUT = 120


# ── MCP Protocol Helpers ─────────────────────────────────────────────────────
def write_message(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def send_error(id_val, code, message, data=None):
    """Send a JSON-RPC 2.0 error response."""
    error = {"code": code, "message": message}
    if data:
        error["data"] = data
    write_message({"jsonrpc": "2.0", "id": id_val, "error": error})


# ── Forwarding ───────────────────────────────────────────────────────────────
def forward(request, client=None):
    """
    POST one JSON-RPC message to the backend and return its response,
    or None when the backend has nothing to say (notifications).
    """
    http = client or httpx
    resp = http.post(f"{BASE_URL}/api/mcp", json=request, timeout=REQUEST_TIMEOUT)
    if resp.status_code == 204 or not resp.content:
        return None
    resp.raise_for_status()
    return resp.json()


def handle_request(request, client=None):
    """Process a single JSON-RPC 2.0 request."""
    id_val = request.get("id") if isinstance(request, dict) else None

    try:
        response = forward(request, client)
    except httpx.HTTPStatusError as e:
        send_error(id_val, -32603, f"Backend error {e.response.status_code}", e.response.text[:500])
        return
    except httpx.HTTPError as e:
        send_error(id_val, -32603, f"Backend unreachable at {BASE_URL}: {e}")
        return

    if response is not None:
        write_message(response)


# ── Main Loop ────────────────────────────────────────────────────────────────
def main():
    """Run the MCP server — reads JSON-RPC messages from stdin."""
    sys.stderr.write("ApiFlora MCP server v1.0.0 started\n")
    sys.stderr.write(f"Backend URL: {BASE_URL}\n")
    sys.stderr.flush()

    with httpx.Client() as client:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue

            try:
                request = json.loads(line)
            except json.JSONDecodeError:
                send_error(None, -32700, "Parse error: invalid JSON")
                continue

            try:
                handle_request(request, client)
            except Exception as e:
                sys.stderr.write(f"Error: {e}\n")
                sys.stderr.flush()
                send_error(None, -32603, f"Internal error: {e}")


if __name__ == "__main__":
    main()
