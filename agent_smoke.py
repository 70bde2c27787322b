"""
🤖 Agent Simulation for ApiFlora v1.0.0
=========================================
Walks a running server the way an AI agent would:
  1. Checks health (GET /health)
  2. Discovers the MCP server (GET /.well-known/mcp.json, GET /api/mcp)
  3. Reads the crawler index (GET /llms.txt)
  4. Lists brands for the web UI (GET /api/apis)
  5. Searches the catalog (GET /api/search)
  6. Speaks MCP: initialize, tools/list, tools/call
  7. Checks the JSON-RPC error codes
  8. Checks the standardized HTTP error format

Run:  python agent_smoke.py
"""

import json
import os
import sys

import requests

BASE = os.environ.get("BASE_URL", "http://localhost:8000")
QUERY = os.environ.get("SMOKE_QUERY", "payments")
PASS = "✅"
FAIL = "❌"
results = []


def check(name, passed, detail=""):
    status = PASS if passed else FAIL
    results.append((name, passed))
    print(f"  {status} {name}")
    if detail:
        print(f"     ↳ {detail}")
    print()


def rpc(method, params=None, id_val=1, timeout=120):
    body = {"jsonrpc": "2.0", "id": id_val, "method": method}
    if params is not None:
        body["params"] = params
    return requests.post(f"{BASE}/api/mcp", json=body, timeout=timeout)


def main():
    print()
    print("=" * 60)
    print("🤖  APIFLORA v1.0.0 — Agent Simulation")
    print("=" * 60)
    print()

    # ── Step 1: Health ────────────────────────────────────────
    print("─── Step 1: Health Check ───")
    try:
        r = requests.get(f"{BASE}/health", timeout=5)
        data = r.json()
        check(
            "Server is healthy",
            data["status"] == "healthy",
            f"version={data['version']}, providers={data.get('providers')}"
        )
        check("Cache stats in health", "cache" in data, f"backend={data['cache'].get('backend')}")
    except (requests.RequestException, ValueError, KeyError) as e:
        check("Server is healthy", False, str(e))
        print("⛔ Server not running! Start it with: python main.py")
        sys.exit(1)

    # ── Step 2: MCP discovery ─────────────────────────────────
    print("─── Step 2: MCP Discovery ───")
    r = requests.get(f"{BASE}/.well-known/mcp.json", timeout=5)
    manifest = r.json()
    tool_names = [t["name"] for t in manifest.get("tools", [])]
    check(
        "Manifest lists the three tools",
        set(tool_names) == {"search_apis", "get_api_detail", "get_live_docs"},
        f"tools={tool_names}"
    )
    check(
        "Manifest points at /api/mcp",
        manifest.get("transport", {}).get("url", "").endswith("/api/mcp"),
        manifest.get("transport", {}).get("url", "")
    )

    r = requests.get(f"{BASE}/api/mcp", timeout=5)
    check("GET /api/mcp describes the server", r.status_code == 200 and "instructions" in r.json())

    # ── Step 3: llms.txt ──────────────────────────────────────
    print("─── Step 3: llms.txt ───")
    r = requests.get(f"{BASE}/llms.txt", timeout=30)
    check(
        "llms.txt is plain text with an index",
        r.status_code == 200 and "## API Index" in r.text,
        f"{len(r.text.splitlines())} lines"
    )

    # ── Step 4: Listing ───────────────────────────────────────
    print("─── Step 4: Brand Listing ───")
    r = requests.get(f"{BASE}/api/apis", params={"page": 1}, timeout=30)
    listing = r.json()
    check(
        "First page has at most 24 brands",
        r.status_code == 200 and len(listing["brands"]) <= 24,
        f"brands={len(listing['brands'])}"
    )
    first_brand = listing["brands"][0]["id"] if listing["brands"] else None

    if first_brand:
        r = requests.get(f"{BASE}/api/brand/{first_brand}", timeout=30)
        check(
            f"Brand detail for {first_brand}",
            r.status_code == 200 and "sections" in r.json(),
            f"endpoints={r.json().get('endpoint_count')}"
        )

    r = requests.get(f"{BASE}/api/brand/definitely-not-a-real-api-xyz", timeout=30)
    check("Unknown brand → 404", r.status_code == 404, f"status={r.status_code}")

    # ── Step 5: Search ────────────────────────────────────────
    print("─── Step 5: Search ───")
    r = requests.get(f"{BASE}/api/search", params={"q": QUERY, "limit": 5}, timeout=60)
    found = r.json()
    check(
        f"Search '{QUERY}' returns results",
        found.get("count", 0) > 0,
        f"count={found.get('count')}, source={found.get('source')}"
    )
    check("Search respects limit", len(found.get("apis", [])) <= 5)

    r = requests.get(f"{BASE}/api/search", params={"q": "   "}, timeout=10)
    check("Blank query → source=empty", r.json().get("source") == "empty", json.dumps(r.json()))

    # ── Step 6: MCP tools ─────────────────────────────────────
    print("─── Step 6: MCP Tools ───")
    r = rpc("initialize", {"protocolVersion": "2024-11-05", "capabilities": {}})
    init = r.json().get("result", {})
    check("initialize", init.get("serverInfo", {}).get("name") == "apiflora", json.dumps(init)[:120])

    r = rpc("tools/list")
    check("tools/list", len(r.json().get("result", {}).get("tools", [])) == 3)

    r = rpc("tools/call", {"name": "search_apis", "arguments": {"query": QUERY, "limit": 3}})
    text = r.json()["result"]["content"][0]["text"]
    check(
        "search_apis payload carries the untrusted-data notice",
        text.startswith("Note: All fields below are sourced from third-party API documentation."),
        text[:80]
    )

    api_id = found["apis"][0]["id"] if found.get("apis") else None
    if api_id:
        print(f"  … extracting {api_id} live (first call can take a minute)")
        r = rpc("tools/call", {"name": "get_api_detail", "arguments": {"api_id": api_id}}, timeout=180)
        text = r.json()["result"]["content"][0]["text"]
        check(f"get_api_detail {api_id}", "endpoint_count" in text or "not found" in text, text[:120])

        r = rpc("tools/call", {"name": "get_live_docs", "arguments": {"api_id": api_id}}, timeout=60)
        text = r.json()["result"]["content"][0]["text"]
        check(f"get_live_docs {api_id}", "markdown" in text or "not found" in text, text[:120])

    # ── Step 7: JSON-RPC errors ───────────────────────────────
    print("─── Step 7: JSON-RPC Errors ───")
    r = rpc("tools/call", {"name": "no_such_tool", "arguments": {}})
    check("Unknown tool → -32601", r.json().get("error", {}).get("code") == -32601)

    r = rpc("tools/call", {"name": "get_api_detail", "arguments": {}})
    check("Missing api_id → -32602", r.json().get("error", {}).get("code") == -32602)

    r = requests.post(f"{BASE}/api/mcp", data="{not json", headers={"Content-Type": "application/json"}, timeout=5)
    check("Malformed body → -32700", r.json().get("error", {}).get("code") == -32700)

    # ── Step 8: HTTP error format ─────────────────────────────
    print("─── Step 8: Error Response Format ───")
    r = requests.get(f"{BASE}/api/brand/definitely-not-a-real-api-xyz", timeout=30)
    try:
        error_data = r.json()
        check(
            "Error has standardized format",
            {"error", "detail", "code"} <= set(error_data),
            f"keys={list(error_data.keys())}"
        )
    except ValueError:
        check("Error has standardized format", False, "Not JSON response")

    # ── Summary ───────────────────────────────────────────────
    total = len(results)
    passed = sum(1 for _, p in results if p)
    failed = total - passed

    print("=" * 60)
    print(f"📊  RESULTS: {passed}/{total} passed", end="")
    if failed:
        print(f"  ({failed} failed)")
    else:
        print("  — ALL CHECKS PASSED! 🎉")
    print("=" * 60)
    print()

    if failed:
        print("Failed checks:")
        for name, p in results:
            if not p:
                print(f"  {FAIL} {name}")
        sys.exit(1)


if __name__ == "__main__":
    main()
