"""sovclean server: stdio JSON-RPC 2.0 loop."""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from sovclean.config import SERVER_VERSION, Policy, get_token_secret, load_policy
from sovclean.errors import err
from sovclean.log import get_logger
from sovclean.store import Store
from sovclean.tools import (
    handle_clean_project,
    handle_get_report,
    handle_get_server_info,
    handle_plan_export,
)

_PROJECT_ONLY = {
    "type": "object",
    "properties": {"projectId": {"type": "string", "minLength": 1}},
    "required": ["projectId"],
    "additionalProperties": False,
}

TOOLS_LIST: list[dict[str, Any]] = [
    {
        "name": "clean_project",
        "description": (
            "Clean a project tree of proprietary platform code, generate compatibility "
            "shims, verify, score and audit the result. Binary files pass through untouched."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "projectId": {"type": "string", "minLength": 1},
                "files": {
                    "type": "object",
                    "additionalProperties": {
                        "oneOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "properties": {"base64": {"type": "string"}},
                                "required": ["base64"],
                            },
                        ]
                    },
                },
                "removeList": {"type": "array", "items": {"type": "string"}},
                "includeFiles": {"type": "boolean"},
            },
            "required": ["projectId", "files"],
            "additionalProperties": False,
        },
        "annotations": {"readOnlyHint": False},
    },
    {
        "name": "get_report",
        "description": "Return the sovereignty report and audit of the latest run for a project.",
        "inputSchema": _PROJECT_ONLY,
        "annotations": {"readOnlyHint": True},
    },
    {
        "name": "plan_export",
        "description": (
            "Hand the latest run to packaging. Refused when the verdict is 'blocked' or the "
            "audit failed; otherwise returns an export token bound to the final tree digest."
        ),
        "inputSchema": _PROJECT_ONLY,
        "annotations": {"readOnlyHint": True},
    },
    {
        "name": "get_server_info",
        "description": "Server metadata: version, rule catalog version, policy and capabilities.",
        "inputSchema": {"type": "object", "properties": {}, "additionalProperties": False},
        "annotations": {"readOnlyHint": True},
    },
]


class SovcleanServer:
    """Tool routing over stdio JSON-RPC."""

    def __init__(self, policy: Policy, store: Store, token_secret: bytes) -> None:
        self.policy = policy
        self.store = store
        self.token_secret = token_secret
        self.log = get_logger("server")

    def handle_rpc(self, req: dict[str, Any]) -> dict[str, Any]:
        """Route a single JSON-RPC request to the appropriate handler."""
        rpc_id = req.get("id")
        method = req.get("method", "")
        params = req.get("params") or {}

        if method == "tools/list":
            return self._rpc_ok(rpc_id, {"tools": TOOLS_LIST})

        handlers = {
            "clean_project": lambda p: handle_clean_project(p, self.store, self.policy),
            "get_report": lambda p: handle_get_report(p, self.store),
            "plan_export": lambda p: handle_plan_export(p, self.store, self.token_secret),
            "get_server_info": lambda p: handle_get_server_info(p, self.policy),
        }

        handler = handlers.get(method)
        if not handler:
            return {
                "jsonrpc": "2.0",
                "id": rpc_id,
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }

        if not isinstance(params, dict):
            return self._rpc_ok(rpc_id, err("E_INVALID_REQUEST", "params must be an object.", {}))

        try:
            result = handler(params)
        except Exception as e:
            self.log.exception("rpc.internal_error", e, method=method)
            return self._rpc_ok(
                rpc_id,
                err("E_INTERNAL", "Unhandled server error.", {"exception": str(e)}),
            )
        if not result.get("ok"):
            self.log.info("rpc.refused", method=method, code=result["error"]["code"])
        return self._rpc_ok(rpc_id, result)

    def _rpc_ok(self, rpc_id: Any, result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": rpc_id, "result": result}

    def serve(self, stdin: TextIO, stdout: TextIO) -> None:
        for line in stdin:
            line = line.strip()
            if not line:
                continue
            try:
                req = json.loads(line)
            except json.JSONDecodeError:
                resp = {
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {"code": -32700, "message": "Parse error"},
                }
                stdout.write(json.dumps(resp) + "\n")
                stdout.flush()
                continue

            if not isinstance(req, dict):
                resp = {
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {"code": -32600, "message": "Invalid Request"},
                }
            else:
                resp = self.handle_rpc(req)
            stdout.write(json.dumps(resp) + "\n")
            stdout.flush()


def main() -> None:
    """Entry point: load config, run stdio JSON-RPC loop."""
    policy = load_policy()
    token_secret = get_token_secret()
    store = Store()

    get_logger("server").info("server.start", version=SERVER_VERSION)
    server = SovcleanServer(policy, store, token_secret)
    server.serve(sys.stdin, sys.stdout)


if __name__ == "__main__":
    main()
