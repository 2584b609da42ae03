"""Tool handlers: clean_project, get_report, plan_export, get_server_info."""

from __future__ import annotations

import base64
import binascii
import sys
from typing import Any

from sovclean.auditor import render_report
from sovclean.config import SERVER_NAME, SERVER_VERSION, TOKEN_TTL_SECONDS, Policy
from sovclean.errors import FatalInputError, err, ok
from sovclean.export import plan_export
from sovclean.models import VirtualTree
from sovclean.pipeline import clean
from sovclean.rules import build_catalog
from sovclean.store import Store
from sovclean.verifier import MAX_RETRY_PASSES


def _require_project_id(args: dict[str, Any]) -> str | None:
    project_id = args.get("projectId")
    if not isinstance(project_id, str) or not project_id.strip():
        return None
    return project_id


def decode_files(raw: Any) -> dict[str, str | bytes]:
    """Wire form -> path mapping. Binary files arrive as {"base64": ...}.

    Raises ValueError on anything else.
    """
    if not isinstance(raw, dict):
        raise ValueError("'files' must be an object mapping path -> content")
    files: dict[str, str | bytes] = {}
    for path, value in raw.items():
        if isinstance(value, str):
            files[path] = value
        elif isinstance(value, dict) and isinstance(value.get("base64"), str):
            try:
                files[path] = base64.b64decode(value["base64"], validate=True)
            except binascii.Error as exc:
                raise ValueError(f"Invalid base64 content for {path}") from exc
        else:
            raise ValueError(f"Unsupported content for {path}")
    return files


def encode_tree(tree: VirtualTree) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for path, content in tree.to_mapping().items():
        if isinstance(content, bytes):
            out[path] = {"base64": base64.b64encode(content).decode("ascii")}
        else:
            out[path] = content
    return out


def handle_clean_project(
    args: dict[str, Any],
    store: Store,
    policy: Policy,
) -> dict[str, Any]:
    """Run the cleaning pipeline on a submitted tree and keep the run."""
    project_id = _require_project_id(args)
    if project_id is None:
        return err("E_INVALID_REQUEST", "'projectId' must be a non-empty string.", {})

    try:
        files = decode_files(args.get("files"))
    except ValueError as e:
        return err("E_INVALID_REQUEST", str(e), {"projectId": project_id})

    remove_list = args.get("removeList") or []
    if not isinstance(remove_list, list) or not all(isinstance(p, str) for p in remove_list):
        return err("E_INVALID_REQUEST", "'removeList' must be a list of paths.", {"projectId": project_id})

    try:
        result = clean(files, remove_list, policy=policy, project_id=project_id)
    except FatalInputError as e:
        return err(
            "E_FATAL_INPUT",
            str(e),
            {"projectId": project_id, **e.details},
            next_steps=[{"action": "FIX_INPUT", "hint": "Submit a non-empty tree within the size limits."}],
        )

    run = store.put_run(project_id, result)
    payload: dict[str, Any] = {
        "runId": run.run_id,
        "report": result.report.to_dict(),
        "audit": result.audit.to_dict(),
    }
    if args.get("includeFiles", True):
        payload["files"] = encode_tree(result.final_tree)
    return ok(payload)


def handle_get_report(
    args: dict[str, Any],
    store: Store,
) -> dict[str, Any]:
    """Return the report and audit of the latest run for a project."""
    project_id = _require_project_id(args)
    if project_id is None:
        return err("E_INVALID_REQUEST", "'projectId' must be a non-empty string.", {})
    run = store.get_run(project_id)
    if not run:
        return err("E_NOT_FOUND", "No run for this project.", {"projectId": project_id})
    return ok({
        "runId": run.run_id,
        "report": run.result.report.to_dict(),
        "audit": run.result.audit.to_dict(),
        "auditReport": render_report(run.result.audit),
    })


def handle_plan_export(
    args: dict[str, Any],
    store: Store,
    token_secret: bytes,
) -> dict[str, Any]:
    """Hand the latest run to packaging, or refuse."""
    project_id = _require_project_id(args)
    if project_id is None:
        return err("E_INVALID_REQUEST", "'projectId' must be a non-empty string.", {})
    run = store.get_run(project_id)
    if not run:
        return err("E_NOT_FOUND", "No run for this project.", {"projectId": project_id})
    return plan_export(project_id, run.result, token_secret)


def handle_get_server_info(
    _args: dict[str, Any],
    policy: Policy,
) -> dict[str, Any]:
    """Server metadata: name, version, catalog, policy, capabilities."""
    catalog = build_catalog(policy.extra_denied_packages)
    return ok({
        "name": SERVER_NAME,
        "version": SERVER_VERSION,
        "python": sys.version.split()[0],
        "catalogVersion": catalog.version,
        "rules": len(catalog.rules),
        "policy": {
            "sovereignThreshold": policy.sovereign_threshold,
            "blockedThreshold": policy.blocked_threshold,
            "weights": {
                "critical": policy.weight_critical,
                "major": policy.weight_major,
                "minor": policy.weight_minor,
            },
            "quarantineFactor": policy.quarantine_factor,
            "maxFiles": policy.max_files,
            "maxTotalChars": policy.max_total_chars,
            "maxFileChars": policy.max_file_chars,
            "fileTimeBudgetMs": policy.file_time_budget_ms,
            "requiredFiles": list(policy.required_files),
            "maxRetryPasses": MAX_RETRY_PASSES,
        },
        "capabilities": {
            "tools": ["clean_project", "get_report", "plan_export", "get_server_info"],
            "binaryPassthrough": True,
            "exportTokenTtlSeconds": TOKEN_TTL_SECONDS,
        },
    })
