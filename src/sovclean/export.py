"""Packaging hand-off: decide whether a run may be exported and sign it."""

from __future__ import annotations

import time
from typing import Any

from sovclean.config import TOKEN_TTL_SECONDS
from sovclean.errors import err, ok
from sovclean.models import BLOCKED, REQUIRES_REVIEW
from sovclean.pipeline import CleanResult
from sovclean.tokens import make_export_token, verify_export_token

REVIEW_BANNER = (
    "This project needs review before deployment: some findings could not "
    "be neutralized automatically. Check the report before publishing."
)


def export_bindings(project_id: str, result: CleanResult) -> dict[str, Any]:
    return {
        "projectId": project_id,
        "treeDigest": result.final_tree.digest(),
        "score": result.report.score.score,
        "verdict": result.report.verdict,
    }


def plan_export(
    project_id: str,
    result: CleanResult,
    secret: bytes,
    ttl: int = TOKEN_TTL_SECONDS,
) -> dict[str, Any]:
    """Refuse blocked or audit-failed runs; otherwise issue an export token."""
    report = result.report
    if report.verdict == BLOCKED:
        return err(
            "E_EXPORT_BLOCKED",
            "Export refused: sovereignty verdict is 'blocked'.",
            {"projectId": project_id, "score": report.score.score, "verdict": report.verdict},
            next_steps=[{"action": "REVIEW_REPORT", "tool": "get_report", "args": {"projectId": project_id}}],
        )
    if not result.audit.passed:
        return err(
            "E_EXPORT_BLOCKED",
            "Export refused: final audit failed.",
            {"projectId": project_id, "audit": result.audit.to_dict()},
            next_steps=[{"action": "REVIEW_REPORT", "tool": "get_report", "args": {"projectId": project_id}}],
        )

    exp = time.time() + ttl
    bindings = export_bindings(project_id, result)
    token = make_export_token({**bindings, "exp": exp}, secret)

    warnings: list[str] = []
    if report.verdict == REQUIRES_REVIEW:
        warnings.append(REVIEW_BANNER)

    return ok({
        "projectId": project_id,
        "exportToken": token,
        "bindings": bindings,
        "expiresUtc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(exp)),
        "files": len(result.final_tree),
        "warnings": warnings,
    })


def check_export_token(token: str, secret: bytes, project_id: str, result: CleanResult) -> dict[str, Any]:
    """Packager-side check: the token must match the tree about to be packaged."""
    return verify_export_token(token, secret, export_bindings(project_id, result))
