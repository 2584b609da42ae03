"""clean(): filter -> scan -> rewrite -> polyfill -> verify -> score -> audit."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Mapping

from sovclean.auditor import AuditResult, audit
from sovclean.config import DEFAULT_POLICY, Policy
from sovclean.envexample import apply_env_example
from sovclean.errors import FatalInputError
from sovclean.log import EventLogger, format_duration, get_logger
from sovclean.models import (
    MAJOR,
    MISSING_REQUIRED_FILE,
    Finding,
    PolyfillModule,
    Report,
    SovereigntyScore,
    VirtualFile,
    VirtualTree,
)
from sovclean.polyfills import apply_polyfills, collect_triggers, is_shim_path
from sovclean.removal import filter_tree
from sovclean.rewriter import FileResult, rewrite_file, summarize
from sovclean.rules import Catalog, build_catalog
from sovclean.scorer import MISSING_REQUIRED_FILE_RULE, score_findings
from sovclean.verifier import detect_tree, verify

ProgressFn = Callable[[str, int, str], None]


@dataclass(frozen=True)
class Snapshots:
    original: VirtualTree
    filtered: VirtualTree
    cleaned: VirtualTree
    verified: VirtualTree
    final: VirtualTree


@dataclass(frozen=True)
class CleanResult:
    final_tree: VirtualTree
    report: Report
    audit: AuditResult
    snapshots: Snapshots
    polyfills: tuple[PolyfillModule, ...]
    removed: tuple[str, ...]


def as_tree(tree: VirtualTree | Mapping[str, str | bytes]) -> VirtualTree:
    if isinstance(tree, VirtualTree):
        return tree
    try:
        return VirtualTree.from_mapping(tree)
    except ValueError as exc:
        raise FatalInputError(str(exc)) from exc


def check_guards(tree: VirtualTree, policy: Policy) -> None:
    if len(tree) == 0:
        raise FatalInputError("Input tree is empty.")
    if len(tree) > policy.max_files:
        raise FatalInputError(
            "Input tree has too many files.",
            {"files": len(tree), "maxFiles": policy.max_files},
        )
    total = tree.total_chars()
    if total > policy.max_total_chars:
        raise FatalInputError(
            "Input tree is too large.",
            {"chars": total, "maxTotalChars": policy.max_total_chars},
        )


def missing_required(tree: VirtualTree, policy: Policy) -> list[Finding]:
    return [
        Finding(
            path=required,
            category=MISSING_REQUIRED_FILE,
            severity=MAJOR,
            description=f"Required file is missing: {required}",
            rule_id=MISSING_REQUIRED_FILE_RULE,
            remediation="Add the file before packaging; the build will not work without it.",
            quarantined=False,
        )
        for required in policy.required_files
        if required not in tree
    ]


def score_before(
    filtered: VirtualTree,
    structural: list[Finding],
    catalog: Catalog,
    policy: Policy,
    map_fn: Callable[..., Iterable] = map,
) -> SovereigntyScore:
    """Score of the tree as received: every detection counts at full weight."""
    detected = detect_tree(filtered, filtered.paths(), catalog, policy.max_file_chars, map_fn, policy.file_time_budget_ms)
    findings = [replace(f, quarantined=False) for path in filtered.paths() for f in detected[path]]
    return score_findings(structural + findings, policy)


def _reduce(filtered: VirtualTree, results: list[FileResult]) -> tuple[VirtualTree, list[Finding], list[str], list[str], int]:
    """Merge per-file results in path order into the next snapshot."""
    findings: list[Finding] = []
    changed: list[VirtualFile] = []
    deleted: list[str] = []
    modified: list[str] = []
    packages_removed = 0
    for result in results:
        findings.extend(result.findings)
        packages_removed += result.packages_removed
        if result.deleted:
            deleted.append(result.path)
        elif result.modified:
            modified.append(result.path)
            changed.append(filtered[result.path].with_content(result.content))
    cleaned = filtered.with_files(changed).without(set(deleted))
    return cleaned, findings, deleted, modified, packages_removed


def clean(
    tree: VirtualTree | Mapping[str, str | bytes],
    removal_list: Iterable[str] = (),
    *,
    policy: Policy | None = None,
    catalog: Catalog | None = None,
    project_id: str = "",
    on_progress: ProgressFn | None = None,
    logger: EventLogger | None = None,
) -> CleanResult:
    """Clean a project tree and certify the result.

    Raises FatalInputError for an empty, oversized or malformed input
    tree. Everything else is reported as findings.
    """
    policy = policy or DEFAULT_POLICY
    catalog = catalog or build_catalog(policy.extra_denied_packages)
    logger = logger or get_logger("pipeline")
    progress = on_progress or (lambda phase, percent, message: None)
    started = time.monotonic()

    original = as_tree(tree)
    check_guards(original, policy)
    logger.info("run.start", project_id=project_id or None, files=len(original), catalog=catalog.version)

    progress("filter", 5, "Removing platform files")
    removal = filter_tree(original, list(removal_list), policy)
    filtered = removal.tree
    if removal.count:
        logger.info("filter.done", files_removed=removal.count)
    structural = missing_required(filtered, policy)

    budget = policy.file_time_budget_ms
    with ThreadPoolExecutor(max_workers=policy.workers) as pool:
        progress("scan", 10, "Scoring the project as received")
        before = score_before(filtered, structural, catalog, policy, pool.map)

        progress("rewrite", 15, f"Cleaning {len(filtered)} files")
        files = filtered.files()
        results = list(pool.map(lambda f: rewrite_file(f, catalog, policy.max_file_chars, logger, budget), files))
        cleaned, findings, deleted, modified, packages_removed = _reduce(filtered, results)
        logger.info("rewrite.done", **summarize(results))

        progress("polyfill", 55, "Generating compatibility shims")
        triggers = collect_triggers(findings)
        assembled, polyfills = apply_polyfills(cleaned, triggers, modified)
        if triggers:
            logger.info("polyfill.done", triggers=",".join(triggers))
        assembled, env_vars = apply_env_example(assembled)

        progress("verify", 70, "Verifying cleaned tree")
        known = {f.key() for f in findings}
        outcome = verify(
            assembled, known, catalog, policy.max_file_chars,
            map_fn=pool.map, logger=logger, time_budget_ms=budget,
        )

    final = outcome.tree
    all_findings = structural + findings + list(outcome.retry_findings) + list(outcome.residual)

    progress("score", 85, "Scoring")
    score = score_findings(all_findings, policy)

    files_cleaned = sum(
        1 for p in final
        if p in filtered and not is_shim_path(p) and final[p].content != filtered[p].content
    )
    report = Report(
        project_id=project_id,
        files_scanned=len(original),
        files_removed=removal.count + len(deleted) + len(outcome.deleted),
        files_cleaned=files_cleaned,
        files_verified_clean=len(outcome.clean_paths),
        polyfills_generated=len(polyfills),
        packages_removed=packages_removed,
        findings=tuple(all_findings),
        score=score,
        catalog_version=catalog.version,
        score_before=before,
        env_vars=env_vars,
    )

    progress("audit", 95, "Auditing final tree")
    audit_result = audit(final, policy)
    if not audit_result.passed:
        logger.warning(
            "audit.failed",
            build_errors=len(audit_result.build_errors),
            security_hazards=len(audit_result.security_hazards),
        )

    progress("done", 100, f"Verdict: {score.verdict}")
    logger.info(
        "run.done",
        project_id=project_id or None,
        score=score.score,
        verdict=score.verdict,
        retry_passes=outcome.passes,
        elapsed=format_duration(time.monotonic() - started),
    )

    return CleanResult(
        final_tree=final,
        report=report,
        audit=audit_result,
        snapshots=Snapshots(
            original=original,
            filtered=filtered,
            cleaned=assembled,
            verified=outcome.tree,
            final=final,
        ),
        polyfills=tuple(polyfills),
        removed=removal.removed,
    )
