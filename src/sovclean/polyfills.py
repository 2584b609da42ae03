"""Trigger collection and polyfill synthesis.

A trigger fires when any finding in the whole run matches its condition.
Each fired trigger yields exactly one generated module under SHIM_DIR; the
index re-exporting them is regenerated from scratch every run.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Iterable

from sovclean.config import SHIM_DIR
from sovclean.kinds import SOURCE
from sovclean.models import Finding, PolyfillModule, VirtualFile, VirtualTree
from sovclean.paths import is_under_dir, relative_import

SHIM_MARKER = "// @sovereign-shim"
INDEX_PATH = f"{SHIM_DIR}/index.ts"

_AUTH_SESSION = '''// @sovereign-shim needs-auth-session-shim
// Local stand-in for a hosted auth session. Wire it to your own provider.

export interface AuthSession {
  userId: string;
  accessToken: string;
  expiresAt?: number;
}

const STORAGE_KEY = "sovereign.auth.session";

export function getAuthSession(): AuthSession | null {
  if (typeof window === "undefined") return null;
  const raw = window.localStorage.getItem(STORAGE_KEY);
  if (!raw) return null;
  try {
    const session = JSON.parse(raw) as AuthSession;
    if (session.expiresAt !== undefined && session.expiresAt < Date.now()) {
      window.localStorage.removeItem(STORAGE_KEY);
      return null;
    }
    return session;
  } catch {
    return null;
  }
}

export function setAuthSession(session: AuthSession): void {
  if (typeof window === "undefined") return;
  window.localStorage.setItem(STORAGE_KEY, JSON.stringify(session));
}

export function clearAuthSession(): void {
  if (typeof window === "undefined") return;
  window.localStorage.removeItem(STORAGE_KEY);
}
'''

_FEATURE_FLAGS = '''// @sovereign-shim needs-feature-flag-shim
// Feature flags kept in localStorage. Replace with your own flag service.

const STORAGE_KEY = "sovereign.feature-flags";

function readFlags(): Record<string, boolean> {
  if (typeof window === "undefined") return {};
  try {
    return JSON.parse(window.localStorage.getItem(STORAGE_KEY) || "{}");
  } catch {
    return {};
  }
}

export function getFeatureFlag(name: string, fallback = false): boolean {
  const flags = readFlags();
  return name in flags ? Boolean(flags[name]) : fallback;
}

export function setFeatureFlag(name: string, enabled: boolean): void {
  if (typeof window === "undefined") return;
  const flags = readFlags();
  flags[name] = enabled;
  window.localStorage.setItem(STORAGE_KEY, JSON.stringify(flags));
}
'''

_ANALYTICS = '''// @sovereign-shim needs-analytics-shim
// No-op analytics. Events are re-dispatched on window for local listeners only.

export function trackEvent(name: string, properties: Record<string, unknown> = {}): void {
  if (typeof window === "undefined") return;
  window.dispatchEvent(new CustomEvent("sovereign:track", { detail: { name, properties } }));
}
'''

_USE_MOBILE = '''// @sovereign-shim needs-mobile-hook-shim
import { useEffect, useState } from "react";

const MOBILE_BREAKPOINT = 768;

export function useIsMobile(): boolean {
  const [isMobile, setIsMobile] = useState(false);

  useEffect(() => {
    const check = () => setIsMobile(window.innerWidth < MOBILE_BREAKPOINT);
    check();
    window.addEventListener("resize", check);
    return () => window.removeEventListener("resize", check);
  }, []);

  return isMobile;
}
'''

_USE_TOAST = '''// @sovereign-shim needs-toast-shim
import { useEffect, useState } from "react";

export interface ToastOptions {
  title?: string;
  description?: string;
  variant?: "default" | "destructive";
}

interface ToastItem extends ToastOptions {
  id: number;
}

let counter = 0;
let items: ToastItem[] = [];
const listeners = new Set<(next: ToastItem[]) => void>();

function emit(): void {
  listeners.forEach((listener) => listener(items));
}

function dismiss(id?: number): void {
  items = id === undefined ? [] : items.filter((item) => item.id !== id);
  emit();
}

export function toast(options: ToastOptions): { id: number; dismiss: () => void } {
  counter += 1;
  const id = counter;
  items = [...items, { ...options, id }];
  emit();
  return { id, dismiss: () => dismiss(id) };
}

export function useToast() {
  const [toasts, setToasts] = useState<ToastItem[]>(items);

  useEffect(() => {
    listeners.add(setToasts);
    return () => {
      listeners.delete(setToasts);
    };
  }, []);

  return { toasts, toast, dismiss };
}
'''


@dataclass(frozen=True)
class TriggerSpec:
    trigger: str
    rule_ids: frozenset[str]
    module: str
    exports: tuple[str, ...]
    content: str
    snippet_re: re.Pattern[str] | None = None

    @property
    def path(self) -> str:
        return f"{SHIM_DIR}/{self.module}.ts"

    def fires_on(self, finding: Finding) -> bool:
        if not finding.quarantined:
            return False
        if finding.trigger == self.trigger:
            return True
        if finding.rule_id not in self.rule_ids:
            return False
        return self.snippet_re is None or self.snippet_re.search(finding.snippet) is not None


_IMPORT_RULES = frozenset({"proprietary-import", "proprietary-require"})

TRIGGERS: tuple[TriggerSpec, ...] = (
    TriggerSpec(
        trigger="needs-auth-session-shim",
        rule_ids=frozenset({"ghost-auth-session"}),
        module="auth-session",
        exports=("getAuthSession", "setAuthSession", "clearAuthSession"),
        content=_AUTH_SESSION,
    ),
    TriggerSpec(
        trigger="needs-feature-flag-shim",
        rule_ids=frozenset({"ghost-feature-flag"}),
        module="feature-flags",
        exports=("getFeatureFlag", "setFeatureFlag"),
        content=_FEATURE_FLAGS,
    ),
    TriggerSpec(
        trigger="needs-analytics-shim",
        rule_ids=frozenset({"ghost-analytics"}),
        module="analytics",
        exports=("trackEvent",),
        content=_ANALYTICS,
    ),
    TriggerSpec(
        trigger="needs-mobile-hook-shim",
        rule_ids=_IMPORT_RULES,
        module="use-mobile",
        exports=("useIsMobile",),
        content=_USE_MOBILE,
        snippet_re=re.compile(r"\buseIsMobile\b"),
    ),
    TriggerSpec(
        trigger="needs-toast-shim",
        rule_ids=_IMPORT_RULES,
        module="use-toast",
        exports=("useToast", "toast"),
        content=_USE_TOAST,
        snippet_re=re.compile(r"\b(?:useToast|toast)\b"),
    ),
)

TRIGGERS_BY_NAME: dict[str, TriggerSpec] = {t.trigger: t for t in TRIGGERS}
TRIGGERS_BY_PATH: dict[str, TriggerSpec] = {t.path: t for t in TRIGGERS}


def collect_triggers(findings: Iterable[Finding]) -> list[str]:
    """Fired trigger names, in table order. Global across all files."""
    findings = list(findings)
    return [spec.trigger for spec in TRIGGERS if any(spec.fires_on(f) for f in findings)]


def synthesize(triggers: Iterable[str]) -> list[PolyfillModule]:
    """One module per distinct trigger."""
    modules: list[PolyfillModule] = []
    seen: set[str] = set()
    for name in triggers:
        if name in seen:
            continue
        seen.add(name)
        spec = TRIGGERS_BY_NAME[name]
        modules.append(PolyfillModule(trigger=spec.trigger, path=spec.path, exports=spec.exports, content=spec.content))
    return modules


def existing_modules(tree: VirtualTree) -> list[PolyfillModule]:
    """Generated shim modules already present in a tree (e.g. a cleaned one)."""
    found: list[PolyfillModule] = []
    for path in tree:
        spec = TRIGGERS_BY_PATH.get(path)
        if spec is None:
            continue
        f = tree[path]
        if f.binary or not f.text.startswith(SHIM_MARKER):
            continue
        found.append(PolyfillModule(trigger=spec.trigger, path=path, exports=spec.exports, content=f.text))
    return found


def render_index(modules: Iterable[PolyfillModule]) -> str:
    lines = [
        f"{SHIM_MARKER} index",
        "// Generated compatibility shims. Regenerated on every clean; do not edit.",
        "",
    ]
    for path in sorted({m.path for m in modules}):
        stem = posixpath.splitext(posixpath.basename(path))[0]
        lines.append(f'export * from "./{stem}";')
    return "\n".join(lines) + "\n"


def is_shim_path(path: str) -> bool:
    return is_under_dir(path, SHIM_DIR)


# --- Import wiring ---

_IMPORT_DONE = re.compile(r"""\bfrom\s*['"][^'"]+['"]|^import\s*['"][^'"]+['"]""")
_DIRECTIVE = re.compile(r"""^['"]use [\w ]+['"];?$""")


def _insertion_offset(content: str) -> int:
    """Offset just past the leading block of imports and directives."""
    offset = 0
    insert_at = 0
    in_import = False
    in_comment = False
    for line in content.splitlines(keepends=True):
        stripped = line.strip()
        if in_import:
            offset += len(line)
            if _IMPORT_DONE.search(stripped) or stripped.endswith(";"):
                in_import = False
                insert_at = offset
            continue
        if in_comment:
            offset += len(line)
            if "*/" in stripped:
                in_comment = False
            continue
        if stripped.startswith("import ") or stripped.startswith("import{"):
            offset += len(line)
            if _IMPORT_DONE.search(stripped):
                insert_at = offset
            else:
                in_import = True
            continue
        if _DIRECTIVE.match(stripped):
            offset += len(line)
            insert_at = offset
            continue
        if stripped.startswith("/*"):
            offset += len(line)
            in_comment = "*/" not in stripped
            continue
        if not stripped or stripped.startswith("//"):
            offset += len(line)
            continue
        break
    return insert_at


def _uses(content: str, name: str) -> bool:
    if not re.search(rf"(?<![\w$.]){re.escape(name)}\b", content):
        return False
    defined = re.search(rf"\b(?:function|const|let|var|class)\s+{re.escape(name)}\b", content)
    imported = re.search(rf"^[ \t]*import\b[^;]*?\b{re.escape(name)}\b[^;]*?\bfrom\b", content, re.MULTILINE)
    return not defined and not imported


def wire_file(path: str, content: str, modules: Iterable[PolyfillModule]) -> str:
    """Add one import of the used shim exports from the index. Idempotent."""
    names = [e for m in sorted(modules, key=lambda m: m.path) for e in m.exports if _uses(content, e)]
    if not names:
        return content
    spec = relative_import(path, SHIM_DIR)
    if re.search(rf"""from\s+['"]{re.escape(spec)}(?:/index)?['"]""", content):
        return content
    line = f'import {{ {", ".join(names)} }} from "{spec}";\n'
    at = _insertion_offset(content)
    if at > 0 and content[at - 1] != "\n":
        line = "\n" + line
    return content[:at] + line + content[at:]


def wire_imports(tree: VirtualTree, paths: Iterable[str], modules: list[PolyfillModule]) -> VirtualTree:
    """Wire shim imports into the given (rewritten) source files."""
    if not modules:
        return tree
    updated = tree
    for path in sorted(set(paths)):
        f = tree.get(path)
        if f is None or f.binary or f.kind != SOURCE or is_shim_path(path):
            continue
        wired = wire_file(path, f.text, modules)
        if wired != f.text:
            updated = updated.replace(path, wired)
    return updated


def apply_polyfills(tree: VirtualTree, triggers: list[str], rewritten: Iterable[str]) -> tuple[VirtualTree, list[PolyfillModule]]:
    """Add fired modules, regenerate the index, wire imports.

    Returns the new tree and the modules synthesized for this run's
    triggers (previously generated modules are re-indexed but not counted).
    """
    fresh = synthesize(triggers)
    present = {m.path: m for m in existing_modules(tree)}
    for m in fresh:
        present[m.path] = m
    if not present:
        return tree, fresh

    indexed = sorted(present.values(), key=lambda m: m.path)
    files = [VirtualFile(path=m.path, content=m.content) for m in fresh]
    files.append(VirtualFile(path=INDEX_PATH, content=render_index(indexed)))
    out = tree.with_files(files)
    out = wire_imports(out, rewritten, indexed)
    return out, fresh
