"""Rule catalog and span engine.

The catalog is built once per set of extra denied packages and never
mutated. Rules run in catalog order; overlapping matches are resolved by
severity first, then catalog position.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from dataclasses import dataclass
from functools import lru_cache

from sovclean import kinds as K
from sovclean.config import PLACEHOLDER_VALUE
from sovclean.errors import PatternTimeout
from sovclean.models import (
    CRITICAL,
    EXPOSED_SECRET,
    GHOST_HOOK,
    MAJOR,
    MINOR,
    OBFUSCATION,
    PROPRIETARY_CDN,
    PROPRIETARY_IMPORT,
    SEVERITY_RANK,
    TELEMETRY,
    UNSAFE_EVAL,
    Delete,
    Finding,
    FlagOnly,
    Rewrite,
    Rule,
)

CATALOG_VERSION = "2026.10.1"

SNIPPET_MAX = 200

# --- Platform tables ---

DENIED_NAMESPACES: tuple[str, ...] = (
    "@lovable/",
    "@gptengineer/",
    "@bolt/",
    "@v0/",
    "@cursor/",
    "@replit/",
)

DENIED_PACKAGES: tuple[str, ...] = (
    "lovable-tagger",
    "lovable-core",
    "lovable-analytics",
    "gpt-engineer",
    "gpt-engineer-tracker",
    "bolt-core",
    "v0-tagger",
    "v0-sdk",
    "cursor-runtime",
    "replit-sdk",
    "proprietary-sdk",
)

TELEMETRY_DOMAINS: tuple[str, ...] = (
    "lovable.app",
    "lovable.dev",
    "lovableproject.com",
    "gptengineer.app",
    "gpteng.co",
    "bolt.new",
    "v0.dev",
)

PROPRIETARY_CDNS: tuple[str, ...] = (
    "cdn.lovable.app",
    "cdn.lovable.dev",
    "storage.lovable.app",
    "static.lovable.dev",
    "assets.lovable.dev",
    "cdn.gptengineer.app",
    "assets.gptengineer.app",
    "cdn.bolt.new",
    "assets.bolt.new",
    "cdn.v0.dev",
)

PLATFORM_WORDS = r"(?:lovable|gptengineer|gpteng|gpt-engineer|bolt|v0)"
SCRIPT_MARKERS = r"(?:lovable|gptengineer|gpteng|gpt-engineer|bolt\.new|v0\.dev)"

# name, pattern; shared with the auditor's security gate
SECRET_PATTERNS: tuple[tuple[str, str], ...] = (
    ("anthropic-key", r"sk-ant-[A-Za-z0-9_-]{20,}"),
    ("openai-key", r"sk-(?:proj-)?[A-Za-z0-9]{20,}"),
    ("github-token", r"ghp_[A-Za-z0-9]{36}"),
    ("slack-token", r"xox[baprs]-[A-Za-z0-9-]{10,}"),
    ("stripe-live-key", r"sk_live_[A-Za-z0-9]{24,}"),
    ("aws-access-key", r"AKIA[0-9A-Z]{16}"),
)

SECRET_RE = "(?:" + "|".join(p for _, p in SECRET_PATTERNS) + ")"

_SUSPICIOUS_PAYLOAD = re.compile(
    r"eval\s*\(|new\s+Function|fetch\s*\(|XMLHttpRequest|sendBeacon|<script|document\.cookie|"
    + "|".join(re.escape(d) for d in TELEMETRY_DOMAINS),
    re.IGNORECASE,
)


def _domain_re(domains: tuple[str, ...]) -> str:
    alt = "|".join(re.escape(d) for d in sorted(domains, key=len, reverse=True))
    return rf"(?<![\w-])(?:[\w-]+\.)*(?:{alt})(?![\w-])"


TELEMETRY_DOMAIN_RE = _domain_re(TELEMETRY_DOMAINS)
CDN_DOMAIN_RE = _domain_re(PROPRIETARY_CDNS)

# A string literal naming a telemetry host; shared with the auditor
TELEMETRY_LITERAL_RE = rf"(?P<q>['\"`])[^'\"`\n]*?{TELEMETRY_DOMAIN_RE}[^'\"`\n]*(?P=q)"

# `import|export ... from` head, up to the opening quote of the module.
# The binding clause starts on a non-space so it cannot trade characters
# with the whitespace before it, and it never runs into the next statement.
IMPORT_HEAD_RE = (
    r"^[ \t]*(?:import|export)\s+(?:type\s+)?"
    r"(?:[\w$*{}](?:(?!\n[ \t]*(?:import|export)\b)[\w$*{}\s,])*?\bfrom\s*)?"
)


def _module_re(packages: tuple[str, ...], namespaces: tuple[str, ...]) -> str:
    parts = [re.escape(ns) + r"[^'\"]*" for ns in namespaces]
    parts += [re.escape(p) + r"(?:/[^'\"]*)?" for p in sorted(packages, key=len, reverse=True)]
    return "(?:" + "|".join(parts) + ")"


# --- Predicates over matches ---


def _decode_b64(literal: str) -> str | None:
    try:
        raw = base64.b64decode(literal, validate=True)
    except (binascii.Error, ValueError):
        return None
    text = raw.decode("utf-8", errors="replace")
    printable = sum(1 for ch in text if ch.isprintable() or ch in "\r\n\t")
    if not text or printable / len(text) < 0.9:
        return None
    return text


def _b64_payload(m: re.Match[str]) -> bool:
    """Base64 literal that decodes to eval/telemetry/network code."""
    decoded = _decode_b64(m.group("b64"))
    return decoded is not None and _SUSPICIOUS_PAYLOAD.search(decoded) is not None


def _b64_opaque(m: re.Match[str]) -> bool:
    """Very long base64-ish literal that does not decode to readable text."""
    return len(m.group("b64")) > 500 and _decode_b64(m.group("b64")) is None


# --- Catalog ---

CODE = frozenset({K.SOURCE})
SCRIPTED = frozenset({K.SOURCE, K.MARKUP, K.BUILD_CONFIG})
MARKUP = frozenset({K.MARKUP})
STYLES = frozenset({K.STYLESHEET})
BUILD = frozenset({K.BUILD_CONFIG})
ENV = frozenset({K.ENV})
PROSE = frozenset({K.DOC, K.SHELL})
SECRET_KINDS = frozenset({K.SOURCE, K.MARKUP, K.BUILD_CONFIG, K.STYLESHEET, K.SQL, K.OTHER})


def _rules(module_re: str) -> list[Rule]:
    R = re.compile
    return [
        # Whole-file deletion (non-source kinds only)
        Rule(
            rule_id="platform-generated-config",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=BUILD,
            pattern=R(
                r"\A\s*(?://|#|/\*)\s*(?:auto-?)?(?:generated|created)\s+(?:by|with)\s+"
                r"(?:lovable|gpt[- ]?engineer|bolt(?:\.new)?|v0)\b",
                re.IGNORECASE,
            ),
            action=Delete(),
            description="Build config generated by a hosted platform",
            remediation="Recreate the build config from the framework's own template.",
        ),
        # Imports
        Rule(
            rule_id="proprietary-import",
            category=PROPRIETARY_IMPORT,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(
                IMPORT_HEAD_RE
                + rf"(?P<q>['\"])(?P<module>{module_re})(?P=q)[ \t]*;?[ \t]*(?:\r?\n)?",
                re.MULTILINE,
            ),
            action=Rewrite(""),
            description="Import from a proprietary platform module",
            remediation="Replace with an open-source equivalent or the generated shim.",
        ),
        Rule(
            rule_id="proprietary-require",
            category=PROPRIETARY_IMPORT,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(
                r"^[ \t]*(?:(?:const|let|var)\s+[\w${},:][\w$\s{},:]*?=\s*)?require\(\s*"
                rf"(?P<q>['\"])(?P<module>{module_re})(?P=q)\s*\)[ \t]*;?[ \t]*(?:\r?\n)?",
                re.MULTILINE,
            ),
            action=Rewrite(""),
            description="require() of a proprietary platform module",
            remediation="Replace with an open-source equivalent or the generated shim.",
        ),
        # Unsafe dynamic code
        Rule(
            rule_id="unsafe-eval",
            category=UNSAFE_EVAL,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(r"(?<![\w.$])eval\s*\((?:[^()]|\([^()]*\))*\)"),
            action=Rewrite("undefined /* eval removed */"),
            description="eval() call",
            remediation="Replace dynamic evaluation with explicit code.",
        ),
        Rule(
            rule_id="unsafe-new-function",
            category=UNSAFE_EVAL,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(r"\bnew\s+Function\s*\((?:[^()]|\([^()]*\))*\)"),
            action=Rewrite("(() => undefined)"),
            description="new Function() constructor",
            remediation="Replace dynamic function construction with explicit code.",
        ),
        # Obfuscation
        Rule(
            rule_id="obfuscated-base64-payload",
            category=OBFUSCATION,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(r"(?P<q>['\"`])(?P<b64>[A-Za-z0-9+/]{100,}={0,2})(?P=q)"),
            action=Rewrite('""'),
            description="Base64 literal hiding executable or telemetry code",
            remediation="Remove the payload; inline any legitimate data in readable form.",
            predicate=_b64_payload,
        ),
        Rule(
            rule_id="obfuscated-base64-opaque",
            category=OBFUSCATION,
            severity=MAJOR,
            applies_to=SCRIPTED,
            pattern=R(r"(?P<q>['\"`])(?P<b64>[A-Za-z0-9+/]{500,}={0,2})(?P=q)"),
            action=FlagOnly(),
            description="Large undecodable base64 literal",
            remediation="Confirm the literal is a legitimate asset and not a packed payload.",
            predicate=_b64_opaque,
        ),
        Rule(
            rule_id="obfuscated-hex-escapes",
            category=OBFUSCATION,
            severity=MAJOR,
            applies_to=SCRIPTED,
            pattern=R(r"(?:\\x[0-9a-fA-F]{2}){8,}"),
            action=FlagOnly(),
            description="Long run of hex escapes",
            remediation="Decode the string and review what it contains.",
        ),
        # Secrets
        Rule(
            rule_id="exposed-secret",
            category=EXPOSED_SECRET,
            severity=CRITICAL,
            applies_to=SECRET_KINDS,
            pattern=R(SECRET_RE),
            action=Rewrite(PLACEHOLDER_VALUE),
            description="Live credential committed in source",
            remediation="Revoke the credential and load it from the environment.",
        ),
        # CDNs before telemetry: CDN hosts are subdomains of telemetry domains
        Rule(
            rule_id="cdn-markup-tag",
            category=PROPRIETARY_CDN,
            severity=CRITICAL,
            applies_to=MARKUP,
            pattern=R(
                rf"(?<![ \t])[ \t]*<(?:link|script|img)\b[^>]*{CDN_DOMAIN_RE}[^>]*>(?:\s*</script>)?[ \t]*(?:\r?\n)?",
                re.IGNORECASE,
            ),
            action=Rewrite(""),
            description="Asset loaded from a proprietary CDN",
            remediation="Self-host the asset under public/ and reference it locally.",
        ),
        Rule(
            rule_id="cdn-css-import",
            category=PROPRIETARY_CDN,
            severity=CRITICAL,
            applies_to=STYLES,
            pattern=R(rf"@import\s+[^;\n]*{CDN_DOMAIN_RE}[^;\n]*;[ \t]*(?:\r?\n)?"),
            action=Rewrite(""),
            description="Stylesheet imported from a proprietary CDN",
            remediation="Vendor the stylesheet into the project.",
        ),
        Rule(
            rule_id="cdn-css-url",
            category=PROPRIETARY_CDN,
            severity=MAJOR,
            applies_to=STYLES,
            pattern=R(rf"url\(\s*['\"]?[^'\")]*{CDN_DOMAIN_RE}[^'\")]*['\"]?\s*\)"),
            action=Rewrite("none"),
            description="Stylesheet asset served from a proprietary CDN",
            remediation="Copy the asset into the project and use a relative url().",
        ),
        Rule(
            rule_id="cdn-literal",
            category=PROPRIETARY_CDN,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(rf"(?P<q>['\"`])[^'\"`\n]*?{CDN_DOMAIN_RE}[^'\"`\n]*(?P=q)"),
            action=Rewrite('""'),
            description="String literal pointing at a proprietary CDN",
            remediation="Self-host the asset and reference it by a relative path.",
        ),
        # Markup injection
        Rule(
            rule_id="injected-platform-script",
            category=GHOST_HOOK,
            severity=CRITICAL,
            applies_to=MARKUP,
            pattern=R(
                rf"(?<![ \t])[ \t]*<script\b[^>]*{SCRIPT_MARKERS}[^>]*>[\s\S]*?</script>[ \t]*(?:\r?\n)?",
                re.IGNORECASE,
            ),
            action=Rewrite(""),
            description="Script tag injected by a hosted platform",
            remediation="Remove the tag; nothing in the app depends on it.",
        ),
        Rule(
            rule_id="platform-meta-tag",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=MARKUP,
            pattern=R(
                r"(?<![ \t])[ \t]*<meta\b[^>]*(?:lovable|gptengineer|gpt-engineer)[^>]*>[ \t]*(?:\r?\n)?",
                re.IGNORECASE,
            ),
            action=Rewrite(""),
            description="Platform branding meta tag",
            remediation="Replace with the project's own metadata.",
        ),
        Rule(
            rule_id="platform-html-comment",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=MARKUP,
            pattern=R(rf"<!--\s*@?{PLATFORM_WORDS}\b[\s\S]*?-->[ \t]*(?:\r?\n)?", re.IGNORECASE),
            action=Rewrite(""),
            description="Platform marker comment",
            remediation="No action needed.",
        ),
        # Telemetry
        Rule(
            rule_id="telemetry-literal",
            category=TELEMETRY,
            severity=CRITICAL,
            applies_to=SCRIPTED,
            pattern=R(TELEMETRY_LITERAL_RE),
            action=Rewrite('""'),
            description="String literal pointing at a platform telemetry endpoint",
            remediation="Point the call at your own backend or remove it.",
        ),
        # Ghost hooks: accessors replaced by calls into generated shims
        Rule(
            rule_id="ghost-auth-session",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=CODE,
            pattern=R(
                r"\b(?:(?:lovable|gptengineer|bolt)\.auth\.(?:getSession|session)|"
                r"use(?:Lovable|Gpteng|Bolt)Session)\(\s*\)"
            ),
            action=Rewrite("getAuthSession()"),
            description="Platform authentication-session accessor",
            remediation="Wire the shim to your own auth provider.",
            trigger="needs-auth-session-shim",
        ),
        Rule(
            rule_id="ghost-feature-flag",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=CODE,
            pattern=R(r"\b(?:lovable|gptengineer|bolt)\.(?:flags\.get|featureFlags\.get|getFeatureFlag)\("),
            action=Rewrite("getFeatureFlag("),
            description="Platform feature-flag accessor",
            remediation="Back the shim with your own flag source.",
            trigger="needs-feature-flag-shim",
        ),
        Rule(
            rule_id="ghost-analytics",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=CODE,
            pattern=R(r"\b(?:lovable|gptengineer|bolt)\.(?:analytics\.track|trackEvent|track)\("),
            action=Rewrite("trackEvent("),
            description="Platform analytics tracking call",
            remediation="Send events to your own analytics or leave the no-op shim.",
            trigger="needs-analytics-shim",
        ),
        Rule(
            rule_id="component-tagger",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=SCRIPTED,
            pattern=R(
                r"(?:mode\s*===\s*['\"]development['\"]\s*&&\s*)?componentTagger\(\s*\)[ \t]*,?[ \t]*"
            ),
            action=Rewrite(""),
            description="Platform component tagger plugin",
            remediation="No action needed.",
        ),
        Rule(
            rule_id="hidden-plugin",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=BUILD,
            pattern=R(
                r"\b\w*(?:lovable|gptengineer|gpteng)\w*[Pp]lugin\s*\([^()]*\)[ \t]*,?[ \t]*",
                re.IGNORECASE,
            ),
            action=Rewrite(""),
            description="Hidden platform build plugin",
            remediation="No action needed.",
        ),
        Rule(
            rule_id="suspicious-build-hook",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=BUILD,
            pattern=R(r"\b\w*(?:inject\w*telemetry|hidden\w*tracker)\w*", re.IGNORECASE),
            action=FlagOnly(),
            description="Build step that looks like it injects tracking",
            remediation="Review the plugin and remove it if it phones home.",
        ),
        Rule(
            rule_id="dynamic-marker",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=SCRIPTED,
            pattern=R(r"^[ \t]*(?:window\.)?__(?:lovable|gpteng)\w*\s*=[^;\n]*;?[ \t]*(?:\r?\n)?", re.MULTILINE),
            action=Rewrite(""),
            description="Runtime marker set for the platform",
            remediation="No action needed.",
        ),
        Rule(
            rule_id="platform-comment",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=frozenset({K.SOURCE, K.BUILD_CONFIG, K.STYLESHEET}),
            pattern=R(
                rf"(?<![ \t])[ \t]*(?://[ \t]*@{PLATFORM_WORDS}\b[^\n]*(?:\n)?|/\*\s*@{PLATFORM_WORDS}\b[\s\S]*?\*/)"
            ),
            action=Rewrite(""),
            description="Platform marker comment",
            remediation="No action needed.",
        ),
        Rule(
            rule_id="platform-data-attribute",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=frozenset({K.SOURCE, K.MARKUP}),
            pattern=R(
                r"(?<!\s)\s+data-(?:lovable|lov|gpt(?:eng(?:ineer)?)?|bolt|v0)(?:-[\w-]*)?"
                r"=(?:\"[^\"]*\"|'[^']*'|\{[^{}]*\})"
            ),
            action=Rewrite(""),
            description="Platform tracking data attribute",
            remediation="No action needed.",
        ),
        Rule(
            rule_id="platform-env-reference",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=CODE,
            pattern=R(r"\b(?:VITE|NEXT_PUBLIC|REACT_APP)_(?:LOVABLE|GPT|GPTENG|BOLT)_[A-Z0-9_]+"),
            action=FlagOnly(),
            description="Code reads a platform-specific environment variable",
            remediation="Rename the variable and document it in .env.example.",
        ),
        # Env files
        Rule(
            rule_id="env-secret-value",
            category=EXPOSED_SECRET,
            severity=CRITICAL,
            applies_to=ENV,
            pattern=R(
                rf"^(?P<key>[A-Za-z_][A-Za-z0-9_]*)[ \t]*=(?=[^\n]*?{SECRET_RE})[^\n]*$",
                re.MULTILINE,
            ),
            action=Rewrite(rf"\g<key>={PLACEHOLDER_VALUE}"),
            description="Live credential in environment file",
            remediation="Revoke the credential and set it in your deployment environment.",
        ),
        Rule(
            rule_id="platform-env-var",
            category=GHOST_HOOK,
            severity=MAJOR,
            applies_to=ENV,
            pattern=R(
                r"^(?P<key>(?:VITE_|NEXT_PUBLIC_|REACT_APP_)?(?:LOVABLE|GPTENG|GPT_ENGINEER|BOLT|V0)_[A-Z0-9_]*)"
                rf"[ \t]*=[ \t]*(?!{PLACEHOLDER_VALUE}[ \t]*$)[^\n]*\S[ \t]*$",
                re.MULTILINE,
            ),
            action=Rewrite(rf"\g<key>={PLACEHOLDER_VALUE}"),
            description="Platform-specific environment value",
            remediation="Fill in a value for your own infrastructure.",
        ),
        # Docs and shell scripts: cosmetic only
        Rule(
            rule_id="platform-url",
            category=TELEMETRY,
            severity=MINOR,
            applies_to=PROSE,
            pattern=R(rf"(?:https?://)?{TELEMETRY_DOMAIN_RE}(?:/[^\s)\"'>\]]*)?"),
            action=Rewrite("https://example.com"),
            description="Link to a hosted platform",
            remediation="Point the link at your own deployment.",
        ),
        Rule(
            rule_id="platform-product-name",
            category=GHOST_HOOK,
            severity=MINOR,
            applies_to=PROSE,
            pattern=R(r"\b(?:Lovable|GPT[- ]Engineer|GPTEngineer|gptengineer|Bolt\.new|bolt\.new|v0\.dev)\b"),
            action=Rewrite("the original platform"),
            description="Hosted platform product name",
            remediation="No action needed.",
        ),
    ]


@dataclass(frozen=True)
class Catalog:
    version: str
    rules: tuple[Rule, ...]
    denied_packages: frozenset[str]
    denied_namespaces: tuple[str, ...]

    def rules_for(self, kind: str) -> list[Rule]:
        """Span rules (rewrite and flag-only) for a file kind, catalog order."""
        return [r for r in self.rules if kind in r.applies_to and not isinstance(r.action, Delete)]

    def delete_rules_for(self, kind: str) -> list[Rule]:
        return [r for r in self.rules if kind in r.applies_to and isinstance(r.action, Delete)]

    def detection_rules_for(self, kind: str) -> list[Rule]:
        return [r for r in self.rules if kind in r.applies_to]

    def rule(self, rule_id: str) -> Rule | None:
        for r in self.rules:
            if r.rule_id == rule_id:
                return r
        return None

    def is_denied_package(self, name: str) -> bool:
        if name in self.denied_packages:
            return True
        return any(name.startswith(ns) for ns in self.denied_namespaces)


def build_catalog(extra_packages: tuple[str, ...] | list[str] = (), rules: list[Rule] | None = None) -> Catalog:
    """Build (or fetch the cached) catalog.

    `rules` replaces the shipped rule list entirely; used for custom
    catalogs. Custom catalogs are not cached.
    """
    extra = tuple(sorted(set(extra_packages)))
    if rules is not None:
        packages = frozenset(DENIED_PACKAGES + extra)
        return Catalog(CATALOG_VERSION + "+custom", tuple(rules), packages, DENIED_NAMESPACES)
    return _build_catalog(extra)


@lru_cache(maxsize=16)
def _build_catalog(extra: tuple[str, ...]) -> Catalog:
    packages = DENIED_PACKAGES + extra
    module_re = _module_re(packages, DENIED_NAMESPACES)
    version = CATALOG_VERSION if not extra else f"{CATALOG_VERSION}+{len(extra)}"
    return Catalog(version, tuple(_rules(module_re)), frozenset(packages), DENIED_NAMESPACES)


# --- Span engine ---


@dataclass(frozen=True)
class Span:
    start: int
    end: int
    index: int
    rule: Rule
    match: re.Match[str]


def _check_deadline(deadline: float | None, rule: Rule) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise PatternTimeout(rule.rule_id)


def find_spans(rules: list[Rule], content: str, deadline: float | None = None) -> list[Span]:
    """Collect matches of every rule, then keep a non-overlapping subset.

    Higher severity wins an overlap; on equal severity the earlier rule
    wins; on the same rule the earlier match wins. Result is in text order.

    `deadline` is a time.monotonic() value checked after every match and
    every rule; PatternTimeout is raised once it has passed.
    """
    candidates: list[Span] = []
    for index, rule in enumerate(rules):
        for m in rule.matches(content):
            candidates.append(Span(m.start(), m.end(), index, rule, m))
            _check_deadline(deadline, rule)
        _check_deadline(deadline, rule)

    candidates.sort(key=lambda s: (-SEVERITY_RANK[s.rule.severity], s.index, s.start))
    accepted: list[Span] = []
    for span in candidates:
        if any(span.start < a.end and a.start < span.end for a in accepted):
            continue
        accepted.append(span)
    accepted.sort(key=lambda s: s.start)
    return accepted


def replacement_for(span: Span) -> str:
    action = span.rule.action
    if isinstance(action, Rewrite):
        return span.match.expand(action.replacement)
    if isinstance(action, FlagOnly):
        return span.match.group(0)
    if isinstance(action, Delete):
        raise ValueError(f"Rule {span.rule.rule_id} deletes whole files, not spans")
    raise TypeError(f"Unknown rule action: {action!r}")


def apply_spans(content: str, spans: list[Span]) -> str:
    """Splice replacements into content; text outside spans is untouched."""
    out: list[str] = []
    pos = 0
    for span in spans:
        out.append(content[pos:span.start])
        out.append(replacement_for(span))
        pos = span.end
    out.append(content[pos:])
    return "".join(out)


def line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def make_snippet(rule: Rule, text: str) -> str:
    text = " ".join(text.split())
    if rule.category == EXPOSED_SECRET:
        # never echo a credential back into the report
        return text[:8] + "***"
    if len(text) > SNIPPET_MAX:
        return text[:SNIPPET_MAX - 3] + "..."
    return text


def span_finding(path: str, content: str, span: Span) -> Finding:
    rule = span.rule
    quarantined = not isinstance(rule.action, FlagOnly)
    return Finding(
        path=path,
        category=rule.category,
        severity=rule.severity,
        description=rule.description,
        rule_id=rule.rule_id,
        line=line_of(content, span.start),
        snippet=make_snippet(rule, span.match.group(0)),
        remediation=rule.remediation,
        quarantined=quarantined,
        trigger=rule.trigger,
    )


def rewrite_content(
    rules: list[Rule], path: str, content: str, deadline: float | None = None
) -> tuple[str, list[Finding]]:
    """Apply every rule's action to content; one finding per accepted span."""
    spans = find_spans(rules, content, deadline)
    if not spans:
        return content, []
    findings = [span_finding(path, content, s) for s in spans]
    return apply_spans(content, spans), findings


def scan_content(rules: list[Rule], path: str, content: str, deadline: float | None = None) -> list[Finding]:
    """Detection only: report what rewrite_content would act on, change nothing."""
    return [span_finding(path, content, s) for s in find_spans(rules, content, deadline)]


def first_delete_match(
    rules: list[Rule], content: str, deadline: float | None = None
) -> tuple[Rule, re.Match[str]] | None:
    for rule in rules:
        for m in rule.matches(content):
            return rule, m
        _check_deadline(deadline, rule)
    return None
