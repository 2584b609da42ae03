"""Tests for the rule catalog and span engine."""

from __future__ import annotations

import base64
import re
import time

import pytest

from sovclean.errors import PatternTimeout
from sovclean.models import CRITICAL, MAJOR, MINOR, FlagOnly, Rewrite, Rule
from sovclean.rules import (
    CATALOG_VERSION,
    apply_spans,
    build_catalog,
    find_spans,
    rewrite_content,
    scan_content,
)

CATALOG = build_catalog()


def _clean(kind: str, content: str, path: str = "src/file.ts"):
    return rewrite_content(CATALOG.rules_for(kind), path, content)


def _rule(rule_id, pattern, severity=MAJOR, action=None):
    return Rule(
        rule_id=rule_id,
        category="ghost-hook",
        severity=severity,
        applies_to=frozenset({"source"}),
        pattern=re.compile(pattern),
        action=action if action is not None else Rewrite(""),
        description=rule_id,
        remediation="",
    )


# --- Engine ---


def test_catalog_is_cached_and_versioned():
    assert build_catalog() is CATALOG
    assert CATALOG.version == CATALOG_VERSION
    assert build_catalog(("acme-sdk",)).version != CATALOG_VERSION


def test_higher_severity_wins_overlap():
    low = _rule("low", r"abcd", severity=MINOR, action=Rewrite("L"))
    high = _rule("high", r"cdef", severity=CRITICAL, action=Rewrite("H"))
    spans = find_spans([low, high], "abcdef")
    assert [s.rule.rule_id for s in spans] == ["high"]
    assert apply_spans("abcdef", spans) == "abH"


def test_catalog_order_breaks_severity_tie():
    first = _rule("first", r"abc", action=Rewrite("1"))
    second = _rule("second", r"bcd", action=Rewrite("2"))
    spans = find_spans([first, second], "abcd")
    assert [s.rule.rule_id for s in spans] == ["first"]


def test_past_deadline_raises_pattern_timeout():
    rule = _rule("a", r"foo")
    with pytest.raises(PatternTimeout) as info:
        find_spans([rule], "foo bar\n", deadline=time.monotonic() - 1)
    assert info.value.rule_id == "a"


def test_future_deadline_does_not_interfere():
    rule = _rule("a", r"foo", action=Rewrite("F"))
    content, _ = rewrite_content([rule], "x.ts", "foo\n", deadline=time.monotonic() + 60)
    assert content == "F\n"


def test_rules_are_additive_and_preserve_surrounding_text():
    a = _rule("a", r"foo", action=Rewrite("F"))
    b = _rule("b", r"bar", action=Rewrite("B"))
    content, findings = rewrite_content([a, b], "x.ts", "  foo + bar;\n// tail\n")
    assert content == "  F + B;\n// tail\n"
    assert [f.rule_id for f in findings] == ["a", "b"]
    assert all(f.quarantined for f in findings)


def test_flag_only_keeps_text_and_is_not_quarantined():
    flag = _rule("flag", r"hmm", action=FlagOnly())
    content, findings = rewrite_content([flag], "x.ts", "one\nhmm\n")
    assert content == "one\nhmm\n"
    assert findings[0].line == 2
    assert not findings[0].quarantined


def test_unknown_action_raises_type_error():
    weird = _rule("weird", r"x", action=object())  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        rewrite_content([weird], "x.ts", "x")


def test_scan_reports_what_rewrite_would_touch():
    content = 'import { x } from "@lovable/core";\nconsole.log(1);\n'
    rules = CATALOG.rules_for("source")
    scanned = scan_content(rules, "src/a.ts", content)
    _, rewritten = rewrite_content(rules, "src/a.ts", content)
    assert [f.key() for f in scanned] == [f.key() for f in rewritten]


# --- Source rules ---


def test_proprietary_import_lines_removed():
    src = (
        'import React from "react";\n'
        'import { componentTagger } from "lovable-tagger";\n'
        "import '@gptengineer/runtime/styles.css';\n"
        "const sdk = require('proprietary-sdk');\n"
        'export { helper } from "@bolt/utils";\n'
        "\n"
        "export const x = 1;\n"
    )
    content, findings = _clean("source", src)
    assert content == 'import React from "react";\n\nexport const x = 1;\n'
    assert {f.category for f in findings} == {"proprietary-import"}
    assert all(f.severity == CRITICAL for f in findings)
    assert len(findings) == 4


def test_legitimate_lookalike_imports_untouched():
    src = 'import { Bolt } from "lucide-react";\nimport lovableHelpers from "./lovable-helpers";\n'
    content, findings = _clean("source", src)
    assert content == src
    assert findings == []


def test_import_clause_does_not_reach_into_next_statement():
    src = 'export default foo\nimport x from "@lovable/y";\n'
    content, findings = _clean("source", src)
    assert content == "export default foo\n"
    assert [f.line for f in findings] == [2]


@pytest.mark.parametrize(
    "src",
    [
        "import" + " " * 10_000 + "{ a }\n",
        "import {" + " " * 10_000 + "\n",
        "const" + " " * 10_000 + "x = 1;\n",
        "<div" + " " * 10_000 + "/>\n",
        "\t" * 10_000 + "// note\n",
    ],
    ids=["import", "open-brace", "const", "jsx", "tabs"],
)
def test_long_whitespace_runs_scan_in_linear_time(src):
    started = time.monotonic()
    content, findings = _clean("source", src)
    assert time.monotonic() - started < 2.0
    assert content == src
    assert findings == []


def test_extra_denied_package_is_recognized():
    catalog = build_catalog(("acme-tracker",))
    content, findings = rewrite_content(
        catalog.rules_for("source"), "a.ts", 'import t from "acme-tracker";\nrun();\n'
    )
    assert content == "run();\n"
    assert catalog.is_denied_package("acme-tracker")
    assert not CATALOG.is_denied_package("acme-tracker")


def test_telemetry_literal_replaced():
    content, findings = _clean("source", 'fetch("https://events.lovable.app/collect", opts);\n')
    assert content == 'fetch("", opts);\n'
    assert findings[0].category == "telemetry"
    assert findings[0].severity == CRITICAL


def test_cdn_literal_wins_over_telemetry():
    content, findings = _clean("source", 'const logo = "https://cdn.lovable.app/logo.svg";\n')
    assert content == 'const logo = "";\n'
    assert [f.category for f in findings] == ["proprietary-cdn"]


def test_eval_and_new_function_neutralized():
    content, findings = _clean("source", "const v = eval(code(1));\nconst f = new Function('a', 'return a');\n")
    assert "eval(" not in content
    assert "new Function" not in content
    assert [f.category for f in findings] == ["unsafe-eval", "unsafe-eval"]
    # method calls named eval are not the global
    src = "page.evaluate(fn);\nscope.eval(x);\n"
    assert _clean("source", src) == (src, [])


def test_base64_payload_removed_only_when_it_decodes_to_code():
    payload = base64.b64encode(b"fetch('https://telemetry.lovable.dev/t', {method: 'POST'});" * 3).decode()
    harmless = base64.b64encode(b"just some harmless inline data for an icon sprite. " * 4).decode()
    src = f'const a = "{payload}";\nconst b = "{harmless}";\n'
    content, findings = _clean("source", src)
    assert 'const a = "";' in content
    assert harmless in content
    assert [f.rule_id for f in findings] == ["obfuscated-base64-payload"]


def test_hex_escape_runs_are_flagged_not_changed():
    src = 'const s = "\\x68\\x65\\x6c\\x6c\\x6f\\x77\\x6f\\x72\\x6c\\x64";\n'
    content, findings = _clean("source", src)
    assert content == src
    assert findings[0].category == "obfuscation"
    assert not findings[0].quarantined


def test_secret_masked_in_content_and_snippet():
    key = "sk_live_" + "A1b2C3d4E5f6G7h8I9j0K1l2M3"
    content, findings = _clean("source", f'const stripe = "{key}";\n')
    assert key not in content
    assert "__REPLACE_ME__" in content
    assert key not in findings[0].snippet
    assert findings[0].category == "exposed-secret"


def test_ghost_accessors_rewritten_with_triggers():
    src = "const s = lovable.auth.getSession();\nif (lovable.flags.get('beta')) lovable.track('x');\n"
    content, findings = _clean("source", src)
    assert content == "const s = getAuthSession();\nif (getFeatureFlag('beta')) trackEvent('x');\n"
    assert [f.trigger for f in findings] == [
        "needs-auth-session-shim",
        "needs-feature-flag-shim",
        "needs-analytics-shim",
    ]


def test_jsx_data_attributes_and_markers_removed():
    src = (
        "// @lovable generated component\n"
        "window.__lovableEditor = true;\n"
        'export const B = () => <button data-lov-id="b1" className="x">Hi</button>;\n'
    )
    content, findings = _clean("source", src)
    assert content == 'export const B = () => <button className="x">Hi</button>;\n'
    assert {f.severity for f in findings} <= {MAJOR, MINOR}


def test_data_attribute_names_must_match_exactly():
    src = '<p data-lovely="x" data-lovable-id="a" data-lov-id="b" data-bolt={id}>Hi</p>;\n'
    content, findings = _clean("source", src)
    assert content == '<p data-lovely="x">Hi</p>;\n'
    assert len(findings) == 3
    assert {f.rule_id for f in findings} == {"platform-data-attribute"}


# --- Other kinds ---


def test_markup_script_cdn_and_meta_removed():
    html = (
        "<html>\n<head>\n"
        '  <meta name="author" content="Lovable" />\n'
        '  <link rel="stylesheet" href="https://cdn.gptengineer.app/base.css">\n'
        '  <script src="https://cdn.gptengineer.app/gptengineer.js" type="module"></script>\n'
        "</head>\n<body></body>\n</html>\n"
    )
    content, findings = _clean("markup", html, "index.html")
    assert content == "<html>\n<head>\n</head>\n<body></body>\n</html>\n"
    assert {f.category for f in findings} == {"proprietary-cdn", "ghost-hook"}


def test_stylesheet_cdn_references_removed():
    css = '@import url("https://cdn.lovable.app/fonts.css");\nbody { background: url(https://assets.lovable.dev/bg.png); }\n'
    content, findings = _clean("stylesheet", css, "src/index.css")
    assert content == "body { background: none; }\n"
    assert len(findings) == 2


def test_env_values_placeholdered_and_idempotent():
    env = "VITE_LOVABLE_PROJECT_ID=abc\nOPENAI_API_KEY=sk-abcdefghijklmnopqrstuvwxyz123456\nPORT=3000\n"
    content, findings = _clean("env", env, ".env")
    assert content == "VITE_LOVABLE_PROJECT_ID=__REPLACE_ME__\nOPENAI_API_KEY=__REPLACE_ME__\nPORT=3000\n"
    assert len(findings) == 2
    again, more = _clean("env", content, ".env")
    assert again == content
    assert more == []


def test_docs_get_cosmetic_minor_rewrites_only():
    doc = "Built with Lovable.\nSee https://my-app.lovable.app/docs for the demo.\n"
    content, findings = _clean("doc", doc, "README.md")
    assert content == "Built with the original platform.\nSee https://example.com for the demo.\n"
    assert {f.severity for f in findings} == {MINOR}


def test_delete_rules_only_for_build_config():
    assert [r.rule_id for r in CATALOG.delete_rules_for("build-config")] == ["platform-generated-config"]
    assert CATALOG.delete_rules_for("source") == []
