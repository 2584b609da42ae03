"""Tests for HMAC export tokens and the export gate."""

from __future__ import annotations

import time

import pytest

from sovclean.config import Policy
from sovclean.export import REVIEW_BANNER, check_export_token, plan_export
from sovclean.pipeline import clean
from sovclean.tokens import make_export_token, verify_export_token

SECRET = b"test-secret"


def _sample_payload(exp_offset: float = 300.0) -> dict:
    return {
        "projectId": "proj_1",
        "treeDigest": "ab" * 32,
        "score": 97,
        "verdict": "sovereign",
        "exp": time.time() + exp_offset,
    }


def test_roundtrip():
    token = make_export_token(_sample_payload(), SECRET)
    decoded = verify_export_token(token, SECRET)
    assert decoded["projectId"] == "proj_1"
    assert decoded["score"] == 97


def test_expired_token():
    token = make_export_token(_sample_payload(exp_offset=-10.0), SECRET)
    with pytest.raises(TimeoutError):
        verify_export_token(token, SECRET)


def test_wrong_secret():
    token = make_export_token(_sample_payload(), SECRET)
    with pytest.raises(ValueError):
        verify_export_token(token, b"wrong-secret")


def test_tampered_body():
    token = make_export_token(_sample_payload(), SECRET)
    body, sig = token.split(".", 1)
    forged = make_export_token({**_sample_payload(), "verdict": "blocked"}, SECRET).split(".", 1)[0]
    with pytest.raises(ValueError):
        verify_export_token(f"{forged}.{sig}", SECRET)
    with pytest.raises(ValueError):
        verify_export_token(body, SECRET)


def test_binding_mismatch():
    token = make_export_token(_sample_payload(), SECRET)
    assert verify_export_token(token, SECRET, {"projectId": "proj_1"})["verdict"] == "sovereign"
    with pytest.raises(ValueError, match="treeDigest"):
        verify_export_token(token, SECRET, {"treeDigest": "cd" * 32})


# --- Export gate ---


def test_sovereign_run_gets_token(clean_project, token_secret):
    result = clean(clean_project, policy=Policy(workers=1))
    resp = plan_export("proj_1", result, token_secret)
    assert resp["ok"] is True
    payload = resp["result"]
    assert payload["warnings"] == []
    assert payload["bindings"]["treeDigest"] == result.final_tree.digest()
    assert check_export_token(payload["exportToken"], token_secret, "proj_1", result)["verdict"] == "sovereign"


def test_review_run_gets_banner(platform_project, token_secret):
    result = clean(platform_project, policy=Policy(workers=1))
    resp = plan_export("proj_2", result, token_secret)
    assert resp["ok"] is True
    assert resp["result"]["warnings"] == [REVIEW_BANNER]


def test_token_bound_to_the_cleaned_tree(clean_project, platform_project, token_secret):
    good = clean(clean_project, policy=Policy(workers=1))
    other = clean(platform_project, policy=Policy(workers=1))
    token = plan_export("proj_1", good, token_secret)["result"]["exportToken"]
    with pytest.raises(ValueError):
        check_export_token(token, token_secret, "proj_1", other)


def test_blocked_run_refused(token_secret):
    files = {"src/a.ts": "\n".join(f"eval(x{i});" for i in range(10)) + "\n"}
    result = clean(files, policy=Policy(workers=1, quarantine_factor=1.0, required_files=()))
    resp = plan_export("proj_3", result, token_secret)
    assert resp["ok"] is False
    assert resp["error"]["code"] == "E_EXPORT_BLOCKED"
    assert "blocked" in resp["error"]["message"]


def test_failed_audit_refused(token_secret):
    result = clean({"src/a.ts": "export const a = 1;\n"}, policy=Policy(workers=1))
    resp = plan_export("proj_4", result, token_secret)
    assert resp["ok"] is False
    assert resp["error"]["message"] == "Export refused: final audit failed."
