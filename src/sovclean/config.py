"""Configuration: cleaning policy (YAML), token secret, TTL."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any

import yaml

SERVER_NAME = "sovclean"
SERVER_VERSION = "0.3.0"

POLICY_ENV = "SOVCLEAN_POLICY"
TOKEN_SECRET_ENV = "SOVCLEAN_TOKEN_SECRET"
TOKEN_TTL_SECONDS = 900  # 15 minutes

# Reserved namespace for generated compatibility code
SHIM_DIR = "src/__sovereign_shims__"
PLACEHOLDER_VALUE = "__REPLACE_ME__"

DEFAULT_DENIED_FILENAMES: tuple[str, ...] = (
    ".lovable",
    ".lovable.json",
    "lovable.config.*",
    "lovable-lock*",
    ".gptengineer*",
    ".gpteng",
    ".bolt",
    "bolt.config.*",
    ".v0",
    "v0.config.*",
    "v0-manifest.json",
    ".cursorrc",
    ".cursor.json",
    "cursor.config.*",
    ".replit",
    ".replit.json",
    "replit.nix",
)

# Root-anchored directory prefixes; "**/name" matches the directory at any depth
DEFAULT_DENIED_DIRS: tuple[str, ...] = (
    "**/node_modules",
    "**/.git",
    "dist",
    ".lovable",
    ".gptengineer",
    ".bolt",
    ".v0",
    ".cursor",
    ".replit",
)


@dataclass(frozen=True)
class Policy:
    """Tunable cleaning policy. Defaults are the shipped policy."""

    weight_critical: int = 15
    weight_major: int = 5
    weight_minor: int = 1
    quarantine_factor: float = 0.2
    sovereign_threshold: int = 95
    blocked_threshold: int = 50
    max_files: int = 5000
    max_total_chars: int = 50_000_000
    max_file_chars: int = 500_000
    file_time_budget_ms: int = 5000  # 0 disables the per-file rule budget
    denied_filenames: tuple[str, ...] = DEFAULT_DENIED_FILENAMES
    denied_dirs: tuple[str, ...] = DEFAULT_DENIED_DIRS
    required_files: tuple[str, ...] = ("package.json",)
    extra_denied_packages: tuple[str, ...] = ()
    workers: int = 4

    def weight(self, severity: str) -> int:
        return {
            "critical": self.weight_critical,
            "major": self.weight_major,
            "minor": self.weight_minor,
        }[severity]


DEFAULT_POLICY = Policy()

_INT_FIELDS = {
    "weight_critical", "weight_major", "weight_minor",
    "sovereign_threshold", "blocked_threshold",
    "max_files", "max_total_chars", "max_file_chars", "file_time_budget_ms", "workers",
}
_LIST_FIELDS = {"denied_filenames", "denied_dirs", "required_files", "extra_denied_packages"}


def policy_from_mapping(data: dict[str, Any]) -> Policy:
    """Build a Policy from a plain mapping (parsed YAML).

    `weights: {critical, major, minor}` is accepted as shorthand for the
    weight_* keys. Unknown keys and ill-typed values fail closed.
    """
    if not isinstance(data, dict):
        raise RuntimeError("Policy document must be a mapping.")

    data = dict(data)
    weights = data.pop("weights", None)
    if weights is not None:
        if not isinstance(weights, dict):
            raise RuntimeError("Policy 'weights' must be a mapping of severity -> int.")
        for sev, value in weights.items():
            key = f"weight_{sev}"
            if key not in _INT_FIELDS:
                raise RuntimeError(f"Unknown severity in policy weights: {sev!r}")
            data[key] = value

    known = {f.name for f in fields(Policy)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise RuntimeError(f"Unknown policy keys: {', '.join(unknown)}")

    changes: dict[str, Any] = {}
    for key, value in data.items():
        if key in _INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise RuntimeError(f"Policy '{key}' must be a non-negative integer.")
            changes[key] = value
        elif key in _LIST_FIELDS:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise RuntimeError(f"Policy '{key}' must be a list of strings.")
            changes[key] = tuple(value)
        elif key == "quarantine_factor":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
                raise RuntimeError("Policy 'quarantine_factor' must be a number in [0, 1].")
            changes[key] = float(value)

    policy = replace(DEFAULT_POLICY, **changes)
    _check_shape(policy)
    return policy


def _check_shape(policy: Policy) -> None:
    if not policy.weight_critical >= policy.weight_major >= policy.weight_minor:
        raise RuntimeError("Policy weights must be ordered: critical >= major >= minor.")
    if not 0 <= policy.blocked_threshold <= policy.sovereign_threshold <= 100:
        raise RuntimeError("Policy thresholds must satisfy 0 <= blocked <= sovereign <= 100.")
    if policy.workers < 1:
        raise RuntimeError("Policy 'workers' must be at least 1.")


def load_policy(path: str | None = None) -> Policy:
    """Load the cleaning policy.

    Reads the YAML file at `path`, else the file named by SOVCLEAN_POLICY.
    With neither set, the shipped defaults apply. A named file that is
    missing or malformed fails closed.
    """
    path = path or os.environ.get(POLICY_ENV, "")
    if not path:
        return DEFAULT_POLICY

    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise RuntimeError(f"Cannot read policy file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Policy file {path} is not valid YAML: {exc}") from exc

    if data is None:
        return DEFAULT_POLICY
    return policy_from_mapping(data)


def get_token_secret() -> bytes:
    """Return export-token signing secret from env. Fail closed if missing."""
    secret = os.environ.get(TOKEN_SECRET_ENV, "")
    if not secret:
        raise RuntimeError(
            f"{TOKEN_SECRET_ENV} environment variable is required. "
            "Generate a random value: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    return secret.encode("utf-8")
