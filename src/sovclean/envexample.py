"""Generated .env.example: every environment variable the cleaned code reads.

Values are left empty. A hand-written .env.example (no marker on its first
line) is never touched.
"""

from __future__ import annotations

import re
from typing import Iterable

from sovclean.kinds import BUILD_CONFIG, SOURCE
from sovclean.models import VirtualFile, VirtualTree
from sovclean.polyfills import is_shim_path

ENV_EXAMPLE_PATH = ".env.example"
ENV_MARKER = "# @sovereign-env"

_ENV_READ = re.compile(r"\b(?:import\.meta\.env|process\.env)\.([A-Z][A-Z0-9_]*)\b")
# set by the toolchain, not by whoever deploys
BUILTIN_VARS = frozenset({"MODE", "DEV", "PROD", "SSR", "BASE_URL", "NODE_ENV"})
# platform variables are flagged for renaming, not advertised
_PLATFORM_VAR = re.compile(r"(?:^|_)(?:LOVABLE|GPT|GPTENG|GPT_ENGINEER|BOLT|V0)(?:_|$)")


def collect_env_vars(tree: VirtualTree) -> list[str]:
    """Sorted names read through import.meta.env or process.env."""
    names: set[str] = set()
    for f in tree.files():
        if f.binary or f.kind not in (SOURCE, BUILD_CONFIG) or is_shim_path(f.path):
            continue
        for m in _ENV_READ.finditer(f.text):
            name = m.group(1)
            if name in BUILTIN_VARS or _PLATFORM_VAR.search(name):
                continue
            names.add(name)
    return sorted(names)


def render_env_example(names: Iterable[str]) -> str:
    lines = [
        f"{ENV_MARKER} generated from the variables the code reads.",
        "# Fill in values for your own deployment. Do not commit real secrets.",
        "",
    ]
    lines += [f"{name}=" for name in names]
    return "\n".join(lines) + "\n"


def apply_env_example(tree: VirtualTree) -> tuple[VirtualTree, tuple[str, ...]]:
    """Write (or regenerate) .env.example. Returns the tree and the names listed."""
    names = collect_env_vars(tree)
    if not names:
        return tree, ()
    existing = tree.get(ENV_EXAMPLE_PATH)
    if existing is not None and (existing.binary or not existing.text.startswith(ENV_MARKER)):
        return tree, tuple(names)
    content = render_env_example(names)
    if existing is not None and existing.text == content:
        return tree, tuple(names)
    return tree.with_files([VirtualFile(path=ENV_EXAMPLE_PATH, content=content)]), tuple(names)
