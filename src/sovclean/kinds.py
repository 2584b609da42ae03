"""File kind classification by basename and extension."""

from __future__ import annotations

import re

MANIFEST = "manifest"
BUILD_CONFIG = "build-config"
MARKUP = "markup"
STYLESHEET = "stylesheet"
SOURCE = "source"
ENV = "env"
DOC = "doc"
SHELL = "shell"
SQL = "sql"
OTHER = "other"

ALL_KINDS: frozenset[str] = frozenset(
    {MANIFEST, BUILD_CONFIG, MARKUP, STYLESHEET, SOURCE, ENV, DOC, SHELL, SQL, OTHER}
)

MANIFEST_NAMES: set[str] = {"package.json"}

_BUILD_CONFIG_RE = re.compile(
    r"^(?:vite|webpack|rollup|next|nuxt|svelte|astro|tailwind|postcss|babel|esbuild|tsup)"
    r"\.config(?:\.[\w-]+)?\.(?:js|cjs|mjs|ts|cts|mts|json)$"
)
_BUILD_CONFIG_NAMES: set[str] = {
    "vercel.json",
    "netlify.toml",
    "Dockerfile",
    "docker-compose.yml",
    "docker-compose.yaml",
    ".babelrc",
}
_TSCONFIG_RE = re.compile(r"^tsconfig(?:\.[\w-]+)?\.json$")

_EXTENSIONS: dict[str, str] = {
    ".html": MARKUP,
    ".htm": MARKUP,
    ".vue": MARKUP,
    ".svelte": MARKUP,
    ".astro": MARKUP,
    ".css": STYLESHEET,
    ".scss": STYLESHEET,
    ".sass": STYLESHEET,
    ".less": STYLESHEET,
    ".js": SOURCE,
    ".jsx": SOURCE,
    ".ts": SOURCE,
    ".tsx": SOURCE,
    ".mjs": SOURCE,
    ".cjs": SOURCE,
    ".mts": SOURCE,
    ".cts": SOURCE,
    ".md": DOC,
    ".mdx": DOC,
    ".txt": DOC,
    ".rst": DOC,
    ".sh": SHELL,
    ".bash": SHELL,
    ".zsh": SHELL,
    ".sql": SQL,
}

BINARY_EXTENSIONS: set[str] = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico", ".bmp", ".avif",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".pdf", ".zip", ".gz", ".tgz", ".tar", ".7z",
    ".mp3", ".mp4", ".webm", ".wav", ".ogg",
    ".wasm", ".so", ".dll", ".exe", ".bin",
}


def split_ext(name: str) -> tuple[str, str]:
    """Split a basename into (stem, last extension).

    "App.test.tsx" -> ("App.test", ".tsx")
    ".env"         -> (".env", "")
    """
    if name.startswith(".") and name.count(".") == 1:
        return name, ""
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        return name, ""
    return stem, "." + ext.lower()


def file_kind(path: str) -> str:
    name = path.rsplit("/", 1)[-1]

    if name in MANIFEST_NAMES:
        return MANIFEST
    if name == ".env" or name.startswith(".env."):
        return ENV
    if name in _BUILD_CONFIG_NAMES or _BUILD_CONFIG_RE.match(name) or _TSCONFIG_RE.match(name):
        return BUILD_CONFIG

    _, ext = split_ext(name)
    return _EXTENSIONS.get(ext, OTHER)


def is_binary_path(path: str) -> bool:
    _, ext = split_ext(path.rsplit("/", 1)[-1])
    return ext in BINARY_EXTENSIONS


def is_binary_content(content: str | bytes) -> bool:
    if isinstance(content, bytes):
        return True
    return "\x00" in content
