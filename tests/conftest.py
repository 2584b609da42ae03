"""Shared test fixtures for sovclean tests."""

from __future__ import annotations

import json

import pytest

from sovclean.config import Policy
from sovclean.store import Store


def package_json(**sections) -> str:
    data = {"name": "demo-app", "private": True, "version": "0.1.0"}
    data.update(sections)
    return json.dumps(data, indent=2) + "\n"


@pytest.fixture
def store() -> Store:
    """Create a fresh in-memory run store."""
    return Store()


@pytest.fixture
def token_secret() -> bytes:
    return b"test-secret-do-not-use-in-production"


@pytest.fixture
def policy() -> Policy:
    return Policy(workers=2)


@pytest.fixture
def clean_project() -> dict[str, str]:
    """A small project with nothing to clean."""
    return {
        "package.json": package_json(
            dependencies={"react": "^18.3.1", "react-dom": "^18.3.1"},
            devDependencies={"vite": "^5.4.0", "typescript": "^5.5.0"},
        ),
        "index.html": (
            "<!doctype html>\n<html>\n  <head>\n    <title>Demo</title>\n  </head>\n"
            "  <body>\n    <div id=\"root\"></div>\n"
            "    <script type=\"module\" src=\"/src/main.tsx\"></script>\n  </body>\n</html>\n"
        ),
        "src/main.tsx": (
            'import React from "react";\n'
            'import { createRoot } from "react-dom/client";\n'
            'import App from "./App";\n'
            "\n"
            'createRoot(document.getElementById("root")!).render(<App />);\n'
        ),
        "src/App.tsx": (
            'import { useState } from "react";\n'
            "\n"
            "export default function App() {\n"
            "  const [count, setCount] = useState(0);\n"
            "  return <button onClick={() => setCount(count + 1)}>{count}</button>;\n"
            "}\n"
        ),
    }


@pytest.fixture
def platform_project(clean_project) -> dict[str, str | bytes]:
    """A project exported from a hosted builder, with lock-in all over it."""
    files: dict[str, str | bytes] = dict(clean_project)
    files["package.json"] = package_json(
        scripts={"dev": "vite", "build": "vite build", "sync": "npx lovable sync"},
        dependencies={"react": "^18.3.1", "react-dom": "^18.3.1", "@lovable/runtime": "^1.0.0"},
        devDependencies={"vite": "^5.4.0", "typescript": "^5.5.0", "lovable-tagger": "^1.1.0"},
    )
    files["vite.config.ts"] = (
        'import { defineConfig } from "vite";\n'
        'import react from "@vitejs/plugin-react";\n'
        'import { componentTagger } from "lovable-tagger";\n'
        "\n"
        "export default defineConfig(({ mode }) => ({\n"
        '  plugins: [react(), mode === "development" && componentTagger()].filter(Boolean),\n'
        "}));\n"
    )
    files["src/App.tsx"] = (
        'import { useState } from "react";\n'
        'import { lovable } from "@lovable/runtime";\n'
        "\n"
        "export default function App() {\n"
        "  const [count, setCount] = useState(0);\n"
        "  const session = lovable.auth.getSession();\n"
        '  lovable.track("clicked", { count });\n'
        '  fetch("https://events.lovable.app/collect");\n'
        "  return <button data-lov-id=\"btn-1\" onClick={() => setCount(count + 1)}>{count}</button>;\n"
        "}\n"
    )
    files[".lovable/settings.json"] = '{"projectId": "abc"}\n'
    files["README.md"] = "# Demo\n\nBuilt with Lovable. Live at https://demo.lovable.app/\n"
    files[".env"] = "VITE_LOVABLE_PROJECT_ID=abc123\nVITE_API_URL=http://localhost:3000\n"
    files["public/logo.png"] = b"\x89PNG\r\n\x1a\n\x00\x00lovable.app"
    return files
