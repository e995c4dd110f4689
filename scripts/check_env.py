#!/usr/bin/env python3
"""Smoke test for the local environment."""

from __future__ import annotations

import importlib.metadata
import platform
import sqlite3
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

DISTRIBUTIONS = (
    "numpy",
    "onnxruntime",
    "tokenizers",
    "sqlite-vec",
    "requests",
    "pypdf",
    "python-docx",
    "pandas",
    "openpyxl",
    "PyYAML",
    "pydantic",
    "flask",
)


def get_version(distribution_name: str) -> str:
    try:
        return importlib.metadata.version(distribution_name)
    except importlib.metadata.PackageNotFoundError:
        return "not installed"


def print_versions() -> None:
    print("=== Environment versions ===")
    print(f"python: {platform.python_version()}")
    print(f"sqlite: {sqlite3.sqlite_version}")
    for name in DISTRIBUTIONS:
        print(f"{name}: {get_version(name)}")


def run_import_checks() -> list[str]:
    failures: list[str] = []

    for module_name in ("numpy", "onnxruntime", "tokenizers", "pypdf", "docx", "pandas", "yaml", "flask"):
        try:
            __import__(module_name)
            print(f"[OK] import {module_name}")
        except Exception as exc:  # pragma: no cover - intentional broad catch for smoke test
            failures.append(f"import {module_name} -> {exc}")

    try:
        import sqlite_vec

        con = sqlite3.connect(":memory:")
        con.enable_load_extension(True)
        sqlite_vec.load(con)
        (version,) = con.execute("SELECT vec_version()").fetchone()
        con.close()
        print(f"[OK] sqlite-vec extension loads ({version})")
    except Exception as exc:  # pragma: no cover
        failures.append(f"sqlite-vec extension -> {exc}")

    try:
        from localsearch.indexing.config import IndexingSettings

        settings = IndexingSettings.load()
        print(f"[OK] model cache dir: {settings.embeddings.resolve_model_dir()}")
    except Exception as exc:  # pragma: no cover
        failures.append(f"localsearch config -> {exc}")

    return failures


def main() -> int:
    print_versions()
    major, minor = sys.version_info[:2]
    if major != 3 or minor < 10:
        print(
            "\n[ERROR] Unsupported Python version: "
            f"{major}.{minor}. Use Python 3.10 or newer."
        )
        return 1

    print("\n=== Import checks ===")
    failures = run_import_checks()
    if failures:
        print("\n[ERROR] Import checks failed:")
        for failure in failures:
            print(f"- {failure}")
        return 1

    print("\n[SUCCESS] Environment smoke test passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
