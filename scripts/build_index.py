#!/usr/bin/env python3
"""CLI script to build (or rebuild) the semantic index of one project directory."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from localsearch.indexing.config import IndexingSettings
from localsearch.indexing.embeddings import ModelProgress
from localsearch.indexing.indexer import StatusEvent
from localsearch.indexing.session import init_session, rebuild_session


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index a project directory for local semantic search.")
    parser.add_argument("project_dir", help="Directory to index.")
    parser.add_argument(
        "--config",
        default=str(PROJECT_ROOT / "configs/indexing.yaml"),
        help="Path to indexing YAML config.",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Discard the existing index and rebuild it from scratch.",
    )
    parser.add_argument(
        "--model-dir",
        default="",
        help="Optional model cache directory override.",
    )
    parser.add_argument(
        "--log-file",
        default=str(PROJECT_ROOT / "logs/build_index.log"),
        help="Log file path (empty to disable).",
    )
    return parser.parse_args()


def setup_logging(log_path: Path | None) -> logging.Logger:
    logger = logging.getLogger("build_index")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


def apply_overrides(settings: IndexingSettings, args: argparse.Namespace) -> IndexingSettings:
    if not args.model_dir:
        return settings
    embeddings = replace(settings.embeddings, model_dir=args.model_dir)
    return replace(settings, embeddings=embeddings)


def _print_summary(summary: dict[str, Any]) -> None:
    report = summary["report"]
    stats = summary["stats"]
    cleanup = summary.get("cleanup") or {}
    print("\n=== Index build summary ===")
    print(f"Project dir          : {summary['project_dir']}")
    print(f"Index db             : {summary['db_path']}")
    print(f"Files indexed        : {report['files_indexed']}")
    print(f"Files skipped        : {report['files_skipped']}")
    print(f"  unchanged          : {report['files_unchanged']}")
    print(f"  failed             : {report['files_failed']}")
    print(f"Chunks created       : {report['chunks_created']}")
    print(f"Stale files removed  : {cleanup.get('files_removed', 0)}")
    print(f"Total files in index : {stats['file_count']}")
    print(f"Total chunks in index: {stats['chunk_count']}")
    print(f"DB size (bytes)      : {stats['db_size_bytes']}")
    print(f"Indexing time (s)    : {report['elapsed_seconds']}")


def main() -> int:
    args = parse_args()
    log_path = Path(args.log_file).resolve() if args.log_file else None
    logger = setup_logging(log_path)
    load_dotenv(PROJECT_ROOT / ".env", override=False)

    def on_status(event: StatusEvent) -> None:
        logger.info("[%s] %s", event.status, event.message)

    def on_progress(event: ModelProgress) -> None:
        if event.progress < 0:
            logger.info("%s: %s bytes", event.stage, event.downloaded_bytes)
        else:
            logger.info("%s: %.0f%%", event.stage, event.progress * 100)

    try:
        config_path = args.config if Path(args.config).exists() else None
        settings = apply_overrides(IndexingSettings.load(config_path), args)
        logger.info("Indexing %s with config=%s", args.project_dir, config_path or "<defaults>")

        lifecycle = rebuild_session if args.rebuild else init_session
        session = lifecycle(
            args.project_dir,
            settings=settings,
            status_callback=on_status,
            progress_callback=on_progress,
            logger=logger,
        )
        try:
            summary = session.summary()
        finally:
            session.close()
        logger.info("Build summary: %s", summary["report"])
        _print_summary(summary)
        return 0

    except Exception as exc:  # pragma: no cover - CLI guard
        logger.exception("Index build failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
