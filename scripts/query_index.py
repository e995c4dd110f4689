#!/usr/bin/env python3
"""CLI search over an already built project index."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from localsearch.indexing.config import IndexingSettings
from localsearch.indexing.session import init_session


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Query the local semantic index of a project.")
    parser.add_argument("project_dir", help="Indexed project directory.")
    parser.add_argument("--query", required=True, help="Free-text query.")
    parser.add_argument("--top_k", type=int, default=0, help="Number of results (default from config).")
    parser.add_argument(
        "--config",
        default=str(PROJECT_ROOT / "configs/indexing.yaml"),
        help="Path to indexing YAML config.",
    )
    parser.add_argument("--json", action="store_true", help="Print raw JSON results.")
    parser.add_argument("--max-chars", type=int, default=300, help="Preview length per result.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    load_dotenv(PROJECT_ROOT / ".env", override=False)
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    config_path = args.config if Path(args.config).exists() else None
    settings = IndexingSettings.load(config_path)
    top_k = args.top_k if args.top_k > 0 else settings.search.default_top_k
    top_k = min(top_k, settings.search.max_top_k)

    # Opening a session also picks up files changed since the last build.
    session = init_session(args.project_dir, settings=settings)
    try:
        results = session.search(args.query, top_k)
    finally:
        session.close()

    if args.json:
        print(json.dumps([item.to_dict() for item in results], ensure_ascii=False, indent=2))
        return 0

    print(f"Query: {args.query}")
    print(f"Results: {len(results)}")
    for rank, item in enumerate(results, start=1):
        preview = item.content[: args.max_chars].replace("\n", " ")
        print(
            f"\n[{rank}] distance={item.distance:.4f} "
            f"{item.path}:{item.start_line}-{item.end_line}"
        )
        if item.heading:
            print(f"    heading: {item.heading}")
        print(f"    {preview}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
