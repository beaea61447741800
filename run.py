"""Command line entry point for building and querying the knowledge base."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from ragcore.config import load_config
from ragcore.exceptions import RagError
from ragcore.retrieval.service import RetrievalService

POLL_INTERVAL_SECONDS = 1.0


def _build(service: RetrievalService, args: argparse.Namespace) -> int:
    session, thread = service.start_background_build(
        directory=args.dir, clear_existing=not args.keep_existing
    )
    while thread.is_alive():
        progress = session.progress
        print(f"\r{progress.progress_bar()} {progress.current_step}", end="", flush=True)
        time.sleep(POLL_INTERVAL_SECONDS)
    thread.join()

    progress = session.progress
    print()
    print(progress.to_console_output())
    return 0 if progress.error_message is None else 1


def _query(service: RetrievalService, args: argparse.Namespace) -> int:
    result = service.query(args.question, top_k=args.top_k, heading_boost=args.boost)
    if result.suggestion:
        print(result.suggestion)
    for index, chunk in enumerate(result.retrieved_chunks, start=1):
        heading = f" [{chunk.heading_context}]" if chunk.heading_context else ""
        print(f"\n[{index}] {chunk.source_file}#{chunk.chunk_index}{heading} "
              f"(similarity: {chunk.similarity:.3f})")
        print(chunk.text[:300])
    if result.answer:
        print(f"\n{result.answer}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, wire the service from config and run one command."""
    parser = argparse.ArgumentParser(description="Knowledge base indexing and retrieval")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Index a directory of documents")
    build_parser.add_argument("--dir", default=None, help="Documents directory")
    build_parser.add_argument(
        "--keep-existing", action="store_true", help="Do not clear the index first"
    )

    query_parser = subparsers.add_parser("query", help="Search the knowledge base")
    query_parser.add_argument("question")
    query_parser.add_argument("--top-k", type=int, default=None)
    query_parser.add_argument("--boost", action="store_true", help="Rerank by heading keywords")

    subparsers.add_parser("stats", help="Show index statistics")
    subparsers.add_parser("clear", help="Delete every indexed chunk")

    args = parser.parse_args(argv)
    config = load_config(args.config)

    logging.basicConfig(
        level=config.app.log_level,
        format="[%(levelname)s] %(asctime)s %(name)s - %(message)s",
    )

    # Ensure required directories exist
    Path(config.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    service = RetrievalService.from_config(config)
    try:
        if args.command == "build":
            return _build(service, args)
        if args.command == "query":
            return _query(service, args)
        if args.command == "stats":
            print(json.dumps(service.stats().model_dump(), indent=2))
            return 0
        if args.command == "clear":
            print(f"Removed {service.clear()} chunks")
            return 0
    except RagError as exc:
        logging.getLogger(__name__).error("%s", exc)
        return 1
    finally:
        service.close()
    return 2


if __name__ == "__main__":
    sys.exit(main())
