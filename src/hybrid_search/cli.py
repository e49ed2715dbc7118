"""
Command Line Interface - Index a JSONL corpus and run searches against it

Part of the Hybrid Search Engine.

Each input line is a JSON object with a "text" field and optional "id",
"metadata" and "embedding" fields.

Usage:
    hybrid-search search corpus.jsonl "cat videos" --k 5
    hybrid-search stats corpus.jsonl --config engine.yaml

License: MIT
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .config import ConfigManager
from .core.embedding_generator import OpenAIEmbeddingProvider
from .engine import SearchEngine
from .exceptions import HybridSearchError
from .infrastructure.logging_config import setup_logging
from .utils.helpers import truncate_text

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hybrid-search", description="Hybrid BM25 + vector search over a JSONL corpus"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file", default=None)
    parser.add_argument(
        "--openai",
        action="store_true",
        help="Embed documents and queries with the OpenAI embeddings API",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Index a corpus and run one query")
    search.add_argument("corpus", help="JSONL file with one document per line")
    search.add_argument("query", help="Query text")
    search.add_argument("--k", type=int, default=None, help="Maximum results")
    search.add_argument("--min-results", type=int, default=None, help="Minimum acceptable results")
    search.add_argument(
        "--thresholds",
        default=None,
        help="Comma-separated descending similarity thresholds",
    )
    search.add_argument("--json", action="store_true", help="Print the full response as JSON")

    stats = subparsers.add_parser("stats", help="Index a corpus and print engine statistics")
    stats.add_argument("corpus", help="JSONL file with one document per line")

    return parser


def load_corpus(path: str) -> List[Dict[str, Any]]:
    """
    Read documents from a JSONL file.

    Raises:
        ValueError: If a line is not a JSON object with a "text" field
    """
    documents = []
    with open(path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_number}: invalid JSON: {e}") from e
            if not isinstance(record, dict) or "text" not in record:
                raise ValueError(f"{path}:{line_number}: expected an object with a 'text' field")
            documents.append(record)
    return documents


def _build_engine(args: argparse.Namespace) -> SearchEngine:
    config = ConfigManager(args.config).load_config()
    setup_logging(config.logging, config.environment)

    provider = None
    if args.openai:
        provider = OpenAIEmbeddingProvider(
            model=config.embedding.model,
            dimension=config.embedding.dimension,
            timeout=config.embedding.timeout,
        )

    engine = SearchEngine(config, embedding_provider=provider)
    for record in load_corpus(args.corpus):
        engine.index_document(
            record["text"],
            metadata=record.get("metadata"),
            embedding=record.get("embedding"),
            document_id=record.get("id"),
        )
    logger.info(f"Indexed {len(engine.index)} documents from {args.corpus}")
    return engine


def _run_search(args: argparse.Namespace) -> int:
    options: Dict[str, Any] = {}
    if args.k is not None:
        options["k"] = args.k
    if args.min_results is not None:
        options["min_results"] = args.min_results
    if args.thresholds:
        options["thresholds"] = [float(x) for x in args.thresholds.split(",") if x.strip()]

    with _build_engine(args) as engine:
        response = engine.search(args.query, options)

    if args.json:
        print(json.dumps(response.to_dict(), indent=2, default=str))
        return 0

    print(
        f"{len(response)} results (state={response.state.value}, "
        f"tier={response.tier_index}, threshold={response.threshold})"
    )
    if response.degraded:
        print(f"degraded: {', '.join(response.degraded_reasons)}")
    for result in response:
        vector = "-" if result.vector_score is None else f"{result.vector_score:.3f}"
        print(
            f"{result.rank:>3}. {result.document_id}  fused={result.fused_score:.3f} "
            f"bm25={result.bm25_score:.3f} vector={vector}"
        )
        if result.snippet:
            print(f"     {truncate_text(result.snippet.replace(chr(10), ' '), 100)}")
    return 0


def _run_stats(args: argparse.Namespace) -> int:
    with _build_engine(args) as engine:
        stats = engine.get_stats()
    print(json.dumps(stats, indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    commands = {
        "search": _run_search,
        "stats": _run_stats,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.error("Unknown command")
        return 1

    if not Path(args.corpus).is_file():
        print(f"Corpus file not found: {args.corpus}", file=sys.stderr)
        return 2

    try:
        return handler(args)
    except (ValueError, HybridSearchError) as e:
        # Invalid input is reported without a traceback
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
