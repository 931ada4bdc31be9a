# giftvec/main.py
"""
Command line entry points:

  giftvec backfill [--batch-size N] [--concurrency N]
  giftvec embed-ids ID [ID ...]
  giftvec estimate ID [ID ...]
  giftvec benchmark [--iterations N] [--tune]
  giftvec tune [--efforts 10 20 40 ...]
  giftvec recommend --query "gift for mom" [--user-id U] [--limit N]
  giftvec similar PRODUCT_ID [--limit N]
"""
from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from giftvec.core.config import get_settings
from giftvec.core.container import Container, open_container
from giftvec.core.exceptions import GiftVecError
from giftvec.core.logging import configure_logging
from giftvec.domain.models.batch import BatchProgress
from giftvec.domain.models.recommendation import Budget, RecommendationContext, RecommendationOptions
from giftvec.utils.locks import RedisLock

logger = logging.getLogger("giftvec")

BACKFILL_LOCK_KEY = "giftvec:backfill"


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def _log_progress(p: BatchProgress) -> None:
    logger.info(
        f"batch {p.current_batch}/{p.total_batches} "
        f"{p.percent_complete:.1f}% ({p.successful_items} ok, {p.failed_items} failed, "
        f"~{p.estimated_remaining_ms / 1000:.0f}s left)"
    )


async def cmd_backfill(c: Container, args) -> int:
    opts = c.batch_options(on_progress=_log_progress)
    if args.batch_size:
        opts.batch_size = args.batch_size
    if args.concurrency:
        opts.concurrency = args.concurrency

    lock: Optional[RedisLock] = None
    if c.redis is not None:
        lock = RedisLock(c.redis, BACKFILL_LOCK_KEY, ttl=c.settings.backfill_lock_ttl)
        if not await lock.acquire():
            logger.error("Another backfill is already running")
            return 1
    else:
        logger.warning("Redis unavailable; running backfill without a lock")

    try:
        result = await c.batch.process_all(opts)
    finally:
        if lock is not None:
            await lock.release()
    _print_json(result.model_dump(mode="json"))
    return 0 if result.failed_items == 0 else 2


async def cmd_embed_ids(c: Container, args) -> int:
    result = await c.batch.process_by_ids(args.ids, c.batch_options(on_progress=_log_progress))
    _print_json(result.model_dump(mode="json"))
    return 0 if result.failed_items == 0 else 2


async def cmd_estimate(c: Container, args) -> int:
    estimate = await c.batch.estimate_cost(args.ids)
    _print_json(estimate.model_dump(mode="json"))
    return 0


async def cmd_benchmark(c: Container, args) -> int:
    suite = await c.benchmark.run_suite(args.iterations, tune=args.tune)
    _print_json(suite.model_dump(mode="json"))
    return 0


async def cmd_tune(c: Container, args) -> int:
    points = await c.benchmark.tune_search_effort(args.efforts, iterations=args.iterations)
    _print_json([p.model_dump(mode="json") for p in points])
    return 0


async def cmd_recommend(c: Container, args) -> int:
    budget = None
    if args.min_price is not None or args.max_price is not None:
        budget = Budget(min=args.min_price, max=args.max_price)
    context = RecommendationContext(
        user_id=args.user_id,
        query=args.query,
        occasion=args.occasion,
        relationship=args.relationship,
        recipient_interests=args.interests or [],
        budget=budget,
        categories=args.categories or [],
    )
    recs = await c.recommendations.get_recommendations(
        context,
        RecommendationOptions(limit=args.limit, enable_diversity=not args.no_diversity),
    )
    _print_json([r.model_dump(mode="json") for r in recs])
    return 0


async def cmd_similar(c: Container, args) -> int:
    recs = await c.recommendations.get_similar_products(args.product_id, options=RecommendationOptions(limit=args.limit))
    _print_json([r.model_dump(mode="json") for r in recs])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="giftvec", description="Gift recommendation vector tooling")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("backfill", help="Embed every active product without an embedding")
    p.add_argument("--batch-size", type=int, default=None)
    p.add_argument("--concurrency", type=int, default=None)
    p.set_defaults(func=cmd_backfill)

    p = sub.add_parser("embed-ids", help="(Re-)embed the given product ids")
    p.add_argument("ids", nargs="+")
    p.set_defaults(func=cmd_embed_ids)

    p = sub.add_parser("estimate", help="Estimate tokens, cost and duration for embedding the given ids")
    p.add_argument("ids", nargs="+")
    p.set_defaults(func=cmd_estimate)

    p = sub.add_parser("benchmark", help="Run the latency benchmark suite")
    p.add_argument("--iterations", type=int, default=100)
    p.add_argument("--tune", action="store_true", help="Include the numCandidates sweep")
    p.set_defaults(func=cmd_benchmark)

    p = sub.add_parser("tune", help="Latency/recall sweep over numCandidates")
    p.add_argument("--efforts", type=int, nargs="+", default=[10, 20, 40, 80, 100, 200])
    p.add_argument("--iterations", type=int, default=20)
    p.set_defaults(func=cmd_tune)

    p = sub.add_parser("recommend", help="Contextual gift recommendations")
    p.add_argument("--query", default=None)
    p.add_argument("--user-id", default=None)
    p.add_argument("--occasion", default=None)
    p.add_argument("--relationship", default=None)
    p.add_argument("--interests", nargs="*", default=None)
    p.add_argument("--categories", nargs="*", default=None)
    p.add_argument("--min-price", type=float, default=None)
    p.add_argument("--max-price", type=float, default=None)
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--no-diversity", action="store_true")
    p.set_defaults(func=cmd_recommend)

    p = sub.add_parser("similar", help="Products similar to a given product")
    p.add_argument("product_id")
    p.add_argument("--limit", type=int, default=10)
    p.set_defaults(func=cmd_similar)

    return parser


async def run(args) -> int:
    async with open_container(get_settings()) as c:
        return await args.func(c, args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(logging.DEBUG if (args.debug or settings.DEBUG) else logging.INFO)
    try:
        return asyncio.run(run(args))
    except GiftVecError as e:
        logger.error(f"{e.code}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
