from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterable

from ..components import build_components
from ..config import get_settings
from ..core.models import MarketRef
from ..submitter import OutcomeSubmitter

logger = logging.getLogger(__name__)


async def _resolve_all(refs: AsyncIterable[MarketRef], submitter: OutcomeSubmitter) -> Counter[str]:
    outcomes: Counter[str] = Counter()
    seen: set[int] = set()
    async for ref in refs:
        if ref.id in seen:
            continue
        seen.add(ref.id)
        try:
            result = await submitter.resolve_and_submit(ref.id)
        except Exception:
            logger.exception("Failed to resolve market %s", ref.id)
            outcomes["error"] += 1
            continue
        outcomes[result.reason] += 1
        logger.info("Market %s: %s", ref.id, result.reason)
    return outcomes


async def run_backfill(from_block: int | None, to_block: int | None, sweep: bool) -> None:
    settings = get_settings()
    components = build_components(settings)
    try:
        if sweep:
            outcomes = await _resolve_all(components.watcher.enumerate_awaiting(), components.submitter)
        else:
            start = settings.start_block if from_block is None else from_block
            backfill = components.watcher.backfill(start, to_block)
            outcomes = await _resolve_all(backfill, components.submitter)
            report = backfill.report
            if report is not None and report.checkpoint is not None:
                await components.store.set_checkpoint(report.checkpoint)
        logger.info("Backfill run completed: %s", dict(outcomes))
    finally:
        await components.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    parser = argparse.ArgumentParser(description="Resolve markets closed in a historical block range")
    parser.add_argument("--from-block", type=int, default=None, help="First block to scan (default START_BLOCK)")
    parser.add_argument("--to-block", type=int, default=None, help="Last block to scan (default chain head)")
    parser.add_argument(
        "--sweep",
        action="store_true",
        help="Enumerate every market id instead of scanning logs",
    )
    args = parser.parse_args()
    asyncio.run(run_backfill(args.from_block, args.to_block, args.sweep))
