import sys
import asyncio
import logging
from typing import Optional, Sequence

from .aggregate import RangeAggregator
from .config import AuditConfig, parse_args, resolve_block_range
from .db_cli import DatabaseManager
from .errors import AuditError
from .models import AuditResult
from .report import Reporter
from .rpc_cli import NodeClient

# --- LOGGING SETUP ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger()


async def run(cfg: AuditConfig, reporter: Optional[Reporter] = None) -> AuditResult:
    reporter = reporter or Reporter()
    async with NodeClient(cfg.node_url, timeout_s=cfg.rpc_timeout_s) as node:
        current_block = None
        if cfg.to_block is None:
            current_block = await node.block_number()
            logger.info(f"Current block is {current_block}.")
        from_block, to_block = resolve_block_range(cfg, current_block, notify=reporter.out)

        async with DatabaseManager(cfg.db_url) as db:
            aggregator = RangeAggregator(node, db, reporter, analyze_overpayment=cfg.analyze_overpayment)
            return await aggregator.run(from_block, to_block)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        cfg = parse_args(argv)
        logger.setLevel(cfg.log_level)
        asyncio.run(run(cfg))
    except AuditError as e:
        logger.error(f"Audit aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
