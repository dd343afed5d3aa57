import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from web3 import Web3

from . import queries
from .analysis import analyze_settlement
from .db_cli import DatabaseManager
from .errors import MalformedDataError
from .models import AuditResult, OrderRow, RunningTotals, Settlement
from .report import Reporter
from .rpc_cli import NodeClient

logger = logging.getLogger(__name__)

TX_HASH_LENGTH = 32


def tx_hash_bytes(settlement: Settlement) -> bytes:
    if len(settlement.tx_hash) != TX_HASH_LENGTH:
        raise MalformedDataError(
            f"settlement in block {settlement.block_number} has a {len(settlement.tx_hash)} byte "
            f"tx hash {Web3.to_hex(settlement.tx_hash)}, expected {TX_HASH_LENGTH}"
        )
    return settlement.tx_hash


def is_incomplete(orders: List[OrderRow]) -> bool:
    return any(order.sell_token is None for order in orders)


class RangeAggregator:
    """
    Walks every settlement in a block range, one at a time, and folds the
    overpayment of each analyzed settlement into the run totals.

    Settlements without a receipt or with unknown orders are skipped with a
    notice. Any other failure propagates and ends the run.
    """
    def __init__(self,
                 node: NodeClient,
                 db: DatabaseManager,
                 reporter: Optional[Reporter] = None,
                 analyze_overpayment: bool = True):
        self.node = node
        self.db = db
        self.reporter = reporter or Reporter()
        self.analyze_overpayment = analyze_overpayment

    async def run(self, from_block: int, to_block: int) -> AuditResult:
        self.reporter.range(from_block, to_block)
        # collected up front so a broken settlements query fails before any output
        settlements = [s async for s in queries.settlements(self.db, from_block, to_block)]
        logger.info(f"Found {len(settlements)} settlements in blocks {from_block}-{to_block}.")

        result = AuditResult(totals=RunningTotals())
        for settlement in settlements:
            result = await self._process(settlement, result)

        if self.analyze_overpayment:
            self.reporter.summary(result.totals)
        logger.info(
            f"Analyzed {result.analyzed} settlements, skipped {result.skipped} "
            f"({result.skipped_missing_receipt} without receipt, "
            f"{result.skipped_incomplete_orders} with unknown orders)."
        )
        return result

    async def _process(self, settlement: Settlement, result: AuditResult) -> AuditResult:
        self.reporter.settlement_header(settlement)
        tx_hash = tx_hash_bytes(settlement)

        # both fetches run to completion before a failure of either is raised
        results = await asyncio.gather(
            self.node.transaction_receipt(tx_hash),
            queries.orders(self.db, settlement.block_number),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        receipt, orders = results

        if receipt is None:
            self.reporter.receipt_missing()
            return replace(result, skipped_missing_receipt=result.skipped_missing_receipt + 1)
        if is_incomplete(orders):
            self.reporter.orders_incomplete()
            return replace(result, skipped_incomplete_orders=result.skipped_incomplete_orders + 1)

        settlement_timestamp = None
        if self.analyze_overpayment:
            settlement_timestamp = await self.node.block_timestamp(receipt.block_number)

        analysis = analyze_settlement(receipt, orders, settlement_timestamp, self.analyze_overpayment)
        self.reporter.settlement(analysis)
        return replace(result, totals=result.totals.add(*analysis.over_payment), analyzed=result.analyzed + 1)
