from typing import AsyncIterator, List, Optional, Tuple

from .config import validate_block_range
from .db_cli import DatabaseManager
from .errors import MalformedDataError
from .models import OrderRow, Settlement

SETTLEMENTS_STMT = """
SELECT tx_hash, block_number, log_index
FROM settlements
WHERE block_number BETWEEN $1 AND $2
ORDER BY block_number ASC, log_index ASC
"""

# Trade fees are summed per order first, then the static order and fee
# parameters are outer joined so unknown orders still show up with NULLs.
# All trades of the block are taken, so several settlements in one block
# get their orders mixed together.
ORDERS_STMT = """
SELECT
    t.uid, t.sum_fee AS earned_fee,
    o.sell_token, o.fee_amount AS signed_fee, o.full_fee_amount AS unsubsidized_fee,
    f.gas_amount, f.gas_price, f.sell_token_price, o.creation_timestamp
FROM (
    SELECT order_uid AS uid, SUM(fee_amount) AS sum_fee
    FROM trades
    WHERE block_number = $1
    GROUP BY order_uid
) AS t
LEFT OUTER JOIN orders o ON o.uid = t.uid
LEFT OUTER JOIN order_fee_parameters f ON f.order_uid = t.uid
"""


def _optional_bytes(value) -> Optional[bytes]:
    return bytes(value) if value is not None else None


def _optional_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def settlement_from_row(row) -> Settlement:
    return Settlement(
        tx_hash=bytes(row["tx_hash"]),
        block_number=int(row["block_number"]),
        log_index=int(row["log_index"]),
    )


def order_from_row(row) -> OrderRow:
    return OrderRow(
        uid=bytes(row["uid"]),
        earned_fee=row["earned_fee"],
        sell_token=_optional_bytes(row["sell_token"]),
        signed_fee=row["signed_fee"],
        unsubsidized_fee=row["unsubsidized_fee"],
        gas_amount=_optional_float(row["gas_amount"]),
        gas_price=_optional_float(row["gas_price"]),
        sell_token_price=_optional_float(row["sell_token_price"]),
        creation_timestamp=row["creation_timestamp"],
    )


async def settlements(db: DatabaseManager, from_block: int, to_block: int) -> AsyncIterator[Settlement]:
    """
    Settlements with block number in [from_block, to_block], ascending by
    (block_number, log_index). Rows breaking that order are rejected.
    """
    validate_block_range(from_block, to_block)
    last: Optional[Tuple[int, int]] = None
    async for row in db.cursor("get settlements from db", SETTLEMENTS_STMT, from_block, to_block):
        settlement = settlement_from_row(row)
        if last is not None and settlement.sort_key < last:
            raise MalformedDataError(
                f"settlements out of order: {settlement.sort_key} after {last}"
            )
        last = settlement.sort_key
        yield settlement


async def orders(db: DatabaseManager, settlement_block: int) -> List[OrderRow]:
    """Order contributions of every trade recorded in `settlement_block`."""
    rows = await db.fetch("orders", ORDERS_STMT, settlement_block)
    return [order_from_row(r) for r in rows]
