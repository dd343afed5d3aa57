from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Settlement:
    tx_hash: bytes
    block_number: int
    log_index: int      # only used for ordering

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class OrderRow:
    """
    One order touched by a settlement, as returned by the orders query.

    Everything except `uid` comes from outer joins and can be missing. A missing
    `sell_token` means the order is unknown to the orders table (staging data).
    """
    uid: bytes
    earned_fee: Optional[Decimal] = None
    sell_token: Optional[bytes] = None
    signed_fee: Optional[Decimal] = None
    unsubsidized_fee: Optional[Decimal] = None
    gas_amount: Optional[float] = None
    gas_price: Optional[float] = None
    sell_token_price: Optional[float] = None
    creation_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Receipt:
    transaction_hash: bytes
    block_number: int
    gas_used: int
    effective_gas_price: int


@dataclass(frozen=True)
class OrderAnalysis:
    uid: bytes
    sell_token: bytes
    sell_token_price: float
    earned_fee: float
    earned_fee_eth: float
    unsubsidized_fee: float
    unsubsidized_fee_eth: float
    gas_amount: float
    gas_price: float
    gas_eth: float
    age: Optional[str] = None           # "old" | "recent", None when age analysis is off
    over_payed_excess: float = 0.0      # contribution beyond 2x the budgeted gas price
    over_payed_total: float = 0.0       # contribution beyond 1x, only set when the 2x threshold fired

    @property
    def over_payed(self) -> bool:
        return self.over_payed_excess > 0.0


@dataclass(frozen=True)
class SettlementAnalysis:
    orders: List[OrderAnalysis] = field(default_factory=list)
    total_gas: float = 0.0
    total_gas_eth: float = 0.0
    total_earned_fee_eth: float = 0.0
    total_unsubsidized_fee_eth: float = 0.0
    actual_gas: float = 0.0
    actual_gas_price: float = 0.0
    actual_gas_eth: float = 0.0
    over_payed_excess: float = 0.0
    over_payed_total: float = 0.0

    @property
    def over_payment(self) -> Tuple[float, float]:
        return (self.over_payed_excess, self.over_payed_total)


@dataclass(frozen=True)
class RunningTotals:
    over_payed_excess: float = 0.0
    over_payed_total: float = 0.0

    def add(self, over_payed_excess: float, over_payed_total: float) -> "RunningTotals":
        return RunningTotals(
            over_payed_excess=self.over_payed_excess + over_payed_excess,
            over_payed_total=self.over_payed_total + over_payed_total,
        )


@dataclass(frozen=True)
class AuditResult:
    totals: RunningTotals
    analyzed: int = 0
    skipped_missing_receipt: int = 0
    skipped_incomplete_orders: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_missing_receipt + self.skipped_incomplete_orders
