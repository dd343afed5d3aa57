from typing import Callable, List

from web3 import Web3

from .models import OrderAnalysis, RunningTotals, Settlement, SettlementAnalysis

SEPARATOR = "\n" + "-" * 80 + "\n"


def hex_str(value: bytes) -> str:
    return Web3.to_hex(value)


def over_payed_line(excess: float, total: float) -> str:
    return f"over payed (excess of 2x) {excess:.1e}, over payed (total) {total:.1e}"


def order_line(a: OrderAnalysis) -> str:
    line = (
        f"order {hex_str(a.uid)}, sell_token {hex_str(a.sell_token)}, sell_token_price {a.sell_token_price:.1e}, "
        f"earned fee {a.earned_fee:.1e} ({a.earned_fee_eth:.1e} eth), "
        f"unsubsidized fee {a.unsubsidized_fee:.1e} ({a.unsubsidized_fee_eth:.1e} eth) "
        f"gas {a.gas_amount:.1e} at price {a.gas_price:.1e} for a total of {a.gas_eth:.1e} eth"
    )
    if a.age is not None:
        line += f" age {a.age}"
    return line


def settlement_lines(analysis: SettlementAnalysis) -> List[str]:
    lines: List[str] = []
    for a in analysis.orders:
        lines.append(order_line(a))
        if a.over_payed:
            lines.append(over_payed_line(a.over_payed_excess, a.over_payed_total))
    lines.append("")
    lines.append("expected from orders:")
    lines.append(
        f"{analysis.total_gas:.1e} gas for {analysis.total_gas_eth:.1e} eth, "
        f"earning fees {analysis.total_earned_fee_eth:.1e} eth "
        f"(unsubsidized {analysis.total_unsubsidized_fee_eth:.1e} eth)"
    )
    lines.append("")
    lines.append("transaction actually executed with:")
    lines.append(
        f"{analysis.actual_gas:.1e} gas for {analysis.actual_gas_eth:.1e} eth "
        f"(price {analysis.actual_gas_price:.1e})"
    )
    if analysis.over_payed_excess > 0.0:
        lines.append(over_payed_line(analysis.over_payed_excess, analysis.over_payed_total))
    return lines


class Reporter:
    """Writes the human readable audit report, one line per call to `out`."""
    def __init__(self, out: Callable[[str], None] = print):
        self.out = out

    def range(self, from_block: int, to_block: int) -> None:
        self.out(f"Analysing settlements from block {from_block} to {to_block}\n")

    def settlement_header(self, settlement: Settlement) -> None:
        self.out(f"settlement in tx {hex_str(settlement.tx_hash)} in block {settlement.block_number}")

    def receipt_missing(self) -> None:
        self.out("transaction receipt not found")

    def orders_incomplete(self) -> None:
        self.out("order information not found (probably staging settlement)")

    def settlement(self, analysis: SettlementAnalysis) -> None:
        self.out("")
        for line in settlement_lines(analysis):
            self.out(line)
        self.out(SEPARATOR)

    def summary(self, totals: RunningTotals) -> None:
        self.out(over_payed_line(totals.over_payed_excess, totals.over_payed_total))
