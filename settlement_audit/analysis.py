"""
Overpayment analysis of a single settlement.

Every order carries the gas amount and gas price its fee was computed with.
The settlement transaction paid `effective_gas_price` for all of its gas. An
order counts as over payed only when the effective price exceeds twice the
budgeted price; once that threshold fires, both the part above 2x ("excess")
and the part above 1x ("total") are accounted.

All amounts are floats in ether after dividing by 1e18. Fee amounts arrive as
Decimal and are converted to float first; this is an approximate audit, not a
ledger.
"""
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from web3 import Web3

from .errors import MalformedDataError
from .models import OrderAnalysis, OrderRow, Receipt, SettlementAnalysis

WEI_PER_ETH = 1e18
OLD_ORDER_AGE_S = 20 * 60
GAS_PRICE_TOLERANCE = 2.0


def to_eth(amount: float, price: float = 1.0) -> float:
    """`amount * price` expressed in wei (or price-weighted token units) to ether."""
    return amount * price / WEI_PER_ETH


def order_age_seconds(settlement_timestamp: datetime, creation_timestamp: Optional[datetime]) -> float:
    # unknown creation time counts as a fresh order
    if creation_timestamp is None:
        return 0.0
    return (settlement_timestamp - creation_timestamp).total_seconds()


def classify_age(age_seconds: float) -> str:
    return "old" if age_seconds > OLD_ORDER_AGE_S else "recent"


def over_payment(effective_gas_price: float, gas_price: float, gas_amount: float) -> Tuple[float, float]:
    """
    Returns (excess, total) in ether for one order.

    Both are 0 unless `effective_gas_price - 2 * gas_price > 0`. The 1x figure
    alone never triggers anything.
    """
    intolerated_difference = effective_gas_price - gas_price * GAS_PRICE_TOLERANCE
    if intolerated_difference <= 0.0:
        return 0.0, 0.0
    excess = effective_gas_price - gas_price
    return to_eth(intolerated_difference * gas_amount), to_eth(excess * gas_amount)


def _required(order: OrderRow, name: str):
    value = getattr(order, name)
    if value is None:
        raise MalformedDataError(f"order {Web3.to_hex(order.uid)} has no {name}")
    return value


def analyze_order(order: OrderRow,
                  effective_gas_price: float,
                  settlement_timestamp: Optional[datetime] = None,
                  analyze_overpayment: bool = True) -> OrderAnalysis:
    sell_token = _required(order, "sell_token")
    sell_token_price = float(_required(order, "sell_token_price"))
    earned_fee = float(_required(order, "earned_fee"))
    unsubsidized_fee = float(_required(order, "unsubsidized_fee"))
    gas_amount = float(_required(order, "gas_amount"))
    gas_price = float(_required(order, "gas_price"))

    age = None
    excess, total = 0.0, 0.0
    if analyze_overpayment:
        if settlement_timestamp is not None:
            age = classify_age(order_age_seconds(settlement_timestamp, order.creation_timestamp))
        excess, total = over_payment(effective_gas_price, gas_price, gas_amount)

    return OrderAnalysis(
        uid=order.uid,
        sell_token=sell_token,
        sell_token_price=sell_token_price,
        earned_fee=earned_fee,
        earned_fee_eth=to_eth(earned_fee, sell_token_price),
        unsubsidized_fee=unsubsidized_fee,
        unsubsidized_fee_eth=to_eth(unsubsidized_fee, sell_token_price),
        gas_amount=gas_amount,
        gas_price=gas_price,
        gas_eth=to_eth(gas_amount, gas_price),
        age=age,
        over_payed_excess=excess,
        over_payed_total=total,
    )


def analyze_settlement(receipt: Receipt,
                       orders: Sequence[OrderRow],
                       settlement_timestamp: Optional[datetime] = None,
                       analyze_overpayment: bool = True) -> SettlementAnalysis:
    """
    Compares what the orders of one settlement budgeted for gas with what the
    transaction actually paid.

    `orders` must be complete, i.e. every order has a sell token; the caller
    skips settlements where that is not the case. `settlement_timestamp` is
    only used to label orders old/recent. With `analyze_overpayment` off only
    the fee and gas figures are computed and the overpayment pair stays 0.
    """
    effective_gas_price = float(receipt.effective_gas_price)
    analyses: List[OrderAnalysis] = [
        analyze_order(order, effective_gas_price, settlement_timestamp, analyze_overpayment)
        for order in orders
    ]

    actual_gas = float(receipt.gas_used)
    return SettlementAnalysis(
        orders=analyses,
        total_gas=sum(a.gas_amount for a in analyses),
        total_gas_eth=sum(a.gas_eth for a in analyses),
        total_earned_fee_eth=sum(a.earned_fee_eth for a in analyses),
        total_unsubsidized_fee_eth=sum(a.unsubsidized_fee_eth for a in analyses),
        actual_gas=actual_gas,
        actual_gas_price=effective_gas_price,
        actual_gas_eth=to_eth(actual_gas, effective_gas_price),
        over_payed_excess=sum(a.over_payed_excess for a in analyses),
        over_payed_total=sum(a.over_payed_total for a in analyses),
    )
