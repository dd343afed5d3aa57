import os
import argparse
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .errors import ConfigError

DEFAULT_BLOCKS = 100
DEFAULT_RPC_TIMEOUT_S = 30.0
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class AuditConfig:
    node_url: str
    db_url: str
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    blocks: int = DEFAULT_BLOCKS
    # off reproduces the plain fee/gas report without ages and overpayment
    analyze_overpayment: bool = True
    rpc_timeout_s: float = DEFAULT_RPC_TIMEOUT_S
    log_level: str = DEFAULT_LOG_LEVEL


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"environment variable {name} is not an integer: {raw!r}") from e


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="settlement-audit",
        description="Compare the gas price settlements paid on chain with the gas price budgeted in the fees of their orders.",
    )
    p.add_argument("--node", default=os.getenv("NODE"), help="URL of the ethereum node (env NODE)")
    p.add_argument("--db", default=os.getenv("DB"), help="URL for the order database (env DB)")
    p.add_argument("--from", dest="from_block", type=int, default=None,
                   help="Block number at start of analysis, inclusive (env FROM)")
    p.add_argument("--to", dest="to_block", type=int, default=None,
                   help="Block number at end of analysis, inclusive (env TO)")
    p.add_argument("--blocks", type=int, default=None,
                   help=f"How many blocks the analysis starts before the end block. Ignored with --from (env BLOCKS, default {DEFAULT_BLOCKS})")
    p.add_argument("--report-only", action="store_true", default=_env_flag("REPORT_ONLY"),
                   help="Only print fees and gas, skip order ages and overpayment accounting (env REPORT_ONLY)")
    p.add_argument("--rpc-timeout", type=float, default=None,
                   help=f"Total timeout in seconds for a node request (env RPC_TIMEOUT, default {DEFAULT_RPC_TIMEOUT_S:g})")
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL),
                   help="Logging level for stderr diagnostics (env LOG_LEVEL)")
    return p


def parse_args(argv: Optional[Sequence[str]] = None) -> AuditConfig:
    """
    Builds the run configuration from the command line, falling back to
    environment variables. A range given completely is validated here, before
    any connection is opened.
    """
    args = build_parser().parse_args(argv)

    if not args.node:
        raise ConfigError("no node url given (--node or NODE)")
    if not args.db:
        raise ConfigError("no database url given (--db or DB)")

    from_block = args.from_block if args.from_block is not None else _env_int("FROM")
    to_block = args.to_block if args.to_block is not None else _env_int("TO")
    blocks = args.blocks if args.blocks is not None else _env_int("BLOCKS")
    if blocks is None:
        blocks = DEFAULT_BLOCKS
    if blocks < 0:
        raise ConfigError(f"--blocks must not be negative, got {blocks}")

    rpc_timeout_s = args.rpc_timeout
    if rpc_timeout_s is None:
        raw = os.getenv("RPC_TIMEOUT")
        try:
            rpc_timeout_s = float(raw) if raw else DEFAULT_RPC_TIMEOUT_S
        except ValueError as e:
            raise ConfigError(f"environment variable RPC_TIMEOUT is not a number: {raw!r}") from e
    if rpc_timeout_s <= 0:
        raise ConfigError(f"--rpc-timeout must be positive, got {rpc_timeout_s}")

    log_level = args.log_level.upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"unknown log level {args.log_level!r}")

    if from_block is not None and to_block is not None:
        validate_block_range(from_block, to_block)

    return AuditConfig(
        node_url=args.node,
        db_url=args.db,
        from_block=from_block,
        to_block=to_block,
        blocks=blocks,
        analyze_overpayment=not args.report_only,
        rpc_timeout_s=rpc_timeout_s,
        log_level=log_level,
    )


def validate_block_range(from_block: int, to_block: int) -> None:
    if not from_block < to_block:
        raise ConfigError(f"start has to be before end (from {from_block}, to {to_block})")


def resolve_block_range(cfg: AuditConfig,
                        current_block: Optional[int],
                        notify: Callable[[str], None] = print) -> Tuple[int, int]:
    """
    Fills in the missing ends of the block range: no end block means the
    current block, no start block means `blocks` before the end.
    """
    to_block = cfg.to_block
    if to_block is None:
        if current_block is None:
            raise ConfigError("no end block given and the current block is unknown")
        notify("Supplied no end block; analysis will end at current block")
        to_block = current_block

    from_block = cfg.from_block
    if from_block is None:
        notify(f"Supplied no start block; analysis will start {cfg.blocks} blocks before end")
        from_block = to_block - cfg.blocks

    validate_block_range(from_block, to_block)
    return from_block, to_block
