# settlement_audit/tests/test_config.py
import pytest

from settlement_audit.config import AuditConfig, parse_args, resolve_block_range
from settlement_audit.errors import ConfigError

ENV_VARS = ["NODE", "DB", "FROM", "TO", "BLOCKS", "REPORT_ONLY", "RPC_TIMEOUT", "LOG_LEVEL"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_command_line_arguments():
    cfg = parse_args(["--node", "http://node:8545", "--db", "postgresql://db/orders",
                      "--from", "10", "--to", "20", "--report-only", "--log-level", "debug"])
    assert cfg == AuditConfig(
        node_url="http://node:8545",
        db_url="postgresql://db/orders",
        from_block=10,
        to_block=20,
        blocks=100,
        analyze_overpayment=False,
        rpc_timeout_s=30.0,
        log_level="DEBUG",
    )


def test_environment_fallbacks(monkeypatch):
    monkeypatch.setenv("NODE", "http://env-node")
    monkeypatch.setenv("DB", "postgresql://env-db")
    monkeypatch.setenv("TO", "500")
    monkeypatch.setenv("BLOCKS", "25")
    monkeypatch.setenv("RPC_TIMEOUT", "5")
    cfg = parse_args([])
    assert cfg.node_url == "http://env-node"
    assert cfg.db_url == "postgresql://env-db"
    assert cfg.from_block is None
    assert cfg.to_block == 500
    assert cfg.blocks == 25
    assert cfg.rpc_timeout_s == 5.0
    assert cfg.analyze_overpayment


def test_command_line_wins_over_environment(monkeypatch):
    monkeypatch.setenv("FROM", "1")
    cfg = parse_args(["--node", "n", "--db", "d", "--from", "7"])
    assert cfg.from_block == 7


@pytest.mark.parametrize("argv", [["--db", "d"], ["--node", "n"]])
def test_missing_urls_are_rejected(argv):
    with pytest.raises(ConfigError):
        parse_args(argv)


@pytest.mark.parametrize("start,end", [("20", "20"), ("21", "20")])
def test_bad_range_is_rejected_while_parsing(start, end):
    with pytest.raises(ConfigError, match="start has to be before end"):
        parse_args(["--node", "n", "--db", "d", "--from", start, "--to", end])


def test_non_integer_environment_block(monkeypatch):
    monkeypatch.setenv("FROM", "latest")
    with pytest.raises(ConfigError, match="FROM"):
        parse_args(["--node", "n", "--db", "d"])


def test_unknown_log_level():
    with pytest.raises(ConfigError, match="log level"):
        parse_args(["--node", "n", "--db", "d", "--log-level", "chatty"])


def test_resolve_defaults_to_current_block_and_lookback():
    notices = []
    cfg = AuditConfig(node_url="n", db_url="d", blocks=100)
    assert resolve_block_range(cfg, current_block=15000000, notify=notices.append) == (14999900, 15000000)
    assert notices == [
        "Supplied no end block; analysis will end at current block",
        "Supplied no start block; analysis will start 100 blocks before end",
    ]


def test_resolve_keeps_given_bounds():
    cfg = AuditConfig(node_url="n", db_url="d", from_block=5, to_block=9)
    assert resolve_block_range(cfg, current_block=None, notify=lambda _: None) == (5, 9)


def test_resolve_lookback_from_given_end():
    cfg = AuditConfig(node_url="n", db_url="d", to_block=1000, blocks=10)
    assert resolve_block_range(cfg, current_block=None, notify=lambda _: None) == (990, 1000)


def test_resolve_rejects_empty_range():
    cfg = AuditConfig(node_url="n", db_url="d", from_block=2000, blocks=10)
    with pytest.raises(ConfigError):
        resolve_block_range(cfg, current_block=1000, notify=lambda _: None)


def test_zero_lookback_is_an_empty_range():
    cfg = AuditConfig(node_url="n", db_url="d", blocks=0)
    with pytest.raises(ConfigError):
        resolve_block_range(cfg, current_block=1000, notify=lambda _: None)
