# settlement_audit/tests/test_start.py
import asyncio
import json

import pytest

from settlement_audit import start
from settlement_audit.config import AuditConfig
from settlement_audit.report import Reporter
from settlement_audit.rpc_cli import NodeClient

from fakes import FakeDatabase, FakeNode, Lines, order_row, receipt, tx_hash


class _Ctx:
    """Wraps a fake so it can be used like the real clients in `async with`."""
    def __init__(self, fake):
        self.fake = fake

    async def __aenter__(self):
        return self.fake

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ["NODE", "DB", "FROM", "TO", "BLOCKS", "REPORT_ONLY", "RPC_TIMEOUT", "LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def wired(monkeypatch):
    node = FakeNode({tx_hash(1): receipt(1, 990, effective_gas_price=150e9)}, current_block=1000)
    db = FakeDatabase([{"tx_hash": tx_hash(1), "block_number": 990, "log_index": 0}], {990: [order_row()]})
    monkeypatch.setattr(start, "NodeClient", lambda *a, **kw: _Ctx(node))
    monkeypatch.setattr(start, "DatabaseManager", lambda *a, **kw: _Ctx(db))
    return node, db


def test_run_resolves_range_from_current_block(wired):
    node, db = wired
    out = Lines()
    cfg = AuditConfig(node_url="http://node", db_url="postgresql://db", blocks=50)

    result = asyncio.run(start.run(cfg, Reporter(out)))

    assert node.calls[0] == ("eth_blockNumber",)
    assert db.calls[0] == ("get settlements from db", (950, 1000))
    assert "Analysing settlements from block 950 to 1000\n" in out.lines
    assert result.totals.over_payed_excess == pytest.approx(0.005)


def test_run_with_explicit_range_skips_block_number(wired):
    node, db = wired
    cfg = AuditConfig(node_url="http://node", db_url="postgresql://db", from_block=900, to_block=995)

    asyncio.run(start.run(cfg, Reporter(Lines())))

    assert ("eth_blockNumber",) not in node.calls
    assert db.calls[0] == ("get settlements from db", (900, 995))


def test_main_reports_summary(wired, capsys):
    code = start.main(["--node", "http://node", "--db", "postgresql://db", "--from", "900", "--to", "995"])
    assert code == 0
    assert capsys.readouterr().out.strip().endswith("over payed (excess of 2x) 5.0e-03, over payed (total) 1.0e-02")


def test_main_rejects_bad_range_before_connecting(monkeypatch):
    def boom(*a, **kw):
        raise AssertionError("no connection expected")
    monkeypatch.setattr(start, "NodeClient", boom)
    monkeypatch.setattr(start, "DatabaseManager", boom)

    assert start.main(["--node", "http://node", "--db", "postgresql://db", "--from", "10", "--to", "10"]) == 1


def test_main_exits_non_zero_on_store_failure(monkeypatch):
    node = FakeNode({}, current_block=1000)
    db = FakeDatabase([], {}, fail_on="get settlements from db")
    monkeypatch.setattr(start, "NodeClient", lambda *a, **kw: _Ctx(node))
    monkeypatch.setattr(start, "DatabaseManager", lambda *a, **kw: _Ctx(db))

    assert start.main(["--node", "http://node", "--db", "postgresql://db"]) == 1


class _HtmlResp:
    status = 200

    async def json(self, content_type="application/json"):
        raise json.JSONDecodeError("Expecting value", "<html>502 Bad Gateway</html>", 0)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _HtmlSession:
    """A node behind a proxy that answers with an HTML error page."""
    def post(self, url, json=None):
        return _HtmlResp()


def test_main_exits_non_zero_when_node_answers_with_html(monkeypatch):
    db = FakeDatabase([{"tx_hash": tx_hash(1), "block_number": 990, "log_index": 0}], {990: [order_row()]})
    monkeypatch.setattr(start, "NodeClient", lambda url, **kw: NodeClient(url, session=_HtmlSession()))
    monkeypatch.setattr(start, "DatabaseManager", lambda *a, **kw: _Ctx(db))

    code = start.main(["--node", "http://node", "--db", "postgresql://db", "--from", "900", "--to", "995"])

    assert code == 1
    assert ("orders", (990,)) in db.calls
