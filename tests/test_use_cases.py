import asyncio

import pytest

from orderscan.adapters.csv_sink import CsvEventSink, verify_csv
from orderscan.adapters.manifest_jsonl import JSONLManifest, load_records, pending_ranges
from orderscan.application.rate_limit import FixedDelayLimiter
from orderscan.application.use_cases import OrderCollector, RunState
from orderscan.config import CollectorConfig, FailurePolicy
from orderscan.domain.errors import CollectorError, ConfigError, InvalidRange, RateLimited, RpcError, SinkError
from orderscan.domain.models import BlockRange

from conftest import CLEAR, CONTRACT, FakeRPC, raw_log, sender, tx


class RecordingLimiter:
    def __init__(self):
        self.waits = 0
        self.penalties = []

    async def wait(self):
        self.waits += 1

    def penalize(self, retry_after=None):
        self.penalties.append(retry_after)


async def _no_sleep(_s):
    return None


def _world(n_blocks=100):
    """One TakeOrderV2 log every 10 blocks and one ClearV2 log at block 55."""
    logs = [raw_log(b, b) for b in range(0, n_blocks, 10)] + [raw_log(55, 555, topic0=CLEAR)]
    logs.sort(key=lambda l: l.block_number)
    blocks = {b: 1_700_000_000 + b for b in range(n_blocks)}
    senders = {l.tx_hash: sender(1000 + l.block_number) for l in logs}
    return logs, blocks, senders


def _collector(rpc, tmp_path, signatures, *, manifest=True, **cfg):
    cfg.setdefault("chunk_size", 25)
    limiter = RecordingLimiter()
    sleeps = []

    async def sleep(s):
        sleeps.append(s)

    c = OrderCollector(
        rpc=rpc,
        sink=CsvEventSink(str(tmp_path / "out.csv")),
        signatures=signatures,
        config=CollectorConfig(contract=CONTRACT, **cfg),
        limiter=limiter,
        manifest=JSONLManifest(str(tmp_path / "out.csv.manifest.jsonl")) if manifest else None,
        sleep=sleep,
    )
    return c, limiter, sleeps


def _rows(tmp_path):
    with open(tmp_path / "out.csv") as f:
        return [line.rstrip("\n").split(",") for line in f][1:]


def test_full_scan_writes_events_in_block_order(tmp_path, signatures):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders)
    c, limiter, _ = _collector(rpc, tmp_path, signatures)
    stats = asyncio.run(c.run(0, 99))

    assert c.state is RunState.IDLE and c.current_range is None
    assert stats.ranges == 4 and stats.processed_ok == 4 and stats.processed_failed == 0
    assert stats.events == 11 and stats.total_logs == 11
    assert [call[1:] for call in rpc.calls if call[0] == "get_logs"] == [(0, 24), (25, 49), (50, 74), (75, 99)]
    rows = _rows(tmp_path)
    assert [int(r[3]) for r in rows] == sorted(int(r[3]) for r in rows)
    assert rows[6] == [sender(1055), "ClearV2", tx(555), "1700000055"]
    assert verify_csv(str(tmp_path / "out.csv"), 11)
    assert limiter.waits == 4


def test_selector_limits_topics(tmp_path, signatures):
    logs, blocks, senders = _world()
    c, _, _ = _collector(FakeRPC(logs, blocks, senders), tmp_path, signatures, event_type="ClearV2")
    stats = asyncio.run(c.run(0, 99))
    assert stats.events == 1
    assert [r[1] for r in _rows(tmp_path)] == ["ClearV2"]


def test_empty_range_only_writes_header(tmp_path, signatures):
    c, limiter, _ = _collector(FakeRPC(), tmp_path, signatures)
    stats = asyncio.run(c.run(10, 9))
    assert stats.ranges == 0
    assert verify_csv(str(tmp_path / "out.csv"), 0)
    assert limiter.waits == 0


def test_fetch_failure_mid_run_is_skipped(tmp_path, signatures):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders, failures={(25, 49): [RpcError("query timeout")]})
    c, limiter, _ = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.SKIP)
    stats = asyncio.run(c.run(0, 99))

    assert c.state is RunState.IDLE
    assert stats.processed_failed == 1 and stats.processed_ok == 3
    assert stats.failed_ranges == [(25, 49)]
    # blocks 30 and 40 are missing; everything else is intact and in order
    assert stats.events == 9
    assert verify_csv(str(tmp_path / "out.csv"), 9)
    assert [r[2] for r in _rows(tmp_path)][:3] == [tx(0), tx(10), tx(20)]
    assert limiter.waits == 4
    assert pending_ranges(str(tmp_path / "out.csv.manifest.jsonl")) == [(25, 49)]


def test_retry_recovers_transient_failure(tmp_path, signatures, transient_error):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders, failures={(25, 49): [transient_error, transient_error]})
    c, _, sleeps = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.RETRY,
                              max_attempts=3, backoff_base_s=1.0)
    stats = asyncio.run(c.run(0, 99))
    assert stats.processed_failed == 0 and stats.events == 11
    assert sleeps == [1.0, 2.0]
    recs = load_records(str(tmp_path / "out.csv.manifest.jsonl"))
    assert [(r.from_block, r.status, r.attempts) for r in recs][1] == (25, "done", 3)


def test_retry_gives_up_after_max_attempts(tmp_path, signatures, transient_error):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders, failures={(25, 49): [transient_error] * 5})
    c, _, sleeps = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.RETRY, max_attempts=2)
    stats = asyncio.run(c.run(0, 99))
    assert stats.failed_ranges == [(25, 49)]
    assert len(sleeps) == 1
    assert stats.events == 9


def test_retry_does_not_repeat_terminal_errors(tmp_path, signatures):
    rpc = FakeRPC(failures={(0, 24): [RpcError("eth_getLogs RPC error code=-32005 message=too many results")]})
    c, _, sleeps = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.RETRY)
    stats = asyncio.run(c.run(0, 24))
    assert sleeps == []
    assert stats.processed_failed == 1


def test_rate_limit_signal_reaches_limiter(tmp_path, signatures):
    rpc = FakeRPC(failures={(0, 24): [RateLimited("429", retry_after=7.0)]})
    c, limiter, sleeps = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.RETRY,
                                    backoff_base_s=1.0)
    asyncio.run(c.run(0, 24))
    assert limiter.penalties == [7.0]
    assert sleeps == [7.0]


def test_abort_policy_stops_run(tmp_path, signatures):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders, failures={(25, 49): [RpcError("down")]})
    c, _, _ = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.ABORT)
    with pytest.raises(CollectorError):
        asyncio.run(c.run(0, 99))
    assert c.state is RunState.FAILED
    assert c.current_range == BlockRange(25, 49)
    # rows of the first chunk survive untouched
    assert verify_csv(str(tmp_path / "out.csv"), 3)


def test_sink_init_failure_is_fatal(tmp_path, signatures):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    c = OrderCollector(rpc=FakeRPC(), sink=CsvEventSink(str(blocker / "out.csv")), signatures=signatures,
                       config=CollectorConfig(contract=CONTRACT), limiter=FixedDelayLimiter(0))
    with pytest.raises(SinkError):
        asyncio.run(c.run(0, 10))
    assert c.state is RunState.FAILED


def test_bad_contract_is_fatal(tmp_path, signatures):
    c = OrderCollector(rpc=FakeRPC(), sink=CsvEventSink(str(tmp_path / "out.csv")), signatures=signatures,
                       config=CollectorConfig(contract="not-an-address"), limiter=FixedDelayLimiter(0))
    with pytest.raises(ConfigError):
        asyncio.run(c.run(0, 10))
    assert c.state is RunState.FAILED


def test_zero_chunk_size_is_fatal(tmp_path, signatures):
    c, _, _ = _collector(FakeRPC(), tmp_path, signatures, chunk_size=0)
    with pytest.raises(InvalidRange):
        asyncio.run(c.run(0, 10))
    assert c.state is RunState.FAILED


def test_dropped_logs_are_counted_not_fatal(tmp_path, signatures):
    logs, blocks, senders = _world()
    del blocks[20]
    del senders[tx(70)]
    c, _, _ = _collector(FakeRPC(logs, blocks, senders), tmp_path, signatures)
    stats = asyncio.run(c.run(0, 99))
    assert stats.dropped == 2 and stats.events == 9
    assert c.state is RunState.IDLE


def test_backfill_appends_failed_ranges(tmp_path, signatures):
    logs, blocks, senders = _world()
    rpc = FakeRPC(logs, blocks, senders, failures={(25, 49): [RpcError("down")]})
    c, _, _ = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.SKIP)
    asyncio.run(c.run(0, 99))
    manifest_path = str(tmp_path / "out.csv.manifest.jsonl")
    pending = pending_ranges(manifest_path)
    assert pending == [(25, 49)]

    c2, _, _ = _collector(rpc, tmp_path, signatures, failure_policy=FailurePolicy.SKIP)
    stats = asyncio.run(c2.run_ranges([BlockRange(s, e) for s, e in pending], initialize=False))
    assert stats.events == 2
    assert verify_csv(str(tmp_path / "out.csv"), 11)
    assert pending_ranges(manifest_path) == []
