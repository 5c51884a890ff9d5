from __future__ import annotations
import asyncio, logging, time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable

from orderscan.adapters.abi_json import load_event_signatures
from orderscan.adapters.csv_sink import CsvEventSink
from orderscan.adapters.etherscan_httpx import EtherscanClient
from orderscan.adapters.manifest_jsonl import JSONLManifest, pending_ranges
from orderscan.adapters.rpc_httpx import HttpxRPC
from orderscan.config import CollectorConfig, FailurePolicy, Settings
from ..domain.decoding import build_event_filter
from ..domain.errors import CollectorError, ConfigError, FetchError, OrderScanError, RateLimited
from ..domain.models import BlockRange, ChunkRec, EventFilter, EventSignatures, OrderEvent, RawLog
from ..ports.rpc import RPCClient
from ..ports.storage import EventSink, ManifestSink
from .extraction import EventExtractor
from .fetching import LogFetcher
from .planning import chunk_count, partition
from .rate_limit import FixedDelayLimiter, RateLimiter

log = logging.getLogger(__name__)

ChunkCallback = Callable[[BlockRange, int], None]


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FAILED = "failed"


@dataclass
class RunStats:
    ranges: int = 0
    processed_ok: int = 0
    processed_failed: int = 0
    total_logs: int = 0
    events: int = 0
    dropped: int = 0
    failed_ranges: list[tuple[int, int]] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return {
            "ranges": self.ranges,
            "processed_ok": self.processed_ok,
            "processed_failed": self.processed_failed,
            "total_logs": self.total_logs,
            "events": self.events,
            "dropped": self.dropped,
        }


class OrderCollector:
    """
    Drives partition -> fetch -> extract -> persist, strictly in block order.

    Per-chunk fetch failures follow `config.failure_policy`; everything else
    (filter/sink setup, sink writes) is fatal and leaves the collector FAILED.
    """
    def __init__(
        self,
        *,
        rpc: RPCClient,
        sink: EventSink,
        signatures: EventSignatures,
        config: CollectorConfig,
        limiter: RateLimiter | None = None,
        manifest: ManifestSink | None = None,
        on_chunk: ChunkCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.sink = sink
        self.signatures = signatures
        self.config = config
        self.limiter = limiter if limiter is not None else FixedDelayLimiter(0.1)
        self.manifest = manifest
        self.on_chunk = on_chunk
        self._sleep = sleep
        self.fetcher = LogFetcher(rpc)
        self.state = RunState.IDLE
        self.current_range: BlockRange | None = None
        self.error: BaseException | None = None

    async def run(self, from_block: int, to_block: int) -> RunStats:
        """Full scan: truncate the output, then scan [from_block, to_block]."""
        try:
            ranges = partition(from_block, to_block, self.config.chunk_size)
        except OrderScanError as e:
            self._fail(e)
            raise
        return await self.run_ranges(ranges, initialize=True)

    async def run_ranges(self, ranges: Iterable[BlockRange], *, initialize: bool) -> RunStats:
        try:
            flt = build_event_filter(self.config.contract, self.signatures, self.config.event_type)
            if initialize:
                self.sink.initialize()
        except OrderScanError as e:
            self._fail(e)
            raise

        stats = RunStats()
        for br in ranges:
            self.state, self.current_range = RunState.SCANNING, br
            stats.ranges += 1
            logs, attempts, err = await self._fetch(br, flt)

            if err is not None:
                stats.processed_failed += 1
                stats.failed_ranges.append((br.start, br.end))
                log.warning("skipping blocks %s-%s after %d attempt(s): %s", br.start, br.end, attempts, err)
                self._record(ChunkRec(br.start, br.end, "failed", attempts, str(err), updated_at=time.time()))
                if self.config.failure_policy is FailurePolicy.ABORT:
                    exc = CollectorError(f"aborted at blocks {br.start}-{br.end}: {err}")
                    self._fail(exc)
                    raise exc from err
                self._notify(br, 0)
                await self.limiter.wait()
                continue

            events = await self._extract(logs, stats)
            if events:
                try:
                    self.sink.append(events)
                except OrderScanError as e:
                    self._fail(e)
                    raise
            stats.processed_ok += 1
            stats.total_logs += len(logs)
            stats.events += len(events)
            log.info("blocks %s-%s: %d logs, %d events", br.start, br.end, len(logs), len(events))
            self._record(ChunkRec(br.start, br.end, "done", attempts, None, len(logs), len(events), time.time()))
            self._notify(br, len(events))
            await self.limiter.wait()

        self.state, self.current_range = RunState.IDLE, None
        return stats

    async def _fetch(self, br: BlockRange, flt: EventFilter) -> tuple[list[RawLog], int, FetchError | None]:
        attempts = 0
        while True:
            attempts += 1
            try:
                return await self.fetcher.fetch(br, flt), attempts, None
            except FetchError as e:
                if isinstance(e.cause, RateLimited):
                    self.limiter.penalize(e.retry_after)
                if (self.config.failure_policy is FailurePolicy.RETRY and e.retryable
                        and attempts < self.config.max_attempts):
                    delay = min(self.config.backoff_max_s, self.config.backoff_base_s * 2 ** (attempts - 1))
                    if e.retry_after is not None:
                        delay = max(delay, e.retry_after)
                    log.info("retrying blocks %s-%s in %.1fs (attempt %d): %s", br.start, br.end, delay, attempts, e)
                    await self._sleep(delay)
                    continue
                return [], attempts, e

    async def _extract(self, logs: list[RawLog], stats: RunStats) -> list[OrderEvent]:
        extractor = EventExtractor(self.rpc, self.signatures)  # fresh lookup cache per chunk
        events: list[OrderEvent] = []
        for raw in logs:
            ev = await extractor.extract(raw)
            if ev is not None:
                events.append(ev)
        stats.dropped += extractor.dropped
        return events

    def _record(self, rec: ChunkRec) -> None:
        if self.manifest is not None:
            self.manifest.append(rec)

    def _notify(self, br: BlockRange, n_events: int) -> None:
        if self.on_chunk is not None:
            self.on_chunk(br, n_events)

    def _fail(self, e: BaseException) -> None:
        self.state, self.error = RunState.FAILED, e


# ──────────────────────────────
# Wiring (concrete adapters)
# ──────────────────────────────

async def resolve_block_range(
    rpc: RPCClient,
    etherscan: EtherscanClient | None,
    contract: str,
    from_block: int | None,
    to_block: int | None,
) -> tuple[int, int]:
    """Default start is the contract creation block, default end the chain head."""
    if from_block is None:
        if etherscan is None:
            raise ConfigError("--from-block not given and no Etherscan API key configured")
        from_block = await etherscan.contract_creation_block(contract)
        log.info("contract created at block %s", from_block)
    if to_block is None:
        to_block = await rpc.latest_block()
        log.info("latest block %s", to_block)
    return from_block, to_block


async def collect_to_csv(
    *,
    settings: Settings,
    config: CollectorConfig,
    abi_path: str,
    out_path: str,
    manifest_path: str | None = None,
    from_block: int | None = None,
    to_block: int | None = None,
    limiter: RateLimiter | None = None,
    on_start: Callable[[int], None] | None = None,
    on_chunk: ChunkCallback | None = None,
) -> RunStats:
    signatures = load_event_signatures(abi_path)
    rpc = HttpxRPC(settings.rpc_url)
    etherscan = (EtherscanClient(settings.etherscan_base_url, settings.etherscan_api_key)
                 if settings.etherscan_api_key else None)
    try:
        start, end = await resolve_block_range(rpc, etherscan, config.contract, from_block, to_block)
        if on_start is not None:
            on_start(chunk_count(start, end, config.chunk_size))
        manifest = None
        if manifest_path:
            manifest = JSONLManifest(manifest_path)
            manifest.reset()
        collector = OrderCollector(rpc=rpc, sink=CsvEventSink(out_path), signatures=signatures,
                                   config=config, limiter=limiter, manifest=manifest, on_chunk=on_chunk)
        return await collector.run(start, end)
    finally:
        await rpc.aclose()
        if etherscan is not None:
            await etherscan.aclose()


async def backfill_csv(
    *,
    settings: Settings,
    config: CollectorConfig,
    abi_path: str,
    out_path: str,
    manifest_path: str,
    limiter: RateLimiter | None = None,
    on_start: Callable[[int], None] | None = None,
    on_chunk: ChunkCallback | None = None,
) -> RunStats:
    """Re-scan ranges recorded as failed in the manifest and append them to an existing CSV."""
    pending = pending_ranges(manifest_path)
    ranges = [br for s, e in pending for br in partition(s, e, config.chunk_size)]
    if on_start is not None:
        on_start(len(ranges))
    if not ranges:
        return RunStats()
    signatures = load_event_signatures(abi_path)
    rpc = HttpxRPC(settings.rpc_url)
    try:
        collector = OrderCollector(rpc=rpc, sink=CsvEventSink(out_path), signatures=signatures,
                                   config=config, limiter=limiter, manifest=JSONLManifest(manifest_path),
                                   on_chunk=on_chunk)
        return await collector.run_ranges(ranges, initialize=False)
    finally:
        await rpc.aclose()
