import asyncio, time
import click
from rich.console import Console
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)

from .adapters.csv_sink import verify_csv
from .application.rate_limit import FixedDelayLimiter, TokenBucketLimiter
from .application.use_cases import backfill_csv, collect_to_csv
from .config import (
    DEFAULT_ABI_PATH, DEFAULT_CHUNK_SIZE, DEFAULT_CONTRACT_ADDRESS, DEFAULT_OUTPUT_PATH,
    CollectorConfig, FailurePolicy, Network, load_settings,
)
from .domain.decoding import parse_selector
from .domain.errors import OrderScanError
from .log import setup_logging

console = Console()


def _progress() -> Progress:
    return Progress(SpinnerColumn(),
                    TextColumn("[bold]collecting orders[/]"),
                    BarColumn(),
                    MofNCompleteColumn(),
                    TextColumn("•"),
                    TimeElapsedColumn(),
                    TextColumn("→"),
                    TimeRemainingColumn(),
                    TextColumn(" • {task.description}"),
                    console=console,
                    transient=False,
                    expand=True,
                    )


def _limiter(delay: float, rate: float | None):
    if rate:
        return TokenBucketLimiter(rate=rate, burst=1)
    return FixedDelayLimiter(delay)


def _run_scan(coro_factory, label: str) -> dict[str, int]:
    """Run a scan coroutine under a live progress bar; map our errors to a non-zero exit."""
    progress = _progress()
    task = progress.add_task(description=label, total=None)

    def on_start(n_chunks: int) -> None:
        progress.update(task, total=n_chunks)

    def on_chunk(br, n_events: int) -> None:
        progress.update(task, advance=1, description=f"{br.start:,}-{br.end:,} (+{n_events})")

    t0 = time.time()
    try:
        with progress:
            stats = asyncio.run(coro_factory(on_start, on_chunk))
    except OrderScanError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")
    elapsed = time.time() - t0

    console.print(f"[bold]done[/]: {stats.events} events • {elapsed:.2f}s")
    console.print(
        f"[bold]summary[/]: "
        f"[green]processed_ok[/]={stats.processed_ok}  "
        f"[red]processed_failed[/]={stats.processed_failed}  "
        f"[yellow]dropped[/]={stats.dropped}  "
        f"(chunks={stats.ranges}, logs={stats.total_logs})"
    )
    for s, e in stats.failed_ranges:
        console.print(f"[red]missing[/] blocks {s:,}-{e:,}")
    return stats.as_dict()


def _common_options(f):
    options = [
        click.option("--network", "-n", type=click.Choice([n.value for n in Network], case_sensitive=False),
                     default=Network.MAINNET.value, show_default=True, help="Chain to query"),
        click.option("--contract", "-c", default=DEFAULT_CONTRACT_ADDRESS, show_default=True,
                     help="Order book contract address"),
        click.option("--event", "-e", "event_type", default="", show_default=True,
                     help="TakeOrderV2 or ClearV2; empty for both"),
        click.option("--abi", "abi_path", default=DEFAULT_ABI_PATH, show_default=True,
                     type=click.Path(dir_okay=False), help="Order book ABI JSON"),
        click.option("--out", "out_path", default=DEFAULT_OUTPUT_PATH, show_default=True, help="Output CSV"),
        click.option("--chunk-size", type=click.IntRange(min=1), default=DEFAULT_CHUNK_SIZE, show_default=True,
                     help="Blocks per eth_getLogs request"),
        click.option("--delay", type=float, default=0.1, show_default=True, help="Seconds between chunks"),
        click.option("--rate", type=float, default=None,
                     help="Adaptive token-bucket rate (chunks/s); overrides --delay"),
        click.option("--on-fetch-error", "policy", type=click.Choice([p.value for p in FailurePolicy]),
                     default=FailurePolicy.RETRY.value, show_default=True,
                     help="What to do when a chunk's log query fails"),
        click.option("--max-attempts", type=click.IntRange(min=1), default=3, show_default=True,
                     help="Attempts per chunk with --on-fetch-error=retry"),
        click.option("--env-file", type=click.Path(dir_okay=False), default=".env", show_default=True,
                     help="dotenv file with RPC URLs and the Etherscan key"),
        click.option("--log-level", default="INFO", show_default=True),
    ]
    for opt in reversed(options):
        f = opt(f)
    return f


def _build_config(contract, event_type, chunk_size, policy, max_attempts) -> CollectorConfig:
    try:
        parse_selector(event_type)
    except OrderScanError as e:
        raise click.BadParameter(str(e), param_hint="--event")
    return CollectorConfig(contract=contract, event_type=event_type, chunk_size=chunk_size,
                           failure_policy=FailurePolicy(policy), max_attempts=max_attempts)


@click.group()
def cli():
    """orderscan: collect TakeOrderV2 / ClearV2 events into a CSV."""


@cli.command("collect")
@_common_options
@click.option("--from-block", type=int, default=None, help="Start block (default: contract creation block)")
@click.option("--to-block", type=int, default=None, help="End block (default: latest)")
@click.option("--manifest", "manifest_path", default="", help="JSONL chunk manifest (default: <out>.manifest.jsonl)")
def collect_cmd(network, contract, event_type, abi_path, out_path, chunk_size, delay, rate, policy,
                max_attempts, env_file, log_level, from_block, to_block, manifest_path):
    """Scan [from, to] chunk by chunk and write every matching order event to the CSV."""
    setup_logging(log_level)
    config = _build_config(contract, event_type, chunk_size, policy, max_attempts)
    try:
        settings = load_settings(network, env_file=env_file, require_etherscan=from_block is None)
    except OrderScanError as e:
        raise click.ClickException(str(e))

    def factory(on_start, on_chunk):
        return collect_to_csv(
            settings=settings, config=config, abi_path=abi_path, out_path=out_path,
            manifest_path=manifest_path or f"{out_path}.manifest.jsonl",
            from_block=from_block, to_block=to_block, limiter=_limiter(delay, rate),
            on_start=on_start, on_chunk=on_chunk,
        )

    _run_scan(factory, f"{network}:{contract}")
    console.print(f"✅ Data exported to {out_path}")


@cli.command("backfill")
@_common_options
@click.option("--manifest", "manifest_path", default="", help="JSONL chunk manifest (default: <out>.manifest.jsonl)")
def backfill_cmd(network, contract, event_type, abi_path, out_path, chunk_size, delay, rate, policy,
                 max_attempts, env_file, log_level, manifest_path):
    """Re-scan chunks recorded as failed and append their events to the CSV."""
    setup_logging(log_level)
    config = _build_config(contract, event_type, chunk_size, policy, max_attempts)
    try:
        settings = load_settings(network, env_file=env_file, require_etherscan=False)
    except OrderScanError as e:
        raise click.ClickException(str(e))

    def factory(on_start, on_chunk):
        return backfill_csv(
            settings=settings, config=config, abi_path=abi_path, out_path=out_path,
            manifest_path=manifest_path or f"{out_path}.manifest.jsonl",
            limiter=_limiter(delay, rate), on_start=on_start, on_chunk=on_chunk,
        )

    _run_scan(factory, "backfill")


@cli.command("verify")
@click.option("--out", "out_path", default=DEFAULT_OUTPUT_PATH, show_default=True, help="CSV to check")
@click.option("--rows", type=click.IntRange(min=0), required=True, help="Expected number of data rows")
def verify_cmd(out_path, rows):
    """Check the CSV header and data-row count."""
    if verify_csv(out_path, rows):
        console.print(f"[green]ok[/]: {out_path} has the expected header and {rows} rows")
        return
    console.print(f"[red]mismatch[/]: {out_path} is missing, has a wrong header, or does not have {rows} rows")
    raise SystemExit(1)


if __name__ == "__main__":
    cli()
