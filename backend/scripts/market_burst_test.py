#!/usr/bin/env python3
"""
Paper-mode scheduler burst test.

Fires concurrent POST requests at ``/api/market/scheduler/tick`` and reports
success rate, throughput and latency percentiles. Run from backend/.

  MARKET_SCHEDULER_SECRET=... python scripts/market_burst_test.py
  BURST_REQUESTS=200 BURST_CONCURRENCY=20 OUTPUT_FORMAT=json OUTPUT_FILE=out/burst.json \\
      MARKET_SCHEDULER_SECRET=... python scripts/market_burst_test.py

Env: MARKET_BASE_URL (http://localhost:8000), MARKET_SCHEDULER_SECRET (required),
BURST_REQUESTS (30), BURST_CONCURRENCY (6), BURST_TIMEOUT_MS (30000),
BURST_DELAY_MS (0), OUTPUT_FORMAT (none|json|csv), OUTPUT_FILE.
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import math
import os
import sys
import time
from collections import Counter
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.logger import get_logger, setup_logging  # noqa: E402
from utils.utcnow import to_iso, utcnow  # noqa: E402

logger = get_logger("burst_test")

TICK_PATH = "/api/market/scheduler/tick"
OUTPUT_FORMATS = ("none", "json", "csv")
CSV_HEADERS = [
    "index",
    "httpOk",
    "envelopeOk",
    "status",
    "elapsedMs",
    "usersConsidered",
    "usersExecuted",
    "tradesExecuted",
    "reason",
]


class BurstConfigError(ValueError):
    pass


def _as_int(raw: Optional[str], default: int, low: int, high: int) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return min(high, max(low, value))


@dataclass(frozen=True)
class BurstConfig:
    base_url: str
    secret: str
    total_requests: int = 30
    concurrency: int = 6
    timeout_ms: int = 30000
    delay_ms: int = 0
    output_format: str = "none"
    output_file: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BurstConfig":
        env = os.environ if env is None else env
        output_format = str(env.get("OUTPUT_FORMAT") or "none").strip().lower()
        output_file = str(env.get("OUTPUT_FILE") or "").strip()
        secret = str(env.get("MARKET_SCHEDULER_SECRET") or "").strip()

        if output_format not in OUTPUT_FORMATS:
            raise BurstConfigError("OUTPUT_FORMAT must be one of: none, json, csv")
        if output_format != "none" and not output_file:
            raise BurstConfigError("OUTPUT_FILE is required when OUTPUT_FORMAT is json or csv")
        if not secret:
            raise BurstConfigError("Missing MARKET_SCHEDULER_SECRET")

        return cls(
            base_url=str(env.get("MARKET_BASE_URL") or "http://localhost:8000").rstrip("/"),
            secret=secret,
            total_requests=_as_int(env.get("BURST_REQUESTS"), 30, 1, 5000),
            concurrency=_as_int(env.get("BURST_CONCURRENCY"), 6, 1, 200),
            timeout_ms=_as_int(env.get("BURST_TIMEOUT_MS"), 30000, 1000, 120000),
            delay_ms=_as_int(env.get("BURST_DELAY_MS"), 0, 0, 10000),
            output_format=output_format,
            output_file=output_file,
        )


@dataclass
class RequestResult:
    index: int
    httpOk: bool
    envelopeOk: bool
    status: int
    elapsedMs: int
    usersConsidered: int = 0
    usersExecuted: int = 0
    tradesExecuted: int = 0
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.httpOk and self.envelopeOk


def percentile(values: list[int], p: float) -> int:
    """Nearest-rank percentile: the value at ``ceil(p/100 * n) - 1`` once sorted."""
    if not values:
        return 0
    ordered = sorted(values)
    idx = min(len(ordered) - 1, max(0, math.ceil((p / 100) * len(ordered)) - 1))
    return ordered[idx]


def _count(value: object) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


async def run_single(client: httpx.AsyncClient, config: BurstConfig, index: int) -> RequestResult:
    started = time.monotonic()
    try:
        response = await client.post(
            f"{config.base_url}{TICK_PATH}",
            headers={"Authorization": f"Bearer {config.secret}", "Content-Type": "application/json"},
            timeout=config.timeout_ms / 1000,
        )
    except httpx.HTTPError as exc:
        return RequestResult(
            index=index,
            httpOk=False,
            envelopeOk=False,
            status=0,
            elapsedMs=int((time.monotonic() - started) * 1000),
            reason=str(exc) or type(exc).__name__,
        )

    elapsed_ms = int((time.monotonic() - started) * 1000)
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    envelope_ok = bool(payload.get("ok"))
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
    return RequestResult(
        index=index,
        httpOk=response.is_success,
        envelopeOk=envelope_ok,
        status=response.status_code,
        elapsedMs=elapsed_ms,
        usersConsidered=_count(data.get("usersConsidered")),
        usersExecuted=_count(data.get("usersExecuted")),
        tradesExecuted=_count(data.get("totalTradesExecuted")),
        reason="ok" if envelope_ok else str(error.get("message") or f"HTTP_{response.status_code}"),
    )


async def run_burst(config: BurstConfig, client: Optional[httpx.AsyncClient] = None) -> list[RequestResult]:
    """Run ``total_requests`` ticks over ``concurrency`` workers, ordered by index."""
    owns_client = client is None
    client = client or httpx.AsyncClient()
    next_index = 0
    results: list[RequestResult] = []

    async def worker() -> None:
        nonlocal next_index
        while next_index < config.total_requests:
            next_index += 1
            index = next_index
            if config.delay_ms > 0:
                await asyncio.sleep(config.delay_ms / 1000)
            result = await run_single(client, config, index)
            results.append(result)
            logger.info(
                f"{'OK ' if result.succeeded else 'ERR'} #{result.index:03d} "
                f"status={result.status or 'ERR'} latency={result.elapsedMs}ms "
                f"users={result.usersExecuted}/{result.usersConsidered} trades={result.tradesExecuted}"
            )

    try:
        await asyncio.gather(*(worker() for _ in range(min(config.concurrency, config.total_requests))))
    finally:
        if owns_client:
            await client.aclose()
    return sorted(results, key=lambda r: r.index)


def summarize(config: BurstConfig, results: list[RequestResult], elapsed_ms: int) -> dict:
    successes = [r for r in results if r.succeeded]
    latencies = [r.elapsedMs for r in results]
    total_trades = sum(r.tradesExecuted for r in results)
    seconds = elapsed_ms / 1000
    req_per_sec = len(results) / seconds if elapsed_ms > 0 else 0.0
    trades_per_sec = total_trades / seconds if elapsed_ms > 0 else 0.0
    failures = Counter(r.reason for r in results if not r.succeeded)

    return {
        "timestampIso": to_iso(utcnow()),
        "baseUrl": config.base_url,
        "totalRequests": len(results),
        "successCount": len(successes),
        "failureCount": len(results) - len(successes),
        "successRatePct": round(len(successes) / max(1, len(results)) * 100, 2),
        "totalUsersConsidered": sum(r.usersConsidered for r in results),
        "totalUsersExecuted": sum(r.usersExecuted for r in results),
        "totalTradesExecuted": total_trades,
        "burstDurationMs": elapsed_ms,
        "requestThroughputPerSec": round(req_per_sec, 4),
        "tradeThroughputPerSec": round(trades_per_sec, 4),
        "latencyP50Ms": percentile(latencies, 50),
        "latencyP95Ms": percentile(latencies, 95),
        "latencyMaxMs": max(latencies, default=0),
        "failureBreakdown": dict(failures),
        "config": {
            "totalRequests": config.total_requests,
            "concurrency": config.concurrency,
            "timeoutMs": config.timeout_ms,
            "delayMs": config.delay_ms,
        },
    }


def to_csv(results: list[RequestResult]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for r in results:
        writer.writerow([getattr(r, header) for header in CSV_HEADERS])
    return buffer.getvalue()


def write_report(config: BurstConfig, summary: dict, results: list[RequestResult]) -> None:
    if config.output_format == "none":
        return
    path = Path(config.output_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if config.output_format == "json":
        content = json.dumps({"summary": summary, "results": [asdict(r) for r in results]}, indent=2) + "\n"
    else:
        content = to_csv(results)
    path.write_text(content, encoding="utf-8")
    logger.info(f"Wrote {config.output_format.upper()} report to {path}")


def _log_summary(summary: dict) -> None:
    lines = [
        "Summary",
        f"  Total Requests: {summary['totalRequests']}",
        f"  Success: {summary['successCount']}",
        f"  Failure: {summary['failureCount']}",
        f"  Success Rate: {summary['successRatePct']:.1f}%",
        f"  Total Users Considered: {summary['totalUsersConsidered']}",
        f"  Total Users Executed: {summary['totalUsersExecuted']}",
        f"  Total Trades Executed: {summary['totalTradesExecuted']}",
        f"  Burst Duration: {summary['burstDurationMs'] / 1000:.2f}s",
        f"  Request Throughput: {summary['requestThroughputPerSec']:.2f} req/s",
        f"  Trade Throughput: {summary['tradeThroughputPerSec']:.2f} trades/s",
        f"  Latency p50: {summary['latencyP50Ms']}ms",
        f"  Latency p95: {summary['latencyP95Ms']}ms",
        f"  Latency max: {summary['latencyMaxMs']}ms",
    ]
    if summary["failureBreakdown"]:
        lines.append("Failure breakdown")
        lines.extend(f"  - {reason}: {count}" for reason, count in summary["failureBreakdown"].items())
    logger.info("\n".join(lines))


async def main_async(config: BurstConfig) -> int:
    logger.info(
        "Market scheduler burst test",
        base_url=config.base_url,
        requests=config.total_requests,
        concurrency=config.concurrency,
        timeout_ms=config.timeout_ms,
        delay_ms=config.delay_ms,
        output=config.output_format,
    )
    started = time.monotonic()
    results = await run_burst(config)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    summary = summarize(config, results, elapsed_ms)
    _log_summary(summary)
    write_report(config, summary, results)
    return 0 if summary["successCount"] > 0 else 1


def main() -> int:
    setup_logging(level="INFO", json_format=False)
    try:
        config = BurstConfig.from_env()
    except BurstConfigError as e:
        logger.error(str(e))
        return 1
    return asyncio.run(main_async(config))


if __name__ == "__main__":
    sys.exit(main())
