#!/usr/bin/env python3
"""Measure session startup, call round-trip latency, and output throughput."""

from __future__ import annotations

import argparse
import asyncio
import json
import platform
import shutil
import statistics
import subprocess
import time
from pathlib import Path
from typing import Any

from node_repl import ReplConfig, open_session, spawn


ROOT = Path(__file__).resolve().parents[2]


def percentile(values: list[float], pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = (len(ordered) - 1) * pct
    lower = int(rank)
    upper = min(lower + 1, len(ordered) - 1)
    weight = rank - lower
    return ordered[lower] * (1.0 - weight) + ordered[upper] * weight


def metric_summary(values: list[float]) -> dict[str, Any]:
    if not values:
        return {"count": 0, "min_ms": 0.0, "max_ms": 0.0, "mean_ms": 0.0, "p50_ms": 0.0, "p95_ms": 0.0}
    return {
        "count": len(values),
        "min_ms": min(values),
        "max_ms": max(values),
        "mean_ms": statistics.fmean(values),
        "p50_ms": percentile(values, 0.50),
        "p95_ms": percentile(values, 0.95),
    }


def node_version(binary: str) -> str:
    try:
        return subprocess.check_output([binary, "--version"], text=True).strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


async def benchmark_startup(config: ReplConfig, iterations: int) -> list[float]:
    """Time spawn through the first completed call, then stop and close."""
    samples: list[float] = []
    for _ in range(iterations):
        start = time.perf_counter()
        session = await spawn(config)
        try:
            await session.run("")
            samples.append((time.perf_counter() - start) * 1000.0)
            await session.stop()
        finally:
            await session.close()
    return samples


async def benchmark_calls(config: ReplConfig, iterations: int, code: str) -> list[float]:
    async with open_session(config) as session:
        await session.run("counter = 0")
        samples: list[float] = []
        for _ in range(iterations):
            start = time.perf_counter()
            await session.run(code)
            samples.append((time.perf_counter() - start) * 1000.0)
        await session.stop()
        return samples


async def benchmark_output(config: ReplConfig, iterations: int, size: int) -> dict[str, Any]:
    code = f"process.stdout.write('x'.repeat({size}))"
    samples = await benchmark_calls(config, iterations, code)
    total_s = sum(samples) / 1000.0
    return {
        "latency_ms": metric_summary(samples),
        "bytes_per_call": size,
        "throughput_mb_per_sec": (size * len(samples) / total_s / 1e6) if total_s > 0 else 0.0,
    }


async def collect(args: argparse.Namespace) -> dict[str, Any]:
    config = ReplConfig.build(interpreter_binary=args.node)
    startup = await benchmark_startup(config, args.startup_iters)
    calls = await benchmark_calls(config, args.call_iters, "counter += 1")
    output = await benchmark_output(config, args.output_iters, args.output_size)
    return {
        "label": args.label,
        "timestamp_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "environment": {
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "node_version": node_version(args.node),
            "cwd": str(ROOT),
        },
        "config": {
            "startup_iters": args.startup_iters,
            "call_iters": args.call_iters,
            "output_iters": args.output_iters,
            "output_size": args.output_size,
        },
        "metrics": {
            "startup_latency_ms": metric_summary(startup),
            "call_latency_ms": metric_summary(calls),
            "output": output,
        },
    }


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--label", required=True, help="Run label, e.g. baseline/candidate")
    parser.add_argument("--output", required=True, help="Output JSON path")
    parser.add_argument("--node", default=shutil.which("node") or "node", help="Node.js binary")
    parser.add_argument("--startup-iters", type=int, default=15)
    parser.add_argument("--call-iters", type=int, default=200)
    parser.add_argument("--output-iters", type=int, default=50)
    parser.add_argument("--output-size", type=int, default=256 * 1024)
    args = parser.parse_args()

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    payload = asyncio.run(collect(args))

    output_path.write_text(json.dumps(payload, indent=2))
    print(f"Wrote {output_path}")


if __name__ == "__main__":
    main()
