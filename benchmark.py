"""
pathstore Throughput Benchmarks
"""

import argparse
import asyncio
import gc
import time
import tracemalloc
from dataclasses import dataclass
from typing import Callable, List, TypeVar

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pathstore import create_observable_store, signature

T = TypeVar("T")

# =============================================================================
# Benchmark Configuration and Metrics
# =============================================================================

TIME_LIMIT_SECONDS = 1.0
STARTING_N = 10
SCALE_FACTOR = 1.5
NUM_ITERATIONS = 3  # averaged to smooth out GC variance


@dataclass
class BenchmarkMetrics:
    """Timing and memory for one benchmark at its final workload size."""

    operation: str
    max_n: int
    operation_time: float
    operations_per_second: float
    memory_peak_kb: int
    memory_allocated_kb: int
    gc_total_collections: int


class BenchmarkProfiler:
    """Time, memory and GC counts around one benchmark run."""

    def __enter__(self):
        gc.collect()
        tracemalloc.start()
        self.memory_start, _ = tracemalloc.get_traced_memory()
        self.gc_before = sum(gc.get_count())
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.gc_after = sum(gc.get_count())
        self.memory_end, self.memory_peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

    def get_metrics(self, operation: str, n: int, operations_performed: int) -> BenchmarkMetrics:
        elapsed = self.end_time - self.start_time
        return BenchmarkMetrics(
            operation=operation,
            max_n=n,
            operation_time=elapsed,
            operations_per_second=operations_performed / elapsed if elapsed > 0 else 0,
            memory_peak_kb=self.memory_peak // 1024,
            memory_allocated_kb=(self.memory_end - self.memory_start) // 1024,
            gc_total_collections=max(0, self.gc_after - self.gc_before),
        )


def run_adaptive_benchmark(
    operation: str,
    operation_func: Callable[[int], T],
    operations_counter: Callable[[T], int],
    time_limit: float = TIME_LIMIT_SECONDS,
) -> BenchmarkMetrics:
    """Grow the workload until one run takes ``time_limit``, then profile it."""
    n = STARTING_N
    while True:
        start = time.perf_counter()
        operation_func(n)
        if time.perf_counter() - start >= time_limit:
            break
        n = int(n * SCALE_FACTOR)
        if n > 1_000_000:
            break

    runs = []
    for _ in range(NUM_ITERATIONS):
        with BenchmarkProfiler() as profiler:
            result = operation_func(n)
        runs.append(profiler.get_metrics(operation, n, operations_counter(result)))

    count = len(runs)
    return BenchmarkMetrics(
        operation=operation,
        max_n=n,
        operation_time=sum(r.operation_time for r in runs) / count,
        operations_per_second=sum(r.operations_per_second for r in runs) / count,
        memory_peak_kb=sum(r.memory_peak_kb for r in runs) // count,
        memory_allocated_kb=sum(r.memory_allocated_kb for r in runs) // count,
        gc_total_collections=sum(r.gc_total_collections for r in runs) // count,
    )


# =============================================================================
# Workloads
# =============================================================================


def update_operation(n: int) -> int:
    store = create_observable_store({"counter": 0}, max_history_length=0)
    store.subscribe_to_path("counter", lambda value: None)
    for i in range(n):
        store.update("counter", i + 1)
    return n


def idempotent_operation(n: int) -> int:
    store = create_observable_store({"user": {"name": "Ada", "tags": ["a", "b"]}})
    value = {"name": "Ada", "tags": ["a", "b"]}
    for _ in range(n):
        store.update("user", value)
    return n


def batch_operation(n: int) -> int:
    store = create_observable_store({"items": {}}, max_history_length=0)
    notified = []
    store.subscribe(lambda state: notified.append(1))
    with store.batch():
        for i in range(n):
            store.update(f"items.k{i}", i)
    return n


def fanout_operation(n: int) -> int:
    store = create_observable_store({"a": {f"k{i}": i for i in range(n)}})
    for i in range(n):
        store.subscribe_to_path(f"a.k{i}", lambda value: None)
    store.update("a", {f"k{i}": i + 1 for i in range(n)})
    return n


def list_append_operation(n: int) -> int:
    store = create_observable_store({"todos": []}, max_history_length=0)
    todos = store.state.todos
    for i in range(n):
        todos.append({"id": i, "done": False})
    return n


def undo_redo_operation(n: int) -> int:
    store = create_observable_store({"value": 0}, history_limits={"value": n + 1})
    for i in range(n):
        store.update("value", i + 1)
    for _ in range(n):
        store.undo("value")
    for _ in range(n):
        store.redo("value")
    return 3 * n


def signature_operation(n: int) -> int:
    tree = {
        "users": [{"id": i, "name": f"user{i}", "scores": np.arange(8)} for i in range(n)]
    }
    signature(tree)
    return n


def async_update_operation(n: int) -> int:
    store = create_observable_store({"x": 0}, max_history_length=0)

    async def updater(current, token):
        return current + 1

    async def run():
        for _ in range(n):
            await store.async_update("x", updater, abort_previous=True)

    asyncio.run(run())
    return n


BENCHMARKS = [
    ("Path Updates", update_operation),
    ("Idempotent Writes", idempotent_operation),
    ("Batched Writes", batch_operation),
    ("Path Fan-out", fanout_operation),
    ("List Append (proxy)", list_append_operation),
    ("Undo/Redo", undo_redo_operation),
    ("Deep Signatures", signature_operation),
    ("Async Updates", async_update_operation),
]


class StoreBenchmark:
    """Benchmark suite for pathstore."""

    def __init__(self, time_limit: float = TIME_LIMIT_SECONDS):
        self.console = Console()
        self.time_limit = time_limit
        self.results: List[BenchmarkMetrics] = []

    def run_comprehensive_benchmark(self):
        self._display_header()
        for name, operation in BENCHMARKS:
            self.console.print(f"[yellow]Running {name} benchmark...[/yellow]")
            result = run_adaptive_benchmark(name, operation, lambda ops: ops, self.time_limit)
            self.results.append(result)
            self.console.print(
                f"[green]✓[/green] {name}: {result.operations_per_second:,.0f} ops/sec "
                f"(n={result.max_n:,})"
            )
        self._display_performance_results()
        self._display_summary()

    def _display_header(self):
        header = Panel(
            "pathstore Performance Benchmarks\n"
            f"{NUM_ITERATIONS} iterations per benchmark with memory profiling",
            title="Store Benchmarks",
            border_style="blue",
        )
        self.console.print(header)
        self.console.print()

    def _display_performance_results(self):
        self.console.print()
        table = Table(title="Performance Results")
        table.add_column("Benchmark", style="cyan")
        table.add_column("Operations/sec", style="green", justify="right")
        table.add_column("Max N", style="yellow", justify="right")
        table.add_column("Time (sec)", style="blue", justify="right")
        table.add_column("Peak Memory", style="magenta", justify="right")
        table.add_column("GCs", style="red", justify="right")

        for result in self.results:
            table.add_row(
                result.operation,
                f"{result.operations_per_second:,.0f}",
                f"{result.max_n:,}",
                f"{result.operation_time:.3f}",
                f"{result.memory_peak_kb:,} KB",
                str(result.gc_total_collections),
            )
        self.console.print(table)

    def _display_summary(self):
        self.console.print()
        count = len(self.results)
        summary = Panel(
            f"Average Performance: {sum(r.operations_per_second for r in self.results) / count:,.0f} ops/sec\n"
            f"Average Peak Memory: {sum(r.memory_peak_kb for r in self.results) / count:,.0f} KB\n"
            f"Total Benchmarks: {count}",
            title="Benchmark Summary",
            border_style="green",
        )
        self.console.print(summary)


def print_config():
    """Print the current benchmark configuration."""
    print("pathstore Benchmark Configuration:")
    print(f"  TIME_LIMIT_SECONDS: {TIME_LIMIT_SECONDS}")
    print(f"  STARTING_N: {STARTING_N}")
    print(f"  SCALE_FACTOR: {SCALE_FACTOR}")
    print(f"  NUM_ITERATIONS: {NUM_ITERATIONS}")
    print("\nBenchmark Categories:")
    for name, _ in BENCHMARKS:
        print(f"  - {name}")


def main():
    parser = argparse.ArgumentParser(description="pathstore Performance Benchmarks")
    parser.add_argument(
        "--config", action="store_true", help="Show current benchmark configuration"
    )
    parser.add_argument(
        "--quick", action="store_true", help="Run quick benchmarks (reduced time limits)"
    )
    args = parser.parse_args()

    if args.config:
        print_config()
        return

    time_limit = 0.2 if args.quick else TIME_LIMIT_SECONDS
    if not args.quick:
        print_config()
        print()

    StoreBenchmark(time_limit).run_comprehensive_benchmark()


if __name__ == "__main__":
    main()
