"""Topological task runner.

Runs one async operation per package such that a package's operation only
starts once the operations of all the packages it depends on (within the
same run) have finished. Independent packages run concurrently on a
bounded pool of worker slots.
"""

from __future__ import annotations

import asyncio
import os
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from .errors import CycleError, TaskRunError
from .graph import DependencyGraph, find_cycles
from .models import PackageNode
from .shell import warn

T = TypeVar("T")

_worker_slot: ContextVar[asyncio.Semaphore | None] = ContextVar(
    "monopub_worker_slot", default=None
)

# Returned by a worker that was scheduled but never ran its operation
# because another package failed first.
_DROPPED: Any = object()


def default_concurrency() -> int:
    return os.cpu_count() or 1


@asynccontextmanager
async def yield_slot() -> AsyncIterator[None]:
    """Give the current worker slot back while the body runs.

    Used around waits on operator input so other packages keep moving.
    Outside of a runner worker this is a no-op.
    """
    semaphore = _worker_slot.get()
    if semaphore is None:
        yield
        return
    semaphore.release()
    try:
        yield
    finally:
        await semaphore.acquire()


async def run_topologically(
    graph: DependencyGraph,
    names: Iterable[str],
    operation: Callable[[PackageNode], Awaitable[T]],
    *,
    concurrency: int | None = None,
    reject_cycles: bool = False,
) -> dict[str, T]:
    """Run ``operation`` for every selected package in dependency order.

    This is Kahn's algorithm interleaved with bounded-parallel execution:
    in-degrees are counted on the subgraph induced by ``names`` only, a
    package becomes eligible when all of its in-set dependencies have
    completed, and at most ``concurrency`` operations run at once.

    Cycles are rejected up front with ``reject_cycles``. Otherwise, once no
    package is eligible, the remaining packages are released one at a time
    in graph declaration order.

    If an operation raises, nothing new is started, operations already in
    flight are allowed to finish, and the first failure is raised as a
    TaskRunError once everything has settled.

    Args:
        graph: The workspace dependency graph.
        names: Packages to run over.
        operation: Coroutine function called once per package node.
        concurrency: Maximum simultaneous operations (default: CPU count).
        reject_cycles: Raise CycleError instead of warning on cycles.

    Returns:
        Map of package name → operation result, in completion order.

    Raises:
        CycleError: If ``reject_cycles`` is set and the selection has a cycle.
        TaskRunError: If any operation raised.
    """
    wanted = set(names)
    unknown = wanted.difference(graph.names)
    if unknown:
        raise KeyError(f"Unknown packages: {', '.join(sorted(unknown))}")
    selected = [n for n in graph.names if n in wanted]

    if reject_cycles:
        cycles = find_cycles(graph, selected)
        if cycles:
            raise CycleError(m for cycle in cycles for m in cycle)

    in_degree = {n: 0 for n in selected}
    dependents: dict[str, list[str]] = {n: [] for n in selected}
    for name in selected:
        for dep in graph.dependencies_of(name):
            if dep in wanted:
                in_degree[name] += 1
                dependents[dep].append(name)

    semaphore = asyncio.Semaphore(max(1, concurrency or default_concurrency()))
    results: dict[str, T] = {}
    completed: list[str] = []
    failed: list[str] = []
    first_failure: tuple[str, BaseException] | None = None
    started: set[str] = set()
    running: dict[asyncio.Task[Any], str] = {}
    ready = deque(n for n in selected if in_degree[n] == 0)
    warned = False
    # Set by a failing worker before it gives its slot back, so waiting
    # workers see it even if the loop below has not collected the failure yet
    halted = False

    async def work(name: str) -> Any:
        nonlocal halted
        async with semaphore:
            if halted:
                return _DROPPED
            token = _worker_slot.set(semaphore)
            try:
                return await operation(graph.get(name))
            except Exception:
                halted = True
                raise
            finally:
                _worker_slot.reset(token)

    while True:
        while ready and first_failure is None:
            name = ready.popleft()
            started.add(name)
            running[asyncio.create_task(work(name))] = name

        if not running:
            if first_failure is not None:
                break
            remaining = [n for n in selected if n not in started]
            if not remaining:
                break
            # Only cycles are left: release them in declaration order
            cycles = find_cycles(graph, remaining)
            cyclic = {m for cycle in cycles for m in cycle}
            if not warned:
                listing = "; ".join(" -> ".join(c) for c in cycles)
                warn(f"Dependency cycles detected, order is best-effort: {listing}")
                warned = True
            ready.append(next((n for n in remaining if n in cyclic), remaining[0]))
            continue

        done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            name = running.pop(task)
            error = task.exception()
            if error is not None:
                failed.append(name)
                if first_failure is None:
                    first_failure = (name, error)
                continue
            result = task.result()
            if result is _DROPPED:
                continue
            results[name] = result
            completed.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] <= 0 and dependent not in started:
                    ready.append(dependent)

    if first_failure is not None:
        name, error = first_failure
        raise TaskRunError(name, error, completed, failed) from error

    return results
