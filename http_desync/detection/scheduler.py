"""Test matrix construction and randomized dispatch.

Tests are dispatched in uniformly random order across all targets, so
consecutive requests rarely hit the same service.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from http_desync.core.config import ScanConfig
from http_desync.core.models import SmuggleTestRecord, Target
from http_desync.detection.baseline import detection_timeout
from http_desync.state.store import CounterMap, ScanState
from http_desync.utils.logging import ScanLogger


@dataclass
class DispatchStats:
    dispatched: int = 0
    skipped: int = 0


class TestScheduler:
    """Builds the (target, method, mutation) matrix and feeds it to workers."""

    # not a pytest test class
    __test__ = False

    def __init__(
        self,
        config: ScanConfig,
        mutations: Dict[str, str],
        state: ScanState,
        vulns: CounterMap,
        logger: Optional[ScanLogger] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.mutations = mutations
        self.state = state
        self.vulns = vulns
        self.logger = logger or ScanLogger(quiet=True)
        self.rng = rng or random.Random()

    async def build_matrix(self, targets: Iterable[Target]) -> List[SmuggleTestRecord]:
        """Every untested tuple for targets that have a baseline."""
        baselines = await self.state.baselines.snapshot()
        completed = await self.state.results.keys()

        matrix = []
        seen = set()
        for target in targets:
            if target.url in seen or target.url not in baselines:
                continue
            seen.add(target.url)
            timeout = detection_timeout(baselines[target.url], self.config.delay)
            for method in self.config.methods:
                for mutation in sorted(self.mutations):
                    if (target.url, method, mutation) in completed:
                        continue
                    matrix.append(SmuggleTestRecord(
                        target=target,
                        method=method,
                        mutation=mutation,
                        timeout=timeout,
                    ))
        return matrix

    def pick(self, pool: List[SmuggleTestRecord]) -> SmuggleTestRecord:
        """Remove and return a uniformly random record (swap and pop)."""
        i = self.rng.randrange(len(pool))
        pool[i], pool[-1] = pool[-1], pool[i]
        return pool.pop()

    async def stopped(self, target: Target) -> bool:
        return await self.vulns.reached(target.url, self.config.stop_after)

    async def dispatch(
        self,
        matrix: List[SmuggleTestRecord],
        tests: "asyncio.Queue[Optional[SmuggleTestRecord]]",
        slots: asyncio.Semaphore,
        sentinels: int = 0,
    ) -> DispatchStats:
        """Hand records to workers in random order.

        A slot is taken before the stop-after gate is consulted, so the gate
        reads the freshest finding count a free worker could act on. Records
        already handed out are never recalled.

        Args:
            matrix: records to dispatch (consumed)
            tests: queue the workers read from
            slots: one permit per worker, released by the worker per record
            sentinels: number of ``None`` markers to enqueue when done
        """
        stats = DispatchStats()
        pool = list(matrix)
        while pool:
            record = self.pick(pool)
            await slots.acquire()
            if await self.stopped(record.target):
                slots.release()
                stats.skipped += 1
                self.logger.test_skipped(record.target.url, "stop-after reached")
                continue
            self.logger.test_dispatched(record.method, record.target.url, record.mutation)
            await tests.put(record)
            stats.dispatched += 1

        for _ in range(sentinels):
            await tests.put(None)
        return stats
