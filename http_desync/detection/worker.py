"""Workers that run baseline jobs and desync tests.

Every test runs the same two-phase protocol per desync type: a probe built so
that a vulnerable backend hangs, and, only if the probe hangs, a verification
request built so that the same backend answers quickly. A bare timeout is
only a candidate; a finding needs the verification to come back in time.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from http_desync.core.config import ScanConfig
from http_desync.core.exceptions import DesyncError, TransportError, InconclusiveError
from http_desync.core.models import DesyncType, SmuggleTestRecord, Target, TestStatus
from http_desync.detection.baseline import BaselineCalibrator
from http_desync.network.raw_socket import ConnectionOracle, OracleResult
from http_desync.payloads.builder import PROBE_BUILDERS
from http_desync.state.store import CounterMap, ScanState
from http_desync.utils.logging import ScanLogger


class StageOutcome(Enum):
    CONFIRMED = "confirmed"
    CLEAN = "clean"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class WorkerContext:
    """Everything the workers of one scan share."""

    config: ScanConfig
    mutations: Dict[str, str]
    oracle: ConnectionOracle
    state: ScanState
    vulns: CounterMap
    errors: "asyncio.Queue[DesyncError]"
    logger: ScanLogger

    @property
    def calibrator(self) -> BaselineCalibrator:
        return BaselineCalibrator(
            self.oracle,
            self.config.headers,
            self.config.network.baseline_timeout,
        )


class Worker:
    """One concurrent worker. Holds no per-target affinity."""

    def __init__(self, worker_id: int, context: WorkerContext):
        self.worker_id = worker_id
        self.context = context
        self.config = context.config
        self.calibrator = context.calibrator

    async def _report(self, error: DesyncError) -> None:
        await self.context.errors.put(error)

    async def _fail(self, target: Target, error: DesyncError) -> None:
        await self.context.state.errors.increment(target.url)
        await self._report(error)

    async def over_budget(self, target: Target) -> bool:
        return await self.context.state.errors.reached(target.url, self.config.max_errors)

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    async def calibrate(self, jobs: "asyncio.Queue[Optional[Target]]") -> int:
        """Measure baselines until a ``None`` sentinel arrives.

        Returns:
            Number of baselines stored by this worker
        """
        measured = 0
        while True:
            target = await jobs.get()
            if target is None:
                return measured
            try:
                elapsed = await self.calibrator.measure(target)
            except TransportError as e:
                await self._report(e)
                continue
            await self.context.state.baselines.set(target.url, elapsed)
            self.context.logger.baseline_measured(target.url, elapsed)
            measured += 1

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _send(self, record: SmuggleTestRecord, request: bytes) -> Optional[OracleResult]:
        try:
            return await self.context.oracle.send(record.target, request, record.timeout)
        except TransportError as e:
            await self._fail(record.target, e)
            return None

    async def run_stage(self, record: SmuggleTestRecord, desync: DesyncType) -> StageOutcome:
        """Run the probe/verify pair for one desync type."""
        probe_builder, verify_builder = PROBE_BUILDERS[desync]
        te_header = self.context.mutations[record.mutation]
        headers = self.config.headers

        if await self.over_budget(record.target):
            return StageOutcome.SKIPPED
        probe = await self._send(
            record, probe_builder(record.method, record.target, te_header, headers)
        )
        if probe is None:
            return StageOutcome.ERROR
        if not probe.timed_out:
            return StageOutcome.CLEAN

        if await self.over_budget(record.target):
            return StageOutcome.SKIPPED
        verify = await self._send(
            record, verify_builder(record.method, record.target, te_header, headers)
        )
        if verify is None:
            return StageOutcome.ERROR
        if not verify.timed_out:
            return StageOutcome.CONFIRMED

        await self._fail(
            record.target,
            InconclusiveError(record.target.url, desync.value, record.timeout),
        )
        return StageOutcome.ERROR

    async def execute(self, record: SmuggleTestRecord) -> Optional[SmuggleTestRecord]:
        """Run CL.TE then TE.CL for a record.

        A confirmed CL.TE finding ends the record without testing TE.CL.

        Returns:
            The resolved record, or None when the target's error budget ran
            out before or during the test
        """
        if await self.over_budget(record.target):
            self.context.logger.test_skipped(record.target.url, "max errors reached")
            return None

        outcomes: List[StageOutcome] = []
        for desync in (DesyncType.CL_TE, DesyncType.TE_CL):
            outcome = await self.run_stage(record, desync)
            if outcome is StageOutcome.SKIPPED:
                self.context.logger.test_skipped(record.target.url, "max errors reached")
                return None
            if outcome is StageOutcome.CONFIRMED:
                await self.context.vulns.increment(record.target.url)
                return record.resolve(TestStatus.for_desync(desync))
            outcomes.append(outcome)

        if all(outcome is StageOutcome.ERROR for outcome in outcomes):
            return record.resolve(TestStatus.ERROR)
        return record.resolve(TestStatus.SAFE)

    async def test(
        self,
        tests: "asyncio.Queue[Optional[SmuggleTestRecord]]",
        results: "asyncio.Queue[SmuggleTestRecord]",
        slots: asyncio.Semaphore,
    ) -> None:
        """Execute records until a ``None`` sentinel arrives.

        Each record holds one dispatch slot, released once its result (if
        any) has been emitted.
        """
        while True:
            record = await tests.get()
            if record is None:
                return
            try:
                result = await self.execute(record)
                if result is not None:
                    await results.put(result)
            finally:
                slots.release()


class WorkerPool:
    """Fixed set of workers sharing job queues on a first-available basis."""

    def __init__(
        self,
        size: int,
        context: WorkerContext,
        factory: Callable[[int, WorkerContext], Worker] = Worker,
    ):
        self.size = size
        self.workers = [factory(i, context) for i in range(size)]

    async def calibrate(self, jobs: "asyncio.Queue[Optional[Target]]") -> int:
        counts = await asyncio.gather(*(worker.calibrate(jobs) for worker in self.workers))
        return sum(counts)

    async def test(
        self,
        tests: "asyncio.Queue[Optional[SmuggleTestRecord]]",
        results: "asyncio.Queue[SmuggleTestRecord]",
        slots: asyncio.Semaphore,
    ) -> None:
        await asyncio.gather(*(worker.test(tests, results, slots) for worker in self.workers))
