"""Main scan engine for http-desync.

Orchestrates the scanning workflow:
1. Load and merge the persisted scan state
2. Read targets and calibrate missing baselines
3. Build the test matrix and dispatch it in random order
4. Record every result, report confirmed findings
5. Checkpoint periodically and once more at the end
"""

import asyncio
import time
from typing import Dict, Iterable, Optional

from http_desync.core.config import ScanConfig
from http_desync.core.exceptions import ConfigError, DesyncError, ParseError
from http_desync.core.models import ScanSummary, SmuggleTestRecord, Target
from http_desync.detection.scheduler import TestScheduler
from http_desync.detection.worker import WorkerContext, WorkerPool
from http_desync.network.raw_socket import ConnectionOracle
from http_desync.state.checkpoint import Checkpointer
from http_desync.state.store import CounterMap, ScanState
from http_desync.utils.logging import ResultLog, ScanLogger


class DesyncScanner:
    """Concurrent CL.TE / TE.CL scanner over many targets."""

    def __init__(
        self,
        config: ScanConfig,
        oracle: Optional[ConnectionOracle] = None,
        result_log: Optional[ResultLog] = None,
    ):
        """Initialize the scanner.

        Args:
            config: Scan configuration
            oracle: Connection oracle (a default one is built from config.network)
            result_log: Where finding lines go

        Raises:
            ConfigError: the configuration is invalid or selects no mutation
        """
        self.config = config

        errors = config.validate()
        if errors:
            raise ConfigError(errors)
        self.mutations = config.resolve_mutations()

        self.oracle = oracle or ConnectionOracle(config.network)
        self.logger = ScanLogger(verbose=config.verbose, quiet=config.quiet)
        self.result_log = result_log or ResultLog()

        self.state = ScanState()
        self.vulns = CounterMap()
        self.checkpointer = Checkpointer(
            self.state, config.state_file, config.checkpoint_interval
        )
        self.summary = ScanSummary()

    async def run(self, lines: Iterable[str]) -> ScanSummary:
        """Run a complete scan over newline-delimited target URLs.

        Raises:
            PersistenceError: the existing state file cannot be read
        """
        start = time.monotonic()

        await self.checkpointer.open()
        for url, count in (await self.state.confirmed_counts()).items():
            await self.vulns.set(url, count)

        errors: "asyncio.Queue[Optional[DesyncError]]" = asyncio.Queue()
        context = WorkerContext(
            config=self.config,
            mutations=self.mutations,
            oracle=self.oracle,
            state=self.state,
            vulns=self.vulns,
            errors=errors,
            logger=self.logger,
        )
        pool = WorkerPool(self.config.workers, context)

        error_task = asyncio.ensure_future(self._consume_errors(errors))
        checkpoint_task = asyncio.ensure_future(self.checkpointer.run())
        try:
            self.logger.phase("Getting missing base times...")
            targets = await self._calibrate(lines, pool, errors)

            self.logger.phase("Testing smuggling...")
            await self._detect(targets, pool)
        finally:
            checkpoint_task.cancel()
            await asyncio.gather(checkpoint_task, return_exceptions=True)
            await self.checkpointer.try_save()
            await self.checkpointer.close()

            await errors.put(None)
            await error_task

            self.summary.duration = time.monotonic() - start

        return self.summary

    async def _calibrate(
        self,
        lines: Iterable[str],
        pool: WorkerPool,
        errors: "asyncio.Queue[Optional[DesyncError]]",
    ) -> Dict[str, Target]:
        """Read targets and measure the baselines that are not stored yet."""
        jobs: "asyncio.Queue[Optional[Target]]" = asyncio.Queue()
        targets: Dict[str, Target] = {}

        async def read_input() -> None:
            # Input may be a blocking stream such as stdin
            source = iter(lines)
            try:
                while True:
                    line = await asyncio.to_thread(next, source, None)
                    if line is None:
                        break
                    if not line.strip():
                        continue
                    try:
                        target = Target.parse(line)
                    except ParseError as e:
                        self.summary.parse_errors += 1
                        await errors.put(e)
                        continue
                    if target.url in targets:
                        continue
                    targets[target.url] = target
                    self.summary.targets_read += 1
                    if await self.state.baselines.contains(target.url):
                        self.summary.baselines_reused += 1
                    else:
                        await jobs.put(target)
            finally:
                for _ in range(pool.size):
                    jobs.put_nowait(None)

        _, measured = await asyncio.gather(read_input(), pool.calibrate(jobs))
        self.summary.baselines_measured = measured
        return targets

    async def _detect(self, targets: Dict[str, Target], pool: WorkerPool) -> None:
        scheduler = TestScheduler(
            self.config, self.mutations, self.state, self.vulns, self.logger
        )
        matrix = await scheduler.build_matrix(targets.values())
        self.summary.tests_planned = len(matrix)

        tests: "asyncio.Queue[Optional[SmuggleTestRecord]]" = asyncio.Queue()
        results: "asyncio.Queue[Optional[SmuggleTestRecord]]" = asyncio.Queue()
        slots = asyncio.Semaphore(pool.size)

        consumer = asyncio.ensure_future(self._consume_results(results))
        try:
            stats, _ = await asyncio.gather(
                scheduler.dispatch(matrix, tests, slots, sentinels=pool.size),
                pool.test(tests, results, slots),
            )
            await results.put(None)
            await consumer
        finally:
            if not consumer.done():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)

        self.summary.tests_dispatched = stats.dispatched
        self.summary.tests_skipped = stats.skipped

    async def _consume_results(
        self, results: "asyncio.Queue[Optional[SmuggleTestRecord]]"
    ) -> None:
        while True:
            record = await results.get()
            if record is None:
                return
            await self.state.results.append(record)
            self.summary.tests_completed += 1
            if record.status.is_finding:
                line = record.result_line()
                self.summary.findings += 1
                self.summary.finding_lines.append(line)
                self.result_log.write(line)
                self.logger.finding(line)

    async def _consume_errors(
        self, errors: "asyncio.Queue[Optional[DesyncError]]"
    ) -> None:
        while True:
            error = await errors.get()
            if error is None:
                return
            self.summary.errors += 1
            self.logger.error(error)


async def run_scan(config: ScanConfig, lines: Iterable[str]) -> ScanSummary:
    """Convenience function to run a scan.

    Args:
        config: Scan configuration
        lines: Target URLs, one per item

    Returns:
        ScanSummary with counts and finding lines
    """
    scanner = DesyncScanner(config)
    return await scanner.run(lines)
