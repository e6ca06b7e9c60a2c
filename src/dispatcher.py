"""
Bounded Parallel Dispatch

Runs one job per accession on a fixed-size thread pool. At most
``max_workers`` jobs are in flight; the queue is refilled as jobs complete.

Two failure policies are supported:

    halt_on_failure=True   the first failed job stops new launches
                           (fetch phase)
    halt_on_failure=False  failures are recorded and the queue drains
                           (unpack phase)

With ``halt_mode='now'`` the subprocesses still running when the halt
triggers are terminated; with ``'soon'`` they are allowed to finish.

Every finished job is written to a TSV job log by the coordinating thread
only, so worker output never interleaves in the log.
"""

import socket
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from logging_utils import get_logger

logger = get_logger(__name__)

JOB_LOG_COLUMNS = ['Seq', 'Host', 'Starttime', 'JobRuntime', 'Send', 'Receive',
                   'Exitval', 'Signal', 'Command']


@dataclass
class JobResult:
    """Outcome of one dispatched job."""
    seq: int
    accession: str
    command: str
    exit_code: int
    start_time: float
    runtime: float
    signal: int = 0
    skipped: bool = False
    message: str = ''

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.signal == 0


@dataclass
class DispatchSummary:
    """All results of one dispatch phase, in submission order."""
    results: List[JobResult] = field(default_factory=list)
    not_started: List[str] = field(default_factory=list)
    halted: bool = False

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def skipped(self) -> List[JobResult]:
        return [r for r in self.results if r.skipped and r.succeeded]

    @property
    def completed(self) -> List[JobResult]:
        return [r for r in self.results if r.succeeded and not r.skipped]

    @property
    def exit_status(self) -> int:
        """Number of failed jobs, capped at 101 like GNU parallel."""
        return min(len(self.failed), 101)


class ProcessRunner:
    """
    Runs commands as child processes and keeps track of the live ones so a
    halt can terminate them.
    """

    def __init__(self, env: Optional[Dict[str, str]] = None, terminate_grace: float = 5.0):
        self.env = env
        self.terminate_grace = terminate_grace
        self._lock = threading.Lock()
        self._live = set()
        self._terminated = False

    def run(self, command: Sequence[str]) -> Tuple[int, int, str, str]:
        """
        Run a command to completion.

        Returns:
            (exit_code, signal, stdout, stderr). A process killed by a signal
            reports exit_code -1 and the signal number.
        """
        with self._lock:
            if self._terminated:
                return -1, 15, '', 'not started: dispatch terminated'
            process = subprocess.Popen(
                list(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self.env,
            )
            self._live.add(process)

        try:
            stdout, stderr = process.communicate()
        finally:
            with self._lock:
                self._live.discard(process)

        if process.returncode < 0:
            return -1, -process.returncode, stdout, stderr
        return process.returncode, 0, stdout, stderr

    def terminate_all(self) -> int:
        """Terminate every live child. Returns how many were signalled."""
        with self._lock:
            self._terminated = True
            live = list(self._live)

        for process in live:
            process.terminate()
        for process in live:
            try:
                process.wait(timeout=self.terminate_grace)
            except subprocess.TimeoutExpired:
                process.kill()

        return len(live)


class JobLog:
    """GNU-parallel style job log, one row per finished job."""

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None
        self._handle = None
        self.host = socket.gethostname()

    def __enter__(self):
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, 'w', newline='')
            self._handle.write('\t'.join(JOB_LOG_COLUMNS) + '\n')
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._handle:
            self._handle.close()
            self._handle = None
        return False

    def write(self, result: JobResult) -> None:
        if not self._handle:
            return
        row = [
            str(result.seq),
            self.host,
            f"{result.start_time:.3f}",
            f"{result.runtime:.3f}",
            '0',
            '0',
            str(result.exit_code),
            str(result.signal),
            result.command.replace('\t', ' ').replace('\n', ' '),
        ]
        self._handle.write('\t'.join(row) + '\n')
        self._handle.flush()


JobFunction = Callable[[int, str], JobResult]


class ParallelDispatcher:
    """
    Fixed-size worker pool over a queue of accessions.
    """

    def __init__(
        self,
        max_workers: int = 4,
        halt_on_failure: bool = False,
        halt_mode: str = 'soon',
        runner: Optional[ProcessRunner] = None,
        job_log_path: Optional[str] = None,
        show_progress: bool = True,
        description: str = 'jobs',
    ):
        """
        Args:
            max_workers: Upper bound on concurrently running jobs (J)
            halt_on_failure: Stop launching new jobs after the first failure
            halt_mode: 'soon' lets in-flight jobs finish, 'now' terminates
                the runner's live processes
            runner: ProcessRunner whose processes a 'now' halt terminates
            job_log_path: TSV job log, truncated at the start of each run
            show_progress: Display a tqdm progress bar
            description: Label for the progress bar and log messages
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1. Got: {max_workers}")
        if halt_mode not in ('soon', 'now'):
            raise ValueError(f"halt_mode must be 'soon' or 'now'. Got: {halt_mode}")

        self.max_workers = max_workers
        self.halt_on_failure = halt_on_failure
        self.halt_mode = halt_mode
        self.runner = runner
        self.job_log_path = job_log_path
        self.show_progress = show_progress
        self.description = description

    def run(self, accessions: Sequence[str], job: JobFunction) -> DispatchSummary:
        """
        Dispatch job(seq, accession) for every accession.

        Returns:
            DispatchSummary with results ordered by seq
        """
        queue = iter(list(enumerate(accessions, 1)))
        summary = DispatchSummary()
        in_flight = {}

        def submit_next(executor) -> bool:
            try:
                seq, accession = next(queue)
            except StopIteration:
                return False
            future = executor.submit(self._run_job, job, seq, accession)
            in_flight[future] = (seq, accession)
            return True

        progress = tqdm(
            total=len(accessions),
            desc=self.description,
            disable=not self.show_progress,
            leave=False,
        )

        with JobLog(self.job_log_path) as job_log, progress, \
                ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while len(in_flight) < self.max_workers and submit_next(executor):
                pass

            while in_flight:
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)

                for future in done:
                    in_flight.pop(future)
                    result = future.result()
                    summary.results.append(result)
                    job_log.write(result)
                    progress.update(1)

                    if not result.succeeded:
                        logger.error(
                            f"[{self.description}] {result.accession} failed "
                            f"(exit {result.exit_code}, signal {result.signal}): {result.message}"
                        )
                        if self.halt_on_failure and not summary.halted:
                            self._halt(summary, len(in_flight))

                while not summary.halted and len(in_flight) < self.max_workers:
                    if not submit_next(executor):
                        break

        summary.not_started = [accession for _, accession in queue]
        summary.results.sort(key=lambda r: r.seq)
        return summary

    def _halt(self, summary: DispatchSummary, running: int) -> None:
        summary.halted = True
        logger.error(
            f"[{self.description}] halting: no new jobs will be started "
            f"({running} still running, mode={self.halt_mode})"
        )
        if self.halt_mode == 'now' and self.runner is not None:
            terminated = self.runner.terminate_all()
            logger.warning(f"[{self.description}] terminated {terminated} running job(s)")

    @staticmethod
    def _run_job(job: JobFunction, seq: int, accession: str) -> JobResult:
        start = time.time()
        try:
            return job(seq, accession)
        except Exception as e:
            # a raising job counts as a failed job, not a crashed dispatcher
            logger.debug(f"Job {seq} ({accession}) raised", exc_info=True)
            return JobResult(
                seq=seq,
                accession=accession,
                command='',
                exit_code=1,
                start_time=start,
                runtime=time.time() - start,
                message=f"{type(e).__name__}: {e}",
            )
