"""
Tests for the bounded parallel dispatcher.

Jobs are plain Python callables here, except for the ProcessRunner tests
which start short-lived interpreter subprocesses.
"""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from dispatcher import (
    JOB_LOG_COLUMNS,
    DispatchSummary,
    JobResult,
    ParallelDispatcher,
    ProcessRunner,
)


def make_job(failing=(), delay=0.0, slow_delay=0.3, tracker=None):
    """Job factory: accessions in `failing` exit 1 immediately, others sleep."""

    def job(seq, accession):
        if tracker is not None:
            tracker.started(accession)
        start = time.time()
        if accession in failing:
            exit_code = 1
        else:
            time.sleep(slow_delay if failing else delay)
            exit_code = 0
        if tracker is not None:
            tracker.finished()
        return JobResult(seq=seq, accession=accession, command=f"fetch {accession}",
                         exit_code=exit_code, start_time=start, runtime=time.time() - start)

    return job


class ConcurrencyTracker:
    def __init__(self):
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0
        self.started_accessions = []

    def started(self, accession):
        with self.lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.started_accessions.append(accession)

    def finished(self):
        with self.lock:
            self.running -= 1


ACCESSIONS = [f"GCA_00000000{i}.1" for i in range(1, 7)]


def test_all_jobs_succeed_in_seq_order():
    dispatcher = ParallelDispatcher(max_workers=3, show_progress=False)

    summary = dispatcher.run(ACCESSIONS, make_job(delay=0.01))

    assert [r.accession for r in summary.results] == ACCESSIONS
    assert [r.seq for r in summary.results] == list(range(1, 7))
    assert summary.failed == []
    assert summary.not_started == []
    assert summary.halted is False
    assert summary.exit_status == 0


def test_worker_bound_is_respected():
    tracker = ConcurrencyTracker()
    dispatcher = ParallelDispatcher(max_workers=2, show_progress=False)

    dispatcher.run(ACCESSIONS, make_job(delay=0.05, tracker=tracker))

    assert tracker.peak <= 2
    assert sorted(tracker.started_accessions) == ACCESSIONS


def test_halt_on_first_failure_stops_new_launches():
    """One failure among five in-flight jobs: the sixth never starts"""
    tracker = ConcurrencyTracker()
    dispatcher = ParallelDispatcher(max_workers=5, halt_on_failure=True, show_progress=False)

    summary = dispatcher.run(ACCESSIONS, make_job(failing={ACCESSIONS[0]}, tracker=tracker))

    assert summary.halted is True
    assert summary.not_started == [ACCESSIONS[5]]
    assert ACCESSIONS[5] not in tracker.started_accessions
    # in-flight jobs were allowed to finish
    assert len(summary.results) == 5
    assert [r.accession for r in summary.failed] == [ACCESSIONS[0]]
    assert summary.exit_status == 1


def test_without_halt_failures_are_isolated():
    dispatcher = ParallelDispatcher(max_workers=2, halt_on_failure=False, show_progress=False)

    summary = dispatcher.run(ACCESSIONS, make_job(failing={ACCESSIONS[1], ACCESSIONS[4]}, slow_delay=0.01))

    assert summary.halted is False
    assert summary.not_started == []
    assert len(summary.results) == 6
    assert [r.accession for r in summary.failed] == [ACCESSIONS[1], ACCESSIONS[4]]


def test_raising_job_counts_as_failure():
    def job(seq, accession):
        raise RuntimeError("boom")

    dispatcher = ParallelDispatcher(max_workers=2, halt_on_failure=False, show_progress=False)
    summary = dispatcher.run(ACCESSIONS[:2], job)

    assert len(summary.failed) == 2
    assert summary.failed[0].message == "RuntimeError: boom"


def test_job_log_rows(tmp_path):
    job_log = tmp_path / 'logs' / 'parallel_jobs.tsv'
    dispatcher = ParallelDispatcher(max_workers=2, job_log_path=str(job_log), show_progress=False)

    dispatcher.run(ACCESSIONS[:3], make_job(failing={ACCESSIONS[2]}, slow_delay=0.01))

    lines = job_log.read_text().splitlines()
    assert lines[0].split('\t') == JOB_LOG_COLUMNS
    rows = [line.split('\t') for line in lines[1:]]
    assert len(rows) == 3
    exit_by_command = {row[8]: row[6] for row in rows}
    assert exit_by_command[f"fetch {ACCESSIONS[2]}"] == '1'
    assert exit_by_command[f"fetch {ACCESSIONS[0]}"] == '0'


def test_job_log_truncated_per_run(tmp_path):
    job_log = tmp_path / 'jobs.tsv'
    dispatcher = ParallelDispatcher(max_workers=2, job_log_path=str(job_log), show_progress=False)

    dispatcher.run(ACCESSIONS, make_job())
    dispatcher.run(ACCESSIONS[:1], make_job())

    assert len(job_log.read_text().splitlines()) == 2


def test_empty_accession_list():
    summary = ParallelDispatcher(show_progress=False).run([], make_job())
    assert summary.results == []


@pytest.mark.parametrize('kwargs', [{'max_workers': 0}, {'halt_mode': 'later'}])
def test_invalid_dispatcher_arguments(kwargs):
    with pytest.raises(ValueError):
        ParallelDispatcher(**kwargs)


def test_dispatch_summary_exit_status_is_capped():
    results = [JobResult(seq=i, accession=str(i), command='', exit_code=1, start_time=0, runtime=0)
               for i in range(150)]
    assert DispatchSummary(results=results).exit_status == 101


def test_process_runner_exit_codes():
    runner = ProcessRunner()

    assert runner.run([sys.executable, '-c', 'print("ok")'])[:3] == (0, 0, 'ok\n')
    exit_code, signal, _, stderr = runner.run(
        [sys.executable, '-c', 'import sys; sys.stderr.write("bad"); sys.exit(3)'])
    assert (exit_code, signal, stderr) == (3, 0, 'bad')


def test_halt_now_terminates_running_processes():
    """halt_mode='now' stops jobs that are still running"""
    runner = ProcessRunner(terminate_grace=5)
    sleeper = [sys.executable, '-c', 'import time; time.sleep(30)']
    failer = [sys.executable, '-c', 'import sys; sys.exit(2)']

    def job(seq, accession):
        start = time.time()
        command = failer if accession == 'fail' else sleeper
        if accession != 'fail':
            time.sleep(0.2)
        exit_code, signal, _, _ = runner.run(command)
        return JobResult(seq=seq, accession=accession, command=accession, exit_code=exit_code,
                         start_time=start, runtime=time.time() - start, signal=signal)

    dispatcher = ParallelDispatcher(max_workers=3, halt_on_failure=True, halt_mode='now',
                                    runner=runner, show_progress=False)
    started = time.time()
    summary = dispatcher.run(['fail', 'a', 'b', 'c'], job)

    assert time.time() - started < 20
    assert summary.halted is True
    assert summary.not_started == ['c']
    assert all(not r.succeeded for r in summary.results)
    assert {r.signal for r in summary.results if r.accession != 'fail'} == {15}
