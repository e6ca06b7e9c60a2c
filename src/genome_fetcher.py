"""
Genome Archive Fetcher

Downloads one ZIP archive per accession with the datasets binary, on a
bounded worker pool. An accession whose archive already exists and is
non-empty is skipped, which makes a failed run resumable by simply
re-running it. The first failed download halts the phase.
"""

import time
from pathlib import Path
from typing import Dict, Any, List, Optional

from base_downloader import BaseDownloader
from datasets_cli import DatasetsCLI
from dispatcher import DispatchSummary, JobResult, ParallelDispatcher, ProcessRunner
from job_records import archive_is_present, job_record_for
from logging_utils import FetchPhaseError


class GenomeFetcher(BaseDownloader):
    """
    Fetch phase: accession list -> zips/<accession>.zip
    """

    def __init__(
        self,
        datasets: DatasetsCLI,
        zip_directory: str = 'zips',
        max_workers: int = 4,
        halt_on_failure: bool = True,
        halt_mode: str = 'now',
        job_log_path: Optional[str] = None,
        show_progress: bool = True,
    ):
        """
        Args:
            datasets: Command builder for the datasets binary
            zip_directory: Directory receiving one archive per accession
            max_workers: Concurrent downloads (J)
            halt_on_failure: Stop launching downloads after the first failure
            halt_mode: 'soon' or 'now', see ParallelDispatcher
            job_log_path: TSV job log path
            show_progress: Display a progress bar
        """
        super().__init__(zip_directory)
        self.datasets = datasets
        self.max_workers = max_workers
        self.halt_on_failure = halt_on_failure
        self.halt_mode = halt_mode
        self.job_log_path = job_log_path
        self.show_progress = show_progress
        self.runner = None

    def archive_path(self, accession: str) -> Path:
        return job_record_for(accession, zip_directory=self.output_dir).zip_path

    def download_data(self, accessions: List[str] = None, **kwargs) -> Dict[str, Any]:
        """
        Download every accession not already satisfied.

        Returns:
            dict with 'summary' (DispatchSummary), 'downloaded', 'skipped'

        Raises:
            FetchPhaseError: If any download failed
        """
        accessions = list(accessions or [])
        self.logger.info(
            f"[*] Downloading {len(accessions)} accessions with {self.max_workers} parallel jobs..."
        )

        # a 'now' halt terminates this runner for good, so each call gets its own
        self.runner = ProcessRunner(env=self.datasets.environment())
        dispatcher = ParallelDispatcher(
            max_workers=self.max_workers,
            halt_on_failure=self.halt_on_failure,
            halt_mode=self.halt_mode,
            runner=self.runner,
            job_log_path=self.job_log_path,
            show_progress=self.show_progress,
            description='download',
        )
        summary = dispatcher.run(accessions, self._fetch_one)

        for result in summary.results:
            filename = self.archive_path(result.accession).name
            if not result.succeeded:
                self._record_download_attempt(filename, 'failed', result.message)
            elif result.skipped:
                self._record_download_attempt(filename, 'skipped')
            else:
                self._record_download_attempt(filename, 'success')

        if summary.failed:
            self._raise_phase_error(summary)

        return {
            'summary': summary,
            'downloaded': self._history_filenames('success'),
            'skipped': self._history_filenames('skipped'),
        }

    def _fetch_one(self, seq: int, accession: str) -> JobResult:
        archive = self.archive_path(accession)
        command = self.datasets.download_command(accession, str(archive))
        start = time.time()

        if archive_is_present(archive):
            self.logger.info(f"[skip] {archive} exists")
            return JobResult(
                seq=seq, accession=accession, command=' '.join(command), exit_code=0,
                start_time=start, runtime=time.time() - start, skipped=True,
                message='archive present',
            )

        self.logger.info(f"[download] {accession}")
        exit_code, signal, stdout, stderr = self.runner.run(command)
        runtime = time.time() - start

        if stdout.strip():
            self.logger.debug(f"{accession} stdout: {stdout.strip()}")

        message = ''
        if exit_code != 0 or signal != 0:
            message = stderr.strip().splitlines()[-1] if stderr.strip() else 'datasets download failed'
            if archive.exists():
                # a failed or terminated download may leave a partial archive that would pass the skip check
                self.logger.debug(f"Removing partial archive {archive}")
                archive.unlink()
        elif not self.validate_downloaded_data(str(archive)):
            exit_code = 1
            message = f"datasets exited 0 but {archive} is missing or empty"

        return JobResult(
            seq=seq, accession=accession, command=' '.join(command), exit_code=exit_code,
            start_time=start, runtime=runtime, signal=signal, message=message,
        )

    def _raise_phase_error(self, summary: DispatchSummary) -> None:
        failed = [r.accession for r in summary.failed]
        raise FetchPhaseError(
            f"{len(failed)} download job(s) failed: {', '.join(failed)}",
            context={
                'failed_accessions': failed,
                'not_started': len(summary.not_started),
                'halted': summary.halted,
                'job_log': self.job_log_path,
            },
            hint=(
                "Completed archives are kept; re-run the same command to resume. "
                f"See {self.job_log_path} for per-job exit codes."
            ),
        )
