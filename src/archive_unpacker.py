"""
Archive Unpacking

Extracts zips/<accession>.zip into out/<accession>/ on a bounded worker
pool. Existing files are overwritten. A bad archive fails its own job only;
the rest of the batch keeps going.
"""

import time
import zipfile
from pathlib import Path
from typing import List, Optional

from dispatcher import DispatchSummary, JobResult, ParallelDispatcher, ProcessRunner
from job_records import archive_is_present, job_record_for
from logging_utils import UnpackError, get_logger

logger = get_logger(__name__)


class ArchiveUnpacker:
    """Unpack phase: zips/<accession>.zip -> out/<accession>/"""

    def __init__(
        self,
        zip_directory: str = 'zips',
        out_directory: str = 'out',
        max_workers: int = 4,
        backend: str = 'zipfile',
        job_log_path: Optional[str] = None,
        show_progress: bool = True,
    ):
        """
        Args:
            zip_directory: Directory holding the archives
            out_directory: Parent of the per-accession extraction directories
            max_workers: Concurrent extractions (J)
            backend: 'zipfile' (in-process) or 'unzip' (external unzip -qo)
            job_log_path: Optional TSV job log
            show_progress: Display a progress bar
        """
        if backend not in ('zipfile', 'unzip'):
            raise ValueError(f"Unknown unpack backend: {backend}")

        self.zip_directory = Path(zip_directory)
        self.out_directory = Path(out_directory)
        self.max_workers = max_workers
        self.backend = backend
        self.job_log_path = job_log_path
        self.show_progress = show_progress
        self.runner = ProcessRunner()

    def unpack_all(self, accessions: List[str]) -> DispatchSummary:
        """
        Extract every archive. Never raises for a single bad archive.

        Returns:
            DispatchSummary; failed jobs are in summary.failed
        """
        logger.info("[*] Unzipping...")
        self.out_directory.mkdir(parents=True, exist_ok=True)

        dispatcher = ParallelDispatcher(
            max_workers=self.max_workers,
            halt_on_failure=False,
            runner=self.runner,
            job_log_path=self.job_log_path,
            show_progress=self.show_progress,
            description='unzip',
        )
        summary = dispatcher.run(accessions, self._unpack_one)

        if summary.failed:
            logger.warning(
                f"{len(summary.failed)} archive(s) could not be extracted: "
                f"{', '.join(r.accession for r in summary.failed)}"
            )
        return summary

    def _unpack_one(self, seq: int, accession: str) -> JobResult:
        record = job_record_for(accession, self.zip_directory, self.out_directory)
        start = time.time()
        command = f"unzip -qo {record.zip_path} -d {record.out_dir}"

        if not archive_is_present(record.zip_path):
            logger.warning(f"[skip] {record.zip_path} missing, nothing to extract for {accession}")
            return JobResult(
                seq=seq, accession=accession, command=command, exit_code=0,
                start_time=start, runtime=time.time() - start, skipped=True,
                message='archive missing',
            )

        record.out_dir.mkdir(parents=True, exist_ok=True)

        if self.backend == 'unzip':
            exit_code, signal, _, stderr = self.runner.run(
                ['unzip', '-qo', str(record.zip_path), '-d', str(record.out_dir)]
            )
            message = stderr.strip()
        else:
            exit_code, signal, message = 0, 0, ''
            try:
                extract_archive(record.zip_path, record.out_dir)
            except UnpackError as e:
                exit_code, message = 1, str(e)

        return JobResult(
            seq=seq, accession=accession, command=command, exit_code=exit_code,
            start_time=start, runtime=time.time() - start, signal=signal, message=message,
        )


def extract_archive(zip_path: Path, out_dir: Path) -> List[str]:
    """
    Extract a ZIP archive into out_dir, overwriting existing files.

    Returns:
        Names of the extracted members

    Raises:
        UnpackError: If the archive is not a readable ZIP
    """
    try:
        with zipfile.ZipFile(zip_path) as archive:
            archive.extractall(out_dir)
            return archive.namelist()
    except (zipfile.BadZipFile, OSError) as e:
        raise UnpackError(f"{zip_path}: {e}") from e
