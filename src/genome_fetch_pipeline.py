"""
Main Orchestration Module for NCBI Genome Fetch

GenomeFetchPipeline runs the phases strictly in sequence, each blocking
until it has finished:

    1. required tool checks and input check
    2. datasets binary bootstrap
    3. accession list
    4. reachability probe on the first accession
    5. fetch phase   (halts on first failure)
    6. unpack phase  (failures isolated per archive)
    7. manifest
"""

from pathlib import Path
from typing import Dict, Any, List, Optional

from accession_extractor import build_accession_list, read_accession_list
from archive_unpacker import ArchiveUnpacker
from config_manager import GenomeFetchConfig
from datasets_cli import DatasetsBinaryInstaller, DatasetsCLI, check_required_tools
from genome_fetcher import GenomeFetcher
from logging_utils import (
    InputFileError,
    ProcessingLogger,
    error_context,
    setup_genome_fetch_logging,
)
from manifest_writer import summarize_status, write_manifest


class GenomeFetchPipeline:
    """
    Coordinates a genome fetch run from an input table to the manifest.
    """

    def __init__(self, config: Optional[GenomeFetchConfig] = None, configure_logging: bool = True):
        """
        Args:
            config: Loaded configuration (defaults when None)
            configure_logging: Install console/file handlers from config
        """
        self.config = config or GenomeFetchConfig()

        if configure_logging:
            log_file = self.config.get('processing.log_file')
            self.logger_instance = setup_genome_fetch_logging(
                self.config.get('processing.log_level', 'INFO'),
                str(self.config.resolve_path(log_file)) if log_file else None,
            )
            self.processing_logger = ProcessingLogger(self.logger_instance)
        else:
            self.processing_logger = ProcessingLogger()

        outputs = self.config.get_outputs_config()
        self.zip_directory = outputs['zip_directory']
        self.out_directory = outputs['out_directory']
        self.paths = {
            'accession_list': self.config.resolve_path(outputs['accession_list']),
            'zip_directory': self.config.resolve_path(outputs['zip_directory']),
            'out_directory': self.config.resolve_path(outputs['out_directory']),
            'log_directory': self.config.resolve_path(outputs['log_directory']),
            'job_log': self.config.resolve_path(outputs['job_log']),
            'unpack_log': self.config.resolve_path(outputs['unpack_log']),
            'manifest': self.config.resolve_path(outputs['manifest']),
        }

    @property
    def work_directory(self) -> Path:
        return Path(self.config.get('processing.work_directory'))

    def required_tools(self) -> List[str]:
        tools = list(self.config.get('datasets.required_tools') or [])
        if self.config.get('unpack.backend') == 'unzip' and 'unzip' not in tools:
            tools.append('unzip')
        return tools

    def input_path(self) -> Path:
        return self.config.resolve_path(self.config.get('input.path'))

    def check_preconditions(self) -> None:
        """
        Raises:
            MissingToolError: If a required tool is not on PATH
            InputFileError: If the input table does not exist
        """
        check_required_tools(self.required_tools())

        input_path = self.input_path()
        if not input_path.is_file():
            raise InputFileError(
                f"input TSV '{input_path}' not found.",
                context={'input_path': str(input_path)},
            )

    def bootstrap(self) -> Path:
        """Make sure the datasets binary is present."""
        datasets = self.config.get_datasets_config()
        installer = DatasetsBinaryInstaller(
            binary_path=str(self.config.resolve_path(datasets['binary_path'])),
            url=datasets['url'],
            timeout=datasets['bootstrap_timeout'],
        )
        with error_context("bootstrap datasets binary", self.processing_logger,
                           url=datasets['url']):
            return installer.ensure_binary()

    def datasets_cli(self) -> DatasetsCLI:
        datasets = self.config.get_datasets_config()
        return DatasetsCLI(
            binary_path=str(self.config.resolve_path(datasets['binary_path']).resolve()),
            include=datasets['include'],
            ca_bundle=datasets.get('ca_bundle'),
            probe_timeout=datasets['probe_timeout'],
        )

    def prepare_directories(self) -> None:
        for key in ['zip_directory', 'out_directory', 'log_directory']:
            self.paths[key].mkdir(parents=True, exist_ok=True)

    def extract_only(self) -> List[str]:
        """Build and persist the accession list."""
        input_path = self.input_path()
        return build_accession_list(
            str(input_path),
            str(self.paths['accession_list']),
            delimiter=self.config.get('input.delimiter'),
            header_token=self.config.get('input.header_token'),
        )

    def build_fetcher(self, datasets: DatasetsCLI) -> GenomeFetcher:
        processing = self.config.get_processing_config()
        return GenomeFetcher(
            datasets=datasets,
            zip_directory=str(self.paths['zip_directory']),
            max_workers=processing['max_workers'],
            halt_on_failure=self.config.get('fetch.halt_on_failure'),
            halt_mode=self.config.get('fetch.halt_mode'),
            job_log_path=str(self.paths['job_log']),
            show_progress=processing['progress_bar'],
        )

    def unpack(self, accessions: List[str]):
        processing = self.config.get_processing_config()
        unpacker = ArchiveUnpacker(
            zip_directory=str(self.paths['zip_directory']),
            out_directory=str(self.paths['out_directory']),
            max_workers=processing['max_workers'],
            backend=self.config.get('unpack.backend'),
            job_log_path=str(self.paths['unpack_log']),
            show_progress=processing['progress_bar'],
        )
        return unpacker.unpack_all(accessions)

    def write_manifest_only(self, accessions: Optional[List[str]] = None) -> int:
        """Rewrite the manifest from the given or persisted accession list."""
        if accessions is None:
            accessions = read_accession_list(str(self.paths['accession_list']))
        return write_manifest(
            accessions,
            str(self.paths['manifest']),
            zip_directory=self.zip_directory,
            out_directory=self.out_directory,
        )

    def status(self) -> Dict[str, Any]:
        return summarize_status(str(self.paths['manifest']), str(self.work_directory))

    def run(self) -> Dict[str, Any]:
        """
        Execute the full pipeline.

        Returns:
            Summary dictionary of the run

        Raises:
            GenomeFetchError subclasses for every fatal condition
        """
        plog = self.processing_logger
        plog.log_processing_start('run', {
            'input': str(self.input_path()),
            'work_directory': str(self.work_directory),
            'jobs': self.config.get('processing.max_workers'),
            'include': ','.join(self.config.get('datasets.include')),
            'halt_mode': self.config.get('fetch.halt_mode'),
            'unpack_backend': self.config.get('unpack.backend'),
        })

        self.check_preconditions()
        plog.log_phase('bootstrap', str(self.config.resolve_path(self.config.get('datasets.binary_path'))))
        self.bootstrap()
        self.prepare_directories()

        plog.log_phase('extract', f"{self.input_path()} -> {self.paths['accession_list']}")
        accessions = self.extract_only()
        plog.record('accessions', len(accessions))

        datasets = self.datasets_cli()
        plog.log_phase('probe', accessions[0])
        datasets.probe(accessions[0])

        plog.log_phase('fetch', f"{len(accessions)} accessions -> {self.paths['zip_directory']}")
        fetcher = self.build_fetcher(datasets)
        try:
            fetch_results = fetcher.download_data(accessions=accessions)
        finally:
            status = fetcher.get_download_status()
            plog.record('downloaded', len(status['successful_downloads']))
            plog.record('skipped', len(status['skipped_downloads']))
            plog.record('fetch_failures', len(status['failed_downloads']))

        plog.log_phase('unpack', f"{self.paths['zip_directory']} -> {self.paths['out_directory']}")
        unpack_summary = self.unpack(accessions)
        plog.record('extracted', len(unpack_summary.completed))
        plog.record('unpack_failures', len(unpack_summary.failed))
        if unpack_summary.failed:
            plog.log_processing_warning(
                "Some archives could not be extracted",
                context={r.accession: r.message for r in unpack_summary.failed},
            )

        plog.log_phase('manifest', str(self.paths['manifest']))
        self.write_manifest_only(accessions)

        plog.logger.info("[✓] Done.")
        plog.logger.info(f"    Zips:     {self.paths['zip_directory'].resolve()}/")
        plog.logger.info(f"    Unzipped: {self.paths['out_directory'].resolve()}/")
        plog.logger.info(f"    Manifest: {self.paths['manifest'].resolve()}")
        plog.log_processing_complete()

        return {
            'accessions': accessions,
            'downloaded': fetch_results['downloaded'],
            'skipped': fetch_results['skipped'],
            'unpack_failed': [r.accession for r in unpack_summary.failed],
            'manifest': str(self.paths['manifest']),
        }
