"""
Error Handling and Logging Infrastructure for NCBI Genome Fetch

This module provides standardized logging and error handling for the genome
fetch workflow. It includes run progress tracking, error context management,
and the exception taxonomy that maps fatal conditions to process exit codes.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from contextlib import contextmanager

LOGGER_NAME = 'ncbi_genome_fetch'


def setup_genome_fetch_logging(log_level: str = "INFO",
                               log_file: Optional[str] = None,
                               console_output: bool = True) -> logging.Logger:
    """
    Setup standardized logging for genome fetch runs.

    Args:
        log_level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file
        console_output: Whether to output logs to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # File logs capture everything
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the project logger for a module."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class ProcessingLogger:
    """
    Specialized logger for tracking a genome fetch run.

    Keeps per-phase counters and writes the start banner and the completion
    summary that operators read at the end of a run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize processing logger.

        Args:
            logger: Logger instance to use. If None, uses the project logger.
        """
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.processing_start_time = None
        self.current_workflow = None
        self.processing_stats = {
            'accessions': 0,
            'downloaded': 0,
            'skipped': 0,
            'extracted': 0,
            'fetch_failures': 0,
            'unpack_failures': 0,
        }

    def log_processing_start(self, workflow_type: str, parameters: Dict[str, Any]) -> None:
        """
        Log start of a workflow.

        Args:
            workflow_type: Type of workflow being started
            parameters: Run parameters dictionary
        """
        self.processing_start_time = datetime.now()
        self.current_workflow = workflow_type

        self.logger.info("=" * 60)
        self.logger.info(f"Starting genome fetch {workflow_type}")
        self.logger.info(f"Start time: {self.processing_start_time.isoformat()}")
        self.logger.info("Parameters:")

        for param_name, param_value in parameters.items():
            self.logger.info(f"  {param_name}: {param_value}")

        self.logger.info("=" * 60)

    def log_phase(self, phase_name: str, message: str) -> None:
        """Log the start of a pipeline phase."""
        self.logger.info(f"[*] {phase_name}: {message}")

    def record(self, stat_name: str, count: int = 1) -> None:
        """Increment a processing counter."""
        self.processing_stats[stat_name] = self.processing_stats.get(stat_name, 0) + count

    def log_processing_error(self, error_type: str, error_details: str, context: Optional[Dict] = None) -> None:
        """
        Log errors with context.

        Args:
            error_type: Type/category of error
            error_details: Detailed error description
            context: Optional context dictionary with additional information
        """
        self.logger.error(f"Processing error ({error_type}): {error_details}")

        if context:
            self.logger.error("Error context:")
            for key, value in context.items():
                self.logger.error(f"  {key}: {value}")

    def log_processing_warning(self, warning_message: str, context: Optional[Dict] = None) -> None:
        """Log warnings with context."""
        self.logger.warning(f"Processing warning: {warning_message}")

        if context:
            for key, value in context.items():
                self.logger.warning(f"  {key}: {value}")

    def log_processing_complete(self, summary_stats: Optional[Dict] = None) -> None:
        """
        Log completion of a run with summary statistics.

        Args:
            summary_stats: Optional additional statistics dictionary
        """
        if self.processing_start_time:
            processing_duration = datetime.now() - self.processing_start_time
            self.logger.info("=" * 60)
            self.logger.info(f"Genome fetch {self.current_workflow} completed")
            self.logger.info(f"Total time: {processing_duration}")
        else:
            self.logger.info("Processing completed")

        self.logger.info("Statistics:")
        for stat_name, stat_value in self.processing_stats.items():
            self.logger.info(f"  {stat_name}: {stat_value}")

        if summary_stats:
            for stat_name, stat_value in summary_stats.items():
                self.logger.info(f"  {stat_name}: {stat_value}")

        self.logger.info("=" * 60)

    def get_processing_summary(self) -> Dict[str, Any]:
        """Get summary of the current run."""
        summary = {
            'workflow_type': self.current_workflow,
            'start_time': self.processing_start_time.isoformat() if self.processing_start_time else None,
            'current_time': datetime.now().isoformat(),
            'processing_stats': self.processing_stats.copy()
        }

        if self.processing_start_time:
            summary['elapsed_time'] = str(datetime.now() - self.processing_start_time)

        return summary


class GenomeFetchError(Exception):
    """Base exception class for genome fetch errors"""

    exit_code = 1

    def __init__(self, message: str, context: Optional[Dict] = None, hint: Optional[str] = None):
        """
        Initialize genome fetch error.

        Args:
            message: Error message
            context: Optional context dictionary with additional information
            hint: Optional operator guidance printed after the message
        """
        super().__init__(message)
        self.context = context or {}
        self.hint = hint
        self.timestamp = datetime.now()

    def get_full_error_info(self) -> Dict[str, Any]:
        """Get complete error information including context"""
        return {
            'error_type': self.__class__.__name__,
            'message': str(self),
            'exit_code': self.exit_code,
            'timestamp': self.timestamp.isoformat(),
            'context': self.context
        }


class ConfigurationError(GenomeFetchError):
    """Error in configuration or setup"""
    exit_code = 2


class MissingToolError(GenomeFetchError):
    """A required system tool is not on PATH"""
    exit_code = 2


class InputFileError(GenomeFetchError):
    """The input accession table is missing"""
    exit_code = 2


class NoValidAccessionsError(GenomeFetchError):
    """No accession survived validation"""
    exit_code = 3


class ReachabilityError(GenomeFetchError):
    """The summary probe against the datasets service failed"""
    exit_code = 4


class FetchPhaseError(GenomeFetchError):
    """A download job failed and the fetch phase was halted"""
    exit_code = 5


class BootstrapError(GenomeFetchError):
    """The datasets binary could not be acquired"""
    exit_code = 6


class UnpackError(GenomeFetchError):
    """An archive could not be extracted"""
    exit_code = 7


@contextmanager
def error_context(operation_name: str, logger: Optional[ProcessingLogger] = None, **context_info):
    """
    Context manager for wrapping operations with error handling.

    Args:
        operation_name: Name of operation being performed
        logger: Optional ProcessingLogger instance
        **context_info: Additional context information

    Example:
        with error_context("bootstrap datasets binary", logger, path="./datasets"):
            installer.ensure_binary()
    """
    start_time = datetime.now()

    if logger:
        logger.logger.debug(f"Starting operation: {operation_name}")

    try:
        yield
        duration = datetime.now() - start_time

        if logger:
            logger.logger.debug(f"Completed operation: {operation_name} (duration: {duration})")

    except Exception as e:
        duration = datetime.now() - start_time
        error_context_dict = {
            'operation': operation_name,
            'duration': str(duration),
            **context_info
        }

        if logger:
            logger.log_processing_error(
                error_type=type(e).__name__,
                error_details=str(e),
                context=error_context_dict
            )

        if isinstance(e, GenomeFetchError):
            e.context.update(error_context_dict)
            raise
        if "bootstrap" in operation_name.lower():
            raise BootstrapError(str(e), error_context_dict) from e
        elif "download" in operation_name.lower():
            raise FetchPhaseError(str(e), error_context_dict) from e
        elif "config" in operation_name.lower():
            raise ConfigurationError(str(e), error_context_dict) from e
        raise GenomeFetchError(str(e), error_context_dict) from e
