#!/usr/bin/env python3
"""
Base Downloader Abstract Class for NCBI Genome Fetch

Provides the common interface for the two things this project downloads:
the NCBI datasets binary itself and the per-accession genome archives.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Any, Optional

from logging_utils import get_logger


class BaseDownloader(ABC):
    """
    Abstract base class for genome fetch downloaders.

    Provides directory management, file validation, and download status
    tracking shared by every downloader.
    """

    def __init__(self, output_dir: str):
        """
        Initialize base downloader with output directory.

        Args:
            output_dir: Directory for downloaded files
        """
        self.output_dir = Path(output_dir)
        self.setup_directories()

        # Track download operations for status reporting
        self.download_history = []
        self.failed_downloads = []

        self.logger = get_logger(self.__class__.__name__)

    def setup_directories(self) -> None:
        """Create necessary output directory."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @abstractmethod
    def download_data(self, **kwargs) -> Dict[str, Any]:
        """
        Download data from the specific source.

        Returns:
            dict: Download results with status information and file paths
        """
        pass

    def validate_downloaded_data(self, filepath: str) -> bool:
        """
        Check that a downloaded file exists and is non-empty.

        Args:
            filepath: Path to downloaded file to validate

        Returns:
            bool: True if file passes validation, False otherwise
        """
        path = Path(filepath)
        if not path.exists():
            self.logger.error(f"Downloaded file does not exist: {filepath}")
            return False

        file_size_bytes = path.stat().st_size
        if file_size_bytes == 0:
            self.logger.error(f"Downloaded file is empty: {filepath}")
            return False

        self.logger.debug(f"File validation passed: {filepath} ({file_size_bytes} bytes)")
        return True

    def get_download_status(self) -> Dict[str, Any]:
        """
        Get status information about download operations.

        Returns:
            dict: Status information including successful and failed downloads
        """
        return {
            'total_downloads_attempted': len(self.download_history),
            'successful_downloads': [d for d in self.download_history if d['status'] == 'success'],
            'skipped_downloads': [d for d in self.download_history if d['status'] == 'skipped'],
            'failed_downloads': self.failed_downloads,
            'output_directory': str(self.output_dir),
        }

    def _record_download_attempt(self, filename: str, status: str,
                                 error_message: Optional[str] = None) -> None:
        """
        Record information about a download attempt for status tracking.

        Args:
            filename: Name of file being downloaded
            status: 'success', 'skipped' or 'failed'
            error_message: Error message if download failed
        """
        download_record = {
            'filename': filename,
            'status': status,
            'timestamp': time.time(),
            'output_path': str(self.output_dir / filename)
        }

        if error_message:
            download_record['error'] = error_message

        self.download_history.append(download_record)

        if status == 'failed':
            self.failed_downloads.append(download_record)

    def _history_filenames(self, status: str) -> List[str]:
        return [d['filename'] for d in self.download_history if d['status'] == status]
