"""
NCBI datasets Binary Management

Acquires the `datasets` command-line tool when it is absent, builds its
command lines, and runs the one-shot reachability probe that guards the
bulk download phase.

The binary is trusted as found: an existing file is never re-fetched,
version-checked, or checksummed.
"""

import os
import shutil
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Any

import requests

from base_downloader import BaseDownloader
from logging_utils import (
    BootstrapError,
    MissingToolError,
    ReachabilityError,
    get_logger,
)

logger = get_logger(__name__)

CA_BUNDLE_HINT = (
    "If you are on HPC and see TLS errors, set REQUESTS_CA_BUNDLE to your CA bundle. "
    "Example: export REQUESTS_CA_BUNDLE=/etc/pki/tls/certs/ca-bundle.crt"
)


def check_required_tools(tools: List[str]) -> None:
    """
    Fail fast if any required system tool is missing from PATH.

    Raises:
        MissingToolError: Listing every missing tool
    """
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise MissingToolError(
            f"Required tool(s) not found: {', '.join(missing)}",
            context={'missing_tools': missing},
        )


class DatasetsBinaryInstaller(BaseDownloader):
    """
    Fetches the datasets executable once and marks it executable.
    """

    def __init__(self, binary_path: str, url: str, timeout: int = 300):
        """
        Args:
            binary_path: Where the executable should live
            url: Download URL of the executable
            timeout: HTTP timeout in seconds
        """
        self.binary_path = Path(binary_path)
        self.url = url
        self.timeout = timeout
        super().__init__(str(self.binary_path.parent))

    def download_data(self, **kwargs) -> Dict[str, Any]:
        path = self.ensure_binary()
        return {'binary_path': str(path), **self.get_download_status()}

    def ensure_binary(self) -> Path:
        """
        Make sure the datasets executable exists at binary_path.

        Returns:
            Path to the executable

        Raises:
            BootstrapError: If the download fails or returns an empty file
        """
        if self.binary_path.is_file():
            self.logger.debug(f"datasets binary present at {self.binary_path}, skipping download")
            self._make_executable()
            self._record_download_attempt(self.binary_path.name, 'skipped')
            return self.binary_path

        self.logger.info(f"[*] Downloading NCBI datasets CLI -> {self.binary_path}")
        self._download_file(self.url, self.binary_path)
        self._make_executable()
        self._record_download_attempt(self.binary_path.name, 'success')
        return self.binary_path

    def _download_file(self, url: str, filepath: Path) -> None:
        """Stream url into a temp file beside filepath, then move it into place."""
        fd, tmp_name = tempfile.mkstemp(prefix='.datasets-', dir=str(filepath.parent))
        try:
            with os.fdopen(fd, 'wb') as f:
                response = requests.get(url, stream=True, timeout=self.timeout, allow_redirects=True)
                response.raise_for_status()
                downloaded_size = 0
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
                        downloaded_size += len(chunk)

            if not self.validate_downloaded_data(tmp_name):
                raise BootstrapError(f"Downloaded datasets binary from {url} is empty")

            os.replace(tmp_name, filepath)
            self.logger.info(f"Download completed: {filepath} ({downloaded_size} bytes)")

        except requests.RequestException as e:
            self._record_download_attempt(filepath.name, 'failed', str(e))
            raise BootstrapError(
                f"Failed to download datasets binary from {url}: {e}",
                context={'url': url, 'binary_path': str(filepath)},
            ) from e
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

    def _make_executable(self) -> None:
        mode = self.binary_path.stat().st_mode
        exec_bits = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        if mode & exec_bits != exec_bits:
            self.binary_path.chmod(mode | exec_bits)


class DatasetsCLI:
    """
    Command-line builder and probe for the datasets executable.
    """

    def __init__(self, binary_path: str, include: List[str],
                 ca_bundle: Optional[str] = None, probe_timeout: int = 120):
        """
        Args:
            binary_path: Path to the datasets executable
            include: Artifact kinds passed to --include
            ca_bundle: Optional CA bundle exported to the subprocess only
            probe_timeout: Seconds before the summary probe is abandoned
        """
        self.binary_path = str(binary_path)
        self.include = list(include)
        self.ca_bundle = ca_bundle
        self.probe_timeout = probe_timeout

    def summary_command(self, accession: str) -> List[str]:
        return [self.binary_path, 'summary', 'genome', 'accession', accession]

    def download_command(self, accession: str, archive_path: str) -> List[str]:
        return [
            self.binary_path, 'download', 'genome', 'accession', accession,
            '--include', ','.join(self.include),
            '--no-progressbar',
            '--filename', str(archive_path),
        ]

    def environment(self) -> Dict[str, str]:
        """Subprocess environment with the trust-store override applied."""
        env = dict(os.environ)
        if self.ca_bundle:
            env['REQUESTS_CA_BUNDLE'] = str(self.ca_bundle)
            env['SSL_CERT_FILE'] = str(self.ca_bundle)
        return env

    def probe(self, accession: str) -> str:
        """
        Run `datasets summary genome accession <acc>` once.

        Returns:
            The summary output

        Raises:
            ReachabilityError: On non-zero exit, empty output, timeout, or a
                binary that cannot be executed
        """
        logger.info(f"[*] Testing API reachability with: {accession}")
        command = self.summary_command(accession)
        context = {'accession': accession, 'command': ' '.join(command)}

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout,
                env=self.environment(),
            )
        except subprocess.TimeoutExpired as e:
            raise ReachabilityError(
                f"Reachability probe timed out after {self.probe_timeout}s for {accession}",
                context=context, hint=CA_BUNDLE_HINT,
            ) from e
        except OSError as e:
            raise ReachabilityError(
                f"Unable to execute {self.binary_path}: {e}",
                context=context,
            ) from e

        if result.returncode != 0 or not result.stdout.strip():
            logger.debug(f"summary stderr: {result.stderr.strip()}")
            context['exit_code'] = result.returncode
            raise ReachabilityError(
                f"Unable to reach NCBI Datasets API or invalid accession: {accession}",
                context=context, hint=CA_BUNDLE_HINT,
            )

        logger.debug(f"Reachability probe succeeded for {accession}")
        return result.stdout
