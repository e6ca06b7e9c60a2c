"""
Run Manifest

Maps each accession to its archive path and extraction directory:

    accession    zip_path    out_dir

The manifest is always rewritten in full from the accession list; it is
not merged with a previous manifest and does not look at the filesystem.
"""

import csv
from pathlib import Path
from typing import Dict, Iterable, List

from job_records import archive_is_present, job_record_for
from logging_utils import InputFileError, get_logger

logger = get_logger(__name__)

MANIFEST_FIELDS = ['accession', 'zip_path', 'out_dir']


def write_manifest(
    accessions: Iterable[str],
    manifest_path: str,
    zip_directory: str = 'zips',
    out_directory: str = 'out',
) -> int:
    """
    Write the manifest for an accession list.

    Args:
        accessions: Validated accessions, in the order rows should appear
        manifest_path: Output TSV path
        zip_directory: Directory prefix written into zip_path
        out_directory: Directory prefix written into out_dir

    Returns:
        Number of data rows written
    """
    path = Path(manifest_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0

    with open(path, 'w', newline='') as f:
        writer = csv.writer(f, delimiter='\t', lineterminator='\n')
        writer.writerow(MANIFEST_FIELDS)
        for accession in accessions:
            record = job_record_for(accession, zip_directory, out_directory)
            writer.writerow([record.accession, record.zip_path.as_posix(), record.out_dir.as_posix()])
            count += 1

    logger.info(f"Wrote manifest with {count} rows: {path}")
    return count


def read_manifest(manifest_path: str) -> List[Dict[str, str]]:
    """Read manifest rows as dicts keyed by MANIFEST_FIELDS."""
    path = Path(manifest_path)
    if not path.is_file():
        raise InputFileError(f"Manifest not found: {manifest_path}")

    with open(path, 'r', newline='') as f:
        reader = csv.DictReader(f, delimiter='\t')
        return [dict(row) for row in reader]


def summarize_status(manifest_path: str, base_directory: str = '.') -> Dict[str, object]:
    """
    Compare the manifest against the filesystem.

    Args:
        manifest_path: Manifest TSV
        base_directory: Directory relative manifest paths are resolved against

    Returns:
        dict with counts and the accessions missing an archive or extraction
    """
    base = Path(base_directory)
    rows = read_manifest(manifest_path)

    missing_archive = []
    missing_extraction = []
    for row in rows:
        zip_path = Path(row['zip_path'])
        out_dir = Path(row['out_dir'])
        if not zip_path.is_absolute():
            zip_path = base / zip_path
        if not out_dir.is_absolute():
            out_dir = base / out_dir

        if not archive_is_present(zip_path):
            missing_archive.append(row['accession'])
        if not out_dir.is_dir() or not any(out_dir.iterdir()):
            missing_extraction.append(row['accession'])

    return {
        'total': len(rows),
        'archived': len(rows) - len(missing_archive),
        'extracted': len(rows) - len(missing_extraction),
        'missing_archive': missing_archive,
        'missing_extraction': missing_extraction,
    }
