"""
Deterministic accession -> artifact paths.

The presence of a non-empty archive at its canonical path is the only
completion marker a fetch job leaves behind.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


@dataclass(frozen=True)
class JobRecord:
    """Archive and extraction directory belonging to one accession."""
    accession: str
    zip_path: Path
    out_dir: Path


def job_record_for(accession: str, zip_directory: PathLike = 'zips',
                   out_directory: PathLike = 'out') -> JobRecord:
    return JobRecord(
        accession=accession,
        zip_path=Path(zip_directory) / f"{accession}.zip",
        out_dir=Path(out_directory) / accession,
    )


def archive_is_present(path: PathLike) -> bool:
    """True when the archive exists and is non-empty. Contents are not verified."""
    path = Path(path)
    return path.is_file() and path.stat().st_size > 0
