"""
Accession Extraction and Validation

Reads the first column of a delimited assembly table and turns it into the
clean accession list the rest of the run is keyed on:

    * row 1 is dropped when its first field starts with the header token
    * CR line endings and surrounding whitespace are trimmed
    * only GCA_/GCF_ accessions with a version suffix are kept
    * the result is deduplicated and sorted
"""

import re
from pathlib import Path
from typing import Iterable, List

from logging_utils import InputFileError, NoValidAccessionsError, get_logger

logger = get_logger(__name__)

ACCESSION_PATTERN = re.compile(r'^(GCA|GCF)_[0-9]+\.[0-9]+$')
HEADER_TOKEN = 'Assembly'


def normalize_field(field: str) -> str:
    """Strip a trailing carriage return and surrounding whitespace."""
    if field.endswith('\r'):
        field = field[:-1]
    return field.strip()


def is_valid_accession(candidate: str) -> bool:
    """Return True if the candidate is a full GCA_/GCF_ accession."""
    return ACCESSION_PATTERN.fullmatch(candidate) is not None


def extract_accessions(
    input_path: str,
    delimiter: str = '\t',
    header_token: str = HEADER_TOKEN,
) -> List[str]:
    """
    Extract a deduplicated, sorted list of valid accessions from a table.

    Args:
        input_path: Path to the delimited input file
        delimiter: Field delimiter (default: tab)
        header_token: Row 1 is treated as a header when its first field
            starts with this token

    Returns:
        Sorted list of unique accessions (may be empty)

    Raises:
        InputFileError: If the input file does not exist
    """
    path = Path(input_path)
    if not path.is_file():
        raise InputFileError(
            f"input TSV '{input_path}' not found.",
            context={'input_path': str(input_path)},
        )

    accessions = set()
    rows_read = 0

    # newline='' keeps CR so CRLF files are handled per field
    with open(path, 'r', encoding='utf-8', errors='replace', newline='') as f:
        for line_number, line in enumerate(f, 1):
            line = line.rstrip('\n')
            first_field = line.split(delimiter, 1)[0]

            if line_number == 1 and first_field.startswith(header_token):
                logger.debug(f"Skipping header row: {first_field!r}")
                continue

            rows_read += 1
            candidate = normalize_field(first_field)
            if is_valid_accession(candidate):
                accessions.add(candidate)

    logger.info(f"Read {rows_read} data rows from {path}, {len(accessions)} unique valid accessions")
    return sorted(accessions)


def write_accession_list(accessions: Iterable[str], output_path: str) -> Path:
    """Write one accession per line."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', newline='') as f:
        for accession in accessions:
            f.write(f"{accession}\n")

    return output_path


def read_accession_list(list_path: str) -> List[str]:
    """Read an accession list written by write_accession_list."""
    path = Path(list_path)
    if not path.is_file():
        raise InputFileError(
            f"Accession list '{list_path}' not found. Run the extract step first.",
            context={'accession_list': str(list_path)},
        )

    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip()]


def build_accession_list(
    input_path: str,
    list_path: str,
    delimiter: str = '\t',
    header_token: str = HEADER_TOKEN,
) -> List[str]:
    """
    Extract accessions and persist them as the intermediate list.

    The list is written even when empty so it can be inspected.

    Raises:
        InputFileError: If the input file does not exist
        NoValidAccessionsError: If no row validated
    """
    accessions = extract_accessions(input_path, delimiter, header_token)
    write_accession_list(accessions, list_path)

    if not accessions:
        raise NoValidAccessionsError(
            f"No valid accessions found in column 1 of '{input_path}'.",
            context={'input_path': str(input_path), 'accession_list': str(list_path)},
            hint=(
                f"Inspect '{list_path}' and check that the input is a true "
                f"delimited file (delimiter {delimiter!r}) whose first column holds GCA_/GCF_ IDs."
            ),
        )

    logger.info(f"Wrote {len(accessions)} accessions to {list_path}")
    return accessions
