"""
Shared fixtures: a stand-in for the NCBI datasets executable.

The fake binary understands the two command shapes the pipeline issues:

    datasets summary genome accession <acc>
    datasets download genome accession <acc> --include ... --filename <zip>

Behaviour is steered through environment variables so that it reaches the
subprocess the same way REQUESTS_CA_BUNDLE does:

    FAKE_DATASETS_CALLS    append one line per invocation to this file
    FAKE_DATASETS_FAIL     comma-separated accessions whose download fails
    FAKE_DATASETS_CORRUPT  comma-separated accessions that get a non-ZIP file
    FAKE_DATASETS_PARTIAL  comma-separated accessions that leave a partial file and fail
    FAKE_DATASETS_SLOW     comma-separated accessions that take 3 s to download
    FAKE_DATASETS_OFFLINE  make the summary probe fail
"""

import sys
from pathlib import Path

import pytest

FAKE_DATASETS_SOURCE = '''#!{python}
import json
import os
import sys
import time
import zipfile


def listed(name):
    return set(filter(None, os.environ.get(name, '').split(',')))


args = sys.argv[1:]
calls = os.environ.get('FAKE_DATASETS_CALLS')
if calls:
    with open(calls, 'a') as f:
        f.write(' '.join(args[:4]) + '\\n')

if args[:3] == ['summary', 'genome', 'accession']:
    if os.environ.get('FAKE_DATASETS_OFFLINE'):
        sys.stderr.write('Error: Get "https://api.ncbi.nlm.nih.gov": connection refused\\n')
        sys.exit(1)
    print(json.dumps({{'total_count': 1, 'reports': [{{'accession': args[3]}}]}}))
    sys.exit(0)

if args[:3] == ['download', 'genome', 'accession']:
    accession = args[3]
    filename = args[args.index('--filename') + 1]
    if accession in listed('FAKE_DATASETS_FAIL'):
        sys.stderr.write('Error: no assemblies found for ' + accession + '\\n')
        sys.exit(1)
    if accession in listed('FAKE_DATASETS_PARTIAL'):
        with open(filename, 'wb') as f:
            f.write(b'PK\\x03\\x04 truncated')
        sys.stderr.write('Error: stream error: unexpected EOF\\n')
        sys.exit(1)
    if accession in listed('FAKE_DATASETS_SLOW'):
        time.sleep(3)
    if accession in listed('FAKE_DATASETS_CORRUPT'):
        with open(filename, 'wb') as f:
            f.write(b'this is not a zip archive')
        sys.exit(0)
    with zipfile.ZipFile(filename, 'w') as archive:
        archive.writestr('README.md', 'NCBI Datasets\\n')
        archive.writestr('ncbi_dataset/data/' + accession + '/' + accession + '_genomic.fna',
                         '>' + accession + '\\nACGT\\n')
    sys.exit(0)

sys.stderr.write('unsupported command\\n')
sys.exit(2)
'''


@pytest.fixture
def fake_datasets(tmp_path):
    """Executable fake `datasets` at tmp_path/datasets."""
    binary = tmp_path / 'datasets'
    binary.write_text(FAKE_DATASETS_SOURCE.format(python=sys.executable))
    binary.chmod(0o755)
    return binary


@pytest.fixture
def datasets_calls(tmp_path, monkeypatch):
    """Returns a callable listing the fake binary's invocations so far."""
    calls_file = tmp_path / 'datasets_calls.log'
    monkeypatch.setenv('FAKE_DATASETS_CALLS', str(calls_file))

    def read_calls(kind=None):
        if not calls_file.exists():
            return []
        lines = calls_file.read_text().splitlines()
        if kind:
            lines = [line for line in lines if line.startswith(kind)]
        return lines

    return read_calls


def write_assembly_table(path: Path, accessions, header=True) -> Path:
    lines = ["Assembly Accession\tOrganism Name"] if header else []
    lines += [f"{accession}\tsome organism" for accession in accessions]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def assembly_table(tmp_path):
    """Factory writing a TSV with accessions in column 1."""

    def make(accessions, header=True, name='assemblies.tsv'):
        return write_assembly_table(tmp_path / name, accessions, header=header)

    return make
