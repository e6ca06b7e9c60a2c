"""
Tests for the fetch phase against a fake datasets executable.
"""

import pytest
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent / "src"))

from datasets_cli import DatasetsCLI
from genome_fetcher import GenomeFetcher
from logging_utils import FetchPhaseError

ACCESSIONS = ['GCA_000001405.29', 'GCA_020379485.1', 'GCF_020379485.1']


def make_fetcher(fake_datasets, tmp_path, **kwargs):
    options = dict(max_workers=2, job_log_path=str(tmp_path / 'logs' / 'parallel_jobs.tsv'),
                   show_progress=False)
    options.update(kwargs)
    cli = DatasetsCLI(str(fake_datasets), ['genome', 'gff3', 'protein', 'cds'])
    return GenomeFetcher(cli, zip_directory=str(tmp_path / 'zips'), **options)


def test_downloads_one_archive_per_accession(fake_datasets, datasets_calls, tmp_path):
    fetcher = make_fetcher(fake_datasets, tmp_path)

    results = fetcher.download_data(accessions=ACCESSIONS)

    for accession in ACCESSIONS:
        assert (tmp_path / 'zips' / f'{accession}.zip').stat().st_size > 0
    assert sorted(results['downloaded']) == [f'{a}.zip' for a in ACCESSIONS]
    assert results['skipped'] == []
    assert len(datasets_calls('download')) == 3

    rows = (tmp_path / 'logs' / 'parallel_jobs.tsv').read_text().splitlines()[1:]
    assert len(rows) == 3
    assert all(row.split('\t')[6] == '0' for row in rows)
    assert all('--no-progressbar' in row for row in rows)


def test_existing_archives_are_skipped(fake_datasets, datasets_calls, tmp_path):
    """A second run issues no download requests"""
    make_fetcher(fake_datasets, tmp_path).download_data(accessions=ACCESSIONS)
    before = {a: (tmp_path / 'zips' / f'{a}.zip').stat().st_mtime_ns for a in ACCESSIONS}

    results = make_fetcher(fake_datasets, tmp_path).download_data(accessions=ACCESSIONS)

    assert len(datasets_calls('download')) == 3
    assert sorted(results['skipped']) == [f'{a}.zip' for a in ACCESSIONS]
    assert results['downloaded'] == []
    after = {a: (tmp_path / 'zips' / f'{a}.zip').stat().st_mtime_ns for a in ACCESSIONS}
    assert before == after


def test_empty_archive_is_downloaded_again(fake_datasets, datasets_calls, tmp_path):
    """A zero-byte archive does not satisfy the skip check"""
    (tmp_path / 'zips').mkdir()
    (tmp_path / 'zips' / f'{ACCESSIONS[0]}.zip').touch()

    results = make_fetcher(fake_datasets, tmp_path).download_data(accessions=ACCESSIONS[:1])

    assert results['downloaded'] == [f'{ACCESSIONS[0]}.zip']
    assert len(datasets_calls('download')) == 1


def test_failed_download_halts_phase(fake_datasets, monkeypatch, tmp_path):
    """The first failure stops new launches and raises"""
    monkeypatch.setenv('FAKE_DATASETS_FAIL', ACCESSIONS[0])
    fetcher = make_fetcher(fake_datasets, tmp_path, max_workers=1)

    with pytest.raises(FetchPhaseError) as excinfo:
        fetcher.download_data(accessions=ACCESSIONS)

    error = excinfo.value
    assert error.exit_code == 5
    assert error.context['failed_accessions'] == [ACCESSIONS[0]]
    assert error.context['not_started'] == 2
    assert error.context['halted'] is True
    assert 're-run' in error.hint

    assert not (tmp_path / 'zips' / f'{ACCESSIONS[1]}.zip').exists()
    failed = fetcher.get_download_status()['failed_downloads']
    assert failed[0]['error'] == f'Error: no assemblies found for {ACCESSIONS[0]}'


def test_rerun_after_failure_resumes(fake_datasets, datasets_calls, monkeypatch, tmp_path):
    """Completed archives survive a failed run and are not fetched again"""
    monkeypatch.setenv('FAKE_DATASETS_FAIL', ACCESSIONS[2])
    with pytest.raises(FetchPhaseError):
        make_fetcher(fake_datasets, tmp_path, max_workers=1).download_data(accessions=ACCESSIONS)
    assert len(datasets_calls('download')) == 3

    monkeypatch.delenv('FAKE_DATASETS_FAIL')
    results = make_fetcher(fake_datasets, tmp_path, max_workers=1).download_data(accessions=ACCESSIONS)

    assert results['downloaded'] == [f'{ACCESSIONS[2]}.zip']
    assert sorted(results['skipped']) == [f'{a}.zip' for a in ACCESSIONS[:2]]
    assert len(datasets_calls('download')) == 4


def test_without_halt_all_jobs_run(fake_datasets, monkeypatch, tmp_path):
    monkeypatch.setenv('FAKE_DATASETS_FAIL', ACCESSIONS[0])
    fetcher = make_fetcher(fake_datasets, tmp_path, max_workers=1, halt_on_failure=False)

    with pytest.raises(FetchPhaseError) as excinfo:
        fetcher.download_data(accessions=ACCESSIONS)

    assert excinfo.value.context['not_started'] == 0
    assert (tmp_path / 'zips' / f'{ACCESSIONS[2]}.zip').exists()


def test_failed_download_removes_partial_archive(fake_datasets, datasets_calls, monkeypatch, tmp_path):
    """A non-empty partial file from a failed download is not left for the skip check"""
    monkeypatch.setenv('FAKE_DATASETS_PARTIAL', ACCESSIONS[0])

    with pytest.raises(FetchPhaseError):
        make_fetcher(fake_datasets, tmp_path).download_data(accessions=ACCESSIONS[:1])
    assert not (tmp_path / 'zips' / f'{ACCESSIONS[0]}.zip').exists()

    monkeypatch.delenv('FAKE_DATASETS_PARTIAL')
    results = make_fetcher(fake_datasets, tmp_path).download_data(accessions=ACCESSIONS[:1])

    assert results['downloaded'] == [f'{ACCESSIONS[0]}.zip']
    assert len(datasets_calls('download')) == 2


def test_default_halt_terminates_running_downloads(fake_datasets, monkeypatch, tmp_path):
    monkeypatch.setenv('FAKE_DATASETS_SLOW', ACCESSIONS[0])
    monkeypatch.setenv('FAKE_DATASETS_FAIL', ACCESSIONS[1])
    fetcher = make_fetcher(fake_datasets, tmp_path)

    with pytest.raises(FetchPhaseError) as excinfo:
        fetcher.download_data(accessions=ACCESSIONS)

    assert fetcher.halt_mode == 'now'
    assert sorted(excinfo.value.context['failed_accessions']) == sorted(ACCESSIONS[:2])
    assert excinfo.value.context['not_started'] == 1
    assert not (tmp_path / 'zips' / f'{ACCESSIONS[0]}.zip').exists()


def test_fetcher_reusable_after_terminating_halt(fake_datasets, monkeypatch, tmp_path):
    """A second download_data call on the same fetcher runs normally"""
    monkeypatch.setenv('FAKE_DATASETS_FAIL', ACCESSIONS[0])
    fetcher = make_fetcher(fake_datasets, tmp_path, max_workers=1, halt_mode='now')

    with pytest.raises(FetchPhaseError):
        fetcher.download_data(accessions=ACCESSIONS)

    monkeypatch.delenv('FAKE_DATASETS_FAIL')
    results = fetcher.download_data(accessions=ACCESSIONS)

    assert sorted(results['downloaded']) == [f'{a}.zip' for a in ACCESSIONS]
    for accession in ACCESSIONS:
        assert (tmp_path / 'zips' / f'{accession}.zip').exists()
