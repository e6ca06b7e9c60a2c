"""
NCBI Genome Fetch Command Line Interface

Usage:
    # Download genome, gff3, protein and cds for every accession, 4 jobs
    ncbi-genome-fetch run assemblies.tsv

    # Same with 6 parallel jobs
    ncbi-genome-fetch run assemblies.tsv 6

    # Only build the cleaned accession list
    ncbi-genome-fetch extract assemblies.tsv

    # Rebuild logs/manifest.tsv from assemblies.txt
    ncbi-genome-fetch manifest

    # Report which manifest entries are downloaded / extracted
    ncbi-genome-fetch status

    # Write a commented configuration template
    ncbi-genome-fetch init-config genome_fetch.yaml
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from config_manager import GenomeFetchConfig, KNOWN_INCLUDE_KINDS
from genome_fetch_pipeline import GenomeFetchPipeline
from logging_utils import GenomeFetchError, LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED = 1
EXIT_INTERRUPTED = 130


def build_cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Turn parsed arguments into a nested config override dict."""
    overrides: Dict[str, Dict[str, Any]] = {}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    put('input', 'path', getattr(args, 'input_tsv', None))
    put('processing', 'max_workers', getattr(args, 'jobs', None))
    put('processing', 'work_directory', getattr(args, 'work_dir', None))
    put('processing', 'log_file', getattr(args, 'log_file', None))
    put('datasets', 'include', getattr(args, 'include', None))
    put('datasets', 'binary_path', getattr(args, 'datasets_bin', None))
    put('datasets', 'url', getattr(args, 'datasets_url', None))
    put('datasets', 'ca_bundle', getattr(args, 'ca_bundle', None))
    put('fetch', 'halt_mode', getattr(args, 'halt_mode', None))
    put('unpack', 'backend', getattr(args, 'unpack_backend', None))

    if getattr(args, 'verbose', False):
        put('processing', 'log_level', 'DEBUG')
    else:
        put('processing', 'log_level', getattr(args, 'log_level', None))

    if getattr(args, 'no_progress', False):
        put('processing', 'progress_bar', False)

    return overrides


def load_pipeline(args: argparse.Namespace) -> GenomeFetchPipeline:
    config = GenomeFetchConfig(
        config_file=getattr(args, 'config', None),
        cli_args=build_cli_overrides(args),
    )
    return GenomeFetchPipeline(config)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--config',
        help='YAML or JSON configuration file'
    )
    parser.add_argument(
        '--work-dir',
        help='Directory holding assemblies.txt, zips/, out/ and logs/ (default: .)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Console log level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Also write a full debug log to this file'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Shortcut for --log-level DEBUG'
    )


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def create_run_parser(subparsers) -> None:
    """Create the full pipeline subcommand."""

    parser = subparsers.add_parser(
        'run',
        help='Extract accessions, download, unzip and write the manifest'
    )
    parser.add_argument(
        'input_tsv',
        nargs='?',
        help='Tab-separated table with accessions in column 1 (default: assemblies.tsv)'
    )
    parser.add_argument(
        'jobs',
        nargs='?',
        type=positive_int,
        help='Parallel jobs (default: 4)'
    )
    parser.add_argument(
        '--include',
        help=f"Comma-separated artifact kinds (default: genome,gff3,protein,cds; "
             f"known: {','.join(KNOWN_INCLUDE_KINDS)})"
    )
    parser.add_argument(
        '--datasets-bin',
        help='Path of the NCBI datasets executable (default: ./datasets)'
    )
    parser.add_argument(
        '--datasets-url',
        help='Where to fetch the datasets executable from when it is missing'
    )
    parser.add_argument(
        '--ca-bundle',
        help='CA bundle exported to datasets as REQUESTS_CA_BUNDLE/SSL_CERT_FILE'
    )
    parser.add_argument(
        '--halt-mode',
        choices=['soon', 'now'],
        help="On a failed download: 'now' terminates running downloads, "
             "'soon' lets them finish (default: now)"
    )
    parser.add_argument(
        '--unpack-backend',
        choices=['zipfile', 'unzip'],
        help='Extract in-process or with unzip -qo (default: zipfile)'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )
    add_common_arguments(parser)
    parser.set_defaults(func=handle_run)


def create_extract_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        'extract',
        help='Only write the cleaned, sorted accession list'
    )
    parser.add_argument('input_tsv', nargs='?', help='Input table (default: assemblies.tsv)')
    add_common_arguments(parser)
    parser.set_defaults(func=handle_extract)


def create_manifest_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        'manifest',
        help='Rewrite logs/manifest.tsv from the accession list'
    )
    add_common_arguments(parser)
    parser.set_defaults(func=handle_manifest)


def create_status_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        'status',
        help='Show which manifest entries have archives and extractions'
    )
    add_common_arguments(parser)
    parser.set_defaults(func=handle_status)


def create_init_config_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        'init-config',
        help='Write a commented YAML configuration template'
    )
    parser.add_argument('output', nargs='?', default='genome_fetch.yaml',
                        help='Template path (default: genome_fetch.yaml)')
    parser.set_defaults(func=handle_init_config)


def handle_run(args) -> int:
    pipeline = load_pipeline(args)
    results = pipeline.run()
    if results['unpack_failed']:
        logger.warning(
            f"{len(results['unpack_failed'])} archive(s) failed to extract; "
            f"see {pipeline.paths['unpack_log']}"
        )
    return EXIT_SUCCESS


def handle_extract(args) -> int:
    pipeline = load_pipeline(args)
    pipeline.check_preconditions()
    accessions = pipeline.extract_only()
    print(f"{len(accessions)} accessions -> {pipeline.paths['accession_list']}")
    return EXIT_SUCCESS


def handle_manifest(args) -> int:
    pipeline = load_pipeline(args)
    count = pipeline.write_manifest_only()
    print(f"{count} rows -> {pipeline.paths['manifest']}")
    return EXIT_SUCCESS


def handle_status(args) -> int:
    pipeline = load_pipeline(args)
    status = pipeline.status()

    print(f"Manifest: {pipeline.paths['manifest']}")
    print(f"Accessions: {status['total']:,}")
    print(f"  with archive:    {status['archived']:,}")
    print(f"  with extraction: {status['extracted']:,}")
    for label, key in [('Missing archive', 'missing_archive'),
                       ('Missing extraction', 'missing_extraction')]:
        if status[key]:
            print(f"{label}:")
            for accession in status[key]:
                print(f"  {accession}")
    return EXIT_SUCCESS


def handle_init_config(args) -> int:
    path = GenomeFetchConfig.create_template_config(args.output)
    print(f"Configuration template written: {path}")
    return EXIT_SUCCESS


def report_error(error: GenomeFetchError) -> None:
    """Human-readable diagnostic on stderr."""
    print(f"ERROR: {error}", file=sys.stderr)
    if error.hint:
        print(f"       {error.hint}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments. If None, uses sys.argv[1:]

    Returns:
        int: Process exit code
    """
    parser = argparse.ArgumentParser(
        prog='ncbi-genome-fetch',
        description='Download NCBI genome assemblies listed in a TSV with the datasets CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Exit codes:
  0  success
  2  missing tool, missing input file or invalid configuration
  3  no valid accessions in column 1
  4  NCBI Datasets API unreachable (probe failed)
  5  a download failed (fetch phase halted)
  6  datasets binary could not be downloaded

Environment:
  REQUESTS_CA_BUNDLE=/path/to/ca-bundle.crt   custom CA bundle for datasets
        '''
    )

    subparsers = parser.add_subparsers(
        title='commands',
        dest='command',
        help='Command to execute'
    )

    create_run_parser(subparsers)
    create_extract_parser(subparsers)
    create_manifest_parser(subparsers)
    create_status_parser(subparsers)
    create_init_config_parser(subparsers)

    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return EXIT_UNEXPECTED

    try:
        return args.func(args)
    except GenomeFetchError as e:
        logger.debug("Fatal error details", exc_info=True)
        report_error(e)
        return e.exit_code
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"✗ Unexpected error: {e}", exc_info=True)
        return EXIT_UNEXPECTED


if __name__ == '__main__':
    sys.exit(main())
