"""
Unified Configuration System for NCBI Genome Fetch

This module provides centralized configuration management with clear hierarchy:
1. Built-in defaults (lowest priority)
2. Configuration files (YAML/JSON)
3. Environment variables
4. Command-line arguments (highest priority)
"""

import os
import json
import copy
import platform
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

from logging_utils import ConfigurationError

DATASETS_BASE_URL = 'https://ftp.ncbi.nlm.nih.gov/pub/datasets/command-line/v2'

# platform.system(), platform.machine() -> datasets build directory
DATASETS_PLATFORMS = {
    ('Linux', 'x86_64'): 'linux-amd64',
    ('Linux', 'amd64'): 'linux-amd64',
    ('Linux', 'aarch64'): 'linux-arm64',
    ('Linux', 'arm64'): 'linux-arm64',
    ('Darwin', 'x86_64'): 'mac',
    ('Darwin', 'arm64'): 'mac',
}

# Artifact kinds accepted by `datasets download genome --include`
KNOWN_INCLUDE_KINDS = ['genome', 'rna', 'protein', 'cds', 'gff3', 'gtf', 'gbff', 'seq-report']

DEFAULT_INCLUDE = ['genome', 'gff3', 'protein', 'cds']

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
VALID_HALT_MODES = ['soon', 'now']
VALID_UNPACK_BACKENDS = ['zipfile', 'unzip']


def default_datasets_url(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """
    Build the download URL of the datasets binary for a platform.

    Unknown platforms fall back to the linux-amd64 build.
    """
    system = system or platform.system()
    machine = machine or platform.machine()
    build = DATASETS_PLATFORMS.get((system, machine), 'linux-amd64')
    return f"{DATASETS_BASE_URL}/{build}/datasets"


def parse_include_list(value) -> List[str]:
    """Accept a list or a comma-separated string of artifact kinds."""
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return list(value)


class GenomeFetchConfig:
    """
    Unified configuration for a genome fetch run.

    Provides centralized configuration management with clear hierarchy:
    1. Built-in defaults
    2. Configuration files (YAML/JSON)
    3. Environment variables
    4. Command-line arguments (highest priority)
    """

    ENV_MAPPINGS = {
        'GENOME_FETCH_INPUT': 'input.path',
        'GENOME_FETCH_JOBS': 'processing.max_workers',
        'GENOME_FETCH_LOG_LEVEL': 'processing.log_level',
        'GENOME_FETCH_WORK_DIR': 'processing.work_directory',
        'GENOME_FETCH_DATASETS_BIN': 'datasets.binary_path',
        'GENOME_FETCH_INCLUDE': 'datasets.include',
        'REQUESTS_CA_BUNDLE': 'datasets.ca_bundle',
    }

    def __init__(self, config_file: Optional[str] = None, cli_args: Optional[Dict] = None):
        """
        Initialize configuration system with proper precedence order.

        Args:
            config_file: Path to YAML or JSON configuration file
            cli_args: Nested dictionary of command-line arguments (highest priority)
        """
        self.config_file = config_file
        self.cli_args = cli_args or {}
        self._config = {}
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration with proper precedence order"""
        self._config = self._get_default_config()

        if self.config_file:
            file_config = self._load_config_file(self.config_file)
            self._merge_config(self._config, file_config)

        env_config = self._load_environment_config()
        self._merge_config(self._config, env_config)

        if self.cli_args:
            self._merge_config(self._config, copy.deepcopy(self.cli_args))

        self._normalize_configuration()
        self._validate_configuration()

    def _get_default_config(self) -> Dict[str, Any]:
        """Built-in default configuration"""
        return {
            'input': {
                'path': 'assemblies.tsv',
                'delimiter': '\t',
                'header_token': 'Assembly',
            },
            'processing': {
                'work_directory': '.',
                'max_workers': 4,
                'log_level': 'INFO',
                'log_file': None,
                'progress_bar': True,
            },
            'datasets': {
                'binary_path': './datasets',
                'url': default_datasets_url(),
                'include': list(DEFAULT_INCLUDE),
                'ca_bundle': None,
                'bootstrap_timeout': 300,
                'probe_timeout': 120,
                'required_tools': [],
            },
            'fetch': {
                'halt_on_failure': True,
                'halt_mode': 'now',
            },
            'unpack': {
                'backend': 'zipfile',
            },
            'outputs': {
                'accession_list': 'assemblies.txt',
                'zip_directory': 'zips',
                'out_directory': 'out',
                'log_directory': 'logs',
                'job_log': 'logs/parallel_jobs.tsv',
                'unpack_log': 'logs/unpack_jobs.tsv',
                'manifest': 'logs/manifest.tsv',
            },
        }

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif config_path.suffix.lower() == '.json':
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {config_path.suffix}")

    def _load_environment_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        env_config = {}

        for env_var, config_path in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value:
                self._set_nested_config(env_config, config_path, value)

        return env_config

    def _set_nested_config(self, config_dict: Dict, path: str, value: Any):
        """Set nested configuration value using dot notation path"""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        # Convert string values to appropriate types
        if isinstance(value, str):
            if value.lower() in ['true', 'false']:
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)

        current[keys[-1]] = value

    def _merge_config(self, base_config: Dict, override_config: Dict):
        """Deep merge configuration dictionaries"""
        for key, value in override_config.items():
            if key in base_config and isinstance(base_config[key], dict) and isinstance(value, dict):
                self._merge_config(base_config[key], value)
            else:
                base_config[key] = value

    def _normalize_configuration(self):
        """Coerce values that may arrive as strings from env or CLI"""
        datasets = self._config['datasets']
        datasets['include'] = parse_include_list(datasets.get('include', []))
        datasets['required_tools'] = parse_include_list(datasets.get('required_tools') or [])

        processing = self._config['processing']
        processing['log_level'] = str(processing.get('log_level', 'INFO')).upper()

    def _validate_configuration(self):
        """Validate final configuration"""
        required_sections = ['input', 'processing', 'datasets', 'fetch', 'unpack', 'outputs']

        for section in required_sections:
            if section not in self._config:
                raise ConfigurationError(f"Required configuration section missing: {section}")

        self._validate_input_config()
        self._validate_processing_config()
        self._validate_datasets_config()
        self._validate_phase_configs()

    def _validate_input_config(self):
        """Validate input section configuration"""
        if not self._config['input'].get('delimiter'):
            raise ConfigurationError("input.delimiter must be a non-empty string")

    def _validate_processing_config(self):
        """Validate processing section configuration"""
        processing = self._config['processing']

        max_workers = processing.get('max_workers')
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise ConfigurationError(f"max_workers must be an integer >= 1. Got: {max_workers!r}")

        if processing.get('log_level') not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of: {VALID_LOG_LEVELS}")

    def _validate_datasets_config(self):
        """Validate datasets section configuration"""
        datasets = self._config['datasets']

        include = datasets['include']
        if not include:
            raise ConfigurationError("datasets.include must list at least one artifact kind")

        unknown = [kind for kind in include if kind not in KNOWN_INCLUDE_KINDS]
        if unknown:
            raise ConfigurationError(
                f"Unknown artifact kinds {unknown}. Must be among: {KNOWN_INCLUDE_KINDS}"
            )

        for timeout_key in ['bootstrap_timeout', 'probe_timeout']:
            if datasets.get(timeout_key, 0) <= 0:
                raise ConfigurationError(f"datasets.{timeout_key} must be positive")

    def _validate_phase_configs(self):
        """Validate fetch and unpack section configuration"""
        fetch = self._config['fetch']
        if not isinstance(fetch.get('halt_on_failure'), bool):
            raise ConfigurationError("fetch.halt_on_failure must be boolean")
        if fetch.get('halt_mode') not in VALID_HALT_MODES:
            raise ConfigurationError(f"fetch.halt_mode must be one of: {VALID_HALT_MODES}")

        if self._config['unpack'].get('backend') not in VALID_UNPACK_BACKENDS:
            raise ConfigurationError(f"unpack.backend must be one of: {VALID_UNPACK_BACKENDS}")

    # Public interface methods
    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path.

        Args:
            path: Dot-separated path to configuration value (e.g., 'processing.max_workers')
            default: Default value if path not found

        Returns:
            Configuration value or default if not found
        """
        keys = path.split('.')
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_processing_config(self) -> Dict[str, Any]:
        """Get processing-specific configuration"""
        return self._config['processing']

    def get_datasets_config(self) -> Dict[str, Any]:
        """Get datasets binary configuration"""
        return self._config['datasets']

    def get_outputs_config(self) -> Dict[str, Any]:
        """Get output path configuration"""
        return self._config['outputs']

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path against the work directory."""
        path = Path(value)
        if path.is_absolute():
            return path
        return Path(self._config['processing']['work_directory']) / path

    def to_dict(self) -> Dict[str, Any]:
        """Return complete configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save_config(self, output_path: str):
        """
        Save current configuration to file.

        Args:
            output_path: Path where to save configuration file
        """
        output_path = Path(output_path)

        if output_path.suffix.lower() in ['.yaml', '.yml']:
            with open(output_path, 'w') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, indent=2, sort_keys=False)
        elif output_path.suffix.lower() == '.json':
            with open(output_path, 'w') as f:
                json.dump(self._config, f, indent=2)
        else:
            raise ConfigurationError(f"Unsupported output format: {output_path.suffix}")

    @classmethod
    def create_template_config(cls, output_path: str) -> str:
        """
        Write a commented YAML template holding every option with its default.

        Args:
            output_path: Where to write the template

        Returns:
            Path of the written template
        """
        template = cls()._get_default_config()
        yaml_content = yaml.safe_dump(template, default_flow_style=False, indent=2, sort_keys=False)

        section_comments = {
            'input:': '# Input table - accessions are read from the first column',
            'processing:': '\n# Run settings - work directory, worker count (J) and logging',
            'datasets:': '\n# NCBI datasets binary - location, download URL and requested artifact kinds',
            'fetch:': '\n# Fetch phase - halt_mode "now" terminates running downloads on the first failure, "soon" lets them finish',
            'unpack:': '\n# Unpack phase - "zipfile" extracts in-process, "unzip" shells out to unzip -qo',
            'outputs:': '\n# Generated artifacts, relative to processing.work_directory',
        }

        lines = []
        for line in yaml_content.split('\n'):
            if line in section_comments:
                lines.append(section_comments[line])
            lines.append(line)

        header = (
            "# NCBI Genome Fetch - Configuration Template\n"
            "#\n"
            "# Environment variables override file values:\n"
            "#   GENOME_FETCH_JOBS, GENOME_FETCH_LOG_LEVEL, GENOME_FETCH_WORK_DIR,\n"
            "#   GENOME_FETCH_DATASETS_BIN, GENOME_FETCH_INCLUDE, REQUESTS_CA_BUNDLE\n"
            "\n"
        )

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w') as f:
            f.write(header + '\n'.join(lines))

        return str(output_file)
