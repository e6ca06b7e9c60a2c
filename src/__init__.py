"""
NCBI Genome Fetch - bulk genome assembly download

Turns a tab-separated list of GCA_/GCF_ accessions into one ZIP archive and
one extraction directory per assembly using the NCBI datasets CLI.

Workflow:
- Bootstrap of the datasets executable
- Accession extraction and validation
- Reachability probe
- Parallel download (halts on first failure)
- Parallel unzip (failures isolated per archive)
- Manifest
"""

__version__ = "1.0.0"
__author__ = "NCBI Genome Fetch Development Team"
