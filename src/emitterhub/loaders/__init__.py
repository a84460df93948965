"""CSV ingestion for entity mappings and patch rules."""

from emitterhub.loaders.csv_mapping import LoadReport, load_mapping_csv
from emitterhub.loaders.csv_patch import load_patch_csv

__all__ = [
    "LoadReport",
    "load_mapping_csv",
    "load_patch_csv",
]
