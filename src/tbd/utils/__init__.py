"""
Utility modules for tbd.
"""

from tbd.utils.fs import atomic_write_text, link_new_file
from tbd.utils.timeutil import ensure_utc, filename_timestamp, now_utc
from tbd.utils.yaml_io import dump_yaml, load_yaml_tolerant

__all__ = [
    "atomic_write_text",
    "link_new_file",
    "ensure_utc",
    "filename_timestamp",
    "now_utc",
    "dump_yaml",
    "load_yaml_tolerant",
]
