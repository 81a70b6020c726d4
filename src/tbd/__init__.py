"""
tbd - git-native issue tracking

Stores issue records as files on a dedicated git branch and synchronizes
them between clones with field-level three-way merging.
"""

__version__ = "0.3.0-dev"

# Re-export core models for convenience
from tbd.core.config.models import TbdConfig
from tbd.core.records.models import Record, RecordKind, RecordStatus

__all__ = ["TbdConfig", "Record", "RecordKind", "RecordStatus", "__version__"]
