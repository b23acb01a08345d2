from .archive import ExclusionRules, ZipArchiver
from .backup import BackupExecutor
from .probe import ProbeExecutor

__all__ = ["ExclusionRules", "ZipArchiver", "BackupExecutor", "ProbeExecutor"]
