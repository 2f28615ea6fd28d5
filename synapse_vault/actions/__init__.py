"""Actions module: exports, rotation and storage relocation."""

from .file_operations import FileOperations
from .rotation import RotationCoordinator, RotationProgress, RotationResult
from .migration import StorageMigrator, MigrationProgress, MigrationResult

__all__ = [
    "FileOperations",
    "RotationCoordinator",
    "RotationProgress",
    "RotationResult",
    "StorageMigrator",
    "MigrationProgress",
    "MigrationResult",
]
