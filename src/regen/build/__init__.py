"""Building tools from source and finding their executables."""

from regen.build.locator import ExecutableLocator, is_backup_path
from regen.build.runner import BuildRunner

__all__ = [
    "BuildRunner",
    "ExecutableLocator",
    "is_backup_path",
]
