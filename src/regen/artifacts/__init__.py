"""Collecting and packing generated data files."""

from regen.artifacts.collector import ArtifactCollector, iter_matching_files
from regen.artifacts.packer import BinaryPacker

__all__ = [
    "ArtifactCollector",
    "BinaryPacker",
    "iter_matching_files",
]
