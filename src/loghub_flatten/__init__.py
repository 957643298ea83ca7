"""Flatten Loghub-style log archives into one text file per archive."""

from .extractor import (
    ArchiveDiscovery,
    ArchiveFlattener,
    ArchiveFormat,
    ArchiveInfo,
    FlattenStats,
    LogFlattener,
    OutputSink,
    TarGzFlattener,
    ZipFlattener,
    dataset_stem,
    output_path_for,
)
from .errors import (
    LogFlattenError, ArchiveError, ArchiveOpenError, ArchiveReadError,
    CorruptedArchiveError, UnsupportedArchiveError, OutputWriteError
)

__version__ = "0.1.0"

__all__ = [
    'ArchiveDiscovery',
    'ArchiveFlattener',
    'ArchiveFormat',
    'ArchiveInfo',
    'FlattenStats',
    'LogFlattener',
    'OutputSink',
    'TarGzFlattener',
    'ZipFlattener',
    'dataset_stem',
    'output_path_for',
    'LogFlattenError',
    'ArchiveError',
    'ArchiveOpenError',
    'ArchiveReadError',
    'CorruptedArchiveError',
    'UnsupportedArchiveError',
    'OutputWriteError',
]
