"""Archive discovery and flattening of log-dataset archives.

Every ``<stem>.tar.gz`` or ``<stem>.zip`` found in a directory is turned into
a sibling ``<stem>_logs.txt`` holding the content of all regular files of the
archive, concatenated in entry order with the directory structure dropped.
"""

import gzip
import io
import logging
import stat
import tarfile
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional

from .errors import (
    ArchiveOpenError,
    ArchiveReadError,
    CorruptedArchiveError,
    OutputWriteError,
    UnsupportedArchiveError,
)
from .logging import LogContext

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_SUFFIX = "_logs.txt"
DEFAULT_COPY_CHUNK_SIZE = 65536  # 64 KB chunks

LINE_TERMINATOR = b"\n"


class ArchiveFormat(Enum):
    """Supported archive formats."""
    TAR_GZ = "tar.gz"
    ZIP = "zip"


# Longest suffix first so "x.tar.gz" is never stemmed as "x.tar"
SUFFIX_MAP = (
    ('.tar.gz', ArchiveFormat.TAR_GZ),
    ('.zip', ArchiveFormat.ZIP),
)


def detect_format(filename: str) -> Optional[ArchiveFormat]:
    """Detect archive format from a file name (case-sensitive).
    
    Args:
        filename: Bare file name, e.g. ``Spark.tar.gz``
        
    Returns:
        Archive format or None if the suffix is not recognised
    """
    for suffix, fmt in SUFFIX_MAP:
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return fmt
    return None


def dataset_stem(filename: str) -> str:
    """Strip a recognised archive suffix from a file name.

    ``Spark.tar.gz`` -> ``Spark``, ``Android_v2.zip`` -> ``Android_v2``.
    Names without a recognised suffix are returned unchanged.
    """
    for suffix, _ in SUFFIX_MAP:
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return filename[:-len(suffix)]
    return filename


def output_path_for(archive_path: Path, suffix: str = DEFAULT_OUTPUT_SUFFIX) -> Path:
    """Return the output file path that sits next to ``archive_path``."""
    return archive_path.with_name(f"{dataset_stem(archive_path.name)}{suffix}")


@dataclass
class ArchiveInfo:
    """Information about a discovered archive."""
    path: Path
    format: ArchiveFormat
    size_bytes: int
    name: str
    
    def __str__(self) -> str:
        size_mb = self.size_bytes / (1024 * 1024)
        return f"{self.name} ({self.format.value}, {size_mb:.2f} MB)"


@dataclass
class FlattenStats:
    """Counters for one flattened archive."""
    entries_written: int = 0
    entries_skipped: int = 0  # directories, links and other non-regular entries
    lines_written: int = 0  # tar only, zip entries are copied verbatim
    lines_skipped: int = 0  # invalid UTF-8 lines dropped from tar entries
    bytes_written: int = 0

    def summary(self) -> str:
        return (
            f"{self.entries_written} entries, {self.entries_skipped} skipped, "
            f"{self.lines_skipped} invalid lines dropped, {self.bytes_written} bytes"
        )


class OutputSink:
    """Buffered binary output file owned by the driver for one archive.

    Flatteners only ever call :meth:`write`; opening, flushing and closing
    belong to whoever created the sink. I/O failures surface as
    :class:`OutputWriteError` so they are never confused with failures
    reading the archive.
    """

    def __init__(self, path: Path, buffer_size: int = io.DEFAULT_BUFFER_SIZE):
        self.path = Path(path)
        self.buffer_size = buffer_size
        self._file: Optional[BinaryIO] = None

    def __enter__(self) -> "OutputSink":
        try:
            # "wb" truncates, so re-running never accumulates output
            self._file = open(self.path, 'wb', buffering=self.buffer_size)
        except OSError as e:
            raise OutputWriteError(
                f"Cannot create output file {self.path}: {e}",
                output_path=str(self.path),
                operation="create",
            ) from e
        return self

    def write(self, data: bytes) -> int:
        try:
            return self._file.write(data)
        except OSError as e:
            raise OutputWriteError(
                f"Failed writing to {self.path}: {e}",
                output_path=str(self.path),
                operation="write",
            ) from e

    def flush(self) -> None:
        try:
            self._file.flush()
        except OSError as e:
            raise OutputWriteError(
                f"Failed flushing {self.path}: {e}",
                output_path=str(self.path),
                operation="flush",
            ) from e

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            # Only report close failures when nothing else is propagating
            if exc_type is None:
                raise OutputWriteError(
                    f"Failed closing {self.path}: {e}",
                    output_path=str(self.path),
                    operation="close",
                ) from e
        finally:
            self._file = None


def _open_archive(archive_path: Path) -> BinaryIO:
    try:
        return open(archive_path, 'rb')
    except OSError as e:
        raise ArchiveOpenError(
            f"Cannot open archive {archive_path}: {e}",
            archive_path=str(archive_path),
            operation="open",
        ) from e


class ArchiveFlattener(ABC):
    """Streams the regular files of one container format into a sink."""

    format: ArchiveFormat

    @abstractmethod
    def stream(self, archive_path: Path, sink) -> FlattenStats:
        """Append the content of every regular file in the archive to ``sink``.

        Args:
            archive_path: Path to the archive
            sink: Object with a ``write(bytes)`` method; never closed here

        Returns:
            Counters for the archive

        Raises:
            ArchiveOpenError: If the archive cannot be opened
            CorruptedArchiveError: If the container structure is invalid
            ArchiveReadError: On I/O failure while reading the archive
            OutputWriteError: If writing to the sink fails
        """


class _StrictTarInfo(tarfile.TarInfo):
    """TarInfo whose unreadable headers stop the stream with an error.

    ``TarFile.next`` quietly ends iteration on a bad header anywhere past
    the first member; ``SubsequentHeaderError`` is the one header error it
    always re-raises as ``ReadError``. Zero blocks (``EOFHeaderError``) and a
    clean end of data (``EmptyHeaderError``) still mark the end of the archive.
    """

    @classmethod
    def frombuf(cls, buf, encoding, errors):
        try:
            return super().frombuf(buf, encoding, errors)
        except (tarfile.InvalidHeaderError, tarfile.TruncatedHeaderError) as e:
            raise tarfile.SubsequentHeaderError(str(e)) from e


class TarGzFlattener(ArchiveFlattener):
    """Flattens gzip-compressed tar archives, one output line per source line.

    The gzip layer is decoded by :class:`gzip.GzipFile` and the tar layer read
    as a forward-only stream (``r|``), so the archive is never seeked or held
    in memory. Lines that are not valid UTF-8 are dropped with a warning;
    every other line is written followed by ``\\n``.
    """

    format = ArchiveFormat.TAR_GZ

    def __init__(self, chunk_size: int = DEFAULT_COPY_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def stream(self, archive_path: Path, sink) -> FlattenStats:
        stats = FlattenStats()

        with _open_archive(archive_path) as fh:
            try:
                with gzip.GzipFile(fileobj=fh, mode='rb') as gz:
                    with tarfile.open(fileobj=gz, mode='r|', tarinfo=_StrictTarInfo) as tar:
                        for member in tar:
                            if not member.isreg():
                                stats.entries_skipped += 1
                                logger.debug(f"Skipping non-regular entry: {member.name}")
                                continue

                            with LogContext(member=member.name):
                                entry = tar.extractfile(member)
                                self._write_lines(archive_path, member.name, entry, sink, stats)
                            stats.entries_written += 1

                    # Reading past the end-of-archive blocks makes GzipFile
                    # check the trailer CRC and length
                    while gz.read(self.chunk_size):
                        pass
            except (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error) as e:
                raise CorruptedArchiveError(
                    f"Corrupted tar.gz archive {archive_path}: {e}",
                    archive_path=str(archive_path),
                    operation="read tar stream",
                ) from e
            except OSError as e:
                raise ArchiveReadError(
                    f"Failed reading {archive_path}: {e}",
                    archive_path=str(archive_path),
                    operation="read tar stream",
                ) from e

        return stats

    def _write_lines(
        self,
        archive_path: Path,
        member_name: str,
        entry: BinaryIO,
        sink,
        stats: FlattenStats
    ) -> None:
        for line_number, raw in enumerate(entry, start=1):
            # Strip "\n" and a "\r" directly before it
            if raw.endswith(b"\n"):
                raw = raw[:-1]
                if raw.endswith(b"\r"):
                    raw = raw[:-1]

            try:
                raw.decode('utf-8')
            except UnicodeDecodeError as e:
                stats.lines_skipped += 1
                logger.warning(
                    f"Skipping invalid UTF-8 line {line_number} of "
                    f"{member_name} in {archive_path.name} ({e})"
                )
                continue

            sink.write(raw + LINE_TERMINATOR)
            stats.lines_written += 1
            stats.bytes_written += len(raw) + len(LINE_TERMINATOR)


def _is_regular_zip_entry(info: zipfile.ZipInfo) -> bool:
    if info.is_dir():
        return False
    # Unix mode lives in the high 16 bits; zero when the archiver didn't set it
    return not stat.S_ISLNK(info.external_attr >> 16)


class ZipFlattener(ArchiveFlattener):
    """Flattens zip archives, copying each regular file verbatim.

    Entries are visited by central-directory index. Content is not
    validated or split, and one ``\\n`` is appended per entry rather than
    per line.
    """

    format = ArchiveFormat.ZIP

    def __init__(self, chunk_size: int = DEFAULT_COPY_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def stream(self, archive_path: Path, sink) -> FlattenStats:
        stats = FlattenStats()

        with _open_archive(archive_path) as fh:
            try:
                zip_ref = zipfile.ZipFile(fh, 'r')
            except (zipfile.BadZipFile, EOFError) as e:
                raise CorruptedArchiveError(
                    f"Corrupted zip archive {archive_path}: {e}",
                    archive_path=str(archive_path),
                    operation="read central directory",
                ) from e
            except OSError as e:
                raise ArchiveReadError(
                    f"Failed reading {archive_path}: {e}",
                    archive_path=str(archive_path),
                    operation="read central directory",
                ) from e

            with zip_ref:
                for index, info in enumerate(zip_ref.infolist()):
                    if not _is_regular_zip_entry(info):
                        stats.entries_skipped += 1
                        logger.debug(f"Skipping non-regular entry: {info.filename}")
                        continue

                    stats.bytes_written += self._copy_entry(archive_path, zip_ref, index, info, sink)
                    sink.write(LINE_TERMINATOR)
                    stats.bytes_written += len(LINE_TERMINATOR)
                    stats.entries_written += 1

        return stats

    def _copy_entry(
        self,
        archive_path: Path,
        zip_ref: zipfile.ZipFile,
        index: int,
        info: zipfile.ZipInfo,
        sink
    ) -> int:
        copied = 0
        try:
            with zip_ref.open(info) as source:
                while chunk := source.read(self.chunk_size):
                    sink.write(chunk)
                    copied += len(chunk)
        except (zipfile.BadZipFile, EOFError, zlib.error, NotImplementedError, RuntimeError) as e:
            # Bad local header, CRC mismatch, unsupported compression or encryption
            raise CorruptedArchiveError(
                f"Cannot read entry {info.filename} of {archive_path}: {e}",
                archive_path=str(archive_path),
                member=info.filename,
                index=index,
                operation="copy entry",
            ) from e
        except OSError as e:
            raise ArchiveReadError(
                f"Failed reading entry {info.filename} of {archive_path}: {e}",
                archive_path=str(archive_path),
                member=info.filename,
                index=index,
                operation="copy entry",
            ) from e
        return copied


class ArchiveDiscovery:
    """Discovers archives directly inside a source directory."""
    
    def __init__(self, source_dir: Path):
        """Initialize archive discovery.
        
        Args:
            source_dir: Directory to search for archives
        """
        self.source_dir = Path(source_dir)
        if not self.source_dir.exists():
            raise FileNotFoundError(f"Source directory not found: {source_dir}")
        if not self.source_dir.is_dir():
            raise NotADirectoryError(f"Source path is not a directory: {source_dir}")
    
    def discover(self) -> List[ArchiveInfo]:
        """Discover supported archives, without descending into subdirectories.
        
        Returns:
            Archives sorted by name
        """
        archives = []
        
        for file_path in self.source_dir.iterdir():
            if not file_path.is_file():
                continue
            
            archive_format = detect_format(file_path.name)
            if archive_format is None:
                continue

            archive_info = ArchiveInfo(
                path=file_path,
                format=archive_format,
                size_bytes=file_path.stat().st_size,
                name=file_path.name
            )
            archives.append(archive_info)
            logger.debug(f"Discovered archive: {archive_info}")
        
        archives.sort(key=lambda a: a.name)
        
        logger.debug(f"Discovered {len(archives)} archive(s) in {self.source_dir}")
        return archives


class LogFlattener:
    """Discovers archives in a directory and flattens each into a text file.

    Archives are processed one at a time. The first fatal error aborts the
    run; output files written for earlier archives stay on disk.
    """
    
    def __init__(
        self,
        source_dir: Path,
        output_suffix: str = DEFAULT_OUTPUT_SUFFIX,
        copy_chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
        flatteners: Optional[List[ArchiveFlattener]] = None
    ):
        """Initialize the flattener.
        
        Args:
            source_dir: Directory containing the archives
            output_suffix: Suffix that replaces the archive suffix in output names
            copy_chunk_size: Buffer size for copying zip entries and draining gzip data
            flatteners: Flatteners to use instead of the built-in tar.gz and zip ones
        """
        self.discovery = ArchiveDiscovery(source_dir)
        self.output_suffix = output_suffix
        if flatteners is None:
            flatteners = [
                TarGzFlattener(chunk_size=copy_chunk_size),
                ZipFlattener(chunk_size=copy_chunk_size),
            ]
        self.flatteners: Dict[ArchiveFormat, ArchiveFlattener] = {
            flattener.format: flattener for flattener in flatteners
        }
    
    def flatten(self, archive: ArchiveInfo) -> FlattenStats:
        """Flatten one archive into its output file.
        
        Args:
            archive: Archive to flatten
            
        Returns:
            Counters for the archive

        Raises:
            UnsupportedArchiveError: If no flattener handles the archive format
            OutputWriteError: If the output file cannot be created or written
            ArchiveError: If the archive cannot be opened or read
        """
        flattener = self.flatteners.get(archive.format)
        if flattener is None:
            raise UnsupportedArchiveError(
                f"No flattener registered for {archive.format.value} archives",
                archive_path=str(archive.path),
                operation="dispatch",
            )

        output_path = output_path_for(archive.path, self.output_suffix)

        with LogContext(archive=archive.name):
            with OutputSink(output_path) as sink:
                logger.info(f"→ {archive.path}  →  {output_path}")
                stats = flattener.stream(archive.path, sink)
                sink.flush()

            logger.info(f"✔ wrote {output_path}")
            logger.debug(f"{archive.name}: {stats.summary()}")

        return stats
    
    def run(
        self,
        progress_callback: Optional[Callable[[int, int, str], None]] = None
    ) -> Dict[str, FlattenStats]:
        """Discover and flatten all archives.
        
        Args:
            progress_callback: Optional callback(current, total, archive_name);
                current is 1-based and exceeds total once all are done
            
        Returns:
            Dictionary mapping archive names to their counters
        """
        archives = self.discovery.discover()
        
        if not archives:
            logger.warning(f"No .tar.gz or .zip archives found in {self.discovery.source_dir}")
        
        results = {}
        total = len(archives)
        
        for i, archive in enumerate(archives, start=1):
            if progress_callback:
                progress_callback(i, total, archive.name)
            results[archive.name] = self.flatten(archive)
        
        if progress_callback:
            progress_callback(total + 1, total, "Complete")
        
        logger.info("All datasets processed.")
        return results
