"""
Streaming archive container for directory backups.

An archive is a flat sequence of frames, optionally gzip-compressed as a
whole:

    [4 bytes big-endian header length L][L bytes UTF-8 JSON header][payload]

The header is {"path": ..., "size": ...} plus "mtime", "mode", "uid" and
"gid" when metadata is preserved. There is no index or magic number; a
reader consumes frames until end-of-stream.

The encoder holds at most one file's contents in memory at a time.
"""

import gzip
import json
import os
import re
import stat
import struct
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import BinaryIO, Dict, Iterator, List, Optional, Set, Tuple

from backupx.logs import BackupLog
from backupx.models import ArchiveEntry
from .compression import copy_file, open_output_stream, remove_partial
from .errors import ReadFailure, SourceNotFound, WriteFailure
from .patterns import PathFilter


HEADER_LENGTH = struct.Struct('>I')
GZIP_MAGIC = b'\x1f\x8b'
METADATA_FIELDS = ('mtime', 'mode', 'uid', 'gid')


@dataclass(frozen=True)
class EncodeResult:
    """Frame bytes written (before compression) and number of files stored."""
    size_bytes: int
    file_count: int


class ArchiveEncoder:
    """
    Encodes a directory tree into a single archive file.

    Entries are visited in sorted order. Exclude patterns prune files and
    directories; include patterns select files only.
    """

    def __init__(
        self,
        root_path: str,
        path_filter: Optional[PathFilter] = None,
        max_file_size: Optional[int] = None,
        follow_symlinks: bool = False,
        preserve_metadata: bool = False,
        compress: bool = False,
        log: Optional[BackupLog] = None
    ):
        """
        Initialize archive encoder.

        Args:
            root_path: Directory to encode
            path_filter: Include/exclude filter (default: accept everything)
            max_file_size: Skip files larger than this many bytes
            follow_symlinks: Descend into / store symlink targets instead of skipping them
            preserve_metadata: Store mtime, mode, uid and gid in frame headers
            compress: Gzip the whole frame stream
            log: Log sink
        """
        self.root_path = os.path.abspath(root_path)
        self.path_filter = path_filter or PathFilter()
        self.max_file_size = max_file_size
        self.follow_symlinks = follow_symlinks
        self.preserve_metadata = preserve_metadata
        self.compress = compress
        self.log = log or BackupLog()

    def encode(self, destination_path: str) -> EncodeResult:
        """
        Write the archive.

        Args:
            destination_path: Archive file to create

        Returns:
            EncodeResult with total frame bytes and file count

        Raises:
            SourceNotFound: If the root directory is missing or unreadable
            WriteFailure: If the archive cannot be opened or written
        """
        self._check_root()

        size_bytes = 0
        file_count = 0

        try:
            with open_output_stream(destination_path, self.compress) as stream:
                for full_path, relative_path in self.iter_files():
                    written = self._write_frame(stream, full_path, relative_path)
                    if written is None:
                        continue
                    size_bytes += written
                    file_count += 1
        except WriteFailure:
            remove_partial(destination_path)
            raise
        except OSError as e:
            remove_partial(destination_path)
            raise WriteFailure(f"Failed to write archive {destination_path}: {e}") from e

        return EncodeResult(size_bytes=size_bytes, file_count=file_count)

    def iter_files(self) -> Iterator[Tuple[str, str]]:
        """
        Enumerate eligible files lazily.

        Yields:
            (absolute path, '/'-separated path relative to the root)
        """
        visited: Set[str] = {os.path.realpath(self.root_path)}
        yield from self._scan(self.root_path, '', visited)

    def _check_root(self):
        if not os.path.exists(self.root_path):
            raise SourceNotFound(f"Directory not found: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise SourceNotFound(f"Not a directory: {self.root_path}")
        try:
            with os.scandir(self.root_path):
                pass
        except OSError as e:
            raise SourceNotFound(f"Cannot read directory {self.root_path}: {e}") from e

    def _scan(self, directory: str, prefix: str, visited: Set[str]) -> Iterator[Tuple[str, str]]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self.log.warning(f"Skipping unreadable directory {directory}: {e}")
            return

        for entry in entries:
            relative_path = f"{prefix}{entry.name}"

            if self.path_filter.is_excluded(relative_path):
                self.log.debug(f"Excluded: {relative_path}")
                continue

            try:
                if entry.is_symlink():
                    if not self.follow_symlinks:
                        self.log.debug(f"Skipping symlink: {relative_path}")
                        continue
                    is_dir = entry.is_dir(follow_symlinks=True)
                    is_file = entry.is_file(follow_symlinks=True)
                else:
                    is_dir = entry.is_dir(follow_symlinks=False)
                    is_file = entry.is_file(follow_symlinks=False)
            except OSError as e:
                self.log.warning(f"Cannot stat {entry.path}: {e}")
                continue

            if is_dir:
                real = os.path.realpath(entry.path)
                if real in visited:
                    self.log.warning(f"Skipping symlink cycle: {relative_path}")
                    continue
                visited.add(real)
                yield from self._scan(entry.path, f"{relative_path}/", visited)
            elif is_file:
                if not self.path_filter.is_included(relative_path):
                    continue
                if self.max_file_size is not None and self._too_large(entry):
                    self.log.debug(f"Skipping file larger than {self.max_file_size} bytes: {relative_path}")
                    continue
                yield entry.path, relative_path

    def _too_large(self, entry: os.DirEntry) -> bool:
        try:
            return entry.stat(follow_symlinks=True).st_size > self.max_file_size
        except OSError:
            # Unstattable files fail again at read time and are skipped there
            return False

    def _write_frame(self, stream: BinaryIO, full_path: str, relative_path: str) -> Optional[int]:
        """
        Write one file as a frame.

        Returns:
            Bytes written, or None if the file could not be read
        """
        try:
            with open(full_path, 'rb') as f:
                file_stat = os.fstat(f.fileno())
                content = f.read()
        except OSError as e:
            self.log.warning(f"Skipping unreadable file {relative_path}: {e}")
            return None

        entry = ArchiveEntry(
            relative_path=relative_path,
            size_bytes=len(content),
            metadata=_stat_metadata(file_stat) if self.preserve_metadata else None
        )
        header = encode_header(entry)

        stream.write(header)
        stream.write(content)
        return len(header) + len(content)


def encode_header(entry: ArchiveEntry) -> bytes:
    """Serialize the length prefix and JSON header of a frame."""
    header_json = json.dumps(entry.header(), separators=(',', ':'), ensure_ascii=False).encode('utf-8')
    return HEADER_LENGTH.pack(len(header_json)) + header_json


def _stat_metadata(file_stat: os.stat_result) -> Dict[str, int]:
    return {
        'mtime': int(file_stat.st_mtime * 1000),
        'mode': file_stat.st_mode,
        'uid': file_stat.st_uid,
        'gid': file_stat.st_gid
    }


def encode_file(
    source_path: str,
    destination_path: str,
    compress: bool = False,
    preserve_metadata: bool = False,
    log: Optional[BackupLog] = None
) -> int:
    """
    Back up a single file by copying it, optionally through gzip.

    With preserve_metadata a JSON sidecar is written to
    '<destination>.meta'; failing to write it is logged, not raised.

    Args:
        source_path: File to back up
        destination_path: Artifact path
        compress: Gzip the copy
        preserve_metadata: Write the metadata sidecar
        log: Log sink

    Returns:
        Size of the artifact in bytes

    Raises:
        SourceNotFound: If the source file is missing
        ReadFailure / WriteFailure: If copying fails
    """
    log = log or BackupLog()

    if not os.path.isfile(source_path):
        raise SourceNotFound(f"File not found: {source_path}")

    source_stat = os.stat(source_path)
    try:
        size = copy_file(source_path, destination_path, compress)
    except (ReadFailure, WriteFailure):
        remove_partial(destination_path)
        raise

    if preserve_metadata:
        write_metadata_sidecar(source_path, destination_path, source_stat, log)

    return size


def write_metadata_sidecar(source_path: str, destination_path: str, source_stat: os.stat_result,
                           log: BackupLog) -> Optional[str]:
    """Write '<destination>.meta' describing the source file."""
    metadata_path = f"{destination_path}.meta"
    metadata = {
        'originalPath': source_path,
        'mtime': int(source_stat.st_mtime * 1000),
        'atime': int(source_stat.st_atime * 1000),
        'mode': source_stat.st_mode,
        'uid': source_stat.st_uid,
        'gid': source_stat.st_gid,
        'size': source_stat.st_size
    }
    try:
        with open(metadata_path, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2)
    except OSError as e:
        log.warning(f"Failed to write metadata for {source_path}: {e}")
        return None
    return metadata_path


def _open_archive(path: str) -> Tuple[BinaryIO, BinaryIO]:
    """Return (decoded stream, underlying file); callers close both."""
    try:
        raw = open(path, 'rb')
    except OSError as e:
        raise SourceNotFound(f"Cannot open archive {path}: {e}") from e

    magic = raw.read(2)
    raw.seek(0)
    if magic == GZIP_MAGIC:
        return gzip.GzipFile(fileobj=raw, mode='rb'), raw
    return raw, raw


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def iter_archive(path: str) -> Iterator[Tuple[ArchiveEntry, bytes]]:
    """
    Read frames from an archive, one payload at a time.

    Args:
        path: Archive file (plain or gzip-compressed)

    Yields:
        (ArchiveEntry, payload bytes)

    Raises:
        SourceNotFound: If the archive cannot be opened
        ReadFailure: If a frame is truncated or its header is malformed
    """
    stream, raw = _open_archive(path)
    try:
        while True:
            prefix = _read_exact(stream, HEADER_LENGTH.size)
            if not prefix:
                return
            if len(prefix) < HEADER_LENGTH.size:
                raise ReadFailure(f"Truncated frame length in {path}")

            (header_length,) = HEADER_LENGTH.unpack(prefix)
            raw_header = _read_exact(stream, header_length)
            if len(raw_header) < header_length:
                raise ReadFailure(f"Truncated frame header in {path}")

            try:
                header = json.loads(raw_header.decode('utf-8'))
                relative_path = header['path']
                size = int(header['size'])
            except (ValueError, KeyError, TypeError) as e:
                raise ReadFailure(f"Malformed frame header in {path}: {e}") from e

            payload = _read_exact(stream, size)
            if len(payload) < size:
                raise ReadFailure(f"Truncated payload for {relative_path} in {path}")

            metadata = {key: header[key] for key in METADATA_FIELDS if key in header}
            yield ArchiveEntry(relative_path=relative_path, size_bytes=size, metadata=metadata or None), payload
    except (OSError, EOFError) as e:
        raise ReadFailure(f"Failed to read archive {path}: {e}") from e
    finally:
        # GzipFile does not close a fileobj it was handed
        stream.close()
        raw.close()


def list_archive(path: str) -> List[ArchiveEntry]:
    """Return the entries stored in an archive."""
    return [entry for entry, _ in iter_archive(path)]


def _safe_target(destination: str, relative_path: str) -> str:
    parts = PurePosixPath(relative_path.replace('\\', '/')).parts
    drive = re.fullmatch(r'[A-Za-z]:', parts[0]) if parts else None
    if not parts or relative_path.startswith(('/', '\\')) or '..' in parts or drive:
        raise ReadFailure(f"Unsafe path in archive: {relative_path}")
    return os.path.join(destination, *parts)


def extract_archive(path: str, destination: str, log: Optional[BackupLog] = None) -> List[ArchiveEntry]:
    """
    Restore the files of an archive under a destination directory.

    Stored mtime and permission bits are re-applied when present.

    Args:
        path: Archive file
        destination: Directory to restore into (created if missing)
        log: Log sink

    Returns:
        Restored entries

    Raises:
        ReadFailure: On a corrupt archive or an unsafe entry path
        WriteFailure: If a file cannot be written
    """
    log = log or BackupLog()
    os.makedirs(destination, exist_ok=True)
    restored = []

    for entry, payload in iter_archive(path):
        target = _safe_target(destination, entry.relative_path)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, 'wb') as f:
                f.write(payload)
            if entry.metadata:
                if 'mode' in entry.metadata:
                    os.chmod(target, stat.S_IMODE(entry.metadata['mode']))
                if 'mtime' in entry.metadata:
                    seconds = entry.metadata['mtime'] / 1000
                    os.utime(target, (seconds, seconds))
        except OSError as e:
            raise WriteFailure(f"Failed to restore {entry.relative_path}: {e}") from e

        log.debug(f"Restored {entry.relative_path} ({entry.size_bytes} bytes)")
        restored.append(entry)

    return restored
