"""
Source adapters for backup targets.

Every adapter turns one target into one artifact in the output directory
and returns a BackupResult:
- FileSource: copies a single file (optionally gzipped, with metadata sidecar)
- DirectorySource: encodes a directory tree into an archive
- SQLiteSource, PostgreSQLSource, MySQLSource: SQL dumps (see databases.py)

Adapters raise on failure; the executor turns exceptions into failed results.
"""

import os
import time
from typing import Optional, Tuple

from backupx.logs import BackupLog
from backupx.models import BackupResult, BackupTarget, DatabaseTarget, FileTarget, TargetKind
from .archive import ArchiveEncoder, encode_file
from .compression import directory_extension, file_extension, format_bytes, generate_backup_filename
from .errors import SourceNotFound, UnsupportedKind
from .patterns import PathFilter


class Source:
    """
    Base adapter: names the artifact, times the work and builds the result.

    Subclasses set `kind` and implement extension() and write().
    """

    kind: TargetKind = None

    def __init__(self, target: BackupTarget, log: Optional[BackupLog] = None):
        self.target = target
        self.log = log or BackupLog()

    @property
    def base_name(self) -> str:
        return self.target.filename or self.target.name

    def extension(self) -> str:
        raise NotImplementedError

    def write(self, output_path: str) -> Tuple[int, Optional[int]]:
        """
        Produce the artifact.

        Returns:
            (artifact size in bytes, file count or None)
        """
        raise NotImplementedError

    def backup(self, output_dir: str) -> BackupResult:
        """
        Back up the target into output_dir.

        Args:
            output_dir: Existing output directory

        Returns:
            Successful BackupResult

        Raises:
            BackupError: If the backup fails
        """
        start = time.perf_counter()
        filename = generate_backup_filename(self.base_name, self.extension())
        output_path = os.path.join(output_dir, filename)

        self.log.info(f"Starting {self.kind} backup for: {self.target.name}")
        self.log.info(f"Output: {output_path}")

        size_bytes, file_count = self.write(output_path)
        duration_ms = (time.perf_counter() - start) * 1000

        self.log.info(f"{self.kind} backup completed in {duration_ms:.2f}ms ({format_bytes(size_bytes)})")

        return BackupResult(
            name=self.target.name,
            kind=self.kind,
            output_filename=filename,
            size_bytes=size_bytes,
            duration_ms=duration_ms,
            success=True,
            file_count=file_count
        )


class FileSource(Source):
    """Copies a single file into the output directory."""

    kind = TargetKind.FILE

    def extension(self) -> str:
        return file_extension(self.target.path, self.target.compress)

    def write(self, output_path: str) -> Tuple[int, Optional[int]]:
        self.log.info(f"File size: {format_bytes(os.path.getsize(self.target.path))}")
        size = encode_file(
            self.target.path,
            output_path,
            compress=self.target.compress,
            preserve_metadata=self.target.preserve_metadata,
            log=self.log
        )
        return size, 1


class DirectorySource(Source):
    """Encodes a directory tree into a single archive."""

    kind = TargetKind.DIRECTORY

    def extension(self) -> str:
        return directory_extension(self.target.compress)

    def write(self, output_path: str) -> Tuple[int, Optional[int]]:
        encoder = ArchiveEncoder(
            self.target.path,
            path_filter=PathFilter(self.target.include, self.target.exclude),
            max_file_size=self.target.max_file_size,
            follow_symlinks=self.target.follow_symlinks,
            preserve_metadata=self.target.preserve_metadata,
            compress=self.target.compress,
            log=self.log
        )
        result = encoder.encode(output_path)
        self.log.info(f"Archived {result.file_count} files")
        return result.size_bytes, result.file_count


def create_source(target: BackupTarget, log: Optional[BackupLog] = None) -> Source:
    """
    Factory function to create the adapter for a target.

    File targets are classified by stat: directories get a DirectorySource,
    anything else a FileSource.

    Args:
        target: Target to back up
        log: Log sink for the adapter

    Returns:
        Source instance

    Raises:
        SourceNotFound: If a file target's path does not exist
        UnsupportedKind: If no adapter handles the target kind
    """
    from .databases import DATABASE_SOURCES

    if isinstance(target, FileTarget):
        if not os.path.exists(target.path):
            raise SourceNotFound(f"Path not found: {target.path}")
        if os.path.isdir(target.path):
            return DirectorySource(target, log)
        return FileSource(target, log)

    if isinstance(target, DatabaseTarget):
        source_class = DATABASE_SOURCES.get(target.kind)
        if source_class is not None:
            return source_class(target, log)

    raise UnsupportedKind(f"Unsupported target type: {getattr(target, 'kind', type(target).__name__)}")
