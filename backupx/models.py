"""
Data model for backup runs.

A run consumes a read-only BackupConfig (an ordered list of targets plus the
output directory and retention policy) and produces one BackupResult per
target, folded into a BackupSummary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class TargetKind(str, Enum):
    """Kinds of backup targets and of the results they produce."""
    SQLITE = 'sqlite'
    POSTGRESQL = 'postgresql'
    MYSQL = 'mysql'
    FILE = 'file'
    DIRECTORY = 'directory'

    def __str__(self):
        return self.value


DATABASE_KINDS = (TargetKind.SQLITE, TargetKind.POSTGRESQL, TargetKind.MYSQL)


@dataclass
class DatabaseTarget:
    """A relational database to dump as SQL text"""
    kind: TargetKind
    name: str
    connection: Union[str, Dict[str, Any], None] = None
    path: Optional[str] = None  # SQLite database file
    tables: Optional[List[str]] = None
    exclude_tables: Optional[List[str]] = None
    include_schema: bool = True
    include_data: bool = True
    compress: bool = False
    filename: Optional[str] = None  # Base name override
    verbose: Optional[bool] = None  # None = inherit batch setting

    def __repr__(self):
        return f'<DatabaseTarget {self.name} kind={self.kind}>'


@dataclass
class FileTarget:
    """A file or directory tree to copy or encode into an archive"""
    name: str
    path: str
    compress: bool = False
    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    max_file_size: Optional[int] = None
    follow_symlinks: bool = False
    preserve_metadata: bool = False
    filename: Optional[str] = None
    verbose: Optional[bool] = None

    @property
    def kind(self) -> TargetKind:
        return TargetKind.FILE

    def __repr__(self):
        return f'<FileTarget {self.name} path={self.path}>'


BackupTarget = Union[DatabaseTarget, FileTarget]


@dataclass
class RetentionPolicy:
    """Either axis may be None, which disables it."""
    count: Optional[int] = None
    max_age: Optional[float] = None  # Days

    @property
    def enabled(self) -> bool:
        return self.count is not None or self.max_age is not None


@dataclass
class BackupConfig:
    """Input of one orchestration run"""
    targets: List[BackupTarget] = field(default_factory=list)
    output_path: str = './backups'
    retention: Optional[RetentionPolicy] = None
    verbose: bool = True


@dataclass(frozen=True)
class BackupResult:
    """Outcome of backing up a single target"""
    name: str
    kind: TargetKind
    output_filename: str
    size_bytes: int
    duration_ms: float
    success: bool
    error: Optional[str] = None
    file_count: Optional[int] = None

    @classmethod
    def failed(cls, name: str, kind: TargetKind, error: str, duration_ms: float = 0.0,
               file_count: Optional[int] = None) -> 'BackupResult':
        return cls(
            name=name,
            kind=kind,
            output_filename='',
            size_bytes=0,
            duration_ms=duration_ms,
            success=False,
            error=error,
            file_count=file_count
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': str(self.kind),
            'output_filename': self.output_filename,
            'size_bytes': self.size_bytes,
            'duration_ms': self.duration_ms,
            'success': self.success,
            'error': self.error,
            'file_count': self.file_count
        }


@dataclass(frozen=True)
class BackupSummary:
    """Results of a run, in configuration order"""
    results: List[BackupResult]
    total_duration_ms: float
    success_count: int
    failure_count: int

    @property
    def by_kind(self) -> Dict[TargetKind, List[BackupResult]]:
        partition: Dict[TargetKind, List[BackupResult]] = {}
        for result in self.results:
            partition.setdefault(result.kind, []).append(result)
        return partition

    @property
    def ok(self) -> bool:
        return self.failure_count == 0


@dataclass(frozen=True)
class ArchiveEntry:
    """One file stored in an archive; path is relative and '/'-separated."""
    relative_path: str
    size_bytes: int
    metadata: Optional[Dict[str, int]] = None

    def header(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'path': self.relative_path, 'size': self.size_bytes}
        if self.metadata:
            data.update(self.metadata)
        return data
