"""
Backup module for backupx.

This module handles the core backup functionality including:
- Include/exclude pattern matching
- Streaming archive encoding and decoding
- File, directory and database source adapters
- Execution orchestration
- Retention policy enforcement
"""

from .archive import ArchiveEncoder, encode_file, extract_archive, iter_archive, list_archive
from .errors import (
    BackupError,
    CleanupFailure,
    ReadFailure,
    SourceNotFound,
    UnsupportedKind,
    WriteFailure
)
from .executor import BackupManager, create_backup, format_summary, summarize
from .patterns import PathFilter, matches
from .retention import RetentionManager, enforce_retention
from .sources import DirectorySource, FileSource, create_source

__all__ = [
    'ArchiveEncoder',
    'encode_file',
    'extract_archive',
    'iter_archive',
    'list_archive',
    'BackupError',
    'CleanupFailure',
    'ReadFailure',
    'SourceNotFound',
    'UnsupportedKind',
    'WriteFailure',
    'BackupManager',
    'create_backup',
    'format_summary',
    'summarize',
    'PathFilter',
    'matches',
    'RetentionManager',
    'enforce_retention',
    'DirectorySource',
    'FileSource',
    'create_source'
]
