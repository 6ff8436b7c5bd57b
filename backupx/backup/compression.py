"""
Artifact naming and gzip stream helpers.

Artifacts are named {base}_{timestamp}{extension} where the timestamp is an
ISO 8601 UTC instant with ':' and '.' replaced by '-', e.g.
app-db_2024-01-15T12-00-00-000Z.sql
"""

import gzip
import os
import re
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import BinaryIO, Iterator

from .errors import ReadFailure, WriteFailure


COPY_CHUNK_SIZE = 1024 * 1024


def create_timestamp() -> str:
    """
    Create a filesystem-safe UTC timestamp.

    Returns:
        Timestamp like 2024-01-15T12-00-00-000Z
    """
    now = datetime.now(timezone.utc)
    iso = now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"
    return re.sub(r'[:.]', '-', iso)


def sanitize_name(name: str) -> str:
    """Replace characters that are unsafe in filenames with underscores."""
    return "".join(
        c if c.isalnum() or c in ('-', '_', '.') else '_'
        for c in name
    )[:200]


def generate_backup_filename(base_name: str, extension: str) -> str:
    """
    Generate a standardized artifact filename.

    Args:
        base_name: Target name or explicit filename override
        extension: Extension including the leading dot ('.sql', '.tar.gz', '' ...)

    Returns:
        Filename (without path)
    """
    return f"{sanitize_name(base_name)}_{create_timestamp()}{extension}"


def directory_extension(compress: bool) -> str:
    return '.tar.gz' if compress else '.tar'


def file_extension(source_path: str, compress: bool) -> str:
    """Keep the source file's extension, adding .gz when compressing."""
    original = os.path.splitext(source_path)[1]
    return f"{original}.gz" if compress else original


@contextmanager
def open_output_stream(path: str, compress: bool = False) -> Iterator[BinaryIO]:
    """
    Open a binary destination stream, optionally through gzip.

    Args:
        path: Artifact path
        compress: Interpose a gzip compressor

    Yields:
        Writable binary stream

    Raises:
        WriteFailure: If the destination cannot be opened
    """
    try:
        raw = open(path, 'wb')
    except OSError as e:
        raise WriteFailure(f"Cannot open output file {path}: {e}") from e

    try:
        if compress:
            with gzip.GzipFile(fileobj=raw, mode='wb') as stream:
                yield stream
        else:
            yield raw
    finally:
        raw.close()


def copy_file(source_path: str, output_path: str, compress: bool = False) -> int:
    """
    Copy a single file into an artifact in fixed-size chunks.

    Args:
        source_path: File to copy
        output_path: Artifact path
        compress: Write through gzip

    Returns:
        Size of the written artifact in bytes

    Raises:
        ReadFailure: If the source cannot be opened
        WriteFailure: If the artifact cannot be written
    """
    try:
        src = open(source_path, 'rb')
    except OSError as e:
        raise ReadFailure(f"Cannot read {source_path}: {e}") from e

    with src, open_output_stream(output_path, compress) as dst:
        try:
            shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
        except OSError as e:
            raise WriteFailure(f"Failed to copy {source_path}: {e}") from e

    return get_artifact_size(output_path)


def get_artifact_size(path: str) -> int:
    """
    Get the size of an artifact in bytes.

    Raises:
        WriteFailure: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(path)
    except FileNotFoundError as e:
        raise WriteFailure(f"Artifact not found: {path}") from e
    except OSError as e:
        raise WriteFailure(f"Failed to get artifact size: {e}") from e


def remove_partial(path: str):
    """Delete a half-written artifact, ignoring a file that is already gone."""
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError:
        pass


def format_bytes(size: int) -> str:
    """Format a byte count as a human readable string."""
    if size == 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB', 'GB', 'TB']
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
