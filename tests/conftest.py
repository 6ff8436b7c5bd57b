"""
Shared pytest fixtures for backupx tests.

This module provides fixtures for:
- Source directory trees and single files
- Output directories
- A populated SQLite database
- Backup configurations
- Log sinks
"""

import json
import os
import sqlite3
import time

import pytest

from backupx.logs import BackupLog
from backupx.models import BackupConfig, DatabaseTarget, FileTarget, RetentionPolicy, TargetKind


@pytest.fixture
def log():
    """Quiet log sink whose lines can be inspected."""
    return BackupLog(verbose=False)


@pytest.fixture
def output_dir(tmp_path):
    """Empty output directory."""
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source directory tree.

    Creates:
    - app.js, config.json, README.md, temp.log
    - images/photo.jpg, images/icon.png
    - docs/guide.md, docs/api.txt
    - temp/cache.tmp
    """
    root = tmp_path / 'source'
    (root / 'images').mkdir(parents=True)
    (root / 'docs').mkdir()
    (root / 'temp').mkdir()

    (root / 'app.js').write_text('console.log("Hello World")')
    (root / 'config.json').write_text('{"version": "1.0"}')
    (root / 'README.md').write_text('# Test Project')
    (root / 'temp.log').write_text('log content')
    (root / 'images' / 'photo.jpg').write_bytes(b'fake jpg content')
    (root / 'images' / 'icon.png').write_bytes(b'fake png content')
    (root / 'docs' / 'guide.md').write_text('# User Guide')
    (root / 'docs' / 'api.txt').write_text('API documentation')
    (root / 'temp' / 'cache.tmp').write_text('cache data')

    return root


@pytest.fixture
def small_tree(tmp_path):
    """
    Directory with a.txt (5 bytes), b/c.txt (empty) and excluded.tmp.
    """
    root = tmp_path / 'small'
    (root / 'b').mkdir(parents=True)
    (root / 'a.txt').write_bytes(b'hello')
    (root / 'b' / 'c.txt').write_bytes(b'')
    (root / 'excluded.tmp').write_bytes(b'temporary')
    return root


@pytest.fixture
def sample_file(tmp_path):
    """Single text file to back up."""
    path = tmp_path / 'notes.txt'
    path.write_text('Some important notes\n' * 50)
    return path


@pytest.fixture
def sqlite_db(tmp_path):
    """
    Create a SQLite database with two tables, an index and a trigger.
    """
    path = tmp_path / 'app.sqlite'
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, avatar BLOB);
        CREATE TABLE logs (id INTEGER PRIMARY KEY, message TEXT);
        CREATE INDEX idx_users_name ON users (name);
        CREATE TRIGGER trg_users_insert AFTER INSERT ON users
        BEGIN
            INSERT INTO logs (message) VALUES ('user added');
        END;
    """)
    conn.execute("INSERT INTO users (name, avatar) VALUES (?, ?)", ("O'Brien", b'\x01\x02'))
    conn.execute("INSERT INTO users (name, avatar) VALUES (?, ?)", ('Alice', None))
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def make_artifacts(output_dir):
    """
    Factory creating artifacts with mtimes a given number of days in the past.
    """
    def _make(ages_in_days, extension='.sql'):
        now = time.time()
        paths = []
        for index, age in enumerate(ages_in_days):
            path = output_dir / f"db_{index:02d}{extension}"
            path.write_text(f"-- backup {index}")
            mtime = now - age * 24 * 60 * 60
            os.utime(path, (mtime, mtime))
            paths.append(path)
        return paths

    return _make


@pytest.fixture
def file_config(source_tree, sample_file, output_dir):
    """BackupConfig with one directory and one file target, no retention."""
    return BackupConfig(
        targets=[
            FileTarget(name='project', path=str(source_tree), compress=True),
            FileTarget(name='notes', path=str(sample_file)),
        ],
        output_path=str(output_dir),
        retention=None,
        verbose=False
    )


@pytest.fixture
def config_file(tmp_path, sqlite_db, source_tree, output_dir):
    """JSON configuration file covering every section."""
    path = tmp_path / 'backupx.json'
    path.write_text(json.dumps({
        'verbose': False,
        'outputPath': str(output_dir),
        'retention': {'count': 3, 'maxAge': 10},
        'databases': [
            {'type': 'sqlite', 'name': 'app-db', 'path': str(sqlite_db)},
        ],
        'files': [
            {'name': 'project', 'path': str(source_tree), 'exclude': ['*.log'], 'compress': True},
        ],
    }))
    return path


@pytest.fixture
def sqlite_target(sqlite_db):
    return DatabaseTarget(kind=TargetKind.SQLITE, name='app-db', path=str(sqlite_db))


@pytest.fixture
def retention_policy():
    return RetentionPolicy(count=2, max_age=30)
