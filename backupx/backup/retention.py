"""
Retention policy enforcement for backups.

Prunes artifacts directly under the output directory by count (keep the N
newest) and by age (delete anything older than max_age days). The pass works
on the directory contents, not on the results of the current run, so it also
reaps artifacts from earlier runs.
"""

import os
import time
from dataclasses import dataclass
from typing import List, Optional

from backupx.logs import BackupLog
from backupx.models import RetentionPolicy
from .errors import CleanupFailure


SECONDS_PER_DAY = 60 * 60 * 24
ARTIFACT_SUFFIXES = ('.sql', '.tar', '.tar.gz')


def is_backup_artifact(filename: str) -> bool:
    """
    Heuristic for files produced by a backup run.

    Matches the SQL/archive extensions and any name carrying the '_'
    separator of the {name}_{timestamp} naming scheme.
    """
    return filename.endswith(ARTIFACT_SUFFIXES) or '_' in filename


@dataclass
class Artifact:
    """A candidate file in the output directory"""
    name: str
    path: str
    mtime: float

    def age_days(self, now: float) -> float:
        return (now - self.mtime) / SECONDS_PER_DAY


class RetentionManager:
    """
    Applies a RetentionPolicy to an output directory.

    Never raises from cleanup(): failures are logged and the pass stops or
    skips the affected file.
    """

    def __init__(self, log: Optional[BackupLog] = None):
        """
        Initialize retention manager.

        Args:
            log: Log sink
        """
        self.log = log or BackupLog()

    def cleanup(self, output_path: str, policy: RetentionPolicy) -> int:
        """
        Delete expired artifacts.

        Args:
            output_path: Output directory to prune
            policy: Count and/or age limits

        Returns:
            Number of files removed
        """
        removed = 0
        try:
            for artifact in self.select_expired(self.list_artifacts(output_path), policy):
                try:
                    os.remove(artifact.path)
                except OSError as e:
                    self.log.warning(f"Failed to remove old backup {artifact.path}: {e}")
                    continue
                removed += 1
                self.log.info(f"Removed old backup: {artifact.path}")
        except Exception as e:
            self.log.error(f"Retention cleanup aborted: {e}")

        return removed

    def list_artifacts(self, output_path: str) -> List[Artifact]:
        """
        List candidate artifacts, newest first.

        Raises:
            CleanupFailure: If the directory cannot be listed
        """
        artifacts = []
        try:
            with os.scandir(output_path) as it:
                entries = list(it)
        except OSError as e:
            raise CleanupFailure(f"Cannot list {output_path}: {e}") from e

        for entry in entries:
            if not is_backup_artifact(entry.name):
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                mtime = entry.stat(follow_symlinks=False).st_mtime
            except OSError as e:
                self.log.warning(f"Cannot stat {entry.path}: {e}")
                continue
            artifacts.append(Artifact(name=entry.name, path=entry.path, mtime=mtime))

        artifacts.sort(key=lambda a: a.mtime, reverse=True)
        return artifacts

    def select_expired(self, artifacts: List[Artifact], policy: RetentionPolicy,
                       now: Optional[float] = None) -> List[Artifact]:
        """
        Pick artifacts to delete: beyond the count limit or older than max_age.

        Args:
            artifacts: Candidates sorted newest first
            policy: Retention policy
            now: Reference time (default: current time)

        Returns:
            Union of both selections, newest first
        """
        now = time.time() if now is None else now
        expired = []

        if policy.count is not None and len(artifacts) > policy.count:
            expired.extend(artifacts[policy.count:])

        if policy.max_age is not None:
            marked = {a.path for a in expired}
            for artifact in artifacts:
                if artifact.path not in marked and artifact.age_days(now) > policy.max_age:
                    expired.append(artifact)

        expired.sort(key=lambda a: a.mtime, reverse=True)
        return expired


def enforce_retention(output_path: str, policy: RetentionPolicy, log: Optional[BackupLog] = None) -> int:
    """
    Apply a retention policy to a directory.

    Returns:
        Number of files removed
    """
    return RetentionManager(log).cleanup(output_path, policy)
