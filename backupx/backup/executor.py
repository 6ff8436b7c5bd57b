"""
Backup executor - orchestrates a batch of backup targets.

Workflow:
1. Ensure the output directory exists
2. Back up each target in configuration order, isolating failures
3. Apply the retention policy to the output directory (best-effort)
4. Fold the results into a BackupSummary
"""

import os
import time
from typing import Callable, List, Optional

from backupx.logs import BackupLog
from backupx.models import BackupConfig, BackupResult, BackupSummary, BackupTarget, FileTarget, TargetKind
from .compression import format_bytes
from .errors import WriteFailure
from .retention import RetentionManager
from .sources import Source, create_source


class BackupManager:
    """
    Runs every configured target one after another.

    A target that raises never aborts the batch: its exception becomes a
    failed BackupResult and the next target runs.
    """

    def __init__(
        self,
        config: BackupConfig,
        log: Optional[BackupLog] = None,
        source_factory: Callable[[BackupTarget, BackupLog], Source] = create_source
    ):
        """
        Initialize backup manager.

        Args:
            config: Batch configuration
            log: Log sink (default: 'backupx' logger with the batch verbosity)
            source_factory: Builds the adapter for a target
        """
        self.config = config
        self.log = log or BackupLog(verbose=config.verbose)
        self.source_factory = source_factory

    def run(self) -> BackupSummary:
        """
        Execute the batch.

        Returns:
            BackupSummary with one result per target, in configuration order
        """
        start = time.perf_counter()
        self.log.info("Starting backup process")

        output_path = self.config.output_path
        results: List[BackupResult] = []

        try:
            self._ensure_output_dir(output_path)
        except WriteFailure as e:
            self.log.error(str(e))
            results = [BackupResult.failed(t.name, _result_kind(t), str(e)) for t in self.config.targets]
        else:
            seen = set()
            for target in self.config.targets:
                if target.name in seen:
                    # Same name means same artifact filename; never overwrite
                    error = f"Duplicate target name: {target.name}"
                    self.log.error(error)
                    file_count = 0 if isinstance(target, FileTarget) else None
                    results.append(BackupResult.failed(target.name, _result_kind(target), error, file_count=file_count))
                    continue
                seen.add(target.name)
                results.append(self.backup_target(target, output_path))

            if self.config.retention is not None and self.config.retention.enabled:
                self._apply_retention(output_path)

        summary = summarize(results, (time.perf_counter() - start) * 1000)
        self.log.info(format_summary(summary))
        return summary

    def backup_target(self, target: BackupTarget, output_path: str) -> BackupResult:
        """
        Back up one target, converting any exception into a failed result.

        Args:
            target: Target to back up
            output_path: Output directory

        Returns:
            BackupResult (never raises)
        """
        target_log = self.log.child(verbose=target.verbose)
        target_log.info(f"Processing target: {target.name} ({target.kind})")
        start = time.perf_counter()

        try:
            source = self.source_factory(target, target_log)
            return source.backup(output_path)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            target_log.error(f"Failed to backup {target.name}: {e}")
            file_count = 0 if isinstance(target, FileTarget) else None
            return BackupResult.failed(target.name, _result_kind(target), str(e), duration_ms, file_count)

    def _ensure_output_dir(self, output_path: str):
        try:
            os.makedirs(output_path, exist_ok=True)
        except OSError as e:
            raise WriteFailure(f"Cannot create output directory {output_path}: {e}") from e

    def _apply_retention(self, output_path: str):
        try:
            removed = RetentionManager(self.log).cleanup(output_path, self.config.retention)
            if removed:
                self.log.info(f"Cleaned up {removed} old backup files")
        except Exception as e:
            self.log.error(f"Failed to cleanup old backups: {e}")


def _result_kind(target: BackupTarget) -> TargetKind:
    if isinstance(target, FileTarget) and os.path.isdir(target.path):
        return TargetKind.DIRECTORY
    return target.kind


def summarize(results: List[BackupResult], total_duration_ms: float) -> BackupSummary:
    """
    Fold results into a summary.

    Args:
        results: Results in configuration order
        total_duration_ms: Wall-clock duration of the whole run

    Returns:
        BackupSummary
    """
    success_count = sum(1 for r in results if r.success)
    return BackupSummary(
        results=list(results),
        total_duration_ms=total_duration_ms,
        success_count=success_count,
        failure_count=len(results) - success_count
    )


def format_summary(summary: BackupSummary) -> str:
    """Render the end-of-run report."""
    lines = [
        "Backup Summary:",
        f"Total duration: {summary.total_duration_ms:.2f}ms",
        f"Successful: {summary.success_count}",
        f"Failed: {summary.failure_count}",
    ]

    if summary.results:
        lines.append("Results:")
        for result in summary.results:
            status = 'OK' if result.success else 'FAILED'
            size = format_bytes(result.size_bytes) if result.success else 'N/A'
            lines.append(f"  [{status}] {result.name} ({result.kind}): {size} in {result.duration_ms:.2f}ms")
            if not result.success and result.error:
                lines.append(f"      Error: {result.error}")

    return '\n'.join(lines)


def create_backup(config: BackupConfig, log: Optional[BackupLog] = None) -> BackupSummary:
    """
    Run a batch with a fresh BackupManager.

    Args:
        config: Batch configuration
        log: Optional log sink

    Returns:
        BackupSummary
    """
    return BackupManager(config, log).run()
