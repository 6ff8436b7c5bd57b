"""
Log sink passed into every backup component.

Each component receives a BackupLog instead of reaching for a module-level
logger, so a run can capture its own diagnostics and targets can override
the batch verbosity.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import List, Optional


class BackupLog:
    """
    Collects timestamped log lines and forwards them to a logger.

    When verbose, messages go out at their own level; otherwise everything
    is demoted to DEBUG. Lines are always recorded.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, verbose: bool = True,
                 lines: Optional[List[str]] = None, max_lines: Optional[int] = None):
        """
        Initialize log sink.

        Args:
            logger: Logger to forward messages to (default: 'backupx')
            verbose: Whether messages are emitted at their own level
            lines: Shared line buffer (used by child sinks)
            max_lines: Keep only the most recent lines (default: unbounded)
        """
        self.logger = logger or logging.getLogger('backupx')
        self.verbose = verbose
        if lines is None:
            lines = deque(maxlen=max_lines) if max_lines else []
        self.lines = lines

    def child(self, verbose: Optional[bool] = None, name: Optional[str] = None) -> 'BackupLog':
        """
        Derive a sink for one target.

        Args:
            verbose: Target-level verbosity; None inherits this sink's setting
            name: Optional child logger suffix

        Returns:
            BackupLog sharing this sink's line buffer
        """
        logger = self.logger.getChild(name) if name else self.logger
        return BackupLog(
            logger=logger,
            verbose=self.verbose if verbose is None else verbose,
            lines=self.lines
        )

    def debug(self, message: str):
        self._emit(logging.DEBUG, message)

    def info(self, message: str):
        self._emit(logging.INFO, message)

    def warning(self, message: str):
        self._emit(logging.WARNING, message)

    def error(self, message: str):
        self._emit(logging.ERROR, message)

    def _emit(self, level: int, message: str):
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.lines.append(f"[{timestamp}] {message}")
        self.logger.log(level if self.verbose else logging.DEBUG, message)
