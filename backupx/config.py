import json
import os
from typing import Any, Dict, List, Optional

import yaml

from backupx.models import (
    DATABASE_KINDS,
    BackupConfig,
    BackupTarget,
    DatabaseTarget,
    FileTarget,
    RetentionPolicy,
    TargetKind
)


class Config:
    """Process-wide defaults"""

    # Output
    OUTPUT_PATH = os.environ.get('BACKUPX_OUTPUT_PATH') or './backups'

    # Configuration file; searched in the working directory when unset
    CONFIG_FILE = os.environ.get('BACKUPX_CONFIG')
    CONFIG_SEARCH = ('backupx.json', 'backupx.yaml', 'backupx.yml')

    # Logging
    VERBOSE = True
    LOG_DIR = os.environ.get('BACKUPX_LOG_DIR')
    LOG_LEVEL = os.environ.get('BACKUPX_LOG_LEVEL')

    # Retention
    RETENTION_COUNT = 5
    RETENTION_MAX_AGE = 30  # Days

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__('; '.join(self.errors))


def default_config() -> BackupConfig:
    return BackupConfig(
        targets=[],
        output_path=Config.OUTPUT_PATH,
        retention=RetentionPolicy(count=Config.RETENTION_COUNT, max_age=Config.RETENTION_MAX_AGE),
        verbose=Config.VERBOSE
    )


def find_config_file(path: Optional[str] = None) -> str:
    """
    Locate the configuration file.

    Args:
        path: Explicit path; falls back to BACKUPX_CONFIG, then the search list

    Returns:
        Path to an existing file

    Raises:
        ConfigError: If no configuration file can be found
    """
    candidates = [path] if path else ([Config.CONFIG_FILE] if Config.CONFIG_FILE else list(Config.CONFIG_SEARCH))
    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    raise ConfigError(f"No configuration file found (tried: {', '.join(candidates)})")


def load_config(path: Optional[str] = None) -> BackupConfig:
    """
    Load and validate a JSON or YAML configuration file.

    Args:
        path: Configuration file path

    Returns:
        Validated BackupConfig

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    config_path = find_config_file(path)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            if config_path.endswith(('.yaml', '.yml')):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e

    return parse_config(data or {})


def _get(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Read a camelCase key, accepting its snake_case spelling too."""
    if key in data:
        return data[key]
    snake = ''.join(f"_{c.lower()}" if c.isupper() else c for c in key)
    return data.get(snake, default)


def _parse_target(data: Any, errors: List[str], default_type: Optional[str] = None) -> Optional[BackupTarget]:
    if not isinstance(data, dict):
        errors.append(f"Target must be a mapping, got: {data!r}")
        return None

    name = data.get('name') or ''
    target_type = data.get('type', default_type)

    if target_type == 'file':
        return FileTarget(
            name=name,
            path=data.get('path') or '',
            compress=bool(data.get('compress', False)),
            include=data.get('include'),
            exclude=data.get('exclude'),
            max_file_size=_get(data, 'maxFileSize'),
            follow_symlinks=bool(_get(data, 'followSymlinks', False)),
            preserve_metadata=bool(_get(data, 'preserveMetadata', False)),
            filename=data.get('filename'),
            verbose=data.get('verbose')
        )

    try:
        kind = TargetKind(target_type)
    except ValueError:
        kind = None
    if kind not in DATABASE_KINDS:
        errors.append(f"Unsupported target type for '{name or '?'}': {target_type}")
        return None

    return DatabaseTarget(
        kind=kind,
        name=name,
        connection=data.get('connection'),
        path=data.get('path'),
        tables=data.get('tables'),
        exclude_tables=_get(data, 'excludeTables'),
        include_schema=bool(_get(data, 'includeSchema', True)),
        include_data=bool(_get(data, 'includeData', True)),
        compress=bool(data.get('compress', False)),
        filename=data.get('filename'),
        verbose=data.get('verbose')
    )


def parse_config(data: Dict[str, Any]) -> BackupConfig:
    """
    Build a BackupConfig from a decoded configuration document.

    Targets are taken from 'targets', then 'databases', then 'files'.
    Missing top-level keys fall back to defaults; 'retention: null'
    disables retention.

    Raises:
        ConfigError: Listing every problem found
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    defaults = default_config()
    errors: List[str] = []
    targets: List[BackupTarget] = []

    for key, default_type in (('targets', None), ('databases', None), ('files', 'file')):
        for item in data.get(key) or []:
            target = _parse_target(item, errors, default_type)
            if target is not None:
                targets.append(target)

    retention = defaults.retention
    if 'retention' in data:
        raw = data['retention']
        if raw is None:
            retention = None
        elif isinstance(raw, dict):
            retention = RetentionPolicy(count=raw.get('count'), max_age=_get(raw, 'maxAge'))
        else:
            errors.append("retention must be a mapping or null")

    config = BackupConfig(
        targets=targets,
        output_path=_get(data, 'outputPath') or defaults.output_path,
        retention=retention,
        verbose=bool(data.get('verbose', defaults.verbose))
    )

    errors.extend(collect_errors(config))
    if errors:
        raise ConfigError(errors)
    return config


def collect_errors(config: BackupConfig) -> List[str]:
    """Return every validation problem of a configuration."""
    errors = []
    seen = set()

    for target in config.targets:
        if not target.name:
            errors.append(f"Missing required field: name ({target!r})")
        elif target.name in seen:
            errors.append(f"Duplicate target name: {target.name}")
        seen.add(target.name)

        if isinstance(target, FileTarget):
            if not target.path:
                errors.append(f"Missing required field: path ({target.name})")
            if target.max_file_size is not None and (
                not isinstance(target.max_file_size, int) or target.max_file_size < 0
            ):
                errors.append(f"maxFileSize must be a non-negative integer ({target.name})")
        elif isinstance(target, DatabaseTarget):
            if target.kind == TargetKind.SQLITE:
                if not (target.path or isinstance(target.connection, str)):
                    errors.append(f"Missing required field: path ({target.name})")
            elif not target.connection:
                errors.append(f"Missing required field: connection ({target.name})")
        else:
            errors.append(f"Unsupported target: {target!r}")

    retention = config.retention
    if retention is not None:
        if retention.count is not None and (not isinstance(retention.count, int) or retention.count < 1):
            errors.append("retention.count must be a positive integer")
        if retention.max_age is not None and (
            not isinstance(retention.max_age, (int, float)) or retention.max_age <= 0
        ):
            errors.append("retention.maxAge must be a positive number of days")

    return errors


def validate_config(config: BackupConfig):
    """
    Validate a configuration built in code.

    Raises:
        ConfigError: Listing every problem found
    """
    errors = collect_errors(config)
    if errors:
        raise ConfigError(errors)
