"""
Unified logging setup for PlantSurveyor.

Defaults:
- INFO/DEBUG to stdout, WARNING and above to stderr
- Level INFO (overridable via env)
- Optional JSON format and an optional rotating file, both via env

Env options (optional):
- PLANTSURVEYOR_LOG_LEVEL=DEBUG|INFO|WARNING|ERROR (default INFO)
- PLANTSURVEYOR_LOG_JSON=1 (JSON formatting)
- PLANTSURVEYOR_LOG_FILE=/path/to/file.log (RotatingFileHandler)
- PLANTSURVEYOR_LOG_DIR=/path/to/dir (uses <service>.log when LOG_FILE unset)
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional


_INITIALIZED = False
_DEFAULT_SERVICE = ""

__all__ = [
    "setup_logging",
    "get_logger",
    "module_logger",
]


def _truthy(value: Optional[str]) -> bool:
    return str(value).lower() in ('1', 'true', 'yes', 'on')


class _ServiceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, 'service', None):
            record.service = _DEFAULT_SERVICE
        return True


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'name': record.name,
            'service': getattr(record, 'service', ''),
            'message': record.getMessage(),
        }
        component = getattr(record, 'component', None)
        if component:
            payload['component'] = component
        return json.dumps(payload, ensure_ascii=False)


class _MinLevelFilter(logging.Filter):
    def __init__(self, min_level: int):
        super().__init__()
        self.min_level = min_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.min_level


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _get_level(default: str = 'INFO') -> int:
    level = os.getenv('PLANTSURVEYOR_LOG_LEVEL', default).upper()
    return getattr(logging, level, logging.INFO)


def setup_logging(service: str = 'plantsurveyor', level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """Configure root logging once. Safe to call multiple times.

    Args:
        service: service label injected into every record
        level: optional level override (DEBUG/INFO/...) else from env
        json_format: optional flag to force JSON format, else from env
    """
    global _DEFAULT_SERVICE
    global _INITIALIZED

    if _INITIALIZED:
        return

    logger = logging.getLogger()
    logger.setLevel(_get_level(level or 'INFO'))

    use_json = _truthy(json_format) if json_format is not None else _truthy(os.getenv('PLANTSURVEYOR_LOG_JSON', ''))
    if use_json:
        formatter = _JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s [%(service)s] %(message)s')

    service_filter = _ServiceFilter()

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler.addFilter(service_filter)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    logger.addHandler(stdout_handler)

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(service_filter)
    stderr_handler.addFilter(_MinLevelFilter(logging.WARNING))
    logger.addHandler(stderr_handler)

    log_path = os.getenv('PLANTSURVEYOR_LOG_FILE')
    if not log_path:
        log_dir = os.getenv('PLANTSURVEYOR_LOG_DIR')
        if log_dir:
            log_path = str(Path(log_dir) / f'{service}.log')

    if log_path:
        try:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
            fh = logging.handlers.RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding='utf-8')
            fh.setFormatter(formatter)
            fh.addFilter(service_filter)
            logger.addHandler(fh)
        except OSError:
            logger.warning(f"Could not open log file {log_path}, using console only")

    _DEFAULT_SERVICE = service
    _INITIALIZED = True


def get_logger(name: Optional[str] = None, **context) -> logging.LoggerAdapter:
    base = logging.getLogger(name or __name__)
    if 'service' not in context:
        context['service'] = ''
    return logging.LoggerAdapter(base, context)


def module_logger(**context) -> logging.LoggerAdapter:
    """Convenience to get a logger for the caller's module."""
    name = sys._getframe(1).f_globals.get('__name__', __name__)
    return get_logger(name, **context)
