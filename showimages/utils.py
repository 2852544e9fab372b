"""Utility functions for ShowImages."""

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, TimeElapsedColumn

from .config import Config

console = Console()

_DATA_URL_RE = re.compile(r'^data:', re.IGNORECASE)
_HTTP_URL_RE = re.compile(r'^https?://', re.IGNORECASE)


def setup_logging(config: Config) -> None:
    """Configure the root logger from the logging section of the config."""
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    root = logging.getLogger()

    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))

    if config.logging.file:
        log_path = Path(config.logging.file)
        ensure_directory(log_path.parent)
        file_handler = logging.FileHandler(log_path, mode='a', encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        root.addHandler(file_handler)

    root.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(max(level, logging.WARNING))


def is_data_url(url: Optional[str]) -> bool:
    """Return True for inline ``data:`` URLs."""
    return bool(url) and bool(_DATA_URL_RE.match(url))


def is_http_url(url: Optional[str]) -> bool:
    """Return True for http(s) URLs."""
    return bool(url) and bool(_HTTP_URL_RE.match(url))


def shorten_url(url: Optional[str], limit: int = 80) -> str:
    """Shorten a URL for display; data URLs are cut to their scheme prefix."""
    if not url:
        return ''
    if is_data_url(url):
        return url[:10] + '...'
    if len(url) <= limit:
        return url
    return url[:limit - 3] + '...'


def append_jsonl(file_path: Path, record: Dict[str, Any]) -> None:
    """Append a record to a JSONL file."""
    line = json.dumps(record, ensure_ascii=False) + '\n'

    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'a', encoding='utf-8') as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def format_bytes(bytes_count: int) -> str:
    """Format bytes count in human readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration in human readable format."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def get_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f') + 'Z'


def ensure_directory(path: Path) -> None:
    """Ensure directory exists, create if necessary."""
    path.mkdir(parents=True, exist_ok=True)


def create_progress_bar() -> Progress:
    """Create a progress bar with standard configuration."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console
    )
