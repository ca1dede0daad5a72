"""
Consolidated Utilities

Sections:
- Logging and timing utilities
- Filesystem helpers
- Retry and backoff mechanisms
- Remote call helpers
"""

import functools
import logging
import re
import sys
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import requests

from .types import RemoteServiceError

# =============================================================================
# Logging and Timing Utilities
# =============================================================================

def setup_logging(
    verbose: bool,
    command: Optional[str] = None,
    title: Optional[str] = None,
    enable_file_logging: bool = False
) -> Optional[Path]:
    """
    Configure logging with optional timestamped file output.

    Args:
        verbose: Enable debug-level logging if True
        command: CLI command name for log file naming
        title: Dataset/item title for log file naming
        enable_file_logging: Create timestamped log files when True

    Returns:
        Path of the log file when file logging is enabled
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = None

    if enable_file_logging and command:
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suffix = f"_{clean_filename(title)}" if title else ""
        log_file = logs_dir / f"{command}{suffix}_{timestamp}.log"

        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True
    )

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_file


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


# =============================================================================
# Filesystem Helpers
# =============================================================================

def clean_filename(filename: str) -> str:
    """
    Clean filename for cross-platform compatibility.

    Args:
        filename: Original filename

    Returns:
        Cleaned filename safe for all platforms
    """
    cleaned = re.sub(r'[<>:"/\\|?*\s]', '_', filename)
    cleaned = re.sub(r'_+', '_', cleaned)
    return cleaned.strip('_')


# =============================================================================
# Retry and Backoff Mechanisms
# =============================================================================

def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds
        backoff_factor: Multiplier for delay between attempts
        exceptions: Exception types to retry on
        should_retry: Optional predicate; a caught exception it rejects is re-raised at once
        sleep: Sleep function (injectable for tests)

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e
                    if attempt < max_retries:
                        delay = base_delay * (backoff_factor ** attempt)
                        logging.warning(f"{func.__name__} attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s...")
                        sleep(delay)
                    else:
                        logging.error(f"{func.__name__} failed after {max_retries + 1} attempts")

            raise last_exception

        return wrapper
    return decorator


# =============================================================================
# Remote Call Helpers
# =============================================================================

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def send_request(session: requests.Session, method: str, url: str, timeout: float, **kwargs) -> requests.Response:
    """
    Send one HTTP request and map transport failures to RemoteServiceError.

    Timeouts, connection errors and 429/5xx responses are flagged retryable;
    the caller decides whether the call is safe to repeat.
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.Timeout as e:
        raise RemoteServiceError(f"{method} {url} timed out after {timeout}s", retryable=True) from e
    except requests.ConnectionError as e:
        raise RemoteServiceError(f"Could not connect to {url}: {e}", retryable=True) from e
    except requests.RequestException as e:
        raise RemoteServiceError(f"{method} {url} failed: {e}") from e

    if response.status_code >= 400:
        raise RemoteServiceError(
            f"{method} {url} returned HTTP {response.status_code}",
            status_code=response.status_code,
            retryable=response.status_code in RETRYABLE_STATUS,
        )
    return response


def read_arcgis_json(response: requests.Response, action: str) -> dict[str, Any]:
    """
    Decode an ArcGIS REST JSON body, raising on an embedded `error` object.

    ArcGIS reports most failures as HTTP 200 with {"error": {"code", "message"}}.
    """
    try:
        payload = response.json()
    except ValueError as e:
        raise RemoteServiceError(f"{action}: response is not valid JSON") from e

    if not isinstance(payload, dict):
        raise RemoteServiceError(f"{action}: unexpected response {type(payload).__name__}")

    error = payload.get("error")
    if error:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)
        details = error.get("details") if isinstance(error, dict) else None
        if details:
            message = f"{message} ({'; '.join(map(str, details))})"
        raise RemoteServiceError(
            f"{action}: {message}",
            status_code=code if isinstance(code, int) else None,
            retryable=code in RETRYABLE_STATUS,
        )
    return payload
