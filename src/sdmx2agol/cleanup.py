"""Removal of uploaded input files once a request has been published."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Union


def cleanup_input_files(paths: Iterable[Union[str, Path]]) -> int:
    """
    Delete uploaded input files.

    Failures are logged and skipped; the request has already succeeded.

    Args:
        paths: Files to remove

    Returns:
        Number of files removed
    """
    removed = 0
    for path in paths:
        path = Path(path)
        try:
            path.unlink()
            removed += 1
            logging.debug(f"Removed input file: {path}")
        except FileNotFoundError:
            logging.debug(f"Input file already gone: {path}")
        except OSError as e:
            logging.warning(f"Could not remove input file {path}: {e}")

    if removed:
        logging.info(f"Cleaned up {removed} input file(s)")
    return removed
