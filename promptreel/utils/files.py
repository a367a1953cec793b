"""
File Helpers
Per-call scratch directories and best-effort removal
"""

import os
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .logger import get_logger

logger = get_logger()


@contextmanager
def scratch_dir(base_dir: str, prefix: str = "stage") -> Iterator[Path]:
    """Private working directory removed on both success and failure"""
    Path(base_dir).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=base_dir))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def remove_file(path: Optional[str]):
    if not path:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as exc:
        logger.warning(f"Failed to remove file {path}: {exc}")


def slugify(text: str, max_length: int = 40) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return slug[:max_length] or "clip"
