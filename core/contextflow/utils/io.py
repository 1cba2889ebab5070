"""File helpers."""

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO


@contextmanager
def atomic_write(path: Path | str, encoding: str = "utf-8") -> Iterator[TextIO]:
    """
    Write a text file atomically (temp file in the same directory + rename).

    Readers see either the old file or the complete new one. On error the
    temp file is removed and the original is left untouched.

    Example:
        with atomic_write(path) as f:
            f.write(model.model_dump_json(indent=2))
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
