# sandbox.py
# Throwaway working directory for agent runs.
#
# Files the agent's tools or scripts write with relative paths land in a
# fresh temporary directory that is removed when the block exits.

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from stepwise import config


@contextmanager
def sandbox(base_dir: str | None = None) -> Iterator[Path]:
    """
    Change into a new temporary directory for the duration of the block.

    The directory is created under `base_dir`, falling back to $SANDBOX_DIR
    and then the system temp location. The previous working directory is
    restored on exit, even when the block raises.
    """
    previous = os.getcwd()
    with tempfile.TemporaryDirectory(prefix="stepwise-", dir=base_dir or config.SANDBOX_DIR) as path:
        os.chdir(path)
        try:
            yield Path(path)
        finally:
            os.chdir(previous)
