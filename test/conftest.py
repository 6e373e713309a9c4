import os
import textwrap
from pathlib import Path
from typing import Callable

import pytest


@pytest.fixture
def script(tmp_path: Path) -> Callable[[str, str], str]:
    """Write an executable /bin/sh script into tmp_path, returning its path."""
    def write_script(name: str, body: str) -> str:
        path = tmp_path / name
        path.write_text('#!/bin/sh\n' + textwrap.dedent(body).lstrip())
        os.chmod(path, 0o755)
        return str(path)

    return write_script
