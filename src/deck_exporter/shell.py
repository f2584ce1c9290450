"""
Subprocess helper shared by the precondition checks, fetchers and systemd calls.
"""

import logging
import shlex
import subprocess
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


def run_cmd(
    cmd: List[str],
    timeout: Optional[float] = None,
    cwd: Optional[str] = None,
) -> Tuple[bool, str]:
    """Run a command and return success status + output.

    A missing executable or a timeout counts as a failed command rather
    than raising.
    """
    logger.debug(f"CMD {' '.join(shlex.quote(c) for c in cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return False, "Command timed out"
    except OSError as e:
        return False, str(e)

    output = (result.stdout or "") + (result.stderr or "")
    if output.strip():
        logger.debug(f"OUTPUT {output.strip()}")
    return result.returncode == 0, output
