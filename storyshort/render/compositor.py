from __future__ import annotations

import logging
import subprocess
from typing import Callable, List, Optional, Sequence

from storyshort.errors import CompositorError


class FFmpegCompositor:
    """Runs the external compositor binary and turns failures into ``CompositorError``."""

    def __init__(self, timeout: float = 600.0, logger: Optional[logging.Logger] = None) -> None:
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def run(self, args: Sequence[str]) -> None:
        self.log.info("compositor started", extra={"command": " ".join(args)})
        try:
            result = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            stderr = exc.stderr or ""
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise CompositorError(None, args, f"timed out after {self.timeout}s\n{stderr}") from exc
        except OSError as exc:
            raise CompositorError(None, args, f"could not start compositor: {exc}") from exc
        if result.returncode != 0:
            raise CompositorError(result.returncode, args, result.stderr)


def render_with_fallback(
    run: Callable[[Sequence[str]], None],
    build: Callable[[bool], List[str]],
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Render with burned-in subtitles, retrying once without them on failure.

    ``build(True)`` must produce the command with the subtitle filter and ``build(False)``
    the one without. Returns whether captions ended up burned in. A failure of the
    second attempt propagates as ``CompositorError`` with both diagnostics.
    """
    log = logger or logging.getLogger(__name__)
    try:
        run(build(True))
        return True
    except CompositorError as first:
        log.warning(
            "compositor failed with subtitles, retrying without them",
            extra={"returncode": first.returncode, "stderr": first.stderr},
        )
        try:
            run(build(False))
        except CompositorError as second:
            raise CompositorError(
                second.returncode,
                second.args_list,
                f"with subtitles:\n{first.stderr}\nwithout subtitles:\n{second.stderr}",
            ) from second
        return False
