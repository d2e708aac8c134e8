"""Terminal rendering of live frequency frames."""

import logging
from typing import AsyncIterator, Callable, TextIO

import numpy as np

logger = logging.getLogger(__name__)

BAR_LEVELS = " ▁▂▃▄▅▆▇█"


def format_time(seconds: float) -> str:
    """Format elapsed seconds as m:ss."""
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


def render_bars(frame: np.ndarray, width: int = 48) -> str:
    """Render byte magnitudes as a row of block characters.

    Bins are averaged down (or repeated) to ``width`` columns. Only the
    lower half of the spectrum is shown since speech energy sits there.
    """
    if width <= 0:
        raise ValueError("width must be positive")
    if len(frame) == 0:
        return BAR_LEVELS[0] * width

    visible = np.asarray(frame[: max(1, len(frame) // 2)], dtype=np.float64)
    edges = np.linspace(0, len(visible), width + 1)
    columns = []
    for start, end in zip(edges[:-1], edges[1:]):
        lo = int(start)
        hi = max(lo + 1, int(np.ceil(end)))
        columns.append(visible[lo:hi].mean())

    top = len(BAR_LEVELS) - 1
    levels = np.clip(np.round(np.array(columns) / 255.0 * top), 0, top).astype(int)
    return "".join(BAR_LEVELS[level] for level in levels)


class TerminalVisualizer:
    """Sink that redraws one status line per frame.

    Nothing flows back to the capture side.
    """

    def __init__(self, stream: TextIO, width: int = 48):
        self.stream = stream
        self.width = width
        self.frames_rendered = 0

    def draw(self, frame: np.ndarray, elapsed: float) -> None:
        line = f"\r{render_bars(frame, self.width)} {format_time(elapsed)}"
        self.stream.write(line)
        self.stream.flush()
        self.frames_rendered += 1

    async def run(
        self,
        frames: AsyncIterator[np.ndarray],
        elapsed: Callable[[], float],
    ) -> int:
        """Consume frames until the source ends; returns frames drawn."""
        async for frame in frames:
            self.draw(frame, elapsed())
        self.stream.write("\n")
        self.stream.flush()
        logger.debug("Visualizer stopped after %d frames", self.frames_rendered)
        return self.frames_rendered
