"""
Request pacing and human-like interaction plans.

Every wait the orchestrator makes is sampled here so the crawl never
settles into a fixed cadence. Interaction plans are plain data; the
session layer replays them against a live page.
"""

import random
from typing import List, Optional, Tuple

from .base import InteractionKind, InteractionStep


class PacingPolicy:
    """
    Randomized delays and interaction plans.

    Args:
        rng: Random source (seed it for reproducible plans)
        viewport: (width, height) used for scroll and pointer coordinates
        scroll_back_probability: Chance of a partial scroll back up
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        viewport: Tuple[int, int] = (1920, 1080),
        scroll_back_probability: float = 0.3,
    ):
        self.rng = rng or random.Random()
        self.viewport = viewport
        self.scroll_back_probability = scroll_back_probability

    def delay(self, min_seconds: float, max_seconds: float) -> float:
        """Uniformly sampled delay in [min_seconds, max_seconds]."""
        if max_seconds < min_seconds:
            min_seconds, max_seconds = max_seconds, min_seconds
        return self.rng.uniform(min_seconds, max_seconds)

    def interaction_plan(self) -> List[InteractionStep]:
        """
        Scrolls down the page in 3-7 uneven steps, sometimes scrolls part of
        the way back, then moves the pointer to 2-5 random spots.
        """
        width, height = self.viewport
        steps: List[InteractionStep] = []

        scroll_steps = self.rng.randint(3, 7)
        stride = height // scroll_steps
        position = 0
        for _ in range(scroll_steps):
            position += stride
            offset = self.rng.randint(-50, 49)
            target = max(0, position + offset)
            steps.append(InteractionStep(InteractionKind.SCROLL, {
                'y': target,
                'pause': self.rng.uniform(0.5, 1.5),
            }))

        if self.rng.random() < self.scroll_back_probability:
            back = self.rng.randint(0, max(position // 2, 0))
            steps.append(InteractionStep(InteractionKind.SCROLL, {
                'y': max(0, position - back),
                'pause': self.rng.uniform(0.5, 1.0),
            }))

        for _ in range(self.rng.randint(2, 5)):
            steps.append(InteractionStep(InteractionKind.MOVE, {
                'x': self.rng.randint(0, width - 1),
                'y': self.rng.randint(0, height - 1),
                'steps': self.rng.randint(5, 15),
                'pause': self.rng.uniform(0.1, 0.4),
            }))

        return steps
