"""
Random sampling of controls without replacement.

Each case gets its own generator, spawned from one seed for the run and
indexed by the case's position, so a case's draw does not depend on which
worker processes it or in what order.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd


@dataclass
class SampleDraw:
    """Controls drawn for one case."""
    selected: pd.DataFrame
    requested: int
    available: int

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - len(self.selected))


class Sampler:
    """Draws up to ``n_controls`` distinct candidates uniformly at random."""

    def __init__(self, n_controls: int):
        if n_controls <= 0:
            raise ValueError("n_controls must be positive")
        self.n_controls = n_controls

    def draw(self, candidates: pd.DataFrame, rng: np.random.Generator) -> SampleDraw:
        available = len(candidates)
        if available <= self.n_controls:
            # Take everyone; a shortfall is reported by the caller
            return SampleDraw(selected=candidates, requested=self.n_controls, available=available)

        positions = np.sort(rng.choice(available, size=self.n_controls, replace=False))
        return SampleDraw(
            selected=candidates.iloc[positions],
            requested=self.n_controls,
            available=available,
        )


def case_seeds(seed: Optional[int], n_cases: int) -> List[np.random.SeedSequence]:
    """One independent seed sequence per case position."""
    return np.random.SeedSequence(seed).spawn(n_cases)


def case_generator(seed_sequence: np.random.SeedSequence) -> np.random.Generator:
    return np.random.default_rng(seed_sequence)
