"""
Per-case matchers for the two consistency disciplines.

Both implement the same unit of work (build predicate, query the pool,
sample, commit). They differ in what "commit" means and therefore in whether
cases may run concurrently:

- ExactMatcher removes assigned controls from a private, shrinking pool, so
  cases must be matched one at a time in input order.
- IncidenceDensityMatcher never touches its frozen pool, so any number of
  workers can match cases independently.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Mapping

import numpy as np
import pandas as pd

from ..schemas.matching import MatchingMethod
from .pool import ControlPool
from .predicate import EligibilityRules
from .sampler import Sampler, case_generator

logger = logging.getLogger(__name__)


@dataclass
class MatchOutcome:
    """Controls assigned to one case."""
    position: int
    case_id: Any
    control_ids: List[Any] = field(default_factory=list)
    requested: int = 0
    eligible: int = 0

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - len(self.control_ids))


class CaseMatcher(ABC):
    """Matches a single case against a control pool."""

    method: MatchingMethod
    supports_parallel: bool = False

    def __init__(self, rules: EligibilityRules, pool: ControlPool, sampler: Sampler):
        self.rules = rules
        self.pool = pool
        self.sampler = sampler

    def match_case(
        self,
        position: int,
        case: Mapping[str, Any],
        seed_sequence: np.random.SeedSequence,
    ) -> MatchOutcome:
        predicate = self.rules.for_case(case)
        candidates = self.pool.eligible(predicate)
        draw = self.sampler.draw(candidates, case_generator(seed_sequence))
        control_ids = draw.selected[self.pool.id_field].tolist()

        self._commit(control_ids)

        logger.debug(
            "Case %r: %d eligible, %d selected", predicate.case_id, draw.available, len(control_ids)
        )
        return MatchOutcome(
            position=position,
            case_id=predicate.case_id,
            control_ids=control_ids,
            requested=draw.requested,
            eligible=draw.available,
        )

    @abstractmethod
    def _commit(self, control_ids: List[Any]) -> None:
        """Apply the discipline's consequences of assigning ``control_ids``."""


class ExactMatcher(CaseMatcher):
    """Assigned controls are never eligible again within the run."""

    method = MatchingMethod.EXACT
    supports_parallel = False

    def _commit(self, control_ids: List[Any]) -> None:
        self.pool.remove(control_ids)


class IncidenceDensityMatcher(CaseMatcher):
    """Every case samples from the same initial pool."""

    method = MatchingMethod.INCIDENCE_DENSITY
    supports_parallel = True

    def _commit(self, control_ids: List[Any]) -> None:
        pass


MATCHERS = {
    MatchingMethod.EXACT: ExactMatcher,
    MatchingMethod.INCIDENCE_DENSITY: IncidenceDensityMatcher,
}


def create_case_matcher(
    method: MatchingMethod,
    rules: EligibilityRules,
    controls: pd.DataFrame,
    n_controls: int,
) -> CaseMatcher:
    """Factory: pick the matcher for ``method`` and give it a suitable pool."""
    matcher_cls = MATCHERS[MatchingMethod(method)]
    pool = ControlPool(controls, rules.id_field, frozen=matcher_cls.supports_parallel)
    return matcher_cls(rules, pool, Sampler(n_controls))
