"""
Case-Control Matching Module

This module assigns matched controls to cases under two disciplines:
incidence density sampling (controls reusable, parallel) and exact
matching (controls used once, serial).
"""

from .orchestrator import (
    # Main classes
    MatchOrchestrator,

    # Convenience functions
    get_matches,
)
from .assembler import MatchResult, ResultAssembler
from .conditions import Condition, parse_condition
from .pool import ControlPool
from .predicate import EligibilityPredicate, EligibilityRules, build_rules
from .sampler import Sampler, SampleDraw
from .strategies import (
    CaseMatcher,
    ExactMatcher,
    IncidenceDensityMatcher,
    MatchOutcome,
    create_case_matcher,
)
from .tables import compress, convert_dates
from .tracking import ConsoleTracker

__all__ = [
    "MatchOrchestrator",
    "get_matches",
    "MatchResult",
    "ResultAssembler",
    "Condition",
    "parse_condition",
    "ControlPool",
    "EligibilityPredicate",
    "EligibilityRules",
    "build_rules",
    "Sampler",
    "SampleDraw",
    "CaseMatcher",
    "ExactMatcher",
    "IncidenceDensityMatcher",
    "MatchOutcome",
    "create_case_matcher",
    "compress",
    "convert_dates",
    "ConsoleTracker",
]
