"""
Matching run orchestration.

A run validates its configuration against both tables (fatal errors surface
before any case is touched), picks the per-case matcher for the requested
method, then walks the cases:

    build predicate -> query eligible -> sample -> (exact: remove) -> emit -> progress

Exact matching always runs serially in input order. Incidence density
matching fans cases out over a process pool when more than one core is
configured; results are put back in input order before assembly.
"""

import logging
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..core.config import Settings
from ..core.exceptions import (
    ConfigurationError,
    ParallelismDowngradeNotice,
    ShortfallWarning,
    TaskFailure,
)
from ..schemas.matching import MatchConfig, MatchingMethod, load_match_config
from .assembler import RESERVED_COLUMNS, MatchResult, ResultAssembler
from .predicate import CASES_TABLE, CONTROLS_TABLE, build_rules
from .sampler import case_seeds
from .strategies import CaseMatcher, MatchOutcome, create_case_matcher
from .tables import convert_dates
from .tracking import resolve_tracker

logger = logging.getLogger(__name__)


# =============================================================================
# WORKER PROCESS ENTRY POINTS
# =============================================================================

# Set once per worker process by _init_worker; read-only afterwards
_worker_matcher: Optional[CaseMatcher] = None


def _init_worker(matcher: CaseMatcher) -> None:
    global _worker_matcher
    _worker_matcher = matcher


def _case_record(cases: pd.DataFrame, position: int) -> Dict[str, Any]:
    # Per-column scalars: int ids stay int next to float columns
    return cases.iloc[[position]].to_dict("records")[0]


def _match_in_worker(position: int, case: Dict[str, Any], seed_sequence: np.random.SeedSequence) -> MatchOutcome:
    return _worker_matcher.match_case(position, case, seed_sequence)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class MatchOrchestrator:
    """
    Runs case-control matching for one cases table and one control pool.

    Args:
        settings: Engine defaults (identifier column, cores, seed, date
            conventions). Passed explicitly so concurrent runs with different
            conventions do not interfere.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def run(self, cases: pd.DataFrame, control_pool: pd.DataFrame, config: MatchConfig) -> MatchResult:
        id_field = config.id_field or self.settings.ID_FIELD
        cores = config.cores or self.settings.DEFAULT_CORES
        seed = config.seed if config.seed is not None else self.settings.RANDOM_SEED
        method = MatchingMethod(config.method)

        self._validate_tables(cases, control_pool, config, id_field)
        rules = build_rules(
            cases,
            control_pool,
            match_vars=config.match_vars,
            id_field=id_field,
            method=method,
            extra_vars=config.extra_vars,
            extra_conditions=config.extra_conditions,
            index_date_field=config.index_date_field,
            control_date_field=config.control_date_field,
        )
        if rules.uses_index_date:
            cases = self._normalise_dates(cases, rules.index_date_field, CASES_TABLE)
            control_pool = self._normalise_dates(control_pool, rules.control_date_field, CONTROLS_TABLE)

        if method == MatchingMethod.EXACT and cores > 1:
            warnings.warn(
                f"Exact matching mutates a shared control pool and runs on a single worker; "
                f"ignoring cores={cores}",
                ParallelismDowngradeNotice,
                stacklevel=2,
            )
            cores = 1

        matcher = create_case_matcher(method, rules, control_pool, config.n_controls)
        logger.info(
            "Matching %d cases against %d candidate controls (method=%s, n_controls=%d, workers=%d)",
            len(cases), len(control_pool), method.value, config.n_controls, cores,
        )

        seeds = case_seeds(seed, len(cases))
        tracker = resolve_tracker(config.track, config.tracker, len(cases))
        try:
            if cores > 1 and matcher.supports_parallel and len(cases) > 1:
                outcomes = self._run_parallel(matcher, cases, seeds, cores, tracker)
            else:
                outcomes = self._run_serial(matcher, cases, seeds, tracker)
        finally:
            close = getattr(tracker, "close", None)
            if callable(close):
                close()

        self._report_shortfalls(outcomes)

        assembler = ResultAssembler(
            id_field=id_field,
            match_vars=config.match_vars,
            extra_vars=config.extra_vars,
            date_fields=[rules.index_date_field, rules.control_date_field] if rules.uses_index_date else [],
        )
        table = assembler.assemble(cases, control_pool, outcomes)
        result = MatchResult(table=table, outcomes=outcomes)
        logger.info(
            "Matched %d controls to %d cases (%d cases short)",
            result.n_matched_controls, result.n_cases, len(result.shortfalls),
        )
        return result

    # -------------------------------------------------------------------------
    # EXECUTION
    # -------------------------------------------------------------------------

    def _run_serial(
        self,
        matcher: CaseMatcher,
        cases: pd.DataFrame,
        seeds: Sequence[np.random.SeedSequence],
        tracker: Optional[Callable[[int, Any], None]],
    ) -> List[MatchOutcome]:
        outcomes = []
        for position in range(len(cases)):
            case = _case_record(cases, position)
            try:
                outcome = matcher.match_case(position, case, seeds[position])
            except Exception as e:
                raise TaskFailure(case[matcher.rules.id_field], position, e) from e
            outcomes.append(outcome)
            if tracker is not None:
                tracker(position, outcome.case_id)
        return outcomes

    def _run_parallel(
        self,
        matcher: CaseMatcher,
        cases: pd.DataFrame,
        seeds: Sequence[np.random.SeedSequence],
        cores: int,
        tracker: Optional[Callable[[int, Any], None]],
    ) -> List[MatchOutcome]:
        id_field = matcher.rules.id_field
        outcomes: List[Optional[MatchOutcome]] = [None] * len(cases)

        with ProcessPoolExecutor(
            max_workers=cores, initializer=_init_worker, initargs=(matcher,)
        ) as executor:
            futures = {
                executor.submit(_match_in_worker, position, _case_record(cases, position), seeds[position]): position
                for position in range(len(cases))
            }
            for future in as_completed(futures):
                position = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    # Fail fast: drop queued cases, no partial result
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise TaskFailure(cases[id_field].iloc[position], position, e) from e
                outcomes[position] = outcome
                if tracker is not None:
                    tracker(position, outcome.case_id)

        return outcomes

    # -------------------------------------------------------------------------
    # VALIDATION AND REPORTING
    # -------------------------------------------------------------------------

    def _validate_tables(
        self,
        cases: pd.DataFrame,
        control_pool: pd.DataFrame,
        config: MatchConfig,
        id_field: str,
    ) -> None:
        for table, name in ((cases, CASES_TABLE), (control_pool, CONTROLS_TABLE)):
            if not isinstance(table, pd.DataFrame):
                raise ConfigurationError(f"The {name} table must be a pandas DataFrame", table=name)
            if id_field in table.columns and table[id_field].duplicated().any():
                duplicate = table.loc[table[id_field].duplicated(), id_field].iloc[0]
                raise ConfigurationError(
                    f"Identifier {duplicate!r} appears more than once in the {name} table",
                    column=id_field,
                    table=name,
                )

        for column in [id_field] + list(config.match_vars) + list(config.extra_vars):
            if column in RESERVED_COLUMNS:
                raise ConfigurationError(
                    f"Column '{column}' clashes with an output column name {RESERVED_COLUMNS}",
                    column=column,
                )

    def _normalise_dates(self, table: pd.DataFrame, column: str, name: str) -> pd.DataFrame:
        try:
            return convert_dates(table, date_fields=[column], origin=self.settings.DATE_ORIGIN)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Date column '{column}' in the {name} table could not be parsed: {e}",
                column=column,
                table=name,
            ) from e

    def _report_shortfalls(self, outcomes: Sequence[MatchOutcome]) -> None:
        for outcome in outcomes:
            if outcome.shortfall:
                message = (
                    f"Case {outcome.case_id}: {len(outcome.control_ids)} of "
                    f"{outcome.requested} controls matched (shortfall {outcome.shortfall})"
                )
                logger.warning(message)
                warnings.warn(message, ShortfallWarning, stacklevel=3)


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================

def get_matches(
    cases: pd.DataFrame,
    control_pool: pd.DataFrame,
    n_controls: int,
    match_vars: Sequence[str],
    extra_vars: Sequence[str] = (),
    extra_conditions: Optional[str] = None,
    method: str = MatchingMethod.INCIDENCE_DENSITY.value,
    index_date_field: Optional[str] = None,
    control_date_field: Optional[str] = None,
    id_field: Optional[str] = None,
    cores: Optional[int] = None,
    track: bool = False,
    tracker: Optional[Callable[[int, Any], None]] = None,
    seed: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> MatchResult:
    """
    Match controls to cases.

    Under incidence density the control pool is read at ``index_date_field``
    unless ``control_date_field`` names its own date column; pass it when the
    two tables name their dates differently.

    Example:
        result = get_matches(
            cases, pool,
            n_controls=4,
            match_vars=["sex", "practice"],
            extra_conditions="control.yob >= case.yob - 2 and control.yob <= case.yob + 2",
            method="incidence_density",
            index_date_field="diagnosis_date",
            cores=4,
            seed=2024,
        )
        result.table      # matched-set table
        result.shortfalls # {case_id: missing controls}
    """
    options: Dict[str, Any] = dict(
        n_controls=n_controls,
        match_vars=list(match_vars),
        extra_vars=list(extra_vars or []),
        extra_conditions=extra_conditions,
        method=method,
        index_date_field=index_date_field,
        control_date_field=control_date_field,
        id_field=id_field,
        cores=cores,
        track=track,
        tracker=tracker,
        seed=seed,
    )
    config = load_match_config(**options)
    return MatchOrchestrator(settings).run(cases, control_pool, config)
