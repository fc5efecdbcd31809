"""
Per-case eligibility predicates.

An EligibilityRules object holds everything that is fixed for a run (match
variables, compiled extra condition, date columns, method). For each case it
produces an EligibilityPredicate: a callable that maps a table of candidate
controls to a boolean mask.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

import pandas as pd

from ..core.exceptions import ConfigurationError
from ..schemas.matching import MatchingMethod
from .conditions import Condition, parse_condition


CASES_TABLE = "cases"
CONTROLS_TABLE = "control_pool"


@dataclass(frozen=True)
class EligibilityPredicate:
    """Eligibility test for the controls of a single case."""
    case_id: Any
    case: Mapping[str, Any] = field(repr=False)
    match_vars: Sequence[str]
    id_field: str
    condition: Optional[Condition] = None
    index_date: Any = None
    control_date_field: Optional[str] = None

    def __call__(self, controls: pd.DataFrame) -> pd.Series:
        mask = pd.Series(True, index=controls.index, dtype=bool)

        # (a) exact equality on every match variable
        for var in self.match_vars:
            value = self.case[var]
            if pd.isna(value):
                return pd.Series(False, index=controls.index, dtype=bool)
            mask &= (controls[var] == value).fillna(False).astype(bool)

        # a subject never controls itself
        mask &= controls[self.id_field] != self.case_id

        # (c) at risk at the case's index date
        if self.index_date is not None and not pd.isna(self.index_date):
            event_dates = controls[self.control_date_field]
            mask &= event_dates.isna() | (event_dates > self.index_date)

        # (b) free-form extra condition
        if self.condition is not None and mask.any():
            mask &= self.condition.evaluate(self.case, controls)

        return mask


@dataclass(frozen=True)
class EligibilityRules:
    """Run-wide eligibility settings; builds one predicate per case."""
    match_vars: List[str]
    id_field: str
    method: MatchingMethod = MatchingMethod.INCIDENCE_DENSITY
    condition: Optional[Condition] = None
    index_date_field: Optional[str] = None
    control_date_field: Optional[str] = None

    @property
    def uses_index_date(self) -> bool:
        return self.method == MatchingMethod.INCIDENCE_DENSITY and self.index_date_field is not None

    def for_case(self, case: Mapping[str, Any]) -> EligibilityPredicate:
        index_date = None
        if self.uses_index_date:
            index_date = case[self.index_date_field]
        return EligibilityPredicate(
            case_id=case[self.id_field],
            case=case,
            match_vars=tuple(self.match_vars),
            id_field=self.id_field,
            condition=self.condition,
            index_date=index_date,
            control_date_field=self.control_date_field,
        )


def _require(columns: Sequence[str], table: pd.DataFrame, table_name: str, role: str) -> None:
    for column in columns:
        if column not in table.columns:
            raise ConfigurationError(
                f"{role} '{column}' is missing from the {table_name} table",
                column=column,
                table=table_name,
            )


def build_rules(
    cases: pd.DataFrame,
    controls: pd.DataFrame,
    match_vars: Sequence[str],
    id_field: str,
    method: MatchingMethod,
    extra_vars: Sequence[str] = (),
    extra_conditions: Optional[str] = None,
    index_date_field: Optional[str] = None,
    control_date_field: Optional[str] = None,
) -> EligibilityRules:
    """
    Validate the configuration against both tables and build the rules.

    Raises:
        ConfigurationError: If an identifier, match, extra, date or condition
            field is missing from either table.
    """
    _require([id_field], cases, CASES_TABLE, "Identifier column")
    _require([id_field], controls, CONTROLS_TABLE, "Identifier column")
    _require(match_vars, cases, CASES_TABLE, "Match variable")
    _require(match_vars, controls, CONTROLS_TABLE, "Match variable")
    _require(extra_vars, cases, CASES_TABLE, "Extra variable")
    _require(extra_vars, controls, CONTROLS_TABLE, "Extra variable")

    control_date_field = control_date_field or index_date_field
    if method == MatchingMethod.INCIDENCE_DENSITY and index_date_field is not None:
        _require([index_date_field], cases, CASES_TABLE, "Index date field")
        _require([control_date_field], controls, CONTROLS_TABLE, "Control date field")

    condition = None
    if extra_conditions:
        condition = parse_condition(extra_conditions)
        _require(sorted(condition.case_fields), cases, CASES_TABLE, "Condition field")
        _require(sorted(condition.control_fields), controls, CONTROLS_TABLE, "Condition field")

    return EligibilityRules(
        match_vars=list(match_vars),
        id_field=id_field,
        method=method,
        condition=condition,
        index_date_field=index_date_field,
        control_date_field=control_date_field,
    )
