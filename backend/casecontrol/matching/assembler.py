from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .strategies import MatchOutcome


CASE_ID_COLUMN = "case_id"
MATCH_ID_COLUMN = "match_id"
CASE_FLAG_COLUMN = "case"
RESERVED_COLUMNS = (CASE_ID_COLUMN, MATCH_ID_COLUMN, CASE_FLAG_COLUMN)


@dataclass
class MatchResult:
    """Matched-set table plus the per-case outcomes it was built from."""
    table: pd.DataFrame
    outcomes: List[MatchOutcome] = field(default_factory=list)

    @property
    def shortfalls(self) -> Dict[Any, int]:
        """Case id -> number of controls short of the target, for short cases only."""
        return {o.case_id: o.shortfall for o in self.outcomes if o.shortfall > 0}

    @property
    def n_cases(self) -> int:
        return len(self.outcomes)

    @property
    def n_matched_controls(self) -> int:
        return sum(len(o.control_ids) for o in self.outcomes)


class ResultAssembler:
    """
    Builds the output table: for each case in input order, the case row
    followed by its controls. Every row carries the record id, the originating
    case id, a matched-set id and a case (1) / control (0) flag.
    """

    def __init__(
        self,
        id_field: str,
        match_vars: Sequence[str],
        extra_vars: Sequence[str] = (),
        date_fields: Sequence[Optional[str]] = (),
    ):
        self.id_field = id_field
        carry = [id_field]
        for name in list(match_vars) + list(extra_vars) + [d for d in date_fields if d]:
            if name not in carry:
                carry.append(name)
        self.carry = carry

    def assemble(
        self,
        cases: pd.DataFrame,
        controls: pd.DataFrame,
        outcomes: Sequence[MatchOutcome],
    ) -> pd.DataFrame:
        case_columns = [c for c in self.carry if c in cases.columns]
        control_columns = [c for c in self.carry if c in controls.columns]

        positions = [o.position for o in outcomes]
        case_rows = cases.iloc[positions][case_columns].reset_index(drop=True).copy()
        case_rows[CASE_ID_COLUMN] = [o.case_id for o in outcomes]
        case_rows[MATCH_ID_COLUMN] = [o.position + 1 for o in outcomes]
        case_rows[CASE_FLAG_COLUMN] = 1
        case_rows["_order"] = 0

        control_ids, owners, match_ids, order = [], [], [], []
        for outcome in outcomes:
            for rank, control_id in enumerate(outcome.control_ids, start=1):
                control_ids.append(control_id)
                owners.append(outcome.case_id)
                match_ids.append(outcome.position + 1)
                order.append(rank)

        lookup = controls.set_index(self.id_field, drop=False)
        control_rows = lookup.loc[control_ids, control_columns].reset_index(drop=True).copy()
        control_rows[CASE_ID_COLUMN] = owners
        control_rows[MATCH_ID_COLUMN] = match_ids
        control_rows[CASE_FLAG_COLUMN] = 0
        control_rows["_order"] = order

        frames = [case_rows] if control_rows.empty else [case_rows, control_rows]
        table = pd.concat(frames, ignore_index=True)
        table = table.sort_values([MATCH_ID_COLUMN, "_order"], kind="stable")
        table = table.drop(columns="_order").reset_index(drop=True)

        columns = [self.id_field, CASE_ID_COLUMN, MATCH_ID_COLUMN]
        columns += [c for c in self.carry if c != self.id_field]
        columns.append(CASE_FLAG_COLUMN)
        return table.reindex(columns=columns).astype({CASE_FLAG_COLUMN: int})
