"""
Tests for eligibility predicates and the control pool.
"""

import pandas as pd
import pytest

from casecontrol.core.exceptions import ConfigurationError
from casecontrol.matching.pool import ControlPool
from casecontrol.matching.predicate import build_rules
from casecontrol.schemas.matching import MatchingMethod


def _cases():
    return pd.DataFrame({
        "id": [1, 2],
        "sex": ["M", None],
        "site": ["A", "A"],
        "yob": [1950, 1960],
        "idx_date": pd.to_datetime(["2020-01-10", None]),
    })


def _pool():
    return pd.DataFrame({
        "id": [10, 11, 12, 13, 14, 1],
        "sex": ["M", "M", "F", "M", "M", "M"],
        "site": ["A", "A", "A", "B", "A", "A"],
        "yob": [1951, 1950, 1950, 1950, 1970, 1950],
        "evt_date": pd.to_datetime([None, "2019-06-01", None, None, "2020-01-10", "2020-01-10"]),
    })


def _rules(**overrides):
    options = dict(
        match_vars=["sex", "site"],
        id_field="id",
        method=MatchingMethod.INCIDENCE_DENSITY,
        index_date_field="idx_date",
        control_date_field="evt_date",
    )
    options.update(overrides)
    return build_rules(_cases(), _pool(), **options)


def test_incidence_density_predicate_applies_all_constraints():
    """Sex mismatch, other site, event before or on the index date and the case itself are excluded."""
    rules = _rules()
    case = _cases().iloc[0]

    pool = ControlPool(_pool(), "id", frozen=True)
    eligible = pool.eligible(rules.for_case(case))

    assert eligible["id"].tolist() == [10]


def test_event_strictly_after_index_date_is_eligible():
    pool_frame = _pool()
    pool_frame.loc[pool_frame["id"] == 11, "evt_date"] = pd.Timestamp("2020-01-11")
    rules = build_rules(
        _cases(), pool_frame, match_vars=["sex", "site"], id_field="id",
        method=MatchingMethod.INCIDENCE_DENSITY,
        index_date_field="idx_date", control_date_field="evt_date",
    )

    mask = rules.for_case(_cases().iloc[0])(pool_frame)

    assert pool_frame.loc[mask, "id"].tolist() == [10, 11]


def test_null_index_date_imposes_no_temporal_constraint():
    cases = _cases()
    cases.loc[0, "idx_date"] = pd.NaT
    rules = build_rules(
        cases, _pool(), match_vars=["sex", "site"], id_field="id",
        method=MatchingMethod.INCIDENCE_DENSITY,
        index_date_field="idx_date", control_date_field="evt_date",
    )

    mask = rules.for_case(cases.iloc[0])(_pool())

    assert _pool().loc[mask, "id"].tolist() == [10, 11, 14]


def test_exact_method_ignores_index_date():
    rules = _rules(method=MatchingMethod.EXACT)
    assert not rules.uses_index_date

    mask = rules.for_case(_cases().iloc[0])(_pool())

    assert _pool().loc[mask, "id"].tolist() == [10, 11, 14]


def test_missing_match_value_in_case_matches_nothing():
    rules = _rules()
    mask = rules.for_case(_cases().iloc[1])(_pool())
    assert not mask.any()


def test_extra_condition_is_combined_with_match_vars():
    rules = _rules(method=MatchingMethod.EXACT, extra_conditions="control.yob == case.yob")

    mask = rules.for_case(_cases().iloc[0])(_pool())

    # 12 and 13 share the year of birth but fail sex / site
    assert _pool().loc[mask, "id"].tolist() == [11]


@pytest.mark.parametrize("overrides, column, table", [
    (dict(match_vars=["sex", "region"]), "region", "cases"),
    (dict(extra_vars=["evt_date"]), "evt_date", "cases"),
    (dict(control_date_field="death_date"), "death_date", "control_pool"),
    (dict(index_date_field="dx_date"), "dx_date", "cases"),
    (dict(extra_conditions="control.bmi < 30"), "bmi", "control_pool"),
    (dict(extra_conditions="control.yob < case.bmi"), "bmi", "cases"),
    (dict(id_field="patid"), "patid", "cases"),
])
def test_missing_columns_are_configuration_errors(overrides, column, table):
    with pytest.raises(ConfigurationError) as excinfo:
        _rules(**overrides)

    assert excinfo.value.column == column
    assert excinfo.value.table == table
    assert column in str(excinfo.value)


def test_pool_remove_is_permanent_and_private():
    source = _pool()
    pool = ControlPool(source, "id")

    pool.remove([10, 11])

    assert pool.ids == [12, 13, 14, 1]
    assert len(pool) == 4
    assert len(source) == 6


def test_frozen_pool_refuses_removal():
    pool = ControlPool(_pool(), "id", frozen=True)
    with pytest.raises(RuntimeError):
        pool.remove([10])
    assert len(pool) == 6


def test_empty_pool_has_no_eligible_controls():
    pool = ControlPool(_pool().iloc[0:0], "id")
    eligible = pool.eligible(_rules().for_case(_cases().iloc[0]))
    assert eligible.empty
