import pandas as pd
import pytest

from casecontrol.matching.tables import compress, convert_dates


def _events():
    return pd.DataFrame({
        "patid": [1, 2, 3],
        "eventdate": ["2001-02-03", None, "1999-12-31"],
        "yob": [1950.0, 1962.7, None],
        "practid": ["12", "7", "3"],
        "code": ["A1", "B2", "C3"],
    })


def test_convert_dates_parses_default_fields():
    events = _events()
    converted = convert_dates(events)

    assert pd.api.types.is_datetime64_any_dtype(converted["eventdate"])
    assert converted.loc[0, "eventdate"] == pd.Timestamp("2001-02-03")
    assert pd.isna(converted.loc[1, "eventdate"])
    # input left alone
    assert events.loc[0, "eventdate"] == "2001-02-03"


def test_convert_dates_day_offsets_and_extras():
    table = pd.DataFrame({"dx": [0, 365, None]})

    converted = convert_dates(table, date_fields=[], extras=["dx"], origin="2000-01-01")

    assert converted["dx"].tolist()[:2] == [pd.Timestamp("2000-01-01"), pd.Timestamp("2000-12-31")]
    assert pd.isna(converted.loc[2, "dx"])


def test_convert_dates_without_date_columns_returns_input():
    table = pd.DataFrame({"code": ["A"]})
    assert convert_dates(table) is table


def test_convert_dates_rejects_garbage():
    with pytest.raises(ValueError):
        convert_dates(pd.DataFrame({"eventdate": ["yesterday-ish"]}))


def test_compress_dates_and_integers():
    compressed = compress(convert_dates(_events()), origin="2000-01-01")

    assert compressed["eventdate"].tolist()[0] == 399
    assert compressed["eventdate"].tolist()[2] == -1
    assert pd.isna(compressed.loc[1, "eventdate"])
    assert str(compressed["yob"].dtype) == "Int64"
    assert compressed["yob"].tolist()[:2] == [1950, 1962]
    assert pd.isna(compressed.loc[2, "yob"])
    assert compressed["practid"].tolist() == [12, 7, 3]
    assert compressed["code"].tolist() == ["A1", "B2", "C3"]


def test_compress_then_convert_restores_dates():
    events = convert_dates(_events())
    restored = convert_dates(compress(events, origin="1970-01-01"), origin="1970-01-01")
    pd.testing.assert_series_equal(
        restored["eventdate"], events["eventdate"], check_dtype=False
    )


def test_strings_and_day_offsets_share_a_resolution():
    as_text = convert_dates(pd.DataFrame({"dx": ["2001-02-03", None]}), date_fields=["dx"])
    as_days = convert_dates(pd.DataFrame({"dx": [11356, None]}), date_fields=["dx"], origin="1970-01-01")
    already = convert_dates(
        pd.DataFrame({"dx": pd.to_datetime(["2001-02-03", None]).astype("datetime64[s]")}),
        date_fields=["dx"],
    )

    assert as_text["dx"].dtype == as_days["dx"].dtype == already["dx"].dtype
    pd.testing.assert_series_equal(as_text["dx"], as_days["dx"])
    pd.testing.assert_series_equal(as_text["dx"], already["dx"])
