from io import BytesIO
from pathlib import Path
import sys

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import data_processing
from colors import AVERAGE_COLOR
from data_processing import (
    CsvTokenizeError,
    EmptyTableError,
    build_chart_series,
    parse_training_csv,
    read_table,
)


class _BytesFile(BytesIO):
    def __init__(self, data: str, name: str = "training.csv"):
        super().__init__(data.encode("utf-8"))
        self.name = name


SCENARIO = "\n".join(
    [
        "Datum;A1;;A2;;B1;",
        "01.01.2024;100;110;200;130;50;",
        "02.01.2024;105;115;;;55;",
        "",
    ]
)


def test_end_to_end_scenario():
    session = parse_training_csv(_BytesFile(SCENARIO))

    series = session.series(group_mode=False)
    assert [s.key for s in series] == ["Average", "A1", "A2", "B1"]

    by_key = {s.key: s for s in series}
    assert len(by_key["A1"].points) == 2
    assert [p.date for p in by_key["A2"].points] == ["01.01.2024"]
    assert len(by_key["B1"].points) == 2
    assert by_key["A1"].points[0].duration == 110.0
    assert by_key["B1"].points[0].duration is None

    average = by_key["Average"]
    assert average.is_average
    assert average.color == AVERAGE_COLOR
    assert [p.date for p in average.points] == ["01.01.2024", "02.01.2024"]
    assert average.points[0].value == pytest.approx(116.67, abs=0.01)
    assert average.points[1].value == pytest.approx(80.0)


def test_read_table_keeps_blank_headers_and_tolerates_ragged_rows():
    text = "\ufeffDatum;A1;\n01.01.2024;100\n02.01.2024;105;120;extra\n"

    rows = read_table(_BytesFile(text))

    assert rows[0][:3] == ["Datum", "A1", ""]
    assert rows[1][:2] == ["01.01.2024", "100"]
    assert rows[2] == ["02.01.2024", "105", "120", "extra"]


def test_group_mode_sorts_machines_naturally_after_average():
    text = "\n".join(
        [
            "Datum;B1;;A10;;A2;",
            "01.01.2024;10;;20;;30;",
        ]
    )
    session = parse_training_csv(_BytesFile(text))

    assert [s.key for s in session.series(False)] == ["Average", "B1", "A10", "A2"]
    assert [s.key for s in session.series(True)] == ["Average", "A2", "A10", "B1"]


def test_reordering_is_idempotent_and_keeps_colors():
    session = parse_training_csv(_BytesFile(SCENARIO))
    colors_before = dict(session.colors)

    first = session.series(True)
    second = session.series(True)
    ungrouped = session.series(False)

    assert [s.key for s in first] == [s.key for s in second]
    assert [s.color for s in first] == [s.color for s in second]
    assert {s.key: s.color for s in ungrouped} == {s.key: s.color for s in first}
    assert session.colors == colors_before


def test_colors_do_not_depend_on_column_order():
    swapped = "\n".join(
        [
            "Datum;B1;;A2;;A1;",
            "01.01.2024;50;;200;130;100;110",
        ]
    )
    as_written = parse_training_csv(_BytesFile(SCENARIO))
    reordered = parse_training_csv(_BytesFile(swapped))

    assert as_written.colors == reordered.colors


def test_no_values_yields_empty_session_without_average():
    session = build_chart_series([["Datum", "A1", ""], ["01.01.2024", "", ""]])

    assert session.empty
    assert session.average is None
    assert session.series(True) == []


def test_dates_are_listed_chronologically():
    session = build_chart_series(
        [
            ["Datum", "A1"],
            ["10.02.2024", "1"],
            ["03.01.2024", "2"],
            ["03.01.2024", "3"],
        ]
    )

    assert session.dates() == ["03.01.2024", "10.02.2024"]


def test_record_input_with_labelled_duration_columns():
    records = [
        {"Datum": "01.01.2024", "A1": "100", "A1 sec": "130", "B1 lbs": "50"},
        {"Datum": "02.01.2024", "A1": "105", "A1 sec": "140", "B1 lbs": ""},
    ]

    session = build_chart_series(records)

    assert [s.key for s in session.machine_series] == ["A1", "B1"]
    assert all(p.duration is None for p in session.machine_series[0].points)


def test_record_input_maps_unnamed_columns_to_durations():
    records = [{"Datum": "01.01.2024", "A1": "100", "Unnamed: 2": "130"}]

    session = build_chart_series(records)

    assert session.machine_series[0].points[0].duration == 130.0


@pytest.mark.parametrize("table", [[], [["Datum", "A1"]], [["Datum"], ["01.01.2024"]]])
def test_tables_without_data_are_rejected(table):
    with pytest.raises(EmptyTableError):
        build_chart_series(table)


def test_empty_file_is_rejected():
    with pytest.raises(EmptyTableError):
        read_table(_BytesFile("  \n\n"))


def test_tokenizer_failure_is_reported(monkeypatch):
    def _broken_read_csv(*_args, **_kwargs):
        raise pd.errors.ParserError("unterminated quote")

    monkeypatch.setattr(data_processing.pd, "read_csv", _broken_read_csv)

    with pytest.raises(CsvTokenizeError):
        read_table(_BytesFile("Datum;A1\n01.01.2024;1\n"))


def test_machine_named_average_keeps_its_own_color():
    session = build_chart_series(
        [
            ["Datum", "Average", "", "A1", ""],
            ["01.01.2024", "10", "", "20", ""],
        ]
    )

    keys = [s.key for s in session.series(False)]
    assert keys == ["Average", "Average (2)", "A1"]
    assert session.colors["Average"] == AVERAGE_COLOR
    assert session.colors["Average (2)"] != AVERAGE_COLOR


def test_dates_list_unpadded_tokens_last():
    session = build_chart_series(
        [
            ["Datum", "A1"],
            ["1.1.2024", "1"],
            ["02.01.2024", "2"],
        ]
    )

    assert session.dates() == ["02.01.2024", "1.1.2024"]
