import csv
import io
import numbers
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import os

import numpy as np
import pandas as pd

from colors import AVERAGE_COLOR, assign_colors, natural_sort_key

# Debug toggler: set KC_DEBUG=1 to enable verbose parse logs
DEBUG = os.getenv("KC_DEBUG", "0") == "1"


def dprint(*args, **kwargs):
    if DEBUG:
        print(*args, **kwargs)


DATE_FORMAT = "%d.%m.%Y"
DURATION_MARKER = "sec"
AVERAGE_KEY = "Average"

_ZERO_WIDTH_CHARS = ("\ufeff", "\u200b", "\u200c", "\u200d")

# Trailing weight unit on a machine header, e.g. "B1 lbs" or "C2 kg".
_WEIGHT_SUFFIX_RE = re.compile(r"\s*(?:lbs?|kg)\.?\s*$", re.IGNORECASE)

# Date tokens are two-digit day and month, four-digit year.
_DATE_TOKEN_RE = r"\d{2}\.\d{2}\.\d{4}"

# pandas names blank header cells "Unnamed: 3" when reading with a header row.
_UNNAMED_RE = re.compile(r"^Unnamed: \d+(?:_level_\d+)?$")


class KieserChartError(ValueError):
    """Base class for input problems that stop the pipeline."""


class EmptyTableError(KieserChartError):
    """The file has no header row or no data rows."""


class CsvTokenizeError(KieserChartError):
    """The file could not be split into semicolon-delimited rows."""


@dataclass(frozen=True)
class MachineColumn:
    name: str
    index: int
    duration_index: Optional[int] = None


@dataclass(frozen=True)
class DataPoint:
    date: str
    value: float
    duration: Optional[float] = None


@dataclass
class Series:
    """One line on the chart.

    ``points`` keep source row order for machine series; the Average series is
    sorted chronologically when it is built.
    """

    key: str
    points: List[DataPoint] = field(default_factory=list)
    is_average: bool = False
    color: Optional[str] = None


@dataclass
class HeaderLayout:
    date_column_index: int
    machine_columns: List[MachineColumn]
    convention: str


def _strip_bom_and_zero_width(text: str) -> str:
    for ch in _ZERO_WIDTH_CHARS:
        text = text.replace(ch, "")
    return text


def _norm(s: object) -> str:
    """Normalise unicode text by stripping noise and surrounding whitespace."""

    if s is None:
        return ""
    if isinstance(s, float) and pd.isna(s):
        return ""
    text = unicodedata.normalize("NFKC", _strip_bom_and_zero_width(str(s)))
    return text.strip()


def parse_dates(tokens) -> pd.Series:
    """Strictly parse ``DD.MM.YYYY`` tokens; anything else becomes ``NaT``."""

    text = pd.Series(tokens, dtype="object").astype("string").str.strip()
    valid = text.str.fullmatch(_DATE_TOKEN_RE).fillna(False).astype(bool)
    parsed = pd.to_datetime(text.where(valid), format=DATE_FORMAT, errors="coerce")
    return pd.Series(parsed, index=text.index)


def _cell(row: Sequence[object], index: Optional[int]) -> object:
    """Return the cell at ``index`` or ``None`` for ragged/short rows."""

    if index is None or index >= len(row):
        return None
    return row[index]


def read_table(file_obj) -> List[List[Optional[str]]]:
    """Return the rows of a semicolon-delimited export as lists of strings.

    Accepts Streamlit uploads, ``BytesIO`` objects or any stream exposing
    ``read()``. Cells missing on short rows come back as ``None``.
    """

    getter = getattr(file_obj, "getvalue", None)
    raw = getter() if callable(getter) else file_obj.read()
    if hasattr(file_obj, "seek"):
        file_obj.seek(0)

    if isinstance(raw, bytes):
        text = raw.decode("utf-8-sig", errors="replace")
    else:
        text = str(raw)
    text = _strip_bom_and_zero_width(text)

    if not text.strip():
        raise EmptyTableError("The selected file is empty.")

    # Rows may be longer than the header; size the frame to the widest line.
    width = max(line.count(";") for line in text.splitlines()) + 1

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=";",
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
        )
    except pd.errors.EmptyDataError as exc:
        raise EmptyTableError("The selected file is empty.") from exc
    except (pd.errors.ParserError, csv.Error) as exc:
        raise CsvTokenizeError(f"Could not read the CSV file: {exc}") from exc

    rows: List[List[Optional[str]]] = []
    for record in df.itertuples(index=False, name=None):
        cells = [None if pd.isna(cell) else str(cell) for cell in record]
        while cells and cells[-1] is None:
            cells.pop()
        rows.append(cells)
    dprint(f"[read] {len(rows)} rows x {df.shape[1]} columns")
    return rows


def records_to_table(records: Iterable[Mapping[str, object]]) -> List[List[object]]:
    """Convert header-keyed records into a header row followed by data rows."""

    records = list(records)
    if not records:
        return []

    keys = list(records[0].keys())
    header = ["" if _UNNAMED_RE.match(str(key)) else str(key) for key in keys]
    table: List[List[object]] = [header]
    for record in records:
        table.append([record.get(key) for key in keys])
    return table


def normalize_number(raw: object) -> Optional[float]:
    """Return a float parsed from a raw cell or ``None`` when there is no number.

    Unit suffixes and thousands separators are dropped. A lone comma is a
    decimal comma; when both comma and period occur the period groups
    thousands and the comma is the decimal mark.
    """

    if raw is None:
        return None
    if isinstance(raw, numbers.Real) and not isinstance(raw, bool):
        try:
            finite = bool(np.isfinite(raw))
        except (TypeError, OverflowError):
            return None
        return raw if finite else None

    cleaned = re.sub(r"[^0-9,.]", "", str(raw))
    if "," in cleaned and "." in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")

    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if np.isfinite(value) else None


def _is_duration_header(text: str) -> bool:
    return DURATION_MARKER in text.lower()


def _machine_name(header: str) -> str:
    stripped = _WEIGHT_SUFFIX_RE.sub("", header).strip()
    return stripped or header


def _unique_name(name: str, seen: Dict[str, int]) -> str:
    count = seen.get(name, 0) + 1
    seen[name] = count
    if count == 1:
        return name
    return f"{name} ({count})"


def classify_header(header_row: Sequence[object]) -> HeaderLayout:
    """Find the date column and the machine columns of a header row.

    Two conventions exist. Sparse headers leave the duration column after a
    machine blank (or name it with the duration marker) and it is paired with
    that machine. Fully labelled headers name every column and are never
    paired. A duration-marked column that is not paired is dropped.
    """

    headers = [_norm(cell) for cell in header_row]
    has_blank = any(not text for text in headers[1:])
    convention = "sparse" if has_blank else "labelled"

    machines: List[MachineColumn] = []
    # The Average series owns its key; a machine with that name is renumbered.
    seen: Dict[str, int] = {AVERAGE_KEY: 1}
    idx = 1
    while idx < len(headers):
        text = headers[idx]
        if not text:
            idx += 1
            continue
        if _is_duration_header(text):
            idx += 1
            continue

        name = _unique_name(_machine_name(text), seen)
        duration_index: Optional[int] = None
        nxt = idx + 1
        if convention == "sparse" and nxt < len(headers):
            if not headers[nxt] or _is_duration_header(headers[nxt]):
                duration_index = nxt
        machines.append(MachineColumn(name=name, index=idx, duration_index=duration_index))
        idx = nxt + 1 if duration_index is not None else nxt

    dprint(f"[header] convention={convention} machines={[m.name for m in machines]}")
    return HeaderLayout(date_column_index=0, machine_columns=machines, convention=convention)


def build_series(
    rows: Sequence[Sequence[object]],
    date_column_index: int,
    machine_columns: Sequence[MachineColumn],
) -> List[Series]:
    """Return one series per machine column, skipping cells without data."""

    result: List[Series] = []
    skipped = 0
    for column in machine_columns:
        points: List[DataPoint] = []
        for row in rows:
            date = _norm(_cell(row, date_column_index))
            value = normalize_number(_cell(row, column.index))
            if not date or value is None:
                skipped += 1
                continue
            duration = (
                normalize_number(_cell(row, column.duration_index))
                if column.duration_index is not None
                else None
            )
            points.append(DataPoint(date=date, value=value, duration=duration))

        if not points:
            dprint(f"[series] dropping '{column.name}' (no valid points)")
            continue
        result.append(Series(key=column.name, points=points))

    dprint(f"[series] built {len(result)} series, skipped {skipped} empty cells")
    return result


def aggregate_average(series: Sequence[Series]) -> Optional[Series]:
    """Return the per-date mean across machines, or ``None`` without data.

    Dates are grouped by their exact text; only machines with a point on a
    date count towards that date's mean.
    """

    records = [
        {"date": point.date, "value": point.value}
        for line in series
        if not line.is_average
        for point in line.points
    ]
    if not records:
        return None

    df = pd.DataFrame(records)
    means = df.groupby("date", sort=False)["value"].mean().reset_index()
    means["parsed"] = parse_dates(means["date"]).to_numpy()
    means = means.sort_values("parsed", kind="mergesort", na_position="last")

    points = [
        DataPoint(date=str(date), value=float(value))
        for date, value in zip(means["date"], means["value"])
    ]
    return Series(key=AVERAGE_KEY, points=points, is_average=True, color=AVERAGE_COLOR)


def order_series(series: Sequence[Series], group_mode: bool) -> List[Series]:
    """Average first, then machines in column order or naturally sorted."""

    averages = [line for line in series if line.is_average]
    machines = [line for line in series if not line.is_average]
    if group_mode:
        machines = sorted(machines, key=lambda line: natural_sort_key(line.key))
    return averages + machines


class ChartSession:
    """Series and colors for one loaded file.

    Colors are derived once when the session is created. Reordering for the
    group toggle reuses them.
    """

    def __init__(self, machine_series: List[Series], average: Optional[Series]):
        self.machine_series = machine_series
        self.average = average
        self.colors: Dict[str, str] = assign_colors([line.key for line in machine_series])
        for line in machine_series:
            line.color = self.colors[line.key]
        if average is not None:
            self.colors[average.key] = average.color or AVERAGE_COLOR

    @property
    def empty(self) -> bool:
        return not self.machine_series

    def series(self, group_mode: bool = False) -> List[Series]:
        all_series: List[Series] = list(self.machine_series)
        if self.average is not None:
            all_series.insert(0, self.average)
        return order_series(all_series, group_mode)

    def dates(self) -> List[str]:
        tokens = list(
            dict.fromkeys(point.date for line in self.machine_series for point in line.points)
        )
        parsed = parse_dates(tokens)
        order = parsed.sort_values(kind="mergesort", na_position="last").index
        return [tokens[i] for i in order]


def build_chart_series(table) -> ChartSession:
    """Run the full transformation for a tokenized table.

    ``table`` is either a list of rows (header first) or a list of
    header-keyed records.
    """

    rows = list(table or [])
    if rows and isinstance(rows[0], Mapping):
        rows = records_to_table(rows)

    if len(rows) < 2:
        raise EmptyTableError("The file needs a header row and at least one data row.")
    header, data_rows = rows[0], rows[1:]
    if len(header) < 2:
        raise EmptyTableError("The file has no machine columns next to the date column.")

    layout = classify_header(header)
    machine_series = build_series(data_rows, layout.date_column_index, layout.machine_columns)
    average = aggregate_average(machine_series)
    return ChartSession(machine_series, average)


def parse_training_csv(file_obj) -> ChartSession:
    return build_chart_series(read_table(file_obj))


__all__ = [
    "AVERAGE_KEY",
    "ChartSession",
    "CsvTokenizeError",
    "DataPoint",
    "EmptyTableError",
    "HeaderLayout",
    "KieserChartError",
    "MachineColumn",
    "Series",
    "aggregate_average",
    "build_chart_series",
    "build_series",
    "classify_header",
    "normalize_number",
    "order_series",
    "parse_dates",
    "parse_training_csv",
    "read_table",
    "records_to_table",
]
