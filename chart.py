from typing import List, Sequence

import altair as alt
import pandas as pd

from data_processing import Series, parse_dates
from tooltip import classify_duration

FRAME_COLUMNS = ["DateTime", "Date", "Series", "Value", "Duration", "Band", "IsAverage"]


def series_to_frame(series: Sequence[Series]) -> pd.DataFrame:
    """Return a long-form frame of all points with strictly parsed dates.

    Points whose date token does not match ``DD.MM.YYYY`` are left out.
    """

    records: List[dict] = []
    for line in series:
        for point in line.points:
            records.append(
                {
                    "Date": point.date,
                    "Series": line.key,
                    "Value": float(point.value),
                    "Duration": point.duration,
                    "Band": None if line.is_average else classify_duration(point.duration),
                    "IsAverage": line.is_average,
                }
            )
    if not records:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    df = pd.DataFrame(records)
    df["DateTime"] = parse_dates(df["Date"]).to_numpy()
    df = df.dropna(subset=["DateTime"])
    df["Duration"] = pd.to_numeric(df["Duration"], errors="coerce")
    return df[FRAME_COLUMNS].reset_index(drop=True)


def build_progress_chart(series: Sequence[Series]) -> alt.Chart:
    """Line chart of every series, colored by the preassigned series colors."""

    df_chart = series_to_frame(series)
    domain = [line.key for line in series]
    color_range = [line.color for line in series]
    color_scale = alt.Scale(domain=domain, range=color_range)

    nearest = alt.selection_point(
        nearest=True, on="mouseover", fields=["DateTime"], empty=False
    )

    base = alt.Chart(df_chart).encode(
        x=alt.X(
            "DateTime:T",
            title="Trainings",
            axis=alt.Axis(format="%d.%m.%y"),
        ),
        y=alt.Y("Value:Q", title="Weight or Time", axis=alt.Axis(format=",r")),
        color=alt.Color(
            "Series:N",
            scale=color_scale,
            sort=domain,
            legend=alt.Legend(
                title="Machines",
                orient="bottom",
                direction="horizontal",
                labelLimit=1000,
                columns=6,
            ),
        ),
    )
    machine_lines = base.transform_filter("!datum.IsAverage").mark_line(
        point=True, strokeWidth=1.5
    )
    average_line = base.transform_filter("datum.IsAverage").mark_line(strokeWidth=3.5)
    rule = (
        alt.Chart(df_chart)
        .mark_rule(color="#999999")
        .encode(
            x="DateTime:T",
            opacity=alt.condition(nearest, alt.value(0.6), alt.value(0)),
            tooltip=[
                alt.Tooltip("Date:N", title="Date"),
            ],
        )
        .add_params(nearest)
    )
    points = base.mark_point(filled=True, size=60).encode(
        opacity=alt.condition(nearest, alt.value(1), alt.value(0)),
        tooltip=[
            alt.Tooltip("Series:N", title="Machine"),
            alt.Tooltip("Date:N", title="Date"),
            alt.Tooltip("Value:Q", title="Value", format=",.2f"),
            alt.Tooltip("Duration:Q", title="Duration (s)"),
            alt.Tooltip("Band:N", title="Duration band"),
        ],
    )

    chart = (
        alt.layer(machine_lines, average_line, rule, points)
        .properties(height=480)
        .configure(background="white", view=alt.ViewConfig(fill="white", stroke=None))
        .configure_legend(symbolLimit=0)
    )
    return chart


__all__ = ["build_progress_chart", "series_to_frame"]
