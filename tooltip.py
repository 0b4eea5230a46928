"""Tooltip content for a single training date."""

import html
from typing import Dict, List, Optional, Sequence

import pandas as pd

from data_processing import Series


# Duration band thresholds in seconds.
DURATION_OK_MIN = 120.0
DURATION_GOOD_MIN = 150.0

BAND_COLORS: Dict[str, str] = {
    "bad": "#d62728",
    "ok": "#ff7f0e",
    "good": "#2ca02c",
}


def classify_duration(seconds: Optional[float]) -> Optional[str]:
    """Return ``"bad"``, ``"ok"`` or ``"good"`` for a time under tension."""

    if seconds is None or pd.isna(seconds):
        return None
    if seconds < DURATION_OK_MIN:
        return "bad"
    if seconds < DURATION_GOOD_MIN:
        return "ok"
    return "good"


def format_value(value: Optional[float]) -> str:
    if value is None or pd.isna(value):
        return ""
    text = f"{float(value):,.2f}".rstrip("0").rstrip(".")
    return text


def tooltip_rows(series: Sequence[Series], date: str) -> List[Dict[str, object]]:
    """Return one row per series with a point on ``date``, in series order."""

    rows: List[Dict[str, object]] = []
    for line in series:
        point = next((p for p in line.points if p.date == date), None)
        if point is None:
            continue
        row: Dict[str, object] = {
            "key": line.key,
            "color": line.color,
            "value": point.value,
            "value_text": format_value(point.value),
            "is_average": line.is_average,
        }
        if not line.is_average:
            row["duration"] = point.duration
            row["band"] = classify_duration(point.duration)
        rows.append(row)
    return rows


def tooltip_html(series: Sequence[Series], date: str) -> str:
    rows = tooltip_rows(series, date)
    parts = [f'<table class="kc-tooltip"><thead><tr><th colspan="4">{html.escape(date)}</th></tr></thead><tbody>']
    for row in rows:
        swatch = (
            f'<td><span style="display:inline-block;width:10px;height:10px;'
            f'background:{html.escape(str(row["color"] or ""))}"></span></td>'
        )
        cells = [
            swatch,
            f'<td class="key">{html.escape(str(row["key"]))}</td>',
            f'<td class="value">{row["value_text"]}</td>',
        ]
        if not row["is_average"]:
            band = row.get("band")
            duration = format_value(row.get("duration"))  # type: ignore[arg-type]
            if band:
                cells.append(
                    f'<td class="duration {band}" style="color:{BAND_COLORS[band]}">{duration}</td>'
                )
            else:
                cells.append('<td class="duration"></td>')
        parts.append("<tr>" + "".join(cells) + "</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)


__all__ = ["classify_duration", "format_value", "tooltip_html", "tooltip_rows"]
