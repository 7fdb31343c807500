"""
reporter.py — Settlement workbook generator.

Produces a multi-sheet Excel workbook for the finance team: what each
courier owes, how it builds up month by month and day by day, and the
operational alerts raised on the same run.

Sheets:
    1. Balances     — KPI tiles and the per-courier settlement balance
    2. Monthly      — monthly PeriodSummary rows per source
    3. Daily        — daily PeriodSummary rows per source, with a chart
    4. Alerts       — every alert, colour-coded by severity
    5. Discrepancies — courier returns not refunded on the storefront
    6. Performance  — courier rates, delivery times and order breakdowns
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.chart import BarChart, Reference
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.dataframe import dataframe_to_rows

from codrecon.aggregator import (
    city_breakdown,
    daily_trends,
    month_over_month,
    top_dates,
    week_over_week,
    weekday_breakdown,
)
from codrecon.engine import EngineResult, build_run_summary
from codrecon.models import SUMMARY_COLUMNS, Alert
from codrecon.performance import city_return_rates, courier_comparison, delivery_times

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Colour palette
# ---------------------------------------------------------------------------
COLOURS = {
    "navy":         "1F4E79",
    "dark_red":     "C00000",
    "dark_green":   "375623",
    "gold":         "BF8F00",
    "light_grey":   "F2F2F2",
    "white":        "FFFFFF",
    "critical_row": "FFCCCC",
    "warning_row":  "FFE5CC",
    "info_row":     "E2EFDA",
    "header_font":  "FFFFFF",
}

SEVERITY_ROW_COLOURS = {
    "Critical": COLOURS["critical_row"],
    "Warning":  COLOURS["warning_row"],
    "Info":     COLOURS["info_row"],
}

THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

SUMMARY_HEADERS = {
    "source":           "Source",
    "period_key":       "Period",
    "total_orders":     "Orders",
    "delivered_orders": "Delivered",
    "returned_orders":  "Returned",
    "gross_amount":     "Gross (Rs)",
    "fees":             "Fees (Rs)",
    "taxes":            "Taxes (Rs)",
    "withholding_tax":  "Withholding (Rs)",
    "upfront_payments": "Upfront (Rs)",
    "net_amount":       "Net (Rs)",
}


def _fill(hex_colour: str) -> PatternFill:
    return PatternFill(fill_type="solid", fgColor=hex_colour)


def _header_font() -> Font:
    return Font(name="Calibri", bold=True, color=COLOURS["header_font"], size=11)


def _title_font(size: int = 14) -> Font:
    return Font(name="Calibri", bold=True, color=COLOURS["navy"], size=size)


def _auto_fit_columns(ws, min_width: int = 10, max_width: int = 60) -> None:
    """Set each column's width from its longest cell value."""
    for col in ws.columns:
        longest = max((len(str(cell.value)) for cell in col if cell.value is not None), default=0)
        ws.column_dimensions[get_column_letter(col[0].column)].width = min(
            max(longest + 4, min_width), max_width
        )


def _write_header(ws, row: int, headers: list[str], colour: str) -> None:
    for col_i, h in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col_i, value=h)
        cell.fill = _fill(colour)
        cell.font = _header_font()
        cell.alignment = Alignment(horizontal="center", wrap_text=True)
        cell.border = THIN_BORDER


def _write_kpi_tile(ws, row: int, col: int, label: str, value: str, colour: str) -> None:
    """Two-cell KPI tile: label above, value below."""
    label_cell = ws.cell(row=row, column=col, value=label)
    label_cell.fill = _fill(colour)
    label_cell.font = _header_font()
    label_cell.alignment = Alignment(horizontal="center", vertical="center")
    label_cell.border = THIN_BORDER

    value_cell = ws.cell(row=row + 1, column=col, value=value)
    value_cell.font = Font(name="Calibri", bold=True, size=16, color=colour)
    value_cell.alignment = Alignment(horizontal="center", vertical="center")
    value_cell.fill = _fill(COLOURS["light_grey"])
    value_cell.border = THIN_BORDER


def _write_frame(ws, df: pd.DataFrame, start_row: int, colour: str) -> int:
    """Write a frame with a styled header; returns the last row written."""
    headers = [SUMMARY_HEADERS.get(c, c) for c in df.columns]
    _write_header(ws, start_row, headers, colour)
    row_i = start_row
    for row_i, row in enumerate(
        dataframe_to_rows(df, index=False, header=False), start=start_row + 1
    ):
        for col_i, val in enumerate(row, start=1):
            cell = ws.cell(row=row_i, column=col_i, value=val)
            cell.fill = _fill(COLOURS["light_grey"])
            cell.border = THIN_BORDER
            if "(Rs)" in headers[col_i - 1]:
                cell.number_format = "#,##0.00"
    return row_i


def _stack_summaries(frames: dict[str, pd.DataFrame]) -> pd.DataFrame:
    stacked = [
        df.assign(source=source)[["source"] + SUMMARY_COLUMNS]
        for source, df in sorted(frames.items())
        if not df.empty
    ]
    if not stacked:
        return pd.DataFrame(columns=["source"] + SUMMARY_COLUMNS)
    return pd.concat(stacked, ignore_index=True)


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------

def _build_balances_sheet(ws, result: EngineResult, run_date: str, currency: str) -> None:
    ws.sheet_properties.tabColor = COLOURS["navy"]
    summary = build_run_summary(result)

    ws.merge_cells("A1:H1")
    title = ws["A1"]
    title.value = "COD SETTLEMENT MONITOR — COURIER BALANCES"
    title.font = Font(name="Calibri", bold=True, size=16, color=COLOURS["white"])
    title.fill = _fill(COLOURS["navy"])
    title.alignment = Alignment(horizontal="center", vertical="center")
    ws.row_dimensions[1].height = 30

    ws.merge_cells("A2:H2")
    sub = ws["A2"]
    sub.value = f"Report Date: {run_date}  |  Window: {result.window}" + (
        f"  |  PARTIAL: no data from {', '.join(result.failed_sources)}" if result.partial else ""
    )
    sub.font = Font(name="Calibri", italic=True, size=10, color=COLOURS["navy"])
    sub.alignment = Alignment(horizontal="center", vertical="center")

    tiles = [
        ("ORDERS",       f"{summary['total_orders']:,}",                    COLOURS["navy"]),
        ("NET OWED",     f"{currency} {summary['net_owed']:,.2f}",          COLOURS["navy"]),
        ("RECEIVED",     f"{currency} {summary['received']:,.2f}",          COLOURS["dark_green"]),
        ("OUTSTANDING",  f"{currency} {summary['outstanding']:,.2f}",       COLOURS["dark_red"]),
        ("CRITICAL",     str(summary["critical_alerts"]),                   "CC0000"),
        ("WARNING",      str(summary["warning_alerts"]),                    COLOURS["gold"]),
        ("SKIPPED",      str(summary["skipped_records"]),                   COLOURS["navy"]),
    ]
    for i, (label, value, colour) in enumerate(tiles, start=1):
        _write_kpi_tile(ws, row=4, col=i, label=label, value=value, colour=colour)
    ws.row_dimensions[5].height = 30

    ws.cell(row=7, column=1, value="BALANCE BY COURIER").font = _title_font(12)
    headers = ["Courier", "Net Owed (Rs)", "Received (Rs)", "Outstanding (Rs)", "Receipts"]
    _write_header(ws, 8, headers, COLOURS["navy"])
    for row_i, (source, balance) in enumerate(sorted(result.balances.items()), start=9):
        values = [
            source,
            balance.net_owed,
            balance.received,
            balance.outstanding,
            balance.receipts_matched,
        ]
        for col_i, val in enumerate(values, start=1):
            cell = ws.cell(row=row_i, column=col_i, value=val)
            cell.fill = _fill(COLOURS["light_grey"])
            cell.border = THIN_BORDER
            if col_i in (2, 3, 4):
                cell.number_format = "#,##0.00"
        if balance.outstanding < 0:
            ws.cell(row=row_i, column=4).font = Font(name="Calibri", bold=True, color=COLOURS["dark_red"])

    _auto_fit_columns(ws)


def _build_summary_sheet(ws, frames: dict[str, pd.DataFrame], colour: str, chart_title: str = "") -> None:
    ws.sheet_properties.tabColor = colour
    stacked = _stack_summaries(frames)
    last_row = _write_frame(ws, stacked, start_row=1, colour=colour)
    ws.freeze_panes = "A2"
    ws.auto_filter.ref = f"A1:{get_column_letter(len(stacked.columns))}1"

    if chart_title and len(stacked) > 1:
        net_col = list(stacked.columns).index("net_amount") + 1
        chart = BarChart()
        chart.type = "col"
        chart.title = chart_title
        chart.style = 10
        chart.height = 12
        chart.width = 22
        chart.add_data(
            Reference(ws, min_col=net_col, min_row=1, max_row=last_row),
            titles_from_data=True,
        )
        ws.add_chart(chart, f"{get_column_letter(len(stacked.columns) + 2)}2")

    _auto_fit_columns(ws)


def _write_section(ws, row: int, title: str, df: pd.DataFrame, colour: str) -> int:
    """Titled table; returns the row after it, leaving one blank line."""
    ws.cell(row=row, column=1, value=title).font = _title_font(12)
    if df.empty:
        ws.cell(row=row + 1, column=1, value="No data for this run.")
        return row + 3
    return _write_frame(ws, df, start_row=row + 1, colour=colour) + 2


def _build_performance_sheet(ws, result: EngineResult, run_date: date) -> None:
    ws.sheet_properties.tabColor = COLOURS["dark_green"]
    orders = result.courier_orders
    colour = COLOURS["dark_green"]

    growth = month_over_month(orders, today=run_date)
    weekly = week_over_week(orders, today=run_date)
    tiles = [
        ("ORDERS MoM",  growth["orders"]),
        ("REVENUE MoM", growth["revenue"]),
        ("ORDERS 7D",   weekly["orders"]),
        ("REVENUE 7D",  weekly["revenue"]),
    ]
    for i, (label, change) in enumerate(tiles, start=1):
        value = f"{change.current:,.0f} ({change.percentage:+.1f}%)"
        _write_kpi_tile(ws, row=1, col=i, label=label, value=value, colour=colour)

    times = delivery_times(orders)
    sections = [
        ("COURIER COMPARISON", courier_comparison(orders)),
        ("AVERAGE DELIVERY DAYS BY COURIER", times["by_courier"]),
        ("AVERAGE DELIVERY DAYS BY CITY", times["by_city_courier"]),
        ("HIGHEST RETURN-RATE CITIES", city_return_rates(orders)),
        ("ORDERS BY CITY", city_breakdown(orders)),
        ("ORDERS BY WEEKDAY", weekday_breakdown(orders)),
        ("BUSIEST DAYS", top_dates(orders)),
        ("DAILY ORDERS BY SOURCE", daily_trends(orders)),
        ("STOREFRONT REVENUE BY COURIER", result.storefront_couriers),
        ("STOREFRONT REVENUE BY MONTH", result.storefront_monthly),
    ]
    row = 4
    for title, df in sections:
        row = _write_section(ws, row, title, df, colour)
    _auto_fit_columns(ws)


ALERT_DETAIL_WIDTH = 200


def _alert_count(details: dict[str, Any]) -> Any:
    return details.get("total_count", details.get("returned", details.get("total", "")))


def _alert_row(alert: Alert) -> list[Any]:
    """Sheet row for one alert, built from its serialised form."""
    data = alert.to_dict()
    details = json.dumps(data["details"], default=str, sort_keys=True)
    if len(details) > ALERT_DETAIL_WIDTH:
        details = details[: ALERT_DETAIL_WIDTH - 3] + "..."
    return [
        data["severity"],
        data["type"],
        data["subject_key"],
        data["title"],
        _alert_count(data["details"]),
        details,
    ]


def _build_alerts_sheet(ws, result: EngineResult) -> None:
    ws.sheet_properties.tabColor = COLOURS["dark_red"]
    headers = ["Severity", "Type", "Subject", "Title", "Count", "Details"]
    _write_header(ws, 1, headers, COLOURS["dark_red"])
    ws.freeze_panes = "A2"

    for row_i, alert in enumerate(result.alerts, start=2):
        fill = _fill(SEVERITY_ROW_COLOURS.get(alert.severity.value, COLOURS["light_grey"]))
        for col_i, val in enumerate(_alert_row(alert), start=1):
            cell = ws.cell(row=row_i, column=col_i, value=val)
            cell.fill = fill
            cell.border = THIN_BORDER

    if not result.alerts:
        ws.cell(row=2, column=1, value="No alerts raised on this run.")
    _auto_fit_columns(ws)



def _build_discrepancy_sheet(ws, result: EngineResult) -> None:
    ws.sheet_properties.tabColor = COLOURS["gold"]
    frame = result.discrepancies
    if frame is None or frame.empty:
        ws.cell(row=1, column=1, value="No return discrepancies found.").font = _title_font(12)
        return
    display = frame.copy()
    display["order_date"] = pd.to_datetime(display["order_date"]).dt.strftime("%Y-%m-%d")
    display = display.rename(columns={"gross_amount": "Amount (Rs)"})
    _write_frame(ws, display, start_row=1, colour=COLOURS["gold"])
    ws.freeze_panes = "A2"
    _auto_fit_columns(ws)


def generate_report(
    result: EngineResult,
    cfg: dict[str, Any] | None = None,
    run_date: date | None = None,
) -> Path:
    """Write the settlement workbook for one engine run.

    Args:
        result: EngineResult from engine.run_engine().
        cfg: Parsed configuration (uses `paths` and `project.currency`).
        run_date: Date stamped on the workbook and its file name.

    Returns:
        Path to the generated .xlsx file.

    Raises:
        OSError: If output directory cannot be created.
    """
    cfg = cfg or {}
    paths = cfg.get("paths") or {}
    currency = (cfg.get("project") or {}).get("currency", "PKR")
    run_date_str = (run_date or date.today()).strftime("%Y-%m-%d")

    output_dir = Path(paths.get("output_dir", "output/reports"))
    output_dir.mkdir(parents=True, exist_ok=True)
    filename = paths.get("report_filename", "cod_settlement_{date}.xlsx").format(date=run_date_str)
    output_path = output_dir / filename

    wb = Workbook()
    wb.remove(wb.active)

    _build_balances_sheet(wb.create_sheet("Balances"), result, run_date_str, currency)
    logger.info("Built Balances sheet (%d couriers)", len(result.balances))

    _build_summary_sheet(wb.create_sheet("Monthly"), result.monthly, COLOURS["dark_green"])
    _build_summary_sheet(
        wb.create_sheet("Daily"), result.daily, COLOURS["navy"], chart_title="Daily Net Settlement"
    )
    logger.info("Built Monthly and Daily sheets")

    _build_alerts_sheet(wb.create_sheet("Alerts"), result)
    logger.info("Built Alerts sheet (%d alerts)", len(result.alerts))

    _build_discrepancy_sheet(wb.create_sheet("Discrepancies"), result)

    _build_performance_sheet(wb.create_sheet("Performance"), result, run_date or date.today())
    logger.info("Built Discrepancies and Performance sheets")

    wb.save(output_path)
    logger.info("Excel report saved to %s", output_path)
    return output_path
