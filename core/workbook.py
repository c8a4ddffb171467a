# ================================================================
# File     : core/workbook.py
# Purpose  : Excel export of the audit report (openpyxl)
# Notes    : Data only. Sheets: Summary, Assignments, Findings,
#            Top Roles, Top Users. Reads AuditReport.to_dict().
# ================================================================

from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from core.utils import fncEnsureFolder, fncPrintMessage

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill("solid", fgColor="7C2D12")
SEVERITY_FILLS = {
    "Critical": PatternFill("solid", fgColor="FECACA"),
    "High": PatternFill("solid", fgColor="FED7AA"),
    "Medium": PatternFill("solid", fgColor="FEF3C7"),
    "Low": PatternFill("solid", fgColor="D1FAE5"),
}
MAX_COL_WIDTH = 60


def _cell(val: Any) -> Any:
    if isinstance(val, (list, tuple)):
        return "; ".join(str(v) for v in val if v is not None)
    if isinstance(val, dict):
        return ", ".join(f"{k}={v}" for k, v in val.items())
    return val


def _autosize(ws) -> None:
    for idx, col in enumerate(ws.iter_cols(values_only=True), start=1):
        longest = max((len(str(v)) for v in col if v is not None), default=8)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(10, longest + 2), MAX_COL_WIDTH)


def _write_table(ws, rows: List[Dict[str, Any]], headers: Optional[List[str]] = None,
                 severity_col: Optional[str] = None) -> int:
    """Header row + one row per dict; returns number of data rows."""
    if headers is None:
        headers = []
        for r in rows:
            for k in r.keys():
                if k not in headers:
                    headers.append(k)
    if not headers:
        ws.append(["No data"])
        return 0

    ws.append(headers)
    for c in ws[1]:
        c.font = HEADER_FONT
        c.fill = HEADER_FILL
    for r in rows:
        ws.append([_cell(r.get(h)) for h in headers])
        if severity_col and r.get(severity_col) in SEVERITY_FILLS:
            ws.cell(row=ws.max_row, column=headers.index(severity_col) + 1).fill = SEVERITY_FILLS[r[severity_col]]

    ws.freeze_panes = "A2"
    ws.auto_filter.ref = ws.dimensions
    _autosize(ws)
    return len(rows)


def _write_summary(ws, report: Dict[str, Any]) -> None:
    ws.append(["RoleHound M365 Role Audit"])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append(["Run", report.get("run_id") or ""])
    ws.append(["Generated", report.get("timestamp") or ""])
    ws.append([])
    for k, v in (report.get("summary") or {}).items():
        ws.append([k, _cell(v)])
        ws.cell(row=ws.max_row, column=1).font = Font(bold=True)

    stats = report.get("statistics") or {}
    for title, key in (("By Service", "byService"), ("By Assignment Type", "byAssignmentType"),
                       ("By Principal Type", "byPrincipalType")):
        ws.append([])
        ws.append([title, "Count", "%"])
        for c in ws[ws.max_row]:
            c.font = HEADER_FONT
            c.fill = HEADER_FILL
        for row in stats.get(key) or []:
            ws.append([row.get("name"), row.get("count"), row.get("percentage")])

    ws.column_dimensions["A"].width = 34
    ws.column_dimensions["B"].width = 40
    for row in ws.iter_rows(min_col=2, max_col=2):
        for c in row:
            c.alignment = Alignment(horizontal="left")


# ================================================================
# Function: fncWriteWorkbook
# Purpose : Write the audit report to an .xlsx workbook
# Notes   : report is AuditReport.to_dict()
# ================================================================
def fncWriteWorkbook(path: str, report: Dict[str, Any]) -> None:
    fncPrintMessage(f"Generating Excel workbook: {path}", "info")
    wb = Workbook()

    _write_summary(wb.active, report)
    wb.active.title = "Summary"

    _write_table(wb.create_sheet("Assignments"), report.get("role_assignments") or [])
    _write_table(
        wb.create_sheet("Findings"),
        report.get("compliance_findings") or [],
        headers=["severity", "category", "issue", "details", "recommendation",
                 "affectedPrincipals", "frameworks", "remediationSteps"],
        severity_col="severity",
    )
    stats = report.get("statistics") or {}
    _write_table(wb.create_sheet("Top Roles"), stats.get("topRoles") or [],
                 headers=["roleName", "count", "riskLevel", "services"], severity_col="riskLevel")
    _write_table(wb.create_sheet("Top Users"), stats.get("topUsers") or [])

    fncEnsureFolder(str(Path(path).parent))
    wb.save(path)
    fncPrintMessage(f"Excel workbook written to {path}", "success")
