# ================================================================
# File     : exports.py
# Purpose  : Handle all export logic for RoleHound (HTML, CSV, JSON, XLSX)
# Notes    : Called by RoleHound.py once the audit report is built
# ================================================================

import pathlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.utils import fncPrintMessage, fncEnsureFolder, fncExportCSV, fncWriteJSON
from core.reporting import fncWriteHTMLReport
from core.workbook import fncWriteWorkbook

EXPORT_FORMATS = ("json", "csv", "html", "xlsx")


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# Notes    : "all" expands to every supported format
# ================================================================
def fncExportList(args_export) -> set:
    if not args_export:
        return set()
    out = set()
    for chunk in args_export:
        items = chunk if isinstance(chunk, (list, tuple)) else [chunk]
        for item in items:
            if isinstance(item, str):
                for part in item.replace(",", " ").split():
                    if part.strip():
                        out.add(part.strip().lower())
    if "all" in out:
        out.discard("all")
        out.update(EXPORT_FORMATS)
    unknown = out - set(EXPORT_FORMATS)
    if unknown:
        fncPrintMessage(f"Ignoring unknown export format(s): {', '.join(sorted(unknown))}", "warn")
    return out & set(EXPORT_FORMATS)


# ================================================================
# Function: fncGetExportPath
# Purpose  : Build structured output path under ~/.rolehound/reports/
# ================================================================
def fncGetExportPath(run_id: str, root: pathlib.Path = None) -> pathlib.Path:
    if root is None:
        root = pathlib.Path.home() / ".rolehound" / "reports"
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    slug = (run_id or "audit").replace("/", "_").replace("\\", "_")
    out_dir = pathlib.Path(root) / f"{ts}_{slug}"
    fncEnsureFolder(out_dir)
    return out_dir


# ================================================================
# Function: fncExportReport
# Purpose  : Write every requested format for one audit report
# Notes    : report is AuditReport.to_dict(); passes holds each service
#            pass summary for the HTML "Services" tab. Returns the
#            written paths keyed by format.
# ================================================================
def fncExportReport(report: Dict[str, Any], formats: set, root: Optional[pathlib.Path] = None,
                    passes: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, str]:
    out_dir = fncGetExportPath(report.get("run_id") or "", root)
    written: Dict[str, str] = {}

    if "json" in formats:
        path = out_dir / "rolehound_report.json"
        payload = dict(report)
        if passes:
            payload["passes"] = passes
        fncWriteJSON(str(path), payload)
        written["json"] = str(path)

    if "csv" in formats:
        assignments = out_dir / "role_assignments.csv"
        findings = out_dir / "compliance_findings.csv"
        fncExportCSV(str(assignments), report.get("role_assignments") or [])
        fncExportCSV(str(findings), report.get("compliance_findings") or [])
        written["csv"] = str(assignments)

    if "html" in formats:
        path = out_dir / "RoleHound_Report.html"
        fncWriteHTMLReport(str(path), report, passes)
        written["html"] = str(path)

    if "xlsx" in formats:
        path = out_dir / "RoleHound_Report.xlsx"
        fncWriteWorkbook(str(path), report)
        written["xlsx"] = str(path)

    fncPrintMessage(f"Exports written → {out_dir}", "success")
    return written
