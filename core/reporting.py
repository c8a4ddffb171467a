# ================================================================
# File     : core/reporting.py
# Purpose  : Single-file HTML report for a RoleHound audit run
#            (KPI cards, severity chart, statistics, findings and
#            the full assignment table, split into tabs)
# Notes    : Renders the dict from AuditReport.to_dict(); nothing is
#            recomputed here. Chart.js is pulled from the CDN.
# ================================================================

import os, html, datetime, re, json
from typing import Dict, Any, List, Optional, Tuple
from core.utils import fncPrintMessage

CHARTJS_TAG = '<script src="https://cdn.jsdelivr.net/npm/chart.js@4.4.1/dist/chart.umd.min.js"></script>'

SEVERITY_PILL = {"Critical": "crit", "High": "high", "Medium": "warn", "Low": "ok"}
RISK_PILL = SEVERITY_PILL


# ---------- tiny helpers ----------

def _esc(v: Any) -> str:
    return "" if v is None else html.escape(str(v))

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(name).lower()).strip("-")

def _fmt_cell(val: Any) -> str:
    if isinstance(val, list):
        return ", ".join(str(v) for v in val)
    if isinstance(val, dict):
        s = json.dumps(val, separators=(",", ":"), ensure_ascii=False)
        return s if len(s) <= 220 else s[:200] + " … +" + str(len(s) - 200) + " chars"
    if isinstance(val, bool):
        return "Yes" if val else "No"
    return "" if val is None else str(val)

def _split_camel(name: str) -> str:
    s = re.sub(r"(?<!^)(?=[A-Z])", " ", str(name))
    return re.sub(r"\s+", " ", s).strip()

def _pill(text: Any, cls: str) -> str:
    return f"<span class='pill xs {cls}'>{_esc(text)}</span>"


# ---------- CSS ----------

def _base_css() -> str:
    return """
:root{
  --accent:#c2410c; --accent2:#7c2d12;
  --text:#1b2330; --bg:#f5f7fb; --card:#ffffff; --border:#e3e8ef; --muted:#667085;
}
@media (prefers-color-scheme: dark){
  :root{ --bg:#0e1217; --card:#1b212a; --text:#e7edf7; --border:#2a3340; --muted:#9fb2cc; }
}
*{box-sizing:border-box} html,body{margin:0;padding:0}
body{font:15px/1.5 "Segoe UI",Roboto,Arial,system-ui;background:var(--bg);color:var(--text);}
.header{background:linear-gradient(90deg,var(--accent2),var(--accent));color:#fff;
  padding:22px 28px;box-shadow:0 4px 14px rgba(0,0,0,.25)}
.header h1{margin:0;font-weight:800;font-size:1.9rem}
.header h2{margin:4px 0 2px 0;font-weight:500;opacity:.95}
.header p{margin:4px 0 0 0;opacity:.85;font-size:.9rem}
.container{width:95%;max-width:1900px;margin:24px auto;background:var(--card);
  border:1px solid var(--border);border-radius:12px;padding:22px 26px;box-shadow:0 10px 30px rgba(0,0,0,.20)}
h3{color:var(--accent);border-bottom:2px solid color-mix(in srgb,var(--accent) 60%, transparent);
  padding-bottom:6px;margin:16px 0 8px 0;font-weight:700}
.card{margin:18px 0}
.card h4{margin:0 0 8px 0;font-size:1.05rem}
.tablewrap{overflow-x:auto}
table{width:100%;border-collapse:separate;border-spacing:0;margin-top:8px;
  border:1px solid var(--border);border-radius:10px;overflow:hidden}
th,td{padding:10px 12px;border-bottom:1px solid var(--border);overflow-wrap:anywhere}
th{white-space:nowrap;background:linear-gradient(90deg,var(--accent2),var(--accent));color:#fff;text-align:left}
tr:nth-child(even) td{background:color-mix(in srgb,var(--card) 88%, #000 12%)}
table.summary{width:min(760px,100%)}
table.summary th{width:42%;background:var(--accent2)}
.footer{width:95%;max-width:1200px;margin:26px auto 12px auto;color:var(--muted);text-align:center;font-size:.9rem}

.pill{display:inline-flex;align-items:center;padding:2px 10px;border-radius:9999px;font-weight:700;white-space:nowrap}
.pill.xs{padding:1px 6px;font-size:.8rem}
.pill.ok{background:#10b98126;color:#10b981}
.pill.warn{background:#f59e0b26;color:#f59e0b}
.pill.high{background:#f9731626;color:#f97316}
.pill.crit{background:#ef444426;color:#ef4444}

.grid{display:grid;gap:12px}
.grid.kpis{grid-template-columns:repeat(auto-fit,minmax(220px,1fr))}
.grid.two{grid-template-columns:repeat(auto-fit,minmax(420px,1fr))}
.card-rounded{border-radius:12px;box-shadow:0 6px 18px rgba(0,0,0,.08);border:1px solid var(--border);padding:14px 16px}
.kpi .label{color:var(--muted);font-weight:600}
.kpi .value{font-size:1.8rem;font-weight:800;margin-top:4px}
.kpi.danger .value{color:#ef4444}
.kpi.warning .value{color:#f59e0b}
.summary-grid{display:grid;grid-template-columns:1fr minmax(260px,420px);gap:12px;align-items:start}
@media (max-width: 1100px){ .summary-grid{grid-template-columns:1fr} }

.finding{border-left:4px solid var(--border);margin:12px 0}
.finding.crit{border-left-color:#ef4444} .finding.high{border-left-color:#f97316}
.finding.warn{border-left-color:#f59e0b} .finding.ok{border-left-color:#10b981}
.finding .meta{color:var(--muted);font-size:.9rem}
.finding ol{margin:6px 0 0 18px;padding:0}

.tabs{width:95%;max-width:1200px;margin:24px auto 0 auto}
.tabbar{display:flex;flex-wrap:wrap;gap:8px;padding:0 4px}
.tabbar button{background:var(--card);color:var(--text);border:1px solid var(--border);
  padding:8px 12px;border-radius:999px;cursor:pointer;font-weight:600;font-size:.9rem}
.tabbar button.active{background:linear-gradient(90deg,var(--accent2),var(--accent));color:#fff;border-color:transparent}
.tabpanel{display:none}
.tabpanel.active{display:block}
.filter{margin:8px 0;padding:6px 10px;width:min(420px,100%);border:1px solid var(--border);border-radius:8px;
  background:var(--card);color:var(--text)}
"""

TABS_JS = """
const buttons=[...document.querySelectorAll('.tabbar button')];
const panels=[...document.querySelectorAll('.tabpanel')];
function activate(id){
  buttons.forEach(b=>b.classList.toggle('active',b.dataset.tab===id));
  panels.forEach(p=>p.classList.toggle('active',p.id===id));
  history.replaceState(null,'','#'+id);
}
buttons.forEach(b=>b.addEventListener('click',()=>activate(b.dataset.tab)));
const hash=location.hash.replace('#','');
if(hash && document.getElementById(hash)){ activate(hash); }
document.querySelectorAll('input.filter').forEach(inp=>{
  inp.addEventListener('input',()=>{
    const q=inp.value.toLowerCase();
    document.querySelectorAll('#'+inp.dataset.table+' tbody tr').forEach(tr=>{
      tr.style.display=tr.textContent.toLowerCase().includes(q)?'':'none';
    });
  });
});
"""


# ---------- renderers ----------

def _header_html(title: str, subtitle: Optional[str] = None) -> str:
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    sub = f"<p>{_esc(subtitle)}</p>" if subtitle else ""
    return f"""
  <div class="header">
    <h1>🐕 RoleHound Report</h1>
    <h2>{_esc(title)}</h2>
    {sub}
    <p>Generated on {_esc(ts)}</p>
  </div>
"""

def _render_kpis(kpis: List[Dict[str, Any]]) -> str:
    blocks = []
    for k in kpis:
        tone = k.get("tone") or ""
        blocks.append(f"""
        <div class="card-rounded kpi {_esc(tone)}">
          <div class="label">{_esc(k.get('label'))}</div>
          <div class="value">{_esc(k.get('value'))}</div>
        </div>""")
    return f'<div class="grid kpis">{"".join(blocks)}</div>'

def _kpis_from_report(report: Dict[str, Any]) -> List[Dict[str, Any]]:
    stats = report.get("statistics") or {}
    sec = stats.get("securityFlags") or {}
    ga = stats.get("globalAdminCount", 0)
    pim = (stats.get("pim") or {})
    return [
        {"label": "Total Assignments", "value": stats.get("totalAssignments", 0)},
        {"label": "Unique Principals", "value": stats.get("uniquePrincipals", 0)},
        {"label": "Global Administrators", "value": ga,
         "tone": "danger" if sec.get("excessiveGlobalAdmins") else ""},
        {"label": "PIM Adoption", "value": f"{pim.get('adoptionRate', 0.0)}%",
         "tone": "warning" if pim.get("permanent") else ""},
        {"label": "Findings", "value": len(report.get("compliance_findings") or []),
         "tone": "danger" if any(f.get("severity") == "Critical" for f in report.get("compliance_findings") or []) else ""},
    ]

def _summary_html(summary: Dict[str, Any]) -> str:
    if not summary:
        return "<p>No summary data available.</p>"
    rows = "\n".join(f"<tr><th>{_esc(k)}</th><td>{_esc(_fmt_cell(v))}</td></tr>" for k, v in summary.items())
    return f"<table class='summary'>{rows}</table>"

def _severity_chart(findings: List[Dict[str, Any]]) -> Tuple[str, str]:
    """Returns (html, js) for the severity doughnut; empty when no findings."""
    if not findings:
        return "", ""
    labels = [s for s in SEVERITY_PILL if any(f.get("severity") == s for f in findings)]
    data = [sum(1 for f in findings if f.get("severity") == s) for s in labels]
    cid = f"chart-{os.urandom(4).hex()}"
    chart_html = f"""
    <div class="card-rounded">
      <div style="font-weight:700;margin-bottom:6px">Findings by Severity</div>
      <canvas id="{cid}" height="220"></canvas>
    </div>"""
    js = f"""
    (()=>{{
      const ctx=document.getElementById("{cid}");
      new Chart(ctx,{{type:'doughnut',data:{{labels:{json.dumps(labels)},datasets:[{{data:{json.dumps(data)}}}]}},
        options:{{plugins:{{legend:{{position:'bottom'}}}}}}}});
    }})();"""
    return chart_html, js

def _render_table(rows: List[Dict[str, Any]], title: str, pill_cols: Optional[Dict[str, Dict[str, str]]] = None,
                  filterable: bool = False) -> str:
    if not rows:
        return f"<div class='card'><h4>{_esc(title)}</h4><p>No data.</p></div>"
    pill_cols = pill_cols or {}
    cols = list(rows[0].keys())
    tid = f"tbl-{_slug(title)}"
    thead = "<tr>" + "".join(f"<th>{_esc(_split_camel(c))}</th>" for c in cols) + "</tr>"

    body = []
    for r in rows:
        tds = []
        for c in cols:
            val = r.get(c)
            if c in pill_cols and val:
                tds.append(f"<td>{_pill(val, pill_cols[c].get(str(val), 'ok'))}</td>")
            else:
                tds.append(f"<td>{_esc(_fmt_cell(val))}</td>")
        body.append("<tr>" + "".join(tds) + "</tr>")

    flt = f"<input class='filter' placeholder='Filter…' data-table='{tid}'>" if filterable else ""
    return f"""
    <div class="card">
      <h4>{_esc(title)}</h4>
      {flt}
      <div class="tablewrap">
        <table id="{tid}">
          <thead>{thead}</thead>
          <tbody>{''.join(body)}</tbody>
        </table>
      </div>
    </div>
    """

def _render_findings(findings: List[Dict[str, Any]]) -> str:
    if not findings:
        return "<p>No compliance gaps found.</p>"
    out = []
    for f in findings:
        cls = SEVERITY_PILL.get(f.get("severity"), "ok")
        steps = "".join(f"<li>{_esc(s)}</li>" for s in f.get("remediationSteps") or [])
        frameworks = ", ".join(f.get("frameworks") or [])
        out.append(f"""
        <div class="card-rounded finding {cls}">
          <div>{_pill(f.get('severity'), cls)} <b>{_esc(f.get('issue'))}</b>
            <span class="meta">· {_esc(f.get('category'))}</span></div>
          <p>{_esc(f.get('details'))}</p>
          <p><b>Recommendation:</b> {_esc(f.get('recommendation'))}</p>
          {f'<ol>{steps}</ol>' if steps else ''}
          {f'<p class="meta">Frameworks: {_esc(frameworks)}</p>' if frameworks else ''}
        </div>""")
    return "".join(out)


def _overview_panel(report: Dict[str, Any]) -> Tuple[str, str]:
    stats = report.get("statistics") or {}
    chart_html, chart_js = _severity_chart(report.get("compliance_findings") or [])
    summary = _summary_html(report.get("summary") or {})
    summary_block = f"<div class='summary-grid'><div>{summary}</div>{chart_html}</div>" if chart_html else summary

    risk_pills = {"riskLevel": RISK_PILL}
    tables = [
        _render_table(stats.get("byService") or [], "Assignments by Service"),
        _render_table(stats.get("byAssignmentType") or [], "Assignments by Type"),
        _render_table(stats.get("byPrincipalType") or [], "Assignments by Principal Type"),
        _render_table(stats.get("topRoles") or [], "Top Roles", pill_cols=risk_pills),
    ]
    html_block = f"""
    {_render_kpis(_kpis_from_report(report))}
    <h3>Summary</h3>
    {summary_block}
    <div class="grid two">{''.join(tables)}</div>
    {_render_table(stats.get("topUsers") or [], "Top Users by Assignment Count")}
    """
    return html_block, chart_js


# ================================================================
# Function: fncWriteHTMLReport
# Purpose : Write the audit report as one self-contained HTML page
# Notes   : report is AuditReport.to_dict(); passes is the optional
#           per-service summary map from the run
# ================================================================
def fncWriteHTMLReport(filename: str, report: Dict[str, Any],
                       passes: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
    fncPrintMessage(f"Generating HTML report: {filename}", "info")

    overview, overview_js = _overview_panel(report)
    findings = report.get("compliance_findings") or []
    assignments = report.get("role_assignments") or []

    service_rows = []
    for svc, summary in (passes or {}).items():
        row = {"service": svc}
        row.update(summary or {})
        service_rows.append(row)
    errors = [{"service": k, "error": v} for k, v in (report.get("errors") or {}).items()]

    panels = [
        ("overview", "Overview", overview),
        ("findings", f"Findings ({len(findings)})", _render_findings(findings)),
        ("assignments", f"Assignments ({len(assignments)})",
         _render_table(assignments, "Role Assignments", filterable=True)),
        ("services", "Services",
         _render_table(service_rows, "Service Passes") + (_render_table(errors, "Errors") if errors else "")),
    ]

    buttons, sections = [], []
    for i, (sid, label, body) in enumerate(panels):
        active = "active" if i == 0 else ""
        buttons.append(f'<button class="{active}" data-tab="{sid}">{_esc(label)}</button>')
        sections.append(f'<section id="{sid}" class="tabpanel {active}"><div class="container">{body}</div></section>')

    dedupe = report.get("deduplication") or {}
    subtitle = f"Run {report.get('run_id') or '-'} · dedupe mode {dedupe.get('mode', 'None')}"

    html_doc = f"""<!DOCTYPE html>
<html lang="en"><head>
<meta charset="UTF-8"><title>RoleHound Report - {_esc(report.get('run_id'))}</title>
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>{_base_css()}</style></head><body>
{_header_html("Microsoft 365 Administrative Role Audit", subtitle)}
<div class="tabs"><div class="tabbar">{''.join(buttons)}</div></div>
{''.join(sections)}
<div class="footer">
  <p>Generated by <b>RoleHound</b> 🐕 "Every admin role leaves a scent."</p>
</div>
{CHARTJS_TAG if overview_js else ""}
{f"<script>{overview_js}</script>" if overview_js else ""}
<script>{TABS_JS}</script>
</body></html>"""

    os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
    with open(filename, "w", encoding="utf-8") as f:
        f.write(html_doc)
    fncPrintMessage(f"HTML report written to {filename}", "success")
