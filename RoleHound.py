#!/usr/bin/env python3
# ================================================================
# Tool     : RoleHound
# Purpose  : Microsoft 365 administrative role assignment audit
# Notes    : "Every admin role leaves a scent." 🐕
# ================================================================

import argparse, pathlib

from core.config import fncInitConfig, fncApplyCliOverrides, fncIsDebug, fncGetAuditSettings, fncGetProviderConfig
from core.utils import fncPrintMessage, fncSetDebug, fncDisplayBanner, fncBlurb, fncToTable, fncNewRunId, fncMask
from core.module_loader import fncRunAllModules, fncSelectServices, fncCollectPassResults
from core.exports import fncExportList, fncExportReport
from engine.audit import AuditContext, fncBuildAuditReport
from engine.dedupe import DedupeMode
from engine.models import ConfigurationError, Service

PROVIDER = "m365"


# ================================================================
# Function: fncParseArguments
# Purpose  : Define and parse command-line arguments for RoleHound
# Notes    : Audit flags default to None so the config file wins
#            unless the flag is given
# ================================================================
def fncParseArguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="RoleHound",
        description="RoleHound 🐕 — Microsoft 365 admin role assignment audit"
    )

    parser.add_argument(
        "services",
        nargs="*",
        metavar="SERVICE",
        help=f"Services to audit ({', '.join(s.value for s in Service)}). Default: all"
    )
    parser.add_argument(
        "--run-all",
        action="store_true",
        help="Audit every service"
    )
    parser.add_argument(
        "--skip",
        help="Comma-separated services to skip",
        default=""
    )
    parser.add_argument(
        "--include-overarching",
        action="store_true",
        default=None,
        help="Also report tenant-wide roles (Global Administrator, ...) under every service pass"
    )
    parser.add_argument(
        "--dedupe",
        choices=[m.value for m in DedupeMode],
        default=None,
        help="Deduplication mode for the combined report (default: None)"
    )
    parser.add_argument(
        "--prefer-specific-service",
        action="store_true",
        default=None,
        help="With --dedupe ServicePreference, keep the service-specific copy over Azure AD"
    )
    parser.add_argument(
        "--top",
        type=int,
        default=None,
        help="Number of top roles / users to report (default: 10)"
    )
    parser.add_argument(
        "--expiry-window",
        type=int,
        default=None,
        help="Days ahead to flag expiring PIM assignments (default: 30)"
    )
    parser.add_argument(
        "--import-dir",
        default=None,
        help="Folder with offline exports (Exchange role groups, SharePoint site admins)"
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=1,
        help="Number of service passes to run concurrently (default: 1 = sequential)"
    )
    parser.add_argument(
        "--export",
        nargs="*",
        metavar="FMT[,FMT...]",
        help="Export formats: html, csv, json, xlsx, all. Example: --export html,csv json",
        default=None
    )
    parser.add_argument(
        "--config",
        help="Path to config.json (default: ~/.rolehound/config.json)",
        default=None
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable verbose debug output"
    )

    return parser.parse_args(argv)


# ================================================================
# Function: fncInitClient
# Purpose  : Build the Graph client from config
# Notes    : Missing values fall through to env vars / prompts inside
#            GraphClient itself
# ================================================================
def fncInitClient(cfg: dict):
    from handlers.graph.client import GraphClient

    m365 = fncGetProviderConfig(cfg, PROVIDER)
    if not (m365.get("tenant_id") and m365.get("client_id")):
        fncPrintMessage("Missing M365 app registration details — dropping into interactive mode…", "warn")
    fncPrintMessage(f"App: {m365.get('client_id') or '(prompt)'} · secret: {fncMask(m365.get('client_secret')) or '(none)'}", "debug")

    return GraphClient(
        tenant_id=m365.get("tenant_id") or None,
        client_id=m365.get("client_id") or None,
        client_secret=m365.get("client_secret") or None,
        certificate_path=m365.get("certificate_path") or None,
        certificate_thumbprint=m365.get("certificate_thumbprint") or None,
        authority_host=m365.get("authority") or "https://login.microsoftonline.com",
    )


def fncPrintReportSummary(report) -> None:
    fncPrintMessage("Audit summary", "info")
    print(fncToTable([{"metric": k, "value": v} for k, v in report.summary().items()]))

    top = report.statistics.top_roles
    if top:
        fncPrintMessage("Top roles", "info")
        print(fncToTable(top, headers=["roleName", "count", "riskLevel"]))

    if report.findings:
        fncPrintMessage(f"{len(report.findings)} compliance finding(s)", "warn")
        print(fncToTable([f.to_dict() for f in report.findings], headers=["severity", "category", "issue"]))
    else:
        fncPrintMessage("No compliance gaps found.", "success")

    for svc, err in report.errors.items():
        fncPrintMessage(f"{svc} pass failed: {err}", "error")


# ================================================================
# Function: main
# Purpose  : Main entry point for RoleHound execution
# Notes    : Handles CLI parsing, config loading, client init, passes,
#            report building and exports. Returns a process exit code.
# ================================================================
def main(argv=None):
    args = fncParseArguments(argv)

    cfg = fncInitConfig(args.config)
    cfg = fncApplyCliOverrides(cfg, args)
    fncSetDebug(fncIsDebug(cfg))

    fncDisplayBanner("v1.0")
    fncBlurb(PROVIDER)

    try:
        settings = fncGetAuditSettings(cfg)
        skip = [s.strip() for s in args.skip.split(",") if s.strip()]
        services = fncSelectServices(args.services, skip, args.run_all)
    except ConfigurationError as ex:
        fncPrintMessage(f"Configuration error: {ex}", "error")
        return 2

    if not services:
        fncPrintMessage("No services left to audit.", "error")
        return 2
    fncPrintMessage(f"🐕 Unleashing RoleHound on {', '.join(s.value for s in services)}...", "info")

    client = fncInitClient(cfg)
    if not client:
        fncPrintMessage("Unable to continue without a valid Graph client.", "error")
        return 1

    from handlers.graph.graph_helpers import fncGraphResolverFactory

    run_id = fncNewRunId("hound")
    ctx = AuditContext.create(
        settings,
        services=services,
        auth_type=client.auth_type,
        run_id=run_id,
        resolver_factory=fncGraphResolverFactory(client),
    )

    if args.parallel and args.parallel > 4:
        fncPrintMessage("Warning: --parallel > 4 may hit Microsoft Graph throttling.", "warn")

    try:
        results = fncRunAllModules(PROVIDER, client, ctx, services, parallel=args.parallel or 1)
    except ConfigurationError as ex:
        fncPrintMessage(f"Configuration error: {ex}", "error")
        return 2

    collected = fncCollectPassResults(results)
    report = fncBuildAuditReport(
        collected["records"],
        settings=settings,
        skipped=collected["skipped"],
        errors=collected["errors"],
        run_id=run_id,
    )
    fncPrintReportSummary(report)

    export_formats = fncExportList(args.export)
    if export_formats:
        reports_root = pathlib.Path(cfg.get("rolehound_home") or pathlib.Path.home() / ".rolehound") / "reports"
        fncExportReport(report.to_dict(), export_formats, reports_root, passes=collected["passes"])

    fncPrintMessage("Audit complete. Good dog.", "success")
    return 1 if collected["errors"] and not collected["records"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
