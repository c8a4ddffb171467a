# ================================================================
# File     : module_loader.py
# Purpose  : Discover and execute the per-service audit passes
# Notes    : Passes live in modules/<provider>/*.py and expose
#            SERVICE + run(client, ctx). Provides discovery, service
#            selection and run-all (sequential or threaded).
# ================================================================

import importlib
import pathlib
import traceback
from typing import Dict, List, Any, Optional, Sequence
from core.utils import fncPrintMessage
from concurrent.futures import ThreadPoolExecutor, as_completed

from engine.models import ConfigurationError, Service

MODULES_ROOT = pathlib.Path(__file__).resolve().parent.parent / "modules"


# ================================================================
# Function: fncLoadModule
# Purpose : Dynamically import a module based on provider and name
# Notes   : Returns the imported module or None if not found
# ================================================================
def fncLoadModule(provider: str, module_name: str):
    try:
        mod_path = f"modules.{provider}.{module_name}"
        mod = importlib.import_module(mod_path)
        fncPrintMessage(f"Loaded module: {mod_path}", "debug")
        return mod
    except ModuleNotFoundError:
        fncPrintMessage(f"Module not found: {provider}/{module_name}", "error")
        return None
    except Exception as ex:
        fncPrintMessage(f"Failed to import {provider}/{module_name}: {ex}", "error")
        return None


# ================================================================
# Function: fncRunModule
# Purpose : Execute a loaded module's 'run' function
# Notes   : A failing pass never aborts the run; it comes back as
#           {"error": ...} so the other services still report
# ================================================================
def fncRunModule(provider: str, module_name: str, client, ctx) -> Any:
    mod = fncLoadModule(provider, module_name)
    if mod and hasattr(mod, "run"):
        try:
            fncPrintMessage(f"Starting pass: {provider}/{module_name}", "info")
            result = mod.run(client, ctx)
            fncPrintMessage(f"Pass complete: {provider}/{module_name}", "success")
            return result
        except ConfigurationError:
            raise
        except Exception as ex:
            fncPrintMessage(f"Pass {module_name} raised an exception: {ex}", "error")
            fncPrintMessage(traceback.format_exc(), "debug")
            return {"error": str(ex)}
    else:
        fncPrintMessage(f"Module {module_name} missing 'run' function.", "warn")
        return {"error": f"module {provider}/{module_name} unavailable"}


# ================================================================
# Function: fncDiscoverModules
# Purpose : Discover available passes for a provider by scanning the modules dir
# Notes   : Ignores __init__.py and files starting with '_' by convention
# ================================================================
def fncDiscoverModules(provider: str, root: Optional[pathlib.Path] = None) -> List[str]:
    base = (root or MODULES_ROOT) / provider
    if not base.exists() or not base.is_dir():
        fncPrintMessage(f"No modules directory for provider '{provider}' (expected: {base})", "warn")
        return []

    mods = []
    for p in sorted(base.iterdir()):
        if p.is_file() and p.suffix == ".py" and not p.name.startswith("_") and p.name != "__init__.py":
            mods.append(p.stem)
    fncPrintMessage(f"Discovered modules for {provider}: {mods}", "debug")
    return mods


# ================================================================
# Function: fncServiceModules
# Purpose : Map Service -> module name from each pass's SERVICE attr
# Notes   : Order follows the Service enum, Azure AD first
# ================================================================
def fncServiceModules(provider: str) -> Dict[Service, str]:
    found: Dict[Service, str] = {}
    for name in fncDiscoverModules(provider):
        mod = fncLoadModule(provider, name)
        svc = getattr(mod, "SERVICE", None) if mod else None
        if svc is None:
            continue
        found[Service.parse(svc)] = name
    return {svc: found[svc] for svc in Service if svc in found}


def fncSelectServices(requested: Sequence[str], skip: Sequence[str] = (), run_all: bool = False) -> List[Service]:
    """Resolve CLI/config service names; unknown names are a ConfigurationError."""
    chosen = list(Service) if run_all or not requested else [Service.parse(s) for s in requested]
    skipped = {Service.parse(s) for s in skip or []}
    out = []
    for svc in chosen:
        if svc in skipped:
            fncPrintMessage(f"Skipping {svc.value} (skip-list)", "debug")
            continue
        if svc not in out:
            out.append(svc)
    return out


# ================================================================
# Function: fncRunAllModules
# Purpose : Run the pass for every selected service
# Notes   : Returns { service_value: result_or_error }. parallel<=1 runs
#           serially to avoid rate limits; threaded passes each get a
#           forked context so principal caches are never shared.
# ================================================================
def fncRunAllModules(provider: str, client, ctx, services: Sequence[Service], parallel: int = 1) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    available = fncServiceModules(provider)

    todo = []
    for svc in services:
        if svc not in available:
            fncPrintMessage(f"No pass available for {svc.value}", "warn")
            results[svc.value] = {"error": "no pass module"}
            continue
        todo.append(svc)

    fncPrintMessage(f"Running {len(todo)} service pass(es) (parallel={parallel})", "info")

    if parallel <= 1:
        for svc in todo:
            results[svc.value] = fncRunModule(provider, available[svc], client, ctx)
    else:
        with ThreadPoolExecutor(max_workers=parallel) as executor:
            futures = {
                executor.submit(fncRunModule, provider, available[svc], client, ctx.fork()): svc
                for svc in todo
            }
            for future in as_completed(futures):
                svc = futures[future]
                try:
                    results[svc.value] = future.result()
                except ConfigurationError:
                    raise
                except Exception as ex:
                    fncPrintMessage(f"Pass {svc.value} failed in parallel mode: {ex}", "error")
                    results[svc.value] = {"error": str(ex)}

    # keep service order stable regardless of completion order
    ordered = {svc.value: results[svc.value] for svc in services if svc.value in results}
    fncPrintMessage("All service passes completed.", "success")
    return ordered


# ================================================================
# Function: fncCollectPassResults
# Purpose : Split pass results into records / skipped / errors / summaries
# Notes   : A pass that returned {"error": ...} contributes no records
# ================================================================
def fncCollectPassResults(results: Dict[str, Any]) -> Dict[str, Any]:
    records, skipped, errors, summaries = [], {}, {}, {}
    for svc, res in results.items():
        if not isinstance(res, dict):
            errors[svc] = "pass returned no result"
            continue
        if "error" in res:
            errors[svc] = str(res["error"])
            continue
        records.extend(res.get("records") or [])
        skipped[svc] = dict(res.get("skipped") or {})
        summaries[svc] = dict(res.get("summary") or {})
    return {"records": records, "skipped": skipped, "errors": errors, "passes": summaries}
