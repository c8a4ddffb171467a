# ================================================================
# File     : utils.py
# Purpose  : Common helpers for RoleHound (console, files, time, data)
# Notes    : British English; witty output
# ================================================================

import os
import re
import json
import csv
import time
import uuid
import pathlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from colorama import Fore, Style, init as _colorama_init
from tabulate import tabulate

_colorama_init(autoreset=True)

DEBUG_ENABLED = False

# ================================================================
# Function: fncSetDebug
# Purpose : Globally enable/disable debug output
# Notes   : Called from main after parsing --debug
# ================================================================
def fncSetDebug(enabled: bool) -> None:
    global DEBUG_ENABLED
    DEBUG_ENABLED = bool(enabled)


# ================================================================
# Function: fncPrintMessage
# Purpose : Standardised console output with levels and colours
# Notes   : Levels: info, warn, error, success, debug
# ================================================================
def fncPrintMessage(message: str, level: str = "info") -> None:
    if level == "debug" and not DEBUG_ENABLED:
        return
    colours = {
        "info": Fore.CYAN,
        "warn": Fore.YELLOW,
        "error": Fore.RED,
        "success": Fore.GREEN,
        "debug": Fore.MAGENTA
    }
    prefix = {
        "info": "[•]",
        "warn": "[!]",
        "error": "[✗]",
        "success": "[✓]",
        "debug": "[∆]"
    }
    colour = colours.get(level, "")
    mark = prefix.get(level, "[ ]")
    print(f"{colour}{mark} {message}{Style.RESET_ALL}")


# ================================================================
# Function: fncDisplayBanner
# Purpose : Display the RoleHound banner
# Notes   : Alternating colours per character, hound on the right
# ================================================================
def fncDisplayBanner(version: str = "v1.0"):
    banner_lines = [
        "__________      .__        ___ ___                            .___",
        "\\______   \\ ____|  |   ____/   |   \\  ____  __ __  ____    __| _/",
        " |       _//  _ \\  | _/ __ \\    ~    \\/  _ \\|  |  \\/    \\  / __ | ",
        " |    |   (  <_> )  |_\\  ___/\\    Y    (  <_> )  |  /   |  \\/ /_/ | ",
        " |____|_  /\\____/|____/\\___  >\\___|_  / \\____/|____/|___|  /\\____ | ",
        "        \\/                 \\/       \\/                   \\/      \\/ ",
    ]

    hound_lines = [
        "   __      ",
        "o-''|\\_____/)",
        " \\_/|_)     )",
        "    \\  __  / ",
        "    (_/ (_/  ",
    ]

    colours = [Fore.RED, Fore.YELLOW, Fore.GREEN, Fore.BLUE]

    def rainbow(text: str) -> str:
        out = ""
        for i, ch in enumerate(text):
            out += colours[i % len(colours)] + ch
        return out + Style.RESET_ALL

    print("\n")
    width = max(len(line) for line in banner_lines) + 5
    for i, line in enumerate(banner_lines):
        extra = hound_lines[i] if i < len(hound_lines) else ""
        print(rainbow(line.ljust(width) + extra))

    print(f"{Fore.CYAN}\nRoleHound {version} — 'Every admin role leaves a scent.'{Style.RESET_ALL}\n")


# ================================================================
# Function: fncBlurb
# Purpose : Display a witty blurb describing current action
# Notes   : Picks a random line per service when no flavour given
# ================================================================
def fncBlurb(action: str, flavour: str = None):
    blurbs = {
        "m365": [
            "Following the scent of standing admin rights…",
            "Nose down across eight Microsoft 365 services…",
            "Rounding up Global Admins who wandered off the lead…"
        ],
        "generic": [
            "Clipping on the lead…",
            "Sniffing out stale privileges…",
            "Warming up the Graph trail…"
        ]
    }

    import random
    flavour_text = flavour or random.choice(blurbs.get(action, blurbs["generic"]))
    fncPrintMessage(flavour_text, "info")

# ================================================================
# Function: fncEnsureFolder
# Purpose : Create a folder if it does not exist
# Notes   : Returns pathlib.Path object
# ================================================================
def fncEnsureFolder(path: str) -> pathlib.Path:
    p = pathlib.Path(path).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


# ================================================================
# Function: fncLoadEnv
# Purpose : Read environment variable with default
# Notes   : Strips quotes; returns default if empty
# ================================================================
def fncLoadEnv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name) or default
    if isinstance(val, str):
        return val.strip().strip('"').strip("'")
    return val


# ================================================================
# Function: fncReadJSON
# Purpose : Load JSON from file safely
# Notes   : Returns {} on failure when safe=True
# ================================================================
def fncReadJSON(path: str, safe: bool = True) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as ex:
        if safe:
            fncPrintMessage(f"Could not read JSON '{path}': {ex}", "warn")
            return {}
        raise


# ================================================================
# Function: fncWriteJSON
# Purpose : Write data to JSON with nice formatting
# Notes   : Ensures parent folder exists; UTF-8; 2-space indent;
#           datetimes and enums are stringified
# ================================================================
def fncWriteJSON(path: str, data: Dict[str, Any]) -> None:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=_json_default)
    fncPrintMessage(f"Saved JSON → {p}", "success")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


# ================================================================
# Function: fncExportCSV
# Purpose : Save list[dict] or list[list] to CSV
# Notes   : Dict rows keep first-seen key order for headers
# ================================================================
def fncExportCSV(path: str, rows: Iterable[Any]) -> None:
    rows = list(rows)
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if not rows:
        with open(p, "w", newline="", encoding="utf-8"):
            pass
        fncPrintMessage(f"Created empty CSV → {p}", "warn")
        return

    if isinstance(rows[0], dict):
        headers = list(dict.fromkeys(k for r in rows for k in r.keys()))
        with open(p, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=headers)
            w.writeheader()
            for r in rows:
                w.writerow({k: _csv_cell(r.get(k, "")) for k in headers})
    else:
        with open(p, "w", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            for r in rows:
                w.writerow(list(r))

    fncPrintMessage(f"Saved CSV → {p}", "success")


def _csv_cell(val: Any) -> Any:
    if isinstance(val, (list, tuple)):
        return "; ".join(str(v) for v in val)
    if isinstance(val, dict):
        return json.dumps(val, ensure_ascii=False)
    return val


_MS_DATE = re.compile(r"/Date\((-?\d+)\)/")

# ================================================================
# Function: fncParseTimestamp
# Purpose : Parse Graph / PowerShell timestamps into aware datetimes
# Notes   : Accepts datetime, ISO8601 (with Z or fractional secs of any
#           length) and /Date(ms)/; returns None when unparseable
# ================================================================
def fncParseTimestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    s = value.strip()
    m = _MS_DATE.fullmatch(s)
    if m:
        try:
            return datetime.fromtimestamp(int(m.group(1)) / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    # older fromisoformat wants exactly 6 fractional digits
    s = re.sub(r"\.(\d+)", lambda m: "." + m.group(1)[:6].ljust(6, "0"), s)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ================================================================
# Function: fncChunkList
# Purpose : Yield items in fixed-size chunks
# Notes   : Useful for batch Graph calls or rate limiting
# ================================================================
def fncChunkList(items: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ================================================================
# Function: fncRetry
# Purpose : Simple retry wrapper with backoff
# Notes   : backoff in seconds; returns fn result or raises.
#           give_up(ex) -> True re-raises at once (e.g. a 404)
# ================================================================
def fncRetry(fn, attempts: int = 3, backoff: float = 1.5, exceptions: Tuple = (Exception,),
             give_up: Optional[Callable[[BaseException], bool]] = None):
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except exceptions as ex:
            if give_up is not None and give_up(ex):
                raise
            if attempt < attempts:
                sleep_for = backoff ** (attempt - 1)
                fncPrintMessage(f"Attempt {attempt}/{attempts} failed: {ex}. Retrying in {sleep_for:.1f}s…", "warn")
                time.sleep(sleep_for)
            else:
                fncPrintMessage(f"All {attempts} attempts failed: {ex}", "error")
                raise


# ================================================================
# Function: fncToTable
# Purpose : Render rows as a table string
# Notes   : Supports list[dict] (keys become headers) or list[list]
# ================================================================
def fncToTable(rows: Iterable[Any], headers: Optional[List[str]] = None, max_rows: Optional[int] = None) -> str:
    rows = list(rows)
    truncated = 0
    if max_rows and len(rows) > max_rows:
        truncated = len(rows) - max_rows
        rows = rows[:max_rows]

    if not rows:
        return "(no data)"

    if isinstance(rows[0], dict):
        hdrs = headers or list(dict.fromkeys(k for r in rows for k in r.keys()))
        table_rows = [[r.get(h, "") for h in hdrs] for r in rows]
        out = tabulate(table_rows, headers=hdrs, tablefmt="github")
    else:
        out = tabulate(rows, headers=(headers or "firstrow"), tablefmt="github")
    if truncated:
        out += f"\n… {truncated} more row(s)"
    return out


# ================================================================
# Function: fncMask
# Purpose : Mask sensitive strings (client secrets, tokens)
# Notes   : Keeps start/end visible; handles short strings
# ================================================================
def fncMask(value: Optional[str], show: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return f"{value[:show]}{'*' * (len(value) - (show*2))}{value[-show:]}"


# ================================================================
# Function: fncNewRunId
# Purpose : Generate a short unique run identifier
# Notes   : Useful for correlating logs and outputs
# ================================================================
def fncNewRunId(prefix: str = "run") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def fncPercent(part: int, total: int) -> float:
    """Percentage rounded to one decimal; 0.0 when total is 0."""
    if not total:
        return 0.0
    return round(part * 100.0 / total, 1)
