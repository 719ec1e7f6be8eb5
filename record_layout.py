"""
record_layout.py  –  Snapshot visible windows into a layout config
==================================================================

Key behaviours
  · Only visible, titled top-level windows owned by a resolvable process are
    recorded; zero-size windows are dropped, minimised ones unless asked for
    (they are then recorded at their restored rect).
  · x / y are stored relative to the owning monitor's work area, together
    with monitorIndex and monitorDevice, so the output re-applies as-is.
  · Output order is (monitorIndex, processName, title) regardless of the
    z-order the OS enumerates in, so repeated recordings diff cleanly.
  · --deduplicate keeps the largest window per group; ties go to the entry
    that sorts first.
  · Overwriting an existing file makes a timestamped .bak copy first;
    --append and --bundle-name merge instead.
"""

import argparse
import csv
import fnmatch
import json
import os
import shutil
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from layout_config import ConfigError, LayoutError, normalize_process_name
from layout_geometry import Monitor
from window_layout import CONFIG_PATH as DEFAULT_PATH

CSV_COLUMNS = ["processname", "title", "x", "y", "width", "height",
               "monitor_index", "monitor_device"]

DEDUP_KEYS = ("process", "process+title", "monitor",
              "process+monitor", "process+title+monitor")
DEDUP_MONITOR_BY = ("index", "device")


# ══════════════════════════════════════════════════════════════════════════
#  RecordedEntry
# ══════════════════════════════════════════════════════════════════════════
@dataclass
class RecordedEntry:
    process_name:   str
    title:          str
    x:              int
    y:              int
    width:          int
    height:         int
    monitor_index:  int
    monitor_device: str

    @property
    def area(self) -> int:
        """Ranking only; never written out."""
        return self.width * self.height

    def sort_key(self) -> Tuple:
        return (self.monitor_index, self.process_name.lower(), self.title.lower(),
                self.x, self.y)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processName":   self.process_name,
            "title":         self.title,
            "x":             self.x,
            "y":             self.y,
            "width":         self.width,
            "height":        self.height,
            "monitorIndex":  self.monitor_index,
            "monitorDevice": self.monitor_device,
        }

    def to_csv_row(self) -> List[Any]:
        return [self.process_name, self.title, self.x, self.y, self.width,
                self.height, self.monitor_index, self.monitor_device]


def sort_entries(entries: Iterable[RecordedEntry]) -> List[RecordedEntry]:
    return sorted(entries, key=RecordedEntry.sort_key)


# ══════════════════════════════════════════════════════════════════════════
#  Capture
# ══════════════════════════════════════════════════════════════════════════
def _name_matches(name: str, patterns: Sequence[str]) -> bool:
    n = normalize_process_name(name)
    return any(fnmatch.fnmatchcase(n, normalize_process_name(p)) for p in patterns)


def _passes_filters(name: str, include: Optional[Sequence[str]],
                    exclude: Optional[Sequence[str]]) -> bool:
    if include and not _name_matches(name, include):
        return False
    if exclude and _name_matches(name, exclude):
        return False
    return True


def _monitor_for_rect(monitors: Sequence[Monitor], rect) -> Optional[Monitor]:
    """Monitor whose work area contains the rect's centre, else the nearest one."""
    if not monitors:
        return None
    cx = (rect[0] + rect[2]) / 2
    cy = (rect[1] + rect[3]) / 2

    def _dist(m: Monitor) -> float:
        a = m.work_area
        dx = max(a.left - cx, 0, cx - a.right)
        dy = max(a.top - cy, 0, cy - a.bottom)
        return dx * dx + dy * dy

    return min(monitors, key=_dist)


def record_windows(desktop, processes,
                   include: Optional[Sequence[str]] = None,
                   exclude: Optional[Sequence[str]] = None,
                   include_minimized: bool = False,
                   verbose: bool = False) -> List[RecordedEntry]:
    monitors = desktop.monitors()
    entries: List[RecordedEntry] = []

    for hwnd in desktop.enum_windows():
        if not desktop.is_visible(hwnd):
            continue
        title = (desktop.get_title(hwnd) or "").strip()
        if not title:
            continue
        name = processes.process_name(desktop.get_pid(hwnd))
        if not name:
            continue
        if not _passes_filters(name, include, exclude):
            continue

        minimized = desktop.is_minimized(hwnd)
        if minimized and not include_minimized:
            continue
        rect = desktop.get_normal_rect(hwnd) if minimized else desktop.get_rect(hwnd)
        left, top, right, bottom = rect
        width, height = right - left, bottom - top
        if width <= 0 or height <= 0:
            continue

        mon = None if minimized else desktop.monitor_for_window(hwnd)
        if mon is None:
            mon = _monitor_for_rect(monitors, rect)
        origin_x, origin_y = (mon.work_area.left, mon.work_area.top) if mon else (0, 0)

        entry = RecordedEntry(
            process_name=name,
            title=title,
            x=left - origin_x,
            y=top - origin_y,
            width=width,
            height=height,
            monitor_index=mon.index if mon else 0,
            monitor_device=mon.device if mon else "",
        )
        if verbose:
            state = "MIN" if minimized else "NRM"
            print(f"  CAPTURE [{state}][mon={entry.monitor_index}] {name}  "
                  f"\"{title[:60]}\"  ({entry.x},{entry.y},{width}x{height})")
        entries.append(entry)

    return sort_entries(entries)


# ══════════════════════════════════════════════════════════════════════════
#  Deduplication
# ══════════════════════════════════════════════════════════════════════════
def normalize_dedup_key(value: str) -> str:
    """'Process_Title' / 'process-title' / 'processtitle' -> 'process+title'."""
    compact = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
    for key in DEDUP_KEYS:
        if key.replace("+", "") == compact:
            return key
    raise ConfigError(f"Unknown dedup key {value!r}; expected one of {', '.join(DEDUP_KEYS)}")


def _group_key(e: RecordedEntry, key: str, monitor_by: str) -> Tuple:
    monitor = e.monitor_device.lower() if monitor_by == "device" else e.monitor_index
    parts = {
        "process": (e.process_name.lower(),),
        "title":   (e.title,),
        "monitor": (monitor,),
    }
    return tuple(v for part in key.split("+") for v in parts[part])


def deduplicate(entries: Iterable[RecordedEntry], key: str = "process",
                monitor_by: str = "index") -> List[RecordedEntry]:
    """Keep the largest-area entry of each group."""
    key = normalize_dedup_key(key)
    monitor_by = str(monitor_by or "index").lower()
    if monitor_by not in DEDUP_MONITOR_BY:
        raise ConfigError(f"Unknown dedup monitor mode {monitor_by!r}; expected index or device")

    best: Dict[Tuple, RecordedEntry] = {}
    # Sorted input makes the first-seen winner of an area tie deterministic.
    for e in sort_entries(entries):
        k = _group_key(e, key, monitor_by)
        cur = best.get(k)
        if cur is None or e.area > cur.area:
            best[k] = e
    return sort_entries(best.values())


# ══════════════════════════════════════════════════════════════════════════
#  Persist
# ══════════════════════════════════════════════════════════════════════════
def _load_existing(path: str) -> Any:
    if not os.path.exists(path):
        return None
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot merge into {path}: {exc}") from exc


def backup_file(path: str) -> str:
    stem = f"{path}.{time.strftime('%Y%m%d-%H%M%S')}"
    dest = f"{stem}.bak"
    n = 1
    while os.path.exists(dest):
        dest = f"{stem}-{n}.bak"
        n += 1
    shutil.copy2(path, dest)
    return dest


def _write_json(path: str, data: Any) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def save_recording(path: str, entries: Sequence[RecordedEntry],
                   append: bool = False,
                   bundle_name: Optional[str] = None) -> Optional[str]:
    """
    Write ``entries`` to ``path``.  Returns the backup path if one was made.

      bundle_name  insert/replace bundles[bundle_name], add it to applyBundles
      append       extend the flat list or the "entries" array
      (neither)    back up any existing file, then overwrite with a flat list
    """
    items = [e.to_dict() for e in entries]

    if bundle_name:
        existing = _load_existing(path)
        if isinstance(existing, list):
            data: Any = {"entries": existing}
        elif isinstance(existing, dict):
            data = existing
        else:
            data = {}
        bundles = data.setdefault("bundles", {})
        if not isinstance(bundles, dict):
            raise ConfigError(f"{path}: 'bundles' is not an object")
        bundles[bundle_name] = items
        order = data.setdefault("applyBundles", [])
        if bundle_name not in order:
            order.append(bundle_name)
        _write_json(path, data)
        return None

    if append:
        existing = _load_existing(path)
        if existing is None:
            data = items
        elif isinstance(existing, list):
            data = existing + items
        elif isinstance(existing, dict):
            data = existing
            current = data.setdefault("entries", [])
            if not isinstance(current, list):
                raise ConfigError(f"{path}: 'entries' is not a list")
            current.extend(items)
        else:
            raise ConfigError(f"{path}: cannot append to a {type(existing).__name__}")
        _write_json(path, data)
        return None

    backup = backup_file(path) if os.path.exists(path) else None
    _write_json(path, items)
    return backup


def write_csv(path: str, entries: Sequence[RecordedEntry]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(CSV_COLUMNS)
        for e in entries:
            w.writerow(e.to_csv_row())


# ══════════════════════════════════════════════════════════════════════════
#  CLI entry point
# ══════════════════════════════════════════════════════════════════════════
def _split_names(values: Optional[List[str]]) -> List[str]:
    names: List[str] = []
    for v in values or []:
        names.extend(n.strip() for n in v.split(",") if n.strip())
    return names


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Record visible window positions into a layout config."
    )
    p.add_argument("--path", default=DEFAULT_PATH,
                   help=f"JSON output (default: {DEFAULT_PATH})")
    p.add_argument("--csv-path", help="Also write a CSV mirror here")
    p.add_argument("--process-name", action="append", metavar="NAMES",
                   help="Only these processes (comma-separated, wildcards ok)")
    p.add_argument("--exclude-process-name", action="append", metavar="NAMES",
                   help="Skip these processes (comma-separated, wildcards ok)")
    p.add_argument("--append", action="store_true",
                   help="Append to the existing file instead of overwriting")
    p.add_argument("--include-minimized", action="store_true")
    p.add_argument("--deduplicate", action="store_true",
                   help="Keep only the largest window per --dedup-by group")
    p.add_argument("--dedup-by", default="process",
                   help=f"One of: {', '.join(DEDUP_KEYS)} (default: process)")
    p.add_argument("--dedup-monitor-by", default="index", choices=DEDUP_MONITOR_BY)
    p.add_argument("--bundle-name", metavar="NAME",
                   help="Store the recording as this bundle")
    p.add_argument("--verbose", "-v", action="store_true")
    return p


def main(argv: Optional[List[str]] = None, desktop=None, processes=None) -> int:
    args = build_parser().parse_args(argv)

    if desktop is None:
        from win32_desktop import Win32Desktop, Win32Processes, enable_dpi_awareness
        enable_dpi_awareness()
        desktop = Win32Desktop()
        processes = processes or Win32Processes(desktop)

    try:
        entries = record_windows(
            desktop, processes,
            include=_split_names(args.process_name) or None,
            exclude=_split_names(args.exclude_process_name) or None,
            include_minimized=args.include_minimized,
            verbose=args.verbose,
        )
        if args.deduplicate:
            before = len(entries)
            entries = deduplicate(entries, key=args.dedup_by,
                                  monitor_by=args.dedup_monitor_by)
            if args.verbose:
                print(f"  Dedup by {args.dedup_by}: {before} -> {len(entries)}")

        backup = save_recording(args.path, entries, append=args.append,
                                bundle_name=args.bundle_name)
        if backup:
            print(f"  Backup -> {backup}")
        if args.csv_path:
            write_csv(args.csv_path, entries)
    except (LayoutError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Saved {len(entries)} windows -> {args.path}"
          + (f" (+ {args.csv_path})" if args.csv_path else ""))
    return 0


if __name__ == "__main__":
    sys.exit(main())
