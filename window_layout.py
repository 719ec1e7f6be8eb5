"""
window_layout.py  –  Apply (or record) declarative window layouts
=================================================================

Per entry:  merge -> [launch] -> wait/target -> monitor -> geometry -> DPI -> move

Key behaviours
  · Every entry is isolated: a config, geometry, launch or OS-call failure
    prints a warning and the run moves on.  Only an unreadable config or an
    unknown --bundle aborts (exit code 1).
  · Window targeting never caches handles; each attempt re-enumerates the
    process list and takes the newest process with a visible main window.
  · launchTimeoutSeconds is converted to an attempt count using
    retryDelaySeconds, so both are expressible in the config.
  · --dry-run resolves everything (including targeting) but makes no
    launch or move calls; the resolved rect is printed instead.
"""

import argparse
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence

from layout_config import (
    ConfigError,
    EntrySource,
    LaunchFailure,
    LayoutEntry,
    LayoutError,
    OSCallFailure,
    load_config,
    normalize_process_name,
    resolve_entry,
    select_entries,
)
from layout_geometry import (
    Monitor,
    ResolvedRect,
    adjust_for_dpi,
    compute_rect,
    strategy_name,
)

CONFIG_PATH = "window-layout.json"


# ══════════════════════════════════════════════════════════════════════════
#  Run state
# ══════════════════════════════════════════════════════════════════════════
@dataclass
class ProcessInfo:
    pid:         int
    name:        str
    start_time:  float
    main_window: int = 0


@dataclass
class WindowTarget:
    process_name: str
    pid:          int
    start_time:   float
    hwnd:         int


@dataclass
class RunContext:
    """Everything one apply run needs; nothing is stored at module level."""
    desktop:   Any
    processes: Any
    sleep:     Callable[[float], None] = time.sleep
    dry_run:   bool = False
    verbose:   bool = False

    def log(self, msg: str) -> None:
        if self.verbose:
            print(msg)


@dataclass
class ApplySummary:
    applied: int = 0
    skipped: int = 0
    total:   int = 0


def _warn(msg: str) -> None:
    print(f"  [warn] {msg}")


# ══════════════════════════════════════════════════════════════════════════
#  Monitor selection
# ══════════════════════════════════════════════════════════════════════════
def resolve_monitor(ctx: RunContext, entry: LayoutEntry, hwnd: int) -> Monitor:
    """monitorDevice, then monitorIndex, then the monitor the window is on now."""
    monitors = ctx.desktop.monitors()
    if not monitors:
        raise OSCallFailure("No display monitors reported")

    if entry.monitor_device:
        want = entry.monitor_device.strip().lower()
        for mon in monitors:
            if mon.device.lower() == want:
                return mon
        if entry.monitor_index is None:
            _warn(f"{entry.process_name}: monitor {entry.monitor_device!r} not present, "
                  f"using the window's current monitor")

    if entry.monitor_index is not None:
        if 0 <= entry.monitor_index < len(monitors):
            return monitors[entry.monitor_index]
        _warn(f"{entry.process_name}: monitorIndex {entry.monitor_index} out of range "
              f"({len(monitors)} monitor(s)), using the window's current monitor")

    owning = ctx.desktop.monitor_for_window(hwnd)
    if owning is not None:
        return owning
    return next((m for m in monitors if m.primary), monitors[0])


# ══════════════════════════════════════════════════════════════════════════
#  Targeting
# ══════════════════════════════════════════════════════════════════════════
def _compile_title(pattern: Optional[str]) -> Optional[re.Pattern]:
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ConfigError(f"Invalid windowTitlePattern {pattern!r}: {exc}") from exc


def find_window(ctx: RunContext, process_name: str,
                title_re: Optional[re.Pattern] = None) -> Optional[WindowTarget]:
    """One targeting attempt: newest process whose main window is visible."""
    candidates: List[ProcessInfo] = []
    for proc in ctx.processes.find_processes(process_name):
        if not proc.main_window:
            continue
        if title_re and not title_re.search(ctx.desktop.get_title(proc.main_window)):
            continue
        if not ctx.desktop.is_visible(proc.main_window):
            continue
        candidates.append(proc)
    if not candidates:
        return None
    best = max(candidates, key=lambda p: p.start_time)
    return WindowTarget(process_name=best.name or process_name, pid=best.pid,
                        start_time=best.start_time, hwnd=best.main_window)


def wait_for_window(ctx: RunContext, process_name: str,
                    title_pattern: Optional[str] = None,
                    retry_count: int = 0,
                    retry_delay: float = 1.0) -> Optional[WindowTarget]:
    """
    Searching -> Found, or Searching -> (retry_count retries) -> None.

    Makes exactly retry_count + 1 attempts, sleeping retry_delay between
    them.  Returning None is the timeout signal; it is not an error.
    """
    title_re = _compile_title(title_pattern)
    attempts = max(0, int(retry_count)) + 1
    for attempt in range(1, attempts + 1):
        target = find_window(ctx, process_name, title_re)
        if target is not None:
            ctx.log(f"  TARGET  {process_name} pid={target.pid} hwnd={hex(target.hwnd)} "
                    f"(attempt {attempt}/{attempts})")
            return target
        if attempt < attempts:
            ctx.log(f"  WAIT    {process_name} not visible yet "
                    f"(attempt {attempt}/{attempts}), retrying in {retry_delay}s")
            ctx.sleep(retry_delay)
    return None


# ══════════════════════════════════════════════════════════════════════════
#  Launch
# ══════════════════════════════════════════════════════════════════════════
def ensure_running(ctx: RunContext, entry: LayoutEntry) -> bool:
    """Start entry.launch_path if no instance is running.  True if launched."""
    name = entry.process_name
    if ctx.processes.is_running(name):
        return False
    if not entry.launch_path:
        raise LaunchFailure(f"{name} is not running and no launchPath is configured")

    path = os.path.expandvars(entry.launch_path)
    args = [os.path.expandvars(a) for a in (entry.launch_args or [])]
    cwd  = os.path.expandvars(entry.launch_working_dir) if entry.launch_working_dir else None
    elevated = bool(entry.launch_as_user)

    if ctx.dry_run:
        print(f"  [dry-run] would launch {path} {' '.join(args)}".rstrip())
        return False

    ctx.log(f"  LAUNCH  {path} args={args} cwd={cwd or ''}"
            f"{' (elevated)' if elevated else ''}")
    ctx.processes.launch(path, args, cwd, elevated)
    if entry.post_launch_delay_seconds:
        ctx.sleep(entry.post_launch_delay_seconds)
    return True


# ══════════════════════════════════════════════════════════════════════════
#  Move
# ══════════════════════════════════════════════════════════════════════════
def apply_rect(ctx: RunContext, hwnd: int, rect: ResolvedRect, entry: LayoutEntry) -> None:
    """Restore min/max state, then MoveWindow or SetWindowPos.  Raises OSCallFailure."""
    x, y, w, h = rect.as_tuple()
    if ctx.dry_run:
        print(f"  [dry-run] {entry.process_name} hwnd={hex(hwnd)} -> ({x},{y},{w},{h})")
        return

    d = ctx.desktop
    if d.is_minimized(hwnd) or d.is_maximized(hwnd):
        d.restore(hwnd)

    if entry.use_set_window_pos:
        flags  = entry.effective_flags
        zorder = entry.effective_z_order
        d.set_window_pos(hwnd, int(zorder), x, y, w, h, int(flags))
        ctx.log(f"  MOVE    {entry.process_name} hwnd={hex(hwnd)} -> ({x},{y},{w},{h}) "
                f"SetWindowPos z={zorder.name} flags={int(flags):#x}")
    else:
        d.move_window(hwnd, x, y, w, h)
        ctx.log(f"  MOVE    {entry.process_name} hwnd={hex(hwnd)} -> ({x},{y},{w},{h})")


# ══════════════════════════════════════════════════════════════════════════
#  Apply
# ══════════════════════════════════════════════════════════════════════════
def apply_entry(ctx: RunContext, entry: LayoutEntry) -> bool:
    """Place one resolved entry.  False means "skipped" (window never showed up)."""
    name = entry.process_name
    if entry.ensure_running:
        ensure_running(ctx, entry)
        if ctx.dry_run and not ctx.processes.is_running(name):
            print(f"  [dry-run] {name}: launch suppressed, not waiting for a window")
            return False
    if entry.wait_for_seconds:
        ctx.sleep(entry.wait_for_seconds)

    target = wait_for_window(
        ctx, name,
        title_pattern=entry.window_title_pattern,
        retry_count=entry.effective_retry_count,
        retry_delay=entry.effective_retry_delay,
    )
    if target is None:
        _warn(f"{name}: no visible window found, skipping")
        return False

    monitor = resolve_monitor(ctx, entry, target.hwnd)
    area    = monitor.work_area.inset(entry.pad or 0)
    rect    = compute_rect(entry, area)
    rect    = adjust_for_dpi(rect, target.hwnd, entry.effective_dpi_mode, ctx.desktop)
    ctx.log(f"  RESOLVE {name} [{strategy_name(entry)}] monitor={monitor.index} "
            f"area=({area.left},{area.top},{area.right},{area.bottom}) -> {rect.as_tuple()}")
    apply_rect(ctx, target.hwnd, rect, entry)
    return True


def _matches_filter(process_name: Optional[str], names: List[str]) -> bool:
    if not names:
        return True
    wanted = {normalize_process_name(n) for n in names}
    return normalize_process_name(process_name or "") in wanted


def apply_sources(ctx: RunContext, sources: Sequence[EntrySource],
                  process_filter: Optional[Iterable[str]] = None) -> ApplySummary:
    summary = ApplySummary()
    names   = list(process_filter or [])
    for i, src in enumerate(sources, 1):
        raw_name = src.raw.get("processName") if isinstance(src.raw, dict) else None
        label    = f"{raw_name or f'entry #{i}'} ({src.origin})"
        try:
            entry = resolve_entry(src.raw, src.defaults)
        except LayoutError as exc:
            # An entry that can't even be merged is only reported if the
            # filter would have selected it.
            if names and not _matches_filter(raw_name, names):
                continue
            summary.total   += 1
            summary.skipped += 1
            _warn(f"{label}: {type(exc).__name__}: {exc}")
            continue

        if not _matches_filter(entry.process_name, names):
            continue
        summary.total += 1
        try:
            placed = apply_entry(ctx, entry)
        except LayoutError as exc:
            placed = False
            _warn(f"{label}: {type(exc).__name__}: {exc}")
        if placed:
            summary.applied += 1
        else:
            summary.skipped += 1
    return summary


def apply_layout(ctx: RunContext, path: str, bundle: Optional[str] = None,
                 process_filter: Optional[Iterable[str]] = None) -> ApplySummary:
    """Load ``path`` and apply it.  ConfigError here aborts the whole run."""
    config  = load_config(path)
    sources = select_entries(config, bundle=bundle)
    summary = apply_sources(ctx, sources, process_filter=process_filter)
    mode = "dry-run" if ctx.dry_run else "live"
    print(f"Apply complete ({mode}). Applied={summary.applied}, "
          f"Skipped={summary.skipped}, Total={summary.total}")
    return summary


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
        description="Apply a declarative window layout, or record the current one."
    )
    p.add_argument("config", nargs="?", default=CONFIG_PATH,
                   help=f"Layout config (default: {CONFIG_PATH})")
    p.add_argument("--record", action="store_true",
                   help="Record current windows instead of applying")
    p.add_argument("--process", "-p", action="append", metavar="NAMES",
                   help="Comma-separated process names to apply/record (repeatable)")
    p.add_argument("--record-bundle-name", metavar="NAME",
                   help="With --record: store the recording as this bundle")
    p.add_argument("--bundle", metavar="NAME",
                   help="Apply only this bundle")
    p.add_argument("--dry-run", action="store_true",
                   help="Resolve and print rects without moving anything")
    p.add_argument("--output-path", metavar="PATH",
                   help="With --record: destination file (default: the config path)")
    p.add_argument("--verbose", "-v", action="store_true")
    return p


def main(argv: Optional[List[str]] = None, ctx: Optional[RunContext] = None) -> int:
    args      = build_parser().parse_args(argv)
    processes = _split_names(args.process)

    if ctx is None:
        from win32_desktop import Win32Desktop, Win32Processes, enable_dpi_awareness
        enable_dpi_awareness()
        desktop = Win32Desktop()
        ctx = RunContext(desktop=desktop, processes=Win32Processes(desktop))
    ctx.dry_run = ctx.dry_run or args.dry_run
    ctx.verbose = ctx.verbose or args.verbose

    try:
        if args.record:
            import record_layout
            out = args.output_path or args.config
            entries = record_layout.record_windows(ctx.desktop, ctx.processes,
                                                   include=processes or None,
                                                   verbose=ctx.verbose)
            record_layout.save_recording(out, entries,
                                         bundle_name=args.record_bundle_name)
            print(f"Recorded {len(entries)} windows -> {out}")
        else:
            apply_layout(ctx, args.config, bundle=args.bundle,
                         process_filter=processes or None)
    except (LayoutError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
