"""
win32_desktop.py  –  pywin32 / psutil backends for window_layout
================================================================

Win32Desktop    top-level windows, monitors, DPI, MoveWindow/SetWindowPos
Win32Processes  process lookup (psutil) and launching (Popen / ShellExecute)

Everything here is a thin wrapper; reads fail soft (empty string, zero rect,
None) while writes raise OSCallFailure / LaunchFailure with the OS error code.
"""

import ctypes
import os
import subprocess
from typing import Dict, List, Optional, Tuple

import psutil
import win32api
import win32con
import win32gui
import win32process

from layout_config import LaunchFailure, OSCallFailure, normalize_process_name
from layout_geometry import BASE_DPI, Monitor, WorkArea
from window_layout import ProcessInfo

_MONITORINFOF_PRIMARY = 0x1


def enable_dpi_awareness() -> None:
    """Per-monitor DPI awareness so rects are reported in physical pixels."""
    try:
        ctypes.windll.shcore.SetProcessDpiAwareness(2)
    except Exception:
        try:
            ctypes.windll.user32.SetProcessDPIAware()
        except Exception:
            pass


def _winerror(exc: Exception) -> Optional[int]:
    code = getattr(exc, "winerror", None)
    if code is None and getattr(exc, "args", None):
        first = exc.args[0]
        code = first if isinstance(first, int) else None
    return code


# ══════════════════════════════════════════════════════════════════════════
#  Tiny helpers
# ══════════════════════════════════════════════════════════════════════════
def _safe_text(hwnd: int) -> str:
    try:    return win32gui.GetWindowText(hwnd) or ""
    except Exception: return ""

def _get_pid(hwnd: int) -> int:
    try:
        _, pid = win32process.GetWindowThreadProcessId(hwnd)
        return int(pid or 0)
    except Exception: return 0

def _window_rect(hwnd: int) -> Tuple[int, int, int, int]:
    try:    return tuple(win32gui.GetWindowRect(hwnd))
    except Exception: return (0, 0, 0, 0)

def _window_placement(hwnd: int) -> Tuple[int, Tuple[int, int, int, int]]:
    """Returns (showCmd, normalPositionRect).
    normalPositionRect is the RESTORED size/position regardless of
    whether the window is currently minimised or maximised."""
    try:
        pl = win32gui.GetWindowPlacement(hwnd)
        return int(pl[1]), tuple(pl[4])
    except Exception:
        return win32con.SW_SHOWNORMAL, (0, 0, 0, 0)

def _owner(hwnd: int) -> int:
    try:    return int(win32gui.GetWindow(hwnd, win32con.GW_OWNER) or 0)
    except Exception: return 0


# ══════════════════════════════════════════════════════════════════════════
#  Windows & monitors
# ══════════════════════════════════════════════════════════════════════════
class Win32Desktop:
    def enum_windows(self) -> List[int]:
        """Top-level windows in z-order, front-most first."""
        handles: List[int] = []

        def _cb(hwnd, _):
            handles.append(hwnd)

        try:
            win32gui.EnumWindows(_cb, None)
        except Exception as exc:
            raise OSCallFailure(f"EnumWindows failed: {exc}", code=_winerror(exc)) from exc
        return handles

    def is_visible(self, hwnd: int) -> bool:
        try:    return bool(win32gui.IsWindowVisible(hwnd))
        except Exception: return False

    def is_minimized(self, hwnd: int) -> bool:
        try:    return bool(win32gui.IsIconic(hwnd))
        except Exception: return False

    def is_maximized(self, hwnd: int) -> bool:
        try:    return bool(win32gui.IsZoomed(hwnd))
        except Exception: return False

    def get_title(self, hwnd: int) -> str:
        return _safe_text(hwnd)

    def get_rect(self, hwnd: int) -> Tuple[int, int, int, int]:
        return _window_rect(hwnd)

    def get_normal_rect(self, hwnd: int) -> Tuple[int, int, int, int]:
        return _window_placement(hwnd)[1]

    def get_pid(self, hwnd: int) -> int:
        return _get_pid(hwnd)

    def restore(self, hwnd: int) -> None:
        try:
            win32gui.ShowWindow(hwnd, win32con.SW_RESTORE)
        except Exception as exc:
            raise OSCallFailure(f"ShowWindow failed for hwnd={hex(hwnd)}: {exc}",
                                code=_winerror(exc)) from exc

    def move_window(self, hwnd: int, x: int, y: int, w: int, h: int) -> None:
        try:
            win32gui.MoveWindow(hwnd, int(x), int(y), int(w), int(h), True)
        except Exception as exc:
            raise OSCallFailure(f"MoveWindow failed for hwnd={hex(hwnd)}: {exc}",
                                code=_winerror(exc)) from exc

    def set_window_pos(self, hwnd: int, insert_after: int,
                       x: int, y: int, w: int, h: int, flags: int) -> None:
        try:
            win32gui.SetWindowPos(hwnd, int(insert_after),
                                  int(x), int(y), int(w), int(h), int(flags))
        except Exception as exc:
            raise OSCallFailure(f"SetWindowPos failed for hwnd={hex(hwnd)}: {exc}",
                                code=_winerror(exc)) from exc

    def get_window_dpi(self, hwnd: int) -> Optional[int]:
        try:
            dpi = int(ctypes.windll.user32.GetDpiForWindow(int(hwnd)))
        except Exception:
            return None
        return dpi or None

    def get_system_dpi(self) -> int:
        try:
            return int(ctypes.windll.user32.GetDpiForSystem()) or BASE_DPI
        except Exception:
            return BASE_DPI

    def monitors(self) -> List[Monitor]:
        result: List[Monitor] = []
        try:
            infos = [win32api.GetMonitorInfo(hmon)
                     for hmon, _hdc, _rect in win32api.EnumDisplayMonitors()]
        except Exception as exc:
            raise OSCallFailure(f"Monitor enumeration failed: {exc}",
                                code=_winerror(exc)) from exc
        for i, info in enumerate(infos):
            l, t, r, b = info.get("Work") or info.get("Monitor")
            result.append(Monitor(
                index=i,
                device=str(info.get("Device") or ""),
                work_area=WorkArea(l, t, r, b),
                primary=bool(info.get("Flags", 0) & _MONITORINFOF_PRIMARY),
            ))
        return result

    def monitor_for_window(self, hwnd: int) -> Optional[Monitor]:
        try:
            hmon   = win32api.MonitorFromWindow(hwnd, win32con.MONITOR_DEFAULTTONEAREST)
            device = str(win32api.GetMonitorInfo(hmon).get("Device") or "")
        except Exception:
            return None
        for mon in self.monitors():
            if mon.device == device:
                return mon
        return None


# ══════════════════════════════════════════════════════════════════════════
#  Processes
# ══════════════════════════════════════════════════════════════════════════
class Win32Processes:
    def __init__(self, desktop: Optional[Win32Desktop] = None):
        self.desktop = desktop or Win32Desktop()

    def process_name(self, pid: int) -> str:
        if not pid:
            return ""
        try:
            return normalize_process_name(psutil.Process(pid).name() or "")
        except (psutil.Error, OSError):
            return ""

    def _matching(self, name: str) -> List[psutil.Process]:
        want = normalize_process_name(name)
        found = []
        for p in psutil.process_iter(["pid", "name", "create_time"]):
            if normalize_process_name(p.info.get("name") or "") == want:
                found.append(p)
        return found

    def _main_windows(self) -> Dict[int, int]:
        """pid -> main window: first unowned titled top-level window, visible preferred."""
        visible: Dict[int, int] = {}
        hidden:  Dict[int, int] = {}
        d = self.desktop
        for hwnd in d.enum_windows():
            if _owner(hwnd) or not _safe_text(hwnd).strip():
                continue
            pid = _get_pid(hwnd)
            if not pid:
                continue
            bucket = visible if d.is_visible(hwnd) else hidden
            bucket.setdefault(pid, hwnd)
        return {**hidden, **visible}

    def find_processes(self, name: str) -> List[ProcessInfo]:
        procs = self._matching(name)
        if not procs:
            return []
        mains = self._main_windows()
        return [
            ProcessInfo(
                pid=p.info["pid"],
                name=normalize_process_name(p.info.get("name") or ""),
                start_time=float(p.info.get("create_time") or 0.0),
                main_window=mains.get(p.info["pid"], 0),
            )
            for p in procs
        ]

    def is_running(self, name: str) -> bool:
        return bool(self._matching(name))

    def launch(self, path: str, args: List[str], cwd: Optional[str] = None,
               elevated: bool = False) -> None:
        if not os.path.exists(path):
            raise LaunchFailure(f"Launch path does not exist: {path}")
        try:
            if elevated:
                win32api.ShellExecute(0, "runas", path, subprocess.list2cmdline(args),
                                      cwd or None, win32con.SW_SHOWNORMAL)
            else:
                subprocess.Popen([path, *args], cwd=cwd or None)
        except Exception as exc:
            raise LaunchFailure(f"Could not start {path}: {exc}") from exc
