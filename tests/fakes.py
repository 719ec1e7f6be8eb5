"""In-memory stand-ins for Win32Desktop / Win32Processes."""

from typing import Dict, List, Optional

from layout_config import LaunchFailure, OSCallFailure, normalize_process_name
from layout_geometry import Monitor, WorkArea
from window_layout import ProcessInfo

PRIMARY   = Monitor(0, r"\\.\DISPLAY1", WorkArea(0, 0, 1920, 1040), primary=True)
SECONDARY = Monitor(1, r"\\.\DISPLAY2", WorkArea(1920, 0, 4480, 1400))


class FakeDesktop:
    def __init__(self, monitors=(PRIMARY, SECONDARY)):
        self._monitors: List[Monitor] = list(monitors)
        self.windows: Dict[int, dict] = {}
        self.calls: List[tuple] = []
        self.window_dpi: Optional[int] = None
        self.system_dpi = 96
        self.fail_moves = False

    def add_window(self, hwnd, pid, title="Window", rect=(10, 10, 810, 610),
                   visible=True, minimized=False, maximized=False,
                   normal_rect=None, monitor=0):
        self.windows[hwnd] = {
            "pid": pid, "title": title, "rect": rect, "visible": visible,
            "minimized": minimized, "maximized": maximized,
            "normal_rect": normal_rect or rect, "monitor": monitor,
        }

    # ── capability surface ──────────────────────────────────────────────
    def enum_windows(self):
        return list(self.windows)

    def is_visible(self, hwnd):
        return self.windows.get(hwnd, {}).get("visible", False)

    def is_minimized(self, hwnd):
        return self.windows.get(hwnd, {}).get("minimized", False)

    def is_maximized(self, hwnd):
        return self.windows.get(hwnd, {}).get("maximized", False)

    def get_title(self, hwnd):
        return self.windows.get(hwnd, {}).get("title", "")

    def get_rect(self, hwnd):
        return self.windows[hwnd]["rect"]

    def get_normal_rect(self, hwnd):
        return self.windows[hwnd]["normal_rect"]

    def get_pid(self, hwnd):
        return self.windows.get(hwnd, {}).get("pid", 0)

    def restore(self, hwnd):
        self.calls.append(("restore", hwnd))
        self.windows[hwnd]["minimized"] = False
        self.windows[hwnd]["maximized"] = False

    def move_window(self, hwnd, x, y, w, h):
        if self.fail_moves:
            raise OSCallFailure("MoveWindow failed", code=5)
        self.calls.append(("move", hwnd, x, y, w, h))

    def set_window_pos(self, hwnd, insert_after, x, y, w, h, flags):
        if self.fail_moves:
            raise OSCallFailure("SetWindowPos failed", code=5)
        self.calls.append(("swp", hwnd, insert_after, x, y, w, h, flags))

    def get_window_dpi(self, hwnd):
        return self.window_dpi

    def get_system_dpi(self):
        return self.system_dpi

    def monitors(self):
        return list(self._monitors)

    def monitor_for_window(self, hwnd):
        idx = self.windows.get(hwnd, {}).get("monitor")
        if idx is None or idx >= len(self._monitors):
            return None
        return self._monitors[idx]


class FakeProcesses:
    def __init__(self, desktop: FakeDesktop):
        self.desktop = desktop
        self.procs: List[ProcessInfo] = []
        self.find_calls = 0
        self.launches: List[tuple] = []
        self.on_launch = None
        self.fail_launch = False

    def add(self, pid, name, start_time, main_window=0):
        self.procs.append(ProcessInfo(pid=pid, name=name, start_time=start_time,
                                      main_window=main_window))

    def process_name(self, pid):
        for p in self.procs:
            if p.pid == pid:
                return p.name
        return ""

    def find_processes(self, name):
        self.find_calls += 1
        want = normalize_process_name(name)
        return [p for p in self.procs if normalize_process_name(p.name) == want]

    def is_running(self, name):
        want = normalize_process_name(name)
        return any(normalize_process_name(p.name) == want for p in self.procs)

    def launch(self, path, args, cwd=None, elevated=False):
        if self.fail_launch:
            raise LaunchFailure(f"Could not start {path}")
        self.launches.append((path, list(args), cwd, elevated))
        if self.on_launch:
            self.on_launch()
