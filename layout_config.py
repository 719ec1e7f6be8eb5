"""
layout_config.py  –  Layout entries, presets and bundle selection
=================================================================

A config file is either a flat JSON list of entries, or an object:

    {
      "bundleDefaults": {"dpiMode": "auto", "retryCount": 3},
      "bundles":        {"coding": [{"processName": "code", "preset": "LeftHalf"}]},
      "applyBundles":   ["coding"],
      "entries":        [{"processName": "chrome", "grid": "2x2", "cell": "1,2"}]
    }

Merge order for one entry (later wins): bundleDefaults -> entry -> preset,
where preset values only fill fields the merged entry leaves unset.
"""

import enum
import json
import math
import os
import shlex
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple, Union


# ══════════════════════════════════════════════════════════════════════════
#  Errors
# ══════════════════════════════════════════════════════════════════════════
class LayoutError(Exception):
    """Base for every failure that can skip an entry or abort a run."""


class ConfigError(LayoutError):
    pass


class GeometryError(LayoutError):
    pass


class LaunchFailure(LayoutError):
    pass


class OSCallFailure(LayoutError):
    def __init__(self, message: str, code: Optional[int] = None):
        if code is not None:
            message = f"{message} (error {code})"
        super().__init__(message)
        self.code = code


# ══════════════════════════════════════════════════════════════════════════
#  Closed value sets
# ══════════════════════════════════════════════════════════════════════════
class DpiMode(enum.Enum):
    LOGICAL  = "logical"
    AUTO     = "auto"
    PHYSICAL = "physical"

    @classmethod
    def parse(cls, value: Any) -> "DpiMode":
        text = str(value or "").strip().lower()
        for mode in cls:
            if mode.value == text:
                return mode
        raise ConfigError(f"Unknown dpiMode {value!r}; expected logical, auto or physical")


class ZOrder(enum.IntEnum):
    """hWndInsertAfter tokens for SetWindowPos."""
    TOP        = 0
    BOTTOM     = 1
    TOPMOST    = -1
    NOTOPMOST  = -2

    @classmethod
    def parse(cls, value: Any) -> "ZOrder":
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise ConfigError(f"Unknown zOrder {value!r}") from None
        text = str(value or "").strip().upper().replace("_", "").replace("HWND", "")
        for z in cls:
            if z.name == text:
                return z
        raise ConfigError(f"Unknown zOrder {value!r}; expected Top, Bottom, TopMost or NoTopMost")


class SwpFlag(enum.IntFlag):
    NOSIZE         = 0x0001
    NOMOVE         = 0x0002
    NOZORDER       = 0x0004
    NOREDRAW       = 0x0008
    NOACTIVATE     = 0x0010
    FRAMECHANGED   = 0x0020
    SHOWWINDOW     = 0x0040
    HIDEWINDOW     = 0x0080
    NOCOPYBITS     = 0x0100
    NOOWNERZORDER  = 0x0200
    NOSENDCHANGING = 0x0400
    DEFERERASE     = 0x2000
    ASYNCWINDOWPOS = 0x4000

    @classmethod
    def parse(cls, value: Any) -> "SwpFlag":
        """Accepts an int, a list of names, or a "A|B" / "A,B" string."""
        if isinstance(value, bool):
            raise ConfigError(f"Invalid setWindowPosFlags {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            names = value.replace("|", ",").split(",")
        elif isinstance(value, list):
            names = [str(v) for v in value]
        else:
            raise ConfigError(f"Invalid setWindowPosFlags {value!r}")
        result = cls(0)
        for raw in names:
            name = raw.strip().upper()
            if not name:
                continue
            if name.startswith("SWP_"):
                name = name[4:]
            try:
                result |= cls[name]
            except KeyError:
                raise ConfigError(f"Unknown SetWindowPos flag {raw.strip()!r}") from None
        return result


DEFAULT_SWP_FLAGS = SwpFlag.NOZORDER | SwpFlag.NOACTIVATE


# ══════════════════════════════════════════════════════════════════════════
#  LayoutEntry
# ══════════════════════════════════════════════════════════════════════════
@dataclass
class LayoutEntry:
    """One window placement rule.  ``None`` means "unset", never zero."""
    process_name:              Optional[str]   = None
    title:                     Optional[str]   = None
    monitor_index:             Optional[int]   = None
    monitor_device:            Optional[str]   = None
    pad:                       Optional[int]   = None
    grid:                      Optional[str]   = None
    cell:                      Optional[str]   = None
    row_span:                  Optional[int]   = None
    col_span:                  Optional[int]   = None
    gutter:                    Optional[float] = None
    outer_gutter:              Optional[float] = None
    anchor:                    Optional[str]   = None
    x:                         Optional[float] = None
    x_pct:                     Optional[float] = None
    y:                         Optional[float] = None
    y_pct:                     Optional[float] = None
    width:                     Optional[float] = None
    width_pct:                 Optional[float] = None
    height:                    Optional[float] = None
    height_pct:                Optional[float] = None
    preset:                    Optional[str]   = None
    dpi_mode:                  Optional[DpiMode] = None
    use_set_window_pos:        Optional[bool]  = None
    set_window_pos_flags:      Optional[SwpFlag] = None
    z_order:                   Optional[ZOrder] = None
    window_title_pattern:      Optional[str]   = None
    wait_for_seconds:          Optional[float] = None
    retry_count:               Optional[int]   = None
    retry_delay_seconds:       Optional[float] = None
    launch_timeout_seconds:    Optional[float] = None
    ensure_running:            Optional[bool]  = None
    launch_path:               Optional[str]   = None
    launch_args:               Optional[List[str]] = None
    launch_working_dir:        Optional[str]   = None
    launch_as_user:            Optional[bool]  = None
    post_launch_delay_seconds: Optional[float] = None

    # ── effective values (defaults applied) ──────────────────────────────
    @property
    def effective_dpi_mode(self) -> DpiMode:
        return self.dpi_mode or DpiMode.LOGICAL

    @property
    def effective_flags(self) -> SwpFlag:
        return DEFAULT_SWP_FLAGS if self.set_window_pos_flags is None else self.set_window_pos_flags

    @property
    def effective_z_order(self) -> ZOrder:
        return ZOrder.TOP if self.z_order is None else self.z_order

    @property
    def effective_retry_delay(self) -> float:
        return 1.0 if self.retry_delay_seconds is None else self.retry_delay_seconds

    @property
    def effective_retry_count(self) -> int:
        """launchTimeoutSeconds, when set, is a time budget that replaces retryCount."""
        if self.launch_timeout_seconds is not None:
            delay = self.effective_retry_delay
            if delay <= 0:
                raise ConfigError(
                    f"{self.process_name}: launchTimeoutSeconds requires "
                    f"retryDelaySeconds > 0"
                )
            return int(math.ceil(self.launch_timeout_seconds / delay))
        return self.retry_count or 0


# JSON key -> (field, kind)
_KEYS: Dict[str, Tuple[str, str]] = {
    "processName":            ("process_name", "str"),
    "title":                  ("title", "str"),
    "monitorIndex":           ("monitor_index", "int"),
    "monitorDevice":          ("monitor_device", "str"),
    "pad":                    ("pad", "int"),
    "grid":                   ("grid", "str"),
    "cell":                   ("cell", "str"),
    "rowSpan":                ("row_span", "int"),
    "colSpan":                ("col_span", "int"),
    "gutter":                 ("gutter", "num"),
    "outerGutter":            ("outer_gutter", "num"),
    "anchor":                 ("anchor", "str"),
    "x":                      ("x", "num"),
    "xPct":                   ("x_pct", "num"),
    "y":                      ("y", "num"),
    "yPct":                   ("y_pct", "num"),
    "width":                  ("width", "num"),
    "widthPct":               ("width_pct", "num"),
    "height":                 ("height", "num"),
    "heightPct":              ("height_pct", "num"),
    "preset":                 ("preset", "str"),
    "dpiMode":                ("dpi_mode", "dpi"),
    "useSetWindowPos":        ("use_set_window_pos", "bool"),
    "setWindowPosFlags":      ("set_window_pos_flags", "swp"),
    "zOrder":                 ("z_order", "zorder"),
    "windowTitlePattern":     ("window_title_pattern", "str"),
    "waitForSeconds":         ("wait_for_seconds", "num"),
    "retryCount":             ("retry_count", "int"),
    "retryDelaySeconds":      ("retry_delay_seconds", "num"),
    "launchTimeoutSeconds":   ("launch_timeout_seconds", "num"),
    "ensureRunning":          ("ensure_running", "bool"),
    "launchPath":             ("launch_path", "str"),
    "launchArgs":             ("launch_args", "args"),
    "launchWorkingDir":       ("launch_working_dir", "str"),
    "launchAsUser":           ("launch_as_user", "bool"),
    "postLaunchDelaySeconds": ("post_launch_delay_seconds", "num"),
}


def _coerce(key: str, kind: str, value: Any) -> Any:
    if kind == "str":
        if isinstance(value, (dict, list)):
            raise ConfigError(f"{key} must be a string, got {value!r}")
        return str(value)
    if kind in ("int", "num"):
        if isinstance(value, bool):
            raise ConfigError(f"{key} must be a number, got {value!r}")
        try:
            num = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a number, got {value!r}") from None
        if not math.isfinite(num):
            raise ConfigError(f"{key} must be a finite number, got {value!r}")
        return int(num) if kind == "int" else num
    if kind == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if kind == "dpi":
        return DpiMode.parse(value)
    if kind == "swp":
        return SwpFlag.parse(value)
    if kind == "zorder":
        return ZOrder.parse(value)
    if kind == "args":
        if isinstance(value, list):
            return [str(a) for a in value]
        # A single string is split the way Windows command lines are.
        return shlex.split(str(value), posix=False)
    raise AssertionError(kind)


def parse_entry(raw: Dict[str, Any]) -> LayoutEntry:
    """Convert a JSON object into a (possibly partial) LayoutEntry.

    Unknown keys are ignored; JSON ``null`` counts as unset.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"Layout entry must be an object, got {raw!r}")
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        spec = _KEYS.get(key)
        if spec is None or value is None:
            continue
        name, kind = spec
        values[name] = _coerce(key, kind, value)
    return LayoutEntry(**values)


def merge_entries(base: LayoutEntry, overlay: LayoutEntry) -> LayoutEntry:
    """Fields set on ``overlay`` win; unset ones fall through to ``base``."""
    merged = {}
    for f in fields(LayoutEntry):
        value = getattr(overlay, f.name)
        merged[f.name] = getattr(base, f.name) if value is None else value
    return LayoutEntry(**merged)


# ══════════════════════════════════════════════════════════════════════════
#  Presets
# ══════════════════════════════════════════════════════════════════════════
_THIRD = 100.0 / 3

PRESETS: Dict[str, LayoutEntry] = {
    "lefthalf":           LayoutEntry(anchor="Left",        width_pct=50,  height_pct=100),
    "righthalf":          LayoutEntry(anchor="Right",       width_pct=50,  height_pct=100),
    "tophalf":            LayoutEntry(anchor="Top",         width_pct=100, height_pct=50),
    "bottomhalf":         LayoutEntry(anchor="Bottom",      width_pct=100, height_pct=50),
    "topleftquarter":     LayoutEntry(anchor="TopLeft",     width_pct=50,  height_pct=50),
    "toprightquarter":    LayoutEntry(anchor="TopRight",    width_pct=50,  height_pct=50),
    "bottomleftquarter":  LayoutEntry(anchor="BottomLeft",  width_pct=50,  height_pct=50),
    "bottomrightquarter": LayoutEntry(anchor="BottomRight", width_pct=50,  height_pct=50),
    "leftthird":          LayoutEntry(anchor="Left",        width_pct=_THIRD,     height_pct=100),
    "centerthird":        LayoutEntry(anchor="Center",      width_pct=_THIRD,     height_pct=100),
    "rightthird":         LayoutEntry(anchor="Right",       width_pct=_THIRD,     height_pct=100),
    "lefttwothirds":      LayoutEntry(anchor="Left",        width_pct=2 * _THIRD, height_pct=100),
    "righttwothirds":     LayoutEntry(anchor="Right",       width_pct=2 * _THIRD, height_pct=100),
    "center":             LayoutEntry(anchor="Center",      width_pct=60,  height_pct=70),
    "maximize":           LayoutEntry(anchor="TopLeft",     width_pct=100, height_pct=100),
}


def resolve_entry(raw: Dict[str, Any],
                  bundle_defaults: Optional[Dict[str, Any]] = None) -> LayoutEntry:
    """bundleDefaults -> entry -> preset (preset only fills unset fields)."""
    entry = parse_entry(raw)
    if bundle_defaults:
        entry = merge_entries(parse_entry(bundle_defaults), entry)

    if entry.preset:
        preset = PRESETS.get(entry.preset.strip().lower())
        if preset is None:
            raise ConfigError(
                f"Unknown preset {entry.preset!r}. "
                f"Known presets: {', '.join(sorted(PRESETS))}"
            )
        entry = merge_entries(preset, entry)

    if not (entry.process_name or "").strip():
        raise ConfigError(f"Layout entry has no processName: {raw!r}")

    # Raises now for a timeout with no delay, rather than mid-targeting.
    _ = entry.effective_retry_count
    return entry


# ══════════════════════════════════════════════════════════════════════════
#  Config loading & bundle selection
# ══════════════════════════════════════════════════════════════════════════
Config = Union[List[Any], Dict[str, Any]]


@dataclass
class EntrySource:
    """A raw entry plus the defaults it merges over and where it came from."""
    raw:      Dict[str, Any]
    defaults: Dict[str, Any] = field(default_factory=dict)
    origin:   str = "entries"


def load_config(path: str) -> Config:
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and ("entries" in data or "bundles" in data):
        return data
    raise ConfigError(
        f"{path}: expected a list of entries or an object with 'entries'/'bundles'"
    )


def _as_entry_list(value: Any, where: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list of entries")
    return value


def select_entries(config: Config, bundle: Optional[str] = None,
                   warn=print) -> List[EntrySource]:
    """Pick the entries one apply run should process, in order."""
    if isinstance(config, list):
        if bundle:
            raise ConfigError(f"Bundle {bundle!r} requested but config is a flat list")
        return [EntrySource(raw=r, origin="entries")
                for r in _as_entry_list(config, "config")]

    defaults = config.get("bundleDefaults") or {}
    if not isinstance(defaults, dict):
        raise ConfigError("bundleDefaults must be an object")
    bundles = config.get("bundles")
    if bundles is not None and not isinstance(bundles, dict):
        raise ConfigError("bundles must be an object of name -> entries")

    if bundle:
        if not bundles:
            raise ConfigError(f"Bundle {bundle!r} requested but config has no bundles")
        if bundle not in bundles:
            raise ConfigError(
                f"Unknown bundle {bundle!r}. Available: {', '.join(sorted(bundles))}"
            )
        return [EntrySource(raw=r, defaults=defaults, origin=bundle)
                for r in _as_entry_list(bundles[bundle], f"bundles.{bundle}")]

    apply_bundles = config.get("applyBundles") or []
    if not isinstance(apply_bundles, list) or not all(isinstance(n, str) for n in apply_bundles):
        raise ConfigError(f"applyBundles must be a list of bundle names, got {apply_bundles!r}")

    out: List[EntrySource] = []
    for name in apply_bundles:
        if not bundles or name not in bundles:
            warn(f"  [warn] applyBundles names missing bundle {name!r}, skipping")
            continue
        out.extend(EntrySource(raw=r, defaults=defaults, origin=name)
                   for r in _as_entry_list(bundles[name], f"bundles.{name}"))
    out.extend(EntrySource(raw=r, defaults=defaults, origin="entries")
               for r in _as_entry_list(config.get("entries"), "entries"))
    return out


def normalize_process_name(name: str) -> str:
    """'Chrome.EXE' -> 'chrome'."""
    n = str(name or "").strip().lower()
    return n[:-4] if n.endswith(".exe") else n
