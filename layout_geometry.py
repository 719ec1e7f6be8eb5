"""
layout_geometry.py  –  LayoutEntry + work area  ->  pixel rectangle
===================================================================

Three mutually exclusive strategies, first applicable wins:

  grid     "RxC" + "row,col" (1-based), optional spans and gutters
  anchor   TopLeft / Top / ... / BottomRight, sized by width(Pct)/height(Pct)
  explicit x(Pct) / y(Pct) offsets from the work-area origin

Every strategy ends in clamp(): the result is fully inside the work area and
never smaller than MIN_SIZE on either axis.
"""

import enum
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from layout_config import DpiMode, GeometryError, LayoutEntry

MIN_SIZE     = 50
BASE_DPI     = 96
DPI_EPSILON  = 0.01


# ══════════════════════════════════════════════════════════════════════════
#  Value types
# ══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class WorkArea:
    left:   int
    top:    int
    right:  int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def inset(self, amount: float) -> "WorkArea":
        """Shrink inward on all four sides (never past a zero-size area)."""
        a = int(round(amount or 0))
        a = min(a, self.width // 2, self.height // 2)
        return WorkArea(self.left + a, self.top + a, self.right - a, self.bottom - a)


@dataclass(frozen=True)
class Monitor:
    index:     int
    device:    str
    work_area: WorkArea
    primary:   bool = False


@dataclass(frozen=True)
class ResolvedRect:
    x:      int
    y:      int
    width:  int
    height: int

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height


class Anchor(enum.Enum):
    TOP_LEFT     = (0.0, 0.0)
    TOP          = (0.5, 0.0)
    TOP_RIGHT    = (1.0, 0.0)
    LEFT         = (0.0, 0.5)
    CENTER       = (0.5, 0.5)
    RIGHT        = (1.0, 0.5)
    BOTTOM_LEFT  = (0.0, 1.0)
    BOTTOM       = (0.5, 1.0)
    BOTTOM_RIGHT = (1.0, 1.0)

    @classmethod
    def lookup(cls, name: str) -> Optional["Anchor"]:
        key = re.sub(r"[\s_\-]", "", str(name or "")).lower()
        # "RightHalf", "TopLeftQuarter": the preset spelling of an anchor
        key = re.sub(r"(half|quarter)$", "", key) or key
        return _ANCHOR_NAMES.get(key)


_ANCHOR_NAMES = {
    "topleft": Anchor.TOP_LEFT,         "tl": Anchor.TOP_LEFT,
    "top": Anchor.TOP,                  "t":  Anchor.TOP,
    "topright": Anchor.TOP_RIGHT,       "tr": Anchor.TOP_RIGHT,
    "left": Anchor.LEFT,                "l":  Anchor.LEFT,
    "center": Anchor.CENTER,            "c":  Anchor.CENTER,
    "centre": Anchor.CENTER,            "middle": Anchor.CENTER,
    "right": Anchor.RIGHT,              "r":  Anchor.RIGHT,
    "bottomleft": Anchor.BOTTOM_LEFT,   "bl": Anchor.BOTTOM_LEFT,
    "bottom": Anchor.BOTTOM,            "b":  Anchor.BOTTOM,
    "bottomright": Anchor.BOTTOM_RIGHT, "br": Anchor.BOTTOM_RIGHT,
}


# ══════════════════════════════════════════════════════════════════════════
#  Helpers
# ══════════════════════════════════════════════════════════════════════════
def _size(value: Optional[float], pct: Optional[float], full: int) -> float:
    if value is not None:
        return value
    if pct is not None:
        return full * pct / 100.0
    return full


def _offset(value: Optional[float], pct: Optional[float], full: int) -> float:
    if value is not None:
        return value
    if pct is not None:
        return full * pct / 100.0
    return 0


def clamp(x: float, y: float, w: float, h: float, area: WorkArea) -> ResolvedRect:
    """Bound size to [MIN_SIZE, area], then slide the origin inside the area."""
    w = max(MIN_SIZE, min(int(round(w)), area.width))
    h = max(MIN_SIZE, min(int(round(h)), area.height))
    x = max(area.left, min(int(round(x)), area.right - w))
    y = max(area.top,  min(int(round(y)), area.bottom - h))
    return ResolvedRect(x, y, w, h)


def parse_grid(spec: str) -> Tuple[int, int]:
    m = re.fullmatch(r"\s*(\d+)\s*[xX]\s*(\d+)\s*", str(spec or ""))
    if not m:
        raise GeometryError(f"Invalid grid {spec!r}; expected 'RxC', e.g. '2x3'")
    rows, cols = int(m.group(1)), int(m.group(2))
    if rows < 1 or cols < 1:
        raise GeometryError(f"Invalid grid {spec!r}; rows and columns must be >= 1")
    return rows, cols


def parse_cell(spec: Optional[str], rows: int, cols: int) -> Tuple[int, int]:
    m = re.fullmatch(r"\s*(\d+)\s*,\s*(\d+)\s*", str(spec or ""))
    if not m:
        raise GeometryError(f"Invalid cell {spec!r}; expected 'row,col' (1-based)")
    row, col = int(m.group(1)), int(m.group(2))
    if not (1 <= row <= rows and 1 <= col <= cols):
        raise GeometryError(f"Cell {spec!r} is outside a {rows}x{cols} grid")
    return row, col


# ══════════════════════════════════════════════════════════════════════════
#  Strategies
# ══════════════════════════════════════════════════════════════════════════
def _grid_rect(entry: LayoutEntry, area: WorkArea) -> ResolvedRect:
    rows, cols = parse_grid(entry.grid)
    row, col   = parse_cell(entry.cell, rows, cols)
    row_span   = entry.row_span or 1
    col_span   = entry.col_span or 1
    if row_span < 1 or col_span < 1:
        raise GeometryError(f"rowSpan/colSpan must be >= 1 (got {row_span}, {col_span})")
    if row - 1 + row_span > rows or col - 1 + col_span > cols:
        raise GeometryError(
            f"Cell {entry.cell!r} spanning {row_span}x{col_span} overflows a {rows}x{cols} grid"
        )

    usable = area.inset(entry.outer_gutter or 0)
    gutter = entry.gutter or 0
    cell_w = (usable.width  - (cols - 1) * gutter) / cols
    cell_h = (usable.height - (rows - 1) * gutter) / rows

    # Round each edge on its own so neighbouring cells share edges exactly.
    x0 = round(usable.left + (col - 1) * (cell_w + gutter))
    y0 = round(usable.top  + (row - 1) * (cell_h + gutter))
    x1 = round(usable.left + (col - 1 + col_span) * (cell_w + gutter) - gutter)
    y1 = round(usable.top  + (row - 1 + row_span) * (cell_h + gutter) - gutter)
    return clamp(x0, y0, x1 - x0, y1 - y0, area)


def _anchor_rect(entry: LayoutEntry, area: WorkArea, warn=print) -> ResolvedRect:
    anchor = Anchor.lookup(entry.anchor)
    if anchor is None:
        warn(f"  [warn] Unknown anchor {entry.anchor!r}, using TopLeft")
        anchor = Anchor.TOP_LEFT
    w = _size(entry.width,  entry.width_pct,  area.width)
    h = _size(entry.height, entry.height_pct, area.height)
    fx, fy = anchor.value
    x = area.left + (area.width  - w) * fx
    y = area.top  + (area.height - h) * fy
    return clamp(x, y, w, h, area)


def _explicit_rect(entry: LayoutEntry, area: WorkArea) -> ResolvedRect:
    w = _size(entry.width,  entry.width_pct,  area.width)
    h = _size(entry.height, entry.height_pct, area.height)
    x = area.left + _offset(entry.x, entry.x_pct, area.width)
    y = area.top  + _offset(entry.y, entry.y_pct, area.height)
    return clamp(x, y, w, h, area)


def strategy_name(entry: LayoutEntry) -> str:
    if entry.grid:
        return "grid"
    if entry.anchor:
        return "anchor"
    return "explicit"


def compute_rect(entry: LayoutEntry, area: WorkArea, warn=print) -> ResolvedRect:
    """Resolve ``entry`` against a (padded) work area.  grid > anchor > explicit."""
    kind = strategy_name(entry)
    if kind == "grid":
        return _grid_rect(entry, area)
    if kind == "anchor":
        return _anchor_rect(entry, area, warn=warn)
    return _explicit_rect(entry, area)


# ══════════════════════════════════════════════════════════════════════════
#  DPI
# ══════════════════════════════════════════════════════════════════════════
def scale_rect(rect: ResolvedRect, scale: float) -> ResolvedRect:
    if abs(scale - 1.0) < DPI_EPSILON:
        return rect
    return ResolvedRect(
        int(round(rect.x * scale)),
        int(round(rect.y * scale)),
        int(round(rect.width * scale)),
        int(round(rect.height * scale)),
    )


def adjust_for_dpi(rect: ResolvedRect, hwnd: int, mode: DpiMode, desktop) -> ResolvedRect:
    """
    logical   unchanged
    auto      window DPI, unchanged if the window can't report one
    physical  window DPI, else system DPI
    """
    if mode == DpiMode.LOGICAL:
        return rect
    dpi = desktop.get_window_dpi(hwnd)
    if not dpi:
        if mode == DpiMode.AUTO:
            return rect
        dpi = desktop.get_system_dpi()
    if not dpi:
        return rect
    return scale_rect(rect, dpi / BASE_DPI)
