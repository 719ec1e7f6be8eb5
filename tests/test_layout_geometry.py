import pathlib
import sys

import pytest

repo_root = pathlib.Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import layout_geometry as lg
from layout_config import DpiMode, GeometryError, LayoutEntry, resolve_entry


FHD = lg.WorkArea(0, 0, 1920, 1080)


def _inside(rect, area):
    return (rect.x >= area.left and rect.y >= area.top
            and rect.x + rect.width <= area.right
            and rect.y + rect.height <= area.bottom
            and rect.width >= lg.MIN_SIZE and rect.height >= lg.MIN_SIZE)


def test_grid_2x2_first_cell():
    rect = lg.compute_rect(LayoutEntry(grid="2x2", cell="1,1", gutter=0), FHD)
    assert rect.as_tuple() == (0, 0, 960, 540)


def test_grid_cells_tile_the_work_area_exactly():
    area = lg.WorkArea(0, 0, 1921, 1081)
    rows, cols = 3, 7
    widths = {}
    for r in range(1, rows + 1):
        for c in range(1, cols + 1):
            rect = lg.compute_rect(LayoutEntry(grid=f"{rows}x{cols}", cell=f"{r},{c}"), area)
            widths[c] = (rect.x, rect.width)
    # each column starts where the previous one ended: no gaps, no overlaps
    edge = area.left
    for c in range(1, cols + 1):
        x, w = widths[c]
        assert x == edge
        edge = x + w
    assert edge == area.right


def test_grid_span_and_gutters():
    entry = LayoutEntry(grid="2x3", cell="1,2", col_span=2, row_span=2,
                        gutter=10, outer_gutter=20)
    rect = lg.compute_rect(entry, FHD)
    # usable 1880x1040, cell width (1880 - 20) / 3 = 620
    assert rect.x == 20 + 620 + 10
    assert rect.width == 620 * 2 + 10
    assert rect.y == 20
    assert rect.height == 1040


def test_grid_spec_is_case_and_space_tolerant():
    rect = lg.compute_rect(LayoutEntry(grid=" 1 X 2 ", cell="1, 2"), FHD)
    assert rect.as_tuple() == (960, 0, 960, 1080)


@pytest.mark.parametrize("grid,cell", [
    ("2by2", "1,1"),
    ("0x2", "1,1"),
    ("2x2", "3,1"),
    ("2x2", "0,1"),
    ("2x2", "1"),
    ("2x2", None),
])
def test_grid_errors(grid, cell):
    with pytest.raises(GeometryError):
        lg.compute_rect(LayoutEntry(grid=grid, cell=cell), FHD)


def test_grid_span_overflow_is_an_error():
    with pytest.raises(GeometryError):
        lg.compute_rect(LayoutEntry(grid="2x2", cell="1,2", col_span=2), FHD)


def test_right_half_preset():
    entry = resolve_entry({"processName": "code", "preset": "RightHalf"})
    assert lg.compute_rect(entry, FHD).as_tuple() == (960, 0, 960, 1080)


def test_preset_width_can_be_overridden():
    entry = resolve_entry({"processName": "code", "preset": "LeftHalf", "widthPct": 30})
    rect = lg.compute_rect(entry, FHD)
    assert rect.width == 576
    assert rect.x == 0


@pytest.mark.parametrize("anchor,expected", [
    ("TopLeft",     (0, 0)),
    ("Top",         (460, 0)),
    ("TopRight",    (920, 0)),
    ("Left",        (0, 290)),
    ("Center",      (460, 290)),
    ("c",           (460, 290)),
    ("Right",       (920, 290)),
    ("BottomLeft",  (0, 580)),
    ("bottom",      (460, 580)),
    ("BR",          (920, 580)),
])
def test_anchor_positions(anchor, expected):
    rect = lg.compute_rect(LayoutEntry(anchor=anchor, width=1000, height=500), FHD)
    assert (rect.x, rect.y) == expected
    assert (rect.width, rect.height) == (1000, 500)


@pytest.mark.parametrize("anchor,expected", [
    ("RightHalf",      (960, 0, 960, 1080)),
    ("LeftHalf",       (0, 0, 960, 1080)),
    ("BottomRightQuarter", (960, 0, 960, 1080)),
])
def test_anchor_accepts_preset_spellings(anchor, expected):
    warnings = []
    rect = lg.compute_rect(LayoutEntry(anchor=anchor, width=960), FHD, warn=warnings.append)
    assert rect.as_tuple() == expected
    assert warnings == []


def test_unknown_anchor_falls_back_to_top_left():
    warnings = []
    rect = lg.compute_rect(LayoutEntry(anchor="Nowhere", width=800, height=600), FHD,
                           warn=warnings.append)
    assert (rect.x, rect.y) == (0, 0)
    assert warnings and "Nowhere" in warnings[0]


def test_grid_beats_anchor_beats_explicit():
    entry = LayoutEntry(grid="1x2", cell="1,2", anchor="Left", x=5, width=100)
    assert lg.strategy_name(entry) == "grid"
    assert lg.compute_rect(entry, FHD).x == 960
    entry = LayoutEntry(anchor="Right", x=5, width=100)
    assert lg.strategy_name(entry) == "anchor"
    assert lg.compute_rect(entry, FHD).x == 1820


def test_explicit_offsets_are_relative_to_work_area():
    area = lg.WorkArea(1920, 40, 3840, 1080)
    rect = lg.compute_rect(LayoutEntry(x=100, y_pct=10, width_pct=50, height=400), area)
    assert rect.as_tuple() == (2020, 144, 960, 400)


def test_explicit_defaults_to_full_work_area():
    area = lg.WorkArea(-1280, 0, 0, 1024)
    assert lg.compute_rect(LayoutEntry(), area).as_tuple() == (-1280, 0, 1280, 1024)


def test_explicit_out_of_range_is_clamped():
    rect = lg.compute_rect(LayoutEntry(x=-100, width=2000), FHD)
    assert rect.x == 0
    assert rect.width == 1920


@pytest.mark.parametrize("entry", [
    LayoutEntry(x=5000, y=5000, width=10, height=10),
    LayoutEntry(x_pct=-50, y_pct=250, width_pct=-20, height_pct=400),
    LayoutEntry(anchor="BottomRight", width=99999, height=1),
    LayoutEntry(grid="1x40", cell="1,40"),
    LayoutEntry(grid="2x2", cell="2,2", gutter=3000),
])
def test_every_strategy_stays_inside_the_work_area(entry):
    area = lg.WorkArea(100, 50, 1380, 1010)
    assert _inside(lg.compute_rect(entry, area), area)


def test_inset_pads_every_side():
    assert lg.WorkArea(0, 0, 1920, 1080).inset(10) == lg.WorkArea(10, 10, 1910, 1070)


class _Dpi:
    def __init__(self, window=None, system=96):
        self.window = window
        self.system = system

    def get_window_dpi(self, hwnd):
        return self.window

    def get_system_dpi(self):
        return self.system


RECT = lg.ResolvedRect(101, 51, 801, 601)


def test_dpi_logical_is_identity():
    assert lg.adjust_for_dpi(RECT, 1, DpiMode.LOGICAL, _Dpi(window=192)) == RECT


def test_dpi_auto_scales_by_window_dpi():
    out = lg.adjust_for_dpi(RECT, 1, DpiMode.AUTO, _Dpi(window=144))
    assert out.as_tuple() == (152, 76, 1202, 902)


def test_dpi_auto_without_window_dpi_is_identity():
    assert lg.adjust_for_dpi(RECT, 1, DpiMode.AUTO, _Dpi(window=None, system=192)) == RECT


def test_dpi_physical_falls_back_to_system_dpi():
    out = lg.adjust_for_dpi(RECT, 1, DpiMode.PHYSICAL, _Dpi(window=None, system=192))
    assert out.as_tuple() == (202, 102, 1602, 1202)


def test_dpi_near_one_is_identity():
    assert lg.adjust_for_dpi(RECT, 1, DpiMode.PHYSICAL, _Dpi(window=96)) == RECT
    assert lg.scale_rect(RECT, 1.005) == RECT
    assert lg.scale_rect(RECT, 1.02) != RECT
