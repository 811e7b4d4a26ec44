"""
Unit tests for the Grid.

Tests cover:
- Construction and dimension validation
- Single-cell read/write
- Out-of-range access
- Snapshot isolation
- Per-call atomicity under a concurrent writer
"""

import threading

import numpy as np
import pytest

from darwin import Cell, ConfigError, Grid


@pytest.fixture
def grid() -> Grid:
    return Grid(4, 5)


def test_new_grid_is_empty(grid):
    assert grid.rows == 4
    assert grid.cols == 5
    assert grid.cell_count == 20
    for row in range(grid.rows):
        for col in range(grid.cols):
            assert grid.read(row, col) is Cell.EMPTY


@pytest.mark.parametrize("rows,cols", [(0, 4), (4, 0), (-4, 4), (3, 3), (1, 2)])
def test_invalid_dimensions_rejected(rows, cols):
    with pytest.raises(ConfigError):
        Grid(rows, cols)


def test_config_error_is_value_error():
    with pytest.raises(ValueError):
        Grid(5, 5)


def test_write_then_read_every_cell(grid):
    colors = [Cell.RED, Cell.GREEN, Cell.BLUE, Cell.YELLOW]
    for row in range(grid.rows):
        for col in range(grid.cols):
            value = colors[(row * grid.cols + col) % 4]
            grid.write(row, col, value)
            assert grid.read(row, col) is value


def test_write_accepts_plain_ints(grid):
    grid.write(1, 1, 3)
    assert grid.read(1, 1) is Cell.BLUE


def test_write_rejects_unknown_value(grid):
    with pytest.raises(ValueError):
        grid.write(0, 0, 9)
    assert grid.read(0, 0) is Cell.EMPTY


@pytest.mark.parametrize("row,col", [(-1, 0), (0, -1), (4, 0), (0, 5), (100, 100)])
def test_out_of_range_fails_fast(grid, row, col):
    with pytest.raises(IndexError):
        grid.read(row, col)
    with pytest.raises(IndexError):
        grid.write(row, col, Cell.RED)


def test_fill(grid):
    grid.fill(Cell.GREEN)
    assert np.all(grid.snapshot() == Cell.GREEN)


def test_snapshot_is_a_copy(grid):
    grid.write(2, 3, Cell.YELLOW)
    snap = grid.snapshot()
    assert snap.shape == (4, 5)
    assert snap.dtype == np.int8
    assert snap[2, 3] == Cell.YELLOW

    snap[2, 3] = Cell.RED
    assert grid.read(2, 3) is Cell.YELLOW


def test_reader_never_sees_torn_values():
    grid = Grid(2, 2)
    grid.fill(Cell.RED)
    stop = threading.Event()

    def writer():
        flip = [Cell.RED, Cell.BLUE]
        i = 0
        while not stop.is_set():
            grid.write(0, 0, flip[i % 2])
            i += 1

    t = threading.Thread(target=writer, daemon=True)
    t.start()
    try:
        seen = {grid.read(0, 0) for _ in range(5000)}
    finally:
        stop.set()
        t.join(timeout=1.0)

    assert seen <= {Cell.RED, Cell.BLUE}
