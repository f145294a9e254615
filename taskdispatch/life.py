"""An asynchronous Game of Life where every cell lives on its own serial queue.

Each cell keeps its own state. When a cell changes, it asks its neighbours to
update; an updating cell queries every neighbour for whether it is alive and,
once all answers are in, applies Conway's rules. Because cells evolve
independently, runs from the same start can end quite differently.
"""

from __future__ import annotations

import getopt
import os
import random
import shutil
import sys
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable

_NEIGHBOR_OFFSETS = (
    (0, -1),   # N
    (1, -1),   # NE
    (1, 0),    # E
    (1, 1),    # SE
    (0, 1),    # S
    (-1, 1),   # SW
    (-1, 0),   # W
    (-1, -1),  # NW
)

_USAGE = (
    "usage: life [-q] [-x size] [-y size]\n"
    "\t-x: grid x size (default is terminal columns)\n"
    "\t-y: grid y size (default is terminal rows)\n"
    "\t-q: suppress display output\n"
)


class _Dispatcher:
    """Thread pool shared by all cell queues, counting outstanding work."""

    def __init__(self) -> None:
        workers = min(32, (os.cpu_count() or 1) + 4)
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="life")
        self._idle = threading.Condition()
        self._pending = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def begin(self) -> bool:
        with self._idle:
            if self._closed:
                return False
            self._pending += 1
            return True

    def end(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending <= 0:
                self._idle.notify_all()

    def execute(self, func: Callable[[], None]) -> None:
        try:
            self._executor.submit(func)
        except RuntimeError:
            pass  # shut down meanwhile

    def wait_idle(self, timeout: float | None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._pending <= 0, timeout)

    def shutdown(self) -> None:
        with self._idle:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        with self._idle:
            self._pending = 0
            self._idle.notify_all()


class _SerialQueue:
    """Runs submitted functions one at a time, in submission order."""

    def __init__(self, label: str, dispatcher: _Dispatcher) -> None:
        self.label = label
        self._dispatcher = dispatcher
        self._items: deque[Callable[[], None]] = deque()
        self._lock = threading.Lock()
        self._running = False

    def submit(self, func: Callable[[], None]) -> None:
        if not self._dispatcher.begin():
            return
        with self._lock:
            self._items.append(func)
            if self._running:
                return
            self._running = True
        self._dispatcher.execute(self._drain)

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._items:
                    self._running = False
                    return
                func = self._items.popleft()
            try:
                if not self._dispatcher.closed:
                    func()
            finally:
                self._dispatcher.end()


class Cell:
    """One square of the board, with the state its update protocol needs."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.alive = False
        self.display = " "
        self.needs_update = False
        self.living_neighbors = 0
        self.queries_outstanding = 0
        self.neighbors: list[Cell] = []
        self._queue: _SerialQueue | None = None

    def __repr__(self) -> str:
        return f"Cell({self.label!r}, alive={self.alive})"


class Grid:
    """A board of cells that update themselves asynchronously."""

    def __init__(self, width: int, height: int, seed: int | None = None) -> None:
        if width < 0 or height < 0:
            raise ValueError("grid sizes must not be negative")
        self.width = width
        self.height = height
        self._rng = random.Random(seed)
        self._dispatcher = _Dispatcher()
        self._cells = [Cell(f"x{x}y{y}") for y in range(height) for x in range(width)]
        for y in range(height):
            for x in range(width):
                cell = self.cell(x, y)
                cell._queue = _SerialQueue(cell.label, self._dispatcher)
                cell.neighbors = [self.cell(nx, ny) for nx, ny in self.neighbors(x, y)]

    def __enter__(self) -> Grid:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _valid(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def _check(self, x: int, y: int) -> None:
        if not self._valid(x, y):
            raise IndexError(f"({x}, {y}) is outside a {self.width}x{self.height} grid")

    def cell(self, x: int, y: int) -> Cell:
        """The cell at column ``x``, row ``y``."""
        self._check(x, y)
        return self._cells[y * self.width + x]

    def neighbors(self, x: int, y: int) -> list[tuple[int, int]]:
        """Coordinates of the cells around ``(x, y)``, clockwise from north."""
        self._check(x, y)
        return [
            (x + dx, y + dy)
            for dx, dy in _NEIGHBOR_OFFSETS
            if self._valid(x + dx, y + dy)
        ]

    def set_alive(self, x: int, y: int, alive: bool) -> None:
        """Change a cell's state and make its neighbours re-evaluate."""
        self._set_alive(self.cell(x, y), bool(alive))

    def populate(self) -> None:
        """Bring each cell to life with an even chance."""
        for x in range(self.width):
            for y in range(self.height):
                if self._rng.getrandbits(1):
                    self.set_alive(x, y, True)

    def display_char(self, x: int, y: int) -> str:
        """'#' for alive, '.' for a dead cell being updated, ' ' otherwise."""
        return self.cell(x, y).display

    def render(self) -> str:
        """The whole board as text, one line per row."""
        return "\n".join(
            "".join(cell.display for cell in self._cells[y * self.width:(y + 1) * self.width])
            for y in range(self.height)
        )

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no work is queued; False if ``timeout`` ran out first."""
        return self._dispatcher.wait_idle(timeout)

    def shutdown(self) -> None:
        """Stop all processing; queued work is dropped."""
        self._dispatcher.shutdown()

    def _set_alive(self, cell: Cell, alive: bool) -> None:
        if alive == cell.alive:
            return

        def change() -> None:
            cell.alive = alive
            cell.display = "#" if alive else " "
            for other in cell.neighbors:
                other._queue.submit(partial(self._update_cell, other))

        cell._queue.submit(change)

    def _update_cell(self, cell: Cell) -> None:
        if cell.queries_outstanding:
            cell.needs_update = True
            return
        cell.needs_update = False
        cell.living_neighbors = 0
        for other in cell.neighbors:
            cell.queries_outstanding += 1

            def query(other: Cell = other) -> None:
                alive = other.alive
                cell._queue.submit(partial(self._update_response, cell, alive))

            other._queue.submit(query)
        if not cell.alive:
            cell.display = "."

    def _update_response(self, cell: Cell, response: bool) -> None:
        if response:
            cell.living_neighbors += 1
        cell.queries_outstanding -= 1
        if cell.queries_outstanding:
            return
        living = cell.living_neighbors
        alive = cell.alive
        if living < 2 or living > 3:
            alive = False
        elif living == 3:
            alive = True
        self._set_alive(cell, alive)
        if cell.needs_update:
            cell._queue.submit(partial(self._update_cell, cell))
        elif not cell.alive:
            cell.display = " "


def _parse_size(value: str) -> int | None:
    try:
        size = int(value, 10)
    except ValueError:
        return None
    return size if size >= 0 else None


def main(argv: list[str] | None = None) -> int:
    """Run the simulation until interrupted."""
    args = sys.argv[1:] if argv is None else argv
    columns, lines = shutil.get_terminal_size((40, 20))
    width, height = columns, lines
    display = True
    try:
        options, _ = getopt.getopt(args, "x:y:q")
    except getopt.GetoptError:
        sys.stderr.write(_USAGE)
        return 1
    for flag, value in options:
        if flag == "-x":
            size = _parse_size(value)
            if size is None:
                sys.stderr.write("life: invalid x size\n")
                return 1
            width = size
        elif flag == "-y":
            size = _parse_size(value)
            if size is None:
                sys.stderr.write("life: invalid y size\n")
                return 1
            height = size
        elif flag == "-q":
            display = False

    grid = Grid(width, height)
    grid.populate()
    out = sys.stdout
    if display:
        out.write("\x1b[2J\x1b[?25l")
    try:
        while True:
            if display:
                out.write("\x1b[H" + grid.render())
                out.flush()
                time.sleep(0.01)
            else:
                time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        grid.shutdown()
        if display:
            out.write("\x1b[?25h\n")
            out.flush()
    return 0