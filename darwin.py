# darwin.py
import sys
import argparse
import logging
import os
import tempfile
import threading
import time
from enum import Enum, IntEnum

import numpy as np
import pygame

# =============================================================================
# OPTIONAL DEPENDENCIES (debug HUD)
# =============================================================================
try:
    import psutil
    HAS_PSUTIL = True
except Exception:
    HAS_PSUTIL = False

# =============================================================================
# Logging (file log survives windowed builds without a console)
# =============================================================================
logger = logging.getLogger("darwin")
LOG_PATH = os.path.join(tempfile.gettempdir(), "darwin.log")


def setup_logging(debug: bool = False, path: str = LOG_PATH):
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(message)s")

    try:
        fh = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        fh = None
    if fh is not None:
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    if debug or fh is None:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger

# =============================================================================
# CONFIG
# =============================================================================
ROWS = 10
COLS = 10

STEP_INTERVAL = 0.0005  # seconds between mixing steps (0 = as fast as possible)
EMPTY_CHECK_FACTOR = 32  # source misses per cell before step() looks for a colored cell

SCREEN_WIDTH = 800
SCREEN_HEIGHT = 800
FPS_MAX = 200
COLOR_BG = (242, 242, 242)


class Cell(IntEnum):
    EMPTY = 0
    RED = 1
    GREEN = 2
    BLUE = 3
    YELLOW = 4  # placement order follows definition order


PALETTE = (Cell.RED, Cell.GREEN, Cell.BLUE, Cell.YELLOW)

DEFAULT_COLORS = {
    Cell.EMPTY: COLOR_BG,
    Cell.RED: (255, 0, 0),
    Cell.GREEN: (0, 255, 0),
    Cell.BLUE: (0, 0, 255),
    Cell.YELLOW: (255, 255, 0),
}


class ConfigError(ValueError):
    pass


class StepLimitExceeded(RuntimeError):
    def __init__(self, steps):
        super().__init__(f"no monochrome grid after {steps} rounds")
        self.steps = steps


def check_dimensions(rows, cols):
    rows, cols = int(rows), int(cols)
    if rows <= 0 or cols <= 0:
        raise ConfigError(f"grid must not be empty, got {rows}x{cols}")
    if (rows * cols) % len(PALETTE) != 0:
        raise ConfigError(
            f"{rows}x{cols} grid has {rows * cols} cells, "
            f"not divisible by {len(PALETTE)} colors"
        )
    return rows, cols


def check_palette(colors):
    colors = tuple(Cell(c) for c in colors)
    if len(colors) != len(PALETTE) or len(set(colors)) != len(colors) or Cell.EMPTY in colors:
        raise ConfigError(f"need {len(PALETTE)} distinct non-empty colors, got {colors}")
    return colors

# =============================================================================
# Grid
# =============================================================================
class Grid:
    """
    Fixed rows x cols field of Cell values.

    Every read/write/snapshot holds the lock for that one call only, so an
    observer may see a step half applied but never a torn cell.
    """
    def __init__(self, rows=ROWS, cols=COLS):
        self.rows, self.cols = check_dimensions(rows, cols)
        self.cells = np.zeros((self.rows, self.cols), dtype=np.int8)
        self.lock = threading.Lock()

    @property
    def cell_count(self) -> int:
        return self.rows * self.cols

    def _check(self, row, col):
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(f"cell ({row}, {col}) outside {self.rows}x{self.cols} grid")

    def read(self, row: int, col: int) -> Cell:
        self._check(row, col)
        with self.lock:
            val = int(self.cells[row, col])
        return Cell(val)

    def write(self, row: int, col: int, value):
        self._check(row, col)
        val = int(Cell(value))
        with self.lock:
            self.cells[row, col] = val

    def fill(self, value):
        val = int(Cell(value))
        with self.lock:
            self.cells.fill(val)

    def snapshot(self) -> np.ndarray:
        with self.lock:
            return self.cells.copy()

# =============================================================================
# Mixing engine
# =============================================================================
class MixingEngine:
    def __init__(self, rng=None, seed=None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def random_cell(self, grid: Grid):
        return int(self.rng.integers(grid.rows)), int(self.rng.integers(grid.cols))

    def initialize_balanced(self, grid: Grid, colors=PALETTE):
        """
        Rejection sampling: each color in turn claims random EMPTY cells until
        it holds cell_count / 4 of them. Gets slower as the grid fills up.
        """
        colors = check_palette(colors)
        grid.fill(Cell.EMPTY)
        per_color = grid.cell_count // len(colors)

        for color in colors:
            placed = 0
            while placed < per_color:
                row, col = self.random_cell(grid)
                if grid.read(row, col) == Cell.EMPTY:
                    grid.write(row, col, color)
                    placed += 1
        logger.debug("initialized %dx%d grid, %d cells per color", grid.rows, grid.cols, per_color)

    def step(self, grid: Grid):
        row, col = self.random_cell(grid)
        previous = grid.read(row, col)
        grid.write(row, col, Cell.EMPTY)

        misses = 0
        while True:
            val = grid.read(*self.random_cell(grid))
            if val != Cell.EMPTY:
                break
            misses += 1
            # an all-EMPTY grid would keep this loop spinning forever
            if misses % (grid.cell_count * EMPTY_CHECK_FACTOR) == 0 and not grid.snapshot().any():
                grid.write(row, col, previous)
                raise RuntimeError("step() on a grid with no colored cells")

        grid.write(row, col, val)
        return row, col, val

    def is_terminal(self, grid: Grid) -> bool:
        first = grid.read(0, 0)
        for row in range(grid.rows):
            for col in range(grid.cols):
                if grid.read(row, col) != first:
                    return False
        return True

    def color_counts(self, grid: Grid):
        counts = np.bincount(grid.snapshot().ravel(), minlength=len(Cell))
        return {c: int(counts[c]) for c in Cell}

    def distinct_colors(self, grid: Grid) -> int:
        counts = self.color_counts(grid)
        return sum(1 for c in PALETTE if counts[c] > 0)

# =============================================================================
# Shared state
# =============================================================================
class SimState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    TERMINAL = "terminal"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SimulationState:
    def __init__(self):
        self.lock = threading.Lock()
        self.state = SimState.INITIALIZING
        self.started = False
        self.cancel_requested = False
        self.step_count = 0
        self.steps_per_sec = 0.0
        self.error = ""

# =============================================================================
# Sim thread worker
# =============================================================================
class SimWorker(threading.Thread):
    def __init__(self, sim: "Simulation"):
        super().__init__(name="darwin-sim", daemon=True)
        self.sim = sim

    def run(self):
        try:
            self.sim.loop(self.sim.interval)
        except Exception as e:
            msg = f"[SIM THREAD CRASH] {repr(e)}"
            logger.exception(msg)
            self.sim.fail(msg)
            # keep thread dead; main keeps rendering the last grid


class Simulation:
    """
    Owns one Grid, one MixingEngine and the shared state for a single run.

    INITIALIZING -> RUNNING -> TERMINAL, or RUNNING -> CANCELLED via cancel().
    A crash of the loop or a hit step cap ends in FAILED with the reason kept
    in error. start() runs the loop on a SimWorker thread; run_to_completion()
    runs the same loop on the calling thread without sleeping.
    """
    def __init__(self, rows=ROWS, cols=COLS, interval=STEP_INTERVAL, seed=None,
                 engine: MixingEngine = None, colors=PALETTE):
        if interval < 0:
            raise ConfigError(f"step interval must be >= 0, got {interval}")
        self.grid = Grid(rows, cols)
        self.engine = engine if engine is not None else MixingEngine(seed=seed)
        self.colors = check_palette(colors)
        self.interval = float(interval)
        self.shared = SimulationState()
        self.worker = None

    def _begin(self):
        with self.shared.lock:
            if self.shared.started:
                raise RuntimeError("simulation already started")
            self.shared.started = True

        self.engine.initialize_balanced(self.grid, self.colors)

        with self.shared.lock:
            if self.shared.state is SimState.INITIALIZING:
                self.shared.state = SimState.RUNNING
        logger.info("mixing %dx%d grid", self.grid.rows, self.grid.cols)

    def start(self):
        self._begin()
        self.worker = SimWorker(self)
        self.worker.start()
        return self

    def run_to_completion(self, max_steps=None) -> int:
        self._begin()
        self.loop(0.0, max_steps=max_steps)
        return self.get_step_count()

    def loop(self, interval, max_steps=None):
        sim_steps = 0
        sim_last = time.perf_counter()

        while True:
            with self.shared.lock:
                if self.shared.cancel_requested:
                    self.shared.state = SimState.CANCELLED
                    steps = self.shared.step_count
                    break

            if interval > 0.0:
                time.sleep(interval)

            self.engine.step(self.grid)
            with self.shared.lock:
                self.shared.step_count += 1
                steps = self.shared.step_count

            if self.engine.is_terminal(self.grid):
                with self.shared.lock:
                    self.shared.state = SimState.TERMINAL
                logger.info("grid is monochrome after %d rounds", steps)
                return

            if max_steps is not None and steps >= max_steps:
                err = StepLimitExceeded(steps)
                self.fail(str(err))
                raise err

            sim_steps += 1
            t2 = time.perf_counter()
            if t2 - sim_last >= 1.0:
                with self.shared.lock:
                    self.shared.steps_per_sec = sim_steps / (t2 - sim_last)
                sim_steps = 0
                sim_last = t2

        logger.info("cancelled after %d rounds", steps)

    def fail(self, msg):
        with self.shared.lock:
            self.shared.state = SimState.FAILED
            self.shared.error = msg

    def cancel(self):
        with self.shared.lock:
            if self.shared.state in (SimState.TERMINAL, SimState.CANCELLED, SimState.FAILED):
                return
            self.shared.cancel_requested = True

    def join(self, timeout=None) -> bool:
        if self.worker is None:
            return True
        self.worker.join(timeout=timeout)
        return not self.worker.is_alive()

    def get_state(self) -> SimState:
        with self.shared.lock:
            return self.shared.state

    def get_step_count(self) -> int:
        with self.shared.lock:
            return self.shared.step_count

    @property
    def error(self) -> str:
        with self.shared.lock:
            return self.shared.error

# =============================================================================
# Debug HUD (optional)
# =============================================================================
class SystemStats:
    def __init__(self):
        self.have_psutil = HAS_PSUTIL
        self.last_poll = 0.0
        self.cpu = 0.0
        self.mem = 0.0

        if self.have_psutil:
            psutil.cpu_percent(interval=None)

    def poll(self, now):
        if now - self.last_poll < 1.0:
            return
        self.last_poll = now

        if self.have_psutil:
            self.cpu = float(psutil.cpu_percent(interval=None))
            self.mem = float(psutil.virtual_memory().percent)


class DebugHUD:
    def __init__(self, w, font_name="Consolas", font_size=18):
        self.w = w
        self.font = pygame.font.SysFont(font_name, font_size)
        self.color = (20, 20, 20)
        self.stats = SystemStats()

    def text_lines(self, clock, sim: Simulation):
        with sim.shared.lock:
            state = sim.shared.state
            step_count = sim.shared.step_count
            steps_per_sec = sim.shared.steps_per_sec
            err = sim.shared.error
        counts = sim.engine.color_counts(sim.grid)

        lines = []
        lines.append("DARWIN DEBUG")
        lines.append(f"FPS        : {clock.get_fps():6.1f}")
        lines.append(f"Steps/s    : {steps_per_sec:6.1f}")
        lines.append(f"Round      : {step_count}")
        lines.append(f"State      : {state.value}")
        for c in PALETTE:
            lines.append(f"{c.name:<11}: {counts[c]}")

        if self.stats.have_psutil:
            lines.append(f"CPU %      : {self.stats.cpu:6.1f}")
            lines.append(f"Mem %      : {self.stats.mem:6.1f}")

        if err:
            lines.append("ERROR:")
            lines.append(err[:120])
        return lines

    def draw(self, screen, clock, sim: Simulation):
        self.stats.poll(time.time())

        rendered = [self.font.render(s, True, self.color) for s in self.text_lines(clock, sim)]
        line_h = self.font.get_linesize()
        panel = pygame.Rect(0, 0, max(s.get_width() for s in rendered) + 16, line_h * len(rendered) + 12)
        panel.topright = (self.w - 4, 4)

        pygame.draw.rect(screen, COLOR_BG, panel)
        for i, surf in enumerate(rendered):
            screen.blit(surf, (panel.x + 8, panel.y + 6 + i * line_h))


def draw_result_banner(screen, font, rounds):
    text = font.render(f"Total rounds: {rounds}", True, (20, 20, 20))
    w, h = screen.get_size()
    box = text.get_rect(center=(w // 2, h // 2)).inflate(40, 24)
    pygame.draw.rect(screen, COLOR_BG, box)
    pygame.draw.rect(screen, (20, 20, 20), box, width=2)
    screen.blit(text, text.get_rect(center=box.center))

# =============================================================================
# MAIN
# =============================================================================
def main():
    parser = argparse.ArgumentParser(description="Watch four colors mix until one is left")
    parser.add_argument('--rows', type=int, default=ROWS, help="Grid rows")
    parser.add_argument('--cols', type=int, default=COLS, help="Grid columns")
    parser.add_argument('--interval', type=float, default=STEP_INTERVAL,
                        help="Seconds between mixing steps")
    parser.add_argument('--size', type=int, nargs=2, default=(SCREEN_WIDTH, SCREEN_HEIGHT),
                        metavar=('W', 'H'), help="Window size in pixels")
    parser.add_argument('--seed', type=int, default=None, help="Random seed")
    parser.add_argument('--debug', action='store_true', help="Enable debug HUD and console log")
    args = parser.parse_args()

    setup_logging(args.debug)

    try:
        sim = Simulation(args.rows, args.cols, interval=args.interval, seed=args.seed)
    except ConfigError as e:
        parser.error(str(e))

    pygame.init()

    def set_mode_safe(size, flags, want_vsync=True):
        try:
            return pygame.display.set_mode(size, flags, vsync=1 if want_vsync else 0)
        except (TypeError, pygame.error):
            return pygame.display.set_mode(size, flags)

    w, h = args.size
    screen = set_mode_safe((w, h), pygame.DOUBLEBUF, want_vsync=True)
    pygame.display.set_caption("Darwin")
    clock = pygame.time.Clock()

    gh, gw = sim.grid.rows, sim.grid.cols

    # render buffers
    render_surface = pygame.Surface((gw, gh), flags=0, depth=32)
    packed_buf = np.empty((gh, gw), dtype=np.uint32)
    packed_palette = np.zeros(len(Cell), dtype=np.uint32)
    for c, rgb in DEFAULT_COLORS.items():
        packed_palette[c] = render_surface.map_rgb(rgb)
    scaled_surface = pygame.Surface((w, h), flags=0, depth=32)

    banner_font = pygame.font.SysFont("Consolas", 36)
    hud = DebugHUD(w) if args.debug else None

    sim.start()

    reported = False
    running = True
    while running:
        clock.tick(FPS_MAX)

        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                running = False

        state = sim.get_state()
        grid = sim.grid.snapshot()

        np.take(packed_palette, grid, out=packed_buf)
        pygame.surfarray.blit_array(render_surface, packed_buf.T)

        screen.fill(COLOR_BG)
        pygame.transform.scale(render_surface, (w, h), scaled_surface)
        screen.blit(scaled_surface, (0, 0))

        if state is SimState.TERMINAL:
            rounds = sim.get_step_count()
            draw_result_banner(screen, banner_font, rounds)
            if not reported:
                print(f"Total rounds: {rounds}")
                reported = True

        if hud is not None:
            hud.draw(screen, clock, sim)

        pygame.display.flip()

    sim.cancel()
    if not sim.join(timeout=1.0):
        logger.warning("sim thread did not stop within 1s")

    state = sim.get_state()
    if state is SimState.CANCELLED:
        print(f"Cancelled after {sim.get_step_count()} rounds")
    elif state is SimState.FAILED:
        print(f"Failed after {sim.get_step_count()} rounds: {sim.error}")

    pygame.quit()
    sys.exit()

if __name__ == "__main__":
    main()
