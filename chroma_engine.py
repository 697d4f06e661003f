"""
Chroma Vision — Python Game Engine
Round generation, difficulty scaling, countdown and scoring logic.
Used by the Flask API to serve game state to the frontend.
"""

import logging
import math
import random
import json
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# ── Game Constants ────────────────────────────────────────────
GRID_SIZE = 5
# Cells per row/column; a round has GRID_SIZE * GRID_SIZE cells

INITIAL_TIME = 30.0
# Seconds on the clock at start; also the ceiling for time bonuses

TIME_BONUS = 2.0
# Seconds awarded for every correct selection

TIME_PENALTY = 5.0
# Seconds deducted for every wrong selection

CELEBRATE_EVERY = 10
# Every 10th correct answer fires the celebrate notification

MIN_LIGHTNESS = 5
MAX_LIGHTNESS = 95
# Perturbed lightness is clamped into [5, 95] so the odd cell never turns pure black/white

MAX_DELTA = 15.0
MIN_DELTA = 1.0
DELTA_SLOPE = 2.5
# delta = max(MIN_DELTA, MAX_DELTA - DELTA_SLOPE * log2(level))

_TIME_EPSILON = 1e-9
# Float residue below this counts as zero seconds, so 300 ticks of 0.1s end the game like one tick of 30s

# ── States & Notifications ────────────────────────────────────
IDLE = 'idle'
ACTIVE = 'active'
ENDED = 'ended'

CELEBRATE = 'celebrate'
SHAKE = 'shake'

# ── Rank Tiers ────────────────────────────────────────────────
RANK_TIERS = [
    (10, 'Color Novice', 'Keep observing the colors around you!'),
    (20, 'Art Freshman', 'You already have basic color discrimination.'),
    (35, 'Tone Expert', 'Your eyes are very sensitive to subtle color differences!'),
    (50, 'Visual Master', 'Artistic talent maxed out; color is your language.'),
]
# Ascending (upper bound, title, description); a score below the bound lands in that tier

TOP_RANK = ('Eye of God', 'Are you sure you are not a precision colorimeter?')
# Anything at or above the last bound

# ── Color Tips ────────────────────────────────────────────────
COLOR_TIPS = [
    "Complementary colors such as red and green sit opposite each other on the color wheel and give the strongest contrast.",
    "Analogous colors such as blue, teal and green sit next to each other and create a calm, harmonious mood.",
    "In color psychology blue is linked with trust and calm, while red stands for energy and passion.",
    "The primaries red, yellow and blue cannot be mixed from other colors.",
    "Secondary colors (orange, green, purple) come from mixing two primaries in equal parts.",
    "White stands for purity and peace in many cultures, but is associated with mourning in some Eastern ones.",
    "Warm colors advance: they make a room feel smaller and cozier.",
    "Cool colors recede: they make a room feel larger and fresher.",
    "The Munsell system describes color by hue, value and chroma.",
    "Johannes Itten of the Bauhaus formulated a theory of color contrasts that still shapes modern design.",
    "In fashion black means timeless elegance; in psychology it can suggest mystery or authority.",
    "Yellow is the easiest color for the eye to catch, which is why warning signs use it.",
]
# Shown by the frontend on the start and game-over screens


class RandomSource:
    """
    Default randomness collaborator backed by random.Random.

    Any object exposing uniform_int / uniform_real / coin_flip can be
    injected instead (tests use scripted sequences).
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def uniform_int(self, lo: int, hi: int) -> int:
        """Integer in the half-open range [lo, hi)."""
        return self._rng.randrange(lo, hi)

    def uniform_real(self, lo: float, hi: float) -> float:
        return lo + (hi - lo) * self._rng.random()

    def coin_flip(self) -> bool:
        return self.uniform_real(0.0, 1.0) > 0.5


# ── Color Model ───────────────────────────────────────────────

@dataclass(frozen=True)
class Color:
    """An HSL color; lightness is the only dimension a round perturbs."""

    hue: int            # 0..359 degrees
    saturation: int     # percent
    lightness: float    # percent; integral for base colors, possibly fractional once perturbed


def to_display_string(color: Color) -> str:
    """Format a color as a CSS hsl() string."""
    return f"hsl({color.hue}, {color.saturation}%, {color.lightness:g}%)"


class ColorModel:
    """Produces base colors and their lightness-shifted variants."""

    def __init__(self, rng=None):
        self.rng = rng or RandomSource()

    def generate_base_color(self) -> Color:
        return Color(
            hue=self.rng.uniform_int(0, 360),
            saturation=self.rng.uniform_int(40, 80),
            lightness=self.rng.uniform_int(40, 60),
        )

    def perturb(self, base: Color, delta: float) -> Color:
        """
        Shift the lightness of base by delta, lighter or darker on a coin flip.

        Near the clamp bounds the observed difference can be smaller than delta.
        """
        if self.rng.coin_flip():
            lightness = min(MAX_LIGHTNESS, base.lightness + delta)
        else:
            lightness = max(MIN_LIGHTNESS, base.lightness - delta)
        return Color(hue=base.hue, saturation=base.saturation, lightness=lightness)


# ── Difficulty Curve ──────────────────────────────────────────

def delta_for_level(level: int) -> float:
    """Lightness difference for a level: shrinks fast early, floors at MIN_DELTA."""
    if level < 1:
        raise ValueError(f"level must be >= 1, got {level}")
    return max(MIN_DELTA, MAX_DELTA - DELTA_SLOPE * math.log2(level))


# ── Round Generation ──────────────────────────────────────────

@dataclass(frozen=True)
class Round:
    """One grid challenge: every cell shares the base color except target_index."""

    cells: Tuple[Color, ...]
    target_index: int
    grid_size: int = GRID_SIZE

    @property
    def base_color(self) -> Color:
        # Any non-target cell carries the base color
        return self.cells[1] if self.target_index == 0 else self.cells[0]

    @property
    def target_color(self) -> Color:
        return self.cells[self.target_index]

    def is_target(self, index: int) -> bool:
        return index == self.target_index

    def to_dict(self, reveal_target: bool = False) -> dict:
        data = {
            "grid_size": self.grid_size,
            "cells": [to_display_string(c) for c in self.cells],
            # Row-major display strings for the frontend grid
        }
        if reveal_target:
            data["target_index"] = self.target_index
        return data


class RoundGenerator:
    """Builds rounds from a ColorModel and the difficulty curve."""

    def __init__(self, color_model: Optional[ColorModel] = None, grid_size: int = GRID_SIZE):
        if grid_size < 2:
            raise ValueError(f"grid_size must be at least 2, got {grid_size}")
        self.color_model = color_model or ColorModel()
        self.grid_size = grid_size

    def generate(self, level: int) -> Round:
        base = self.color_model.generate_base_color()
        delta = delta_for_level(level)
        target = self.color_model.perturb(base, delta)

        cell_count = self.grid_size * self.grid_size
        target_index = self.color_model.rng.uniform_int(0, cell_count)
        # Uniform over every cell of the grid

        cells = tuple(target if i == target_index else base for i in range(cell_count))
        return Round(cells=cells, target_index=target_index, grid_size=self.grid_size)


# ── Rank Evaluation ───────────────────────────────────────────

@dataclass(frozen=True)
class Rank:
    title: str
    description: str


def rank_for(score: int) -> Rank:
    """Map a final score to its tier; a score equal to a bound falls into the next tier."""
    if score < 0:
        raise ValueError(f"score must be non-negative, got {score}")
    for bound, title, description in RANK_TIERS:
        if score < bound:
            return Rank(title, description)
    return Rank(*TOP_RANK)


def pick_tip(rng=None) -> str:
    """Pick a random color tip."""
    rng = rng or RandomSource()
    return COLOR_TIPS[rng.uniform_int(0, len(COLOR_TIPS))]


# ── Session State Machine ─────────────────────────────────────

@dataclass(frozen=True)
class Outcome:
    correct: bool
    index: int


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to the render collaborator."""

    state: str
    score: int
    level: int
    time_remaining: float
    current_round: Optional[Round]
    last_outcome: Optional[Outcome]

    def to_dict(self, reveal_target: bool = False) -> dict:
        return {
            "state": self.state,
            "score": self.score,
            "level": self.level,
            "time_remaining": round(self.time_remaining, 1),
            # One decimal, the precision the countdown is displayed at
            "round": self.current_round.to_dict(reveal_target) if self.current_round else None,
            "last_outcome": asdict(self.last_outcome) if self.last_outcome else None,
        }


class GameSession:
    """
    Drives one player's game: Idle -> Active -> Ended.

    - start():       reset and deal the first round (from any state)
    - tick(dt):      run the countdown; reaching zero ends the game
    - select(index): +1 score/level and +2s on the target, -5s otherwise
    - abandon():     back to Idle

    tick/select outside Active are ignored. Every command returns a
    SessionSnapshot. Notifications (celebrate/shake) go to subscribers
    and never become part of the state.

    Not thread-safe; callers serialize events per session.
    """

    def __init__(
        self,
        rng=None,
        *,
        grid_size: int = GRID_SIZE,
        initial_time: float = INITIAL_TIME,
        time_bonus: float = TIME_BONUS,
        time_penalty: float = TIME_PENALTY,
        celebrate_every: int = CELEBRATE_EVERY,
    ):
        self.rng = rng or RandomSource()
        self.generator = RoundGenerator(ColorModel(self.rng), grid_size=grid_size)
        self.grid_size = grid_size
        self.initial_time = float(initial_time)
        self.time_bonus = float(time_bonus)
        self.time_penalty = float(time_penalty)
        self.celebrate_every = celebrate_every

        self.state = IDLE
        self.score = 0
        self.level = 1
        self.time_remaining = self.initial_time
        self.current_round: Optional[Round] = None
        self.last_outcome: Optional[Outcome] = None

        self.selections = 0
        self.mistakes = 0
        self.elapsed = 0.0
        # Per-game counters for the final report

        self._listeners: List[Callable[[str], None]] = []

    @property
    def cell_count(self) -> int:
        return self.grid_size * self.grid_size

    # ── Observers ──

    def subscribe(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving CELEBRATE / SHAKE notifications."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[str], None]) -> None:
        self._listeners.remove(callback)

    def _emit(self, event: str) -> None:
        for callback in list(self._listeners):
            callback(event)

    # ── Commands ──

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            score=self.score,
            level=self.level,
            time_remaining=self.time_remaining,
            current_round=self.current_round,
            last_outcome=self.last_outcome,
        )

    def start(self) -> SessionSnapshot:
        self.score = 0
        self.level = 1
        self.time_remaining = self.initial_time
        self.last_outcome = None
        self.selections = 0
        self.mistakes = 0
        self.elapsed = 0.0
        self.current_round = self.generator.generate(self.level)
        self.state = ACTIVE
        logger.debug("Session started, target at %d", self.current_round.target_index)
        return self.snapshot()

    def tick(self, dt: float) -> SessionSnapshot:
        if dt <= 0:
            raise ValueError(f"tick delta must be positive, got {dt}")
        if self.state != ACTIVE:
            return self.snapshot()

        self.elapsed += min(dt, self.time_remaining)
        # Only clock actually consumed counts toward play time
        self._set_time(self.time_remaining - dt)
        return self.snapshot()

    def select(self, index: int) -> SessionSnapshot:
        if not 0 <= index < self.cell_count:
            raise IndexError(f"cell index {index} outside grid of {self.cell_count}")
        if self.state != ACTIVE:
            return self.snapshot()

        self.selections += 1

        if self.current_round.is_target(index):
            self.score += 1
            self.level += 1
            self._set_time(self.time_remaining + self.time_bonus)
            self.current_round = self.generator.generate(self.level)
            self.last_outcome = Outcome(correct=True, index=index)
            logger.debug("Correct pick %d, score %d", index, self.score)

            if self.score % self.celebrate_every == 0:
                self._emit(CELEBRATE)
        else:
            self.mistakes += 1
            self.last_outcome = Outcome(correct=False, index=index)
            logger.debug("Wrong pick %d, target was %d", index, self.current_round.target_index)
            self._emit(SHAKE)
            self._set_time(self.time_remaining - self.time_penalty)
            # A penalty that empties the clock ends the game on this same event

        return self.snapshot()

    def abandon(self) -> SessionSnapshot:
        """Leave the game and return to Idle; the last score stays readable."""
        self.state = IDLE
        self.current_round = None
        logger.debug("Session abandoned at score %d", self.score)
        return self.snapshot()

    def _set_time(self, value: float) -> None:
        # Clamp into [0, initial_time]; hitting zero ends the game
        self.time_remaining = min(self.initial_time, max(0.0, value))
        if self.time_remaining <= _TIME_EPSILON:
            self.time_remaining = 0.0
            self.state = ENDED
            self.current_round = None
            logger.debug("Session ended with score %d", self.score)

    # ── Reporting ──

    def final_report(self) -> dict:
        """End-of-game summary; only available once the game has ended."""
        if self.state != ENDED:
            raise RuntimeError("final report is only available after the game ends")

        rank = rank_for(self.score)
        return {
            "score": self.score,
            "level": self.level,
            "rank": rank.title,
            "rank_description": rank.description,
            "selections": self.selections,
            "mistakes": self.mistakes,
            "accuracy": round(self.score / max(1, self.selections) * 100, 1),
            # max(1, ...) keeps a game with no selections at 0% instead of dividing by zero
            "elapsed_seconds": round(self.elapsed, 1),
        }


# ── CLI Demo ──────────────────────────────────────────────────
if __name__ == '__main__':
    print("=== Chroma Vision Engine Demo ===\n")

    for level in (1, 2, 4, 8, 16, 32, 64):
        print(f"Level {level:>2}: delta {delta_for_level(level):.2f}")
    print()

    demo = GameSession(RandomSource(seed=7))
    demo.subscribe(lambda event: print(f"  * {event}"))
    snap = demo.start()

    for i in range(14):
        if snap.state != ACTIVE:
            break
        target = snap.current_round.target_index
        pick = target if i % 4 != 3 else (target + 1) % demo.cell_count
        # Every 4th pick misses on purpose
        snap = demo.select(pick)
        print(f"  Pick {i+1}: {'OK' if snap.last_outcome.correct else 'X'} | "
              f"Score:{snap.score} | Level:{snap.level} | Time:{snap.time_remaining:.1f}")
        snap = demo.tick(0.8)

    demo.tick(INITIAL_TIME)
    print(f"\nFinal Report: {json.dumps(demo.final_report(), indent=2)}")
