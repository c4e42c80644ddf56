from __future__ import annotations

import itertools
import random
from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")


class SelectionStrategy(Protocol):
    """Picks one option (an API key or a model id) per provider call."""

    def choose(self, options: Sequence[T], weights: Sequence[float] | None = None) -> T:
        ...


class RoundRobinSelector:
    """Cycles through options in order; weights are ignored."""

    def __init__(self) -> None:
        self._counters: dict[tuple, itertools.count] = {}

    def choose(self, options: Sequence[T], weights: Sequence[float] | None = None) -> T:
        if not options:
            raise ValueError("no options to choose from")
        key = tuple(options)
        counter = self._counters.setdefault(key, itertools.count())
        return options[next(counter) % len(options)]


class WeightedRandomSelector:
    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def choose(self, options: Sequence[T], weights: Sequence[float] | None = None) -> T:
        if not options:
            raise ValueError("no options to choose from")
        if weights is not None and len(weights) == len(options) and sum(weights) > 0:
            return self._rng.choices(list(options), weights=list(weights), k=1)[0]
        return self._rng.choice(list(options))


def build_selector(name: str) -> SelectionStrategy:
    normalized = (name or "").lower().strip()
    if normalized in ("round_robin", "roundrobin", ""):
        return RoundRobinSelector()
    if normalized in ("weighted_random", "random"):
        return WeightedRandomSelector()
    raise ValueError(f"Unsupported SELECTION_STRATEGY: {name}")
