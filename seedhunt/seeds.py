"""
Seed supplies for seedhunt runs.

A run draws its seeds either from an explicit list (seeds given on the command
line, followed by seeds read from a file) or from an endless stream of random
seeds. Every source is a plain iterator that also knows how many seeds it will
yield in total, or None when it never ends.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Iterator

from seedhunt.errors import ConfigError

# Seeds are handed to the simulator as unsigned 32-bit integers.
MAX_SEED = 2**32 - 1

SEED_ORDERS = ("lifo", "fifo")


class SeedSource:
    """Base class for seed supplies."""

    def __iter__(self) -> Iterator[int]:
        return self

    def __next__(self) -> int:
        raise NotImplementedError

    @property
    def total(self) -> int | None:
        """Number of seeds this source yields overall, or None if unbounded."""
        return None


class ListSeedSource(SeedSource):
    """Yield a finite list of explicit seeds.

    By default seeds are consumed from the end of the list, so ``[1, 2, 3]``
    yields 3, 2, 1. Pass ``order="fifo"`` to yield them in list order instead.
    """

    def __init__(self, seeds: list[int], order: str = "lifo") -> None:
        if order not in SEED_ORDERS:
            raise ConfigError(f"Unknown seed order {order!r}, expected one of {SEED_ORDERS}")
        self._total = len(seeds)
        # Both orders pop from the end of the pending list.
        self._pending = list(seeds) if order == "lifo" else list(reversed(seeds))

    def __next__(self) -> int:
        if not self._pending:
            raise StopIteration
        return self._pending.pop()

    @property
    def total(self) -> int:
        return self._total


class RandomSeedSource(SeedSource):
    """Draw seeds uniformly from [0, MAX_SEED], forever."""

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng

    def __next__(self) -> int:
        return self.rng.randint(0, MAX_SEED)


class CappedSeedSource(SeedSource):
    """Yield at most ``limit`` seeds from another source."""

    def __init__(self, source: SeedSource, limit: int) -> None:
        if limit < 0:
            raise ConfigError(f"Trial cap must not be negative, got {limit}")
        self.source = source
        self.limit = limit
        self._yielded = 0

    def __next__(self) -> int:
        if self._yielded >= self.limit:
            raise StopIteration
        seed = next(self.source)
        self._yielded += 1
        return seed

    @property
    def total(self) -> int:
        inner = self.source.total
        return self.limit if inner is None else min(inner, self.limit)


def parse_seed(text: str) -> int:
    """Parse one decimal seed, checking it fits in [0, MAX_SEED]."""
    seed = int(text.strip())
    if seed < 0:
        raise ValueError(f"Seed {seed} is negative")
    if seed > MAX_SEED:
        raise ValueError(f"Seed {seed} is greater than {MAX_SEED}")
    return seed


def parse_seeds_file(path: str | Path) -> list[int]:
    """
    Read seeds from a file, one decimal integer per line.

    Blank lines are ignored. Anything else that is not a valid seed aborts the
    run before a single trial has started.

    Args:
        path: Path to the seed file.

    Returns:
        The seeds in file order.

    Raises:
        ConfigError: If the file cannot be read or a line is not a valid seed.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Could not read seed file {path}: {e}") from e

    seeds: list[int] = []
    for lineno, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            seeds.append(parse_seed(line))
        except ValueError as e:
            raise ConfigError(f"{path}:{lineno}: invalid seed {line.strip()!r}: {e}") from e
    return seeds


def merge_user_defined_seeds(
    seeds: list[int] | None, seed_file: str | Path | None
) -> list[int] | None:
    """
    Combine seeds given on the command line with seeds read from a file.

    File seeds are appended after the user seeds. Returns None when neither
    source is given, which selects random mode.
    """
    file_seeds = parse_seeds_file(seed_file) if seed_file is not None else None

    if seeds is None:
        return file_seeds

    merged = list(seeds)
    if file_seeds is not None:
        merged.extend(file_seeds)
    return merged


def build_seed_source(
    seeds: list[int] | None,
    rng: random.Random,
    max_trials: int | None = None,
    order: str = "lifo",
) -> SeedSource:
    """Pick list or random mode and apply the optional trial cap."""
    source: SeedSource
    if seeds is not None:
        source = ListSeedSource(seeds, order=order)
    else:
        source = RandomSeedSource(rng)

    if max_trials is not None:
        source = CappedSeedSource(source, max_trials)
    return source
