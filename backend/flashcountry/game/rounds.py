"""Deterministic round generation.

Both peers derive the full match content from the room ``seed`` alone; only
the seed and ``currentRound`` travel through the shared document.
"""
from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, TypeVar

from .errors import CatalogError
from .models import DIFFICULTIES
from .scoring import normalize_answer


T = TypeVar("T")

ROUNDS_PER_MATCH = 5
DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[1] / "data" / "countries.json"

_MASK32 = 0xFFFFFFFF


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


class SeededRandom:
    """Mulberry32. Not cryptographic; identical sequences for identical seeds."""

    def __init__(self, seed: int) -> None:
        self.state = int(seed) & _MASK32

    def next(self) -> float:
        self.state = (self.state + 0x6D2B79F5) & _MASK32
        t = self.state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296


def shuffle_with_seed(items: Sequence[T], seed: int) -> list[T]:
    rng = SeededRandom(seed)
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = int(rng.next() * (i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def random_seed() -> int:
    return random.randrange(1_000_000_000)


def current_image_index(round_start_ms: int, now_ms: int, image_count: int, interval_ms: int = 80) -> int:
    """Index of the image on screen; the sequence loops once exhausted."""
    if image_count <= 0:
        return 0
    elapsed = max(0, now_ms - round_start_ms)
    return (elapsed // interval_ms) % image_count


@dataclass(frozen=True)
class Country:
    name: str
    difficulty: str
    folder: str
    total_images: int
    names: tuple[str, ...] = ()

    def accepts(self, text: str) -> bool:
        answer = normalize_answer(text)
        return bool(answer) and answer in {normalize_answer(n) for n in self.names}


class ImageHost:
    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def asset_urls(self, country: Country, image_ids: Sequence[int]) -> list[str]:
        return [f"{self.base_url}/{country.folder}/{country.folder}_{i:03d}.webp" for i in image_ids]


class CountryCatalog:
    def __init__(self, countries: Sequence[Country], image_host: ImageHost) -> None:
        # insertion order is part of the shuffle input
        self._countries: dict[str, Country] = {c.name: c for c in countries}
        self.image_host = image_host

    @classmethod
    def from_dict(cls, raw: dict, image_host: ImageHost) -> "CountryCatalog":
        countries = []
        for name, data in raw.items():
            try:
                countries.append(Country(
                    name=name,
                    difficulty=data["difficulty"],
                    folder=data["folder"],
                    total_images=int(data["totalImages"]),
                    names=tuple(data.get("names", [])),
                ))
            except (KeyError, TypeError, ValueError) as exc:
                raise CatalogError(f"invalid catalog entry {name!r}: {exc}") from exc
        return cls(countries, image_host)

    @classmethod
    def load(cls, path: str | Path | None, image_host: ImageHost) -> "CountryCatalog":
        with open(path or DEFAULT_CATALOG_PATH, encoding="utf-8") as fh:
            return cls.from_dict(json.load(fh), image_host)

    def get(self, name: str) -> Country:
        try:
            return self._countries[name]
        except KeyError:
            raise CatalogError(f"unknown country {name!r}") from None

    def names_for(self, difficulty: str) -> list[str]:
        return [c.name for c in self._countries.values() if c.difficulty == difficulty]

    def __len__(self) -> int:
        return len(self._countries)


@dataclass(frozen=True)
class RoundConfig:
    country_name: str
    image_ids: tuple[int, ...]
    images: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "countryName": self.country_name,
            "imageIds": list(self.image_ids),
            "images": list(self.images),
        }


@dataclass(frozen=True)
class GameConfig:
    seed: int
    difficulty: str
    rounds: tuple[RoundConfig, ...] = field(default_factory=tuple)

    @property
    def countries(self) -> list[str]:
        return [r.country_name for r in self.rounds]

    def to_dict(self) -> dict:
        return {
            "seed": self.seed,
            "difficulty": self.difficulty,
            "countries": self.countries,
            "rounds": [r.to_dict() for r in self.rounds],
        }


def generate_rounds(
    seed: int,
    difficulty: str,
    catalog: CountryCatalog,
    images_per_round: int = 100,
) -> GameConfig:
    if difficulty not in DIFFICULTIES:
        raise CatalogError(f"unknown difficulty {difficulty!r}")

    available = catalog.names_for(difficulty)
    if len(available) < ROUNDS_PER_MATCH:
        raise CatalogError(
            f"{len(available)} countries at difficulty {difficulty!r}, need {ROUNDS_PER_MATCH}"
        )

    selected = shuffle_with_seed(available, seed)[:ROUNDS_PER_MATCH]

    rounds = []
    for index, name in enumerate(selected):
        country = catalog.get(name)
        ids = shuffle_with_seed(range(1, country.total_images + 1), seed + index)
        ids = ids[: min(images_per_round, country.total_images)]
        rounds.append(RoundConfig(
            country_name=name,
            image_ids=tuple(ids),
            images=tuple(catalog.image_host.asset_urls(country, ids)),
        ))

    return GameConfig(seed=seed, difficulty=difficulty, rounds=tuple(rounds))
