"""Per-tile accumulation of effects emitted by buildings and terrain."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .effects import Effect, EffectType

if TYPE_CHECKING:  # pragma: no cover
    from .buildings import Building
    from .city import City


logger = logging.getLogger(__name__)

Tile = Tuple[int, int]


class GridBoundsError(IndexError):
    """Raised when a tile outside the grid is addressed."""

    def __init__(self, x: int, y: int, width: int, height: int) -> None:
        self.x = x
        self.y = y
        super().__init__(f"Tile ({x}, {y}) outside {width}x{height} grid")


class EffectGrid:
    """Holds the list of active effects for every tile of a city."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Grid dimensions must be positive: {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self._tiles: List[List[List[Effect]]] = [
            [[] for _ in range(self.width)] for _ in range(self.height)
        ]

    # ------------------------------------------------------------------
    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def check_bounds(self, x: int, y: int) -> None:
        if not self.in_bounds(x, y):
            raise GridBoundsError(x, y, self.width, self.height)

    def effects_at(self, x: int, y: int) -> List[Effect]:
        self.check_bounds(x, y)
        return self._tiles[y][x]

    def iter_tiles(self) -> Iterator[Tile]:
        for y in range(self.height):
            for x in range(self.width):
                yield x, y

    # ------------------------------------------------------------------
    def tiles_in_area(
        self,
        x: int,
        y: int,
        width: int,
        height: int,
        radius_x: int,
        radius_y: int,
        rounded: bool = False,
        exclude_footprint: bool = False,
    ) -> List[Tile]:
        """Return the footprint plus its radius, clamped to the grid.

        A rounded area drops the four outermost corner tiles.
        """

        left, right = x - radius_x, x + width - 1 + radius_x
        top, bottom = y - radius_y, y + height - 1 + radius_y
        tiles: List[Tile] = []
        for tile_y in range(max(0, top), min(self.height - 1, bottom) + 1):
            for tile_x in range(max(0, left), min(self.width - 1, right) + 1):
                if rounded and tile_x in (left, right) and tile_y in (top, bottom):
                    continue
                if exclude_footprint and x <= tile_x < x + width and y <= tile_y < y + height:
                    continue
                tiles.append((tile_x, tile_y))
        return tiles

    def spread_effect(
        self,
        effect: Effect,
        x: int,
        y: int,
        width: int = 1,
        height: int = 1,
        radius_x: int = 0,
        radius_y: Optional[int] = None,
        *,
        rounded: bool = False,
        exclude_footprint: bool = False,
    ) -> int:
        """Write a copy of ``effect`` to every tile in the area; returns the tile count."""

        radius_y = radius_x if radius_y is None else radius_y
        tiles = self.tiles_in_area(x, y, width, height, radius_x, radius_y, rounded, exclude_footprint)
        for tile_x, tile_y in tiles:
            self._tiles[tile_y][tile_x].append(effect.copy())
        return len(tiles)

    def add_ambient_effect(self, effect: Effect, x: int, y: int) -> None:
        if effect.building is not None:
            raise ValueError("Ambient effects cannot be tied to a building")
        self.effects_at(x, y).append(effect.copy())

    def stop_effects(
        self, building: "Building", x: int, y: int, width: int, height: int, radius: int
    ) -> int:
        """Remove every effect emitted by ``building`` within ``radius`` of its footprint."""

        removed = 0
        for tile_x, tile_y in self.tiles_in_area(x, y, width, height, radius, radius):
            tile = self._tiles[tile_y][tile_x]
            kept = [effect for effect in tile if effect.building is not building]
            removed += len(tile) - len(kept)
            self._tiles[tile_y][tile_x] = kept
        return removed

    def expire_effects(self) -> int:
        """Count down timed effects by one long tick and drop the expired ones."""

        expired = 0
        for tile_x, tile_y in self.iter_tiles():
            tile = self._tiles[tile_y][tile_x]
            if not tile:
                continue
            kept: List[Effect] = []
            for effect in tile:
                if effect.expiration_ticks is not None and effect.expiration_ticks > 0:
                    effect.expiration_ticks -= 1
                    if effect.expiration_ticks <= 0:
                        expired += 1
                        continue
                kept.append(effect)
            self._tiles[tile_y][tile_x] = kept
        return expired

    # ------------------------------------------------------------------
    def get_effect_sum(
        self,
        city: "City",
        effect_type: EffectType,
        x: int,
        y: int,
        requesting: Optional["Building"] = None,
    ) -> float:
        return sum(
            effect.get_effect(city, requesting, x, y)
            for effect in self.effects_at(x, y)
            if effect.type is effect_type
        )

    def get_highest_effect(
        self,
        city: "City",
        effect_type: EffectType,
        x: int,
        y: int,
        width: int = 1,
        height: int = 1,
        requesting: Optional["Building"] = None,
    ) -> float:
        """Return the highest per-tile sum of ``effect_type`` over a footprint."""

        best = 0.0
        for tile_y in range(y, y + height):
            for tile_x in range(x, x + width):
                best = max(best, self.get_effect_sum(city, effect_type, tile_x, tile_y, requesting))
        return best

    def get_average_effect(
        self, city: "City", effect_type: EffectType, tiles: Optional[Iterable[Tile]] = None
    ) -> float:
        """Return the mean of ``effect_type`` over ``tiles`` (default: the whole grid)."""

        total = 0.0
        count = 0
        for tile_x, tile_y in tiles if tiles is not None else self.iter_tiles():
            total += self.get_effect_sum(city, effect_type, tile_x, tile_y)
            count += 1
        return total / count if count else 0.0

    # ------------------------------------------------------------------
    def export_untied(self) -> List[Dict[str, object]]:
        """Serialise effects that have no emitting building."""

        exported: List[Dict[str, object]] = []
        for tile_x, tile_y in self.iter_tiles():
            for effect in self._tiles[tile_y][tile_x]:
                if effect.building is not None:
                    continue
                entry: Dict[str, object] = {
                    "x": tile_x,
                    "y": tile_y,
                    "type": effect.type.value,
                    "multiplier": effect.multiplier,
                }
                if effect.expiration_ticks is not None:
                    entry["expiration_ticks"] = effect.expiration_ticks
                exported.append(entry)
        return exported

    def load_untied(self, entries: Iterable[Mapping[str, object]]) -> int:
        loaded = 0
        for entry in entries:
            try:
                effect_type = EffectType(str(entry["type"]))
                x, y = int(entry["x"]), int(entry["y"])  # type: ignore[arg-type]
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping malformed ambient effect entry: %s", entry)
                continue
            if not self.in_bounds(x, y):
                logger.warning("Skipping ambient effect outside the grid at (%s, %s)", x, y)
                continue
            expiration = entry.get("expiration_ticks")
            self._tiles[y][x].append(
                Effect(
                    effect_type,
                    float(entry.get("multiplier", 1.0)),  # type: ignore[arg-type]
                    expiration_ticks=None if expiration is None else int(expiration),  # type: ignore[arg-type]
                )
            )
            loaded += 1
        return loaded
