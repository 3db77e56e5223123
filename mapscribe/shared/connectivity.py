"""
Shared reachability utilities for tile grids.
Used by the semantic checks so that the validator and any caller agree on what "connected" means.
"""
from collections import deque
from typing import List, Sequence, Set, Tuple

from .models import TileType, WALKABLE_TILES

Position = Tuple[int, int]


def find_tiles(grid: Sequence[Sequence[int]], tile: TileType) -> List[Position]:
    """
    Return the (x, y) coordinates of every cell holding the given tile, in row-major order.
    """
    positions = []
    for y, row in enumerate(grid):
        for x, cell in enumerate(row):
            if cell == tile:
                positions.append((x, y))
    return positions


def reachable_from(grid: Sequence[Sequence[int]], start: Position) -> Set[Position]:
    """
    Flood fill from start across walkable tiles (4-neighbourhood).

    Args:
        grid: Rectangular grid of tile values
        start: (x, y) coordinate to begin from

    Returns:
        Set of reachable coordinates, including start if it is walkable
    """
    height = len(grid)
    width = len(grid[0]) if height else 0
    x0, y0 = start
    if not (0 <= x0 < width and 0 <= y0 < height) or grid[y0][x0] not in WALKABLE_TILES:
        return set()

    visited: Set[Position] = {start}
    queue = deque([start])

    while queue:
        x, y = queue.popleft()
        for dx, dy in [(0, 1), (0, -1), (1, 0), (-1, 0)]:
            nx, ny = x + dx, y + dy
            if (0 <= nx < width and 0 <= ny < height and
                    (nx, ny) not in visited and grid[ny][nx] in WALKABLE_TILES):
                visited.add((nx, ny))
                queue.append((nx, ny))

    return visited


def path_exists(grid: Sequence[Sequence[int]], start: Position, end: Position) -> bool:
    """Check whether end can be reached from start without crossing walls."""
    return end in reachable_from(grid, start)
