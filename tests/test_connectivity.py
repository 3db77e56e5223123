from mapscribe.shared.connectivity import find_tiles, path_exists, reachable_from
from mapscribe.shared.models import TileType


GRID = [
    [0, 0, 0, 0, 0],
    [0, 4, 1, 0, 0],
    [0, 0, 2, 0, 0],
    [0, 0, 1, 5, 0],
    [0, 0, 0, 0, 0],
]


def test_find_tiles_in_row_major_order():
    assert find_tiles(GRID, TileType.START) == [(1, 1)]
    assert find_tiles(GRID, TileType.FLOOR) == [(2, 1), (2, 3)]
    assert find_tiles(GRID, TileType.SECRET_DOOR) == []


def test_reachable_from_follows_doors():
    assert reachable_from(GRID, (1, 1)) == {(1, 1), (2, 1), (2, 2), (2, 3), (3, 3)}


def test_reachable_from_wall_or_outside_is_empty():
    assert reachable_from(GRID, (0, 0)) == set()
    assert reachable_from(GRID, (9, 9)) == set()
    assert reachable_from([], (0, 0)) == set()


def test_path_exists():
    assert path_exists(GRID, (1, 1), (3, 3))

    blocked = [row[:] for row in GRID]
    blocked[2][2] = TileType.WALL
    assert not path_exists(blocked, (1, 1), (3, 3))
