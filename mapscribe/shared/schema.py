"""
Map generation schema: the vocabulary the model is taught and the pure rules a grid is checked against.

Structural rules:
- Row count, then per-row column count, then per-cell value range
- Stops early only when there is nothing to check cell by cell (not a list, zero rows)

Semantic rules (advisory, driven by the archetype):
- requires_path: exactly one START, exactly one END, END reachable from START
- enclosed: every edge cell is WALL or DOOR
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    Archetype,
    ExamplePrompt,
    Grid,
    TileType,
    Violation,
    Vocabulary,
)
from .connectivity import find_tiles, path_exists

MAX_TILE_VALUE = max(TileType)
MAX_REPORTED_CELLS = 20

TILE_DESCRIPTIONS: Dict[TileType, str] = {
    TileType.WALL: "solid, impassable",
    TileType.FLOOR: "walkable room or corridor space",
    TileType.DOOR: "visible connection between rooms",
    TileType.SECRET_DOOR: "hidden passage, use sparingly",
    TileType.START: "where the party enters the map",
    TileType.END: "the goal or exit of the map",
}

POSITIONS = (
    "north", "south", "east", "west",
    "northeast", "northwest", "southeast", "southwest",
    "center",
)

SIZES = ("tiny", "small", "medium", "large", "huge")

SHAPES = ("square", "rectangular", "circular", "irregular", "L-shaped", "T-shaped")

FEATURE_PRIMITIVES = ("room", "corridor", "pillar", "door", "secret door", "special area")

ARCHETYPES: Tuple[Archetype, ...] = (
    Archetype(
        name="dungeon",
        description="Underground complex with rooms, corridors, and hazards",
        common_features=("cells", "torture chamber", "guard room", "storage"),
        atmosphere="dark, damp, oppressive",
        requires_path=True,
    ),
    Archetype(
        name="castle",
        description="Fortified structure with defensive features",
        common_features=("throne room", "great hall", "armory", "barracks"),
        atmosphere="imposing, regal, defensive",
    ),
    Archetype(
        name="cave",
        description="Natural cavern system with organic shapes",
        common_features=("stalactites", "underground pool", "narrow passages"),
        atmosphere="natural, echoing, mysterious",
        enclosed=False,
    ),
    Archetype(
        name="temple",
        description="Sacred place of worship",
        common_features=("altar", "sanctuary", "meditation chambers", "crypt"),
        atmosphere="sacred, quiet, reverent",
    ),
    Archetype(
        name="tavern",
        description="Public house for food and drink",
        common_features=("common room", "bar", "kitchen", "private rooms"),
        atmosphere="warm, noisy, welcoming",
    ),
    Archetype(
        name="prison",
        description="Facility for holding captives",
        common_features=("cells", "interrogation room", "warden office", "yard"),
        atmosphere="oppressive, confined, desperate",
    ),
    Archetype(
        name="maze",
        description="Labyrinthine passages designed to confuse",
        common_features=("dead ends", "false paths", "hidden doors"),
        atmosphere="confusing, disorienting, claustrophobic",
        requires_path=True,
    ),
    Archetype(
        name="mansion",
        description="Large private residence",
        common_features=("foyer", "ballroom", "library", "bedrooms"),
        atmosphere="opulent, grand, secretive",
    ),
    Archetype(
        name="library",
        description="Repository of knowledge",
        common_features=("reading rooms", "stacks", "archives", "study"),
        atmosphere="quiet, dusty, scholarly",
    ),
    Archetype(
        name="arena",
        description="Combat or performance venue",
        common_features=("fighting pit", "spectator seating", "champion quarters"),
        atmosphere="violent, exciting, competitive",
    ),
)

EXAMPLE_PROMPTS: Tuple[ExamplePrompt, ...] = (
    ExamplePrompt(
        name="Classic Dungeon",
        description="A traditional dungeon layout",
        prompt="A classic dungeon with multiple interconnected rooms, winding corridors, and a few "
               "secret passages. Include a large central chamber.",
        archetype="dungeon",
    ),
    ExamplePrompt(
        name="Throne Room",
        description="A grand royal chamber",
        prompt="A grand throne room with a large central hall, flanked by guard chambers. Include an "
               "antechamber at the entrance and a private passage behind the throne.",
        archetype="castle",
    ),
    ExamplePrompt(
        name="Cavern System",
        description="Natural cave network",
        prompt="A natural cave system with irregular chambers connected by narrow passages. Include an "
               "underground pool area and multiple dead ends.",
        archetype="cave",
    ),
    ExamplePrompt(
        name="Temple Complex",
        description="A sacred religious site",
        prompt="An ancient temple with a central sanctuary, meditation chambers around the perimeter, and "
               "a hidden crypt accessible via secret door.",
        archetype="temple",
    ),
    ExamplePrompt(
        name="Prison Block",
        description="A holding facility",
        prompt="A prison with rows of small cells along corridors, a guard station at the entrance, an "
               "interrogation room, and a warden's office.",
        archetype="prison",
    ),
    ExamplePrompt(
        name="Tavern",
        description="A welcoming inn",
        prompt="A cozy tavern with a large common room, a bar area, kitchen in the back, and several "
               "private rooms.",
        archetype="tavern",
    ),
    ExamplePrompt(
        name="Library",
        description="A repository of knowledge",
        prompt="A grand library with a central reading room surrounded by book stacks, a restricted "
               "archives section, and a scholar's private study.",
        archetype="library",
    ),
    ExamplePrompt(
        name="Arena",
        description="A combat arena",
        prompt="A gladiatorial arena with a large central fighting pit, spectator areas around the edges, "
               "and champion quarters with an armory.",
        archetype="arena",
    ),
)


def tile_name(value: int) -> str:
    """Name of a tile value for display, UNKNOWN for anything outside the vocabulary."""
    try:
        return TileType(value).name
    except ValueError:
        return "UNKNOWN"


def _is_tile_value(value: Any) -> bool:
    return (isinstance(value, int) and not isinstance(value, bool)
            and 0 <= value <= MAX_TILE_VALUE)


def _is_row_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


class SchemaRegistry:
    """Single source of truth for the map vocabulary and validation rules."""

    def __init__(self):
        self._archetypes = {a.name: a for a in ARCHETYPES}
        self._vocabulary = Vocabulary(
            tile_types=tuple(TileType),
            tile_descriptions={t.name: TILE_DESCRIPTIONS[t] for t in TileType},
            positions=POSITIONS,
            sizes=SIZES,
            shapes=SHAPES,
            feature_primitives=FEATURE_PRIMITIVES,
            archetypes=ARCHETYPES,
        )

    def vocabulary(self) -> Vocabulary:
        return self._vocabulary

    def archetype(self, name: Optional[str]) -> Optional[Archetype]:
        if not name or not isinstance(name, str):
            return None
        return self._archetypes.get(name.strip().lower())

    def archetype_names(self) -> List[str]:
        return list(self._archetypes)

    def examples(self) -> Tuple[ExamplePrompt, ...]:
        return EXAMPLE_PROMPTS

    def validate_structure(self, grid: Any, width: int, height: int) -> List[Violation]:
        """Check dimensions and tile values. An empty list means the grid is structurally valid."""
        if not _is_row_sequence(grid):
            return ["grid must be a list of rows"]
        if len(grid) == 0:
            return [f"grid has 0 rows, expected {height}"]

        violations: List[Violation] = []
        if len(grid) != height:
            violations.append(f"grid has {len(grid)} rows, expected {height}")

        for y, row in enumerate(grid):
            if not _is_row_sequence(row):
                violations.append(f"row {y} is not a list of integers")
            elif len(row) != width:
                violations.append(f"row {y} has {len(row)} columns, expected {width}")

        bad_cells = []
        for y, row in enumerate(grid):
            if not _is_row_sequence(row):
                continue
            for x, cell in enumerate(row):
                if not _is_tile_value(cell):
                    bad_cells.append(
                        f"cell ({x}, {y}) has invalid value {cell!r}, "
                        f"expected an integer 0-{int(MAX_TILE_VALUE)}"
                    )
        violations.extend(bad_cells[:MAX_REPORTED_CELLS])
        if len(bad_cells) > MAX_REPORTED_CELLS:
            violations.append(f"... and {len(bad_cells) - MAX_REPORTED_CELLS} more cells with invalid values")

        return violations

    def validate_semantics(self, grid: Sequence[Sequence[int]], archetype: Optional[str] = None) -> List[Violation]:
        """Archetype-specific expectations for a structurally valid grid."""
        entry = self.archetype(archetype)
        if entry is None or not grid:
            return []

        violations: List[Violation] = []
        if entry.requires_path:
            violations.extend(self._check_path(grid, entry.name))
        if entry.enclosed:
            violations.extend(self._check_enclosure(grid, entry.name))
        return violations

    def fallback_grid(self, width: int, height: int) -> Grid:
        """WALL border with a FLOOR interior."""
        return tuple(
            tuple(
                TileType.WALL if x in (0, width - 1) or y in (0, height - 1) else TileType.FLOOR
                for x in range(width)
            )
            for y in range(height)
        )

    def _check_path(self, grid: Sequence[Sequence[int]], name: str) -> List[Violation]:
        violations = []
        starts = find_tiles(grid, TileType.START)
        ends = find_tiles(grid, TileType.END)
        if len(starts) != 1:
            violations.append(
                f"grid has {len(starts)} START tiles, expected exactly 1 for a {name}"
            )
        if len(ends) != 1:
            violations.append(
                f"grid has {len(ends)} END tiles, expected exactly 1 for a {name}"
            )
        if len(starts) == 1 and len(ends) == 1 and not path_exists(grid, starts[0], ends[0]):
            violations.append(
                f"END at {ends[0]} is not reachable from START at {starts[0]}"
            )
        return violations

    def _check_enclosure(self, grid: Sequence[Sequence[int]], name: str) -> List[Violation]:
        height = len(grid)
        width = len(grid[0])
        open_cells = []
        for y in range(height):
            for x in range(width):
                on_edge = x in (0, width - 1) or y in (0, height - 1)
                if on_edge and grid[y][x] not in (TileType.WALL, TileType.DOOR):
                    open_cells.append(
                        f"edge cell ({x}, {y}) is {tile_name(grid[y][x])}, expected WALL or DOOR "
                        f"to enclose the {name}"
                    )
        if len(open_cells) > MAX_REPORTED_CELLS:
            extra = len(open_cells) - MAX_REPORTED_CELLS
            open_cells = open_cells[:MAX_REPORTED_CELLS]
            open_cells.append(f"... and {extra} more open edge cells")
        return open_cells
