"""
Prompt text for map generation.

Everything here is deterministic string assembly from the schema vocabulary and the
request; no I/O happens in this module.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..shared.models import GenerationRequest, TileType, Violation
from ..shared.schema import SchemaRegistry

MAX_PRIOR_RESPONSE_CHARS = 12000


class Prompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    system: str
    user: str


class PromptBuilder:
    def __init__(self, registry: SchemaRegistry = None):
        self.registry = registry or SchemaRegistry()

    def build_initial(self, request: GenerationRequest) -> Prompt:
        return Prompt(
            system=self._build_system_prompt(request.width, request.height),
            user=self._build_user_prompt(request),
        )

    def build_repair(self, request: GenerationRequest, prior_response: Optional[str],
                     violations: List[Violation], include_prior: bool = True,
                     parse_failure: bool = False) -> str:
        """Corrective message for the next attempt. Self-contained: it restates the whole contract."""
        w, h = request.width, request.height
        problems = "\n".join(f"- {v}" for v in violations) or "- the response was not usable"

        lines = [
            "Your previous map could not be accepted. Fix every problem listed below and return a "
            "complete corrected map.",
            "",
            f'Original request: "{request.description}"',
            "",
            "Problems found in the previous attempt:",
            problems,
            "",
            "Constraints (restate precisely):",
            f"- The grid must have exactly {h} rows.",
            f"- Every row must have exactly {w} integers.",
            f"- Every value must be an integer from 0 to {int(max(TileType))} (see the tile types).",
        ]
        archetype = self.registry.archetype(request.archetype)
        if archetype is not None and archetype.requires_path:
            lines.append(f"- Place exactly one START ({int(TileType.START)}) and exactly one END "
                         f"({int(TileType.END)}) tile, connected by walkable tiles.")
        if archetype is None or archetype.enclosed:
            lines.append("- Every edge cell must be WALL (0) or DOOR (2).")
        lines.append("- Return the COMPLETE grid with every row, not a diff or only the changed rows.")

        if parse_failure:
            lines += [
                "",
                "Your previous response was not a usable JSON object. Respond with exactly one JSON object "
                'with the keys "grid" and "metadata" as described in the output format. Do not add prose '
                "before or after it and do not wrap it in markdown code fences.",
            ]
        else:
            lines += ["", "Respond with ONE JSON object in the required output format. No prose, no markdown."]

        if include_prior and prior_response:
            excerpt = prior_response[:MAX_PRIOR_RESPONSE_CHARS]
            if len(prior_response) > MAX_PRIOR_RESPONSE_CHARS:
                excerpt += "\n... (truncated)"
            lines += ["", "Previous response:", "```", excerpt, "```"]

        return "\n".join(lines)

    def _build_system_prompt(self, width: int, height: int) -> str:
        vocab = self.registry.vocabulary()

        tiles = "\n".join(
            f"- {int(t)} = {t.name} ({vocab.tile_descriptions[t.name]})" for t in vocab.tile_types
        )
        archetypes = "\n".join(
            f"- {a.name}: {a.description}. Features: {', '.join(a.common_features)}. "
            f"Atmosphere: {a.atmosphere}."
            + (" Requires exactly one START and one END." if a.requires_path else "")
            for a in vocab.archetypes
        )
        archetype_names = ", ".join(a.name for a in vocab.archetypes)

        return f"""You are a dungeon map designer for a fantasy tabletop RPG. Your task is to turn a natural language description into a {width}x{height} tile grid.

## Tile Types
Use these numeric values for tiles:
{tiles}

## Spatial Vocabulary
- Positions: {', '.join(vocab.positions)}
- Sizes: {', '.join(vocab.sizes)}
- Shapes: {', '.join(vocab.shapes)}
- Feature primitives: {', '.join(vocab.feature_primitives)}

## Spatial Rules
1. The grid is {width} columns x {height} rows
2. Position (0,0) is top-left, ({width - 1},{height - 1}) is bottom-right; "north" is row 0
3. Surround the map with WALL tiles on every edge; a DOOR on the edge marks an entrance
4. Connect rooms with corridors (FLOOR) or doors
5. Leave at least 1 tile of wall between rooms
6. Build pillars from single WALL tiles inside rooms
7. Add secret doors sparingly for hidden areas
8. When a START or END tile is requested, place it on a walkable tile reachable from the other

## Location Archetypes
{archetypes}

## Output Format
Respond with ONE JSON object matching this schema and nothing else:
{{
  "grid": [[row 0 values], [row 1 values], ...],
  "metadata": {{
    "interpretation": "Brief description of how you interpreted the request",
    "archetype": "one of: {archetype_names}; or null",
    "features": ["short", "list", "of", "placed", "features"],
    "roomCount": number,
    "corridorCount": number
  }}
}}

The grid must be exactly {height} rows, each with exactly {width} integers from 0 to {int(max(TileType))}."""

    def _build_user_prompt(self, request: GenerationRequest) -> str:
        message = (f'Generate a {request.width}x{request.height} map for: "{request.description}"\n\n'
                   f"The grid must have exactly {request.height} rows of exactly {request.width} integers.")

        archetype = self.registry.archetype(request.archetype)
        if archetype is not None:
            message += (f"\n\nThis should be a {archetype.name} ({archetype.description}). "
                        f"Consider including: {', '.join(archetype.common_features)}.")
            if archetype.requires_path:
                message += (f" Place exactly one START ({int(TileType.START)}) tile and exactly one "
                            f"END ({int(TileType.END)}) tile, connected by walkable tiles.")

        return message + "\n\nReturn only valid JSON matching the specified format."
