from typing import Dict, List, Optional, Tuple, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum, IntEnum


class TileType(IntEnum):
    WALL = 0
    FLOOR = 1
    DOOR = 2
    SECRET_DOOR = 3
    START = 4
    END = 5


# Tiles a character can stand on when checking START -> END reachability.
WALKABLE_TILES = frozenset({
    TileType.FLOOR,
    TileType.DOOR,
    TileType.SECRET_DOOR,
    TileType.START,
    TileType.END,
})

MAX_DIMENSION = 128

Grid = Tuple[Tuple[TileType, ...], ...]
Violation = str


class GenerationState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    PARSING = "parsing"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    SUCCESS = "success"
    FAILED = "failed"


class Archetype(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    common_features: Tuple[str, ...]
    atmosphere: str
    requires_path: bool = False
    enclosed: bool = True


class ExamplePrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    prompt: str
    archetype: str


class Vocabulary(BaseModel):
    """Everything the model is taught about the map language."""
    model_config = ConfigDict(frozen=True)

    tile_types: Tuple[TileType, ...]
    tile_descriptions: Dict[str, str]
    positions: Tuple[str, ...]
    sizes: Tuple[str, ...]
    shapes: Tuple[str, ...]
    feature_primitives: Tuple[str, ...]
    archetypes: Tuple[Archetype, ...]


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    width: int = Field(ge=1, le=MAX_DIMENSION)
    height: int = Field(ge=1, le=MAX_DIMENSION)
    archetype: Optional[str] = None

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be blank")
        return value.strip()


class GenerationMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    interpretation: str
    archetype: Optional[str] = None
    features: Tuple[str, ...] = ()
    room_count: Optional[int] = None
    corridor_count: Optional[int] = None


class ParsedPayload(BaseModel):
    """Decoded model output. The grid is kept raw until it has been validated."""
    model_config = ConfigDict(frozen=True)

    grid: Any
    metadata: GenerationMetadata


class GenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    grid: Grid
    metadata: GenerationMetadata
    attempts: int = 0
    fallback: bool = False

    @property
    def width(self) -> int:
        return len(self.grid[0]) if self.grid else 0

    @property
    def height(self) -> int:
        return len(self.grid)

    def to_lists(self) -> List[List[int]]:
        return [[int(cell) for cell in row] for row in self.grid]


class AttemptState(BaseModel):
    attempt: int
    user_prompt: str
    raw_response: Optional[str] = None
    violations: List[Violation] = Field(default_factory=list)
    error: Optional[str] = None
    parse_failure: bool = False


class GeneratorSettings(BaseModel):
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.7
    max_tokens: int = Field(8192, ge=1)
    timeout: float = Field(30.0, gt=0)
    max_attempts: int = Field(3, ge=1)
    ollama_model: str = "qwen3-coder:30b"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_temperature: float = 0.2
    default_width: int = Field(32, ge=1, le=MAX_DIMENSION)
    default_height: int = Field(32, ge=1, le=MAX_DIMENSION)
