import logging
from typing import List, Optional

from ..shared.models import ParsedPayload, Violation
from ..shared.schema import SchemaRegistry


class GridValidator:
    """
    Checks a parsed payload against the schema rules in one pass.

    Order of checks:
    - Row count
    - Column count of every row
    - Value range of every cell
    - Archetype semantics (only once the grid is structurally valid)
    - The archetype name the model reported

    Every violation found is returned together so one repair prompt can address all of them.
    """
    def __init__(self, registry: SchemaRegistry = None):
        self.registry = registry or SchemaRegistry()
        self.logger = logging.getLogger(__name__)

    def validate(self, payload: ParsedPayload, width: int, height: int,
                 archetype: Optional[str] = None) -> List[Violation]:
        violations = self.registry.validate_structure(payload.grid, width, height)

        if not violations:
            effective = archetype or payload.metadata.archetype
            violations.extend(self.registry.validate_semantics(payload.grid, effective))
        else:
            self.logger.debug("Skipping semantic checks due to structural violations")

        reported = payload.metadata.archetype
        if reported and self.registry.archetype(reported) is None:
            known = ", ".join(self.registry.archetype_names())
            violations.append(
                f"metadata.archetype '{reported}' is not a known archetype (use one of: {known}, or null)"
            )

        if violations:
            self.logger.info(f"Grid validation found {len(violations)} violation(s)")
        return violations
