"""
Table definitions and dependency ordering.

A Table pairs a declared table id with the API endpoint it is read from and
the field mapping that turns raw upstream entities into rows.
"""

from collections import defaultdict, deque
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import PostProcessShapeError
from ..models import TableSpec


class Table:
    """
    Data retrieval and shaping rules for one declared table.

    Subclass and override endpoint() when the API path depends on the data
    of the tables this one depends on.
    """

    def __init__(
        self,
        table_id: str,
        path: str,
        field_map: Mapping[str, str],
        incremental: bool = False,
        entities_key: str = "entities",
    ):
        """
        Args:
            table_id: Id matching the table descriptor
            path: API endpoint path relative to the upstream base URL
            field_map: Row column key -> raw entity key
            incremental: Whether the table pages by a numeric marker
            entities_key: Key of the entity list in the raw payload
        """
        self.table_id = table_id
        self.path = path
        self.field_map = dict(field_map)
        self.incremental = incremental
        self.entities_key = entities_key

    def endpoint(self, dependency_data: Optional[List[Any]] = None) -> str:
        return self.path

    def entities_of(self, raw_data: Any) -> List[Dict[str, Any]]:
        """
        Extract the entity list from a raw payload.

        Raises:
            PostProcessShapeError: If the payload has no entity list
        """
        if not isinstance(raw_data, Mapping):
            raise PostProcessShapeError(
                f"Table '{self.table_id}' expected an object, got {type(raw_data).__name__}"
            )

        entities = raw_data.get(self.entities_key)
        if not isinstance(entities, list):
            raise PostProcessShapeError(
                f"Table '{self.table_id}' expected a list under '{self.entities_key}'"
            )

        for entity in entities:
            if not isinstance(entity, Mapping):
                raise PostProcessShapeError(
                    f"Table '{self.table_id}' entities must be objects, got {type(entity).__name__}"
                )

        return entities

    def merge_pages(self, pages: Sequence[Any]) -> Any:
        """Combine raw pages into one payload with all entities in page order."""
        if len(pages) == 1:
            return pages[0]

        merged = dict(pages[0])
        merged[self.entities_key] = [
            entity for page in pages for entity in self.entities_of(page)
        ]
        return merged

    def post_process(self, raw_data: Any) -> List[Dict[str, Any]]:
        """
        Shape raw entities into rows of {column key: value}.

        raw_data is left untouched; missing entity keys become None.
        """
        return [
            {column: entity.get(source) for column, source in self.field_map.items()}
            for entity in self.entities_of(raw_data)
        ]


def resolve_table_order(specs: Sequence[TableSpec]) -> List[List[TableSpec]]:
    """
    Order tables into stages using Kahn's algorithm.

    Every dependency of a stage-N table is in a stage < N. Within a stage,
    declaration order is kept.

    Raises:
        ValueError: On duplicate ids, unknown dependencies or cycles
    """
    if not specs:
        return []

    spec_map: Dict[str, TableSpec] = {}
    position = {spec.id: index for index, spec in enumerate(specs)}
    for spec in specs:
        if spec.id in spec_map:
            raise ValueError(f"Duplicate table id: {spec.id}")
        spec_map[spec.id] = spec

    graph: Dict[str, List[str]] = defaultdict(list)
    in_degree: Dict[str, int] = {}

    for spec in specs:
        in_degree[spec.id] = len(set(spec.depends_on))
        for dep in set(spec.depends_on):
            if dep not in spec_map:
                raise ValueError(f"Table '{spec.id}' depends on unknown table '{dep}'")
            graph[dep].append(spec.id)

    queue = deque(spec.id for spec in specs if in_degree[spec.id] == 0)
    stages: List[List[TableSpec]] = []

    while queue:
        current_stage: List[TableSpec] = []
        for _ in range(len(queue)):
            table_id = queue.popleft()
            current_stage.append(spec_map[table_id])
            for dependent in graph[table_id]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)
        current_stage.sort(key=lambda spec: position[spec.id])
        stages.append(current_stage)

    remaining = sorted(k for k, v in in_degree.items() if v > 0)
    if remaining:
        raise ValueError(f"Circular dependency detected among: {remaining}")

    return stages
