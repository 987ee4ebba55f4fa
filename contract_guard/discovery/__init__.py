"""Real test data discovery.

Finds identifiers that exist on the target API:
- Wrapper-aware extraction of resources from list responses
- A per-category cache of sample identifiers for path substitution
- Parent/child API expansion for hierarchical runs
"""

from .data_discovery import (
    PARAMETER_MAPPING,
    DataDiscovery,
    TestDataCache,
    get_parameter_value,
    substitute_path_parameters,
)
from .extraction import ExtractionRule, ResourceRecord, extract_records, unwrap_items
from .hierarchy import (
    HIERARCHICAL_API_DEFINITIONS,
    ChildApiDefinition,
    HierarchicalExpander,
    HierarchicalTestData,
    ParentApiDefinition,
    find_parent_definition,
    find_parent_for_child_path,
)

__all__ = [
    "HIERARCHICAL_API_DEFINITIONS",
    "PARAMETER_MAPPING",
    "ChildApiDefinition",
    "DataDiscovery",
    "ExtractionRule",
    "HierarchicalExpander",
    "HierarchicalTestData",
    "ParentApiDefinition",
    "ResourceRecord",
    "TestDataCache",
    "extract_records",
    "find_parent_definition",
    "find_parent_for_child_path",
    "get_parameter_value",
    "substitute_path_parameters",
    "unwrap_items",
]
