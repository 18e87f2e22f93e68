"""Constants for Trellis.

Exit codes, file names, on-disk markers and analysis defaults.
"""

from typing import Final

# Exit codes (following Unix conventions)
EXIT_SUCCESS: Final[int] = 0
EXIT_USER_ERROR: Final[int] = 1
EXIT_INTERNAL_ERROR: Final[int] = 2
EXIT_CONFIG_ERROR: Final[int] = 3

# Environment override for the storage directory
STORAGE_DIR_ENV: Final[str] = "TRELLIS_STORAGE_DIR"

# Persisted file names (kept compatible with existing knowledge graph files)
ENTITY_FILE_NAME: Final[str] = "knowledge-graph-entities.jsonl"
RELATIONSHIP_FILE_NAME: Final[str] = "knowledge-graph-relationships.jsonl"
COMMIT_FILE_NAME: Final[str] = "knowledge-graph.commit.json"
HEALTH_HISTORY_FILE_NAME: Final[str] = "health-history.jsonl"
BACKUP_DIR_NAME: Final[str] = "backups"

# Marker lines guard against overwriting foreign files
SCHEMA_VERSION: Final[str] = "1.0.0"
ENTITY_MARKER_PREFIX: Final[str] = "# DOCUMCP_KNOWLEDGE_GRAPH_ENTITIES"
RELATIONSHIP_MARKER_PREFIX: Final[str] = "# DOCUMCP_KNOWLEDGE_GRAPH_RELATIONSHIPS"
ENTITY_MARKER: Final[str] = f"{ENTITY_MARKER_PREFIX} v{SCHEMA_VERSION}"
RELATIONSHIP_MARKER: Final[str] = f"{RELATIONSHIP_MARKER_PREFIX} v{SCHEMA_VERSION}"

# Path search
DEFAULT_MAX_DEPTH: Final[int] = 5
DEFAULT_ENUMERATION_DEPTH: Final[int] = 3

# Feature similarity weights: language, framework, size, complexity
FEATURE_WEIGHT_LANGUAGE: Final[float] = 0.4
FEATURE_WEIGHT_FRAMEWORK: Final[float] = 0.3
FEATURE_WEIGHT_SIZE: Final[float] = 0.2
FEATURE_WEIGHT_COMPLEXITY: Final[float] = 0.1

# Id prefix of the temporary node inserted while computing recommendations
QUERY_NODE_PREFIX: Final[str] = "temp_query"

# Known technology dependencies used when building the graph
TECHNOLOGY_DEPENDENCIES: Final[dict[str, tuple[str, ...]]] = {
    "react": ("javascript", "nodejs"),
    "vue": ("javascript", "nodejs"),
    "angular": ("typescript", "nodejs"),
    "gatsby": ("react", "graphql"),
    "next.js": ("react", "nodejs"),
    "nuxt.js": ("vue", "nodejs"),
    "docusaurus": ("react", "markdown"),
    "jekyll": ("ruby", "markdown"),
    "hugo": ("go", "markdown"),
    "mkdocs": ("python", "markdown"),
}

# Health scoring weights
HEALTH_WEIGHT_DATA_QUALITY: Final[float] = 0.4
HEALTH_WEIGHT_STRUCTURE: Final[float] = 0.3
HEALTH_WEIGHT_PERFORMANCE: Final[float] = 0.3

# Number of query latency samples retained by the health tracker
QUERY_SAMPLE_LIMIT: Final[int] = 100

# Sample sizes for the structural health metrics
CLUSTERING_SAMPLE_SIZE: Final[int] = 100
PATH_LENGTH_SAMPLE_SIZE: Final[int] = 10

# Graph exploration limits for the `graph` command
MAX_EXPLORATION_DEPTH: Final[int] = 5
DEFAULT_EXPLORATION_DEPTH: Final[int] = 2
LARGE_GRAPH_THRESHOLD: Final[int] = 50  # Warn when neighborhood exceeds this

# RapidFuzz similarity threshold for node lookup (0-100 scale)
NODE_MATCH_THRESHOLD: Final[int] = 50
