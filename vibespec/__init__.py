"""VibeSpec MCP Server - spec status persistence and task progress tracking."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "SpecPaths",
    "SpecStatus",
    "SpecMetadata",
    "StatusManager",
    "StatusStore",
    "MetadataIndex",
    "TodoParser",
    "WorkflowManager",
]
