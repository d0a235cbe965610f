"""codegraph: a knowledge graph over a codebase and its documents."""

__version__ = "1.0.0"
