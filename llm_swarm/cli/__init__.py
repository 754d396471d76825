"""Command-line interface for llm-swarm."""
