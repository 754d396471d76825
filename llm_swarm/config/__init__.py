"""Configuration loading for llm-swarm."""
