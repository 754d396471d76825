"""
Core modules for llm-swarm.

This package contains token accounting, cost estimation, batch
dispatch and the quota gate.
"""
