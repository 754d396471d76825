"""
llm-swarm: offload bulk prompt work to a cheaper model.

Fans prompts out with bounded parallelism, enforces a rolling usage
quota and keeps a durable ledger of cost and throughput.
"""

__version__ = "1.0.0"
