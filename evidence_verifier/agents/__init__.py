"""Pipeline agents."""

from evidence_verifier.agents.base_agent import BaseAgent

__all__ = ["BaseAgent"]
