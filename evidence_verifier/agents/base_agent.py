"""Abstract base class for pipeline agents (workers that act on queued jobs)."""

from abc import ABC, abstractmethod
import uuid

from evidence_verifier.config.logging import get_logger


class BaseAgent(ABC):
    """
    Common identity and logging for agents consuming verification jobs.

    Each instance gets a fresh agent_id so several workers attached to the
    same queue can be told apart in logs.

    Attributes:
        agent_id: UUID of this agent instance
        name: Agent name, also used as the log component
        description: What the agent does
        logger: Loguru logger bound with agent_id and agent_name
    """

    def __init__(self, name: str, description: str = ""):
        self.agent_id = str(uuid.uuid4())
        self.name = name
        self.description = description
        self.logger = get_logger(name).bind(agent_id=self.agent_id, agent_name=name)

        self.logger.info(f"Agent {name} started with ID {self.agent_id}")

    @property
    def short_id(self) -> str:
        """First 8 characters of agent_id, used as the worker tag in log lines."""
        return self.agent_id[:8]

    @abstractmethod
    async def process(self, input_data: dict) -> dict:
        """
        Handle one job payload.

        Args:
            input_data: Job payload as enqueued by the producer

        Returns:
            Dictionary describing the outcome
        """

    @abstractmethod
    def get_capabilities(self) -> list[str]:
        """Capability identifiers advertised by the agent."""
