from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel

from services.config_schema import VisionConfig

T = TypeVar("T", bound=BaseModel)


class BaseDriver(ABC, Generic[T]):
    """Abstract base class for chat platform drivers."""

    def __init__(self, instance_id: str, config: T, vision: VisionConfig):
        self.instance_id = instance_id
        self.config: T = config
        self.vision = vision

    @abstractmethod
    async def start(self):
        """Start the driver (authenticate, begin listening).
        Long-running drivers should wait indefinitely here."""

    @abstractmethod
    async def reply(self, address: dict, text: str):
        """Answer the message identified by *address* with *text*."""
