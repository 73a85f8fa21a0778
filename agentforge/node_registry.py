import logging
from typing import Dict, List, Optional, Type

from .errors import UnknownBlockType
from .nodes.base import BaseBlock
from .nodes.agent import AgentBlock
from .nodes.llm import LLMAnalysisBlock
from .nodes.telegram import SendTelegramBlock
from .nodes.triggers import ManualTriggerBlock, ScheduleTriggerBlock, TelegramTriggerBlock, WebhookTriggerBlock
from .nodes.web import HttpRequestBlock, TokenInfoBlock

logger = logging.getLogger(__name__)


class BlockRegistry:
    def __init__(self, blocks: Optional[List[Type[BaseBlock]]] = None):
        self.block_classes: Dict[str, Type[BaseBlock]] = {}
        for cls in blocks or []:
            self.register(cls)

    @classmethod
    def default(cls) -> "BlockRegistry":
        return cls([
            # Triggers
            ManualTriggerBlock,
            WebhookTriggerBlock,
            ScheduleTriggerBlock,
            TelegramTriggerBlock,
            # Data
            HttpRequestBlock,
            TokenInfoBlock,
            # Actions
            SendTelegramBlock,
            # AI
            LLMAnalysisBlock,
            AgentBlock,
        ])

    def register(self, cls):
        if not getattr(cls, "BLOCK_TYPE", None):
            raise ValueError(f"{cls.__name__} has no BLOCK_TYPE")
        if cls.BLOCK_TYPE in self.block_classes:
            logger.warning(f"Block type {cls.BLOCK_TYPE} registered twice, replacing {self.block_classes[cls.BLOCK_TYPE].__name__}")
        self.block_classes[cls.BLOCK_TYPE] = cls

    def get(self, block_type: str) -> Optional[Type[BaseBlock]]:
        return self.block_classes.get(block_type)

    def require(self, block_type: str) -> Type[BaseBlock]:
        cls = self.get(block_type)
        if cls is None:
            raise UnknownBlockType(block_type)
        return cls

    def blocks(self) -> List[Type[BaseBlock]]:
        return list(self.block_classes.values())

    def get_all_metadata(self):
        return [cls.get_schema() for cls in self.block_classes.values()]


registry = BlockRegistry.default()
