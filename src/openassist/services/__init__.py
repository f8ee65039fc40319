"""Service layer orchestrations for OpenAssist."""

from .chat import ChatConfig, ChatService
from .knowledge import KnowledgeBase, KnowledgeBaseConfig, PromptBuilder
from .media import AudioConfig, AudioService, ImageConfig, ImageService
from .orchestrator import ChatRequest, Orchestrator, OrchestratorConfig, Stage
from .routing import IntentClassifier, extract_image_prompt
from .safety import SafetyConfig, SafetyScreen

__all__ = [
    "AudioConfig",
    "AudioService",
    "ChatConfig",
    "ChatRequest",
    "ChatService",
    "ImageConfig",
    "ImageService",
    "IntentClassifier",
    "KnowledgeBase",
    "KnowledgeBaseConfig",
    "Orchestrator",
    "OrchestratorConfig",
    "PromptBuilder",
    "SafetyConfig",
    "SafetyScreen",
    "Stage",
    "extract_image_prompt",
]
