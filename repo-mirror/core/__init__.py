from .cache import ContentCache
from .config import MirrorConfig
from .prompt_manager import PromptManager
from .repository import RepositoryService
from .session import RepositorySession, SessionState

__all__ = [
    "ContentCache",
    "MirrorConfig",
    "PromptManager",
    "RepositoryService",
    "RepositorySession",
    "SessionState",
]
