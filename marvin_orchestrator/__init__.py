import importlib.metadata

try:
    _detected_version = importlib.metadata.version("marvin-orchestrator")
    __version__ = _detected_version if _detected_version else "0.0.0-dev"
except importlib.metadata.PackageNotFoundError:
    # Running from a source checkout
    __version__ = "0.0.0-dev"

from marvin_orchestrator.classifier import MessageClassifier
from marvin_orchestrator.errors import (
    AgentLoopExceeded,
    AllProvidersExhausted,
    ConfigurationError,
    InvalidToolDefinition,
    OrchestratorError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    UnsupportedOperationError,
)
from marvin_orchestrator.models import (
    ChatMessage,
    ClassificationResult,
    ContentContext,
    IntentClassification,
    MessageCategory,
    OrchestratorInput,
    OrchestratorResult,
    RoutingDecision,
    StateChange,
    StateChangeType,
    ToolDefinition,
)
from marvin_orchestrator.orchestrator import Orchestrator
from marvin_orchestrator.rate_limiter import RateLimiter
from marvin_orchestrator.settings import (
    Settings,
    clear_settings_cache,
    get_settings,
    validate_settings,
)
from marvin_orchestrator.state import StateContextProvider, StaticStateContext

__all__ = [
    "__version__",
    # Entry point
    "Orchestrator",
    "MessageClassifier",
    "RateLimiter",
    # Data model
    "ChatMessage",
    "ClassificationResult",
    "ContentContext",
    "IntentClassification",
    "MessageCategory",
    "OrchestratorInput",
    "OrchestratorResult",
    "RoutingDecision",
    "StateChange",
    "StateChangeType",
    "ToolDefinition",
    # State
    "StateContextProvider",
    "StaticStateContext",
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "validate_settings",
    # Errors
    "OrchestratorError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitError",
    "ProviderUnavailableError",
    "UnsupportedOperationError",
    "InvalidToolDefinition",
    "AgentLoopExceeded",
    "AllProvidersExhausted",
]
