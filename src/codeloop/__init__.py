"""codeloop - model-agnostic coding agent engine with a permission-gated tool loop."""

from importlib.metadata import version

__version__ = version("codeloop")

from codeloop.config import AgentConfig, ConfigError, load_config
from codeloop.core.cancellation import CancellationToken
from codeloop.core.compression import CompressionManager
from codeloop.core.context import ExecutionContext, Session
from codeloop.core.events import EventBus
from codeloop.core.executor import AgentExecutor, ErrorType, ExecutionError, ExecutionResult
from codeloop.core.llm import LLMAbortError, LLMClient, LLMError
from codeloop.core.orchestrator import ToolOrchestrator
from codeloop.core.validation import ValidationResult, validate_message_sequence
from codeloop.permissions import ApprovalDecision, ApprovalMode, PermissionStore
from codeloop.tools import ToolRegistry, build_registry
