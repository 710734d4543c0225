"""
Agent module - runs, context and the event stream.

Includes:
- Agent: Declarative facade that builds runs
- AgentRun: The turn loop of one execution
- AgentContext: Messages, memories and documents behind each prompt
- ConversationHistory: Completed turns carried across runs
- InterceptorChain: Transforms wrapped around every model call
- Tracer: Passive, buffered trace recording
"""

from .context import AgentContext, ContextSnapshot, Prompt
from .core import Agent
from .environment import ExecutionEnvironment
from .history import ConversationHistory, ConversationTurn
from .interceptors import Interceptor, InterceptorChain, ModelRequest
from .run import AgentRun, RunStatus
from .stream import EventStream
from .tracer import Tracer

__all__ = [
    "Agent",
    "AgentContext",
    "AgentRun",
    "ContextSnapshot",
    "ConversationHistory",
    "ConversationTurn",
    "EventStream",
    "ExecutionEnvironment",
    "Interceptor",
    "InterceptorChain",
    "ModelRequest",
    "Prompt",
    "RunStatus",
    "Tracer",
]
