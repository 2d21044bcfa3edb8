"""Streaming dialogue orchestration: tag recognition, tool dispatch and the turn loop."""

# Core types
from .types import (
    BufferState,
    ConversationMessage,
    ConversationResult,
    Region,
    RegionKind,
    StreamDelta,
    ToolCall,
    ToolOutcome,
    TurnResult,
    TurnState,
)

# Stream recognition
from .tag_buffer import TagBuffer
from .region_classifier import RegionClassifier
from .tool_call_parser import DecodeError, DecodeErrorKind, decode_tool_call

# Tools
from .tools import (
    CapabilityProvider,
    FunctionProvider,
    HttpToolProvider,
    ProviderRegistry,
    ProviderResult,
    ToolSpec,
)
from .tool_dispatcher import DispatcherConfig, ToolDispatcher

# Events and the turn loop
from .event_emitter import CallbackChannel, ChatEvent, ClientChannel, EventEmitter, QueueChannel
from .event_log import ChatEventLogger
from .research_tasks import ResearchTask, extract_research_tasks
from .runtime_config import TurnConfig
from .transcript import MemoryTranscriptSink, TranscriptSink, truncate_tool_results
from .turn_controller import TurnController

__all__ = [
    "BufferState",
    "ConversationMessage",
    "ConversationResult",
    "Region",
    "RegionKind",
    "StreamDelta",
    "ToolCall",
    "ToolOutcome",
    "TurnResult",
    "TurnState",
    "TagBuffer",
    "RegionClassifier",
    "DecodeError",
    "DecodeErrorKind",
    "decode_tool_call",
    "CapabilityProvider",
    "FunctionProvider",
    "HttpToolProvider",
    "ProviderRegistry",
    "ProviderResult",
    "ToolSpec",
    "DispatcherConfig",
    "ToolDispatcher",
    "CallbackChannel",
    "ChatEvent",
    "ClientChannel",
    "EventEmitter",
    "QueueChannel",
    "ChatEventLogger",
    "ResearchTask",
    "extract_research_tasks",
    "TurnConfig",
    "MemoryTranscriptSink",
    "TranscriptSink",
    "truncate_tool_results",
    "TurnController",
]
