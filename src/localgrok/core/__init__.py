from localgrok.core.context import AccumulatedResponse, TurnChain
from localgrok.core.orchestrator import StreamingOrchestrator, TurnHandle

__all__ = ["AccumulatedResponse", "StreamingOrchestrator", "TurnChain", "TurnHandle"]
