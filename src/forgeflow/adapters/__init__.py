"""
Forgeflow Adapters

Concrete implementations of the collaborator protocols in
``forgeflow.core.interfaces`` for running on a local machine.
"""

from forgeflow.adapters.claude import ClaudeChatClient
from forgeflow.adapters.files import LocalFileStore
from forgeflow.adapters.process import SubprocessRunner
from forgeflow.adapters.progress import LoggingProgressSink
from forgeflow.adapters.prompts import (
    ConsoleApprovalPrompt,
    ConsolePhaseGate,
    ConsoleRecoveryPrompt,
    ConsoleTimeoutPrompt,
)

__all__ = [
    "ClaudeChatClient",
    "ConsoleApprovalPrompt",
    "ConsolePhaseGate",
    "ConsoleRecoveryPrompt",
    "ConsoleTimeoutPrompt",
    "LocalFileStore",
    "LoggingProgressSink",
    "SubprocessRunner",
]
