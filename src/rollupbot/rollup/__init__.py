"""Incremental project-thread rollup."""

from .discovery import fetch_all_threads, has_owner_opted_out, is_eligible_thread
from .fetcher import fetch_messages_since, fetch_new_messages
from .mentions import mentionize_summary
from .publisher import RollupItem, build_project_embed, publish_rollup
from .runner import ProjectRollup
from .summarizer import LLMProtocol, PreparedMessage, Summarizer, build_prompt, prepare_window
from .thread_state import CheckpointStore, StaleCheckpointError, ThreadMemory, ThreadState

__all__ = [
    "CheckpointStore",
    "StaleCheckpointError",
    "ThreadMemory",
    "ThreadState",
    "fetch_all_threads",
    "has_owner_opted_out",
    "is_eligible_thread",
    "fetch_new_messages",
    "fetch_messages_since",
    "Summarizer",
    "LLMProtocol",
    "PreparedMessage",
    "build_prompt",
    "prepare_window",
    "mentionize_summary",
    "RollupItem",
    "build_project_embed",
    "publish_rollup",
    "ProjectRollup",
]
