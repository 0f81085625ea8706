"""Core utilities for M365 admin automation."""

from m365admin.core.config import (
    TagSyncConfig,
    get_graph_credentials,
    load_tag_sync_config,
)
from m365admin.core.msgraph_client import get_graph_client

__all__ = [
    "TagSyncConfig",
    "get_graph_client",
    "get_graph_credentials",
    "load_tag_sync_config",
]
