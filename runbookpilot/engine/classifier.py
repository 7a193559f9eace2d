"""Read/write classification of step actions.

Read actions only observe (collection, enrichment, hashing). Everything else
changes state somewhere and is gated by the automation level. Unknown actions
are treated as writes.
"""

from __future__ import annotations

from typing import Literal

import structlog

logger = structlog.get_logger()

ActionClass = Literal["read", "write"]

READ_ACTIONS = frozenset(
    {
        # Data collection
        "collect_logs",
        "query_siem",
        "collect_network_traffic",
        "snapshot_memory",
        "collect_file_metadata",
        # Threat intelligence
        "enrich_ioc",
        "check_reputation",
        "query_threat_feed",
        # EDR read-only
        "retrieve_edr_data",
        "calculate_hash",
        "http_request",
        "wait",
    }
)

WRITE_ACTIONS = frozenset(
    {
        "isolate_host",
        "restore_connectivity",
        "block_ip",
        "unblock_ip",
        "block_domain",
        "unblock_domain",
        "create_ticket",
        "update_ticket",
        "notify_analyst",
        "notify_oncall",
        "send_email",
        "disable_account",
        "enable_account",
        "reset_password",
        "revoke_session",
        "quarantine_file",
        "restore_file",
        "delete_file",
        "kill_process",
        "start_edr_scan",
        "execute_script",
    }
)


def classify_action(action: str) -> ActionClass:
    if action in READ_ACTIONS:
        return "read"
    if action not in WRITE_ACTIONS:
        logger.debug("unknown_action_classified_as_write", action=action)
    return "write"


def is_read_only(action: str) -> bool:
    return classify_action(action) == "read"


def is_write_action(action: str) -> bool:
    return classify_action(action) == "write"
