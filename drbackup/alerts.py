# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Alerts - Operator notifications for degraded outcomes.

Delivery channels (mail, chat, paging) live outside this package; they
implement AlertSink. Alerts are best-effort: a failing sink is logged and
never changes the outcome of the run that raised the alert.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, Protocol

import structlog

logger = structlog.get_logger()

SEVERITIES = ("info", "warning", "critical")

BACKUP_TIMEOUT = "BACKUP_TIMEOUT"
BACKUP_DAILY_PARTIAL_FAILURE = "BACKUP_DAILY_PARTIAL_FAILURE"
BACKUP_DISK_SPACE_LOW = "BACKUP_DISK_SPACE_LOW"
BACKUP_CLEANUP_FAILED = "BACKUP_CLEANUP_FAILED"
BACKUP_CONFIG_ERROR = "BACKUP_CONFIG_ERROR"


@dataclass
class Alert:
    """A single operator notification."""

    type: str
    severity: str  # info, warning, critical
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None: ...


class LoggingAlertSink:
    """Writes alerts to the structured log."""

    async def send(self, alert: Alert) -> None:
        log = logger.error if alert.severity == "critical" else logger.warning
        log(
            "backup_alert",
            alert_type=alert.type,
            severity=alert.severity,
            message=alert.message,
            **alert.details,
        )


async def send_alert(
    sink: AlertSink | None,
    alert_type: str,
    severity: str,
    message: str,
    **details: Any,
) -> None:
    """
    Deliver an alert through sink, swallowing delivery failures.

    Args:
        sink: Destination; None disables alerting
        alert_type: Stable identifier, e.g. BACKUP_PG_FULL_FAILED
        severity: info, warning or critical
        message: Human-readable summary
        **details: Extra context attached to the alert
    """
    if sink is None:
        return

    alert = Alert(
        type=alert_type,
        severity=severity if severity in SEVERITIES else "warning",
        message=message,
        details={"component": "backup_service", **details},
    )
    try:
        await sink.send(alert)
    except Exception as e:
        logger.warning("alert_delivery_failed", alert_type=alert_type, error=str(e))
