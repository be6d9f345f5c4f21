"""Notification helpers for trade and operational alerts."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Sequence

import requests

log = logging.getLogger("optionpilot.alerts")

SLACK_TIMEOUT_SEC = 5


class Notifier(Protocol):
    def send_trading_alert(
        self, subject: str, message: str, trade_details: Optional[Mapping[str, Any]] = None
    ) -> bool: ...

    def send_emergency_alert(
        self, subject: str, message: str, error: Optional[BaseException] = None
    ) -> bool: ...

    def send_daily_report(
        self,
        performance: Mapping[str, Any],
        trades: Sequence[Mapping[str, Any]],
        errors: Sequence[Mapping[str, Any]],
    ) -> bool: ...


def _audit_path() -> Path:
    directory = Path(os.getenv("AUDIT_LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)
    return directory / os.getenv("AUDIT_LOG_FILE", "audit.log")


def _webhook_url() -> Optional[str]:
    return os.getenv("SLACK_WEBHOOK_URL")


def send_slack(text: str, *, webhook_url: Optional[str] = None) -> bool:
    """Send ``text`` to the configured Slack webhook.

    Returns ``True`` when the POST succeeds and ``False`` when skipped or failed.
    Missing webhook configuration is treated as a no-op.
    """

    url = webhook_url or _webhook_url()
    if not url:
        log.debug("SLACK_WEBHOOK_URL not configured; skipping Slack alert")
        return False

    try:
        response = requests.post(url, json={"text": text}, timeout=SLACK_TIMEOUT_SEC)
    except Exception:  # noqa: BLE001
        log.exception("failed to send Slack alert")
        return False

    if 200 <= response.status_code < 300:
        return True

    log.warning("Slack webhook responded with status %s", response.status_code)
    return False


def audit_log(payload: Mapping[str, object]) -> None:
    """Append ``payload`` as a JSON line to the audit log."""

    try:
        path = _audit_path()
        with path.open("a", encoding="utf-8") as handle:
            json_payload = json.dumps(dict(payload), sort_keys=True, default=str)
            handle.write(json_payload + "\n")
    except Exception:  # noqa: BLE001 - logging must not raise
        log.exception("failed to write audit log entry")


def _format_details(details: Mapping[str, Any]) -> str:
    return "\n".join(f"• {key}: {value}" for key, value in details.items())


def _format_money(value: Any) -> str:
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return "n/a"


class SlackNotifier:
    """Slack-backed alerting with a JSON-lines audit trail."""

    def __init__(self, webhook_url: Optional[str] = None, *, prefix: str = "[optionpilot]") -> None:
        self.webhook_url = webhook_url
        self.prefix = prefix

    def _post(self, kind: str, subject: str, text: str, payload: Mapping[str, Any]) -> bool:
        audit_log(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "kind": kind,
                "subject": subject,
                **payload,
            }
        )
        return send_slack(f"{self.prefix} {text}", webhook_url=self.webhook_url)

    def send_trading_alert(
        self, subject: str, message: str, trade_details: Optional[Mapping[str, Any]] = None
    ) -> bool:
        text = f"*{subject}*\n{message}"
        if trade_details:
            text += "\n" + _format_details(trade_details)
        log.info("alerts.trading", extra={"subject": subject})
        return self._post("trading", subject, text, {"details": dict(trade_details or {})})

    def send_emergency_alert(
        self, subject: str, message: str, error: Optional[BaseException] = None
    ) -> bool:
        text = f":rotating_light: *{subject}*\n{message}"
        error_text = None
        if error is not None:
            error_text = f"{type(error).__name__}: {error}"
            text += f"\n```{error_text}```"
        log.warning("alerts.emergency", extra={"subject": subject, "error": error_text})
        return self._post("emergency", subject, text, {"error": error_text})

    def send_daily_report(
        self,
        performance: Mapping[str, Any],
        trades: Sequence[Mapping[str, Any]],
        errors: Sequence[Mapping[str, Any]],
    ) -> bool:
        lines = [
            "*Daily trading report*",
            f"Equity: {_format_money(performance.get('total_value'))}",
            f"Day P&L: {_format_money(performance.get('day_pl'))}",
            f"Trades today: {len(trades)}",
            f"Errors today: {len(errors)}",
        ]
        for trade in trades:
            lines.append(
                f"• {trade.get('symbol')} {trade.get('option_type')} x{trade.get('contracts')}"
                f" @ {_format_money(trade.get('entry_price'))} ({trade.get('status')})"
            )
        for err in errors[:5]:
            lines.append(f"⚠ {err.get('context')}: {err.get('message')}")
        log.info("alerts.daily_report", extra={"trades": len(trades), "errors": len(errors)})
        return self._post(
            "daily_report",
            "Daily trading report",
            "\n".join(lines),
            {"performance": dict(performance), "trade_count": len(trades), "error_count": len(errors)},
        )


__all__ = ["Notifier", "SlackNotifier", "send_slack", "audit_log"]
