"""
src/alerts.py
==============
Failure Alerting — PlayCoach Session Pipeline

Responsibility:
    - Report a permanently failed session to the team webhook
      (Slack-compatible JSON blocks) with aiohttp
    - Always log the failure, webhook or not

A webhook failure is logged and swallowed: alerting must never change the
outcome of the session it reports on.

This module does NOT:
    - Change session status (handled by src.pipeline)
    - Notify end users
"""

import logging
from datetime import datetime
from typing import Optional

import aiohttp

logger = logging.getLogger("playcoach.alerts")


class WebhookAlerter:
    """
    Alerting collaborator.

    Args:
        webhook_url:  Slack-style incoming webhook; None disables the POST.
        max_attempts: Shown in the "Retry Attempts" field.
    """

    def __init__(self, webhook_url: Optional[str] = None, max_attempts: int = 3):
        self.webhook_url = webhook_url
        self.max_attempts = max_attempts

    async def notify_failure(
        self,
        session_id: str,
        user_id: str,
        error: BaseException | str,
        retry_count: int = 0,
        duration_seconds: Optional[float] = None,
    ) -> None:
        message = str(error) or type(error).__name__
        logger.error(
            "Permanent processing failure for session %s (user %s): %s",
            session_id[:8], user_id[:8], message,
        )

        if not self.webhook_url:
            logger.debug("ALERT_WEBHOOK_URL not configured — skipping POST.")
            return

        payload = build_failure_payload(
            session_id, user_id, message, retry_count, self.max_attempts, duration_seconds,
        )
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=30),
                ) as resp:
                    logger.info(
                        "Failure report for session %s sent — status %d",
                        session_id[:8], resp.status,
                    )
        except Exception as exc:
            logger.error("Failure report POST failed: %s", exc)


def build_failure_payload(
    session_id: str,
    user_id: str,
    message: str,
    retry_count: int,
    max_attempts: int,
    duration_seconds: Optional[float],
) -> dict:
    """Slack block payload describing one failed session."""
    failed_at = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return {
        "text": f"🚨 *Permanent Processing Failure* - Session {session_id[:8]}",
        "blocks": [
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*User:*\n{user_id}"},
                    {"type": "mrkdwn", "text": f"*Session:*\n{session_id}"},
                ],
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Error:*\n{message}"},
                    {"type": "mrkdwn", "text": f"*Retry Attempts:*\n{retry_count + 1}/{max_attempts}"},
                ],
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Duration: {duration_seconds}s | Failed at: {failed_at}",
                    },
                ],
            },
        ],
    }
