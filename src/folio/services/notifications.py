"""Slack notification service.

Notifications are fire-and-forget: a failed delivery is logged and never affects
the outcome of the request that triggered it.
"""

import logging
from typing import Any
from uuid import UUID

import httpx

from folio.config import settings

logger = logging.getLogger(__name__)

_STATUS_EMOJI = {
    "APPROVED": ":white_check_mark:",
    "REJECTED": ":no_entry:",
    "MERGED": ":tada:",
}


def _proposal_link(project_id: UUID, proposal_id: UUID) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/projects/{project_id}/proposals/{proposal_id}"


async def send_slack_message(
    text: str,
    blocks: list[dict[str, Any]] | None = None,
) -> bool:
    """Send a message to Slack via webhook.

    Args:
        text: Fallback text (shown in notifications)
        blocks: Optional Slack Block Kit blocks for rich formatting

    Returns:
        True if sent successfully, False otherwise
    """
    if not settings.slack_webhook_url:
        logger.debug("Slack webhook URL not configured, skipping notification")
        return False

    payload: dict[str, Any] = {"text": text}
    if blocks:
        payload["blocks"] = blocks

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                settings.slack_webhook_url,
                json=payload,
                timeout=10.0,
            )
            if response.status_code == 200 and response.text == "ok":
                logger.debug("Slack notification sent successfully")
                return True
            else:
                logger.warning(f"Slack notification failed: {response.status_code} {response.text}")
                return False
    except httpx.HTTPError as e:
        logger.error(f"Failed to send Slack notification: {e}")
        return False


async def notify_proposal_created(
    project_id: UUID,
    proposal_id: UUID,
    project_title: str,
    proposal_title: str,
    changed_fields: list[str],
    attachment_count: int,
) -> bool:
    """Tell the owner a collaborator has proposed changes."""
    fields_text = ", ".join(changed_fields[:5]) or "none"
    if len(changed_fields) > 5:
        fields_text += f", +{len(changed_fields) - 5} more"

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": ":memo: Changes Proposed",
                "emoji": True,
            },
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Project:*\n{project_title}"},
                {"type": "mrkdwn", "text": f"*Proposal:*\n{proposal_title}"},
                {"type": "mrkdwn", "text": f"*Fields:*\n{fields_text}"},
                {"type": "mrkdwn", "text": f"*Files:*\n{attachment_count}"},
            ],
        },
        {"type": "divider"},
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"<{_proposal_link(project_id, proposal_id)}|Review the proposal>",
                }
            ],
        },
    ]

    return await send_slack_message(
        text=f"Changes proposed for {project_title}: {proposal_title}",
        blocks=blocks,
    )


async def notify_proposal_status_change(
    project_id: UUID,
    proposal_id: UUID,
    proposal_title: str,
    status: str,
) -> bool:
    """Tell the author their proposal was approved, rejected, or merged."""
    emoji = _STATUS_EMOJI.get(status, ":information_source:")
    msg = f"{emoji} Proposal *{proposal_title}* is now `{status}`"
    blocks = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": msg},
        },
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"<{_proposal_link(project_id, proposal_id)}|View>"}
            ],
        },
    ]

    return await send_slack_message(
        text=f"Proposal {proposal_title} is now {status}",
        blocks=blocks,
    )
