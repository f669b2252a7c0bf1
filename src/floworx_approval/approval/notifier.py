"""Notification dispatch for approval steps.

Step handlers only *describe* notifications.  A dispatcher hands each
:class:`~floworx_approval.approval.models.Notification` to the outside world
on a fire-and-forget basis: delivery status is not tracked, and a failed
delivery never rolls back the state transition that produced it.

Example
-------
>>> dispatcher = WebhookDispatcher("https://hooks.slack.com/...", webhook_format="slack")
>>> dispatcher.send(notification)
True
"""
from __future__ import annotations

import json
import logging
import urllib.request
from abc import ABC, abstractmethod

from floworx_approval.approval.models import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Delivers notification descriptors to an external channel."""

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """Deliver one notification.

        Returns
        -------
        bool
            ``True`` when the channel accepted the notification.
        """


class LoggingDispatcher(NotificationDispatcher):
    """Writes notifications to the log.  Used when no channel is configured."""

    def send(self, notification: Notification) -> bool:
        logger.info(
            "APPROVAL REQUIRED: to=%s type=%s subject=%r link=%s",
            notification.recipient,
            notification.type,
            notification.subject,
            notification.action_link,
        )
        return True


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification in memory.  Handy for tests and dry runs."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


class WebhookDispatcher(NotificationDispatcher):
    """POSTs notifications to a webhook as JSON.

    Parameters
    ----------
    webhook_url:
        The URL to POST to.
    webhook_format:
        ``"slack"``, ``"teams"``, or ``"generic"`` (default: ``"generic"``).
    timeout_seconds:
        HTTP request timeout in seconds (default: 5).
    """

    def __init__(
        self,
        webhook_url: str,
        webhook_format: str = "generic",
        timeout_seconds: float = 5.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._format = webhook_format.lower()
        self._timeout = timeout_seconds

    def send(self, notification: Notification) -> bool:
        payload = json.dumps(self.build_payload(notification))
        try:
            req = urllib.request.Request(
                self._webhook_url,
                data=payload.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=self._timeout):  # noqa: S310
                pass
            return True
        except Exception:
            logger.exception(
                "Failed to deliver approval notification to %s.", notification.recipient
            )
            return False

    def build_payload(self, notification: Notification) -> dict[str, object]:
        """Render the webhook body for the configured format."""
        match self._format:
            case "slack":
                return {
                    "text": notification.subject,
                    "blocks": [
                        {
                            "type": "header",
                            "text": {"type": "plain_text", "text": notification.subject},
                        },
                        {
                            "type": "section",
                            "fields": [
                                {"type": "mrkdwn", "text": f"*Recipient:*\n{notification.recipient}"},
                                {"type": "mrkdwn", "text": f"*Step:*\n{notification.type}"},
                            ],
                        },
                        {
                            "type": "section",
                            "text": {"type": "mrkdwn", "text": notification.message},
                        },
                        {
                            "type": "context",
                            "elements": [
                                {"type": "mrkdwn", "text": f"<{notification.action_link}|Review>"}
                            ],
                        },
                    ],
                }
            case "teams":
                return {
                    "@type": "MessageCard",
                    "@context": "http://schema.org/extensions",
                    "themeColor": "FF6600",
                    "summary": notification.subject,
                    "sections": [
                        {
                            "activityTitle": notification.subject,
                            "activitySubtitle": f"Recipient: {notification.recipient}",
                            "text": notification.message,
                        }
                    ],
                    "potentialAction": [
                        {
                            "@type": "OpenUri",
                            "name": "Review",
                            "targets": [{"os": "default", "uri": notification.action_link}],
                        }
                    ],
                }
            case _:
                return notification.to_dict()
