"""Notification service for item change events via AWS SNS."""

import json
import logging
from typing import TYPE_CHECKING, Optional

from flask import current_app

if TYPE_CHECKING:
    from pantry.items.models import Item

logger = logging.getLogger(__name__)


def is_notifications_enabled() -> bool:
    """Check if notification functionality is enabled.

    Returns:
        True if notifications are enabled and configured, False otherwise
    """
    return bool(current_app.config.get("NOTIFICATIONS_ENABLED", False))


def _send_via_sns(topic_arn: str, subject: str, message: str) -> bool:
    """Send notification via AWS SNS.

    Args:
        topic_arn: SNS topic ARN to publish to
        subject: Notification subject
        message: Notification message

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        import boto3
        from botocore.exceptions import ClientError

        sns_client = boto3.client("sns", region_name=current_app.config.get("AWS_REGION", "us-east-1"))
        response = sns_client.publish(
            TopicArn=topic_arn,
            Subject=subject,
            Message=message,
        )

        logger.info(f"Notification sent via SNS: {response['MessageId']}")
        return True

    except ClientError as e:
        logger.error(f"AWS SNS error: {e}")
        return False
    except Exception as e:
        logger.error(f"Failed to send notification via SNS: {e}")
        return False


def send_notification(subject: str, message: str, topic_arn: Optional[str] = None) -> bool:
    """Send a notification via SNS.

    Delivery is best effort: failures are logged and reported through the
    return value, never raised to the caller.

    Args:
        subject: Notification subject
        message: Notification message
        topic_arn: SNS topic ARN (optional, uses config if not provided)

    Returns:
        True if sent successfully, False otherwise
    """
    if not is_notifications_enabled():
        logger.debug(f"Notifications disabled, not sending: {subject} - {message}")
        return False

    if not topic_arn:
        topic_arn = current_app.config.get("SNS_TOPIC_ARN")

    if not topic_arn:
        logger.error("No SNS topic ARN configured for notifications")
        return False

    return _send_via_sns(topic_arn, subject, message)


def notify_item_quantity_changed(item: "Item", delta: int) -> bool:
    """Announce that an item's stock changed so subscribers can refresh."""
    payload = {
        "event": "item.quantity_changed",
        "owner_id": item.owner_id,
        "item_id": item.id,
        "title": item.title,
        "delta": delta,
        "quantity": item.quantity,
        "is_low": item.is_low,
    }
    return send_notification(f"Item updated: {item.title}"[:100], json.dumps(payload))
