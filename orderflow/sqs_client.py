"""
AWS SQS helpers. Used for a collaborator queue when its SQS URL is configured.
"""
import asyncio
import json
from typing import Any

import boto3

from orderflow.config import settings

_sqs_client: Any = None


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def send_message(queue_url: str, body: dict) -> None:
    """Send one JSON message (boto3 runs in a thread to not block the loop)."""
    client = _get_client()
    await asyncio.to_thread(
        client.send_message,
        QueueUrl=queue_url,
        MessageBody=json.dumps(body),
    )


def receive_messages(queue_url: str, max_number: int = 10, wait_seconds: int = 5) -> list[dict]:
    """Sync long-poll (used by the worker in a thread). Returns list of {ReceiptHandle, Body, Attributes}."""
    client = _get_client()
    resp = client.receive_message(
        QueueUrl=queue_url,
        MaxNumberOfMessages=max_number,
        WaitTimeSeconds=wait_seconds,
        AttributeNames=["ApproximateReceiveCount"],
    )
    return resp.get("Messages") or []


def delete_message(queue_url: str, receipt_handle: str) -> None:
    client = _get_client()
    client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)


def change_message_visibility(queue_url: str, receipt_handle: str, visibility_timeout: int) -> None:
    """Delay the next delivery (backoff)."""
    client = _get_client()
    client.change_message_visibility(
        QueueUrl=queue_url,
        ReceiptHandle=receipt_handle,
        VisibilityTimeout=visibility_timeout,
    )


async def get_queue_depth(queue_url: str) -> tuple[int, int]:
    """Return (ApproximateNumberOfMessages, ApproximateNumberOfMessagesNotVisible) for metrics."""
    client = _get_client()

    def _get():
        r = client.get_queue_attributes(
            QueueUrl=queue_url,
            AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
        )
        attrs = r.get("Attributes") or {}
        return (
            int(attrs.get("ApproximateNumberOfMessages", 0)),
            int(attrs.get("ApproximateNumberOfMessagesNotVisible", 0)),
        )

    return await asyncio.to_thread(_get)
