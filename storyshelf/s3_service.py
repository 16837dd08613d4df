"""
S3 generation recording for Storyshelf.
Fire-and-forget uploads: never blocks a request, silently skipped if not configured.
"""

import os
import json
import uuid
import asyncio
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", "")
AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET", "")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# Data URIs are kept out of records; only a prefix is stored
MAX_RECORDED_URL = 120


def is_configured():
    """Check if S3 credentials are configured."""
    return bool(AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY and AWS_S3_BUCKET)


def _get_s3_client():
    import boto3
    return boto3.client(
        "s3",
        aws_access_key_id=AWS_ACCESS_KEY_ID,
        aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
        region_name=AWS_REGION,
    )


def _upload(key, body):
    """Synchronous upload, run in the default executor."""
    try:
        _get_s3_client().put_object(
            Bucket=AWS_S3_BUCKET,
            Key=key,
            Body=body,
            ContentType="application/json",
        )
    except Exception as e:
        logger.warning(f"S3 upload of {key} failed: {e}")


def _truncate_urls(result):
    url = result.get("imageUrl")
    if isinstance(url, str) and len(url) > MAX_RECORDED_URL:
        result = {**result, "imageUrl": url[:MAX_RECORDED_URL] + "..."}
    return result


def build_key(kind, now=None):
    now = now or datetime.utcnow()
    return f"generations/{kind}/{now.strftime('%Y-%m-%d')}/{now.strftime('%H-%M-%S')}_{uuid.uuid4().hex[:8]}.json"


def record_generation(kind, request, result):
    """Record a generation event to S3 in the background.

    Args:
        kind: "summary", "storybook", "meme-text" or "image"
        request: dict of the request fields
        result: dict of the response payload
    """
    if not is_configured():
        return

    try:
        now = datetime.utcnow()
        record = {
            "timestamp": now.isoformat() + "Z",
            "kind": kind,
            "request": request,
            "result": _truncate_urls(result),
        }
        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, _upload, build_key(kind, now), json.dumps(record, indent=2))
    except Exception as e:
        logger.warning(f"S3 record_generation failed: {e}")
