"""Cloudflare R2 (S3 API) object store for poster assets.

Every call takes the :class:`~poster_studio.config.R2Config` it should talk to;
``asset_store`` decides whether R2 is used at all.
"""
from __future__ import annotations

import datetime as _dt
import logging
import re
import uuid
from functools import lru_cache
from typing import Optional

import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from poster_studio.config import R2Config

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^0-9A-Za-z._-]")


class R2Error(RuntimeError):
    """The bucket rejected a request or could not be reached."""


def make_key(folder: str, filename: str) -> str:
    """Build ``<folder>/<yyyymmdd>/<uuid>/<filename>``, unique per call."""

    folder = (folder or "uploads").strip("/ ") or "uploads"
    day = _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d")
    safe_name = _UNSAFE_CHARS.sub("_", filename or "asset")
    return f"{folder}/{day}/{uuid.uuid4().hex}/{safe_name}"


@lru_cache(maxsize=4)
def _client(config: R2Config) -> BaseClient:
    return boto3.session.Session().client(
        "s3",
        endpoint_url=config.endpoint,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        region_name=config.region,
    )


def object_url(config: R2Config, key: str) -> str:
    """Public URL under ``public_base``, or a presigned GET when the bucket is private."""

    if config.public_base:
        return f"{config.public_base}/{key.lstrip('/')}"
    try:
        return _client(config).generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": config.bucket, "Key": key},
            ExpiresIn=config.signed_get_ttl,
            HttpMethod="GET",
        )
    except (ClientError, BotoCoreError) as exc:
        raise R2Error(f"could not sign a download URL for {key}") from exc


def key_for_url(config: R2Config, url: str) -> Optional[str]:
    if config.public_base and url.startswith(f"{config.public_base}/"):
        return url[len(config.public_base) + 1:]
    return None


def put_object(config: R2Config, key: str, data: bytes, *, content_type: str) -> str:
    """Upload ``data`` under ``key`` and return the URL it is served from."""

    try:
        _client(config).put_object(Bucket=config.bucket, Key=key, Body=data, ContentType=content_type)
    except (ClientError, BotoCoreError) as exc:
        raise R2Error(f"upload of {key} to bucket {config.bucket} failed") from exc
    logger.debug("R2 object stored", extra={"key": key, "bytes": len(data)})
    return object_url(config, key)


def get_object(config: R2Config, key: str) -> bytes:
    try:
        response = _client(config).get_object(Bucket=config.bucket, Key=key)
    except (ClientError, BotoCoreError) as exc:
        raise R2Error(f"fetch of {key} from bucket {config.bucket} failed") from exc
    body = response.get("Body")
    if body is None:
        raise R2Error(f"object {key} has no body")
    return body.read()


__all__ = ["R2Error", "get_object", "key_for_url", "make_key", "object_url", "put_object"]
