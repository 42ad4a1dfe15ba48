from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Mapping

from listing_pipeline.errors import MalformedInputError


@dataclass(slots=True)
class Delivery:
    """Job description decoded from one inbound delivery."""

    bucket: str
    file_name: str | None
    delivery_id: str | None = None
    drive_file_id: str | None = None


def decode_delivery(body: Any) -> Delivery:
    """Decode a raw job ``{bucket, name, driveFileId?}`` or a push envelope.

    Push envelopes look like ``{"message": {"data": <base64 JSON>, "messageId": ...}}``.
    Undecodable data raises :class:`MalformedInputError`. A missing ``name`` is
    not an error here; callers reject it before any admission check.
    """

    if not isinstance(body, Mapping):
        raise MalformedInputError("Request body must be a JSON object.")

    delivery_id: str | None = None
    payload: Mapping[str, Any] = body
    message = body.get("message")
    if isinstance(message, Mapping) and message.get("data"):
        raw_id = message.get("messageId") or message.get("message_id")
        delivery_id = str(raw_id) if raw_id else None
        payload = _decode_push_data(message["data"])

    name = payload.get("name")
    drive_file_id = payload.get("driveFileId")
    return Delivery(
        bucket=str(payload.get("bucket") or ""),
        file_name=str(name) if name else None,
        delivery_id=delivery_id,
        drive_file_id=str(drive_file_id) if drive_file_id else None,
    )


def _decode_push_data(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, str):
        raise MalformedInputError("Push message data must be a base64 string.")

    try:
        decoded = base64.b64decode(data, validate=True).decode("utf-8")
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as exc:
        raise MalformedInputError(f"Push message data is not base64-encoded JSON: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise MalformedInputError("Push message data must decode to a JSON object.")
    return payload
