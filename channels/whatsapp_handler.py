"""
WhatsApp Channel Handler — WhatsApp Cloud API Integration
==========================================================
Receives and sends WhatsApp messages via the Meta WhatsApp Cloud API.

Incoming flow:
  Meta webhook POST → validate_signature() → extract_messages()
  → normalized message dicts → workers.message_processor

Outgoing flow:
  Decision engine reply → send_message() → Graph API → delivery status

Setup:
  1. Create a Meta app with the WhatsApp product enabled
  2. Configure the webhook callback URL:
     https://your-domain.com/webhooks/whatsapp  (subscribe to "messages")
  3. Set environment variables:
     - WHATSAPP_VERIFY_TOKEN: token echoed during webhook verification
     - WHATSAPP_ACCESS_TOKEN: Graph API bearer token for sending
     - WHATSAPP_APP_SECRET: app secret for X-Hub-Signature-256 validation
     - WHATSAPP_API_VERSION: Graph API version (default: v19.0)

Dependencies:
  httpx
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from typing import Optional

import httpx

logger = logging.getLogger("channels.whatsapp")

# ── Configuration ────────────────────────────────────────────────────────

WHATSAPP_VERIFY_TOKEN = os.environ.get("WHATSAPP_VERIFY_TOKEN", "")
WHATSAPP_ACCESS_TOKEN = os.environ.get("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_APP_SECRET = os.environ.get("WHATSAPP_APP_SECRET", "")
WHATSAPP_API_VERSION = os.environ.get("WHATSAPP_API_VERSION", "v19.0")

GRAPH_API_BASE = f"https://graph.facebook.com/{WHATSAPP_API_VERSION}"

# WhatsApp rejects text bodies over 4096 chars; long ones read badly on
# mobile well before that.
MAX_MESSAGE_LENGTH = 1600


# ── Webhook Verification ────────────────────────────────────────────────


def verify_webhook(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    verify_token: Optional[str] = None,
) -> Optional[str]:
    """Answer Meta's subscription handshake.

    Args:
        mode: hub.mode query parameter (must be "subscribe")
        token: hub.verify_token query parameter
        challenge: hub.challenge query parameter
        verify_token: Expected token (defaults to WHATSAPP_VERIFY_TOKEN)

    Returns:
        The challenge to echo back, or None if the request must be refused.
    """
    expected = WHATSAPP_VERIFY_TOKEN if verify_token is None else verify_token
    if not expected:
        logger.warning("WHATSAPP_VERIFY_TOKEN not set — refusing webhook verification")
        return None

    if mode == "subscribe" and token is not None and hmac.compare_digest(token, expected):
        logger.info("WhatsApp webhook verified")
        return challenge or ""

    logger.warning(f"WhatsApp webhook verification failed: mode={mode!r}")
    return None


def validate_signature(
    body: bytes,
    signature: Optional[str],
    app_secret: Optional[str] = None,
) -> bool:
    """Validate the X-Hub-Signature-256 header Meta attaches to every POST.

    Args:
        body: Raw request body bytes
        signature: Header value, format "sha256=<hex digest>"
        app_secret: Meta app secret (defaults to WHATSAPP_APP_SECRET)

    Returns:
        True if the signature is valid (or validation is not configured).
    """
    secret = WHATSAPP_APP_SECRET if app_secret is None else app_secret
    if not secret:
        logger.warning("WHATSAPP_APP_SECRET not set — skipping signature validation")
        return True

    if not signature or not signature.startswith("sha256="):
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


# ── Incoming Payload Parsing ────────────────────────────────────────────


def _dicts(items) -> list[dict]:
    """Only the dict elements of a JSON array; anything else → []."""
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _message_changes(payload: dict) -> list[dict]:
    """The `value` objects of every entry[].changes[] with field == messages.

    Malformed elements (non-object entries, changes or values) are skipped.
    """
    if not isinstance(payload, dict):
        return []
    values = []
    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            if change.get("field") == "messages" and isinstance(change.get("value"), dict):
                values.append(change["value"])
    return values


def extract_messages(payload: dict) -> list[dict]:
    """Normalize every inbound message in a webhook payload.

    Returns:
        List of dicts with channel_message_id, from, content, message_type,
        timestamp, display_phone_number and phone_number_id. Non-text
        messages keep an empty content.
    """
    messages = []
    for value in _message_changes(payload):
        metadata = value.get("metadata") if isinstance(value.get("metadata"), dict) else {}
        for message in _dicts(value.get("messages")):
            message_id = message.get("id", "")
            from_number = message.get("from", "")
            if not message_id or not from_number:
                logger.warning("WhatsApp webhook message missing id or from")
                continue

            text = message.get("text")
            body = text.get("body", "") if isinstance(text, dict) else ""
            if not isinstance(body, str):
                body = ""
            messages.append({
                "channel": "whatsapp",
                "channel_message_id": message_id,
                "from": from_number,
                "content": body.strip(),
                "message_type": message.get("type", "text"),
                "timestamp": message.get("timestamp", ""),
                "display_phone_number": metadata.get("display_phone_number", ""),
                "phone_number_id": metadata.get("phone_number_id", ""),
            })
            logger.info(
                f"WhatsApp message received: id={message_id}, "
                f"type={message.get('type', 'text')}, body_length={len(body)}"
            )
    return messages


def extract_statuses(payload: dict) -> list[dict]:
    """Normalize every delivery status update in a webhook payload."""
    statuses = []
    for value in _message_changes(payload):
        for status in _dicts(value.get("statuses")):
            if not status.get("id"):
                continue
            statuses.append({
                "channel_message_id": status["id"],
                "status": _map_status(status.get("status", "")),
                "timestamp": status.get("timestamp", ""),
                "recipient_id": status.get("recipient_id", ""),
            })
    return statuses


# ── Outgoing Messages ───────────────────────────────────────────────────


async def send_message(
    phone_number_id: str,
    to_phone: str,
    body: str,
) -> dict:
    """Send a WhatsApp text message via the Cloud API.

    Args:
        phone_number_id: Business phone number ID that sends the message
        to_phone: Recipient WhatsApp ID / phone number
        body: Message text

    Returns:
        dict with channel_message_id and delivery_status ("sent" or "failed").
    """
    if not WHATSAPP_ACCESS_TOKEN:
        logger.error("WHATSAPP_ACCESS_TOKEN missing — cannot send WhatsApp message")
        return {
            "channel_message_id": None,
            "delivery_status": "failed",
            "error": "WhatsApp credentials not configured",
        }

    message_parts = split_message(body)
    logger.info(f"Sending WhatsApp reply in {len(message_parts)} part(s), body_length={len(body)}")

    results = []
    for part in message_parts:
        results.append(await _send_single_message(phone_number_id, to_phone, part))

    # First failure wins; otherwise report the last part
    for r in results:
        if r.get("delivery_status") == "failed":
            return r

    return results[-1] if results else {
        "channel_message_id": None,
        "delivery_status": "failed",
        "error": "No message parts to send",
    }


async def _send_single_message(phone_number_id: str, to_phone: str, body: str) -> dict:
    """Send a single text message via the Graph API."""
    url = f"{GRAPH_API_BASE}/{phone_number_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_phone,
        "type": "text",
        "text": {"preview_url": False, "body": body},
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {WHATSAPP_ACCESS_TOKEN}"},
                timeout=30.0,
            )

        if response.status_code in (200, 201):
            data = response.json()
            message_id = ((data.get("messages") or [{}])[0]).get("id")
            logger.info(f"WhatsApp message sent: id={message_id}")
            return {
                "channel_message_id": message_id,
                "delivery_status": "sent",
            }

        error_msg = response.text[:500]
        logger.error(f"WhatsApp API error ({response.status_code}): {error_msg}")
        return {
            "channel_message_id": None,
            "delivery_status": "failed",
            "error": f"WhatsApp API {response.status_code}: {error_msg}",
        }

    except httpx.HTTPError as e:
        logger.error(f"Failed to send WhatsApp message: {e}", exc_info=True)
        return {
            "channel_message_id": None,
            "delivery_status": "failed",
            "error": str(e),
        }


# ── Message Splitting ───────────────────────────────────────────────────


def split_message(
    text: str,
    max_length: int = MAX_MESSAGE_LENGTH,
) -> list[str]:
    """Split a long reply into WhatsApp-friendly chunks at sentence boundaries.

    Args:
        text: Full reply text
        max_length: Maximum characters per chunk

    Returns:
        List of chunks, each at most max_length characters.
    """
    if len(text) <= max_length:
        return [text]

    sentences = re.split(r"(?<=[.!?])(?<!\d\.)(?<!\d\d\.)\s+", text)

    pieces = []
    for s in sentences:
        for part in s.split("\n"):
            part = part.strip()
            if not part:
                continue
            # A single sentence longer than the limit is hard-wrapped
            while len(part) > max_length:
                pieces.append(part[:max_length])
                part = part[max_length:]
            if part:
                pieces.append(part)

    parts = []
    current_part: list[str] = []
    current_length = 0

    for piece in pieces:
        separator_len = 1 if current_part else 0
        new_length = current_length + len(piece) + separator_len

        if new_length <= max_length:
            current_part.append(piece)
            current_length = new_length
        else:
            if current_part:
                parts.append("\n".join(current_part))
            current_part = [piece]
            current_length = len(piece)

    if current_part:
        parts.append("\n".join(current_part))

    return parts if parts else [text[:max_length]]


# ── Helper Functions ────────────────────────────────────────────────────


def _map_status(whatsapp_status: str) -> str:
    """Map Cloud API statuses to our delivery_status enum.

    Cloud API statuses: sent, delivered, read, failed, deleted
    Our enum: pending, sent, delivered, read, failed
    """
    status_map = {
        "sent": "sent",
        "delivered": "delivered",
        "read": "read",
        "failed": "failed",
    }
    return status_map.get(whatsapp_status, "pending")
