"""
WhatsApp Message Processor
===========================
Runs each inbound WhatsApp message through the decision engine and
dispatches the outcome.

Pipeline (per message):
  1. get_whatsapp_number()               — which tenant received it
  2. get_or_create_contact()             — who sent it
  3. get_or_create_active_conversation() — reuse active or open new
  4. Store inbound message in DB
  5. Load training data + recent history
  6. engine.decide()                     — reply, confidence, escalation
  7a. Auto-reply: store AI message, send via WhatsApp
  7b. Escalate:   flag conversation for a human (status → pending)

A GenerationFailure escalates the conversation instead of sending
anything. A reply the Cloud API refuses to deliver is stored and the
conversation is flagged as well. A ConfigurationError propagates: it
needs an operator, not a retry.

Dependencies:
  - PostgreSQL (asyncpg, database.queries)
  - Decision engine (agent.engine)
  - WhatsApp channel (channels.whatsapp_handler)
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import asyncpg

from agent.engine import DecisionEngine
from agent.errors import ConfigurationError, GenerationFailure
from channels import whatsapp_handler
from database.queries import (
    add_message,
    flag_for_human,
    get_or_create_active_conversation,
    get_or_create_contact,
    get_recent_history,
    get_training_entries,
    get_whatsapp_number,
    touch_conversation,
    update_message_status,
)

logger = logging.getLogger("worker.processor")

REASON_GENERATION_FAILED = "ai_generation_failed"
REASON_DELIVERY_FAILED = "whatsapp_delivery_failed"


class MessageProcessor:
    """Processes inbound WhatsApp messages through the decision engine.

    Usage:
      processor = MessageProcessor(pool, engine)
      for message in whatsapp_handler.extract_messages(payload):
          await processor.handle_message(message)

    The engine is only needed for handle_message(); status-only payloads
    can use MessageProcessor(pool).
    """

    def __init__(self, pool: asyncpg.Pool, engine: Optional[DecisionEngine] = None):
        self._pool = pool
        self._engine = engine

    @property
    def history_limit(self) -> int:
        return self._engine.config.history_window_size

    async def handle_message(self, message: dict) -> Optional[str]:
        """Process one normalized inbound message.

        Returns:
            "sent", "escalated", or None when the message was skipped.

        Raises:
            ConfigurationError: the engine cannot reach the provider at all.
        """
        if self._engine is None:
            raise ConfigurationError("MessageProcessor has no decision engine")

        start_time = time.time()
        pool = self._pool

        number = await get_whatsapp_number(pool, message.get("display_phone_number", ""))
        if not number:
            logger.info(
                f"WhatsApp number {message.get('display_phone_number')!r} not registered — skipping"
            )
            return None

        organization_id = number["organization_id"]
        contact = await get_or_create_contact(pool, organization_id, message["from"])
        conversation = await get_or_create_active_conversation(
            pool, organization_id, number["id"], contact["id"]
        )
        conversation_id = conversation["id"]

        content = message.get("content", "")
        stored = await add_message(
            pool,
            conversation_id,
            sender_type="customer",
            sender_id=message["from"],
            content=content,
            message_type=message.get("message_type", "text"),
            metadata={
                "whatsapp_message_id": message.get("channel_message_id"),
                "timestamp": message.get("timestamp"),
            },
        )
        await touch_conversation(pool, conversation_id)

        if not content:
            logger.info(f"No text in message {message.get('channel_message_id')} — no AI reply")
            return None

        entries = await get_training_entries(pool, organization_id)
        history = await get_recent_history(
            pool,
            conversation_id,
            limit=self.history_limit,
            exclude_message_id=stored["id"] if stored else None,
        )

        try:
            result = await self._engine.decide(content, entries, history)
        except GenerationFailure as e:
            logger.error(
                f"AI generation failed for conversation {conversation_id} ({e.cause}): {e}"
            )
            await flag_for_human(pool, conversation_id, [REASON_GENERATION_FAILED])
            return "escalated"

        if result.should_escalate:
            await flag_for_human(pool, conversation_id, result.escalation_reasons)
            outcome = "escalated"
        else:
            delivery = await whatsapp_handler.send_message(
                message.get("phone_number_id") or number.get("phone_number_id", ""),
                message["from"],
                result.content,
            )
            await add_message(
                pool,
                conversation_id,
                sender_type="ai",
                content=result.content,
                metadata={
                    "whatsapp_message_id": delivery.get("channel_message_id"),
                    "status": delivery.get("delivery_status"),
                    "category": result.category,
                },
                is_ai_generated=True,
                ai_confidence=result.confidence,
            )
            await touch_conversation(pool, conversation_id)
            if delivery.get("delivery_status") == "failed":
                logger.error(
                    f"WhatsApp delivery failed for conversation {conversation_id}: "
                    f"{delivery.get('error')}"
                )
                await flag_for_human(pool, conversation_id, [REASON_DELIVERY_FAILED])
                outcome = "escalated"
            else:
                outcome = "sent"

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Processed WhatsApp message: conversation={conversation_id}, "
            f"outcome={outcome}, confidence={result.confidence:.2f}, latency_ms={latency_ms}"
        )
        return outcome

    async def handle_status(self, status: dict) -> None:
        """Record a delivery status callback."""
        await update_message_status(
            self._pool,
            status["channel_message_id"],
            status["status"],
            status.get("timestamp", ""),
        )
