"""
Atendos — Database Query Functions
===================================
Async database operations (asyncpg) for the channel adapters: the
knowledge-base store, conversation/message persistence and the
escalation sink the decision engine relies on.

All functions accept a connection pool (asyncpg.Pool) and return plain
dicts / pydantic models:

    from database.queries import get_training_entries
    pool = app.state.db_pool
    entries = await get_training_entries(pool, organization_id)

Tables referenced (owned by the dashboard application):
  whatsapp_numbers, contacts, conversations, messages, ai_training_data
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import asyncpg

from agent.models import ConversationTurn, TrainingEntry

logger = logging.getLogger("database.queries")


# ── Helpers ────────────────────────────────────────────────────────────────


async def _fetchrow(pool: asyncpg.Pool, query: str, *args) -> Optional[dict]:
    """Execute a query and return a single row as a dict (or None)."""
    async with pool.acquire() as conn:
        row = await conn.fetchrow(query, *args)
        return dict(row) if row else None


async def _fetch(pool: asyncpg.Pool, query: str, *args) -> list[dict]:
    """Execute a query and return all rows as a list of dicts."""
    async with pool.acquire() as conn:
        rows = await conn.fetch(query, *args)
        return [dict(r) for r in rows]


async def _execute(pool: asyncpg.Pool, query: str, *args) -> str:
    """Execute a query and return the status string."""
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


# ── 1. Channel Numbers & Contacts ─────────────────────────────────────────


async def get_whatsapp_number(
    pool: asyncpg.Pool,
    display_phone_number: str,
) -> Optional[dict]:
    """Find the tenant's WhatsApp number that received a webhook.

    Returns: dict with id, organization_id, phone_number, ... or None.
    """
    return await _fetchrow(
        pool,
        "SELECT * FROM whatsapp_numbers WHERE phone_number = $1",
        display_phone_number,
    )


async def get_or_create_contact(
    pool: asyncpg.Pool,
    organization_id: Any,
    phone_number: str,
) -> dict:
    """Find a contact by phone within an organization, or create one.

    Existing contacts get last_contact refreshed. New contacts are named
    after their phone number until an operator renames them.
    """
    row = await _fetchrow(
        pool,
        """
        SELECT * FROM contacts
        WHERE phone_number = $1 AND organization_id = $2
        """,
        phone_number,
        organization_id,
    )
    if row:
        await _execute(
            pool,
            "UPDATE contacts SET last_contact = NOW() WHERE id = $1",
            row["id"],
        )
        return row

    return await _fetchrow(
        pool,
        """
        INSERT INTO contacts (organization_id, phone_number, name, status, last_contact)
        VALUES ($1, $2, $2, 'active', NOW())
        RETURNING *
        """,
        organization_id,
        phone_number,
    )


# ── 2. Conversations ──────────────────────────────────────────────────────


async def get_or_create_active_conversation(
    pool: asyncpg.Pool,
    organization_id: Any,
    whatsapp_number_id: Any,
    contact_id: Any,
) -> dict:
    """Reuse the contact's active conversation on this number, or open one."""
    row = await _fetchrow(
        pool,
        """
        SELECT * FROM conversations
        WHERE contact_id = $1 AND whatsapp_number_id = $2 AND status = 'active'
        ORDER BY last_message_at DESC
        LIMIT 1
        """,
        contact_id,
        whatsapp_number_id,
    )
    if row:
        return row

    return await _fetchrow(
        pool,
        """
        INSERT INTO conversations (
            organization_id, whatsapp_number_id, contact_id, status, last_message_at
        )
        VALUES ($1, $2, $3, 'active', NOW())
        RETURNING *
        """,
        organization_id,
        whatsapp_number_id,
        contact_id,
    )


async def touch_conversation(pool: asyncpg.Pool, conversation_id: Any) -> None:
    """Bump last_message_at after a new message."""
    await _execute(
        pool,
        "UPDATE conversations SET last_message_at = NOW() WHERE id = $1",
        conversation_id,
    )


async def flag_for_human(
    pool: asyncpg.Pool,
    conversation_id: Any,
    reasons: list[str],
) -> None:
    """Escalation sink: hand the conversation to a human operator.

    Sets status to 'pending' (the operators' pickup queue) and records why
    in metadata.escalation_reason.
    """
    metadata = {
        "escalation_reason": reasons[0] if reasons else "ai_confidence_low",
        "escalation_reasons": reasons,
    }
    await _execute(
        pool,
        """
        UPDATE conversations
        SET status = 'pending',
            metadata = COALESCE(metadata, '{}'::jsonb) || $2::jsonb
        WHERE id = $1
        """,
        conversation_id,
        json.dumps(metadata),
    )
    logger.info(f"Conversation {conversation_id} flagged for human pickup: {reasons}")


# ── 3. Messages ───────────────────────────────────────────────────────────


async def add_message(
    pool: asyncpg.Pool,
    conversation_id: Any,
    sender_type: str,
    content: str,
    message_type: str = "text",
    sender_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    is_ai_generated: bool = False,
    ai_confidence: Optional[float] = None,
) -> dict:
    """Store a message in a conversation.

    Args:
        conversation_id: Parent conversation
        sender_type: 'customer', 'ai' or 'agent'
        content: Message text
        message_type: WhatsApp message type ('text', 'image', ...)
        sender_id: Channel-side sender (customer phone for inbound)
        metadata: e.g. {"whatsapp_message_id": ..., "timestamp": ...}
        is_ai_generated: True for decision-engine replies
        ai_confidence: Engine confidence for AI replies

    Returns: dict with the new message row.
    """
    return await _fetchrow(
        pool,
        """
        INSERT INTO messages (
            conversation_id, sender_type, sender_id, content, message_type,
            metadata, is_ai_generated, ai_confidence
        )
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
        RETURNING *
        """,
        conversation_id,
        sender_type,
        sender_id,
        content,
        message_type,
        json.dumps(metadata or {}),
        is_ai_generated,
        ai_confidence,
    )


async def update_message_status(
    pool: asyncpg.Pool,
    whatsapp_message_id: str,
    status: str,
    status_timestamp: str = "",
) -> str:
    """Record a delivery status update for a sent WhatsApp message."""
    return await _execute(
        pool,
        """
        UPDATE messages
        SET metadata = COALESCE(metadata, '{}'::jsonb) || $2::jsonb
        WHERE metadata->>'whatsapp_message_id' = $1
        """,
        whatsapp_message_id,
        json.dumps({"status": status, "status_timestamp": status_timestamp}),
    )


def _row_to_turn(row: dict) -> ConversationTurn:
    role = "customer" if row.get("sender_type") == "customer" else "assistant"
    return ConversationTurn(role=role, content=row.get("content") or "")


async def get_recent_history(
    pool: asyncpg.Pool,
    conversation_id: Any,
    limit: int = 10,
    exclude_message_id: Any = None,
) -> list[ConversationTurn]:
    """The last `limit` messages of a conversation as turns, oldest first.

    Args:
        exclude_message_id: Skip this message (the inbound one just stored,
            which the engine receives separately as the new message).
    """
    if limit <= 0:
        return []

    rows = await _fetch(
        pool,
        """
        SELECT sender_type, content FROM messages
        WHERE conversation_id = $1
          AND ($2::uuid IS NULL OR id <> $2::uuid)
          AND content IS NOT NULL AND content <> ''
        ORDER BY created_at DESC
        LIMIT $3
        """,
        conversation_id,
        exclude_message_id,
        limit,
    )
    return [_row_to_turn(r) for r in reversed(rows)]


# ── 4. Knowledge Base ─────────────────────────────────────────────────────


async def get_training_entries(
    pool: asyncpg.Pool,
    organization_id: Any,
) -> list[TrainingEntry]:
    """All active trained Q&A pairs for an organization, in creation order.

    Rows with a blank category/question/answer are skipped with a warning
    instead of failing the whole batch.
    """
    rows = await _fetch(
        pool,
        """
        SELECT category, question, answer, context FROM ai_training_data
        WHERE organization_id = $1 AND is_active = true
        ORDER BY created_at ASC
        """,
        organization_id,
    )

    entries = []
    for row in rows:
        if not all((row.get(k) or "").strip() for k in ("category", "question", "answer")):
            logger.warning(f"Skipping incomplete training entry for organization {organization_id}")
            continue
        entries.append(TrainingEntry(**row))
    return entries
