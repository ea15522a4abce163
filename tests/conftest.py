"""
Shared Test Fixtures — Atendos AI Decision Engine
==================================================
Provides reusable fixtures for all test modules.

Usage:
  pytest tests/ -v
"""

from __future__ import annotations

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Ensure the project packages are importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agent.config import EngineConfig  # noqa: E402
from agent.models import ConversationTurn, TrainingEntry  # noqa: E402
from fakes import LONG_REPLY, FakeProvider  # noqa: E402


# ── Engine Fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def fake_provider():
    """Provider that answers with a confident 120+ character reply."""
    return FakeProvider(reply=LONG_REPLY)


@pytest.fixture
def engine_config():
    """Minimal valid EngineConfig."""
    return EngineConfig(provider_api_key="sk-test")


# ── Knowledge Base Fixtures ──────────────────────────────────────────────


@pytest.fixture
def training_entries():
    """Three trained Q&A pairs for a small store."""
    return [
        TrainingEntry(
            category="Horário",
            question="qual o horário de funcionamento da loja",
            answer="Segunda a sexta, das 8h às 18h.",
        ),
        TrainingEntry(
            category="Entrega",
            question="quanto tempo demora a entrega",
            answer="De 3 a 5 dias úteis.",
            context="Frete grátis acima de R$ 200.",
        ),
        TrainingEntry(
            category="Pagamento",
            question="quais formas de pagamento vocês aceitam",
            answer="Pix, boleto e cartão de crédito.",
        ),
    ]


@pytest.fixture
def conversation_history():
    """Short prior exchange, oldest first."""
    return [
        ConversationTurn(role="customer", content="Oi, tudo bem?"),
        ConversationTurn(role="assistant", content="Olá! Como posso ajudar?"),
    ]


# ── WhatsApp Webhook Fixtures ───────────────────────────────────────────


@pytest.fixture
def whatsapp_message_payload():
    """Cloud API webhook carrying one inbound text message."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA-001",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "5511999990000",
                                "phone_number_id": "PNID-001",
                            },
                            "contacts": [{"profile": {"name": "Maria"}, "wa_id": "5511988887777"}],
                            "messages": [
                                {
                                    "from": "5511988887777",
                                    "id": "wamid.IN001",
                                    "timestamp": "1736940000",
                                    "type": "text",
                                    "text": {"body": "  qual o horário de funcionamento da loja  "},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def whatsapp_status_payload():
    """Cloud API webhook carrying one delivery status update."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA-001",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "5511999990000",
                                "phone_number_id": "PNID-001",
                            },
                            "statuses": [
                                {
                                    "id": "wamid.OUT001",
                                    "status": "delivered",
                                    "timestamp": "1736940100",
                                    "recipient_id": "5511988887777",
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def normalized_whatsapp_message():
    """Output of extract_messages() for whatsapp_message_payload."""
    return {
        "channel": "whatsapp",
        "channel_message_id": "wamid.IN001",
        "from": "5511988887777",
        "content": "qual o horário de funcionamento da loja",
        "message_type": "text",
        "timestamp": "1736940000",
        "display_phone_number": "5511999990000",
        "phone_number_id": "PNID-001",
    }


# ── FastAPI Test Client ──────────────────────────────────────────────────


@pytest.fixture
def test_client():
    """FastAPI TestClient with a mocked DB pool and no engine built yet."""
    from fastapi.testclient import TestClient

    mock_pool = MagicMock()
    mock_pool.acquire = MagicMock(return_value=AsyncMock())

    with patch("api.main.asyncpg") as mock_asyncpg:
        mock_asyncpg.create_pool = AsyncMock(return_value=mock_pool)

        from api.main import app
        app.state.db_pool = mock_pool
        app.state.engine = None
        client = TestClient(app)
        yield client

        app.state.db_pool = None
        app.state.engine = None
