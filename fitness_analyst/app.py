"""Application bootstrap.

Wires settings, logging, the HTTP and Supabase clients and the services
into one object a UI can drive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fitness_analyst.core.completions import CompletionClient
from fitness_analyst.core.config import Settings, get_settings
from fitness_analyst.core.logging_config import configure_logging
from fitness_analyst.core.resilience import ResilientRequestClient, RetryPolicy
from fitness_analyst.db.supabase import (
    SupabaseAuthProvider,
    SupabaseProfileStore,
    create_supabase_client,
)
from fitness_analyst.models.chat import ChatMessage
from fitness_analyst.services.chat import ConversationManager, new_history
from fitness_analyst.services.plan_generation import PlanGenerator
from fitness_analyst.services.profile_sync import ProfileSyncController
from fitness_analyst.services.status import StatusSlot

logger = logging.getLogger(__name__)


@dataclass
class FitnessAnalystApp:
    """Session-scoped services plus the in-memory chat history."""

    sync: ProfileSyncController
    conversation: ConversationManager
    requests: ResilientRequestClient
    history: list[ChatMessage] = field(default_factory=new_history)

    async def ask(self, user_text: str) -> list[ChatMessage]:
        """Send a chat message grounded in the current profile and plan."""
        return await self.conversation.ask(
            self.history, user_text, self.sync.profile, self.sync.plan
        )

    async def aclose(self) -> None:
        """Release the push subscription, auth listener and HTTP client."""
        await self.sync.close()
        await self.requests.aclose()


async def create_app(settings: Settings | None = None) -> FitnessAnalystApp:
    """Build and start the application.

    Raises:
        ValueError: If required secrets are missing.
        PersistenceError: If the Supabase client cannot be created.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    settings.validate_startup()

    requests = ResilientRequestClient(
        policy=RetryPolicy(max_attempts=settings.REQUEST_MAX_ATTEMPTS),
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
    completions = CompletionClient(requests, settings)

    client = await create_supabase_client(settings)
    sync = ProfileSyncController(
        SupabaseProfileStore(client, table=settings.PROFILES_TABLE),
        plan_generator=PlanGenerator(completions),
        status=StatusSlot(success_ttl=settings.SUCCESS_MESSAGE_TTL_SECONDS),
    )
    conversation = ConversationManager(
        completions, context_messages=settings.CHAT_CONTEXT_MESSAGES
    )

    await sync.attach(SupabaseAuthProvider(client))
    logger.info("Fitness analyst started", extra={"env": settings.APP_ENV})
    return FitnessAnalystApp(sync=sync, conversation=conversation, requests=requests)
