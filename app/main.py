"""Application wiring for the categorizer."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager

from app.agents.topic_planner import TopicPlannerAgent
from app.config import Settings, settings
from app.core.database import close_db, get_engine, get_session_maker, init_db
from app.core.logging import setup_logging
from app.core.redis import close_redis, get_redis_client, redis_available
from app.integrations.slack_history import SlackHistoryClient
from app.integrations.weaviate_search import WeaviateSearchClient
from app.persistence.contracts import HistoryProvider, SearchService, TopicStore
from app.persistence.sql_topic_store import SqlTopicStore
from app.services.categorization.apply import DecisionApplier, TopicWriteLocks
from app.services.categorization.context import ContextGatherer
from app.services.categorization.decision_loop import DecisionLoop
from app.services.categorization.planner import Planner
from app.services.categorization.retrieval import TopicRetriever
from app.services.conversation_state import (
    ConversationStateStore,
    ConversationTracker,
    InMemoryConversationStateStore,
    RedisConversationStateStore,
)

logger = logging.getLogger(__name__)


def build_decision_loop(
    *,
    planner: Planner,
    search: SearchService,
    store: TopicStore,
    history: HistoryProvider | None = None,
    tracker: ConversationTracker | None = None,
    locks: TopicWriteLocks | None = None,
    config: Settings = settings,
) -> DecisionLoop:
    """Wire a decision loop from its collaborators."""
    tracker = tracker or ConversationTracker(activity_limit=config.conversation_recent_activity_limit)
    return DecisionLoop(
        planner=planner,
        retriever=TopicRetriever(search, store, config=config),
        context=ContextGatherer.from_settings(history, tracker, config),
        store=store,
        applier=DecisionApplier(
            store,
            tracker,
            locks=locks,
            timeout=config.apply_timeout_seconds,
        ),
        max_iterations=config.max_iterations,
        planner_timeout=config.planner_timeout_seconds,
        short_message_chars=config.short_message_chars,
        config=config,
    )


@asynccontextmanager
async def categorizer_lifespan(config: Settings = settings) -> AsyncGenerator[DecisionLoop, None]:
    """Production categorizer: Weaviate, Slack, Postgres, Redis and the LLM planner."""
    setup_logging()

    logger.info(
        "Starting TopicTriage",
        extra={
            "environment": config.environment,
            "version": config.app_version,
            "planner_model": config.planner_model,
            "strategies": config.retrieval_strategies,
        },
    )

    engine = get_engine(config)
    if config.environment == "development":
        await init_db(engine)
        logger.info("Development database initialized")

    async with AsyncExitStack() as stack:
        search = await stack.enter_async_context(WeaviateSearchClient.from_settings(config))
        history: HistoryProvider | None = None
        if config.slack_api_key:
            history = await stack.enter_async_context(SlackHistoryClient.from_settings(config))
        else:
            logger.warning("SLACK_API_KEY not set; context will not include channel history")

        state_store: ConversationStateStore
        redis = get_redis_client(config.redis_url)
        if await redis_available(redis):
            state_store = RedisConversationStateStore(
                redis, ttl_seconds=config.conversation_state_ttl_seconds
            )
        else:
            logger.warning("Redis unreachable; conversation state kept in process memory")
            state_store = InMemoryConversationStateStore(ttl_seconds=config.conversation_state_ttl_seconds)

        try:
            yield build_decision_loop(
                planner=TopicPlannerAgent(model_override=config.planner_model),
                search=search,
                store=SqlTopicStore(get_session_maker()),
                history=history,
                tracker=ConversationTracker(
                    state_store,
                    activity_limit=config.conversation_recent_activity_limit,
                ),
                config=config,
            )
        finally:
            logger.info("Shutting down TopicTriage")
            await close_redis()
            await close_db()
