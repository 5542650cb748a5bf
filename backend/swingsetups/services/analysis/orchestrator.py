"""
Pipeline Orchestrator

Entry point for analysis requests:
    Quota -> Claim -> (cached | inProgress | fresh pipeline run)

A fresh run:
    Market Data -> News -> Sentiment -> Preflight -> Skeleton -> Finalize -> Scoring -> Save

RULES:
- Exactly one pipeline run per (instrument_key, analysis_type) at a time
- Every run ends in completed or failed; nothing is left in_progress
- SchemaViolationError at a stage => that stage's labeled fallback (applied here only)
- ExternalServiceError / InsufficientDataError => failed with the cause, retryable later
- Ledger and notification writes are best-effort and never fail the request
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from swingsetups.core.config import settings
from swingsetups.core.market_hours import compute_valid_until, get_ist_now
from swingsetups.db.database import utc_now
from swingsetups.schemas.analysis import (
    AnalysisRecord,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisStatus,
    NotificationPolicy,
    PipelineConfig,
    RequestOptions,
    ResponseStatus,
)
from swingsetups.schemas.market import AnalysisType, MarketPayload
from swingsetups.schemas.stages import FinalResult, StageUsage
from swingsetups.schemas.strategy import SentimentContext
from swingsetups.services.analysis.repository import AnalysisRepository, get_analysis_repository
from swingsetups.services.base import (
    BaseService,
    InsufficientDataError,
    SchemaViolationError,
    ServiceError,
)
from swingsetups.services.llm.client import CompletionClient, get_completion_client
from swingsetups.services.market_data.service import MarketDataService, get_market_data_service
from swingsetups.services.news.service import NewsService, get_news_service, news_query
from swingsetups.services.notifications.dispatcher import (
    NotificationDispatcher,
    fire_and_forget,
    get_dispatcher,
)
from swingsetups.services.pipeline import (
    StagePipeline,
    apply_score,
    finalize_fallback,
    insufficient_result,
    preflight_fallback,
    skeleton_fallback,
)
from swingsetups.services.quota.guard import QuotaGuard, get_quota_guard
from swingsetups.services.usage.ledger import UsageLedger, get_usage_ledger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (label, rough seconds) per progress step
PROGRESS_STEPS = [
    ("Fetching market data", 5),
    ("Fetching news", 3),
    ("Analyzing sentiment", 4),
    ("Preflight market review", 15),
    ("Building strategy skeleton", 20),
    ("Finalizing strategy", 25),
    ("Scoring strategy", 1),
    ("Saving analysis", 1),
]
TOTAL_STEPS = len(PROGRESS_STEPS)


class ProgressReporter:
    """Writes progress for one record. Steps are awaited in order, so updates land in order."""

    def __init__(self, repository: AnalysisRepository, record_id: str, key: str):
        self._repository = repository
        self._record_id = record_id
        self._key = key

    async def start(self, step: int) -> None:
        label, _ = PROGRESS_STEPS[step - 1]
        remaining = sum(seconds for _, seconds in PROGRESS_STEPS[step - 1:])
        logger.info(f"[progress] {self._key}: step {step}/{TOTAL_STEPS} {label}")
        await self._repository.update_progress(
            self._record_id,
            steps_completed=step - 1,
            step=label,
            total_steps=TOTAL_STEPS,
            estimated_time_remaining=remaining,
        )


class AnalysisOrchestrator(BaseService[AnalysisRequest, AnalysisResponse]):
    """
    Pipeline Orchestrator.

    The only writer of AnalysisRecord. All collaborators are injectable and
    lazily default to the process singletons.
    """

    def __init__(
        self,
        repository: Optional[AnalysisRepository] = None,
        market_data: Optional[MarketDataService] = None,
        news: Optional[NewsService] = None,
        completion_client: Optional[CompletionClient] = None,
        quota: Optional[QuotaGuard] = None,
        ledger: Optional[UsageLedger] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self._repository = repository
        self._market_data = market_data
        self._news = news
        self._completion_client = completion_client
        self._quota = quota
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._background: set[asyncio.Task] = set()

    @property
    def repository(self) -> AnalysisRepository:
        if self._repository is None:
            self._repository = get_analysis_repository()
        return self._repository

    @property
    def market_data(self) -> MarketDataService:
        if self._market_data is None:
            self._market_data = get_market_data_service()
        return self._market_data

    @property
    def news(self) -> NewsService:
        if self._news is None:
            self._news = get_news_service()
        return self._news

    @property
    def completion_client(self) -> CompletionClient:
        if self._completion_client is None:
            self._completion_client = get_completion_client()
        return self._completion_client

    @property
    def quota(self) -> QuotaGuard:
        if self._quota is None:
            self._quota = get_quota_guard()
        return self._quota

    @property
    def ledger(self) -> UsageLedger:
        if self._ledger is None:
            self._ledger = get_usage_ledger()
        return self._ledger

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_dispatcher()
        return self._dispatcher

    @property
    def name(self) -> str:
        return "AnalysisOrchestrator"

    async def execute(self, input_data: AnalysisRequest) -> AnalysisResponse:
        return await self.request_analysis(
            instrument_key=input_data.instrument_key,
            stock_name=input_data.stock_name,
            stock_symbol=input_data.stock_symbol,
            analysis_type=input_data.analysis_type,
            user_id=input_data.user_id,
            current_price=input_data.current_price,
            options=RequestOptions(
                background=input_data.background,
                sector=input_data.sector,
                notification=NotificationPolicy(
                    notify_on_complete=input_data.notify,
                    scheduled_release_time=input_data.scheduled_release_time,
                ),
            ),
        )

    async def health_check(self) -> bool:
        return await self.completion_client.health_check()

    # =========================================================================
    # CONFIG
    # =========================================================================

    async def pipeline_config_for(self, user_id: str, analysis_type: AnalysisType) -> PipelineConfig:
        plan, _ = await self.quota.get_plan(user_id)
        model = (
            settings.analysis_model_advanced
            if plan in settings.advanced_plans
            else settings.analysis_model_basic
        )
        return PipelineConfig(
            analysis_type=analysis_type,
            analysis_model=model,
            sentiment_model=settings.sentiment_model,
            llm_timeout_seconds=settings.llm_timeout_seconds,
            market_data_timeout_seconds=settings.market_data_timeout_seconds,
            news_timeout_seconds=settings.news_timeout_seconds,
            risk_budget_inr=settings.risk_budget_inr,
            alternative_risk_budgets_inr=tuple(settings.alternative_risk_budgets_inr),
            min_risk_reward=settings.min_risk_reward,
            max_tokens=settings.llm_max_tokens,
        )

    # =========================================================================
    # REQUESTS
    # =========================================================================

    async def request_analysis(
        self,
        instrument_key: str,
        stock_name: str,
        stock_symbol: str,
        analysis_type: AnalysisType,
        user_id: str,
        current_price: Optional[float] = None,
        options: Optional[RequestOptions] = None,
    ) -> AnalysisResponse:
        """
        Resolve an analysis request.

        Raises:
            QuotaExceededError: user already analyzed their plan's number of symbols this window
        """
        options = options or RequestOptions()
        stock_symbol = stock_symbol.strip().upper()
        key = f"{instrument_key}:{analysis_type.value}"

        await self.quota.consume(user_id, stock_symbol)

        status, record = await self.repository.claim(
            instrument_key=instrument_key,
            analysis_type=analysis_type,
            stock_symbol=stock_symbol,
            stock_name=stock_name,
            current_price=current_price,
            requested_by=user_id,
            scheduled_release_time=options.notification.scheduled_release_time,
        )

        if status == ResponseStatus.CACHED:
            await self._best_effort(self.ledger.record_cached_access(user_id, record), "ledger", key)
            return AnalysisResponse(success=True, status=status, cached=True, data=record)

        if status == ResponseStatus.IN_PROGRESS:
            return AnalysisResponse(success=True, status=status, inProgress=True, data=record)

        config = await self.pipeline_config_for(user_id, analysis_type)
        run = self._run_pipeline(record, config, user_id, current_price, options)

        if options.background:
            task = asyncio.create_task(run)
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return AnalysisResponse(success=True, status=status, data=record)

        final = await run
        if final.status == AnalysisStatus.FAILED:
            return AnalysisResponse(
                success=False,
                status=status,
                data=final,
                error=final.error_message,
                errorCode=final.error_code,
            )
        return AnalysisResponse(success=True, status=status, data=final)

    async def get_analysis_status(
        self, instrument_key: str, analysis_type: AnalysisType
    ) -> Optional[AnalysisRecord]:
        return await self.repository.find_live(instrument_key, analysis_type)

    async def drain(self) -> None:
        """Wait for background runs (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _with_fallback(
        self,
        stage: str,
        key: str,
        run: Callable[[], Awaitable[T]],
        fallback: Callable[[str], T],
    ) -> T:
        """The single fallback policy: schema violations get the stage's labeled fallback."""
        try:
            return await run()
        except SchemaViolationError as e:
            logger.warning(f"[{stage}] {key}: schema violation ({e.message}); using fallback")
            return fallback(e.message)

    async def _run_pipeline(
        self,
        record: AnalysisRecord,
        config: PipelineConfig,
        user_id: str,
        current_price: Optional[float],
        options: RequestOptions,
    ) -> AnalysisRecord:
        key = record.key
        progress = ProgressReporter(self.repository, record.id, key)
        pipeline = StagePipeline(self.completion_client)
        usage: list[StageUsage] = []
        stage = "market_data"
        sector_context = f"Sector: {options.sector}" if options.sector else ""
        horizon = config.analysis_type.value

        logger.info(f"Starting analysis pipeline for {key} (model={config.analysis_model})")
        try:
            await progress.start(1)
            payload = await self.market_data.build_payload(
                instrument_key=record.instrument_key,
                symbol=record.stock_symbol,
                analysis_type=config.analysis_type,
                current_price=current_price,
                sector=options.sector,
                timeout=config.market_data_timeout_seconds,
            )

            stage = "news"
            await progress.start(2)
            sentiment = await self.news.cached_sentiment(record.stock_symbol, horizon)
            headlines: list[str] = []
            if sentiment is None:
                headlines = await self.news.fetch_news(news_query(record.stock_symbol, record.stock_name))

            stage = "sentiment"
            await progress.start(3)
            if sentiment is None:
                sentiment, sentiment_usage = await self.news.classify_sentiment(
                    record.stock_symbol,
                    headlines,
                    horizon,
                    model=config.sentiment_model,
                    timeout=config.news_timeout_seconds,
                )
                if sentiment_usage is not None:
                    usage.append(sentiment_usage)
                    await self.news.store_sentiment(record.stock_symbol, horizon, sentiment)

            stage = "preflight"
            await progress.start(4)
            preflight = await self._with_fallback(
                stage,
                key,
                lambda: pipeline.preflight(payload, sector_context, config, usage),
                lambda reason: preflight_fallback(payload, reason),
            )
            if preflight.insufficientData:
                final = insufficient_result(preflight)
                raise InsufficientDataError(
                    self.name,
                    f"Insufficient market data: missing {', '.join(preflight.data_health.missing)}",
                    details={"analysis_data": final.model_dump(mode="json")},
                    stage=stage,
                    key=key,
                )

            stage = "skeleton"
            await progress.start(5)
            skeleton = await self._with_fallback(
                stage,
                key,
                lambda: pipeline.skeleton(payload, preflight, config, usage),
                skeleton_fallback,
            )

            stage = "finalize"
            await progress.start(6)
            strategy_id = f"{record.stock_symbol}-{horizon}-{record.id[:8]}"
            today = get_ist_now().date()
            final = await self._with_fallback(
                stage,
                key,
                lambda: pipeline.finalize(
                    payload, preflight, skeleton, sentiment, sector_context, config, usage, strategy_id, today
                ),
                lambda reason: finalize_fallback(
                    payload, preflight, skeleton, sentiment, config, strategy_id, today, reason
                ),
            )

            stage = "scoring"
            await progress.start(7)
            final = apply_score(final, payload, sentiment)

            stage = "saving"
            await progress.start(8)
            completed = await self.repository.mark_completed(
                record.id,
                analysis_data=self._analysis_data(final, payload, sentiment),
                valid_until=compute_valid_until(utc_now()),
                total_steps=TOTAL_STEPS,
            )
        except ServiceError as e:
            # InsufficientDataError, ExternalServiceError, ValidationError
            return await self._fail(record, user_id, options.notification, usage, e, stage)
        except Exception as e:
            logger.exception(f"[{stage}] {key}: unexpected error")
            error = ServiceError(self.name, f"Internal error: {e}", stage=stage, key=key)
            return await self._fail(record, user_id, options.notification, usage, error, stage)

        strategy = final.strategy
        logger.info(
            f"Pipeline complete for {key}: {strategy.type.value if strategy else 'none'} "
            f"score={strategy.score if strategy else None} fallback={final.fallback}"
        )
        await self._best_effort(self.ledger.record_computation(user_id, completed, usage), "ledger", key)
        if options.notification.notify_on_complete:
            fire_and_forget(
                self.dispatcher,
                user_id,
                completed,
                release_at=options.notification.scheduled_release_time,
            )
        return completed

    @staticmethod
    def _analysis_data(final: FinalResult, payload: MarketPayload, sentiment: SentimentContext) -> dict:
        data = final.model_dump(mode="json")
        data["sentiment"] = sentiment.model_dump(mode="json")
        data["missing_frames"] = list(payload.missing_frames)
        return data

    async def _fail(
        self,
        record: AnalysisRecord,
        user_id: str,
        policy: NotificationPolicy,
        usage: list[StageUsage],
        error: ServiceError,
        stage: str,
    ) -> AnalysisRecord:
        analysis_data = error.details.pop("analysis_data", None)
        logger.warning(f"[{error.stage or stage}] {record.key}: analysis failed ({error.error_code}): {error.message}")
        failed = await self.repository.mark_failed(
            record.id,
            message=error.message,
            error_code=error.error_code,
            analysis_data=analysis_data,
        )
        if usage:
            await self._best_effort(self.ledger.record_computation(user_id, failed, usage), "ledger", record.key)
        if policy.notify_on_failure:
            fire_and_forget(self.dispatcher, user_id, failed, failed=True)
        return failed

    @staticmethod
    async def _best_effort(operation: Awaitable, what: str, key: str) -> None:
        try:
            await operation
        except Exception as e:
            logger.warning(f"[{what}] {key}: best-effort write failed: {e}")


# Singleton instance
_orchestrator: Optional[AnalysisOrchestrator] = None


def get_orchestrator() -> AnalysisOrchestrator:
    """Get the orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AnalysisOrchestrator()
    return _orchestrator
