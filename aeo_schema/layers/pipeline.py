"""
Pipeline Layer for the AEO Schema Generator.
Orchestrates scrape -> generate -> validate -> score -> persist for one
request, plus refinement and sequential batch generation.
"""
import asyncio
import time
import traceback
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from aeo_schema.config import config
from aeo_schema.errors import (
    CreditConsumptionError,
    GenerationNotFoundError,
    InsufficientCreditsError,
    NoSchemasGeneratedError,
    PersistenceError,
    PipelineError,
    RefinementLimitError,
    SchemaValidationError,
    UrlUnreachableError,
)
from aeo_schema.generators.property_rules import sanitize_schemas
from aeo_schema.generators.quality_score import calculate_score
from aeo_schema.generators.refinement_guard import guard_refined_schema, summarize_removed
from aeo_schema.generators.schema_validator import SchemaValidator
from aeo_schema.layers.persistence import CreditLedger, GenerationStore, UrlLibrary, UsageTracker
from aeo_schema.models.content import PageMetadata
from aeo_schema.models.schema import (
    GenerationRecord,
    GenerationRequest,
    GenerationStage,
    GenerationStatus,
    JsonLdSchema,
    RefinementRequest,
    RefinementResult,
    SchemaEvaluation,
    SchemaGenerationResult,
    render_script_tags,
)
from aeo_schema.utils.logger import LayerLogger
from aeo_schema.utils.retry import RetryPolicy

BATCH_DELAY_SECONDS = 1.0
UNEXPECTED_ERROR_MESSAGE = "Something unexpected happened while generating your schemas. Please try again."


@dataclass(frozen=True)
class GenerationPolicy:
    """
    What the pipeline enforces.

    The service always runs the default strict policy. The relaxed variant
    exists for tests and local harnesses that construct it explicitly.
    """
    enforce_credits: bool = True
    require_valid_schemas: bool = True

    @classmethod
    def relaxed(cls) -> "GenerationPolicy":
        return cls(enforce_credits=False, require_valid_schemas=False)


def primary_type(schemas: List[JsonLdSchema]) -> Optional[str]:
    if not schemas:
        return None
    schema_type = schemas[0].get("@type")
    if isinstance(schema_type, list):
        return str(schema_type[0]) if schema_type else None
    return str(schema_type) if schema_type else None


def _stack_trace(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class _GenerationRun:
    """Mutable state of one in-flight generation."""

    def __init__(self, request: GenerationRequest):
        self.request = request
        self.started = time.monotonic()
        self.stage = GenerationStage.PENDING
        self.record: Optional[GenerationRecord] = None
        self.credits_consumed = 0
        self.paid_schemas: List[JsonLdSchema] = []
        self.suggestions: List[str] = []

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    @property
    def generation_id(self) -> Optional[str]:
        return self.record.id if self.record else None

    def request_context(self) -> Dict[str, Any]:
        return {
            "ip_address": self.request.ip_address,
            "user_agent": self.request.user_agent,
            "options": self.request.options.model_dump(),
        }


class SchemaPipeline:
    """
    Pipeline orchestrator.

    States: pending -> scraping -> generating -> validating -> scored ->
    persisted, or failed from any of them. Credits are only charged once a
    usable schema exists and are refunded if anything fails afterwards.
    """

    def __init__(
        self,
        scraper: Any,
        ai_client: Any,
        store: GenerationStore,
        ledger: CreditLedger,
        usage: UsageTracker,
        url_library: UrlLibrary,
        validator: Optional[SchemaValidator] = None,
        policy: Optional[GenerationPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        credits_per_generation: Optional[int] = None,
        max_refinements: Optional[int] = None,
        batch_delay: float = BATCH_DELAY_SECONDS,
    ):
        self.scraper = scraper
        self.ai_client = ai_client
        self.store = store
        self.ledger = ledger
        self.usage = usage
        self.url_library = url_library
        self.validator = validator or SchemaValidator()
        self.policy = policy or GenerationPolicy()
        self.retry_policy = retry_policy or RetryPolicy(name="persist_generation")
        self.credits_per_generation = (
            credits_per_generation if credits_per_generation is not None else config.CREDITS_PER_GENERATION
        )
        self.max_refinements = max_refinements if max_refinements is not None else config.MAX_REFINEMENTS
        self.batch_delay = batch_delay
        self.logger = LayerLogger("pipeline")

    @property
    def provider(self) -> Optional[str]:
        return getattr(self.ai_client, "provider", None)

    def _advance(self, run: _GenerationRun, stage: GenerationStage) -> None:
        self.logger.log_stage(run.stage.value, stage.value, generation_id=run.generation_id, url=run.request.url)
        run.stage = stage

    async def generate(self, request: GenerationRequest) -> SchemaGenerationResult:
        """Run one generation; failures come back as unsuccessful results."""
        run = _GenerationRun(request)
        self.logger.log_action(
            "generate", "started",
            url=request.url, user_id=request.user_id,
            enforce_credits=self.policy.enforce_credits,
        )
        try:
            return await self._generate(run)
        except PipelineError as e:
            return await self._fail(run, e)
        except Exception as e:
            self.logger.log_error(str(e), error_type=type(e).__name__, stack_trace=_stack_trace(e))
            wrapped = PipelineError(UNEXPECTED_ERROR_MESSAGE)
            wrapped.__cause__ = e
            return await self._fail(run, wrapped, original=e)

    async def _generate(self, run: _GenerationRun) -> SchemaGenerationResult:
        request, cost = run.request, self.credits_per_generation

        if not await self.scraper.validate_url(request.url):
            raise UrlUnreachableError(
                "We couldn't reach that URL. Please check the address and make sure the page is public."
            )

        if self.policy.enforce_credits:
            balance = await self.ledger.get_balance(request.user_id)
            if balance < cost:
                raise InsufficientCreditsError(
                    "You don't have enough credits to generate schemas. Please purchase more credits.",
                    balance=balance,
                )

        run.record = await self.store.create(
            request.user_id,
            request.url,
            status=GenerationStatus.PROCESSING,
            credits_cost=cost,
            schema_type=request.options.schema_type,
            ai_model_provider=self.provider,
            request_context=run.request_context(),
        )
        await self.usage.track(request.user_id, "schema_generation_started", url=request.url, generation_id=run.generation_id)

        self._advance(run, GenerationStage.SCRAPING)
        analysis = await self.scraper.scrape_url(request.url, request.options)
        run.suggestions = list(analysis.metadata.content_quality_suggestions)

        self._advance(run, GenerationStage.GENERATING)
        candidates = await self.ai_client.generate_schemas(analysis, request.options)
        if not candidates:
            raise NoSchemasGeneratedError(
                "We couldn't generate any schemas for this page. Try a page with more content.",
                retryable=True,
            )

        self._advance(run, GenerationStage.VALIDATING)
        sanitized, removals = sanitize_schemas(candidates)
        validation_results = self.validator.validate_many(sanitized)
        schemas = [schema for schema, result in zip(sanitized, validation_results) if result.is_valid]
        if not schemas:
            if self.policy.require_valid_schemas:
                raise SchemaValidationError(
                    "The generated schemas did not pass validation. Please try again.",
                    errors=[
                        {"schema_index": index, "errors": [issue.model_dump() for issue in result.errors]}
                        for index, result in enumerate(validation_results)
                    ],
                )
            self.logger.log_decision("keep_invalid_schemas", "validation not required by policy", url=request.url)
            schemas = sanitized

        if self.policy.enforce_credits:
            await self._consume_credits(run, cost)

        score = calculate_score(schemas)
        self._advance(run, GenerationStage.SCORED)

        run.paid_schemas = schemas
        processing_time_ms = run.elapsed_ms
        try:
            await self.retry_policy.call(
                self.store.update,
                run.generation_id,
                status=GenerationStatus.SUCCESS,
                schemas=schemas,
                schema_score=score.overall_score,
                schema_type=primary_type(schemas),
                processing_time_ms=processing_time_ms,
                credits_cost=run.credits_consumed,
                original_metadata=analysis.metadata.model_dump(mode="json"),
            )
        except Exception as e:
            raise PersistenceError(
                "Your schemas were generated but we couldn't save them. Your credit has been refunded.",
                retryable=True,
            ) from e

        await self._link_library(run)
        self._advance(run, GenerationStage.PERSISTED)
        await self.usage.track(
            request.user_id, "schema_generation_completed",
            url=request.url, generation_id=run.generation_id, score=score.overall_score,
        )

        self.logger.log_action(
            "generate", "completed",
            url=request.url, generation_id=run.generation_id,
            schema_count=len(schemas), score=score.overall_score, processing_time_ms=processing_time_ms,
        )
        return SchemaGenerationResult(
            success=True,
            url=request.url,
            schemas=schemas,
            html_output=render_script_tags(schemas),
            validation_results=validation_results,
            sanitization=removals,
            score=score,
            generation_id=run.generation_id,
            processing_time_ms=processing_time_ms,
            credits_used=run.credits_consumed,
            content_quality_suggestions=run.suggestions,
        )

    async def _consume_credits(self, run: _GenerationRun, cost: int) -> None:
        request = run.request
        try:
            consumed = await self.ledger.consume_credits_atomic(
                request.user_id, cost, f"Schema generation for {request.url}"
            )
        except Exception as e:
            raise CreditConsumptionError(
                "We couldn't process credits for this generation. You have not been charged.",
                retryable=True,
            ) from e
        if not consumed:
            raise InsufficientCreditsError(
                "We couldn't reserve a credit for this generation. Please try again.",
                retryable=True,
            )
        run.credits_consumed = cost

    async def _link_library(self, run: _GenerationRun) -> None:
        """Attach the record to the user's URL library; a miss here is logged, not fatal."""
        request = run.request
        try:
            entry = await self.url_library.save_url(request.user_id, request.url)
            await self.url_library.link_generation(entry.id, run.generation_id)
            await self.store.update(run.generation_id, discovered_url_id=entry.id)
        except Exception as e:
            self.logger.log_warning(
                "url library link failed",
                url=request.url, generation_id=run.generation_id, error=str(e),
            )

    async def _refund(self, run: _GenerationRun) -> None:
        try:
            await self.ledger.refund_credits(
                run.request.user_id,
                run.credits_consumed,
                f"Refund for failed generation {run.generation_id}",
            )
            run.credits_consumed = 0
        except Exception as e:
            self.logger.log_error(
                f"Credit refund failed: {e}",
                error_type="refund_failure",
                user_id=run.request.user_id,
                generation_id=run.generation_id,
                amount=run.credits_consumed,
            )

    async def _fail(
        self,
        run: _GenerationRun,
        error: PipelineError,
        original: Optional[BaseException] = None,
    ) -> SchemaGenerationResult:
        failed_stage = run.stage
        self.logger.log_stage(failed_stage.value, GenerationStage.FAILED.value, generation_id=run.generation_id)
        self.logger.log_error(
            str(error),
            error_type=error.kind,
            url=run.request.url,
            generation_id=run.generation_id,
            stage=failed_stage.value,
            retryable=error.retryable,
        )

        if run.credits_consumed:
            await self._refund(run)

        if isinstance(error, PersistenceError) and run.paid_schemas:
            self.logger.log_error(
                "Generated schemas could not be persisted",
                error_type="unpersisted_payload",
                generation_id=run.generation_id,
                payload=run.paid_schemas,
            )

        processing_time_ms = run.elapsed_ms
        if run.record is not None:
            try:
                await self.store.record_failure(
                    run.generation_id,
                    error_message=error.user_message,
                    failure_reason=error.kind,
                    failure_stage=failed_stage.value,
                    processing_time_ms=processing_time_ms,
                    stack_trace=_stack_trace(original or error),
                    ai_model_provider=self.provider,
                    request_context=run.request_context(),
                    credits_cost=run.credits_consumed,
                )
            except Exception as e:
                self.logger.log_error(
                    f"Failed to record generation failure: {e}",
                    error_type="persistence_failure",
                    generation_id=run.generation_id,
                )

        schemas = run.paid_schemas if isinstance(error, PersistenceError) else []
        return SchemaGenerationResult(
            success=False,
            url=run.request.url,
            schemas=schemas,
            html_output=render_script_tags(schemas) if schemas else "",
            score=calculate_score(schemas) if schemas else None,
            generation_id=run.generation_id,
            processing_time_ms=processing_time_ms,
            credits_used=run.credits_consumed,
            error_message=error.user_message,
            error_kind=error.kind,
            failure_stage=failed_stage,
            retryable=error.retryable,
            content_quality_suggestions=run.suggestions,
        )

    async def refine(self, request: RefinementRequest) -> RefinementResult:
        """
        Ask the AI to improve existing schemas. Free of charge, limited to
        ``max_refinements`` per stored generation.
        """
        self.logger.log_action("refine", "started", url=request.url, generation_id=request.generation_id)
        try:
            return await self._refine(request)
        except PipelineError as e:
            self.logger.log_error(str(e), error_type=e.kind, url=request.url, generation_id=request.generation_id)
            return RefinementResult(
                success=False,
                url=request.url,
                schemas=request.schemas,
                generation_id=request.generation_id,
                error_message=e.user_message,
                error_kind=e.kind,
            )

    async def _refine(self, request: RefinementRequest) -> RefinementResult:
        record = None
        if request.generation_id:
            record = await self.store.get(request.generation_id)
            if record is None or record.user_id != request.user_id:
                raise GenerationNotFoundError("We couldn't find that generation.")
            if record.refinement_count >= self.max_refinements:
                raise RefinementLimitError(
                    f"This schema has already been refined {self.max_refinements} times.",
                    refinement_count=record.refinement_count,
                )

        if not request.schemas:
            raise NoSchemasGeneratedError("There are no schemas to refine.")

        metadata = None
        if record is not None and record.original_metadata:
            metadata = PageMetadata.model_validate(record.original_metadata)
        refinement_number = (record.refinement_count if record else 0) + 1

        refined, changes = await self.ai_client.refine_schemas(request.schemas, request.url, metadata)

        guarded: List[JsonLdSchema] = []
        for index, schema in enumerate(refined):
            if index < len(request.schemas):
                kept = guard_refined_schema(request.schemas[index], schema, metadata, refinement_number)
                changes = changes + summarize_removed(schema, kept)
                guarded.append(kept)
            else:
                guarded.append(schema)

        schemas, removals = sanitize_schemas(guarded)
        score = calculate_score(schemas)

        refinement_count = refinement_number
        if record is not None:
            await self.store.update(record.id, schemas=schemas, schema_score=score.overall_score)
            refinement_count = await self.store.increment_refinement_count(record.id)

        self.logger.log_action(
            "refine", "completed",
            url=request.url, generation_id=request.generation_id,
            score=score.overall_score, refinement_count=refinement_count,
        )
        return RefinementResult(
            success=True,
            url=request.url,
            schemas=schemas,
            html_output=render_script_tags(schemas),
            changes=changes,
            sanitization=removals,
            score=score,
            generation_id=request.generation_id,
            refinement_count=refinement_count,
        )

    async def generate_batch(self, requests: List[GenerationRequest]) -> List[SchemaGenerationResult]:
        """Generate sequentially, pausing between requests to spare the provider."""
        results = []
        for index, request in enumerate(requests):
            if index:
                await asyncio.sleep(self.batch_delay)
            results.append(await self.generate(request))
        self.logger.log_action(
            "generate_batch", "completed",
            total=len(results), succeeded=sum(1 for r in results if r.success),
        )
        return results

    def evaluate(self, schemas: List[JsonLdSchema]) -> SchemaEvaluation:
        """Sanitize, validate and score caller-supplied schemas without persisting anything."""
        cleaned, removals = sanitize_schemas(schemas)
        results = self.validator.validate_many(cleaned)
        return SchemaEvaluation(
            schemas=cleaned,
            html_output=render_script_tags(cleaned),
            sanitization=removals,
            validation_results=results,
            summary=self.validator.summarize(results),
            score=calculate_score(cleaned),
        )
