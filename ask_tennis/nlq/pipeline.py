# ask_tennis/nlq/pipeline.py
"""
Complete question-answering pipeline.

QueryPipeline is an explicit state machine:

    START -> CACHE_CHECK -> CLASSIFY -> BUILD -> VALIDATE -> EXECUTE
          -> COMPOSE -> CACHE_STORE -> DONE

CACHE_CHECK jumps straight to DONE on a hit. BUILD, VALIDATE and EXECUTE
move to ERROR on failure; the first ERROR re-enters BUILD on the degraded
path (templates only, no LLM), the second one ends in DONE with a canned
Answer. process() never raises.

Answer queryType / confidence by outcome:
    normal path                      intent type        intent (or composer) confidence
    LLM attempted and failed         database_only      <= 0.5
    degraded retry with rows         database_only      <= 0.4
    degraded retry, no rows/build    fallback           0.3
    degraded retry, database failed  error              0.0
    unexpected exception             error              0.0
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..api.errors import BuildFailure, ExecutionFailure, ValidationRejected
from ..cache.query_cache import QueryCache, generate_cache_key
from ..observability.metrics import MetricsManager
from .builder import QueryBuilder, QuerySpec
from .classifier import IntentAnalysis, IntentClassifier, Question
from .composer import ERROR_TEXT, Answer, AnswerComposer, Composition, canned_text
from .executor import QueryExecutor, ResultSet
from .validator import SQLValidator

logger = logging.getLogger(__name__)

LLM_FAILED_CONFIDENCE = 0.5
DEGRADED_CONFIDENCE = 0.4
FALLBACK_CONFIDENCE = 0.3
MAX_TRANSITIONS = 32


class PipelineState(str, Enum):
    START = "START"
    CACHE_CHECK = "CACHE_CHECK"
    CLASSIFY = "CLASSIFY"
    BUILD = "BUILD"
    VALIDATE = "VALIDATE"
    EXECUTE = "EXECUTE"
    COMPOSE = "COMPOSE"
    CACHE_STORE = "CACHE_STORE"
    DONE = "DONE"
    ERROR = "ERROR"


# ============================================================================
# RUN STATE
# ============================================================================


@dataclass
class PipelineRun:
    """Mutable state of one pipeline invocation."""

    question: Question
    trace: List[PipelineState] = field(default_factory=list)
    cache_key: Optional[str] = None
    intent: Optional[IntentAnalysis] = None
    specs: List[QuerySpec] = field(default_factory=list)
    results: List[ResultSet] = field(default_factory=list)
    result: Optional[ResultSet] = None
    composition: Optional[Composition] = None
    answer: Optional[Answer] = None
    degraded: bool = False
    failure: Optional[Exception] = None

    def fail(self, error: Exception) -> PipelineState:
        self.failure = error
        return PipelineState.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace": [s.value for s in self.trace],
            "degraded": self.degraded,
            "failure": str(self.failure) if self.failure else None,
            "specs": [s.to_dict() for s in self.specs],
        }


# ============================================================================
# PIPELINE
# ============================================================================


class QueryPipeline:
    """
    Question -> Answer, with cache, degraded retry and canned fallbacks.

    All collaborators are injected; the pipeline owns its cache.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        builder: QueryBuilder,
        validator: SQLValidator,
        executor: QueryExecutor,
        composer: AnswerComposer,
        cache: Optional[QueryCache] = None,
        metrics: Optional[MetricsManager] = None,
    ):
        self.classifier = classifier
        self.builder = builder
        self.validator = validator
        self.executor = executor
        self.composer = composer
        self.cache = cache if cache is not None else QueryCache()
        self.metrics = metrics
        self.last_run: Optional[PipelineRun] = None

        self._handlers: Dict[PipelineState, Callable[[PipelineRun], Awaitable[PipelineState]]] = {
            PipelineState.START: self._start,
            PipelineState.CACHE_CHECK: self._cache_check,
            PipelineState.CLASSIFY: self._classify,
            PipelineState.BUILD: self._build,
            PipelineState.VALIDATE: self._validate,
            PipelineState.EXECUTE: self._execute,
            PipelineState.COMPOSE: self._compose,
            PipelineState.CACHE_STORE: self._cache_store,
            PipelineState.ERROR: self._error,
        }

    async def process(self, question: Question) -> Answer:
        """
        Answer a validated question. Never raises.

        Args:
            question: Question built with Question.create()

        Returns:
            Answer (cached, normal, degraded or canned)
        """
        run = PipelineRun(question=question)
        self.last_run = run
        logger.info(f"Processing tennis question: {question.text!r}")

        try:
            state = PipelineState.START
            for _ in range(MAX_TRANSITIONS):
                run.trace.append(state)
                if state is PipelineState.DONE:
                    break
                started = time.time()
                next_state = await self._handlers[state](run)
                if self.metrics:
                    self.metrics.record_stage(state.value.lower(), time.time() - started)
                state = next_state
            else:
                raise RuntimeError(f"Pipeline did not finish: {[s.value for s in run.trace]}")
        except Exception as e:
            logger.exception(
                f"Pipeline failed (stage={run.trace[-1].value if run.trace else 'START'}, "
                f"question={question.text!r}): {e}"
            )
            if self.metrics:
                self.metrics.record_degraded("unrecoverable")
            run.answer = Answer(
                text=ERROR_TEXT,
                data=None,
                query_type="error",
                confidence=0.0,
                data_source=self._source_tag(run),
                question=question.text,
            )

        answer = run.answer
        if self.metrics:
            self.metrics.record_answer(answer.query_type, answer.cached)
        logger.info(
            f"Answered ({answer.query_type}, confidence={answer.confidence:.2f}, "
            f"cached={answer.cached}) via {' > '.join(s.value for s in run.trace)}"
        )
        return answer

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _start(self, run: PipelineRun) -> PipelineState:
        return PipelineState.CACHE_CHECK

    async def _cache_check(self, run: PipelineRun) -> PipelineState:
        # Rule-only routing: the key must be computable without any I/O
        decision = self.classifier.route(run.question.text)
        run.cache_key = generate_cache_key(
            run.question.text, decision.type.value, decision.source_tag
        )
        cached = self.cache.get(run.cache_key)
        if self.metrics:
            if cached is None:
                self.metrics.record_cache_miss()
            else:
                self.metrics.record_cache_hit()
        if cached is None:
            return PipelineState.CLASSIFY

        logger.debug(f"Cache hit: {run.cache_key}")
        run.answer = replace(cached, cached=True)
        return PipelineState.DONE

    async def _classify(self, run: PipelineRun) -> PipelineState:
        run.intent = await self.classifier.classify(run.question)
        if run.intent.llm_status == "failed":
            logger.warning(
                f"Classification degraded (stage=CLASSIFY, question={run.question.text!r}): "
                "entity extraction unavailable, using rule-based intent"
            )
        if self.metrics:
            if run.intent.llm_status == "failed":
                self.metrics.record_degraded("classification")
            if run.intent.llm_status != "skipped":
                self.metrics.record_llm_call("classify", run.intent.llm_status == "refined")
        return PipelineState.BUILD

    async def _build(self, run: PipelineRun) -> PipelineState:
        """One QuerySpec per data source; one failing source is tolerated."""
        run.specs = []
        errors: List[Exception] = []
        for source in run.intent.data_sources:
            try:
                spec = await self.builder.build(
                    run.intent, run.question, source=source, allow_llm=not run.degraded
                )
            except BuildFailure as e:
                logger.warning(
                    f"Build failed (stage=BUILD, source={source.value}, "
                    f"question={run.question.text!r}): {e}"
                )
                errors.append(e)
                continue
            if spec.template is None and self.metrics:
                self.metrics.record_llm_call("build", True)
            run.specs.append(spec)

        if not run.specs:
            return run.fail(errors[-1])
        return PipelineState.VALIDATE

    async def _validate(self, run: PipelineRun) -> PipelineState:
        accepted: List[QuerySpec] = []
        rejection: Optional[ValidationRejected] = None
        for spec in run.specs:
            verdict = self.validator.validate(spec.statement)
            if verdict.ok:
                accepted.append(replace(spec, statement=verdict.cleaned))
                continue
            logger.warning(
                f"Statement rejected (stage=VALIDATE, source={spec.source.value}, "
                f"question={run.question.text!r}): {verdict.reason} | {spec.statement}"
            )
            rejection = ValidationRejected(verdict.reason, spec.statement)

        run.specs = accepted
        if not accepted:
            return run.fail(rejection)
        return PipelineState.EXECUTE

    async def _execute(self, run: PipelineRun) -> PipelineState:
        # Sources run one after another, live first
        run.results = []
        failure: Optional[ExecutionFailure] = None
        for spec in run.specs:
            try:
                run.results.append(await self.executor.execute(spec))
            except ExecutionFailure as e:
                logger.warning(
                    f"Execution failed (stage=EXECUTE, source={spec.source.value}, "
                    f"question={run.question.text!r}): {e}"
                )
                failure = e

        if not run.results:
            return run.fail(failure)

        run.result = ResultSet.merge(run.results)
        if run.degraded and run.result.is_empty:
            run.answer = self._fallback_answer(run, "fallback", FALLBACK_CONFIDENCE)
            return PipelineState.DONE
        return PipelineState.COMPOSE

    async def _compose(self, run: PipelineRun) -> PipelineState:
        run.composition = await self.composer.compose(
            run.question, run.result, run.intent, allow_llm=not run.degraded
        )
        if self.metrics:
            if run.composition.method == "llm":
                self.metrics.record_llm_call("compose", True)
            elif run.composition.llm_failed:
                self.metrics.record_llm_call("compose", False)
                self.metrics.record_degraded("compose")
        run.answer = self._answer_from(run)
        return PipelineState.CACHE_STORE

    async def _cache_store(self, run: PipelineRun) -> PipelineState:
        if not run.degraded and run.cache_key:
            self.cache.set(run.cache_key, run.answer)
            if self.metrics:
                self.metrics.record_cache_set()
                self.metrics.update_cache_stats(self.cache.get_stats())
        return PipelineState.DONE

    async def _error(self, run: PipelineRun) -> PipelineState:
        reason = _failure_reason(run.failure)
        if self.metrics:
            self.metrics.record_degraded(reason)

        if not run.degraded:
            logger.warning(
                f"Retrying on the degraded path (reason={reason}, "
                f"question={run.question.text!r}): {run.failure}"
            )
            run.degraded = True
            run.specs, run.results, run.result = [], [], None
            return PipelineState.BUILD

        if isinstance(run.failure, ExecutionFailure):
            run.answer = self._fallback_answer(run, "error", 0.0)
        else:
            run.answer = self._fallback_answer(run, "fallback", FALLBACK_CONFIDENCE)
        return PipelineState.DONE

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def _answer_from(self, run: PipelineRun) -> Answer:
        intent = run.intent
        base = run.composition.confidence
        if base is None:
            base = intent.confidence

        if run.degraded:
            query_type, confidence = "database_only", min(base, DEGRADED_CONFIDENCE)
        elif intent.llm_status == "failed" or run.composition.llm_failed:
            query_type, confidence = "database_only", min(base, LLM_FAILED_CONFIDENCE)
        else:
            query_type, confidence = intent.type.value, base

        return Answer(
            text=run.composition.text,
            data=run.result,
            query_type=query_type,
            confidence=confidence,
            data_source=run.result.data_source,
            question=run.question.text,
        )

    def _fallback_answer(self, run: PipelineRun, query_type: str, confidence: float) -> Answer:
        if query_type == "error":
            text = ERROR_TEXT
        else:
            text = canned_text(run.question.text)
        return Answer(
            text=text,
            data=None,
            query_type=query_type,
            confidence=confidence,
            data_source=self._source_tag(run),
            question=run.question.text,
        )

    @staticmethod
    def _source_tag(run: PipelineRun) -> str:
        if run.intent is not None:
            return run.intent.source_tag
        return "none"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        if self.metrics:
            self.metrics.update_cache_stats(self.cache.get_stats())
        logger.info("Query cache cleared")

    def get_status(self) -> Dict[str, Any]:
        """Cache, executor and LLM statistics."""
        completion = self.classifier.completion
        llm_stats: Dict[str, Any] = {"enabled": bool(completion and completion.enabled)}
        if completion is not None and hasattr(completion, "get_stats"):
            llm_stats.update(completion.get_stats())

        return {
            "status": "ready",
            "cache": self.cache.get_stats(),
            "executor": self.executor.get_stats(),
            "llm": llm_stats,
            "default_source": self.classifier.default_source.value,
            "last_run": self.last_run.to_dict() if self.last_run else None,
        }


def _failure_reason(error: Optional[Exception]) -> str:
    if isinstance(error, ValidationRejected):
        return "validation"
    if isinstance(error, BuildFailure):
        return "build"
    if isinstance(error, ExecutionFailure):
        return "execution"
    return "unknown"
