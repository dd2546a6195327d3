# =============================================================================
# LangGraph Orchestrator — Question Pipeline State Machine
# =============================================================================
#
# Wires the pipeline steps into a LangGraph StateGraph:
#
# GRAPH TOPOLOGY:
#
#   START ──▶ rewrite ──▶ classify ──┬──▶ END            (greeting, vague,
#                                    │                     declined off-topic)
#                                    ├──▶ off_topic ──▶ END
#                                    └──▶ search ──┬──▶ END   (no results)
#                                                  ├──▶ generate (no-context mode)
#                                                  └──▶ budget ──┬──▶ END (too long)
#                                                                └──▶ generate
#                                                                       │
#                                              END ◀── finalize ◀───────┘
#
# Every terminal shortcut writes `envelope` into the state; the
# conditional edges route to END as soon as it is set.
#
# DESIGN DECISION: Clients are injected, not looked up.
# The embedder, vector store and LLM provider are passed to the
# constructor (FastAPI wires the singletons in api/deps.py). Tests pass
# AsyncMock fakes; nothing in the graph touches a global client.
#
# DESIGN DECISION: One compiled graph per orchestrator.
# Nodes are bound methods, so the graph is compiled in __init__ and
# reused for every request. Nodes never mutate the orchestrator, so one
# instance serves concurrent requests.
#
# DESIGN DECISION: Plain TypedDict state (not MessagesState).
# Conversation memory is owned by the caller: it sends back the
# ConversationState it received with the previous answer.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from dashlab.agents import guidance
from dashlab.agents.analyst import (
    GenerationResult,
    generate_answer,
    generate_off_topic_answer,
)
from dashlab.agents.arithmetic import evaluate_math_question
from dashlab.agents.search import (
    BudgetedContext,
    RetrievalResult,
    Source,
    filter_results_by_token_limit,
    format_sources,
    reduce_to_ceiling,
    retrieve,
)
from dashlab.agents.triage import (
    GREETING,
    MATH,
    OFF_TOPIC_INTENTS,
    VAGUE,
    classify,
    rewrite_acknowledgement,
)
from dashlab.config import Settings, get_settings
from dashlab.services.embedder import EmbeddingClient
from dashlab.services.llm import LLMProvider
from dashlab.services.tokens import TokenEstimator, get_token_estimator
from dashlab.services.vectorstore import VectorStore

logger = logging.getLogger(__name__)

MAX_STATE_ANSWER_CHARS = 2000


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConversationContext:
    """What the caller remembers of the conversation. Read-only per call."""

    conversation_id: str | None = None
    last_topic: str | None = None
    last_answer: str | None = None
    last_question: str | None = None


@dataclass
class ConversationState:
    """State the caller should send back with its next question."""

    last_topic: str | None = None
    last_answer: str | None = None
    last_question: str | None = None


@dataclass
class AnswerEnvelope:
    answer: str
    sources: list[Source] = field(default_factory=list)
    found: bool = False
    followups: list[str] = field(default_factory=list)
    raw: str | None = None
    metadata: dict[str, Any] | None = None
    context: ConversationState = field(default_factory=ConversationState)


class PipelineState(TypedDict, total=False):
    """
    State that flows through the graph.

    total=False: nodes return only the keys they update.
    """

    # --- Input ---
    question: str                     # As received
    conversation: ConversationContext
    raw_mode: bool

    # --- Intermediate ---
    effective_question: str           # After acknowledgement rewrite
    rewritten: bool
    intent: str
    math_result: tuple[str, float] | None
    retrieval: RetrievalResult
    budget: BudgetedContext
    generation: GenerationResult

    # --- Output ---
    envelope: AnswerEnvelope


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class QuestionOrchestrator:
    """
    Runs one question through triage, retrieval, budgeting and generation.

    Usage:
        orchestrator = QuestionOrchestrator(
            embedder=get_embedder(),
            vector_store=get_vector_store(),
            llm=get_llm_provider(),
        )
        envelope = await orchestrator.process_question("Qu'est-ce que X ?")
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        vector_store: VectorStore,
        llm: LLMProvider,
        settings: Settings | None = None,
        estimate: TokenEstimator | None = None,
    ) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self._llm = llm
        self._settings = settings or get_settings()
        self._estimate = estimate or get_token_estimator(self._settings.token_estimator)
        self._intent_handlers: dict[str, Callable[[PipelineState, str], dict]] = {
            GREETING: self._handle_greeting,
            VAGUE: self._handle_vague,
            **{intent: self._handle_off_topic for intent in OFF_TOPIC_INTENTS},
        }
        self._graph = self._build_graph()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def process_question(
        self,
        question: str,
        context: ConversationContext | None = None,
        raw: bool = False,
    ) -> AnswerEnvelope:
        """
        Answer one question.

        Args:
            question: The user's question (already validated at the boundary).
            context: Conversation memory sent back by the caller.
            raw: Keep the unparsed model output in `envelope.raw`.

        Returns:
            The answer envelope. Upstream failures (embedding, search,
            generation other than context-length) propagate.
        """
        initial_state: PipelineState = {
            "question": question,
            "conversation": context or ConversationContext(),
            "raw_mode": raw,
        }
        logger.info("Processing question: '%s'", question[:80])

        result = await self._graph.ainvoke(initial_state)
        envelope: AnswerEnvelope = result["envelope"]

        logger.info(
            "Question processed: intent=%s, found=%s, sources=%d",
            result.get("intent"), envelope.found, len(envelope.sources),
        )
        return envelope

    # -----------------------------------------------------------------------
    # Graph Assembly
    # -----------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("rewrite", self._rewrite_node)
        builder.add_node("classify", self._classify_node)
        builder.add_node("off_topic", self._off_topic_node)
        builder.add_node("search", self._search_node)
        builder.add_node("budget", self._budget_node)
        builder.add_node("generate", self._generate_node)
        builder.add_node("finalize", self._finalize_node)

        builder.add_edge(START, "rewrite")
        builder.add_edge("rewrite", "classify")
        builder.add_conditional_edges(
            "classify", _route_after_classify, ["off_topic", "search", END],
        )
        builder.add_edge("off_topic", END)
        builder.add_conditional_edges(
            "search", _route_after_search, ["budget", "generate", END],
        )
        builder.add_conditional_edges(
            "budget", _route_after_budget, ["generate", END],
        )
        builder.add_edge("generate", "finalize")
        builder.add_edge("finalize", END)
        return builder.compile()

    # -----------------------------------------------------------------------
    # Nodes
    # -----------------------------------------------------------------------

    async def _rewrite_node(self, state: PipelineState) -> dict:
        conversation = state["conversation"]
        effective = rewrite_acknowledgement(
            state["question"],
            last_topic=conversation.last_topic,
            last_question=conversation.last_question,
            theme=self._settings.app_theme,
        )
        return {
            "effective_question": effective,
            "rewritten": effective != state["question"],
        }

    async def _classify_node(self, state: PipelineState) -> dict:
        """Rule-based triage, then the intent's handler (retrieval has none)."""
        question = state["effective_question"]
        intent = classify(question)
        logger.info("Classified intent: %s (question: '%s')", intent, question[:80])
        update: dict = {"intent": intent}

        handler = self._intent_handlers.get(intent)
        if handler is not None:
            update.update(handler(state, intent))
        return update

    # -----------------------------------------------------------------------
    # Intent Handlers
    # -----------------------------------------------------------------------
    # Each returns the state keys to add. Setting "envelope" ends the graph.
    # -----------------------------------------------------------------------

    def _handle_greeting(self, state: PipelineState, intent: str) -> dict:
        welcome = guidance.welcome_text(self._settings)
        return {"envelope": self._shortcut(state, welcome, found=True)}

    def _handle_off_topic(self, state: PipelineState, intent: str) -> dict:
        if intent not in self._settings.other_topic_allowed:
            logger.info("Off-topic category '%s' not allowed, returning guidance", intent)
            declined = guidance.declined_guidance(intent, self._settings)
            return {"envelope": self._shortcut(
                state, declined.answer, followups=declined.followups,
            )}
        if intent == MATH:
            return {"math_result": evaluate_math_question(state["effective_question"])}
        return {}

    def _handle_vague(self, state: PipelineState, intent: str) -> dict:
        vague = guidance.vague_guidance(self._settings)
        return {"envelope": self._shortcut(state, vague.answer, followups=vague.followups)}

    async def _off_topic_node(self, state: PipelineState) -> dict:
        """Short model answer to an allowed off-topic request, plus redirect."""
        generation = await generate_off_topic_answer(
            state["effective_question"],
            state["intent"],
            self._llm,
            self._settings,
            math_result=state.get("math_result"),
        )
        answer = f"{generation.answer}\n\n{guidance.redirect_line(self._settings)}".strip()
        envelope = self._shortcut(
            state, answer, found=True, raw=generation.raw, model=generation.model,
        )
        return {"generation": generation, "envelope": envelope}

    async def _search_node(self, state: PipelineState) -> dict:
        """Embed the effective question; threshold from the original one."""
        vector = await self._embedder.embed_query(state["effective_question"])
        retrieval = await retrieve(
            vector, state["question"], self._vector_store, self._settings,
        )
        update: dict = {"retrieval": retrieval}

        if not retrieval.chunks:
            if self._settings.answer_without_context:
                logger.info("No hits; answering without context")
                update["budget"] = BudgetedContext(
                    chunks=[],
                    context="",
                    total_tokens=self._estimate(state["effective_question"]),
                )
            else:
                no_results = guidance.no_results_guidance()
                update["envelope"] = self._shortcut(
                    state, no_results.answer,
                    followups=no_results.followups,
                    threshold=retrieval.threshold,
                )
        return update

    async def _budget_node(self, state: PipelineState) -> dict:
        retrieval = state["retrieval"]
        filtered = filter_results_by_token_limit(
            retrieval.chunks,
            self._settings.max_chunk_tokens,
            self._settings.max_context_tokens,
            self._estimate,
        )
        if not filtered:
            too_long = guidance.too_long_guidance()
            return {"envelope": self._shortcut(
                state, too_long.answer,
                followups=too_long.followups,
                threshold=retrieval.threshold,
            )}

        budget = reduce_to_ceiling(
            filtered,
            state["effective_question"],
            self._settings.context_token_ceiling,
            self._estimate,
        )
        logger.info(
            "Context budget: %d chunks, %d tokens (limit %d)",
            len(budget.chunks), budget.total_tokens, self._settings.max_context_tokens,
        )
        return {"budget": budget}

    async def _generate_node(self, state: PipelineState) -> dict:
        generation = await generate_answer(
            state["effective_question"],
            state["budget"].context,
            self._llm,
            self._settings,
        )
        return {"generation": generation}

    async def _finalize_node(self, state: PipelineState) -> dict:
        budget = state["budget"]
        generation = state["generation"]
        retrieval = state.get("retrieval")
        sources = format_sources(budget.chunks)

        envelope = AnswerEnvelope(
            answer=generation.answer,
            sources=sources,
            found=bool(budget.chunks),
            followups=generation.followups,
            raw=generation.raw if state.get("raw_mode") else None,
            metadata={
                "chunks_used": len(budget.chunks),
                "total_tokens": budget.total_tokens,
                "context_reduced": budget.reduced,
                "threshold": retrieval.threshold if retrieval else None,
                "model": generation.model,
            },
            context=self._next_state(state, generation.answer, sources),
        )
        return {"envelope": envelope}

    # -----------------------------------------------------------------------
    # Envelope Helpers
    # -----------------------------------------------------------------------

    def _shortcut(
        self,
        state: PipelineState,
        answer: str,
        found: bool = False,
        followups: list[str] | None = None,
        raw: str | None = None,
        model: str | None = None,
        threshold: float | None = None,
    ) -> AnswerEnvelope:
        """Envelope for a path that ends before (or without) retrieval."""
        return AnswerEnvelope(
            answer=answer,
            sources=[],
            found=found,
            followups=list(followups or []),
            raw=raw if state.get("raw_mode") else None,
            metadata={
                "chunks_used": 0,
                "total_tokens": 0,
                "context_reduced": False,
                "threshold": threshold,
                "model": model,
            },
            context=self._next_state(state, answer, []),
        )

    @staticmethod
    def _next_state(
        state: PipelineState,
        answer: str,
        sources: list[Source],
    ) -> ConversationState:
        """
        Conversation memory to hand back to the caller.

        The topic follows the best source; a rewritten acknowledgement
        keeps the previous question so the next "oui" stays on topic.
        """
        conversation = state["conversation"]
        last_topic = sources[0].title if sources else conversation.last_topic
        last_question = (
            conversation.last_question if state.get("rewritten") else state["question"]
        )
        return ConversationState(
            last_topic=last_topic,
            last_answer=answer[:MAX_STATE_ANSWER_CHARS],
            last_question=last_question,
        )


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def _route_after_classify(state: PipelineState) -> str:
    if "envelope" in state:
        return END
    if state["intent"] in OFF_TOPIC_INTENTS:
        return "off_topic"
    return "search"


def _route_after_search(state: PipelineState) -> str:
    if "envelope" in state:
        return END
    if "budget" in state:
        return "generate"
    return "budget"


def _route_after_budget(state: PipelineState) -> str:
    return END if "envelope" in state else "generate"
