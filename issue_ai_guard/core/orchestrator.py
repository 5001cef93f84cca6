"""
Generation orchestration.

Runs one generation request through a fixed sequence of states:

    IDLE -> VALIDATE -> QUOTA_CHECK -> CACHE_CHECK -> GENERATE -> PERSIST -> RESPOND

Exactly one terminal outcome is reached per request: the content is served
(cached or fresh), or one of ValidationError, QuotaExceededError,
UpstreamGenerationError or PersistenceError is raised. Validation and quota
checks run before the generator is touched, a cache hit consumes no quota,
and a failed generation never reaches the ledger.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .errors import PersistenceError, QuotaExceededError, UpstreamGenerationError
from .features import Feature, FeatureSpec, get_feature_spec, validate_inputs
from .quota import QuotaDecision, evaluate_quota, rate_limit_message
from issue_ai_guard.config.loader import GatewayConfig
from issue_ai_guard.storage.repository import ArtifactStore, UsageLedger

logger = logging.getLogger(__name__)


class GenerationState(Enum):
    """Steps a request passes through, in order."""
    IDLE = auto()
    VALIDATE = auto()
    QUOTA_CHECK = auto()
    CACHE_CHECK = auto()
    GENERATE = auto()
    PERSIST = auto()
    RESPOND = auto()


class Generator(Protocol):
    """External generative-text capability."""

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int
    ) -> str:
        ...


@dataclass(frozen=True)
class GenerationKey:
    """Identity of one cacheable piece of generated content.

    Concurrent misses on the same key each call the generator; a
    coalescing layer would keep in-flight work per key.
    """
    entity_id: str
    feature: Feature


@dataclass(frozen=True)
class GenerationResult:
    """Content served for a request."""
    content: Any
    cached: bool
    remaining_minute: int
    remaining_daily: int
    cached_at: Optional[datetime] = None


class GenerationOrchestrator:
    """Entry point tying quota, cache and generator together.

    Holds no per-request state; the ledger and artifact store are the only
    shared mutable resources.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        store: ArtifactStore,
        generator: Generator,
        config: Optional[GatewayConfig] = None
    ):
        self.ledger = ledger
        self.store = store
        self.generator = generator
        self.config = config or GatewayConfig()

    def request_generation(
        self,
        user_id: str,
        entity_id: str,
        feature: Feature,
        inputs: Mapping[str, Any]
    ) -> GenerationResult:
        """Serve generated content for an entity, generating only if needed.

        Args:
            user_id: Authenticated caller
            entity_id: Issue (or project) the content describes
            feature: Which generated-text feature to run
            inputs: Feature inputs (title, description, labels, issues, comments)

        Returns:
            GenerationResult with cached=True (no quota consumed) or
            cached=False (exactly one unit consumed)

        Raises:
            ValidationError: If inputs are insufficient
            QuotaExceededError: If the user is over budget
            UpstreamGenerationError: If the generator fails
            PersistenceError: If the ledger or cache is unreachable
        """
        key = GenerationKey(entity_id=entity_id, feature=feature)
        spec = get_feature_spec(feature)
        policy = self.config.quota

        self._enter(GenerationState.VALIDATE, key)
        validate_inputs(
            feature,
            inputs,
            min_input_length=policy.min_input_length,
            min_items_for_digest=policy.min_items_for_digest
        )

        self._enter(GenerationState.QUOTA_CHECK, key)
        decision = evaluate_quota(user_id, policy, self.ledger)
        if not decision.allowed:
            message = rate_limit_message(decision, now=self.ledger.now())
            logger.warning("Quota exceeded for %s: %s", user_id, message)
            raise QuotaExceededError(
                message,
                reset_at=decision.reset_at,
                remaining_minute=decision.remaining_minute,
                remaining_daily=decision.remaining_daily
            )

        if spec.caches:
            self._enter(GenerationState.CACHE_CHECK, key)
            artifact = self.store.read(entity_id, spec.slot)
            if artifact is not None:
                logger.info("Cache hit for %s/%s", entity_id, feature.value)
                return GenerationResult(
                    content=spec.deserialize(artifact.content),
                    cached=True,
                    remaining_minute=decision.remaining_minute,
                    remaining_daily=decision.remaining_daily,
                    cached_at=artifact.cached_at
                )

        self._enter(GenerationState.GENERATE, key)
        content = self._generate(spec, inputs)

        self._enter(GenerationState.PERSIST, key)
        cached_at = self._persist(user_id, key, spec, content)

        self._enter(GenerationState.RESPOND, key)
        return self._respond(content, decision, cached_at)

    def _generate(self, spec: FeatureSpec, inputs: Mapping[str, Any]) -> Any:
        override = self.config.get_feature_override(spec.feature)
        temperature = override.temperature if override.temperature is not None else spec.temperature
        max_tokens = override.max_tokens if override.max_tokens is not None else spec.max_tokens
        messages = spec.build_messages(inputs)

        try:
            raw = self.generator.complete(
                messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except UpstreamGenerationError:
            logger.exception("Generation failed for %s", spec.feature.value)
            raise
        except Exception as e:
            logger.exception("Generation failed for %s", spec.feature.value)
            raise UpstreamGenerationError(f"Generator call failed: {e}") from e

        return spec.parse(raw, inputs)

    def _persist(
        self,
        user_id: str,
        key: GenerationKey,
        spec: FeatureSpec,
        content: Any
    ) -> Optional[datetime]:
        # The ledger counts calls that produced a result, so it goes first
        self.ledger.increment(user_id)
        if not spec.caches:
            return None
        try:
            artifact = self.store.write(key.entity_id, spec.slot, spec.serialize(content))
        except PersistenceError:
            logger.error(
                "Usage recorded for %s but %s/%s was not cached",
                user_id, key.entity_id, key.feature.value
            )
            raise
        return artifact.cached_at

    @staticmethod
    def _respond(
        content: Any,
        decision: QuotaDecision,
        cached_at: Optional[datetime]
    ) -> GenerationResult:
        return GenerationResult(
            content=content,
            cached=False,
            remaining_minute=max(0, decision.remaining_minute - 1),
            remaining_daily=max(0, decision.remaining_daily - 1),
            cached_at=cached_at
        )

    @staticmethod
    def _enter(state: GenerationState, key: GenerationKey) -> None:
        logger.debug("%s/%s -> %s", key.entity_id, key.feature.value, state.name)
