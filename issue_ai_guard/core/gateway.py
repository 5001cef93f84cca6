"""
Gateway entry point for generated-text features.

Wraps the orchestrator in a single status-code-agnostic operation whose
result is either served content or a tagged failure. This is the only place
gateway exceptions are turned into values.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .errors import (
    PersistenceError,
    QuotaExceededError,
    UpstreamGenerationError,
    ValidationError,
)
from .features import Feature
from .orchestrator import GenerationOrchestrator, Generator
from issue_ai_guard.config.loader import GatewayConfig
from issue_ai_guard.observability.logging import clear_log_context, set_log_context
from issue_ai_guard.sdk.openai_client import OpenAIGenerator
from issue_ai_guard.storage.db import DEFAULT_DB_PATH
from issue_ai_guard.storage.repository import ArtifactStore, UsageLedger

logger = logging.getLogger(__name__)

# (user_id, entity_id) -> may the caller act on the entity
Authorizer = Callable[[str, str], bool]


class ErrorKind(Enum):
    """Failure tags a generation request can end in."""
    UNAUTHENTICATED = "Unauthenticated"
    NOT_FOUND = "NotFound"
    INVALID_INPUT = "InvalidInput"
    QUOTA_EXCEEDED = "QuotaExceeded"
    UPSTREAM_FAILURE = "UpstreamFailure"
    PERSISTENCE_FAILURE = "PersistenceFailure"


STATUS_CODES = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.UPSTREAM_FAILURE: 502,
    ErrorKind.PERSISTENCE_FAILURE: 500,
}


@dataclass(frozen=True)
class GatewayResult:
    """Uniform response envelope."""
    content: Any = None
    cached: bool = False
    remaining_minute: Optional[int] = None
    remaining_daily: Optional[int] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    reset_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> int:
        """HTTP-style status for callers that expose one."""
        if self.error is None:
            return 200
        return STATUS_CODES[self.error]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready body."""
        if self.error is not None:
            body: Dict[str, Any] = {"error": self.error.value, "message": self.message}
            if self.reset_at is not None:
                body["resetAt"] = self.reset_at.isoformat()
            if self.remaining_daily is not None:
                body["remaining"] = {
                    "minute": self.remaining_minute,
                    "daily": self.remaining_daily,
                }
            return body

        body = {"content": self.content, "cached": self.cached}
        if self.remaining_daily is not None:
            body["remaining"] = {
                "minute": self.remaining_minute,
                "daily": self.remaining_daily,
            }
        return body


def _failure(kind: ErrorKind, message: str, **fields: Any) -> GatewayResult:
    return GatewayResult(error=kind, message=message, **fields)


class Gateway:
    """What the rest of the application calls to get generated content."""

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        authorize: Optional[Authorizer] = None
    ):
        """Initialize the gateway.

        Args:
            orchestrator: Runs the generation state machine
            authorize: Access check already enforced by the application;
                when given, a False answer is reported as NotFound
        """
        self.orchestrator = orchestrator
        self.authorize = authorize

    def request_generation(
        self,
        user_id: Optional[str],
        entity_id: str,
        feature: Union[Feature, str],
        inputs: Mapping[str, Any]
    ) -> GatewayResult:
        """Serve generated content or a tagged failure.

        Never raises for expected failure modes; see ErrorKind.
        """
        if not user_id:
            return _failure(ErrorKind.UNAUTHENTICATED, "Unauthorized")

        if self.authorize is not None and not self.authorize(user_id, entity_id):
            return _failure(ErrorKind.NOT_FOUND, "Issue not found")

        try:
            feature = Feature(feature)
        except ValueError:
            return _failure(ErrorKind.INVALID_INPUT, "Invalid AI request type")

        set_log_context(user_id=user_id, entity_id=entity_id, feature=feature.value)
        try:
            result = self.orchestrator.request_generation(user_id, entity_id, feature, inputs)
        except ValidationError as e:
            return _failure(ErrorKind.INVALID_INPUT, str(e))
        except QuotaExceededError as e:
            return _failure(
                ErrorKind.QUOTA_EXCEEDED,
                str(e),
                reset_at=e.reset_at,
                remaining_minute=e.remaining_minute,
                remaining_daily=e.remaining_daily
            )
        except UpstreamGenerationError as e:
            return _failure(ErrorKind.UPSTREAM_FAILURE, str(e))
        except PersistenceError as e:
            logger.error("Persistence failure: %s", e)
            return _failure(ErrorKind.PERSISTENCE_FAILURE, str(e))
        finally:
            clear_log_context()

        return GatewayResult(
            content=result.content,
            cached=result.cached,
            remaining_minute=result.remaining_minute,
            remaining_daily=result.remaining_daily
        )


def build_gateway(
    config: Optional[GatewayConfig] = None,
    db_path: str = DEFAULT_DB_PATH,
    generator: Optional[Generator] = None,
    authorize: Optional[Authorizer] = None
) -> Gateway:
    """Wire a gateway over one SQLite database.

    The OpenAI generator is created here but only connects on first use,
    so a missing API key fails individual requests, not startup.
    """
    config = config or GatewayConfig()
    if generator is None:
        generator = OpenAIGenerator(
            model=config.generator.model,
            timeout_seconds=config.generator.timeout_seconds
        )
    orchestrator = GenerationOrchestrator(
        ledger=UsageLedger(db_path),
        store=ArtifactStore(db_path),
        generator=generator,
        config=config
    )
    return Gateway(orchestrator, authorize=authorize)
