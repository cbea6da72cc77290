import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .domain import Account, ConflictError, NotFound, Session, Unauthorized, UnhandledRequest, ValidationError
from .guard import Deny, guard
from .logs import get_logger

logger = get_logger(__name__)


@dataclass
class Response:
    """What the routing layer turns into an HTTP response."""

    status: int = 200
    json: Optional[Any] = None
    html: Optional[str] = None
    session: Optional[Dict[str, Any]] = None
    location: Optional[str] = None

    @classmethod
    def redirect(cls, location: str, status: int = 302) -> "Response":
        return cls(status=status, location=location)

    @classmethod
    def error(cls, status: int, message: str) -> "Response":
        return cls(status=status, json={"success": False, "error": message})


@dataclass
class RequestContext:
    """Request as delivered by the routing layer, plus what earlier stages learned."""

    body: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    session: Session = field(default_factory=Session)
    account: Optional[Account] = None
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Terminal:
    response: Response


CONTINUE = Continue()

StageResult = Union[Continue, Terminal]
Stage = Callable[[RequestContext], Union[StageResult, Awaitable[StageResult]]]


def guard_stage(home: str = "/") -> Stage:
    """Build a stage that redirects anonymous sessions to ``home``."""

    def check_session(context: RequestContext) -> StageResult:
        decision = guard(context.session, home)
        if isinstance(decision, Deny):
            return Terminal(Response.redirect(decision.location))
        context.account = decision.account
        return CONTINUE

    return check_session


def _stage_name(stage: Stage) -> str:
    return getattr(stage, "__qualname__", None) or repr(stage)


async def run(stages: Sequence[Stage], context: RequestContext) -> Response:
    """
    Run stages in order until one produces a Terminal response.

    Unauthorized, NotFound, ValidationError and ConflictError raised by a stage
    become terminal responses (redirect, 404, 400, 409). Anything else,
    TransientIOError included, propagates.

    Raises:
        UnhandledRequest: if every stage continued
    """
    for stage in stages:
        name = _stage_name(stage)
        try:
            outcome = stage(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Unauthorized as e:
            logger.info("pipeline_unauthorized", stage=name, location=e.location)
            return Response.redirect(e.location)
        except NotFound as e:
            return Response.error(404, e.message or "Not found")
        except ValidationError as e:
            return Response.error(400, e.message or "Invalid request")
        except ConflictError as e:
            return Response.error(409, e.message or "Conflict")

        if isinstance(outcome, Terminal):
            logger.debug("pipeline_short_circuit", stage=name, status=outcome.response.status)
            return outcome.response
        if not isinstance(outcome, Continue):
            raise TypeError(f"Stage {name} returned {outcome!r}, expected Continue or Terminal")
    raise UnhandledRequest("No stage produced a response")


class Pipeline:
    """A reusable ordered list of stages."""

    def __init__(self, stages: Sequence[Stage]):
        self.stages: List[Stage] = list(stages)

    def __len__(self) -> int:
        return len(self.stages)

    async def run(self, context: RequestContext) -> Response:
        return await run(self.stages, context)
