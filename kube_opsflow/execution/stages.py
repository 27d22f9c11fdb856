"""
Stage Graphs - Declarative Wizard Definitions

A StageGraph describes one wizard tool: which stages exist, which payload
fields each stage requires, how a payload is merged into the collected data
and which stage comes next. Each (tool, stage) pair is one StageHandler,
dispatched by stage-token lookup rather than by sniffing payload fields.

Handlers must be pure: `transform` and `next` may only depend on their
arguments, so replaying a request after a failed persist yields the same
session.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..domain.models import StageToken, ToolDescriptor
from ..services.exceptions import MissingField
from ..state.models import Session

# Returned by StageHandler.next() when the wizard is complete.
TERMINAL = StageToken("complete")


@dataclass
class StagePrompt:
    """What the calling agent should do at a stage."""

    prompt: str
    instruction: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


class StageHandler(ABC):
    """
    One stage of one tool.

    Attributes:
        token: The stage token this handler answers to.
        required_fields: Payload keys that must be present and non-empty.
        chain_key: Optional payload key carrying the answers for the *next*
            stage, so one request can confirm this stage and answer the next.
    """

    token: StageToken
    required_fields: Tuple[str, ...] = ()
    chain_key: Optional[str] = None

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        """Stage-specific checks beyond presence. Raise InvalidField/MissingField."""
        pass

    @abstractmethod
    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        """Returns the merged collected data. Must not mutate `data`."""
        pass

    @abstractmethod
    def next(self, data: Dict[str, Any]) -> StageToken:
        """Next stage given the merged data, or TERMINAL."""
        pass

    @abstractmethod
    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        """Prompt shown when the session arrives at this stage."""
        pass

    def chained_payload(
        self, data: Dict[str, Any], payload: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Payload for the following stage when the request carries one."""
        if self.chain_key and payload.get(self.chain_key) is not None:
            return payload[self.chain_key]
        return None

    def check_required(self, payload: Dict[str, Any]) -> None:
        for name in self.required_fields:
            value = payload.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingField(name)


class StageGraph:
    """
    Registry of the stage handlers for one wizard tool.
    Read-only once built; shared between requests without locking.
    """

    def __init__(
        self,
        name: str,
        prefix: str,
        initial: StageToken,
        description: str = "",
        on_complete: Optional[Callable[[Session], None]] = None,
        completion_prompt: Optional[Callable[[Dict[str, Any]], StagePrompt]] = None,
    ):
        self.name = name
        self.prefix = prefix
        self.initial = initial
        self.description = description
        self.on_complete = on_complete
        self.completion_prompt = completion_prompt
        self._handlers: Dict[StageToken, StageHandler] = {}

    def register(self, handler: StageHandler) -> "StageGraph":
        if handler.token in self._handlers:
            raise ValueError(f"Stage '{handler.token}' already registered for {self.name}")
        self._handlers[handler.token] = handler
        return self

    def handler_for(self, token: StageToken) -> Optional[StageHandler]:
        return self._handlers.get(token)

    @property
    def stages(self) -> List[StageToken]:
        return list(self._handlers)

    def prompt_for(self, token: StageToken, data: Dict[str, Any]) -> StagePrompt:
        if token == TERMINAL:
            if self.completion_prompt:
                return self.completion_prompt(data)
            return StagePrompt(prompt=f"{self.name} completed.", instruction="No further steps.")
        handler = self.handler_for(token)
        if handler is None:
            raise ValueError(f"Stage '{token}' is not part of {self.name}")
        return handler.prompt(data)

    def describe(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            prefix=self.prefix,
            kind="wizard",
            description=self.description,
            stages=[str(token) for token in self.stages],
        )
