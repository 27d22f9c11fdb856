"""
Transition Types - FSM State Transition Definitions

Type definitions for the two state machines: wizard stage transitions
(WorkflowEngine) and agentic loop transitions (AgenticLoopController).
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ...state.models import LoopPhase


class StageTransition(Enum):
    """
    Strict State Machine terminology describing what happened to the stage pointer.
    """

    ADVANCE = auto()  # The pointer moved to the next linear or branched stage.
    CHAIN = auto()  # Two stages were applied in one request (confirm + answer next).
    FINISH = auto()  # The pointer reached the terminal stage.


@dataclass
class LoopTransition:
    """
    Metadata about one phase change of the agentic loop, logged and returned
    to the caller as the observed path.
    """

    from_phase: Optional[LoopPhase]
    to_phase: LoopPhase
    reason: str
