from abc import ABC, abstractmethod
from typing import List

from ..schemas.decisions import OracleDecision


class Oracle(ABC):
    """
    Abstract Base Class interface for the external reasoning backend
    (OpenAI, Anthropic, a scripted stub in tests, etc.).

    Implementations are untrusted: the AgenticLoopController must stay correct
    for any conforming implementation, including ones that never finish or
    always propose high-risk actions.
    """

    @abstractmethod
    async def decide(self, messages: List[dict]) -> OracleDecision:
        """
        Given the transcript so far, returns either a ToolCallRequest or a
        FinalAnalysis.
        """
        pass
