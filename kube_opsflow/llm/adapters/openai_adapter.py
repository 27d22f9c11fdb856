import logging
from typing import List, Optional

from openai import AsyncOpenAI

from ...schemas.decisions import OracleDecision, OracleReply
from ..interface import Oracle

logger = logging.getLogger(__name__)


class OpenAIOracle(Oracle):
    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gpt-4o",
        temperature: float = 0.0,
        timeout: Optional[float] = None,
    ):
        # The AgenticLoopController owns retries.
        self.client = AsyncOpenAI(api_key=api_key, max_retries=0, timeout=timeout)
        self.model_name = model_name
        self.temperature = temperature

    async def decide(self, messages: List[dict]) -> OracleDecision:
        # Structured output: the SDK validates the reply against OracleReply.
        completion = await self.client.beta.chat.completions.parse(
            model=self.model_name,
            messages=messages,
            response_format=OracleReply,
            temperature=self.temperature,
        )

        message = completion.choices[0].message
        if message.parsed is None:
            raise ValueError(f"Oracle returned no structured decision: {message.refusal or 'empty'}")

        logger.debug(f"Oracle decision: {message.parsed.decision.kind}")
        return message.parsed.decision
