import asyncio
import logging

from openai import AsyncOpenAI

from meetbot.errors import GenerationError
from meetbot.generation.prompts import GenerationRequest

logger = logging.getLogger("meetbot.generation.generator")


class AnswerGenerator:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o",
        timeout_sec: float = 30.0,
        retries: int = 1,
    ):
        self.client = client
        self.model = model
        self.timeout_sec = float(timeout_sec)
        self.retries = max(0, int(retries))

    async def generate(self, request: GenerationRequest) -> str:
        """
        Send the prompt to the generation model and return the answer text.
        Retries up to `retries` times, then raises GenerationError.
        """
        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(
                        model=self.model,
                        messages=request.messages,
                        **request.sampling.to_kwargs(),
                    ),
                    timeout=self.timeout_sec,
                )
                answer = str(response.choices[0].message.content or "").strip()
                if answer:
                    return answer
                last_error = GenerationError("empty completion")
                logger.warning("generate empty completion | attempt=%s", attempt + 1)
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning("generate timeout | attempt=%s", attempt + 1)
            except Exception as exc:
                last_error = exc
                logger.warning("generate failure | attempt=%s err=%s", attempt + 1, exc)

            if attempt < self.retries:
                await asyncio.sleep(0.35 * (attempt + 1))

        raise GenerationError(f"Answer generation failed after {self.retries + 1} attempt(s): {last_error}") from last_error
