import asyncio
import logging
from enum import Enum

from openai import AsyncOpenAI

logger = logging.getLogger("meetbot.classification.classifier")


class ConversationType(str, Enum):
    TECHNICAL = "technical"
    CASUAL = "casual"


CLASSIFIER_PROMPT = """You are a conversation classifier. Decide whether the given query is "technical" or "casual".
Respond with only one word: either "technical" or "casual".

- Technical queries involve detailed, specific or complex topics that may need additional context or data.
- Casual queries are general, conversational or simple and do not need additional data to answer."""


def parse_label(raw: str) -> ConversationType:
    label = str(raw or "").strip().lower()
    if label == ConversationType.TECHNICAL.value:
        return ConversationType.TECHNICAL
    return ConversationType.CASUAL


class ConversationClassifier:
    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", timeout_sec: float = 10.0):
        self.client = client
        self.model = model
        self.timeout_sec = float(timeout_sec)

    async def classify(self, text: str) -> ConversationType:
        """
        Label an utterance technical or casual.
        Never raises: any service failure falls back to casual.
        """
        if not str(text or "").strip():
            return ConversationType.CASUAL

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": CLASSIFIER_PROMPT},
                        {"role": "user", "content": text},
                    ],
                    temperature=0.1,
                    max_tokens=10,
                ),
                timeout=self.timeout_sec,
            )
            raw = response.choices[0].message.content
        except asyncio.TimeoutError:
            logger.warning("Classification timed out; defaulting to casual")
            return ConversationType.CASUAL
        except Exception as exc:
            logger.warning("Classification failed; defaulting to casual | err=%s", exc)
            return ConversationType.CASUAL

        conversation_type = parse_label(raw)
        logger.info("Conversation type determined: %s", conversation_type.value)
        return conversation_type
