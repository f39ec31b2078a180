import logging

from openai import AsyncOpenAI

logger = logging.getLogger("meetbot.retrieval.embeddings")


class OpenAIEmbedder:
    def __init__(self, client: AsyncOpenAI, model: str = "text-embedding-ada-002"):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)
