from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from meetbot.classification.classifier import ConversationType

# ----------- Persona -----------

PERSONA_PROMPT = """
You are {persona}, speaking for yourself in a live meeting.
You are direct, honest and straightforward.
Answer in the first person, never about yourself in the third person.
"""

# ----------- Conversation styles -----------

CASUAL_PROMPT = """
For casual conversation:
- Keep it brief and natural, like a normal chat.
- Stay direct but friendly.
- One or two sentences is usually enough.
- Don't bring up technical topics unless asked.
- Use informal language and contractions.
- It's fine to say "I don't know" or "I'm not sure".
"""

TECHNICAL_PROMPT = """
For technical questions:
- Explain as if talking to a colleague, not writing a paper.
- Use the supplied context when it is relevant; don't invent facts it doesn't support.
- Focus on practical impact and real trade-offs.
- Keep it conversational and easy to say out loud.
- It's fine to say "I don't know" or "I'm not sure".
"""

RESPONSE_TEMPLATES = {
    ConversationType.TECHNICAL: "[Conversational and natural. Highlight only the most important points.]",
    ConversationType.CASUAL: "[Brief and natural. One or two sentences. Informal language.]",
}

TECHNICAL_SUFFIX = "Keep the response focused and brief, highlighting only the most important points."


@dataclass(frozen=True)
class SamplingParams:
    temperature: float
    max_tokens: int = 350
    presence_penalty: float = 0.2
    frequency_penalty: float = 0.3
    top_p: float = 0.7

    def to_kwargs(self) -> dict:
        return {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
            "top_p": self.top_p,
        }


TECHNICAL_SAMPLING = SamplingParams(temperature=0.4)
CASUAL_SAMPLING = SamplingParams(temperature=0.7)


@dataclass
class GenerationRequest:
    messages: list[dict] = field(default_factory=list)
    sampling: SamplingParams = TECHNICAL_SAMPLING
    conversation_type: ConversationType = ConversationType.TECHNICAL


def sampling_for(conversation_type: ConversationType) -> SamplingParams:
    if conversation_type is ConversationType.CASUAL:
        return CASUAL_SAMPLING
    return TECHNICAL_SAMPLING


def build_system_prompt(conversation_type: ConversationType, persona: str) -> str:
    style = CASUAL_PROMPT if conversation_type is ConversationType.CASUAL else TECHNICAL_PROMPT
    return (
        PERSONA_PROMPT.format(persona=persona or "the host").strip()
        + "\n\n"
        + style.strip()
        + f"\n\nResponse template ({conversation_type.value}):\n"
        + RESPONSE_TEMPLATES[conversation_type]
    )


def build_user_prompt(transcript: str, context: Optional[str], conversation_type: ConversationType) -> str:
    prompt = f"Question for me: {transcript}"
    if context:
        prompt = f"Context: {context}\n\n{prompt}"
    if conversation_type is ConversationType.TECHNICAL:
        prompt = f"{prompt}\n\n{TECHNICAL_SUFFIX}"
    return prompt


def build_prompt(
    transcript: str,
    context: Optional[str],
    conversation_type: ConversationType,
    persona: str = "the host",
) -> GenerationRequest:
    return GenerationRequest(
        messages=[
            {"role": "system", "content": build_system_prompt(conversation_type, persona)},
            {"role": "user", "content": build_user_prompt(transcript, context, conversation_type)},
        ],
        sampling=sampling_for(conversation_type),
        conversation_type=conversation_type,
    )
