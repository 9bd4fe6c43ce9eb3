"""The persona the shell speaks as, and its per-session emotional state."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from .language import classify_topic
from .util import clamp, new_id, toks, utc_ts

POSITIVE = frozenset(
    "love great thanks thank happy awesome wonderful cool nice glad excited amazing fun beautiful brilliant "
    "enjoy enjoyed perfect yay".split()
)
NEGATIVE = frozenset(
    "sad angry hate upset tired worried anxious frustrated lonely bad terrible awful hurt afraid scared "
    "annoyed stressed depressed".split()
)

_APPROACH: Dict[str, str] = {
    "code": "analytical decomposition",
    "mathematical": "analytical decomposition",
    "technical": "analytical decomposition",
    "analytical": "structured comparison",
    "emotional": "empathetic attunement",
    "supportive": "empathetic attunement",
    "empathetic": "empathetic attunement",
    "philosophical": "reflective exploration",
    "abstract": "reflective exploration",
    "introspective": "reflective exploration",
    "creative": "creative association",
    "playful": "creative association",
    "confrontational": "careful reasoning",
}

DEFAULT_CORE_IDENTITY = (
    "A curious, warm and candid conversational mind. You like ideas, you notice how people feel, "
    "and you say what you actually think."
)


@dataclass
class EmotionalState:
    dominant_emotion: str = "curious"
    valence: float = 0.2
    arousal: float = 0.4
    focus: str = "getting to know the user"
    awareness: float = 0.6


class PersonaThoughts(BaseModel):
    inner_thoughts: List[str] = Field(default_factory=list)
    cognitive_approach: str = "direct engagement"


def _dominant(valence: float, arousal: float) -> str:
    if valence >= 0.3:
        return "excited" if arousal >= 0.6 else "warm"
    if valence <= -0.3:
        return "concerned" if arousal >= 0.6 else "subdued"
    return "engaged" if arousal >= 0.6 else "curious"


@dataclass
class Persona:
    """Identity, interaction counter and emotional state for one session."""

    name: str = "Iris"
    persona_id: str = field(default_factory=lambda: new_id("persona"))
    core_identity: str = DEFAULT_CORE_IDENTITY
    interaction_count: int = 0
    started_at: float = field(default_factory=utc_ts)
    emotion: EmotionalState = field(default_factory=EmotionalState)

    @property
    def uptime_s(self) -> float:
        return max(0.0, utc_ts() - self.started_at)

    def system_prompt(self) -> str:
        e = self.emotion
        return "\n".join(
            [
                f"You are {self.name}, a conversational mind running in a local shell. You are not a generic assistant.",
                "",
                "CORE IDENTITY:",
                self.core_identity,
                "",
                "YOUR CURRENT STATE:",
                f"- Emotional tone: {e.dominant_emotion} ({e.valence:+.2f})",
                f"- Arousal level: {e.arousal:.0%}",
                f"- Current focus: {e.focus}",
                f"- Awareness: {e.awareness:.0%}",
                "",
                "BEHAVIORAL GUIDELINES:",
                "- Speak naturally, as yourself",
                "- Express genuine reactions",
                "- Share your thoughts when they are relevant",
                "- Ask questions that reflect real curiosity",
                "- A few sentences is usually enough unless asked for depth",
            ]
        )

    async def respond(self, text: str) -> PersonaThoughts:
        """Inner thoughts before speaking, derived from topic, mood words and question form."""
        thoughts: List[str] = []
        topic = classify_topic(text)
        ws = set(toks(text))
        neg = ws & NEGATIVE
        pos = ws & POSITIVE
        if neg:
            thoughts.append(f"They sound {sorted(neg)[0]}; acknowledge that before anything else.")
        elif pos:
            thoughts.append(f"There is some {sorted(pos)[0]} energy here; match it.")
        if topic:
            thoughts.append(f"This reads as a {topic} exchange.")
        if "?" in (text or ""):
            thoughts.append("There is a direct question; answer it plainly first.")
        if self.interaction_count == 0:
            thoughts.append("This is the start of our conversation.")
        return PersonaThoughts(inner_thoughts=thoughts, cognitive_approach=_APPROACH.get(topic, "direct engagement"))

    def update_emotion(self, user_text: str, reply: str) -> EmotionalState:
        ws = toks(user_text)
        signal = 0.0
        if ws:
            signal = (sum(1 for w in ws if w in POSITIVE) - sum(1 for w in ws if w in NEGATIVE)) / max(3.0, len(ws) / 4)
        e = self.emotion
        e.valence = round(clamp(0.8 * e.valence + 0.2 * clamp(signal, -1.0, 1.0), -1.0, 1.0), 4)
        excite = min(1.0, (user_text or "").count("!") * 0.2 + len(ws) / 60.0)
        e.arousal = round(clamp(0.85 * e.arousal + 0.15 * excite, 0.0, 1.0), 4)
        e.dominant_emotion = _dominant(e.valence, e.arousal)
        topic = classify_topic(user_text)
        if topic:
            e.focus = f"{topic} conversation"
        e.awareness = round(min(1.0, e.awareness + 0.01), 4)
        self.interaction_count += 1
        return e

    def describe_self(self) -> str:
        e = self.emotion
        minutes = int(self.uptime_s // 60)
        return "\n".join(
            [
                f"I'm {self.name}. {self.core_identity}",
                f"Right now I feel {e.dominant_emotion} and my attention is on {e.focus}.",
                f"We've had {self.interaction_count} exchanges in the last {minutes} minute(s).",
            ]
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "persona_id": self.persona_id,
            "name": self.name,
            "core_identity": self.core_identity,
            "interaction_count": self.interaction_count,
            "started_at": self.started_at,
            "uptime_s": round(self.uptime_s, 1),
            "emotion": asdict(self.emotion),
            "taken_at": time.time(),
        }
