from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .event_bus import SKILL_LEARNED, EventBus
from .logging_utils import log
from .memory import MemoryStore
from .tools import ToolRegistry


class SkillStep(BaseModel):
    action: str
    params: Dict[str, Any] = Field(default_factory=dict)
    expected: str = ""
    confidence: float = 0.8


class Skill(BaseModel):
    id: str
    name: str
    description: str
    steps: List[SkillStep] = Field(default_factory=list)
    success_rate: float = 0.75
    uses: int = 0


class SkillRegistry:
    """Learned skills, persisted in the shell's SQLite store."""

    def __init__(self, memory: MemoryStore, bus: Optional[EventBus] = None, tools: Optional[ToolRegistry] = None):
        self.memory = memory
        self.bus = bus
        self.tools = tools

    def all(self, limit: int = 100) -> List[Skill]:
        return [Skill(**row) for row in self.memory.list_skills(limit=limit)]

    def find(self, name: str) -> Optional[Skill]:
        needle = (name or "").strip().lower()
        if not needle:
            return None
        for s in self.all():
            if needle in s.name.lower():
                return s
        return None

    def register(self, name: str, description: str, steps: List[SkillStep], *, success_rate: float = 0.75) -> Skill:
        sid = self.memory.upsert_skill(
            name,
            description,
            steps=[s.model_dump() for s in steps],
            success_rate=success_rate,
        )
        log.info("skill registered", extra={"extra": {"skill": name, "steps": len(steps)}})
        if self.bus is not None:
            self.bus.publish(SKILL_LEARNED, {"skill": name, "id": sid})
        return Skill(id=sid, name=name, description=description, steps=steps, success_rate=success_rate)

    def learn_about(self, topic: str) -> Skill:
        topic = topic.strip()
        step = SkillStep(action=f"Search for {topic}", params={"query": topic}, expected="research_results")
        return self.register(f"Research_{topic.replace(' ', '_')}", f"Research skill for {topic}", [step])

    def run(self, name: str) -> Optional[Skill]:
        """Walk the skill's steps and count the use; `None` when no skill matches."""
        skill = self.find(name)
        if skill is None:
            return None
        for step in skill.steps:
            log.debug("skill step", extra={"extra": {"skill": skill.name, "action": step.action}})
            # A step that maps onto a tool links the two for "connections".
            spec = self.tools.find_best(step.action) if self.tools is not None else None
            if spec is not None:
                self.tools.record_use(spec.name, True, skill.name)
        self.memory.record_skill_use(skill.id, True)
        return skill

    # ---- replies ----

    def list_text(self) -> str:
        skills = self.all()
        if not skills:
            return "I haven't learned any skills yet. Say 'learn about' something to teach me."
        return f"I know {len(skills)} skills. The top ones are: {', '.join(s.name for s in skills[:5])}."

    def run_text(self, name: str) -> str:
        skill = self.run(name)
        if skill is None:
            return f"I don't know a skill called '{name}'. Say 'list skills' to see what I know."
        return f"I ran the {skill.name} skill. It has {len(skill.steps)} steps."

    def learn_text(self, topic: str) -> str:
        self.learn_about(topic)
        return f"I learned about {topic.strip()} and created a research skill for it."
