"""GoalDecomposer — turns a learning goal into an ordered list of subtasks."""
from __future__ import annotations

import logging
from typing import Optional

from brain.errors import ConfigurationError, ParseError, ValidationError
from brain.oracle import KEY_HINT, OracleClient, OracleUnavailableError
from brain.parsing import coerce_hours, extract_json_array
from roadmaps.schemas import DifficultyLevel, Subtask

logger = logging.getLogger(__name__)

MIN_SUBTASKS = 5
MAX_SUBTASKS = 12


class GoalDecomposer:
    def __init__(self, oracle: Optional[OracleClient] = None):
        self.oracle = oracle or OracleClient()

    def _build_system_prompt(self) -> str:
        return f"""You are an expert learning path designer. Your task is to break down learning goals into logical, sequential subtasks that form a complete learning roadmap.

For each subtask, provide:
1. A clear, concise title
2. A detailed description of what the learner will cover
3. Estimated hours needed to complete
4. Prerequisites (array of other subtask titles that must be completed first)

Consider the difficulty level and create an appropriate number of subtasks ({MIN_SUBTASKS}-{MAX_SUBTASKS} depending on complexity).
Return ONLY a valid JSON array with this exact structure:
[
  {{
    "title": "Task title",
    "description": "Detailed description",
    "estimated_hours": <number>,
    "prerequisites": ["prerequisite task title 1", "prerequisite task title 2"]
  }}
]"""

    def _build_user_prompt(self, goal: str, subject: str, difficulty: DifficultyLevel) -> str:
        return f"""Create a learning roadmap for:
Goal: {goal}
Subject: {subject}
Difficulty: {difficulty.value}

Break this down into a logical sequence of subtasks with clear dependencies."""

    async def decompose(
        self,
        goal: str,
        subject: str,
        difficulty: DifficultyLevel | str = DifficultyLevel.INTERMEDIATE,
    ) -> list[Subtask]:
        """Ask the oracle for a roadmap and return validated subtasks.

        Raises:
            ValidationError: goal/subject empty or difficulty unknown (no call is made).
            ConfigurationError: oracle not configured, unauthorized or unreachable.
            QuotaExceededError: oracle rate or billing limit.
            ParseError: the reply holds no usable JSON array.
        """
        goal = (goal or "").strip()
        subject = (subject or "").strip()
        if not goal:
            raise ValidationError("Goal must not be empty")
        if not subject:
            raise ValidationError("Subject must not be empty")
        try:
            difficulty = DifficultyLevel(difficulty or DifficultyLevel.INTERMEDIATE)
        except ValueError as exc:
            raise ValidationError(f"Unknown difficulty level: {difficulty!r}") from exc

        logger.info("Decomposing goal %r (%s, %s)", goal, subject, difficulty.value)
        try:
            raw_response = await self.oracle.complete(
                self._build_user_prompt(goal, subject, difficulty),
                system=self._build_system_prompt(),
            )
        except OracleUnavailableError as exc:
            raise ConfigurationError(str(exc), hint=KEY_HINT) from exc

        items = extract_json_array(raw_response)
        subtasks = self._normalise(items, raw_response)
        logger.info("Decomposer produced %d subtasks for %r", len(subtasks), goal)
        return subtasks

    def _normalise(self, items, raw_response: str) -> list[Subtask]:
        if not isinstance(items, list):
            raise ParseError("Oracle reply is not a JSON array", raw_response=raw_response)

        subtasks: list[Subtask] = []
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                logger.warning("Skipping non-object subtask at position %d", idx)
                continue
            title = str(item.get("title") or "").strip()
            if not title:
                logger.warning("Skipping untitled subtask at position %d", idx)
                continue

            prerequisites = item.get("prerequisites") or []
            if isinstance(prerequisites, str):
                prerequisites = [prerequisites]
            if not isinstance(prerequisites, list):
                prerequisites = []

            subtasks.append(Subtask(
                title=title,
                description=str(item.get("description") or "").strip(),
                estimated_hours=coerce_hours(item.get("estimated_hours")),
                prerequisites=[str(p).strip() for p in prerequisites if str(p).strip()],
            ))

        if not subtasks:
            raise ParseError("Oracle reply contained no usable subtasks", raw_response=raw_response)
        if len(subtasks) > MAX_SUBTASKS:
            logger.warning("Oracle returned %d subtasks; keeping the first %d", len(subtasks), MAX_SUBTASKS)
            subtasks = subtasks[:MAX_SUBTASKS]
        elif len(subtasks) < MIN_SUBTASKS:
            logger.warning("Oracle returned only %d subtasks", len(subtasks))
        return subtasks
