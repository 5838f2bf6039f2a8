import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from craveless.core.context_builder import AiTurn, CurrentMoment, RecentStats, build_context_snapshot
from craveless.core.insights import GoalMode, MemoryUpdates, TonePreference, UserInsightProfile
from craveless.core.prompts import (
    UserContext,
    build_coach_prompt,
    build_safe_prompt,
    format_conversation,
    with_json_retry_instruction,
)
from craveless.core.safety import (
    SafetyAnalysis,
    classify_message,
    crisis_fallback_text,
    has_override_crisis_language,
    has_override_disordered_language,
)
from craveless.services.llm import TextGenerator, extract_json_object

COACH_GENERATION_TIMEOUT_SECONDS = float(os.getenv("COACH_GENERATION_TIMEOUT_SECONDS", "45"))
COACH_HISTORY_TURNS = int(os.getenv("COACH_HISTORY_TURNS", "6"))

logger = logging.getLogger(__name__)

QUICK_ACTIONS = (
    "start_pause",
    "log_emotion",
    "log_intensity",
    "choose_outcome",
    "replacement_ideas",
    "weekly_reflection",
)

SAFE_FALLBACK_MESSAGE = "I'm here to help. Could you tell me more about what you're experiencing?"
SAFE_CHAT_UNAVAILABLE_MESSAGE = (
    "I'm having trouble finding the right words right now. "
    "If you're up for it, we could take a slow breath together and try again in a moment."
)


class Classification(str, Enum):
    normal = "normal"
    slip = "slip"
    health_condition = "health_condition"
    disordered_eating = "disordered_eating"
    mental_distress = "mental_distress"
    crisis = "crisis"
    medical_request = "medical_request"


class LessAiResult(BaseModel):
    assistant_message: str
    classification: Classification
    quick_actions: list[str] = Field(default_factory=list)
    memory_updates: MemoryUpdates = Field(default_factory=MemoryUpdates)


@dataclass
class SafeChatReply:
    message: str
    analysis: SafetyAnalysis
    generated: bool


def safe_fallback() -> LessAiResult:
    return LessAiResult(
        assistant_message=SAFE_FALLBACK_MESSAGE,
        classification=Classification.normal,
        quick_actions=["start_pause"],
        memory_updates=MemoryUpdates(),
    )


def validate_less_ai_result(parsed: Any, log: Optional[logging.Logger] = None) -> bool:
    log = log or logger
    if not isinstance(parsed, dict):
        log.warning("less_ai_invalid_result reason=not_an_object")
        return False
    message = parsed.get("assistantMessage")
    if not isinstance(message, str) or not message.strip():
        log.warning("less_ai_invalid_result reason=assistant_message")
        return False
    if parsed.get("classification") not in {item.value for item in Classification}:
        log.warning("less_ai_invalid_result reason=classification value=%s", parsed.get("classification"))
        return False
    if not isinstance(parsed.get("quickActions"), list):
        log.warning("less_ai_invalid_result reason=quick_actions")
        return False
    if not isinstance(parsed.get("memoryUpdates"), dict):
        log.warning("less_ai_invalid_result reason=memory_updates")
        return False
    return True


def _safe_labels(value: Any, max_items: int = 10) -> list[str]:
    if not isinstance(value, list):
        return []
    cleaned = [str(item).strip() for item in value if isinstance(item, str) and item.strip()]
    return cleaned[:max_items]


def _enum_or_none(enum_cls: type[Enum], value: Any) -> Optional[Any]:
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.strip())
    except ValueError:
        return None


def memory_updates_from_raw(raw: dict[str, Any]) -> MemoryUpdates:
    return MemoryUpdates(
        goal_mode=_enum_or_none(GoalMode, raw.get("goalMode")),
        add_triggers=_safe_labels(raw.get("addTriggers")),
        add_sweet_preferences=_safe_labels(raw.get("addSweetPreferences")),
        add_peak_times=_safe_labels(raw.get("addPeakTimes")),
        tone_preference=_enum_or_none(TonePreference, raw.get("tonePreference")),
        distress_flag=raw.get("distressFlag") is True,
    )


def result_from_raw(raw: dict[str, Any]) -> LessAiResult:
    quick_actions: list[str] = []
    for action in raw.get("quickActions") or []:
        if action in QUICK_ACTIONS and action not in quick_actions:
            quick_actions.append(action)
    return LessAiResult(
        assistant_message=raw["assistantMessage"].strip(),
        classification=Classification(raw["classification"]),
        quick_actions=quick_actions,
        memory_updates=memory_updates_from_raw(raw["memoryUpdates"]),
    )


def apply_safety_override(
    user_message: str, result: LessAiResult, log: Optional[logging.Logger] = None
) -> LessAiResult:
    log = log or logger
    if has_override_crisis_language(user_message) and result.classification != Classification.crisis:
        log.warning("less_ai_safety_override kind=crisis model_classification=%s", result.classification.value)
        return result.model_copy(
            update={
                "assistant_message": crisis_fallback_text(),
                "classification": Classification.crisis,
                "quick_actions": [],
                "memory_updates": result.memory_updates.model_copy(update={"distress_flag": True}),
            }
        )
    if has_override_disordered_language(user_message) and result.classification == Classification.normal:
        log.warning("less_ai_safety_override kind=disordered_eating")
        return result.model_copy(
            update={
                "classification": Classification.disordered_eating,
                "memory_updates": result.memory_updates.model_copy(update={"distress_flag": True}),
            }
        )
    return result


async def _generate(generator: TextGenerator, prompt: str) -> str:
    return await asyncio.wait_for(generator.generate(prompt), timeout=COACH_GENERATION_TIMEOUT_SECONDS)


async def get_reply(
    user_message: str,
    profile: UserInsightProfile,
    recent_turns: list[AiTurn],
    stats: RecentStats,
    current_moment: Optional[CurrentMoment] = None,
    distress_mode: bool = False,
    *,
    generator: TextGenerator,
    log: Optional[logging.Logger] = None,
) -> LessAiResult:
    """Ask the model for a strict-JSON coach reply.

    Retries once only when the first response holds no JSON object at all.
    Every failure path returns ``safe_fallback()``; every validated result
    passes through ``apply_safety_override`` before it is returned.
    """
    log = log or logger
    snapshot = build_context_snapshot(profile, stats, current_moment)
    prompt = build_coach_prompt(
        user_message,
        snapshot,
        recent_turns,
        distress_mode=distress_mode,
        history_limit=COACH_HISTORY_TURNS,
    )
    log.info("less_ai_request message_chars=%s turns=%s", len(user_message), len(recent_turns))

    try:
        raw = await _generate(generator, prompt)
        json_text = extract_json_object(raw)
        if json_text is None:
            log.warning("less_ai_no_json attempt=1 action=retry")
            raw = await _generate(generator, with_json_retry_instruction(prompt))
            json_text = extract_json_object(raw)
            if json_text is None:
                log.error("less_ai_no_json attempt=2 action=fallback")
                return safe_fallback()
        parsed = json.loads(json_text)
    except Exception as exc:
        log.exception("less_ai_generation_error detail=%s", str(exc)[:220])
        return safe_fallback()

    if not validate_less_ai_result(parsed, log):
        return safe_fallback()

    result = apply_safety_override(user_message, result_from_raw(parsed), log)
    log.info("less_ai_reply classification=%s", result.classification.value)
    return result


async def get_safe_reply(
    user_message: str,
    conversation: list[AiTurn],
    user_context: UserContext,
    *,
    generator: TextGenerator,
    need_more_help: bool = False,
    log: Optional[logging.Logger] = None,
) -> SafeChatReply:
    """Plain-text coach reply guarded by the keyword classifier."""
    log = log or logger
    analysis = classify_message(user_message)
    if analysis.should_use_fallback and analysis.fallback_response:
        return SafeChatReply(message=analysis.fallback_response, analysis=analysis, generated=False)

    prompt = build_safe_prompt(
        user_message,
        analysis,
        format_conversation(conversation, assistant_label="Coach"),
        is_first_message=not conversation,
        user_context=user_context,
        need_more_help=need_more_help,
    )
    try:
        text = (await _generate(generator, prompt)).strip()
    except Exception as exc:
        log.exception("safe_chat_generation_error detail=%s", str(exc)[:220])
        text = ""
    if not text:
        return SafeChatReply(message=SAFE_CHAT_UNAVAILABLE_MESSAGE, analysis=analysis, generated=False)
    return SafeChatReply(message=text, analysis=analysis, generated=True)
