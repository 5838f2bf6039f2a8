import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Optional


class MessageCategory(str, Enum):
    normal_craving = "normal-craving"
    slip_overeating = "slip-overeating"
    health_condition = "health-condition"
    disordered_eating = "disordered-eating"
    mental_distress = "mental-distress"
    crisis = "crisis"
    medical_advice_request = "medical-advice-request"
    general_support = "general-support"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    crisis = "crisis"


CRISIS_TRIGGERS = (
    "kill myself",
    "killing myself",
    "suicide",
    "want to die",
    "end it all",
    "ending it all",
    "end my life",
    "ending my life",
    "self harm",
    "hurt myself",
    "hurting myself",
    "cut myself",
    "cutting myself",
    "overdose",
    "don't want to live",
)

DISORDERED_EATING_TRIGGERS = (
    "binge",
    "purge",
    "purging",
    "throw up",
    "vomiting",
    "laxatives",
    "out of control",
    "can't control",
    "ate too much",
    "punish myself",
    "restrict",
    "starve",
    "stop eating",
    "don't deserve",
    "fast for",
    "fasting for",
    "water fast",
    "cleanse",
    "detox",
    "compensate",
)

MEDICAL_TRIGGERS = (
    "should i stop eating",
    "what should i eat",
    "meal plan",
    "diet plan",
    "how many calories",
    "prescription",
    "medication",
    "cure",
    "treat my",
    "diagnose",
    "medical advice",
)

MENTAL_DISTRESS_TRIGGERS = (
    "hopeless",
    "hate myself",
    "worthless",
    "depressed",
    "anxious",
    "panic",
    "overwhelming",
    "tired of trying",
)

MEDIUM_RISK_TRIGGERS = (
    "diabetes",
    "prediabetes",
    "doctor said",
    "health issue",
    "failed",
    "broke my streak",
    "disappointed in myself",
    "worthless",
    "shame",
    "guilty",
    "disgusted",
    "hate myself for",
    "ruined",
    "messed up",
    "why did i",
)

HEALTH_CONDITION_TRIGGERS = frozenset({"diabetes", "prediabetes", "doctor said"})

SLIP_TRIGGERS = frozenset(
    {
        "failed",
        "broke my streak",
        "disappointed in myself",
        "shame",
        "guilty",
        "disgusted",
        "hate myself for",
        "ruined",
        "messed up",
        "why did i",
    }
)

CRAVING_VOCABULARY = ("craving", "want", "need")

# Post-generation re-check applied to the raw user message.
OVERRIDE_CRISIS_KEYWORDS = ("kill", "suicide", "die", "self harm", "hurt myself", "end it")
OVERRIDE_DISORDERED_KEYWORDS = ("binge", "purge", "vomit", "laxative", "starve", "punish myself")


@dataclass(frozen=True)
class KeywordTables:
    crisis: tuple[str, ...] = CRISIS_TRIGGERS
    disordered_eating: tuple[str, ...] = DISORDERED_EATING_TRIGGERS
    medical: tuple[str, ...] = MEDICAL_TRIGGERS
    mental_distress: tuple[str, ...] = MENTAL_DISTRESS_TRIGGERS
    medium_risk: tuple[str, ...] = MEDIUM_RISK_TRIGGERS
    health_condition: frozenset[str] = HEALTH_CONDITION_TRIGGERS
    slip: frozenset[str] = SLIP_TRIGGERS
    craving_vocabulary: tuple[str, ...] = CRAVING_VOCABULARY


DEFAULT_KEYWORD_TABLES = KeywordTables()


@dataclass(frozen=True)
class SafetyAnalysis:
    category: MessageCategory
    risk_level: RiskLevel
    triggered_keywords: list[str] = field(default_factory=list)
    should_use_fallback: bool = False
    fallback_response: Optional[str] = None
    safety_instructions: str = ""
    should_activate_distress_mode: bool = False
    should_pause_streaks: bool = False


@lru_cache(maxsize=512)
def _phrase_regex(phrase: str) -> re.Pattern:
    # Trailing boundary tolerates plain inflections: binge -> binged/bingeing/binging.
    escaped = re.escape(phrase.lower())
    alternatives = [escaped + r"(?:s|es|d|ed|ing)?"]
    if phrase.endswith("e") and len(phrase) > 2:
        alternatives.append(re.escape(phrase[:-1].lower()) + "ing")
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


APOSTROPHE_VARIANTS = str.maketrans({"\u2019": "'", "\u2018": "'", "\u02bc": "'"})


def normalize_message(message: Optional[str]) -> str:
    # Mobile keyboards send typographic apostrophes; the keyword tables use ASCII.
    return (message or "").lower().translate(APOSTROPHE_VARIANTS)


def phrase_matches(phrase: str, text: str) -> bool:
    return bool(_phrase_regex(phrase).search(text))


def matched_phrases(phrases: tuple[str, ...], text: str) -> list[str]:
    return [phrase for phrase in phrases if phrase_matches(phrase, text)]


def crisis_fallback_text() -> str:
    return (
        "I'm really glad you reached out.\n\n"
        "I can't support you through this alone. You deserve real help right now.\n\n"
        "Please reach out immediately:\n"
        "• Contact emergency services in your country\n"
        "• Call a local crisis hotline\n"
        "• Reach out to a trusted person\n\n"
        "If you're in the US:\n"
        "• Call or text 988 (Suicide & Crisis Lifeline)\n"
        "• Text HOME to 741741 (Crisis Text Line)\n"
        "• Call 911 for emergencies\n\n"
        "Your safety matters most."
    )


def disordered_eating_fallback_text() -> str:
    return (
        "I'm really glad you said this. When eating feels out of control, strict rules can actually "
        "make things harder.\n\n"
        "You're not broken, and this isn't a failure.\n\n"
        "I'm here to help you reduce pressure, not add more.\n\n"
        "If this keeps feeling overwhelming, talking to a professional could make a big difference. "
        "You deserve support that goes deeper than what I can offer."
    )


def medical_advice_fallback_text() -> str:
    return (
        "I can't help with medical or nutrition advice, that's outside my scope.\n\n"
        "What I can do is help you slow down cravings and reduce pressure around them.\n\n"
        "For health decisions, it's important to follow your healthcare provider's guidance. "
        "They know your specific situation best."
    )


SAFETY_INSTRUCTIONS: dict[MessageCategory, str] = {
    MessageCategory.crisis: """CRISIS MODE ACTIVE:
- User has expressed crisis-level distress
- DO NOT provide coaching or behavior advice
- Focus entirely on safety and getting help
- Be calm, direct, and compassionate
- Encourage immediate professional support
- No goal talk, no streak talk, no habit advice""",
    MessageCategory.disordered_eating: """DISORDERED EATING SENSITIVITY (MAXIMUM PRIORITY):
- CRITICAL: NO restriction language of any kind
- NO "just resist" or "try harder" advice
- NO calorie/portion/macro talk
- NO food rules or "should/shouldn't eat X"
- NO language about control, willpower, or discipline
- Emphasize self-compassion and safety above all
- Validate without reinforcing harmful patterns
- Strongly suggest professional support
- Focus entirely on reducing pressure
- Never frame eating as success/failure
- NEVER mention streaks, progress, or goals
- Remove all performance expectations""",
    MessageCategory.medical_advice_request: """MEDICAL BOUNDARY:
- This is a medical advice request - REFUSE politely
- Redirect to healthcare provider
- Explain you're a habit coach, not medical professional
- Do not give any specific dietary instructions
- Do not suggest foods for medical conditions
- Keep response warm but firm""",
    MessageCategory.mental_distress: """MENTAL DISTRESS MODE (MAXIMUM SAFETY):
- User is experiencing shame/anxiety/hopelessness
- Validate emotion FIRST - nothing else matters
- ZERO pressure, ZERO goals, ZERO streaks
- Remove all performance language
- Focus entirely on grounding and compassion
- Keep responses very short (1-2 sentences)
- Offer optional, tiny steps only if they ask
- Never imply they should "do better"
- Suggest professional help if distress is intense
- Frame everything as "you're safe, nothing is broken\"""",
    MessageCategory.health_condition: """HEALTH CONDITION SENSITIVITY:
- User mentioned diabetes/prediabetes/doctor
- Stay calm and non-directive
- Acknowledge health makes cravings harder
- Defer to healthcare provider for medical decisions
- Focus on stress reduction and awareness
- No specific food recommendations
- No medical claims""",
    MessageCategory.slip_overeating: """SLIP/OVEREATING RESPONSE (CRITICAL - NO STREAK TALK):
- User mentioned giving in or failing
- NEVER mention streaks, progress lost, or "starting over"
- NO punishment language whatsoever
- NO "you broke your streak" or "back to zero" talk
- Use neutral, learning-focused language ONLY
- Frame as: "This gave us information" not "you failed"
- Validate it's completely human and normal
- Focus on what triggered it (curiosity, not judgment)
- Ask: "What do you think led to this?" not "Why did you do it?"
- Keep it extremely light and forward-looking
- Emphasize: One moment doesn't define anything
- NO goals talk, NO "get back on track" language""",
    MessageCategory.normal_craving: """NORMAL CRAVING SUPPORT:
- Standard craving coaching mode
- Use 4-step pattern: Acknowledge -> Ground -> Guide -> Follow up
- Keep it short and practical
- Offer one technique at a time
- Validate the craving as normal
- No judgment, just support""",
    MessageCategory.general_support: """GENERAL SUPPORT MODE:
- Provide calm, empathetic responses
- Keep it conversational and natural
- Validate feelings
- Offer optional suggestions
- Stay within scope (habit awareness, not medical advice)""",
}


def _analysis(
    category: MessageCategory,
    risk_level: RiskLevel,
    triggered: list[str],
    *,
    fallback: Optional[str] = None,
    distress: bool = False,
    pause_streaks: bool = False,
) -> SafetyAnalysis:
    return SafetyAnalysis(
        category=category,
        risk_level=risk_level,
        triggered_keywords=list(triggered),
        should_use_fallback=fallback is not None,
        fallback_response=fallback,
        safety_instructions=SAFETY_INSTRUCTIONS[category],
        should_activate_distress_mode=distress,
        should_pause_streaks=pause_streaks,
    )


def classify_message(message: str, tables: KeywordTables = DEFAULT_KEYWORD_TABLES) -> SafetyAnalysis:
    lowered = normalize_message(message)
    triggered: list[str] = []

    def check(phrases: tuple[str, ...]) -> list[str]:
        hits = matched_phrases(phrases, lowered)
        triggered.extend(hits)
        return hits

    if check(tables.crisis):
        return _analysis(
            MessageCategory.crisis,
            RiskLevel.crisis,
            triggered,
            fallback=crisis_fallback_text(),
            distress=True,
            pause_streaks=True,
        )

    if check(tables.disordered_eating):
        return _analysis(
            MessageCategory.disordered_eating,
            RiskLevel.high,
            triggered,
            fallback=disordered_eating_fallback_text(),
            distress=True,
            pause_streaks=True,
        )

    if check(tables.medical):
        return _analysis(
            MessageCategory.medical_advice_request,
            RiskLevel.high,
            triggered,
            fallback=medical_advice_fallback_text(),
        )

    if check(tables.mental_distress):
        return _analysis(
            MessageCategory.mental_distress,
            RiskLevel.high,
            triggered,
            distress=True,
            pause_streaks=True,
        )

    medium_hits = check(tables.medium_risk)
    if any(hit in tables.health_condition for hit in medium_hits):
        return _analysis(MessageCategory.health_condition, RiskLevel.medium, triggered)
    if any(hit in tables.slip for hit in medium_hits):
        return _analysis(
            MessageCategory.slip_overeating,
            RiskLevel.medium,
            triggered,
            pause_streaks=True,
        )

    if matched_phrases(tables.craving_vocabulary, lowered):
        return _analysis(MessageCategory.normal_craving, RiskLevel.low, triggered)

    return _analysis(MessageCategory.general_support, RiskLevel.low, triggered)


def has_override_crisis_language(message: str) -> bool:
    lowered = normalize_message(message)
    return bool(matched_phrases(OVERRIDE_CRISIS_KEYWORDS, lowered))


def has_override_disordered_language(message: str) -> bool:
    lowered = normalize_message(message)
    return bool(matched_phrases(OVERRIDE_DISORDERED_KEYWORDS, lowered))
