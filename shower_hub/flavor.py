"""Flavor text for the party games: scenarios and roasts.

Each writer comes in two flavors: an AI-backed one that calls an
OpenAI-compatible chat endpoint, and a deterministic template one. Which one a
server gets is decided once, by whether a provider key is configured. The AI
writers fall back to their template on timeout, error, or an unusable reply,
so gameplay never waits on a third party.
"""

from __future__ import annotations

import json
import logging
import zlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import openai

from .config import AIProvider

logger = logging.getLogger(__name__)

SCENARIO_TIMEOUT = 10.0
ROAST_TIMEOUT = 15.0
POOL_ROAST_TIMEOUT = 3.0

AVERAGE_WEIGHT_KG = 3.5
AVERAGE_LENGTH_CM = 50

SCENARIO_THEMES: Dict[str, str] = {
    "general": "general parenting situations",
    "farm": "farm and barnyard themed scenarios",
    "funny": "hilarious and absurd situations",
    "sleep": "sleep deprivation and middle-of-the-night scenarios",
    "feeding": "feeding and eating situations",
    "messy": "messy diaper situations",
    "emotional": "emotional parenting moments",
}

FALLBACK_SCENARIOS: List[Dict[str, Any]] = [
    {
        "scenario": "It's 3 AM and the baby has a dirty diaper that requires immediate attention.",
        "mom": "{mom} would gently clean it up while singing a lullaby",
        "dad": "{dad} would make a dramatic production of it while holding their breath",
        "intensity": 0.6,
    },
    {
        "scenario": "The baby just spat up all over a freshly ironed outfit five minutes before guests arrive.",
        "mom": "{mom} would have a spare outfit ready in the diaper bag",
        "dad": "{dad} would call it a fashion statement and wear it anyway",
        "intensity": 0.5,
    },
    {
        "scenario": "The baby refuses every bottle and starts the loudest cry of the week in a grocery store.",
        "mom": "{mom} would calmly try the secret rocking technique",
        "dad": "{dad} would start an impromptu concert in the cereal aisle",
        "intensity": 0.7,
    },
    {
        "scenario": "Someone has to assemble the crib and the instructions are missing.",
        "mom": "{mom} would find the manual online in thirty seconds",
        "dad": "{dad} would insist on figuring it out and end with three spare screws",
        "intensity": 0.8,
    },
    {
        "scenario": "The baby finally falls asleep and the doorbell rings.",
        "mom": "{mom} would sprint to the door whispering threats at the delivery driver",
        "dad": "{dad} would freeze in place like a statue and hope for the best",
        "intensity": 0.9,
    },
]

# Ordered by minimum gap between the mom and dad percentages.
ROAST_TEMPLATES: List[Tuple[float, str]] = [
    (100, "100% consensus! Either you're all psychic or this was way too obvious!"),
    (70, "The crystal ball was cloudy today, folks! Even grandma's intuition failed!"),
    (50, "Wow, that's a landslide! Either the crowd is brilliant or someone needs to rethink their life choices!"),
    (30, "Your parenting intuition score: needs work! Better luck next round, folks!"),
    (10, "The crowd thinks they know best, but plot twist: nobody knows anything about babies!"),
    (0, "Well folks, looks like we're evenly split! Even the universe is undecided!"),
]

ROAST_FLAVORS = [
    " Time to call the parenting experts!",
    " Someone's been watching too many parenting videos!",
    " The baby is definitely judging your choices right now.",
    " Remember this moment next time you're confident!",
    " This is why we can't have nice things!",
]

ROAST_SYSTEM_PROMPT = (
    "You are a sassy but loving barnyard host at a baby shower game. "
    "Roast the crowd's predictions playfully. Keep it family-friendly, funny, "
    "and short (1-2 sentences)."
)
SCENARIO_SYSTEM_PROMPT = "You write family-friendly baby shower party game content. Return JSON only."
POOL_SYSTEM_PROMPT = "You write witty, family-friendly one-liners for a baby shower. Return only the text."


@dataclass
class Scenario:
    text: str
    mom_option: str
    dad_option: str
    intensity: float
    ai_generated: bool = False


@dataclass
class RoundOutcome:
    mom_percentage: float
    dad_percentage: float
    crowd_choice: str
    actual_choice: str
    perception_gap: float
    scenario_text: str
    round_number: int = 1


def parse_scenario_json(text: str) -> Optional[Dict[str, Any]]:
    """Pull the scenario object out of a model reply, tolerating fences and chatter."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def clamp_intensity(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = default
    return max(0.1, min(1.0, number))


class TextCompleter(Protocol):
    def complete(self, prompt: str, *, max_tokens: int = 200) -> Tuple[Optional[str], Optional[str]]: ...


class OpenAICompleter:
    """Chat completion against any OpenAI-compatible endpoint."""

    def __init__(
        self,
        provider: AIProvider,
        *,
        system_prompt: str,
        timeout: float,
        temperature: float = 0.8,
        client: Optional[Any] = None,
    ) -> None:
        self.provider = provider
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.client = client or openai.OpenAI(
            api_key=provider.api_key,
            base_url=provider.base_url,
            timeout=timeout,
            max_retries=0,
        )

    def complete(self, prompt: str, *, max_tokens: int = 200) -> Tuple[Optional[str], Optional[str]]:
        try:
            resp = self.client.chat.completions.create(
                model=self.provider.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
            content = resp.choices[0].message.content
        except openai.OpenAIError as exc:
            return None, f"Completion call failed: {exc}"
        except (AttributeError, IndexError, TypeError) as exc:
            return None, f"Malformed completion response: {exc}"
        text = (content or "").strip()
        if not text:
            return None, "Completion response was empty."
        return text, None


# Scenario writers


class TemplateScenarioWriter:
    def write(self, mom_name: str, dad_name: str, theme: str = "general", round_number: int = 1) -> Scenario:
        template = FALLBACK_SCENARIOS[(max(round_number, 1) - 1) % len(FALLBACK_SCENARIOS)]
        return Scenario(
            text=template["scenario"],
            mom_option=template["mom"].format(mom=mom_name, dad=dad_name),
            dad_option=template["dad"].format(mom=mom_name, dad=dad_name),
            intensity=template["intensity"],
        )


class AIScenarioWriter:
    def __init__(self, completer: TextCompleter, fallback: Optional[TemplateScenarioWriter] = None) -> None:
        self.completer = completer
        self.fallback = fallback or TemplateScenarioWriter()

    def write(self, mom_name: str, dad_name: str, theme: str = "general", round_number: int = 1) -> Scenario:
        theme_context = SCENARIO_THEMES.get(theme, SCENARIO_THEMES["general"])
        prompt = (
            f'Generate a funny "who would rather" scenario for a baby shower game about '
            f"{mom_name} (mom) vs {dad_name} (dad). Theme: {theme_context}. "
            "Keep it relatable and family-friendly. Return ONLY a JSON object with keys "
            f"'scenario', 'mom_option' (what {mom_name} would do), 'dad_option' "
            f"(what {dad_name} would do) and 'intensity' (0.1 mildly funny to 1.0 hilarious)."
        )
        text, err = self.completer.complete(prompt, max_tokens=500)
        data = parse_scenario_json(text or "") if not err else None
        if data is None or not str(data.get("scenario", "")).strip():
            logger.warning("Scenario generation fell back to template: %s", err or "unusable response")
            return self.fallback.write(mom_name, dad_name, theme, round_number)
        return Scenario(
            text=str(data["scenario"]).strip(),
            mom_option=str(data.get("mom_option") or f"{mom_name} would handle it with grace").strip(),
            dad_option=str(data.get("dad_option") or f"{dad_name} would figure it out").strip(),
            intensity=clamp_intensity(data.get("intensity")),
            ai_generated=True,
        )


# Round roasts


def template_roast(outcome: RoundOutcome) -> str:
    gap = abs(outcome.mom_percentage - outcome.dad_percentage)
    base = next(text for threshold, text in ROAST_TEMPLATES if gap >= threshold)
    seed = zlib.crc32(f"{outcome.scenario_text}|{outcome.round_number}".encode("utf-8"))
    return base + ROAST_FLAVORS[seed % len(ROAST_FLAVORS)]


class TemplateRoastWriter:
    def roast(self, outcome: RoundOutcome) -> str:
        return template_roast(outcome)


class AIRoastWriter:
    def __init__(self, completer: TextCompleter, fallback: Optional[TemplateRoastWriter] = None) -> None:
        self.completer = completer
        self.fallback = fallback or TemplateRoastWriter()

    def roast(self, outcome: RoundOutcome) -> str:
        crowd_pct = outcome.mom_percentage if outcome.crowd_choice == "mom" else outcome.dad_percentage
        prompt = (
            f"The crowd predicted: {outcome.crowd_choice} ({round(crowd_pct)}%). "
            f"Reality: {outcome.actual_choice}! Scenario: {outcome.scenario_text}. "
            "Generate a short, playful roast teasing the crowd. Be funny but kind!"
        )
        text, err = self.completer.complete(prompt, max_tokens=100)
        if err or not text:
            logger.warning("Roast generation fell back to template: %s", err)
            return self.fallback.roast(outcome)
        return text.strip().strip("\"'")


# Pool prediction roasts


class TemplatePoolRoaster:
    def roast(self, weight: float, length: float, date_guess: str) -> str:
        if weight >= AVERAGE_WEIGHT_KG + 1:
            return f"{weight}kg? You're predicting a future linebacker!"
        if weight <= AVERAGE_WEIGHT_KG - 1:
            return f"{weight}kg? A pocket-sized baby, how efficient!"
        if length >= AVERAGE_LENGTH_CM + 5:
            return f"{length}cm? Start shopping for basketball shoes now."
        if length <= AVERAGE_LENGTH_CM - 5:
            return f"{length}cm? Fun-size and fabulous!"
        return f"Right on average for {date_guess}. Playing it safe, we see!"


class AIPoolRoaster:
    def __init__(self, completer: TextCompleter, fallback: Optional[TemplatePoolRoaster] = None) -> None:
        self.completer = completer
        self.fallback = fallback or TemplatePoolRoaster()

    def roast(self, weight: float, length: float, date_guess: str) -> str:
        prompt = (
            "Write a witty 1-sentence roast about this baby prediction: "
            f"weight {weight}kg (average is {AVERAGE_WEIGHT_KG}kg), "
            f"length {length}cm (average is {AVERAGE_LENGTH_CM}cm), due date {date_guess}. "
            "Keep it under 100 characters. Return only the roast text, no quotes."
        )
        text, err = self.completer.complete(prompt, max_tokens=60)
        if err or not text:
            logger.warning("Pool roast fell back to template: %s", err)
            return self.fallback.roast(weight, length, date_guess)
        return text.strip().strip("\"'")


def make_scenario_writer(provider: Optional[AIProvider]):
    if provider is None:
        return TemplateScenarioWriter()
    completer = OpenAICompleter(provider, system_prompt=SCENARIO_SYSTEM_PROMPT, timeout=SCENARIO_TIMEOUT)
    return AIScenarioWriter(completer)


def make_roast_writer(provider: Optional[AIProvider]):
    if provider is None:
        return TemplateRoastWriter()
    completer = OpenAICompleter(provider, system_prompt=ROAST_SYSTEM_PROMPT, timeout=ROAST_TIMEOUT)
    return AIRoastWriter(completer)


def make_pool_roaster(provider: Optional[AIProvider]):
    if provider is None:
        return TemplatePoolRoaster()
    completer = OpenAICompleter(provider, system_prompt=POOL_SYSTEM_PROMPT, timeout=POOL_ROAST_TIMEOUT)
    return AIPoolRoaster(completer)
