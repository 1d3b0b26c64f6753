from __future__ import annotations

import json
import unittest
from unittest import mock

import openai

from shower_hub.config import AIProvider
from shower_hub.fakes import FakeCompleter
from shower_hub.flavor import (
    AIPoolRoaster,
    AIRoastWriter,
    AIScenarioWriter,
    OpenAICompleter,
    RoundOutcome,
    TemplatePoolRoaster,
    TemplateRoastWriter,
    TemplateScenarioWriter,
    make_pool_roaster,
    make_roast_writer,
    make_scenario_writer,
    parse_scenario_json,
    template_roast,
)


def outcome(mom: float, dad: float, crowd: str = "mom", actual: str = "dad") -> RoundOutcome:
    return RoundOutcome(
        mom_percentage=mom,
        dad_percentage=dad,
        crowd_choice=crowd,
        actual_choice=actual,
        perception_gap=dad,
        scenario_text="The 3 AM diaper",
        round_number=1,
    )


class ParseJsonTests(unittest.TestCase):
    def test_fenced_block(self) -> None:
        text = '```json\n{"scenario": "x", "intensity": 0.4}\n```'
        self.assertEqual(parse_scenario_json(text), {"scenario": "x", "intensity": 0.4})

    def test_chatter_around_json(self) -> None:
        self.assertEqual(parse_scenario_json('Sure! {"a": 1} Enjoy.'), {"a": 1})

    def test_garbage(self) -> None:
        self.assertIsNone(parse_scenario_json("no json here"))

    def test_array_reply_rejected(self) -> None:
        self.assertIsNone(parse_scenario_json('["mom", "dad"]'))
        self.assertIsNone(parse_scenario_json("} backwards {"))


class ScenarioWriterTests(unittest.TestCase):
    def test_template_uses_names(self) -> None:
        scenario = TemplateScenarioWriter().write("Michelle", "Jazeel")
        self.assertIn("3 AM", scenario.text)
        self.assertTrue(scenario.mom_option.startswith("Michelle"))
        self.assertTrue(scenario.dad_option.startswith("Jazeel"))
        self.assertEqual(scenario.intensity, 0.6)
        self.assertFalse(scenario.ai_generated)

    def test_ai_reply_is_parsed_and_clamped(self) -> None:
        reply = json.dumps(
            {"scenario": "Baby eats crayons", "mom_option": "M calls poison control", "dad_option": "D asks which color", "intensity": 4}
        )
        writer = AIScenarioWriter(FakeCompleter(reply))
        scenario = writer.write("M", "D", "funny", 2)
        self.assertEqual(scenario.text, "Baby eats crayons")
        self.assertEqual(scenario.intensity, 1.0)
        self.assertTrue(scenario.ai_generated)
        self.assertIn("hilarious", writer.completer.prompts[0])

    def test_ai_failure_falls_back(self) -> None:
        for reply in (TimeoutError("timed out"), "not json", '{"mom_option": "no scenario"}'):
            scenario = AIScenarioWriter(FakeCompleter(reply)).write("M", "D")
            self.assertFalse(scenario.ai_generated)
            self.assertIn("3 AM", scenario.text)


class RoastWriterTests(unittest.TestCase):
    def test_template_by_gap(self) -> None:
        self.assertTrue(template_roast(outcome(50, 50)).startswith("Well folks"))
        self.assertTrue(template_roast(outcome(100, 0)).startswith("100% consensus"))
        self.assertTrue(template_roast(outcome(80, 20)).startswith("Wow, that's a landslide"))

    def test_template_is_deterministic(self) -> None:
        self.assertEqual(template_roast(outcome(60, 40)), template_roast(outcome(60, 40)))

    def test_ai_roast_and_fallback(self) -> None:
        self.assertEqual(AIRoastWriter(FakeCompleter('"Nice try, crowd!"')).roast(outcome(70, 30)), "Nice try, crowd!")
        fallback = AIRoastWriter(FakeCompleter(RuntimeError("429"))).roast(outcome(70, 30))
        self.assertEqual(fallback, TemplateRoastWriter().roast(outcome(70, 30)))

    def test_pool_roast(self) -> None:
        self.assertIn("linebacker", TemplatePoolRoaster().roast(5.0, 50, "2026-03-01"))
        self.assertIn("average", TemplatePoolRoaster().roast(3.5, 50, "2026-03-01"))
        self.assertEqual(AIPoolRoaster(FakeCompleter("Big baby energy")).roast(4.5, 55, "2026-03-01"), "Big baby energy")
        self.assertIn("pocket-sized", AIPoolRoaster(FakeCompleter(None)).roast(2.0, 50, "2026-03-01"))


class ProviderSelectionTests(unittest.TestCase):
    def test_no_credentials_means_templates(self) -> None:
        self.assertIsInstance(make_scenario_writer(None), TemplateScenarioWriter)
        self.assertIsInstance(make_roast_writer(None), TemplateRoastWriter)
        self.assertIsInstance(make_pool_roaster(None), TemplatePoolRoaster)

    def test_credentials_mean_ai(self) -> None:
        provider = AIProvider(api_key="k", base_url="https://api.example.com/v1", model="m")
        self.assertIsInstance(make_scenario_writer(provider), AIScenarioWriter)
        self.assertIsInstance(make_roast_writer(provider), AIRoastWriter)


class OpenAICompleterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = AIProvider(api_key="k", base_url=None, model="gpt-4o-mini")
        self.client = mock.Mock()

    def test_returns_text(self) -> None:
        message = mock.Mock(content="  hello  ")
        self.client.chat.completions.create.return_value = mock.Mock(choices=[mock.Mock(message=message)])
        completer = OpenAICompleter(self.provider, system_prompt="sys", timeout=3, client=self.client)
        self.assertEqual(completer.complete("hi"), ("hello", None))
        kwargs = self.client.chat.completions.create.call_args[1]
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "sys"})

    def test_api_error_is_reported(self) -> None:
        self.client.chat.completions.create.side_effect = openai.OpenAIError("quota")
        completer = OpenAICompleter(self.provider, system_prompt="sys", timeout=3, client=self.client)
        text, err = completer.complete("hi")
        self.assertIsNone(text)
        self.assertIn("quota", err)

    def test_empty_reply(self) -> None:
        self.client.chat.completions.create.return_value = mock.Mock(choices=[])
        completer = OpenAICompleter(self.provider, system_prompt="sys", timeout=3, client=self.client)
        self.assertEqual(completer.complete("hi")[0], None)


if __name__ == "__main__":
    unittest.main()
