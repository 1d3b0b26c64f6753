from __future__ import annotations

import random
import unittest

from shower_hub.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from shower_hub.fakes import FakeCompleter, FakeStore
from shower_hub.flavor import AIRoastWriter
from shower_hub.games import (
    CODE_ALPHABET,
    WWR_QUESTIONS,
    MomVsDad,
    WhoWouldRather,
    generate_session_code,
    particle_effect,
    perception_gap,
    tally_latest_votes,
    winning_choice,
)


class HelperTests(unittest.TestCase):
    def test_session_code_alphabet(self) -> None:
        code = generate_session_code(random.Random(1))
        self.assertEqual(len(code), 6)
        self.assertTrue(set(code) <= set(CODE_ALPHABET))

    def test_latest_vote_per_guest(self) -> None:
        rows = [
            {"id": 1, "guest_name": "Ann", "vote_choice": "mom"},
            {"id": 2, "guest_name": "Bo", "vote_choice": "dad"},
            {"id": 3, "guest_name": "ann", "vote_choice": "dad"},
        ]
        self.assertEqual(tally_latest_votes(rows), (0, 2))

    def test_latest_vote_ignores_id_values(self) -> None:
        rows = [
            {"id": "f3b0c7e2-0000-4000-8000-000000000001", "guest_name": "Ann", "vote_choice": "dad"},
            {"id": "0a1d9c44-0000-4000-8000-000000000002", "guest_name": "Ann", "vote_choice": "mom"},
        ]
        self.assertEqual(tally_latest_votes(rows), (1, 0))

    def test_perception_gap(self) -> None:
        self.assertEqual(perception_gap(3, 1, "mom"), 25.0)
        self.assertEqual(perception_gap(3, 1, "dad"), 75.0)
        self.assertEqual(perception_gap(0, 0, "dad"), 0.0)

    def test_particles_and_winner(self) -> None:
        self.assertEqual(particle_effect(90, 10), "fireworks")
        self.assertEqual(particle_effect(75, 25), "confetti")
        self.assertEqual(particle_effect(65, 35), "stars")
        self.assertEqual(particle_effect(55, 45), "hearts")
        self.assertEqual(winning_choice(2, 2), "tie")


class MomVsDadTests(unittest.TestCase):
    uuid_ids = True

    def setUp(self) -> None:
        self.store = FakeStore(uuid_ids=self.uuid_ids)
        self.game = MomVsDad(self.store, rng=random.Random(7))
        self.session = self.game.create_session({"mom_name": "Michelle", "dad_name": "Jazeel", "total_rounds": 2})
        self.admin = {"session_code": self.session["session_code"], "admin_code": self.session["admin_code"]}

    def start_round(self) -> dict:
        return self.game.new_scenario(dict(self.admin))["scenario"]

    def test_create_session(self) -> None:
        self.assertEqual(self.session["status"], "setup")
        self.assertTrue(1000 <= int(self.session["admin_code"]) <= 9999)
        self.assertEqual(self.session["total_rounds"], 2)

    def test_create_requires_names(self) -> None:
        with self.assertRaises(ValidationError):
            self.game.create_session({"mom_name": "Michelle"})

    def test_lookup_is_case_insensitive(self) -> None:
        found = self.game.get_session(self.session["session_code"].lower())
        self.assertEqual(found["id"], self.session["session_id"])
        with self.assertRaises(NotFoundError):
            self.game.get_session("ZZZZZZ")

    def test_admin_pin_checked(self) -> None:
        with self.assertRaises(AuthorizationError):
            self.game.admin_login({"session_code": self.session["session_code"], "admin_code": "0000"})
        self.assertEqual(self.game.admin_login(dict(self.admin))["session_code"], self.session["session_code"])

    def test_illegal_transition(self) -> None:
        with self.assertRaises(ConflictError):
            self.game.update(dict(self.admin, status="completed"))
        updated = self.game.update(dict(self.admin, status="voting"))
        self.assertEqual(updated["status"], "voting")

    def test_join_returns_current_scenario(self) -> None:
        scenario = self.start_round()
        joined = self.game.join({"session_code": self.session["session_code"], "guest_name": "Ann"})
        self.assertEqual(joined["scenario"]["scenario_id"], scenario["scenario_id"])
        self.assertEqual(joined["status"], "voting")

    def test_full_round(self) -> None:
        scenario = self.start_round()
        self.assertEqual(scenario["round_number"], 1)
        code = self.session["session_code"]
        for guest, choice in (("Ann", "mom"), ("Bo", "mom"), ("Cy", "dad"), ("Ann", "dad")):
            self.game.vote({"session_code": code, "scenario_id": scenario["scenario_id"], "guest_name": guest, "vote_choice": choice})
        self.assertEqual(len(self.store.rows("game_votes")), 4)

        result = self.game.reveal(dict(self.admin, scenario_id=scenario["scenario_id"], actual_choice="MOM"))
        self.assertEqual((result["mom_votes"], result["dad_votes"]), (1, 2))
        self.assertEqual(result["crowd_choice"], "dad")
        self.assertEqual(result["perception_gap"], 66.67)
        self.assertEqual(result["session_status"], "revealed")
        self.assertTrue(result["roast_commentary"])

        with self.assertRaises(ConflictError):
            self.game.reveal(dict(self.admin, scenario_id=scenario["scenario_id"], actual_choice="mom"))

    def test_vote_rules(self) -> None:
        code = self.session["session_code"]
        with self.assertRaises(ConflictError):
            self.game.vote({"session_code": code, "scenario_id": 1, "guest_name": "Ann", "vote_choice": "mom"})
        scenario = self.start_round()
        with self.assertRaises(ConflictError):
            self.game.vote({"session_code": code, "scenario_id": "not-the-current-round", "guest_name": "Ann", "vote_choice": "mom"})
        with self.assertRaises(ValidationError):
            self.game.vote({"session_code": code, "scenario_id": scenario["scenario_id"], "guest_name": "Ann", "vote_choice": "grandma"})

    def test_last_round_completes_session(self) -> None:
        for _ in range(2):
            scenario = self.start_round()
            result = self.game.reveal(dict(self.admin, scenario_id=scenario["scenario_id"], actual_choice="dad"))
        self.assertEqual(result["session_status"], "completed")
        self.assertEqual(result["perception_gap"], 0.0)
        with self.assertRaises(ConflictError):
            self.start_round()
        rounds = self.game.results(self.session["session_code"])["rounds"]
        self.assertEqual([row["round_number"] for row in rounds], [1, 2])

    def test_roast_provider_failure_uses_template(self) -> None:
        game = MomVsDad(self.store, roast_writer=AIRoastWriter(FakeCompleter(TimeoutError("15s"))))
        scenario = self.start_round()
        result = game.reveal(dict(self.admin, scenario_id=scenario["scenario_id"], actual_choice="mom"))
        self.assertTrue(result["roast_commentary"].startswith("Well folks"))

    def test_votes_tallied_in_arrival_order(self) -> None:
        scenario = self.start_round()
        code = self.session["session_code"]
        for choice in ("dad", "mom", "dad", "mom"):
            self.game.vote({"session_code": code, "scenario_id": scenario["scenario_id"], "guest_name": "Ann", "vote_choice": choice})
        result = self.game.reveal(dict(self.admin, scenario_id=scenario["scenario_id"], actual_choice="mom"))
        self.assertEqual((result["mom_votes"], result["dad_votes"]), (1, 0))


class MomVsDadIntegerIdTests(MomVsDadTests):
    uuid_ids = False

    def test_integer_scenario_id_accepted(self) -> None:
        scenario = self.start_round()
        self.assertIsInstance(scenario["scenario_id"], int)
        voted = self.game.vote(
            {"session_code": self.session["session_code"], "scenario_id": scenario["scenario_id"], "guest_name": "Ann", "vote_choice": "mom"}
        )
        self.assertEqual(voted["mom_votes"], 1)


class WhoWouldRatherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeStore()
        self.game = WhoWouldRather(self.store, rng=random.Random(3))
        self.code = self.game.create_session({"guest_name": "Host"})["session_code"]

    def vote(self, guest: str, choice: str, number: int = 1) -> dict:
        return self.game.vote(
            {"session_code": self.code, "guest_name": guest, "question_number": number, "vote_choice": choice}
        )

    def test_twenty_questions(self) -> None:
        self.assertEqual(len(WWR_QUESTIONS), 20)
        status = self.game.session_status(self.code)
        self.assertEqual(status["total_questions"], 20)
        self.assertEqual(status["current_question"], 1)

    def test_revote_replaces(self) -> None:
        self.vote("Ann", "mom")
        result = self.vote("Ann", "dad")["results"]
        self.assertEqual(result["total_votes"], 1)
        self.assertEqual(result["winning_choice"], "dad")
        self.vote("Bo", "mom")
        question = self.game.current_question(self.code, "Ann")
        self.assertTrue(question["has_voted"])
        self.assertEqual(question["guest_vote"], "dad")

    def test_results_percentages(self) -> None:
        for guest, choice in (("Ann", "mom"), ("Bo", "mom"), ("Cy", "dad")):
            self.vote(guest, choice)
        results = self.game.results(self.code, "1", "Cy")
        self.assertEqual(results["results"]["mom_percentage"], 66.67)
        self.assertEqual(results["results"]["dad_percentage"], 33.33)
        self.assertEqual(results["user_vote"], "dad")

    def test_only_current_question(self) -> None:
        with self.assertRaises(ValidationError):
            self.vote("Ann", "mom", number=2)

    def test_next_question_completes(self) -> None:
        for _ in range(19):
            self.assertFalse(self.game.next_question({"session_code": self.code})["is_complete"])
        self.assertTrue(self.game.next_question({"session_code": self.code})["is_complete"])
        self.assertEqual(self.game.session_status(self.code)["status"], "complete")
        with self.assertRaises(ValidationError):
            self.game.current_question(self.code)


if __name__ == "__main__":
    unittest.main()
