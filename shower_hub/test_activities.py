from __future__ import annotations

import unittest

from shower_hub.activities import (
    QUIZ_ANSWERS,
    normalize_activity_type,
    normalize_selected_names,
    plan_submission,
    score_quiz,
)
from shower_hub.errors import ValidationError


class QuizScoreTests(unittest.TestCase):
    def test_case_insensitive_exact_match(self) -> None:
        answers = {key: value.upper() for key, value in QUIZ_ANSWERS.items()}
        self.assertEqual(score_quiz(answers), 5)

    def test_partial_and_missing_answers(self) -> None:
        answers = {"puzzle1": "baby shower", "puzzle2": "three pigs", "puzzle5": 5}
        self.assertEqual(score_quiz(answers), 1)
        self.assertEqual(score_quiz({}), 0)

    def test_plan_quiz_message(self) -> None:
        plan = plan_submission(
            "quiz",
            {
                "name": "Ann",
                "puzzle1": "Baby Shower",
                "puzzle2": "wrong",
                "puzzle3": "Rock a Bye Baby",
                "puzzle4": "Baby Bottle",
                "puzzle5": "Diaper Change",
            },
        )
        self.assertEqual(plan.extra["score"], 4)
        self.assertEqual(plan.message, "You got 4/5 correct!")
        self.assertEqual(plan.activity_data["total_questions"], 5)
        self.assertEqual(plan.sheet, "QuizAnswers")


class VoteNameTests(unittest.TestCase):
    def test_duplicates_collapse(self) -> None:
        names = normalize_selected_names(["Emma", "emma ", "Olivia"], 3)
        self.assertEqual(names, ["Emma", "Olivia"])

    def test_cap(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            normalize_selected_names(["Emma", "Olivia", "Sophia", "Ava"], 3)
        self.assertEqual(ctx.exception.message, "Maximum 3 votes allowed")
        self.assertEqual(len(normalize_selected_names(["Emma", "Olivia", "Sophia", "Ava"], 4)), 4)

    def test_cap_counts_submitted_entries(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            normalize_selected_names(["Emma", "emma", "Olivia", "Sophia"], 3)
        self.assertEqual(ctx.exception.message, "Maximum 3 votes allowed")
        with self.assertRaises(ValidationError):
            normalize_selected_names([], 3)

    def test_empty(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            normalize_selected_names(["", "  "], 3)
        self.assertEqual(ctx.exception.message, "At least one name is required")

    def test_not_a_list(self) -> None:
        with self.assertRaises(ValidationError):
            normalize_selected_names("Emma,Olivia", 3)

    def test_long_name_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            normalize_selected_names(["A" * 51], 3)


class PlanTests(unittest.TestCase):
    def test_activity_aliases(self) -> None:
        self.assertEqual(normalize_activity_type("vote"), "voting")
        self.assertEqual(normalize_activity_type(" Guestbook "), "guestbook")
        with self.assertRaises(ValidationError):
            normalize_activity_type("karaoke")

    def test_guestbook(self) -> None:
        plan = plan_submission(
            "guestbook",
            {
                "name": "Ann",
                "relationship": "Aunt",
                "message": "So happy for you <b>both</b>!",
                "photoURL": "javascript:alert(1)",
            },
        )
        self.assertEqual(plan.activity_type, "guestbook")
        self.assertEqual(plan.activity_data["message"], "So happy for you both!")
        self.assertIsNone(plan.activity_data["photo_url"])
        self.assertEqual(plan.message, "Wish saved successfully!")
        payload = plan.webhook_payload()
        self.assertEqual(payload["sheet"], "Guestbook")
        self.assertIn("Timestamp", payload["data"])

    def test_guestbook_missing_fields(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            plan_submission("guestbook", {"name": "Ann"})
        self.assertEqual(ctx.exception.message, "Missing required fields")
        self.assertIn("relationship is required", ctx.exception.details)
        self.assertIn("message is required", ctx.exception.details)

    def test_guestbook_short_message(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            plan_submission("guestbook", {"name": "Ann", "relationship": "Aunt", "message": "hi"})
        self.assertEqual(ctx.exception.message, "Validation failed")

    def test_pool_coerces_numbers(self) -> None:
        plan = plan_submission(
            "pool",
            {
                "name": "Bo",
                "dateGuess": "2026-03-14",
                "timeGuess": "08:30",
                "weightGuess": "3.4",
                "lengthGuess": "51",
            },
        )
        self.assertEqual(plan.activity_data["weight_guess"], 3.4)
        self.assertEqual(plan.activity_data["length_guess"], 51)
        self.assertEqual(plan.sheet, "BabyPool")

    def test_pool_rejects_out_of_range(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            plan_submission(
                "pool",
                {
                    "name": "Bo",
                    "dateGuess": "14/03/2026",
                    "timeGuess": "08:30",
                    "weightGuess": 9,
                    "lengthGuess": 51,
                },
            )
        self.assertIn("dateGuess format is invalid", ctx.exception.details)
        self.assertIn("weightGuess must be at most 6", ctx.exception.details)

    def test_advice_type_enum(self) -> None:
        plan = plan_submission("advice", {"name": "Cy", "adviceType": "For Baby", "message": "Sleep!"})
        self.assertEqual(plan.activity_data, {"advice_type": "For Baby", "message": "Sleep!"})
        with self.assertRaises(ValidationError):
            plan_submission("advice", {"name": "Cy", "adviceType": "For Dogs", "message": "Sleep!"})

    def test_vote_record(self) -> None:
        plan = plan_submission("vote", {"name": "Bo", "selectedNames": ["Emma", "Ava"]})
        self.assertEqual(plan.record()["activity_type"], "voting")
        self.assertEqual(plan.activity_data["selected_names"], ["Emma", "Ava"])
        self.assertEqual(plan.sheet_row["SelectedNames"], "Emma,Ava")

    def test_vote_requires_selection(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            plan_submission("vote", {"name": "Bo"})
        self.assertEqual(ctx.exception.message, "Missing required fields")

    def test_non_dict_payload(self) -> None:
        with self.assertRaises(ValidationError):
            plan_submission("quiz", ["not", "a", "dict"])


if __name__ == "__main__":
    unittest.main()
