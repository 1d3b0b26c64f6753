from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from .errors import ValidationError
from .security import sanitize_form_data, sanitize_name, sanitize_url

ACTIVITY_TYPES = ("guestbook", "pool", "quiz", "advice", "voting")
ACTIVITY_ALIASES = {"vote": "voting", "baby_pool": "pool"}

QUIZ_ANSWERS: Dict[str, str] = {
    "puzzle1": "Baby Shower",
    "puzzle2": "Three Little Pigs",
    "puzzle3": "Rock a Bye Baby",
    "puzzle4": "Baby Bottle",
    "puzzle5": "Diaper Change",
}
QUIZ_TOTAL = len(QUIZ_ANSWERS)

ADVICE_TYPES = ("For Parents", "For Baby")
VOTE_NAME_MAX_LEN = 50

SHEET_NAMES = {
    "guestbook": "Guestbook",
    "pool": "BabyPool",
    "quiz": "QuizAnswers",
    "advice": "Advice",
    "voting": "NameVotes",
}

NAME_RULE = {"type": "name", "required": True, "label": "name"}

GUESTBOOK_SCHEMA = {
    "name": NAME_RULE,
    "relationship": {"type": "text", "required": True, "max_length": 50, "allow_newlines": False},
    "message": {"type": "text", "required": True, "min_length": 10, "max_length": 500},
}

POOL_SCHEMA = {
    "name": NAME_RULE,
    "dateGuess": {"type": "text", "required": True, "pattern": r"\d{4}-\d{2}-\d{2}", "max_length": 10},
    "timeGuess": {"type": "text", "required": True, "pattern": r"\d{1,2}:\d{2}", "max_length": 5},
    "weightGuess": {"type": "number", "required": True, "min": 1, "max": 6},
    "lengthGuess": {"type": "integer", "required": True, "min": 30, "max": 60},
}

QUIZ_SCHEMA: Dict[str, Dict[str, Any]] = {"name": NAME_RULE}
QUIZ_SCHEMA.update(
    {key: {"type": "text", "max_length": 100, "allow_newlines": False} for key in QUIZ_ANSWERS}
)

ADVICE_SCHEMA = {
    "name": NAME_RULE,
    "adviceType": {"type": "text", "required": True, "enum": list(ADVICE_TYPES)},
    "message": {"type": "text", "required": True, "min_length": 2, "max_length": 2000},
}


@dataclass
class SubmissionPlan:
    """A validated submission, ready for the backend and the sheet webhook."""

    activity_type: str
    name: str
    activity_data: Dict[str, Any]
    sheet_row: Dict[str, Any]
    message: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def sheet(self) -> str:
        return SHEET_NAMES[self.activity_type]

    def record(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "activity_type": self.activity_type,
            "activity_data": self.activity_data,
        }

    def webhook_payload(self) -> Dict[str, Any]:
        row = {"Timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()}
        row.update(self.sheet_row)
        return {"sheet": self.sheet, "data": row}


def normalize_activity_type(activity_type: Any) -> str:
    value = str(activity_type or "").strip().lower()
    value = ACTIVITY_ALIASES.get(value, value)
    if value not in ACTIVITY_TYPES:
        raise ValidationError(f"Unknown activity type: {activity_type}")
    return value


def validate_form(payload: Dict[str, Any], schema: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    result = sanitize_form_data(payload, schema)
    if not result.is_valid:
        missing = [err for err in result.errors if err.endswith(" is required")]
        if missing and len(missing) == len(result.errors):
            raise ValidationError("Missing required fields", result.errors)
        raise ValidationError("Validation failed", result.errors)
    return result.data


def score_quiz(answers: Dict[str, Any]) -> int:
    score = 0
    for key, correct in QUIZ_ANSWERS.items():
        given = answers.get(key)
        if isinstance(given, str) and given.lower() == correct.lower():
            score += 1
    return max(0, min(QUIZ_TOTAL, score))


def normalize_selected_names(raw: Any, max_selections: int) -> List[str]:
    if not isinstance(raw, list):
        raise ValidationError("selectedNames must be a list of names")
    # The cap applies to the ballot as submitted, before duplicates collapse.
    if not raw:
        raise ValidationError("At least one name is required")
    if len(raw) > max_selections:
        raise ValidationError(f"Maximum {max_selections} votes allowed")
    names: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            raise ValidationError("selectedNames must be a list of names")
        cleaned = sanitize_name(item, VOTE_NAME_MAX_LEN + 1)
        if not cleaned:
            continue
        if len(cleaned) > VOTE_NAME_MAX_LEN:
            raise ValidationError(f"Names must be {VOTE_NAME_MAX_LEN} characters or less")
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        names.append(cleaned)
    if not names:
        raise ValidationError("At least one name is required")
    return names


def plan_guestbook(payload: Dict[str, Any], **_: Any) -> SubmissionPlan:
    data = validate_form(payload, GUESTBOOK_SCHEMA)
    photo_url = sanitize_url(payload.get("photoURL")) or None
    return SubmissionPlan(
        activity_type="guestbook",
        name=data["name"],
        activity_data={
            "relationship": data["relationship"],
            "message": data["message"],
            "photo_url": photo_url,
        },
        sheet_row={
            "Name": data["name"],
            "Relationship": data["relationship"],
            "Message": data["message"],
            "PhotoURL": photo_url or "",
        },
        message="Wish saved successfully!",
    )


def plan_pool(payload: Dict[str, Any], **_: Any) -> SubmissionPlan:
    data = validate_form(payload, POOL_SCHEMA)
    return SubmissionPlan(
        activity_type="pool",
        name=data["name"],
        activity_data={
            "date_guess": data["dateGuess"],
            "time_guess": data["timeGuess"],
            "weight_guess": data["weightGuess"],
            "length_guess": data["lengthGuess"],
        },
        sheet_row={
            "Name": data["name"],
            "DateGuess": data["dateGuess"],
            "TimeGuess": data["timeGuess"],
            "WeightGuess": data["weightGuess"],
            "LengthGuess": data["lengthGuess"],
        },
        message="Prediction saved!",
    )


def plan_quiz(payload: Dict[str, Any], **_: Any) -> SubmissionPlan:
    data = validate_form(payload, QUIZ_SCHEMA)
    answers = {key: data.get(key, "") for key in QUIZ_ANSWERS}
    score = score_quiz(answers)
    activity_data: Dict[str, Any] = dict(answers)
    activity_data.update({"score": score, "total_questions": QUIZ_TOTAL})
    sheet_row: Dict[str, Any] = {"Name": data["name"]}
    sheet_row.update({key.capitalize(): value for key, value in answers.items()})
    sheet_row["Score"] = score
    return SubmissionPlan(
        activity_type="quiz",
        name=data["name"],
        activity_data=activity_data,
        sheet_row=sheet_row,
        message=f"You got {score}/{QUIZ_TOTAL} correct!",
        extra={"score": score},
    )


def plan_advice(payload: Dict[str, Any], **_: Any) -> SubmissionPlan:
    data = validate_form(payload, ADVICE_SCHEMA)
    return SubmissionPlan(
        activity_type="advice",
        name=data["name"],
        activity_data={"advice_type": data["adviceType"], "message": data["message"]},
        sheet_row={"Name": data["name"], "AdviceType": data["adviceType"], "Message": data["message"]},
        message="Advice saved!",
    )


def plan_vote(payload: Dict[str, Any], *, max_selections: int = 3, **_: Any) -> SubmissionPlan:
    data = validate_form(payload, {"name": NAME_RULE})
    if "selectedNames" not in payload:
        raise ValidationError("Missing required fields", ["selectedNames is required"])
    names = normalize_selected_names(payload.get("selectedNames"), max_selections)
    return SubmissionPlan(
        activity_type="voting",
        name=data["name"],
        activity_data={"selected_names": names},
        sheet_row={"Name": data["name"], "SelectedNames": ",".join(names)},
        message="Votes recorded!",
    )


PLANNERS: Dict[str, Callable[..., SubmissionPlan]] = {
    "guestbook": plan_guestbook,
    "pool": plan_pool,
    "quiz": plan_quiz,
    "advice": plan_advice,
    "voting": plan_vote,
}


def plan_submission(activity_type: Any, payload: Any, *, max_selections: int = 3) -> SubmissionPlan:
    kind = normalize_activity_type(activity_type)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON in request body")
    return PLANNERS[kind](payload, max_selections=max_selections)
