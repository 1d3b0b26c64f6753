"""Session logic for the two party games.

Mom vs Dad: the admin opens a session, generates a scenario per round, guests
guess which parent would do it, and the admin reveals the parents' real answer.
Who Would Rather: a fixed list of questions that everyone votes through.
"""

from __future__ import annotations

import datetime
import logging
import random
from typing import Any, Dict, List, Optional, Tuple

from .activities import validate_form
from .errors import AuthorizationError, ConflictError, NotFoundError, UpstreamWriteError, ValidationError
from .flavor import RoundOutcome, TemplateRoastWriter, TemplateScenarioWriter
from .security import sanitize_name

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "game_sessions"
SCENARIOS_TABLE = "game_scenarios"
VOTES_TABLE = "game_votes"
RESULTS_TABLE = "game_results"

WWR_SESSIONS_TABLE = "who_would_rather_sessions"
WWR_VOTES_TABLE = "who_would_rather_votes"

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
CODE_ATTEMPTS = 10
DEFAULT_ROUNDS = 5
MAX_ROUNDS = 10
CHOICES = ("mom", "dad")

# status -> statuses it may move to
TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "setup": ("voting",),
    "voting": ("revealed",),
    "revealed": ("voting", "completed"),
    "completed": (),
}
JOINABLE = ("setup", "voting")

WWR_QUESTIONS = [
    "Who wakes up first when baby cries at night?",
    "Who changes the most diapers?",
    "Who handles baby vomit like a pro?",
    "Who sings the best lullabies?",
    "Who reads the most books to baby?",
    "Who loses their temper first?",
    "Who is better at packing the diaper bag?",
    "Who handles doctor visits better?",
    "Who does most of the baby bath time?",
    "Who cooks dinner while holding baby?",
    "Who does the 2 AM feeding without complaining?",
    "Who handles baby laundry (even with explosions)?",
    "Who plans the best birthday parties?",
    "Who is more emotional about baby's milestones?",
    "Who takes better baby photos?",
    "Who is better at calming a fussy baby?",
    "Who does more research on parenting?",
    "Who is more likely to cry at baby's first steps?",
    "Who handles teething episodes better?",
    "Who is the better baby whisperer?",
]

SESSION_CODE_RULE = {"type": "text", "required": True, "label": "session_code", "allow_newlines": False}
ADMIN_CODE_RULE = {"type": "text", "required": True, "label": "admin_code", "pattern": r"\d{4}"}
GUEST_RULE = {"type": "name", "required": True, "label": "guest_name"}
CHOICE_RULE = {"type": "text", "required": True, "enum": list(CHOICES)}
SCENARIO_ID_RULE = {
    "type": "text",
    "required": True,
    "label": "scenario_id",
    "allow_newlines": False,
    "max_length": 64,
}


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def normalize_code(value: Any) -> str:
    return str(value or "").strip().upper()


def generate_session_code(rng: random.Random) -> str:
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def generate_admin_code(rng: random.Random) -> str:
    return str(rng.randint(1000, 9999))


def _lowered(payload: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    data = dict(payload)
    for key in keys:
        if isinstance(data.get(key), str):
            data[key] = data[key].strip().lower()
    return data


def _with_code(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON in request body")
    data = dict(payload)
    if "session_code" in data:
        data["session_code"] = normalize_code(data["session_code"])
    return data


def _with_scenario_id(data: Dict[str, Any]) -> Dict[str, Any]:
    # Ids are opaque (UUIDs in the hosted tables); integers are taken as text.
    value = data.get("scenario_id")
    if isinstance(value, int) and not isinstance(value, bool):
        data = dict(data, scenario_id=str(value))
    return data


def percentages(mom_votes: int, dad_votes: int) -> Tuple[float, float]:
    total = mom_votes + dad_votes
    if not total:
        return 0.0, 0.0
    return round(mom_votes / total * 100, 2), round(dad_votes / total * 100, 2)


def winning_choice(mom_votes: int, dad_votes: int) -> str:
    if mom_votes > dad_votes:
        return "mom"
    if dad_votes > mom_votes:
        return "dad"
    return "tie"


def perception_gap(mom_votes: int, dad_votes: int, actual_choice: str) -> float:
    """Percentage of counted votes that picked the other parent."""
    total = mom_votes + dad_votes
    if not total:
        return 0.0
    wrong = dad_votes if actual_choice == "mom" else mom_votes
    return round(wrong / total * 100, 2)


def particle_effect(mom_percentage: float, dad_percentage: float) -> str:
    gap = abs(mom_percentage - dad_percentage)
    if gap > 60:
        return "fireworks"
    if gap > 40:
        return "confetti"
    if gap > 20:
        return "stars"
    return "hearts"


def tally_latest_votes(rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """Count mom/dad votes, keeping only each guest's most recent vote.

    Rows must arrive oldest first; ids are opaque and never compared.
    """
    latest: Dict[str, str] = {}
    for row in rows:
        guest = str(row.get("guest_name") or "").strip().lower()
        if guest and row.get("vote_choice") in CHOICES:
            latest[guest] = row["vote_choice"]
    choices = list(latest.values())
    return choices.count("mom"), choices.count("dad")


def public_session(session: Dict[str, Any], *, include_admin: bool = False) -> Dict[str, Any]:
    view = {
        "session_id": session.get("id"),
        "session_code": session.get("session_code"),
        "mom_name": session.get("mom_name"),
        "dad_name": session.get("dad_name"),
        "status": session.get("status"),
        "current_round": session.get("current_round", 0),
        "total_rounds": session.get("total_rounds", DEFAULT_ROUNDS),
    }
    if include_admin:
        view["admin_code"] = session.get("admin_code")
    return view


def public_scenario(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "scenario_id": row.get("id"),
        "round_number": row.get("round_number"),
        "scenario_text": row.get("scenario_text"),
        "mom_option": row.get("mom_option"),
        "dad_option": row.get("dad_option"),
        "intensity": row.get("intensity"),
        "theme": row.get("theme"),
        "ai_generated": bool(row.get("ai_generated")),
    }


class MomVsDad:
    def __init__(
        self,
        store: Any,
        scenario_writer: Any = None,
        roast_writer: Any = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.scenario_writer = scenario_writer or TemplateScenarioWriter()
        self.roast_writer = roast_writer or TemplateRoastWriter()
        self.rng = rng or random.SystemRandom()

    # Sessions

    def get_session(self, code: Any) -> Dict[str, Any]:
        session_code = normalize_code(code)
        if not session_code:
            raise ValidationError("Session code required")
        session = self.store.select_one(SESSIONS_TABLE, {"session_code": session_code})
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def _admin_session(self, data: Dict[str, Any]) -> Dict[str, Any]:
        session = self.get_session(data.get("session_code"))
        if str(data.get("admin_code", "")).strip() != str(session.get("admin_code")):
            raise AuthorizationError("Invalid admin code")
        return session

    def _allocate_code(self) -> str:
        for _ in range(CODE_ATTEMPTS):
            code = generate_session_code(self.rng)
            if self.store.select_one(SESSIONS_TABLE, {"session_code": code}, columns="id") is None:
                return code
        raise UpstreamWriteError("Could not allocate a unique session code")

    def create_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = validate_form(
            payload,
            {
                "mom_name": {"type": "name", "required": True, "label": "mom_name"},
                "dad_name": {"type": "name", "required": True, "label": "dad_name"},
                "total_rounds": {
                    "type": "integer",
                    "min": 1,
                    "max": MAX_ROUNDS,
                    "default": DEFAULT_ROUNDS,
                },
            },
        )
        session = self.store.insert(
            SESSIONS_TABLE,
            {
                "session_code": self._allocate_code(),
                "admin_code": generate_admin_code(self.rng),
                "mom_name": data["mom_name"],
                "dad_name": data["dad_name"],
                "status": "setup",
                "current_round": 0,
                "total_rounds": data["total_rounds"],
            },
        )
        logger.info("Created game session %s", session.get("session_code"))
        return public_session(session, include_admin=True)

    def latest_scenario(self, session: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.store.select_one(
            SCENARIOS_TABLE, {"session_id": session["id"]}, order="round_number.desc"
        )

    def join(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _with_code(payload)
        guest = validate_form(data, {"session_code": SESSION_CODE_RULE, "guest_name": GUEST_RULE})
        session = self.get_session(guest["session_code"])
        if session.get("status") not in JOINABLE:
            raise ConflictError("Session is not accepting players")
        scenario = self.latest_scenario(session) if session.get("status") == "voting" else None
        view = public_session(session)
        view.update({"guest_name": guest["guest_name"], "scenario": public_scenario(scenario)})
        return view

    def admin_login(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._admin_session(_with_code(payload))
        return public_session(session, include_admin=True)

    def _transition(self, session: Dict[str, Any], status: str, **changes: Any) -> Dict[str, Any]:
        current = session.get("status")
        if status != current and status not in TRANSITIONS.get(current, ()):
            raise ConflictError(f"Cannot move session from {current} to {status}")
        changes["status"] = status
        if status == "completed":
            changes["completed_at"] = _now()
        rows = self.store.update(SESSIONS_TABLE, {"id": session["id"]}, changes)
        updated = dict(session)
        updated.update(rows[0] if rows else changes)
        return updated

    def update(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _with_code(payload)
        session = self._admin_session(data)
        status = data.get("status")
        if not status or status == session.get("status"):
            view = public_session(session)
            view["message"] = "No changes to apply"
            return view
        if status not in TRANSITIONS:
            raise ValidationError(f"Unknown status: {status}")
        return public_session(self._transition(session, status))

    # Rounds

    def new_scenario(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _with_code(payload)
        session = self._admin_session(data)
        if "voting" not in TRANSITIONS.get(session.get("status"), ()):
            raise ConflictError("Finish the current round before starting a new one")
        round_number = int(session.get("current_round") or 0) + 1
        if round_number > int(session.get("total_rounds") or DEFAULT_ROUNDS):
            raise ConflictError("All rounds have been played")
        theme = str(data.get("theme") or "general").strip().lower()
        scenario = self.scenario_writer.write(
            session["mom_name"], session["dad_name"], theme, round_number
        )
        row = self.store.insert(
            SCENARIOS_TABLE,
            {
                "session_id": session["id"],
                "round_number": round_number,
                "scenario_text": scenario.text,
                "mom_option": scenario.mom_option,
                "dad_option": scenario.dad_option,
                "intensity": scenario.intensity,
                "theme": theme,
                "ai_generated": scenario.ai_generated,
            },
        )
        updated = self._transition(session, "voting", current_round=round_number)
        logger.info("Session %s started round %d", session["session_code"], round_number)
        return {"session": public_session(updated), "scenario": public_scenario(row)}

    def current_scenario(self, code: Any) -> Dict[str, Any]:
        session = self.get_session(code)
        return {"session": public_session(session), "scenario": public_scenario(self.latest_scenario(session))}

    def _current_round_scenario(
        self, session: Dict[str, Any], scenario_id: Any, action: str = "vote"
    ) -> Dict[str, Any]:
        scenario = self.latest_scenario(session)
        if scenario is None:
            raise NotFoundError("Scenario not found")
        if str(scenario.get("id")) != str(scenario_id):
            raise ConflictError(f"Can only {action} on the current scenario")
        return scenario

    def vote(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _lowered(_with_code(payload), "vote_choice")
        form = validate_form(
            _with_scenario_id(data),
            {
                "session_code": SESSION_CODE_RULE,
                "scenario_id": SCENARIO_ID_RULE,
                "guest_name": GUEST_RULE,
                "vote_choice": CHOICE_RULE,
            },
        )
        session = self.get_session(form["session_code"])
        if session.get("status") != "voting":
            raise ConflictError("Voting is closed for this round")
        scenario = self._current_round_scenario(session, form["scenario_id"])
        row = self.store.insert(
            VOTES_TABLE,
            {
                "scenario_id": scenario["id"],
                "session_id": session["id"],
                "guest_name": form["guest_name"],
                "vote_choice": form["vote_choice"],
                "voted_at": _now(),
            },
        )
        mom_votes, dad_votes = tally_latest_votes(
            self.store.select(VOTES_TABLE, {"scenario_id": scenario["id"]}, order="voted_at.asc")
        )
        return {
            "vote_id": row.get("id"),
            "scenario_id": scenario["id"],
            "vote_choice": form["vote_choice"],
            "mom_votes": mom_votes,
            "dad_votes": dad_votes,
        }

    def reveal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _lowered(_with_code(payload), "actual_choice")
        session = self._admin_session(data)
        form = validate_form(
            _with_scenario_id(data),
            {
                "scenario_id": SCENARIO_ID_RULE,
                "actual_choice": CHOICE_RULE,
            },
        )
        scenario = self._current_round_scenario(session, form["scenario_id"], "reveal")
        if self.store.select_one(RESULTS_TABLE, {"scenario_id": scenario["id"]}, columns="id"):
            raise ConflictError("This round has already been revealed")
        if session.get("status") != "voting":
            raise ConflictError("Round is not open for reveal")

        mom_votes, dad_votes = tally_latest_votes(
            self.store.select(VOTES_TABLE, {"scenario_id": scenario["id"]}, order="voted_at.asc")
        )
        mom_pct, dad_pct = percentages(mom_votes, dad_votes)
        crowd = winning_choice(mom_votes, dad_votes)
        actual = form["actual_choice"]
        gap = perception_gap(mom_votes, dad_votes, actual)
        round_number = int(scenario.get("round_number") or session.get("current_round") or 1)
        roast = self.roast_writer.roast(
            RoundOutcome(
                mom_percentage=mom_pct,
                dad_percentage=dad_pct,
                crowd_choice=crowd,
                actual_choice=actual,
                perception_gap=gap,
                scenario_text=scenario.get("scenario_text", ""),
                round_number=round_number,
            )
        )
        result = self.store.insert(
            RESULTS_TABLE,
            {
                "scenario_id": scenario["id"],
                "session_id": session["id"],
                "round_number": round_number,
                "mom_votes": mom_votes,
                "dad_votes": dad_votes,
                "crowd_choice": crowd,
                "actual_choice": actual,
                "perception_gap": gap,
                "roast_commentary": roast,
            },
        )
        total_rounds = int(session.get("total_rounds") or DEFAULT_ROUNDS)
        next_status = "completed" if round_number >= total_rounds else "revealed"
        updated = self._transition(session, next_status)
        logger.info(
            "Session %s revealed round %d (crowd=%s actual=%s)",
            session["session_code"],
            round_number,
            crowd,
            actual,
        )
        return {
            "result_id": result.get("id"),
            "scenario_id": scenario["id"],
            "round_number": round_number,
            "mom_votes": mom_votes,
            "dad_votes": dad_votes,
            "total_votes": mom_votes + dad_votes,
            "mom_percentage": mom_pct,
            "dad_percentage": dad_pct,
            "crowd_choice": crowd,
            "actual_choice": actual,
            "perception_gap": gap,
            "roast_commentary": roast,
            "particle_effect": particle_effect(mom_pct, dad_pct),
            "session_status": updated.get("status"),
        }

    def results(self, code: Any) -> Dict[str, Any]:
        session = self.get_session(code)
        rows = self.store.select(RESULTS_TABLE, {"session_id": session["id"]}, order="round_number.asc")
        rounds = []
        for row in rows:
            mom_pct, dad_pct = percentages(int(row.get("mom_votes") or 0), int(row.get("dad_votes") or 0))
            entry = dict(row)
            entry.update({"mom_percentage": mom_pct, "dad_percentage": dad_pct})
            rounds.append(entry)
        return {"session": public_session(session), "rounds": rounds}


class WhoWouldRather:
    def __init__(self, store: Any, *, rng: Optional[random.Random] = None, questions: Optional[List[str]] = None) -> None:
        self.store = store
        self.rng = rng or random.SystemRandom()
        self.questions = list(questions or WWR_QUESTIONS)

    def _session(self, code: Any) -> Dict[str, Any]:
        session_code = normalize_code(code)
        if not session_code:
            raise ValidationError("Session code required")
        session = self.store.select_one(WWR_SESSIONS_TABLE, {"session_code": session_code})
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def _active(self, code: Any) -> Dict[str, Any]:
        session = self._session(code)
        if session.get("status") != "active":
            raise ValidationError("Session is not active")
        return session

    def _question_text(self, number: int) -> str:
        if not 1 <= number <= len(self.questions):
            raise NotFoundError("Question not found")
        return self.questions[number - 1]

    def create_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = validate_form(payload, {"guest_name": GUEST_RULE})
        code = None
        for _ in range(CODE_ATTEMPTS):
            candidate = generate_session_code(self.rng)
            if self.store.select_one(WWR_SESSIONS_TABLE, {"session_code": candidate}, columns="id") is None:
                code = candidate
                break
        if code is None:
            raise UpstreamWriteError("Could not allocate a unique session code")
        session = self.store.insert(
            WWR_SESSIONS_TABLE,
            {
                "session_code": code,
                "status": "active",
                "current_question_index": 0,
                "total_questions": len(self.questions),
                "created_by": data["guest_name"],
            },
        )
        return {
            "session_id": session.get("id"),
            "session_code": session.get("session_code"),
            "current_question": 1,
            "total_questions": len(self.questions),
            "status": session.get("status"),
        }

    def _guest_vote(self, session: Dict[str, Any], number: int, guest_name: Any) -> Optional[str]:
        guest = sanitize_name(guest_name)
        if not guest:
            return None
        row = self.store.select_one(
            WWR_VOTES_TABLE,
            {"session_id": session["id"], "question_number": number, "guest_name": guest},
            columns="vote_choice",
        )
        return row.get("vote_choice") if row else None

    def current_question(self, code: Any, guest_name: Any = None) -> Dict[str, Any]:
        session = self._active(code)
        number = int(session.get("current_question_index") or 0) + 1
        guest_vote = self._guest_vote(session, number, guest_name)
        return {
            "question_number": number,
            "question_text": self._question_text(number),
            "has_voted": guest_vote is not None,
            "guest_vote": guest_vote,
            "session_status": session.get("status"),
        }

    def _tally(self, session: Dict[str, Any], number: int) -> Dict[str, Any]:
        rows = self.store.select(
            WWR_VOTES_TABLE, {"session_id": session["id"], "question_number": number}, columns="vote_choice"
        )
        choices = [row.get("vote_choice") for row in rows]
        mom_votes, dad_votes = choices.count("mom"), choices.count("dad")
        mom_pct, dad_pct = percentages(mom_votes, dad_votes)
        return {
            "mom_votes": mom_votes,
            "dad_votes": dad_votes,
            "mom_percentage": mom_pct,
            "dad_percentage": dad_pct,
            "winning_choice": winning_choice(mom_votes, dad_votes),
            "total_votes": mom_votes + dad_votes,
        }

    def vote(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _lowered(_with_code(payload), "vote_choice")
        form = validate_form(
            data,
            {
                "session_code": dict(SESSION_CODE_RULE, pattern=r"[A-Z0-9]{6}"),
                "guest_name": GUEST_RULE,
                "question_number": {"type": "integer", "required": True, "min": 1, "max": len(self.questions)},
                "vote_choice": CHOICE_RULE,
            },
        )
        session = self._active(form["session_code"])
        current = int(session.get("current_question_index") or 0) + 1
        if form["question_number"] != current:
            raise ValidationError("Can only vote on current question")
        row = self.store.upsert(
            WWR_VOTES_TABLE,
            {
                "session_id": session["id"],
                "question_number": current,
                "guest_name": form["guest_name"],
                "vote_choice": form["vote_choice"],
            },
            on_conflict="session_id,question_number,guest_name",
        )
        return {"vote_id": row.get("id"), "results": self._tally(session, current)}

    def results(self, code: Any, question_number: Any, guest_name: Any = None) -> Dict[str, Any]:
        try:
            number = int(question_number)
        except (TypeError, ValueError):
            number = 0
        if not normalize_code(code) or number < 1:
            raise ValidationError("Session code and question number required")
        session = self._session(code)
        return {
            "question_number": number,
            "question_text": self._question_text(number),
            "results": self._tally(session, number),
            "user_vote": self._guest_vote(session, number, guest_name),
        }

    def next_question(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = _with_code(payload)
        session = self._active(data.get("session_code"))
        next_index = int(session.get("current_question_index") or 0) + 1
        total = int(session.get("total_questions") or len(self.questions))
        if next_index >= total:
            self.store.update(
                WWR_SESSIONS_TABLE, {"id": session["id"]}, {"status": "complete", "completed_at": _now()}
            )
            return {"is_complete": True, "message": "Game completed!", "total_questions": total}
        self.store.update(WWR_SESSIONS_TABLE, {"id": session["id"]}, {"current_question_index": next_index})
        number = next_index + 1
        return {
            "is_complete": False,
            "question_number": number,
            "question_text": self._question_text(number),
            "total_questions": total,
        }

    def session_status(self, code: Any) -> Dict[str, Any]:
        session = self._session(code)
        index = int(session.get("current_question_index") or 0)
        total = int(session.get("total_questions") or len(self.questions))
        return {
            "session_code": session.get("session_code"),
            "status": session.get("status"),
            "current_question": index + 1,
            "total_questions": total,
            "progress": round((index + 1) / total * 100, 2) if total else 0.0,
        }
