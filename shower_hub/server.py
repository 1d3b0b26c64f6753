#!/usr/bin/env python3
"""Baby shower party server.

Guests post guestbook wishes, baby pool predictions, quiz answers, advice and
name votes from their phones; the host screen shows live counters and runs
the Mom vs Dad and Who Would Rather games.

Quickstart:
  pip install -e .
  cp .env.example .env   (fill in SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)
  shower-hub --port 5000
Run tests:
  shower-hub --test
"""

from __future__ import annotations

import argparse
import base64
import io
import logging
import os
import socket
import unittest
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, make_response, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from . import __version__
from .activities import ACTIVITY_TYPES, normalize_activity_type, plan_submission
from .config import Settings, load_settings
from .dual_write import DualWriteCoordinator, SheetsWebhook
from .errors import ConfigurationError, NotFoundError, ShowerError, UpstreamWriteError, ValidationError
from .flavor import make_pool_roaster, make_roast_writer, make_scenario_writer
from .games import MomVsDad, WhoWouldRather, public_session
from .realtime import PollingTransport, RealtimeManager
from .security import sanitize_url
from .stats import POOL_MILESTONE, LiveStats, tally_votes
from .store import SUBMISSIONS_TABLE, PersistenceClient

try:
    import qrcode

    HAS_QR = True
except ImportError:
    HAS_QR = False

logger = logging.getLogger(__name__)

APP_TITLE = "Baby Shower Hub"
DEFAULT_PORT = 5000
SUBMISSIONS_DEFAULT_LIMIT = 10
SUBMISSIONS_MAX_LIMIT = 50

ENDPOINTS = {
    "POST /api/guestbook": "Sign the guestbook",
    "POST /api/pool": "Baby pool prediction",
    "POST /api/quiz": "Baby emoji quiz answers",
    "POST /api/advice": "Advice for the parents or the baby",
    "POST /api/vote": "Vote for baby names",
    "GET /api/vote": "Current name vote tally",
    "GET /api/stats": "Live counters and milestones",
    "GET /api/submissions": "Recent submissions",
    "POST /api/submit": "Submit to backend and spreadsheet",
    "GET|POST /api/game-session": "Mom vs Dad sessions",
    "GET|POST /api/game-scenario": "Mom vs Dad rounds",
    "POST /api/game-vote": "Mom vs Dad guesses",
    "POST /api/game-reveal": "Mom vs Dad reveal",
    "GET /api/game-results": "Mom vs Dad results",
    "/api/who-would-rather/*": "Who Would Rather game",
    "GET /api/qr": "QR code for a join link",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@dataclass
class Services:
    """Everything the routes need, built once per app."""

    settings: Settings
    store: Optional[PersistenceClient]
    writer: DualWriteCoordinator
    stats: LiveStats
    realtime: Optional[RealtimeManager]
    mom_vs_dad: MomVsDad
    who_would_rather: WhoWouldRather
    pool_roaster: Any

    def require_store(self) -> PersistenceClient:
        if self.store is None:
            missing = self.settings.missing_required() or ["backend client"]
            logger.error("Backend call refused, missing configuration: %s", ", ".join(missing))
            raise ConfigurationError("Missing configuration")
        return self.store


def success_response(message: str = "", data: Any = None, status: int = 200, **extra: Any) -> Any:
    body: Dict[str, Any] = {"result": "success"}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def error_response(error: str, status: int = 500, details: Optional[list] = None, **extra: Any) -> Any:
    body: Dict[str, Any] = {"result": "error", "error": error}
    if details:
        body["details"] = details
    body.update(extra)
    return jsonify(body), status


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON in request body")
    return payload


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")


WILDCARD_HOSTS = ("", "0.0.0.0", "::")


def guest_join_url(host: str, port: int) -> str:
    """Address guests on the party network should open; wildcard binds resolve to the LAN IP."""
    if host not in WILDCARD_HOSTS:
        return f"http://{host}:{port}"
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connecting only picks the outbound interface.
        sock.connect(("8.8.8.8", 80))
        address = sock.getsockname()[0]
    except OSError:
        address = "127.0.0.1"
    finally:
        sock.close()
    return f"http://{address}:{port}"


def join_qr_data_url(join_url: str) -> str:
    """PNG data URL of the join link shown on the hub's welcome screen."""
    if not HAS_QR:
        raise NotFoundError("QR code generation unavailable")
    url = sanitize_url(join_url)
    if not url:
        raise ValidationError("data must be an http(s) link")
    qr = qrcode.QRCode(border=2, box_size=6, error_correction=qrcode.constants.ERROR_CORRECT_M)
    qr.add_data(url)
    qr.make(fit=True)
    buffer = io.BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def build_services(
    settings: Settings,
    *,
    store: Optional[PersistenceClient] = None,
    webhook: Optional[SheetsWebhook] = None,
    scenario_writer: Any = None,
    roast_writer: Any = None,
    pool_roaster: Any = None,
    realtime: Optional[RealtimeManager] = None,
) -> Services:
    if store is None and not settings.missing_required():
        store = PersistenceClient(
            settings.supabase_url,
            settings.supabase_key,
            schema=settings.supabase_schema,
            timeout=settings.http_timeout,
        )
    stats = LiveStats()
    if realtime is None and store is not None and settings.realtime_enabled:
        realtime = RealtimeManager(
            lambda name: PollingTransport(store, name, poll_seconds=settings.realtime_poll_seconds),
            base_delay=settings.realtime_base_delay,
            max_attempts=settings.realtime_max_attempts,
        )
    writer = DualWriteCoordinator(
        store,
        webhook or SheetsWebhook(settings.webhook_url, timeout=settings.http_timeout),
        max_selections=settings.vote_max_selections,
        # Without live channels the counters are fed straight from our own writes.
        on_primary_write=None if realtime is not None else stats.record,
    )
    return Services(
        settings=settings,
        store=store,
        writer=writer,
        stats=stats,
        realtime=realtime,
        mom_vs_dad=MomVsDad(
            store,
            scenario_writer or make_scenario_writer(settings.scenario_ai),
            roast_writer or make_roast_writer(settings.roast_ai),
        ),
        who_would_rather=WhoWouldRather(store),
        pool_roaster=pool_roaster or make_pool_roaster(settings.pool_roast_ai),
    )


def start_realtime(services: Services) -> None:
    if services.realtime is None or services.store is None:
        logger.info("Realtime updates disabled")
        return
    try:
        services.stats.seed(services.store)
    except UpstreamWriteError as exc:
        logger.warning("Could not seed live stats: %s", exc)
    for kind in ACTIVITY_TYPES:
        services.realtime.subscribe(kind, services.stats.record)


def create_app(settings: Optional[Settings] = None, **overrides: Any) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)
    app.json.sort_keys = False
    app.config["SETTINGS"] = settings
    services = build_services(settings, **overrides)
    app.extensions["shower_hub"] = services
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    register_error_handlers(app)
    register_routes(app, services)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ShowerError)
    def handle_shower_error(exc: ShowerError) -> Any:
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        return error_response(exc.response_message(), exc.status_code, exc.details)

    @app.errorhandler(404)
    def handle_not_found(exc: HTTPException) -> Any:
        return error_response("Endpoint not found", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(exc: HTTPException) -> Any:
        return error_response("Method not allowed", 405)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Any:
        if isinstance(exc, HTTPException):
            return error_response(exc.description or exc.name, exc.code or 500)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response("Internal server error", 500)


def register_routes(app: Flask, services: Services) -> None:
    settings = services.settings

    @app.before_request
    def answer_preflight() -> Any:
        if request.method == "OPTIONS":
            return make_response("", 200)
        return None

    @app.after_request
    def add_security_headers(response: Any) -> Any:
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.get("/api")
    def health() -> Any:
        return success_response(
            "API is running",
            {
                "name": APP_TITLE,
                "version": __version__,
                "endpoints": ENDPOINTS,
                "backend_configured": services.store is not None,
                "webhook_configured": bool(settings.webhook_url),
            },
        )

    # Submissions

    def submit_activity(kind: str) -> Any:
        plan = plan_submission(kind, _json_body(), max_selections=settings.vote_max_selections)
        store = services.require_store()
        extra = dict(plan.extra)
        if plan.activity_type == "pool":
            extra["milestone"] = pool_milestone(store)
        row = services.writer.write_primary(plan)
        services.writer.mirror(plan)
        if plan.activity_type == "pool":
            data = plan.activity_data
            extra["roast"] = services.pool_roaster.roast(
                data["weight_guess"], data["length_guess"], data["date_guess"]
            )
        return success_response(plan.message, row, 201, **extra)

    def pool_milestone(store: PersistenceClient) -> Dict[str, Any]:
        try:
            before = store.count(SUBMISSIONS_TABLE, {"activity_type": "pool"})
        except UpstreamWriteError as exc:
            logger.warning("Pool count unavailable: %s", exc)
            return {"triggered": False, "count": None}
        return {"triggered": before + 1 == POOL_MILESTONE, "count": before + 1}

    @app.post("/api/guestbook")
    def guestbook() -> Any:
        return submit_activity("guestbook")

    @app.post("/api/pool")
    def pool() -> Any:
        return submit_activity("pool")

    @app.post("/api/quiz")
    def quiz() -> Any:
        return submit_activity("quiz")

    @app.post("/api/advice")
    def advice() -> Any:
        return submit_activity("advice")

    @app.post("/api/vote")
    def vote() -> Any:
        return submit_activity("voting")

    @app.get("/api/vote")
    def vote_tally() -> Any:
        store = services.require_store()
        rows = store.select(SUBMISSIONS_TABLE, {"activity_type": "voting"}, columns="activity_data")
        tally = tally_votes(rows)
        return success_response(
            data={"votes": tally, "total_votes": sum(tally.values()), "total_voters": len(rows)}
        )

    @app.post("/api/submit")
    def submit_both() -> Any:
        payload = _json_body()
        plan = plan_submission(
            payload.get("activityType"),
            payload.get("data"),
            max_selections=settings.vote_max_selections,
        )
        outcome = services.writer.submit(plan)
        body = outcome.to_dict()
        if not outcome.succeeded:
            return error_response("Submission failed on every backend", 502, results=body["results"])
        return success_response(plan.message, results=body["results"], **plan.extra)

    @app.get("/api/stats")
    def stats() -> Any:
        channels = services.realtime.status() if services.realtime is not None else {}
        return success_response(data=services.stats.snapshot(channels))

    @app.get("/api/submissions")
    def submissions() -> Any:
        store = services.require_store()
        limit = max(1, min(SUBMISSIONS_MAX_LIMIT, _int_arg("limit", SUBMISSIONS_DEFAULT_LIMIT)))
        filters = {}
        if request.args.get("activity_type"):
            filters["activity_type"] = normalize_activity_type(request.args["activity_type"])
        rows = store.select(SUBMISSIONS_TABLE, filters, order="created_at.desc", limit=limit)
        return success_response(data=rows, count=len(rows))

    # Mom vs Dad

    @app.get("/api/game-session")
    def game_session_lookup() -> Any:
        services.require_store()
        code = request.args.get("code") or request.args.get("session_code")
        return success_response(data=public_session(services.mom_vs_dad.get_session(code)))

    @app.post("/api/game-session")
    def game_session_action() -> Any:
        services.require_store()
        payload = _json_body()
        action = payload.get("action")
        game = services.mom_vs_dad
        if action == "create":
            return success_response("Session created", game.create_session(payload), 201)
        if action == "join":
            return success_response("Joined session", game.join(payload))
        if action == "update":
            return success_response("Session updated", game.update(payload))
        if action == "admin_login":
            return success_response("Admin login successful", game.admin_login(payload))
        if not action:
            raise ValidationError("Action is required")
        raise ValidationError("Invalid action")

    @app.get("/api/game-scenario")
    def game_scenario_current() -> Any:
        services.require_store()
        return success_response(data=services.mom_vs_dad.current_scenario(request.args.get("session_code")))

    @app.post("/api/game-scenario")
    def game_scenario_next() -> Any:
        services.require_store()
        return success_response("Scenario ready", services.mom_vs_dad.new_scenario(_json_body()), 201)

    @app.post("/api/game-vote")
    def game_vote() -> Any:
        services.require_store()
        return success_response("Vote recorded", services.mom_vs_dad.vote(_json_body()), 201)

    @app.post("/api/game-reveal")
    def game_reveal() -> Any:
        services.require_store()
        return success_response("Round revealed", services.mom_vs_dad.reveal(_json_body()))

    @app.get("/api/game-results")
    def game_results() -> Any:
        services.require_store()
        return success_response(data=services.mom_vs_dad.results(request.args.get("session_code")))

    # Who Would Rather

    @app.post("/api/who-would-rather/create-session")
    def wwr_create() -> Any:
        services.require_store()
        return success_response("Session created", services.who_would_rather.create_session(_json_body()), 201)

    @app.get("/api/who-would-rather/current-question")
    def wwr_current() -> Any:
        services.require_store()
        data = services.who_would_rather.current_question(
            request.args.get("session_code"), request.args.get("guest_name")
        )
        return success_response(data=data)

    @app.post("/api/who-would-rather/vote")
    def wwr_vote() -> Any:
        services.require_store()
        return success_response("Vote recorded", services.who_would_rather.vote(_json_body()))

    @app.get("/api/who-would-rather/results")
    def wwr_results() -> Any:
        services.require_store()
        data = services.who_would_rather.results(
            request.args.get("session_code"),
            request.args.get("question_number"),
            request.args.get("guest_name"),
        )
        return success_response(data=data)

    @app.post("/api/who-would-rather/next-question")
    def wwr_next() -> Any:
        services.require_store()
        data = services.who_would_rather.next_question(_json_body())
        return success_response(data.get("message", "Next question"), data)

    @app.get("/api/who-would-rather/session-status")
    def wwr_status() -> Any:
        services.require_store()
        return success_response(data=services.who_would_rather.session_status(request.args.get("session_code")))

    @app.get("/api/qr")
    def qr() -> Any:
        target = request.args.get("data") or app.config.get("JOIN_URL") or request.host_url
        return success_response(data={"url": target, "qr": join_qr_data_url(target)})


def print_startup_info(host: str, port: int) -> str:
    join_url = guest_join_url(host, port)
    print("=" * 60)
    print(f"{APP_TITLE} {__version__}")
    print(f"Guest URL: {join_url}")
    print(f"Health check: {join_url}/api")
    print("=" * 60)
    if HAS_QR:
        qr = qrcode.QRCode(border=1)
        qr.add_data(join_url)
        qr.make(fit=True)
        print("Scan to join:")
        for row in qr.get_matrix():
            print("".join("##" if cell else "  " for cell in row))
        print("=" * 60)
    return join_url


def run_tests() -> int:
    package_dir = os.path.dirname(os.path.abspath(__file__))
    suite = unittest.defaultTestLoader.discover(
        package_dir, pattern="test_*.py", top_level_dir=os.path.dirname(package_dir)
    )
    result = unittest.TextTestRunner(verbosity=2).run(suite)
    return 0 if result.wasSuccessful() else 1


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_TITLE} server")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", DEFAULT_PORT)), help="Port to listen on")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--threads", type=int, default=8, help="Waitress worker threads")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--no-realtime", action="store_true", help="Do not start live submission channels")
    parser.add_argument("--test", action="store_true", help="Run tests and exit")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    load_dotenv(override=False)
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.test:
        raise SystemExit(run_tests())

    settings = load_settings()
    if args.no_realtime:
        settings = replace(settings, realtime_enabled=False)
    app = create_app(settings)
    services: Services = app.extensions["shower_hub"]
    start_realtime(services)
    app.config["JOIN_URL"] = print_startup_info(args.host, args.port)

    from waitress import serve

    try:
        serve(app, host=args.host, port=args.port, threads=args.threads)
    finally:
        if services.realtime is not None:
            services.realtime.close_all()
        if services.store is not None:
            services.store.close()


if __name__ == "__main__":
    main()
