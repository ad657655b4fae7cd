import json
import os
import subprocess
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from nemy.errors import OrderFlowError, StorageFailure
from nemy.extensions import cors, db, migrate
from nemy.integrations.messaging.factory import messaging_health
from nemy.segments.segment_orders_api import orders_bp
from nemy.segments.segment_reconciliation_admin import audit_bp, recon_bp
from nemy.segments.segment_wallets import admin_wallets_bp, wallets_bp
from nemy.utils.observability import init_sentry, install_request_observers

BACKEND_ROOT = Path(__file__).resolve().parents[1]
PRODUCTION_ENVS = ("prod", "production")


def _alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config(str(BACKEND_ROOT / "migrations" / "alembic.ini"))
        cfg.set_main_option("script_location", str(BACKEND_ROOT / "migrations"))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except Exception:
        return "unknown"
    return heads[0] if heads else "unknown"


def _git_sha() -> str:
    sha = (os.getenv("GIT_SHA") or os.getenv("SOURCE_VERSION") or "").strip()
    if sha:
        return sha
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=str(BACKEND_ROOT), stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return out.decode().strip()


def _bounded_env(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = default
    return max(low, min(value, high))


def _database_uri(env: str) -> str:
    url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if url:
        return url
    if env in PRODUCTION_ENVS:
        raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
    instance_dir = BACKEND_ROOT / "instance"
    instance_dir.mkdir(exist_ok=True)
    return "sqlite:///" + (instance_dir / "nemy.db").as_posix()


def _engine_options(app: Flask, url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _bounded_env("DB_POOL_RECYCLE_SECONDS", 1800, 60, 86400),
    }
    if url.startswith("sqlite://"):
        return options
    options["pool_size"] = _bounded_env("DB_POOL_SIZE", 10, 1, 200)
    options["max_overflow"] = _bounded_env("DB_MAX_OVERFLOW", 20, 0, 500)
    options["pool_timeout"] = _bounded_env("DB_POOL_TIMEOUT_SECONDS", 30, 1, 300)
    app.logger.info(
        "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
        options["pool_size"],
        options["max_overflow"],
        options["pool_timeout"],
    )
    return options


def _cors_origins(env: str) -> list[str]:
    origins = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if not origins and env not in PRODUCTION_ENVS:
        return ["*"]
    return origins


def _with_trace(payload: dict) -> dict:
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(OrderFlowError)
    def _order_flow_error(error: OrderFlowError):
        app.logger.info("order_flow_error code=%s path=%s reason=%s", error.code, request.path, error.reason)
        return jsonify(_with_trace(error.to_dict())), int(error.http_status)

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        payload = {"ok": False, "error": error.name, "message": error.description or error.name, "status": status}
        return jsonify(_with_trace(payload)), status

    @app.errorhandler(Exception)
    def _unhandled_error(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        payload = {"ok": False, "error": "InternalServerError", "message": "Internal server error", "status": 500}
        return jsonify(_with_trace(payload)), 500


def _register_system_routes(app: Flask, env: str) -> None:
    @app.get("/api/health")
    def health():
        payload = {
            "ok": True,
            "service": "nemy-backend",
            "env": env,
            "db": "ok",
            "git_sha": _git_sha(),
            "alembic_head": _alembic_head(),
            "notifications": messaging_health(),
        }
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            payload["db"] = "fail"
            payload["db_error"] = str(e)[:300]
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({"ok": True, "service": "nemy-backend", "env": env})

    @app.get("/api/version")
    def version():
        return jsonify({"ok": True, "alembic_head": _alembic_head(), "git_sha": _git_sha()})


def _register_cli(app: Flask) -> None:
    @app.cli.command("quick-audit")
    @click.option("--persist/--no-persist", default=False, help="Store the report in reconciliation_reports")
    def quick_audit_command(persist: bool):
        from nemy.services.audit_service import run_quick_audit
        from nemy.services.reconciliation_service import persist_report

        summary = run_quick_audit()
        if persist:
            summary["report_id"] = int(persist_report(summary, created_by="cli").id)
        click.echo(json.dumps(summary, indent=2))
        if summary["overall_status"] != "PASSED":
            raise SystemExit(1)

    @app.cli.command("settle-backlog")
    @click.option("--limit", default=200, show_default=True, type=click.IntRange(1, 5000, clamp=True), help="Max orders to settle")
    def settle_backlog_command(limit: int):
        from nemy.jobs.settlement_runner import run_settlement_backlog

        try:
            result = run_settlement_backlog(limit=limit)
        except StorageFailure as e:
            click.echo(json.dumps({"ok": False, "error": e.code, "message": e.reason}))
            raise SystemExit(1) from e
        click.echo(json.dumps(result))
        if not result.get("ok"):
            raise SystemExit(1)


def create_app():
    env = (os.getenv("NEMY_ENV") or "dev").strip().lower()
    secret = (os.getenv("SECRET_KEY") or "").strip()
    if env in PRODUCTION_ENVS and len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app = Flask(__name__)
    init_sentry(app)

    database_url = _database_uri(env)
    app.config.update(
        SECRET_KEY=secret or "dev-secret",
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_ENGINE_OPTIONS=_engine_options(app, database_url),
    )

    cors.init_app(app, resources={r"/api/*": {"origins": _cors_origins(env)}})
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.before_request
    def _fresh_session():
        db.session.rollback()

    @app.teardown_request
    def _release_session(exc):
        if exc is not None:
            db.session.rollback()
        db.session.remove()

    _register_error_handlers(app)
    for blueprint in (orders_bp, wallets_bp, admin_wallets_bp, audit_bp, recon_bp):
        app.register_blueprint(blueprint)
    _register_system_routes(app, env)
    _register_cli(app)
    return app
