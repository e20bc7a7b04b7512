from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, jsonify, request

from recon_calc.data_models import ToleranceClass
from recon_calc.errors import NotFoundError, ValidationError
from recon_calc.service import ReconciliationService
from recon_calc.utils import decimal_from_str, parse_date, parse_year_month
from recon_calc.variance import calculate_variance
from recon_calc_web.schedule_store import create_store_from_env

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_dir: str | None = None) -> logging.Logger:
    """Configure console logging and, when ``log_dir`` is set, a rotating log file."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path / "recon_calc.log", maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root_logger


def _money(value):
    return None if value is None else f"{value:.2f}"


def _serialize_item(item) -> dict:
    return {
        "id": item.id,
        "client_id": item.client_id,
        "account_code": item.account_code,
        "role": item.role.value,
        item.role.counterparty_label.lower(): item.counterparty,
        "counterparty": item.counterparty,
        "description": item.description,
        "start_date": item.start_date.isoformat(),
        "end_date": item.end_date.isoformat(),
        "total_amount": _money(item.total_amount),
        "currency": item.currency,
        "number_of_months": item.number_of_months,
        "monthly_amount": _money(item.monthly_amount),
        "spread_method": item.spread_method.value,
        "status": item.status.value,
    }


def _serialize_schedule(lines):
    """Convert schedule lines into JSON-serialisable dictionaries."""
    serialized = []
    for line in lines:
        serialized.append(
            {
                "id": line.id,
                "month_end_date": line.month_end_date.isoformat(),
                "opening_balance": _money(line.opening_balance),
                "monthly_amount": _money(line.monthly_amount),
                "closing_balance": _money(line.closing_balance),
                "original_amount": _money(line.original_amount),
                "override_amount": _money(line.override_amount),
                "is_overridden": line.is_overridden,
                "audit_note": line.audit_note,
            }
        )
    return serialized


def _serialize_variance(result):
    if result is None:
        return None
    return {
        "variance_amount": _money(result.variance_amount),
        "is_reconciled": result.is_reconciled,
        "tolerance": result.tolerance.value,
    }


def _serialize_grid(view) -> dict:
    projection = view.projection
    return {
        "viewing_month_end": projection.viewing_month_end.isoformat(),
        "month_columns": [m.isoformat() for m in projection.month_columns],
        "items": [
            dict(_serialize_item(item), schedule=_serialize_schedule(view.lines_by_item[item.id]))
            for item in view.items
        ],
        "totals": {
            month.isoformat(): {
                "total_recognised": _money(totals.total_recognised),
                "closing_balance": _money(totals.closing_balance),
            }
            for month, totals in projection.totals.items()
        },
        "ledger_balances": {m.isoformat(): _money(b) for m, b in view.ledger_balances.items()},
        "variances": {m.isoformat(): _serialize_variance(v) for m, v in view.variances.items()},
        "current": _serialize_variance(view.current),
    }


def _require(payload: dict, *names: str) -> None:
    if any(payload.get(name) in (None, "") for name in names):
        raise ValidationError("Missing required fields")


def create_app(database_url: str | None = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    store = create_store_from_env(database_url or os.environ.get("RECON_DATABASE_URL"))
    service = ReconciliationService(store)
    app.extensions["recon_service"] = service

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc):
        return jsonify({"error": str(exc)}), 404

    @app.post("/api/items")
    def create_item():
        payload = request.get_json(silent=True) or {}
        _require(payload, "client_id", "account_code", "counterparty", "start_date", "end_date", "total_amount")
        item = service.create_item(
            client_id=payload["client_id"],
            account_code=payload["account_code"],
            role=payload.get("role", "expense"),
            counterparty=payload["counterparty"],
            description=payload.get("description", ""),
            start_date=parse_date(payload["start_date"]),
            end_date=parse_date(payload["end_date"]),
            total_amount=payload["total_amount"],
            spread_method=payload.get("spread_method") or "equal",
            currency=payload.get("currency", "GBP"),
            created_by=payload.get("created_by"),
        )
        body = _serialize_item(item)
        body["schedule"] = _serialize_schedule(service.get_lines(item.id))
        return jsonify(body), 201

    @app.get("/api/items/<item_id>")
    def get_item(item_id):
        body = _serialize_item(service.get_item(item_id))
        body["schedule"] = _serialize_schedule(service.get_lines(item_id))
        return jsonify(body)

    @app.post("/api/items/<item_id>/lines/<line_id>/override")
    def override_line(item_id, line_id):
        payload = request.get_json(silent=True) or {}
        _require(payload, "amount")
        lines = service.override(item_id, line_id, payload["amount"], payload.get("audit_note") or None)
        return jsonify({"schedule": _serialize_schedule(lines)})

    @app.post("/api/items/<item_id>/cancel")
    def cancel_item(item_id):
        service.cancel_item(item_id)
        return jsonify({"success": True})

    @app.delete("/api/items/<item_id>")
    def delete_item(item_id):
        service.delete_item(item_id)
        return jsonify({"success": True})

    @app.put("/api/ledger-balances")
    def record_ledger_balance():
        payload = request.get_json(silent=True) or {}
        _require(payload, "client_id", "account_code", "month_end_date", "balance")
        service.record_ledger_balance(
            payload["client_id"],
            payload["account_code"],
            parse_date(payload["month_end_date"]),
            payload["balance"],
        )
        return jsonify({"success": True})

    @app.get("/api/grid")
    def grid():
        args = request.args
        _require(args, "client_id", "account_code", "period")
        period = parse_year_month(args["period"])
        view = service.load_grid(
            args["client_id"], args["account_code"], args.get("role", "expense"), period.year, period.month
        )
        return jsonify(_serialize_grid(view))

    @app.post("/api/statuses/refresh")
    def refresh_statuses():
        payload = request.get_json(silent=True) or {}
        _require(payload, "client_id", "account_code", "period")
        changed = service.mark_fully_recognised(
            payload["client_id"],
            payload["account_code"],
            payload.get("role", "expense"),
            parse_year_month(payload["period"]),
        )
        return jsonify({"fully_recognised": changed})

    @app.post("/api/variance")
    def variance():
        payload = request.get_json(silent=True) or {}
        _require(payload, "ledger_balance", "comparison_total")
        try:
            tolerance = ToleranceClass(payload.get("tolerance", "schedule"))
        except ValueError as exc:
            raise ValidationError(f"Unknown tolerance class: {payload.get('tolerance')}") from exc
        result = calculate_variance(
            decimal_from_str(payload["ledger_balance"]),
            decimal_from_str(payload["comparison_total"]),
            tolerance,
        )
        return jsonify(_serialize_variance(result))

    logger.info("Reconciliation app ready")
    return app


if __name__ == "__main__":
    setup_logging(os.environ.get("RECON_LOG_LEVEL", "INFO"), os.environ.get("RECON_LOG_DIR"))
    print("Starting reconciliation web app...")
    create_app().run(host="0.0.0.0", port=8710, debug=True)
