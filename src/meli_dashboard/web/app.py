"""Flask web application serving the dashboard and its JSON endpoints."""
from __future__ import annotations

import io
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import requests
from flask import Flask, Response, jsonify, redirect, render_template, request, send_file, stream_with_context

from ..api.client import MercadoLibreClient
from ..api.errors import AuthenticationError, UpstreamError
from ..api.oauth import authorization_url, exchange_code
from ..config import AppConfig, clamp_window_days
from ..export.tabular import CSV_MIMETYPE, XLSX_MIMETYPE, TabularExporter
from ..models import ALL_STATUSES, CatalogResult, CollectionStatus, Fulfillment
from ..services.dashboard_service import (
    PAGE_SIZES,
    DashboardFilters,
    DashboardService,
    apply_filters,
    paginate,
)

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "meli_access_token"
REFRESH_COOKIE = "meli_refresh_token"
ACCESS_MAX_AGE = 60 * 60 * 6
REFRESH_MAX_AGE = 60 * 60 * 24 * 180

LOGIN_ERRORS = {
    "no_code": "No authorization code was received.",
    "token_exchange_failed": "Could not obtain an access token.",
    "server_error": "Server error while signing in.",
    "session_expired": "Your session expired, please connect again.",
}

ClientFactory = Callable[[str], MercadoLibreClient]


def create_app(config: AppConfig | None = None, client_factory: ClientFactory | None = None) -> Flask:
    config = config or AppConfig()
    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.config["dashboard_config"] = config

    def _make_client(token: str) -> MercadoLibreClient:
        if client_factory is not None:
            return client_factory(token)
        return MercadoLibreClient(access_token=token, config=config.fetch)

    def _service() -> DashboardService | None:
        token = request.cookies.get(ACCESS_COOKIE)
        if not token:
            return None
        return DashboardService(client=_make_client(token), config=config)

    def _window_days() -> int:
        try:
            days = int(request.args.get("days", config.sales.window_days))
        except (TypeError, ValueError):
            days = config.sales.window_days
        return clamp_window_days(days)

    def _max_records() -> int | None:
        try:
            return int(request.args["limit"])
        except (KeyError, TypeError, ValueError):
            return None

    def _start_offset() -> int:
        try:
            return max(int(request.args.get("offset", 0)), 0)
        except (TypeError, ValueError):
            return 0

    def _clear_session(response: Response) -> Response:
        response.delete_cookie(ACCESS_COOKIE, path="/")
        response.delete_cookie(REFRESH_COOKIE, path="/")
        return response

    def _unauthenticated(message: str = "Not authenticated") -> Response:
        response = jsonify({"error": message})
        response.status_code = 401
        return _clear_session(response)

    @app.context_processor
    def inject_globals() -> dict[str, Any]:
        return {"current_year": datetime.now(UTC).year}

    @app.route("/")
    def index() -> str:
        error_code = request.args.get("error")
        error = None
        if error_code:
            error = LOGIN_ERRORS.get(error_code, "Authentication error.")
        return render_template("login.html", error=error)

    @app.route("/auth")
    def auth():
        if not config.oauth.app_id:
            response = jsonify({"error": "MELI_APP_ID is not configured"})
            response.status_code = 500
            return response
        return redirect(authorization_url(config.oauth))

    @app.route("/callback")
    def callback():
        if request.args.get("error"):
            return redirect("/?" + urlencode({"error": request.args["error"]}))
        code = request.args.get("code")
        if not code:
            return redirect("/?error=no_code")

        try:
            tokens = exchange_code(code, config.oauth, config.fetch)
        except (AuthenticationError, UpstreamError):
            return redirect("/?error=token_exchange_failed")
        except requests.RequestException as exc:
            logger.error("Token exchange failed: %s", exc)
            return redirect("/?error=server_error")

        secure = config.environment == "production"
        response = redirect("/dashboard")
        response.set_cookie(
            ACCESS_COOKIE,
            tokens.access_token,
            max_age=ACCESS_MAX_AGE,
            httponly=True,
            secure=secure,
            samesite="Lax",
            path="/",
        )
        if tokens.refresh_token:
            response.set_cookie(
                REFRESH_COOKIE,
                tokens.refresh_token,
                max_age=REFRESH_MAX_AGE,
                httponly=True,
                secure=secure,
                samesite="Lax",
                path="/",
            )
        return response

    @app.route("/logout", methods=["POST"])
    def logout():
        return _clear_session(jsonify({"success": True}))

    @app.route("/dashboard")
    def dashboard():
        service = _service()
        if service is None:
            return redirect("/")

        snapshot = service.load(_window_days(), service.catalog_with_limit(None, _start_offset()))
        if snapshot.auth_failed:
            return _clear_session(redirect("/?error=session_expired"))

        filters = DashboardFilters.from_args(request.args)
        filtered = apply_filters(snapshot.rows, filters)
        page_rows, page, total_pages = paginate(filtered, filters.page, filters.per_page)
        summary = {
            "loaded": snapshot.catalog.hydrated_count,
            "total": snapshot.catalog.declared_total,
            "showing": len(filtered),
            "page": page,
            "total_pages": total_pages,
            "per_page": filters.per_page,
            "status": snapshot.status.value,
            "offset": _start_offset(),
            "next_offset": snapshot.catalog.next_offset,
            "days": snapshot.sales.window_days,
        }
        return render_template(
            "dashboard.html",
            summary=summary,
            rows=page_rows,
            filters=filters,
            catalog=snapshot.catalog,
            sales=snapshot.sales,
            statuses=ALL_STATUSES,
            fulfillments=[f for f in Fulfillment if f is not Fulfillment.UNKNOWN],
            page_sizes=PAGE_SIZES,
        )

    @app.route("/api/products")
    def products():
        service = _service()
        if service is None:
            return _unauthenticated()

        result = service.collect_catalog(service.catalog_with_limit(_max_records(), _start_offset()))
        if result.status is CollectionStatus.AUTH_FAILED:
            return _unauthenticated("Invalid token")
        response = jsonify(result.to_dict())
        if result.status is CollectionStatus.FAILED:
            response.status_code = 502
        return response

    @app.route("/api/products/stream")
    def products_stream():
        service = _service()
        if service is None:
            return _unauthenticated()

        events = service.iter_catalog(service.catalog_with_limit(_max_records(), _start_offset()))

        def generate():
            for event in events:
                if isinstance(event, CatalogResult):
                    payload = event.to_dict()
                    payload.pop("progress", None)
                else:
                    payload = event.to_dict()
                yield json.dumps(payload) + "\n"

        return Response(stream_with_context(generate()), mimetype="application/x-ndjson")

    @app.route("/api/sales")
    def sales():
        service = _service()
        if service is None:
            return _unauthenticated()

        result = service.collect_sales(_window_days())
        if result.status is CollectionStatus.AUTH_FAILED:
            return _unauthenticated("Invalid token")
        response = jsonify(result.to_dict())
        if result.status is CollectionStatus.FAILED:
            response.status_code = 502
        return response

    @app.route("/export/products.<fmt>")
    def export_products(fmt: str):
        if fmt not in ("csv", "xlsx"):
            return jsonify({"error": f"Unsupported format: {fmt}"}), 404
        service = _service()
        if service is None:
            return redirect("/")

        days = _window_days()
        snapshot = service.load(days, service.catalog_with_limit(None, _start_offset()))
        if snapshot.auth_failed:
            return _clear_session(redirect("/?error=session_expired"))

        rows = apply_filters(snapshot.rows, DashboardFilters.from_args(request.args))
        exporter = TabularExporter(window_days=days)
        if fmt == "csv":
            payload, mimetype = exporter.to_csv(rows), CSV_MIMETYPE
        else:
            payload, mimetype = exporter.to_xlsx(rows), XLSX_MIMETYPE
        return send_file(
            io.BytesIO(payload),
            mimetype=mimetype,
            as_attachment=True,
            download_name=exporter.filename(fmt),
        )

    return app


def bootstrap_app() -> Flask:
    """Factory used by the entrypoint for running the web UI."""

    config = AppConfig.from_env()
    if not config.oauth.app_id:
        logger.warning("MELI_APP_ID is not set; the sign-in flow will not work")
    return create_app(config)
