# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import sys
from typing import Optional
from flask import Flask, Response, jsonify, request
from pydantic import BaseModel, ValidationError
from ..core.config import Config
from ..core.errors import (
    InvalidRuleError,
    ItemNotFoundError,
    ItemProtectedError,
    NotInQueueError,
    TaskAlreadyRunningError,
    UnknownTaskError,
)
from ..core.models import DeletionAction, MediaFilters, Rule
from ..services.container import Services, build_services
from ..services.tasks import SCAN_LIBRARIES
from .scheduler import TaskScheduler


def _json(model: BaseModel):
    return model.model_dump(mode="json")


def _flag(name: str) -> bool:
    return request.args.get(name, "false").lower() in ("1", "true", "yes")


def _grace_period(data) -> Optional[int]:
    value = data.get("grace_period_days")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"grace_period_days must be a whole number of days, got {value!r}")


class Server:
    def __init__(self, config_path: str = "config.yaml", config: Optional[Config] = None,
                 services: Optional[Services] = None):
        self.config = config or Config.load(config_path)

        logging.basicConfig(
            level=getattr(logging, self.config.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )
        self.logger = logging.getLogger(__name__)

        self.app = Flask(__name__)
        self.services = services or build_services(self.config)
        self.scheduler = TaskScheduler(self.services.tasks.registry(), self.config.scheduler)

        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        def error(e, status):
            return jsonify({"error": str(e)}), status

        self.app.register_error_handler(ItemNotFoundError, lambda e: error(e, 404))
        self.app.register_error_handler(UnknownTaskError, lambda e: error(e, 404))
        self.app.register_error_handler(ItemProtectedError, lambda e: error(e, 400))
        self.app.register_error_handler(NotInQueueError, lambda e: error(e, 400))
        self.app.register_error_handler(InvalidRuleError, lambda e: error(e, 400))
        self.app.register_error_handler(ValidationError, lambda e: error(e, 400))
        self.app.register_error_handler(ValueError, lambda e: error(e, 400))
        self.app.register_error_handler(TaskAlreadyRunningError, lambda e: error(e, 409))

    def _setup_routes(self):
        services = self.services

        @self.app.route("/api/health")
        def health():
            return jsonify({"status": "ok", "scheduler_running": self.scheduler.started})

        # Deletion queue
        @self.app.route("/api/queue")
        def get_queue():
            queue = services.queue.get_queue()
            return jsonify({
                "items": [dict(_json(entry.item), days_remaining=entry.days_remaining) for entry in queue],
                "stats": services.queue.get_statistics(),
            })

        @self.app.route("/api/queue/<int:item_id>", methods=["POST"])
        def mark_item(item_id):
            data = request.get_json(silent=True) or {}
            action = data.get("deletion_action")
            item = services.queue.mark_for_deletion(
                item_id,
                _grace_period(data),
                action=DeletionAction.normalize(action) if action else None,
                reset_overseerr=bool(data.get("reset_overseerr", False)),
            )
            return jsonify(_json(item))

        @self.app.route("/api/queue/<int:item_id>", methods=["DELETE"])
        def unmark_item(item_id):
            return jsonify(_json(services.queue.unmark_for_deletion(item_id)))

        @self.app.route("/api/queue/bulk/mark", methods=["POST"])
        def bulk_mark():
            data = request.get_json(silent=True) or {}
            action = data.get("deletion_action")
            result = services.queue.bulk_mark(
                data.get("ids", []),
                _grace_period(data),
                action=DeletionAction.normalize(action) if action else None,
                reset_overseerr=bool(data.get("reset_overseerr", False)),
            )
            return jsonify(_json(result))

        @self.app.route("/api/queue/bulk/unmark", methods=["POST"])
        def bulk_unmark():
            data = request.get_json(silent=True) or {}
            return jsonify(_json(services.queue.bulk_unmark(data.get("ids", []))))

        @self.app.route("/api/queue/process", methods=["POST"])
        def process_queue():
            return jsonify(_json(services.executor.process_queue(dry_run=_flag("dry_run"))))

        @self.app.route("/api/queue/<int:item_id>/delete-now", methods=["POST"])
        def delete_now(item_id):
            result = services.executor.execute_delete_now(item_id)
            return jsonify(_json(result)), 200 if result.success else 502

        @self.app.route("/api/queue/<int:item_id>/delete-now/stream", methods=["GET", "POST"])
        def delete_now_stream(item_id):
            events = services.executor.stream_delete_now(item_id)

            def generate():
                for event in events:
                    yield f"data: {event.model_dump_json()}\n\n"

            return Response(
                generate(),
                mimetype="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        # Library
        @self.app.route("/api/media")
        def list_media():
            filters = MediaFilters(**{key: value for key, value in request.args.items() if value != ""})
            return jsonify(_json(services.media_repo.list(filters)))

        @self.app.route("/api/media/<int:item_id>")
        def get_media(item_id):
            item = services.media_repo.get_by_id(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            return jsonify(_json(item))

        @self.app.route("/api/media/<int:item_id>/protect", methods=["POST"])
        def protect_media(item_id):
            data = request.get_json(silent=True) or {}
            return jsonify(_json(services.queue.protect(item_id, data.get("reason"))))

        @self.app.route("/api/media/<int:item_id>/unprotect", methods=["POST"])
        def unprotect_media(item_id):
            return jsonify(_json(services.queue.unprotect(item_id)))

        @self.app.route("/api/scan", methods=["POST"])
        def trigger_scan():
            self.scheduler.run_in_background(SCAN_LIBRARIES)
            return jsonify({"task": SCAN_LIBRARIES, "status": "started"}), 202

        @self.app.route("/api/scans")
        def scan_history():
            return jsonify([_json(record) for record in services.scan_repo.get_recent()])

        # Rules
        @self.app.route("/api/rules", methods=["GET"])
        def list_rules():
            return jsonify([_json(rule) for rule in services.rule_repo.get_all()])

        @self.app.route("/api/rules", methods=["POST"])
        def create_rule():
            rule = services.rule_repo.create(Rule(**(request.get_json(silent=True) or {})))
            return jsonify(_json(rule)), 201

        @self.app.route("/api/rules/<int:rule_id>", methods=["PUT"])
        def update_rule(rule_id):
            rule = services.rule_repo.update(rule_id, request.get_json(silent=True) or {})
            if rule is None:
                return jsonify({"error": f"Rule {rule_id} not found"}), 404
            return jsonify(_json(rule))

        @self.app.route("/api/rules/<int:rule_id>/toggle", methods=["POST"])
        def toggle_rule(rule_id):
            rule = services.rule_repo.get_by_id(rule_id)
            if rule is None:
                return jsonify({"error": f"Rule {rule_id} not found"}), 404
            data = request.get_json(silent=True) or {}
            enabled = bool(data.get("enabled", not rule.enabled))
            return jsonify(_json(services.rule_repo.set_enabled(rule_id, enabled)))

        @self.app.route("/api/rules/<int:rule_id>", methods=["DELETE"])
        def delete_rule(rule_id):
            if not services.rule_repo.delete(rule_id):
                return jsonify({"error": f"Rule {rule_id} not found"}), 404
            return jsonify({"status": "success"})

        # Audit
        @self.app.route("/api/history")
        def deletion_history():
            limit = request.args.get("limit", 50, type=int)
            offset = request.args.get("offset", 0, type=int)
            return jsonify({
                "items": [_json(entry) for entry in services.history_repo.get_recent(limit, offset)],
                "stats": services.history_repo.get_stats(),
            })

        @self.app.route("/api/activity")
        def activity():
            limit = request.args.get("limit", 50, type=int)
            entries = services.activity_repo.get_recent(limit, request.args.get("event_type"))
            return jsonify([_json(entry) for entry in entries])

        # Scheduler
        @self.app.route("/api/scheduler")
        def scheduler_status():
            return jsonify(self.scheduler.get_status())

        @self.app.route("/api/scheduler/<name>/run", methods=["POST"])
        def run_task(name):
            result = self.scheduler.run_now(name)
            return jsonify(_json(result))

        @self.app.route("/api/scheduler/<name>/enable", methods=["POST"])
        def enable_task(name):
            self.scheduler.enable_task(name)
            return jsonify({"status": "success"})

        @self.app.route("/api/scheduler/<name>/disable", methods=["POST"])
        def disable_task(name):
            self.scheduler.disable_task(name)
            return jsonify({"status": "success"})

        @self.app.route("/api/scheduler/<name>", methods=["PUT"])
        def update_schedule(name):
            data = request.get_json(silent=True) or {}
            try:
                self.scheduler.update_schedule(name, data.get("schedule", ""))
            except ValueError as e:
                return jsonify({"error": f"Invalid cron expression: {e}"}), 400
            return jsonify({"status": "success"})

    def run(self):
        if self.config.scheduler.enabled:
            self.scheduler.start(self.app)
        try:
            self.app.run(host=self.config.server_host, port=self.config.server_port)
        finally:
            self.scheduler.stop()
