from __future__ import annotations

import datetime
import os
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import json as json_module
from flask import Flask, abort, jsonify, render_template, request, send_file, url_for

from allocation_report.engine import AllocationTable, ReportDataError, build_allocation_table
from allocation_report.io_utils import load_config, load_schedule
from allocation_report.render import OUTPUT_FILES

from .jobs import Job, JobStore

REQUIRED_INPUT_FILES = ("resources.json", "tasks.json", "bookings.csv", "config.json")


def _default_reports_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "reports").resolve()


def _resolve_reports_root() -> Path:
    env_value = os.getenv("REPORTS_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_reports_root()


def _validate_within_root(path: Path, root: Path) -> None:
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Report directory must be inside {root}") from exc


def _check_input_dir(report_dir: Path) -> Tuple[Path, List[str]]:
    input_dir = report_dir / "input"
    if not input_dir.is_dir():
        return input_dir, list(REQUIRED_INPUT_FILES)
    missing = [name for name in REQUIRED_INPUT_FILES if not (input_dir / name).is_file()]
    return input_dir, missing


def _resolve_report_dir(raw_value: str, root: Path) -> Path:
    if not raw_value:
        raise ValueError("report_dir is required")
    candidate = Path(raw_value).expanduser()
    report_dir = candidate.resolve() if candidate.is_absolute() else (root / candidate).resolve()
    _validate_within_root(report_dir, root)
    if not report_dir.is_dir():
        raise ValueError(f"Report directory not found: {report_dir}")
    input_dir, missing = _check_input_dir(report_dir)
    if missing:
        raise ValueError(
            f"Report directory must contain input files at {input_dir}: missing {', '.join(missing)}"
        )
    return report_dir


def _list_report_dirs(root: Path) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    if not root.exists():
        return entries
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        input_dir, missing = _check_input_dir(child)
        entries.append(
            {
                "name": child.relative_to(root).as_posix(),
                "input_dir": input_dir.as_posix(),
                "is_valid": not missing,
            }
        )
    return entries


def _file_entries(directory: Path, names: List[str], prefix: str) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    for filename in names:
        file_path = directory / filename
        if file_path.is_file():
            stat = file_path.stat()
            entries.append(
                {
                    "name": filename,
                    "path": f"{prefix}/{filename}",
                    "modified": datetime.datetime.fromtimestamp(stat.st_mtime).isoformat(),
                    "size": stat.st_size,
                }
            )
    return entries


def table_payload(table: AllocationTable) -> Dict[str, object]:
    return {
        "buckets": [
            {
                "id": bucket_id,
                "name": table.bucket_name(bucket_id),
                "kind": table.buckets[bucket_id].kind,
                "total": table.bucket_total(bucket_id),
            }
            for bucket_id in table.bucket_ids()
        ],
        "resources": [
            {
                "id": resource_id,
                "label": table.resource_label(resource_id),
                "total": table.resource_total(resource_id),
            }
            for resource_id in table.resource_ids()
        ],
        "fractions": {
            bucket_id: {
                resource_id: table.fraction(bucket_id, resource_id)
                for resource_id in table.bucket_resource_ids(bucket_id)
            }
            for bucket_id in table.bucket_ids()
        },
        "grand_total": table.grand_total(),
    }


def create_app() -> Flask:
    app = Flask(__name__)
    reports_root = _resolve_reports_root()
    job_store = JobStore()
    app.config["REPORTS_ROOT"] = reports_root
    app.config["JOB_STORE"] = job_store

    def _report_path(report_name: str) -> Path:
        report_path = (reports_root / report_name).resolve()
        _validate_within_root(report_path, reports_root)
        return report_path

    @app.get("/")
    def index() -> str:
        jobs = [job.to_dict() for job in job_store.list_jobs()]
        dirs = _list_report_dirs(reports_root)
        return render_template("index.html", jobs=jobs, report_dirs=dirs, reports_root=reports_root)

    @app.get("/dirs")
    def directories():
        return jsonify({"reports": _list_report_dirs(reports_root)})

    @app.post("/run")
    def run_job():
        data = request.get_json(silent=True) or {}
        report_dir_value = data.get("report_dir") or request.form.get("report_dir")
        if report_dir_value is None:
            return jsonify({"error": "report_dir is required"}), 400
        try:
            report_dir = _resolve_report_dir(report_dir_value, reports_root)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        cmd = [
            sys.executable,
            "-m",
            "allocation_report.main",
            "--project-dir",
            str(report_dir),
        ]
        job: Job = job_store.create_job(report_dir, cmd)
        job_store.start_job(job)
        status_url = url_for("status_job", job_id=job.id)
        return jsonify({"job_id": job.id, "status_url": status_url}), 202

    @app.get("/status/<job_id>")
    def status_job(job_id: str):
        job = job_store.get_job(job_id)
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(job.to_dict())

    @app.get("/files/<path:file_path>")
    def serve_file(file_path: str):
        try:
            full_path = (reports_root / file_path).resolve()
            _validate_within_root(full_path, reports_root)
        except (ValueError, OSError):
            abort(404)
        if not full_path.is_file():
            abort(404)
        return send_file(full_path)

    @app.get("/api/files/<report_name>")
    def get_file_info(report_name: str):
        try:
            report_path = _report_path(report_name)
            if not report_path.is_dir():
                return jsonify({"error": "Report directory not found"}), 404
            return jsonify(
                {
                    "input": _file_entries(report_path / "input", list(REQUIRED_INPUT_FILES), "input"),
                    "output": _file_entries(report_path / "output", list(OUTPUT_FILES.values()), "output"),
                }
            )
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400

    @app.get("/api/config/<report_name>")
    def get_config(report_name: str):
        try:
            config_file = _report_path(report_name) / "input" / "config.json"
            if not config_file.exists():
                return jsonify({"error": "config.json not found"}), 404
            with open(config_file, "r", encoding="utf-8") as f:
                return jsonify(json_module.load(f))
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400

    @app.post("/api/config/<report_name>")
    def save_config(report_name: str):
        try:
            config_file = _report_path(report_name) / "input" / "config.json"
            config_data = request.get_json(silent=True)
            if not isinstance(config_data, dict):
                return jsonify({"error": "config data must be an object"}), 400
            config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(config_file, "w", encoding="utf-8") as f:
                json_module.dump(config_data, f, indent=2)
            return jsonify({"success": True})
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400

    @app.get("/api/table/<report_name>")
    def get_table(report_name: str):
        try:
            report_dir = _resolve_report_dir(report_name, reports_root)
            input_dir = report_dir / "input"
            cfg = load_config(input_dir / "config.json")
            schedule = load_schedule(
                input_dir / "resources.json",
                input_dir / "tasks.json",
                input_dir / "bookings.csv",
                cfg,
            )
            table = build_allocation_table(schedule, cfg)
        except ReportDataError as exc:
            return jsonify({"error": str(exc), "kind": type(exc).__name__}), 422
        except (ValueError, OSError) as exc:
            return jsonify({"error": str(exc)}), 400
        payload = table_payload(table)
        payload.update({"start": cfg.start.isoformat(), "end": cfg.end.isoformat()})
        return jsonify(payload)

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
