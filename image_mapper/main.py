"""HTTP API and command line interface for the Excel Image Mapper."""

import json
import logging
import os
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import click
from flask import Flask, Response, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from .archive_indexer import ArchiveIndexer
from .config_manager import ConfigManager
from .matcher import score_columns
from .session_store import SessionStore, run_pipeline
from .table_parser import TableParser
from .workbook_emitter import WorkbookEmitter, build_output_filename
from .utils.exceptions import (
    ArchiveError,
    AuthenticationError,
    EmitError,
    ImageMapperError,
    ParseError,
    SessionNotFoundError,
    ValidationError,
)
from .utils.file_utils import base_name_of, read_uploaded_file
from .utils.validation import validate_match_column_request

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

# Initialize components
config_manager = ConfigManager()
app_config = config_manager.get_app_config()

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def create_session_store(config: Dict[str, Any]) -> SessionStore:
    """Session store wired with the configured parser and indexer."""
    matching = config["matching"]
    return SessionStore(
        parser=TableParser(type_sample_size=matching["type_sample_size"]),
        indexer=ArchiveIndexer(max_workers=matching["max_workers"]),
    )


def create_emitter(config: Dict[str, Any]) -> WorkbookEmitter:
    output = config["output"]
    return WorkbookEmitter(
        thumbnail_px=output["thumbnail_px"],
        image_column_label=output["image_column_label"],
        sheet_title=output["sheet_title"],
    )


session_store = create_session_store(app_config)

# Configure Flask app
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = app_config["max_file_size_mb"] * 1024 * 1024


def setup_logging() -> None:
    """Setup logging configuration."""
    log_level = app_config.get("log_level", "INFO").upper()
    verbose_logging = os.environ.get("VERBOSE_LOGGING", "true").lower() == "true"

    if not verbose_logging and log_level in ["DEBUG", "INFO"]:
        log_level = "WARNING"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not root_logger.handlers:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if not verbose_logging:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
        logging.getLogger("PIL").setLevel(logging.WARNING)


def authenticate_request() -> bool:
    """Authenticate API request."""
    if app_config.get("development_mode", False):
        logger.debug("Authentication bypassed in development mode")
        return True

    api_key = app_config.get("api_key")
    if not api_key:
        return True  # No authentication required if no key configured

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        return token == api_key

    request_key = request.args.get("api_key") or request.form.get("api_key")
    return request_key == api_key


def create_error_response(
    error: Exception, status_code: int = 500
) -> Tuple[Dict[str, Any], int]:
    """Create standardized error response."""
    error_response = {
        "success": False,
        "error": {
            "type": type(error).__name__,
            "message": str(error),
            "code": status_code,
        },
    }

    if getattr(error, "error_code", None):
        error_response["error"]["error_code"] = error.error_code

    if app_config.get("development_mode", False):
        error_response["error"]["traceback"] = traceback.format_exc()

    logger.error(f"API Error ({status_code}): {error}")
    return error_response, status_code


def status_for(error: ImageMapperError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthenticationError):
        return 401
    if isinstance(error, SessionNotFoundError):
        return 404
    if isinstance(error, (ParseError, ArchiveError)):
        return 422
    return 500


@app.errorhandler(RequestEntityTooLarge)
def handle_file_too_large(error):
    """Handle file size too large error."""
    content_length = request.headers.get("Content-Length", "Unknown")
    logger.error(
        f"413 Error - Request too large: {request.path} "
        f"(Content-Length: {content_length})"
    )
    return create_error_response(
        ValidationError(
            f"Request size exceeds maximum allowed size of "
            f"{app_config['max_file_size_mb']}MB"
        ),
        413,
    )


@app.errorhandler(ImageMapperError)
def handle_image_mapper_error(error: ImageMapperError):
    return create_error_response(error, status_for(error))


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unhandled error while processing request")
    return create_error_response(error, 500)


@app.before_request
def before_request():
    """Request logging and authentication."""
    logger.info(
        f"REQUEST: {request.method} {request.path} - Content-Type: {request.content_type}"
    )
    if request.endpoint == "health":
        return None

    if not authenticate_request():
        error_response, status_code = create_error_response(
            AuthenticationError("Invalid API key"), 401
        )
        return jsonify(error_response), status_code
    return None


@app.route("/api/v1/health", methods=["GET"])
def health() -> Tuple[Dict[str, Any], int]:
    """Health check endpoint."""
    return {
        "success": True,
        "status": "healthy",
        "version": __version__,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_sessions": session_store.count(),
    }, 200


def _required_upload(field_name: str, allowed_extensions_key: str) -> Tuple[bytes, str]:
    file_obj = request.files.get(field_name)
    if file_obj is None or not file_obj.filename:
        raise ValidationError(f"Missing required file field '{field_name}'")
    content = read_uploaded_file(
        file_obj,
        allowed_extensions=app_config[allowed_extensions_key],
        max_size_mb=app_config["max_file_size_mb"],
        field_name=field_name,
    )
    return content, file_obj.filename


@app.route("/api/v1/sessions", methods=["POST"])
def create_session() -> Tuple[Dict[str, Any], int]:
    """Upload a table and an image archive and run the matching pipeline."""
    table_content, table_filename = _required_upload(
        "table_file", "allowed_table_extensions"
    )
    archive_content, _ = _required_upload("archive_file", "allowed_archive_extensions")

    session = session_store.create_session(
        table_content, table_filename, archive_content
    )
    body = session.summary(app_config["matching"]["preview_rows"])
    body["success"] = True
    return body, 201


@app.route("/api/v1/sessions/<session_id>", methods=["GET"])
def get_session(session_id: str) -> Tuple[Dict[str, Any], int]:
    session = session_store.get(session_id)
    body = session.summary(app_config["matching"]["preview_rows"])
    body["success"] = True
    return body, 200


@app.route("/api/v1/sessions/<session_id>/match-column", methods=["PUT"])
def update_match_column(session_id: str) -> Tuple[Dict[str, Any], int]:
    """Select a different matching column; the archive is not re-indexed."""
    session = session_store.get(session_id)
    match_column = validate_match_column_request(
        request.get_json(silent=True), [col.key for col in session.table.columns]
    )
    statistics = session.set_match_column(match_column)
    return {
        "success": True,
        "session_id": session.id,
        "match_column": session.match_column,
        "statistics": statistics.to_dict(),
        "preview": session.preview(app_config["matching"]["preview_rows"]),
    }, 200


@app.route("/api/v1/sessions/<session_id>/archive", methods=["PUT"])
def replace_archive(session_id: str) -> Tuple[Dict[str, Any], int]:
    """Upload a new archive for the session's table."""
    archive_content, _ = _required_upload("archive_file", "allowed_archive_extensions")
    session = session_store.replace_archive(session_id, archive_content)
    body = session.summary(app_config["matching"]["preview_rows"])
    body["success"] = True
    return body, 200


@app.route("/api/v1/sessions/<session_id>/images/<path:image_path>", methods=["GET"])
def get_image(session_id: str, image_path: str) -> Response:
    """Raw bytes of an indexed image, for preview thumbnails."""
    session = session_store.get(session_id)
    entry = session.index.find_by_path(image_path)
    if entry is None:
        error_response, status_code = create_error_response(
            ValidationError(f"Image '{image_path}' not found in session"), 404
        )
        return jsonify(error_response), status_code
    logger.info(f"Session {session_id}: serving image {entry.path} ({entry.size} bytes)")
    return Response(entry.data, mimetype=entry.content_type)


@app.route("/api/v1/sessions/<session_id>/download", methods=["GET"])
def download_workbook(session_id: str) -> Response:
    """Emit the merged workbook for the session's current match column."""
    session = session_store.get(session_id)
    emitter = create_emitter(app_config)
    result = emitter.emit(
        session.table.rows, session.table.columns, session.match_column, session.index
    )
    download_name = build_output_filename(
        base_name_of(session.table_filename, app_config["output"]["base_filename"])
    )
    logger.info(
        f"Session {session_id}: sending {download_name} "
        f"({result.embedded_count} images, {len(result.failed_rows)} failed)"
    )
    return send_file(
        result.stream,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=download_name,
    )


@app.route("/api/v1/sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id: str) -> Tuple[Dict[str, Any], int]:
    """Reset a session and release its images."""
    if not session_store.reset(session_id):
        raise SessionNotFoundError(f"Session '{session_id}' not found")
    return {"success": True, "session_id": session_id, "reset": True}, 200


def image_mapper_handler(cloud_request):
    """Google Cloud Function entry point; dispatches into the Flask app."""
    setup_logging()
    with app.request_context(cloud_request.environ):
        return app.full_dispatch_request()


# CLI interface
@click.group()
def cli():
    """Excel Image Mapper CLI."""
    setup_logging()


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


@cli.command("match")
@click.option(
    "--table-file",
    "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Path to Excel or CSV file",
)
@click.option(
    "--archive-file",
    "-a",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Path to zip archive of images",
)
@click.option("--output-file", "-o", required=False, help="Output workbook path")
@click.option(
    "--column", "-c", required=False, help="Matching column key (default: auto-detect)"
)
@click.option("--preview", is_flag=True, help="Print the first matched rows")
def match_cli(
    table_file: str,
    archive_file: str,
    output_file: Optional[str] = None,
    column: Optional[str] = None,
    preview: bool = False,
) -> None:
    """Match images to table rows and write the merged workbook."""
    matching = app_config["matching"]
    store = create_session_store(app_config)
    try:
        session = store.create_session(
            _read_file(table_file), os.path.basename(table_file), _read_file(archive_file)
        )
        if column:
            session.set_match_column(column)

        result = create_emitter(app_config).emit(
            session.table.rows, session.table.columns, session.match_column, session.index
        )
        if not output_file:
            output_file = build_output_filename(
                base_name_of(table_file, app_config["output"]["base_filename"])
            )
        with open(output_file, "wb") as f:
            f.write(result.getvalue())
    except (ImageMapperError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    stats = session.statistics
    click.echo(f"Match column: {session.match_column}")
    click.echo(
        f"Found {stats.total_images} images, matched {stats.matched_rows} "
        f"of {len(session.table.rows)} rows"
    )
    if result.failed_rows:
        click.echo(f"Rows with unreadable images: {result.failed_rows}", err=True)

    if preview:
        for item in session.preview(matching["preview_rows"]):
            click.echo(
                f"  {item['index']:>4}  {item['match_value']!s:<30} "
                f"{item['image'] or '-'}"
            )
    click.echo(f"Workbook written to: {output_file}")


@cli.command("inspect")
@click.option(
    "--table-file", "-t", required=True, type=click.Path(exists=True, dir_okay=False)
)
@click.option(
    "--archive-file", "-a", required=True, type=click.Path(exists=True, dir_okay=False)
)
@click.option("--pretty", is_flag=True, help="Pretty print JSON output")
def inspect_cli(table_file: str, archive_file: str, pretty: bool = False) -> None:
    """Print match counts for every column as JSON."""
    matching = app_config["matching"]
    try:
        result = run_pipeline(
            _read_file(table_file),
            os.path.basename(table_file),
            _read_file(archive_file),
            TableParser(type_sample_size=matching["type_sample_size"]),
            ArchiveIndexer(max_workers=matching["max_workers"]),
        )
    except ImageMapperError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    scores = score_columns(result.table.rows, result.table.columns, result.index)
    labels = {col.key: col.label for col in result.table.columns}
    report = {
        "table_file": table_file,
        "row_count": len(result.table.rows),
        "has_header": result.table.has_header,
        "total_images": result.index.image_count,
        "columns": [
            {
                "key": score.column,
                "label": labels[score.column],
                "match_count": score.match_count,
            }
            for score in scores
        ],
    }
    click.echo(json.dumps(report, indent=2 if pretty else None, ensure_ascii=False))


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--debug", is_flag=True, help="Enable debug mode")
def serve(host: Optional[str], port: Optional[int], debug: bool) -> None:
    """Start the Flask development server."""
    flask_config = app_config["flask_config"]
    host = host or flask_config["host"]
    port = port or flask_config["port"]

    logger.info(f"Starting Excel Image Mapper server on {host}:{port}")
    app.run(
        host=host,
        port=port,
        debug=debug or flask_config["debug"] or app_config.get("development_mode", False),
    )


if __name__ == "__main__":
    cli()
