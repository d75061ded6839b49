"""
Survey Export Web Application.

A Flask-based HTTP surface for the export pipeline. Exports are slow, so
the main endpoint validates the request, acknowledges it immediately
(202) and runs the pipeline in a background thread with its own event
loop. A synchronous endpoint is kept for callers that can wait.

Endpoints:
    GET  /api/health                 Health check
    POST /api/export                 Validate, acknowledge, run in background
    POST /api/export/sync            Run inline and return the final response
    GET  /api/export/<request_id>    Job status and final response

Run with:
    survey-export serve --port 5000
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from threading import Lock, Thread
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from ..errors import ExportError
from ..models.export_request import ExportRequest
from ..utils.log_setup import request_context


logger = logging.getLogger(__name__)

# Create Flask app
app = Flask(__name__)

# Store for export jobs and their outcome
jobs: dict[str, dict] = {}
jobs_lock = Lock()

# Maximum number of finished jobs to keep in memory
MAX_FINISHED_JOBS = 100

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}


def get_pipeline():
    """Lazy import of ExportPipeline to avoid circular imports."""
    from ..main import ExportPipeline
    return ExportPipeline()


def _new_request_id() -> str:
    from ..main import new_request_id
    return new_request_id()


@app.after_request
def add_cors_headers(response):
    response.headers.update(CORS_HEADERS)
    return response


# =============================================================================
# ROUTES
# =============================================================================

@app.route('/api/health')
def health():
    """Liveness probe with the number of unfinished jobs."""
    with jobs_lock:
        running = sum(1 for j in jobs.values() if j['status'] in ('pending', 'running'))
    return jsonify({
        'status': 'ok',
        'timestamp': datetime.now().isoformat(),
        'activeJobs': running,
    })


@app.route('/api/export', methods=['POST', 'OPTIONS'])
def submit_export():
    """
    Accept an export request and run it in the background.

    The payload is validated before acknowledging, so bad input still
    gets an immediate 400.
    """
    if request.method == 'OPTIONS':
        return '', 200

    request_id = _new_request_id()
    payload = request.get_json(silent=True)

    pipeline = get_pipeline()
    try:
        with request_context(request_id):
            export_request = ExportRequest.from_payload(payload, pipeline.config)
    except ExportError as e:
        return jsonify(_error_body(e, request_id)), e.status_code

    with jobs_lock:
        jobs[request_id] = {
            'status': 'pending',
            'progress': [],
            'result': None,
            'created_at': datetime.now().isoformat(),
        }

    thread = Thread(
        target=run_export_job,
        args=(request_id, pipeline, export_request),
    )
    thread.daemon = True
    thread.start()

    estimated = datetime.now(timezone.utc) + timedelta(
        milliseconds=pipeline.config.capture_timeout_ms
    )
    return jsonify({
        'success': True,
        'message': 'initiated',
        'requestId': request_id,
        'estimatedCompletionTime': estimated.isoformat(),
    }), 202


@app.route('/api/export/sync', methods=['POST', 'OPTIONS'])
def submit_export_sync():
    """Run an export inline and return its final response."""
    if request.method == 'OPTIONS':
        return '', 200

    request_id = _new_request_id()
    payload = request.get_json(silent=True)

    pipeline = get_pipeline()
    result = _run_coroutine(pipeline.run_payload(payload, request_id=request_id))
    return jsonify(result.to_response()), result.status_code


@app.route('/api/export/<request_id>')
def export_status(request_id: str):
    """Get the status of an export job."""
    with jobs_lock:
        job = jobs.get(request_id)
        if job is None:
            return jsonify({'error': 'Job not found', 'requestId': request_id}), 404
        return jsonify({
            'requestId': request_id,
            'status': job['status'],
            'progress': list(job['progress']),
            'result': job['result'],
        })


def _error_body(error: ExportError, request_id: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        'success': False,
        'error': error.error_code,
        'message': error.message,
        'requestId': request_id,
    }
    if error.details:
        body['details'] = list(error.details)
    return body


# =============================================================================
# BACKGROUND JOB RUNNERS
# =============================================================================

def update_job_progress(request_id: str, message: str):
    """Append a stage message to a job's progress log."""
    with jobs_lock:
        if request_id in jobs:
            jobs[request_id]['progress'].append(message)


def _cleanup_old_jobs():
    """Keep at most MAX_FINISHED_JOBS finished jobs, dropping the oldest first."""
    with jobs_lock:
        finished = sorted(
            (job.get('created_at', ''), job_id)
            for job_id, job in jobs.items()
            if job['status'] not in ('pending', 'running')
        )
        for _, job_id in finished[:max(0, len(finished) - MAX_FINISHED_JOBS)]:
            jobs.pop(job_id, None)


def _run_coroutine(coro):
    """Run a coroutine on a fresh event loop owned by the calling thread."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        asyncio.set_event_loop(None)
        loop.close()


def run_export_job(request_id: str, pipeline, export_request: ExportRequest):
    """Run the export pipeline in a background thread."""
    with jobs_lock:
        jobs[request_id]['status'] = 'running'

    previous_callback = pipeline.progress.callback
    pipeline.progress.callback = lambda stage, msg: update_job_progress(request_id, msg)

    try:
        result = _run_coroutine(pipeline.run(export_request, request_id=request_id))
    except Exception as e:
        logger.exception(f"Error in export job {request_id}")
        with jobs_lock:
            jobs[request_id]['status'] = 'failed'
            jobs[request_id]['result'] = {
                'success': False,
                'error': 'INTERNAL_ERROR',
                'message': str(e),
                'requestId': request_id,
            }
    else:
        with jobs_lock:
            jobs[request_id]['status'] = 'completed' if result.success else 'failed'
            jobs[request_id]['result'] = result.to_response()
    finally:
        pipeline.progress.callback = previous_callback

    _cleanup_old_jobs()
