# backend/studyplanner/jobs.py
"""
Upload job tracking and the hand-off to the syllabus workflow (n8n).

A job starts as ``processing`` and moves exactly once to ``completed`` or ``error``.
The job table sits behind the JobStore interface; InMemoryJobStore keeps it in this
process, which is only suitable for a single server instance.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from . import config
from .utils import utcnow

logger = logging.getLogger(__name__)

PROCESSING = "processing"
COMPLETED = "completed"
ERROR = "error"


class JobStateError(Exception):
    """Raised when a finished job is asked to change state again."""


@dataclass
class AcceptedFile:
    filename: str
    content_type: str
    size: int
    content: bytes = field(repr=False)

    def metadata(self) -> dict:
        return {"name": self.filename, "size": self.size, "type": self.content_type}


@dataclass
class UploadJob:
    id: str
    status: str = PROCESSING
    files: List[dict] = field(default_factory=list)
    result: Any = None
    message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def finished(self) -> bool:
        return self.status != PROCESSING

    def snapshot(self) -> dict:
        snap = {"status": self.status}
        if self.status == COMPLETED:
            snap["result"] = self.result
        elif self.status == ERROR:
            snap["message"] = self.message
        return snap


class JobStore:
    def create(self, files: List[dict]) -> UploadJob:
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[UploadJob]:
        raise NotImplementedError

    def set(self, job: UploadJob) -> None:
        """Store ``job`` as-is, replacing any record with the same id. Used when loading or
        migrating jobs between backends; routes go through complete/fail instead."""
        raise NotImplementedError

    def complete(self, job_id: str, result: Any) -> UploadJob:
        raise NotImplementedError

    def fail(self, job_id: str, message: str) -> UploadJob:
        raise NotImplementedError


class InMemoryJobStore(JobStore):
    def __init__(self, ttl_seconds: Optional[int] = None):
        self._jobs: Dict[str, UploadJob] = {}
        self._lock = threading.RLock()
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return config.JOB_TTL_SECONDS if self._ttl_seconds is None else self._ttl_seconds

    def create(self, files):
        job = UploadJob(id=uuid.uuid4().hex, files=list(files))
        with self._lock:
            self._jobs[job.id] = job
        logger.info("Upload job %s created with %d file(s)", job.id, len(job.files))
        return job

    def get(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and self._expired(job):
                job.status = ERROR
                job.message = "Processing timed out"
                logger.warning("Upload job %s timed out", job_id)
            return job

    def set(self, job):
        with self._lock:
            self._jobs[job.id] = job

    def complete(self, job_id, result):
        return self._finish(job_id, COMPLETED, result=result)

    def fail(self, job_id, message):
        return self._finish(job_id, ERROR, message=message)

    def _expired(self, job: UploadJob) -> bool:
        ttl = self.ttl_seconds
        if not ttl or job.finished:
            return False
        return (utcnow() - job.created_at).total_seconds() > ttl

    def _finish(self, job_id, status, result=None, message=None):
        with self._lock:
            job = self.get(job_id)
            if job is None:
                raise KeyError(job_id)
            if job.finished:
                raise JobStateError(f"job {job_id} already {job.status}")
            job.status = status
            job.result = result
            job.message = message
        logger.info("Upload job %s -> %s", job_id, status)
        return job


_default_store = InMemoryJobStore()


def get_job_store() -> JobStore:
    return _default_store


def filter_uploads(files: List[AcceptedFile]) -> List[AcceptedFile]:
    """Keep only files with an allowed content type and size."""
    accepted = []
    for f in files:
        if f.content_type not in config.ALLOWED_UPLOAD_TYPES:
            logger.warning("Dropping upload %r: content type %s not allowed", f.filename, f.content_type)
            continue
        if f.size == 0 or f.size > config.MAX_UPLOAD_FILE_BYTES:
            logger.warning("Dropping upload %r: size %d outside limits", f.filename, f.size)
            continue
        accepted.append(f)
    return accepted


def build_metadata(job_id: str, files: List[AcceptedFile], user_id: Optional[int] = None) -> dict:
    meta = {
        "uploadId": job_id,
        "receivedAt": utcnow().isoformat() + "Z",
        "fileCount": len(files),
        "totalBytes": sum(f.size for f in files),
        "contentTypes": sorted({f.content_type for f in files}),
    }
    if user_id is not None:
        meta["userId"] = str(user_id)
    return meta


def _safe_finish(store: JobStore, job_id: str, result: Any = None, message: Optional[str] = None):
    # the webhook callback may have finished the job first
    try:
        if message is not None:
            store.fail(job_id, message)
        else:
            store.complete(job_id, result)
    except JobStateError:
        logger.warning("Upload job %s already finished; dropping late result", job_id)


def dispatch_upload(store: JobStore, job_id: str, files: List[AcceptedFile], user_id: Optional[int] = None):
    """
    Background task: forward the files to the workflow webhook and record the outcome.
    Without a configured webhook, simulate processing by echoing the file metadata.
    """
    if not config.N8N_WEBHOOK_URL:
        time.sleep(config.SIMULATED_PROCESSING_SECONDS)
        _safe_finish(store, job_id, result={"files": [f.metadata() for f in files]})
        return

    metadata = build_metadata(job_id, files, user_id)
    multipart = [("files", (f.filename, f.content, f.content_type)) for f in files]
    try:
        resp = requests.post(
            config.N8N_WEBHOOK_URL,
            data={"metadata": json.dumps(metadata)},
            files=multipart,
            timeout=config.N8N_WEBHOOK_TIMEOUT,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.exception("Upload job %s: webhook call failed", job_id)
        _safe_finish(store, job_id, message=f"Processing service failed: {e.__class__.__name__}")
        return

    if config.N8N_WEBHOOK_MODE != "sync":
        # completion arrives through POST /uploads/webhook
        logger.info("Upload job %s handed off, awaiting callback", job_id)
        return

    try:
        result = resp.json()
    except ValueError:
        logger.exception("Upload job %s: webhook returned invalid JSON", job_id)
        _safe_finish(store, job_id, message="Processing service returned an invalid response")
        return
    _safe_finish(store, job_id, result=result)
