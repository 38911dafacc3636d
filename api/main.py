from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional
import logging, os, uuid
from threading import Thread

from rfp_ingestion.main import RFPIngestionPipeline
from rfp_ingestion.storage import (
    JsonDocumentStore, LocalBlobStore, resolve_document_ref, resolve_knowledge_path,
)

logger = logging.getLogger("rfp_ingestion.api")

app = FastAPI()
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

STORAGE_ROOT = os.getenv("STORAGE_ROOT", "uploads")
DOCUMENT_ROOT = os.getenv("DOCUMENT_ROOT", "outputs")

document_store = JsonDocumentStore(DOCUMENT_ROOT)
pipeline = RFPIngestionPipeline(document_store, LocalBlobStore(STORAGE_ROOT))

jobs = {}  # job_id -> {job_id, status, kind, name, content_type, message}


class StorageObjectEvent(BaseModel):
    """Object-finalize notification, as sent by the bucket."""
    name: str
    bucket: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias="contentType")


@app.post("/events/storage", status_code=202)
def storage_event(event: StorageObjectEvent):
    if resolve_knowledge_path(event.name) is not None:
        kind = "knowledge"
    elif resolve_document_ref(event.name) is not None:
        kind = "document"
    else:
        return {"accepted": False, "kind": "ignored"}

    job_id = str(uuid.uuid4())[:8]
    jobs[job_id] = {
        "job_id": job_id, "status": "queued", "kind": kind,
        "name": event.name, "content_type": event.content_type, "message": "Queued",
    }
    thread = Thread(
        target=run_ingestion_sync,
        args=(job_id, event.name, event.content_type),
        daemon=True,
    )
    thread.start()
    return {"accepted": True, "kind": kind, "job_id": job_id}


def run_ingestion_sync(job_id: str, name: str, content_type: Optional[str]):
    job = jobs[job_id]
    job["status"] = "running"
    try:
        kind, outcome = pipeline.handle_storage_object(name, content_type)
        if outcome is None:
            job["status"] = "skipped"
            job["message"] = "Nothing to do for this upload"
        elif outcome.status == "error":
            job["status"] = "error"
            job["message"] = outcome.error_message
        else:
            job["status"] = "done"
            job["message"] = "Complete"
    except Exception as e:
        logger.exception("Job %s crashed", job_id)
        job["status"] = "error"
        job["message"] = str(e)


@app.get("/jobs/{job_id}")
def get_job(job_id: str):
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="job not found")
    return jobs[job_id]


@app.get("/documents/{ref:path}")
def get_document(ref: str):
    try:
        record = document_store.get(ref)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid document ref")
    if record is None:
        raise HTTPException(status_code=404, detail="document not found")
    return record
