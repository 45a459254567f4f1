from __future__ import annotations

import logging
import random
import time
from pathlib import Path
from typing import List

from fastapi import HTTPException, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .errors import ExtractionError
from .extraction import ALLOWED_MIME_TYPES, extract_text
from .models import UploadedFile
from .settings import settings

logger = logging.getLogger(__name__)


def upload_root() -> Path:
	root = Path(settings.upload_dir)
	root.mkdir(parents=True, exist_ok=True)
	return root


def stored_name(original_name: str) -> str:
	suffix = Path(original_name or "").suffix.lower()
	return f"{int(time.time() * 1000)}-{random.randint(0, 10**9 - 1)}{suffix}"


def validate_batch(files: List[UploadFile]) -> None:
	if not files:
		raise HTTPException(status_code=400, detail="No files uploaded")
	if len(files) > settings.max_files_per_upload:
		raise HTTPException(
			status_code=400,
			detail=f"Too many files. Max {settings.max_files_per_upload} files per upload.",
		)
	for f in files:
		if f.content_type not in ALLOWED_MIME_TYPES:
			raise HTTPException(
				status_code=415,
				detail="Invalid file type. Only PDF, DOCX, PPTX, TXT, PNG and JPEG files are allowed.",
			)


async def store_upload(db: Session, user_id: str, upload: UploadFile, content: bytes) -> UploadedFile:
	"""Persist one upload to disk, extract its text and save the row.

	Extraction failures are recorded on the row rather than raised, so one bad
	file does not sink the rest of the batch.
	"""
	original_name = upload.filename or "upload"
	name = stored_name(original_name)
	path = upload_root() / name
	path.write_bytes(content)
	logger.info("Stored %s (%s, %d bytes) as %s", original_name, upload.content_type, len(content), name)

	text: str | None = None
	method: str | None = None
	error: str | None = None
	try:
		result = await run_in_threadpool(extract_text, path, upload.content_type)
		text, method = result.text, result.method
	except ExtractionError as e:
		logger.warning("Text extraction failed for %s: %s", original_name, e)
		error = e.message

	row = UploadedFile(
		user_id=user_id,
		original_name=original_name,
		filename=name,
		file_path=str(path),
		file_type=Path(original_name).suffix.lower(),
		file_size=len(content),
		mime_type=upload.content_type,
		extracted_text=text,
		extraction_method=method,
		is_processed=bool(text),
		processing_error=error,
	)
	db.add(row)
	return row


def owned_files(db: Session, user_id: str, file_ids: List[str]) -> List[UploadedFile]:
	if not file_ids:
		return []
	return (
		db.query(UploadedFile)
		.filter(
			UploadedFile.id.in_(file_ids),
			UploadedFile.user_id == user_id,
			UploadedFile.is_deleted.is_(False),
		)
		.all()
	)


async def store_batch(db: Session, user_id: str, files: List[UploadFile]) -> List[UploadedFile]:
	"""Size-check the whole batch, then store each file.

	Nothing touches the disk until every file is within the limit; if storing
	fails midway the files already written are removed again.
	"""
	contents = [await f.read() for f in files]
	for f, content in zip(files, contents):
		if len(content) > settings.max_upload_bytes:
			logger.info("Rejected %s: %d bytes over the %dMB limit", f.filename, len(content), settings.max_upload_mb)
			raise HTTPException(
				status_code=413,
				detail=f"File size too large. Max {settings.max_upload_mb}MB allowed.",
			)
	rows: List[UploadedFile] = []
	try:
		for f, content in zip(files, contents):
			rows.append(await store_upload(db, user_id, f, content))
	except Exception:
		for row in rows:
			Path(row.file_path).unlink(missing_ok=True)
		raise
	return rows
