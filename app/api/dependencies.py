"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

import codecs

from fastapi import Depends, File, HTTPException, Query, UploadFile, status

from ingestion.normalizer import RawInput

CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
}


def get_csv_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is a CSV by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").strip().lower()

    is_csv_filename = filename.endswith(".csv")
    is_csv_content_type = content_type in CSV_CONTENT_TYPES

    if not is_csv_filename and not is_csv_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are allowed.",
        )

    return file


def get_raw_export(
    file: UploadFile = Depends(get_csv_upload),
    encoding: str | None = Query(
        default=None,
        description="Optional source encoding; tried before the configured encodings",
    ),
) -> RawInput:
    """
    Read the whole upload into memory as pipeline input.
    """

    if encoding:
        try:
            codecs.lookup(encoding)
        except LookupError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown encoding: {encoding}",
            ) from exc

    try:
        content = file.file.read()
    finally:
        file.file.close()

    if not content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty.",
        )

    return RawInput(
        content=content,
        file_name=file.filename or "upload.csv",
        declared_encoding=encoding,
    )
