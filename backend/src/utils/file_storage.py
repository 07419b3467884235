"""
Blob storage for lab report files.

Reports are written to S3 when it is configured, otherwise to a local upload
directory. Callers only ever keep the returned (storage key, URL) pair.
"""

import logging
import os
import uuid
from typing import Tuple, cast

import aiofiles
import aioboto3  # type: ignore
from fastapi import UploadFile
from types_aiobotocore_s3 import S3Client  # type: ignore

from core.config import (
    API_BASE_URL,
    LAB_REPORT_UPLOAD_DIR,
    MAX_UPLOAD_SIZE_MB,
    S3_ACCESS_KEY,
    S3_BUCKET,
    S3_ENDPOINT_URL,
    S3_REGION,
    S3_SECRET_KEY,
)
from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_REPORT_EXTENSIONS = {".pdf"}
ALLOWED_REPORT_CONTENT_TYPES = {"application/pdf"}


def s3_configured() -> bool:
    return bool(S3_BUCKET and S3_ACCESS_KEY and S3_SECRET_KEY)


def validate_report_upload(upload_file: UploadFile) -> None:
    """
    Check a lab report upload before it is stored.

    Raises:
        ValidationError: If the file is not a PDF or exceeds the size limit
    """
    extension = os.path.splitext(upload_file.filename or "")[1].lower()
    if extension not in ALLOWED_REPORT_EXTENSIONS:
        raise ValidationError("Only PDF files are allowed for lab reports")
    if upload_file.content_type and upload_file.content_type not in ALLOWED_REPORT_CONTENT_TYPES:
        raise ValidationError("Only PDF files are allowed for lab reports")
    if upload_file.size is not None and upload_file.size > MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise ValidationError(f"Lab report exceeds the {MAX_UPLOAD_SIZE_MB}MB limit")


async def save_report_file(upload_file: UploadFile) -> Tuple[str, str]:
    """
    Saves an uploaded lab report and returns (storage_key, url).
    Prioritizes S3 if configured, otherwise falls back to local storage.
    """
    validate_report_upload(upload_file)
    if not s3_configured():
        return await save_local_file(upload_file)
    return await save_s3_file(upload_file)


async def save_local_file(upload_file: UploadFile) -> Tuple[str, str]:
    """Saves a file under LAB_REPORT_UPLOAD_DIR."""
    os.makedirs(LAB_REPORT_UPLOAD_DIR, exist_ok=True)

    file_extension = os.path.splitext(upload_file.filename or "")[1].lower()
    storage_key = f"lab-report-{uuid.uuid4()}{file_extension}"
    file_path = os.path.join(LAB_REPORT_UPLOAD_DIR, storage_key)

    await upload_file.seek(0)
    async with aiofiles.open(file_path, "wb") as out_file:
        while content := await upload_file.read(1024 * 1024):  # 1MB chunks
            await out_file.write(content)

    url = f"{API_BASE_URL}/static/{LAB_REPORT_UPLOAD_DIR}/{storage_key}"
    logger.info(f"Stored lab report locally as {storage_key}")
    return storage_key, url


async def save_s3_file(upload_file: UploadFile) -> Tuple[str, str]:
    """Saves a file to S3 using aioboto3."""
    file_extension = os.path.splitext(upload_file.filename or "")[1].lower()
    storage_key = f"lab-reports/{uuid.uuid4()}{file_extension}"

    session = aioboto3.Session()
    async with session.client(  # type: ignore
        "s3",
        region_name=S3_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=S3_ENDPOINT_URL or None,
    ) as s3_client:  # type: ignore
        s3 = cast(S3Client, s3_client)
        await upload_file.seek(0)
        # Size is capped by validate_report_upload, so reading into memory is fine
        content = await upload_file.read()
        await s3.put_object(
            Bucket=S3_BUCKET,
            Key=storage_key,
            Body=content,
            ContentType=upload_file.content_type or "application/pdf",
        )

    if S3_ENDPOINT_URL:
        url = f"{S3_ENDPOINT_URL}/{S3_BUCKET}/{storage_key}"
    else:
        url = f"https://{S3_BUCKET}.s3.{S3_REGION}.amazonaws.com/{storage_key}"
    logger.info(f"Stored lab report in S3 as {storage_key}")
    return storage_key, url


async def generate_download_url(storage_key: str, expiration: int = 3600) -> str:
    """
    Generates a pre-signed URL for a stored report.
    If S3 is not configured, returns the local static URL.
    """
    if not s3_configured():
        return f"{API_BASE_URL}/static/{LAB_REPORT_UPLOAD_DIR}/{storage_key}"

    session = aioboto3.Session()
    async with session.client(  # type: ignore
        "s3",
        region_name=S3_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=S3_ENDPOINT_URL or None,
    ) as s3_client:  # type: ignore
        s3 = cast(S3Client, s3_client)
        return await s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": S3_BUCKET, "Key": storage_key},
            ExpiresIn=expiration,
        )
