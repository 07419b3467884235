"""Uploaded lab report versions."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, ForeignKey, TIMESTAMP, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class LabReport(Base):
    """
    One uploaded report file for a test request.

    Uploading again adds a new version; the latest version is mirrored onto
    the test request as its current report. Only the blob-store reference is
    kept, never the file content.
    """

    __tablename__ = "lab_reports"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    test_request_id: Mapped[int] = mapped_column(ForeignKey("test_requests.id", ondelete="RESTRICT"), index=True)
    """Request the report belongs to."""

    version: Mapped[int] = mapped_column(Integer)
    """1 for the first upload, incremented per upload."""

    file_name: Mapped[str] = mapped_column(String(255))
    """Original file name."""

    file_path: Mapped[str] = mapped_column(String(500))
    """Blob-store key."""

    download_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    """URL returned by the blob store."""

    test_results: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Results captured with the upload."""

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    """Upload time."""

    generated_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    """Uploader."""

    test_request = relationship("TestRequest", back_populates="lab_reports")

    __table_args__ = (
        UniqueConstraint("test_request_id", "version", name="uq_lab_reports_request_version"),
    )
