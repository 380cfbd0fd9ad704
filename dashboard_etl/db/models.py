from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dashboard_etl.db.base import Base
from dashboard_etl.db.enums import EtlRunStatusEnum

# JSONB on Postgres (Supabase), plain JSON elsewhere.
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class CallRecord(Base):
    __tablename__ = "aircall_calls"

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True)
    direction: Mapped[Optional[str]] = mapped_column(String(length=16), nullable=True)
    from_number: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    to_number: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    agent_id: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    recording_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class MessageRecord(Base):
    __tablename__ = "aircall_sms"

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True)
    direction: Mapped[Optional[str]] = mapped_column(String(length=16), nullable=True)
    from_number: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    to_number: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    raw: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class LeadRecord(Base):
    __tablename__ = "whatconverts_leads"

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True)
    source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    medium: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    campaign: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keyword: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    caller_number: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conversion_type: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    revenue: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    raw: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class InspectionRecord(Base):
    __tablename__ = "isn_inspections"

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True)
    customer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True, index=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_engineer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class EtlRun(Base):
    __tablename__ = "etl_runs"
    __table_args__ = (Index("ix_etl_runs_source_status_finished", "source", "status", "run_finished"),)

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_new_id)
    source: Mapped[str] = mapped_column(String(length=32), nullable=False)
    run_started: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    run_finished: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default=EtlRunStatusEnum.running.value
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(length=128), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(length=16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
