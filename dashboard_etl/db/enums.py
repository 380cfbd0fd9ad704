from enum import Enum


class EtlRunStatusEnum(str, Enum):
    running = "running"
    success = "success"
    failed = "failed"


class SourceEnum(str, Enum):
    calls = "calls"
    leads = "leads"
    inspections = "inspections"


ALL_SOURCES = "all"

# Vendor names used by the upstream webhooks and older ingest callers.
SOURCE_ALIASES: dict[str, str] = {
    "aircall": SourceEnum.calls.value,
    "whatconverts": SourceEnum.leads.value,
    "isn": SourceEnum.inspections.value,
}


def resolve_source(value: str | None) -> str:
    """Map a requested source (or vendor alias) to its canonical name; empty means ``all``."""
    cleaned = (value or ALL_SOURCES).strip().lower()
    cleaned = SOURCE_ALIASES.get(cleaned, cleaned)
    if cleaned != ALL_SOURCES and cleaned not in {item.value for item in SourceEnum}:
        raise ValueError(f"Unknown source: {value}")
    return cleaned


def expand_sources(source: str) -> list[str]:
    if source == ALL_SOURCES:
        return [item.value for item in SourceEnum]
    return [source]
