"""
SAP integration segments and their persisted state.

A partner is pushed to SAP in four segments, always in the order of
``SapSegment``. Each segment carries a ``SegmentState`` stored as a plain
dict in ``Partner.sap_segments``.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class SapSegment(str, Enum):
    PRIMARY_RECORD = "primary_record"
    ADDRESSES = "addresses"
    ROLES = "roles"
    BANKS = "banks"

    @classmethod
    def ordered(cls) -> List['SapSegment']:
        return [cls.PRIMARY_RECORD, cls.ADDRESSES, cls.ROLES, cls.BANKS]

    @classmethod
    def parse(cls, value: Any) -> Optional['SapSegment']:
        """Return the segment for a name, or None when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            return None


class SegmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


def timestamp() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SegmentState:
    segment: SapSegment
    status: SegmentStatus = SegmentStatus.PENDING
    last_attempt_at: Optional[str] = None
    last_success_at: Optional[str] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
    external_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['segment'] = self.segment.value
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['SegmentState']:
        segment = SapSegment.parse(data.get('segment'))
        if segment is None:
            return None
        try:
            status = SegmentStatus(data.get('status') or SegmentStatus.PENDING.value)
        except ValueError:
            status = SegmentStatus.PENDING
        return cls(
            segment=segment,
            status=status,
            last_attempt_at=data.get('last_attempt_at'),
            last_success_at=data.get('last_success_at'),
            message=data.get('message'),
            error_message=data.get('error_message'),
            external_id=data.get('external_id'),
        )


def load_states(raw: Optional[Iterable[Dict[str, Any]]]) -> Dict[SapSegment, SegmentState]:
    """
    Build one state per known segment from stored dicts.

    Unknown segments are dropped and missing ones start as pending.
    """
    stored: Dict[SapSegment, SegmentState] = {}
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        state = SegmentState.from_dict(item)
        if state is not None:
            stored[state.segment] = state
    return {
        segment: stored.get(segment) or SegmentState(segment=segment)
        for segment in SapSegment.ordered()
    }


def dump_states(states: Dict[SapSegment, SegmentState]) -> List[Dict[str, Any]]:
    """Serialize states in canonical segment order."""
    return [states[segment].to_dict() for segment in SapSegment.ordered() if segment in states]


def normalize_segments(segments: Optional[Iterable[Any]]) -> List[SapSegment]:
    """Known segments from ``segments``, de-duplicated, in canonical order."""
    requested = {SapSegment.parse(item) for item in segments or []}
    return [segment for segment in SapSegment.ordered() if segment in requested]
