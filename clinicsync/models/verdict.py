"""
Per-entry reconciliation outcomes and the client-side summary of a sync.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class VerdictStatus(str, Enum):
    ACCEPTED = "accepted"
    CONFLICTED = "conflicted"


@dataclass
class Verdict:
    """Server decision for one change entry."""
    local_id: str
    status: VerdictStatus
    assigned_id: Optional[str] = None
    current_record: Optional[Dict[str, Any]] = None
    attempted_payload: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @classmethod
    def accepted(cls, local_id: str, assigned_id: str) -> 'Verdict':
        return cls(local_id=local_id, status=VerdictStatus.ACCEPTED, assigned_id=assigned_id)

    @classmethod
    def conflicted(
        cls,
        local_id: str,
        current_record: Dict[str, Any],
        attempted_payload: Dict[str, Any],
        reason: Optional[str] = None
    ) -> 'Verdict':
        return cls(
            local_id=local_id,
            status=VerdictStatus.CONFLICTED,
            current_record=current_record,
            attempted_payload=attempted_payload,
            reason=reason,
        )

    @property
    def is_accepted(self) -> bool:
        return self.status is VerdictStatus.ACCEPTED


def verdicts_to_response(verdicts: Sequence[Verdict]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Split verdicts into the sync endpoint's response body.

    Order inside each list follows the submitted batch.
    """
    synced = []
    conflicts = []
    for verdict in verdicts:
        if verdict.is_accepted:
            synced.append({"localId": verdict.local_id, "assignedId": verdict.assigned_id})
        else:
            conflicts.append({
                "localId": verdict.local_id,
                "existing": verdict.current_record or {},
                "incoming": verdict.attempted_payload or {},
            })
    return {"synced": synced, "conflicts": conflicts}


@dataclass
class ConflictReport:
    """A locally attempted change the server refused, kept for manual resolution."""
    local_id: str
    entity_type: Optional[str]
    existing: Dict[str, Any]
    incoming: Dict[str, Any]


@dataclass
class SyncResult:
    """Outcome of one sync attempt as seen by the client."""
    accepted: int = 0
    conflicted: int = 0
    conflicts: List[ConflictReport] = field(default_factory=list)
    assigned_ids: Dict[str, str] = field(default_factory=dict)
    completed_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.accepted + self.conflicted
