import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class SyncState(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"


@dataclass(frozen=True)
class ChangeEntry:
    """
    A single mutation recorded on the client.

    Everything except ``sync_state`` is fixed at record time; the change log
    hands out a fresh copy when the state moves to synced.
    """
    local_id: str
    operation_kind: OperationKind
    entity_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    client_timestamp: float = 0.0
    sync_state: SyncState = SyncState.PENDING

    @property
    def entity_id(self) -> Any:
        """The id the payload addresses, if any."""
        return self.payload.get("id")

    @property
    def is_pending(self) -> bool:
        return self.sync_state is SyncState.PENDING

    def to_wire(self) -> Dict[str, Any]:
        """Serialize the entry into the sync endpoint's request shape."""
        return {
            "operationKind": self.operation_kind.value,
            "entityType": self.entity_type,
            "payload": self.payload,
            "localId": self.local_id,
            "clientTimestamp": self.client_timestamp,
        }

    @classmethod
    def from_wire(cls, data: Any) -> 'ChangeEntry':
        """
        Build an entry from a decoded request item.

        Raises:
            ValueError: If any field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("change must be an object")

        try:
            kind = OperationKind(data.get("operationKind"))
        except ValueError:
            raise ValueError(f"unsupported operationKind: {data.get('operationKind')!r}") from None

        entity_type = data.get("entityType")
        if not isinstance(entity_type, str) or not entity_type:
            raise ValueError("entityType must be a non-empty string")

        local_id = data.get("localId")
        if not isinstance(local_id, str) or not local_id:
            raise ValueError("localId must be a non-empty string")

        payload = data.get("payload", {})
        if not isinstance(payload, dict):
            raise ValueError("payload must be an object")

        timestamp = data.get("clientTimestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("clientTimestamp must be a number")
        try:
            timestamp = float(timestamp)
        except OverflowError:
            raise ValueError("clientTimestamp is out of range") from None
        if not math.isfinite(timestamp):
            raise ValueError(f"clientTimestamp must be finite, got {timestamp!r}")

        return cls(
            local_id=local_id,
            operation_kind=kind,
            entity_type=entity_type,
            payload=payload,
            client_timestamp=timestamp,
        )
