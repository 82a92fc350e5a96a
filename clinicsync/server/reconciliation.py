"""
Server-side reconciliation of client change batches.

Policy is last-write-wins by client timestamp: a change applies to an
existing record only if the record's ``updatedAt`` is missing or not newer
than the change. Anything refused is reported back as a conflict together
with the stored record; nothing is merged automatically.
"""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import ConflictError, NotFoundError
from ..models import ChangeEntry, OperationKind, Verdict
from .record_store import RecordKey, RecordStore

logger = logging.getLogger(__name__)


def default_id_factory(tenant: str) -> str:
    return f"{tenant}-{uuid.uuid4().hex}"


class ReconciliationService:
    """
    Applies change batches to the record store and returns per-entry verdicts.

    Entries are handled strictly in submitted order, so a later entry in a
    batch sees the effect of an earlier one on the same entity.
    """

    def __init__(
        self,
        store: RecordStore,
        id_factory: Callable[[str], str] = default_id_factory
    ):
        """
        Initialize the service.

        Args:
            store: System-of-record store
            id_factory: Produces a new entity id for a tenant
        """
        self.store = store
        self._id_factory = id_factory

    def reconcile(self, tenant: str, batch: Sequence[ChangeEntry]) -> List[Verdict]:
        """
        Reconcile a batch of changes for one tenant.

        Args:
            tenant: Clinic the batch belongs to
            batch: Change entries in client log order

        Returns:
            One verdict per entry, in the same order
        """
        verdicts = []
        for entry in batch:
            try:
                verdicts.append(self._apply(tenant, entry))
            except ConflictError as e:
                logger.info(f"Conflict on {entry.entity_type} change {entry.local_id}: {e}")
                verdicts.append(Verdict.conflicted(entry.local_id, e.existing, e.incoming, reason=str(e)))
            except NotFoundError as e:
                logger.info(f"Change {entry.local_id} refused: {e}")
                verdicts.append(Verdict.conflicted(entry.local_id, {}, entry.payload, reason=str(e)))

        accepted = sum(1 for v in verdicts if v.is_accepted)
        logger.info(
            f"Reconciled {len(verdicts)} changes for {tenant}: "
            f"{accepted} accepted, {len(verdicts) - accepted} conflicted"
        )
        return verdicts

    def _resolve_id(self, tenant: str, ref: Any) -> Optional[str]:
        """Map a payload id to an entity id, following create aliases."""
        if ref is None or ref == "":
            return None
        ref = str(ref)
        return self.store.resolve_alias(tenant, ref) or ref

    def _apply(self, tenant: str, entry: ChangeEntry) -> Verdict:
        if entry.operation_kind is OperationKind.CREATE:
            # Replay check and alias bind happen under one (tenant, local_id) lock.
            with self.store.locked((tenant, entry.local_id)):
                replayed = self.store.resolve_alias(tenant, entry.local_id)
                if replayed is not None:
                    logger.debug(f"Create {entry.local_id} already applied as {replayed}")
                    return Verdict.accepted(entry.local_id, replayed)
                entity_id = self._resolve_id(tenant, entry.entity_id) or self._id_factory(tenant)
                return self._write(tenant, entry, entity_id)

        entity_id = self._resolve_id(tenant, entry.entity_id)
        if entity_id is None:
            raise NotFoundError(f"update on {entry.entity_type} carries no id")
        return self._write(tenant, entry, entity_id)

    def _write(self, tenant: str, entry: ChangeEntry, entity_id: str) -> Verdict:
        key = RecordKey(tenant, entry.entity_type, entity_id)
        with self.store.locked(key):
            existing = self.store.get(key)

            if existing is None:
                if entry.operation_kind is OperationKind.UPDATE:
                    raise NotFoundError(f"{key} does not exist")
                record = dict(entry.payload)
            else:
                stored_at = existing.get("updatedAt")
                if stored_at is not None and stored_at > entry.client_timestamp:
                    raise ConflictError(
                        f"{key} updated at {stored_at}, change recorded at {entry.client_timestamp}",
                        existing=existing,
                        incoming=entry.payload
                    )
                if entry.operation_kind is OperationKind.CREATE:
                    record = dict(entry.payload)
                else:
                    record = {**existing, **entry.payload}

            record.update(id=entity_id, clinicId=tenant, updatedAt=entry.client_timestamp)
            alias = entry.local_id if entry.operation_kind is OperationKind.CREATE else None
            self.store.put(key, record, alias=alias)

        return Verdict.accepted(entry.local_id, entity_id)

    def get_record(self, tenant: str, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a record by id or by the local id it was created under."""
        resolved = self._resolve_id(tenant, entity_id)
        if resolved is None:
            return None
        return self.store.get(RecordKey(tenant, entity_type, resolved))
