"""
Provenance log.

Append-only, per-passport sequences of material batches and process events.
Entries are immutable once appended and are always returned in insertion
order. Appends on different passports never contend with each other.

Any caller may append: suppliers attest their own batches and operators
record their own process steps. Material batches keep accumulating after
finalization unless the deployment enables ``freeze_materials``.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .errors import InvalidArgumentError, LockedError, NotFoundError, require_text
from .locking import KeyedLocks
from .models import MaterialBatch, ProcessEvent, utc_now
from .passports import PassportStore

logger = logging.getLogger(__name__)


class ProvenanceLog:

    def __init__(self, passports: PassportStore, clock: Callable = utc_now, freeze_materials: bool = False):
        self.passports = passports
        self.freeze_materials = freeze_materials
        self._clock = clock
        self._events: Dict[int, List[ProcessEvent]] = {}
        self._materials: Dict[int, List[MaterialBatch]] = {}
        self._locks = KeyedLocks()

    def _require_passport(self, passport_id: int) -> None:
        if not self.passports.exists(passport_id):
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)

    def add_material_batch(
        self,
        passport_id: int,
        batch_number: str,
        material_type: str,
        supplier_name: str,
        certificate_hash: str,
        expiry_at: Optional[datetime],
        caller_identity: str,
    ) -> MaterialBatch:
        self._require_passport(passport_id)
        require_text(batch_number, "batch_number")
        require_text(material_type, "material_type")
        # finalize cannot commit between the frozen check and the append
        with self.passports.hold(passport_id), self._locks.hold(passport_id):
            if self.freeze_materials and self.passports.is_finalized(passport_id):
                raise LockedError(f"passport {passport_id} is finalized", passport_id=passport_id)
            batches = self._materials.setdefault(passport_id, [])
            batch = MaterialBatch(
                passport_id=passport_id,
                sequence=len(batches),
                batch_number=batch_number,
                material_type=material_type,
                supplier_name=supplier_name or "",
                certificate_hash=certificate_hash or "",
                received_at=self._clock(),
                expiry_at=expiry_at,
                recorded_by=caller_identity,
            )
            batches.append(batch)
        logger.debug("passport %d material batch %s appended", passport_id, batch_number)
        return batch

    def record_process_event(
        self,
        passport_id: int,
        event_kind: str,
        caller_identity: str,
        data_locator: str,
        parameters_hash: str,
    ) -> ProcessEvent:
        self._require_passport(passport_id)
        require_text(event_kind, "event_kind")
        require_text(caller_identity, "operator_identity")

        with self._locks.hold(passport_id):
            events = self._events.setdefault(passport_id, [])
            event = ProcessEvent(
                passport_id=passport_id,
                sequence=len(events),
                event_kind=event_kind,
                operator_identity=caller_identity,
                timestamp=self._clock(),
                data_locator=data_locator or "",
                parameters_hash=parameters_hash or "",
            )
            events.append(event)
        logger.debug("passport %d process event %s recorded", passport_id, event_kind)
        return event

    def history(self, passport_id: int) -> List[ProcessEvent]:
        self._require_passport(passport_id)
        with self._locks.hold(passport_id):
            return list(self._events.get(passport_id, []))

    def materials(self, passport_id: int) -> List[MaterialBatch]:
        self._require_passport(passport_id)
        with self._locks.hold(passport_id):
            return list(self._materials.get(passport_id, []))

    def events_of_kind(self, passport_id: int, event_kind: str) -> List[ProcessEvent]:
        return [e for e in self.history(passport_id) if e.event_kind == event_kind]

    def restore(self, events: List[ProcessEvent], materials: List[MaterialBatch]) -> None:
        """Load persisted entries; each passport's entries must arrive in sequence order."""
        for event in events:
            seq = self._events.setdefault(event.passport_id, [])
            if event.sequence != len(seq):
                raise InvalidArgumentError(f"process event out of order for passport {event.passport_id}")
            seq.append(event)
        for batch in materials:
            seq = self._materials.setdefault(batch.passport_id, [])
            if batch.sequence != len(seq):
                raise InvalidArgumentError(f"material batch out of order for passport {batch.passport_id}")
            seq.append(batch)
