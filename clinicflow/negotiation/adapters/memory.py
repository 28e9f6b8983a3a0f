from loguru import logger

from clinicflow.domain.exceptions import ConflictError
from clinicflow.domain.models import AppointmentRecord


class InMemoryAppointmentRepository:
    """Dict-backed AppointmentRepository with optimistic version checks.

    Records are immutable, so stored instances can be handed out directly.
    Set ``save_error`` to make the next ``save`` raise, for failure tests.
    """

    def __init__(self, records: list[AppointmentRecord] | None = None) -> None:
        self._records: dict[str, AppointmentRecord] = {
            r.appointment_id: r for r in records or []
        }
        self.save_error: Exception | None = None
        self.saves: int = 0

    async def find_by_id(self, appointment_id: str) -> AppointmentRecord | None:
        return self._records.get(appointment_id)

    async def find_by_patient(self, patient_id: str) -> list[AppointmentRecord]:
        return [r for r in self._records.values() if r.patient_id == patient_id]

    async def find_by_clinic(self, clinic_id: str) -> list[AppointmentRecord]:
        return [r for r in self._records.values() if r.clinic_id == clinic_id]

    async def save(self, record: AppointmentRecord, expected_version: int | None = None) -> None:
        if self.save_error:
            error, self.save_error = self.save_error, None
            raise error

        stored = self._records.get(record.appointment_id)
        if expected_version is not None:
            actual = stored.version if stored else 0
            if actual != expected_version:
                logger.debug(
                    "Version conflict on appointment {}: expected {}, found {}",
                    record.appointment_id,
                    expected_version,
                    actual,
                )
                raise ConflictError(record.appointment_id, expected_version, actual)

        self._records[record.appointment_id] = record
        self.saves += 1

    def __len__(self) -> int:
        return len(self._records)
