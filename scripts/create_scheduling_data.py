"""Create development scheduling data (recurring availability, a funded patient, tokens)."""

import asyncio
from datetime import time, timedelta

from sqlalchemy import select

from clinic_booking.booking.recurrence import RecurrencePattern, RecurrenceRule
from clinic_booking.core.security import create_access_token
from clinic_booking.db.init_db import create_tables
from clinic_booking.db.session import AsyncSessionLocal
from clinic_booking.models.scheduling import AvailabilitySlot, ProviderKind
from clinic_booking.services.ledger import BalanceLedger
from clinic_booking.services.rbac import Role
from clinic_booking.services.slots import SlotStore
from clinic_booking.utils.time import utc_today

DOCTOR_ID = 1
PATIENT_ID = 100
CLINIC_ID = 10


async def create_scheduling_data():
    """Publish two weeks of slots for a demo doctor and fund a demo patient."""
    await create_tables()

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(AvailabilitySlot).where(AvailabilitySlot.provider_id == DOCTOR_ID).limit(1)
        )
        if result.scalar_one_or_none():
            print("Availability slots already exist, skipping...")
        else:
            store = SlotStore(session)
            start = utc_today() + timedelta(days=1)

            # In-clinic mornings on weekdays
            in_person = await store.create_recurring(
                DOCTOR_ID,
                RecurrenceRule(
                    start_date=start,
                    end_date=start + timedelta(days=13),
                    daily_start=time(9, 0),
                    daily_end=time(12, 0),
                    slot_minutes=30,
                    days_of_week=frozenset({0, 1, 2, 3, 4}),
                    pattern=RecurrencePattern.WEEKLY,
                ),
                provider_kind=ProviderKind.DOCTOR,
                clinic_id=CLINIC_ID,
            )
            print(f"Created {len(in_person)} in-person slots")

            # Telemedicine afternoons every day
            remote = await store.create_recurring(
                DOCTOR_ID,
                RecurrenceRule(
                    start_date=start,
                    end_date=start + timedelta(days=13),
                    daily_start=time(14, 0),
                    daily_end=time(16, 0),
                    slot_minutes=20,
                    pattern=RecurrencePattern.DAILY,
                ),
                provider_kind=ProviderKind.DOCTOR,
            )
            print(f"Created {len(remote)} telemedicine slots")

        ledger = BalanceLedger(session)
        if await ledger.get_balance(PATIENT_ID) == 0:
            balance = await ledger.deposit(PATIENT_ID, "1000.00", description="Demo top-up")
            print(f"Funded patient {PATIENT_ID}: balance {balance}")

        print("\n=== Summary ===")
        print(f"Doctor ID: {DOCTOR_ID} (clinic {CLINIC_ID})")
        print(f"Patient ID: {PATIENT_ID}")
        print(f"Doctor token: {create_access_token(DOCTOR_ID, Role.DOCTOR.value)}")
        print(f"Patient token: {create_access_token(PATIENT_ID, Role.PATIENT.value)}")
        print("Scheduling data setup complete!")


if __name__ == "__main__":
    asyncio.run(create_scheduling_data())
