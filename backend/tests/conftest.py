import sys
import pytest
from pathlib import Path

# Add project root (2 levels up from tests/) to sys.path so tests can import 'telecare'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))


# Optionally set PYTHONPATH for runtime
import os
os.environ.setdefault('PYTHONPATH', str(root))


from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from telecare.models import Appointment, init_db
from telecare.services.auth_service import StaticIdentity


PATIENT_ID = "u1"
SPECIALIST_ID = "u2"
OUTSIDER_ID = "u3"


def make_test_engine(db_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)


async def seed_appointments(session_factory):
    async with session_factory() as db:
        db.add(Appointment(id="apt-1", user_id=PATIENT_ID, specialist_id=SPECIALIST_ID, specialist_name="Dr. Smith"))
        db.add(Appointment(id="apt-2", user_id=PATIENT_ID, specialist_id=SPECIALIST_ID, specialist_name="Dr. Smith"))
        await db.commit()


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh database per test, with two seeded appointments."""
    engine = make_test_engine(tmp_path / "telecare.db")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await seed_appointments(factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def patient():
    return StaticIdentity(PATIENT_ID)


@pytest.fixture
def specialist():
    return StaticIdentity(SPECIALIST_ID)


@pytest.fixture
def outsider():
    return StaticIdentity(OUTSIDER_ID)
