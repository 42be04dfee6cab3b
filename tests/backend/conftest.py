import os

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-signing-key-that-is-long-enough-for-hs256')

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.availability import Availability  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.user import User  # noqa: E402

TABLES = [User.__table__, Doctor.__table__, Availability.__table__, Appointment.__table__]


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture
def create_user(db_session):
    def _create_user(email: str, role: str = 'patient', first_name: str = 'Pat', last_name: str = 'Ient') -> User:
        user = User(email=email, role=role, first_name=first_name, last_name=last_name)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def create_doctor(db_session, create_user):
    def _create_doctor(first_name: str, last_name: str, speciality: str = 'General Practice') -> tuple[Doctor, User]:
        user = create_user(
            f'{first_name.lower()}.{last_name.lower()}@clinic.example',
            role='doctor',
            first_name=first_name,
            last_name=last_name,
        )
        doctor = Doctor(user_id=user.id, speciality=speciality)
        db_session.add(doctor)
        db_session.commit()
        db_session.refresh(doctor)
        return doctor, user

    return _create_doctor
