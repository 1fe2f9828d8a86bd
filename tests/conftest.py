import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import AsyncGenerator, Callable, Dict, List, Tuple  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.auth.models import ExeatRole, StaffExeatRole, StudentProfile, User  # noqa: E402
from app.auth.security import access_token_for  # noqa: E402
from app.core.models import ExeatCategory, ParentConsent  # noqa: E402
from app.core.notifier import Notifier, get_notifier  # noqa: E402
from app.db.seed_exeat import seed_categories, seed_roles  # noqa: E402
from app.db.session import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite://"

DATES = {"departure_date": "2026-11-20", "return_date": "2026-11-23"}


class RecordingNotifier(Notifier):
    """Captures deliveries instead of sending them. Set ``fail`` to simulate an outage."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self.fail = False

    async def send(self, address: str, subject: str, body: str) -> bool:
        if self.fail:
            raise ConnectionError("mail server unreachable")
        self.sent.append((address, subject, body))
        return True

    def to(self, address: str) -> List[Tuple[str, str, str]]:
        return [m for m in self.sent if m[0] == address]


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; the same session backs the app's get_db."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture()
async def client(db_session: AsyncSession, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def categories(db_session: AsyncSession) -> Dict[str, ExeatCategory]:
    """Seeded roles and categories, categories keyed by name."""
    await seed_roles(db_session)
    await seed_categories(db_session)
    await db_session.commit()
    result = await db_session.execute(select(ExeatCategory))
    return {c.name: c for c in result.scalars().all()}


@pytest.fixture()
def auth_headers() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token_for(user.id, user.user_type)}"}

    return _headers


@pytest.fixture()
def make_student(db_session: AsyncSession):
    counter = {"n": 0}

    async def _make(parent_email: str = "parent@example.com", **profile) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(fname="Ada", lname=f"Student{n}", email=f"student{n}@school.edu", user_type="student")
        db_session.add(user)
        await db_session.flush()
        db_session.add(
            StudentProfile(
                user_id=user.id,
                matric_no=profile.get("matric_no", f"MAT/{n:04d}"),
                parent_surname=profile.get("parent_surname", "Lovelace"),
                parent_othernames=profile.get("parent_othernames", "Anne"),
                parent_phone_no=profile.get("parent_phone_no", "+2348000000000"),
                parent_email=parent_email,
                accommodation=profile.get("accommodation", "Block A, Room 12"),
            )
        )
        await db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_staff(db_session: AsyncSession, categories):
    counter = {"n": 0}

    async def _make(*role_names: str) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(fname="Staff", lname=f"Member{n}", email=f"staff{n}@school.edu", user_type="staff")
        db_session.add(user)
        await db_session.flush()
        for name in role_names:
            role = (await db_session.execute(select(ExeatRole).where(ExeatRole.name == name))).scalar_one()
            db_session.add(StaffExeatRole(staff_id=user.id, exeat_role_id=role.id))
        await db_session.commit()
        return user

    return _make


@pytest.fixture()
async def staff(make_staff) -> Dict[str, User]:
    """One staff member per pipeline role, keyed by role name."""
    return {
        name: await make_staff(name)
        for name in ("cmd", "deputy_dean", "dean", "dean2", "hostel_admin", "security", "admin")
    }


@pytest.fixture()
def submit(client: AsyncClient, categories, auth_headers):
    async def _submit(student: User, category: str = "Home Visit", **overrides) -> dict:
        payload = {
            "category_id": str(categories[category].id),
            "reason": "Sister's wedding",
            "destination": "Lagos",
            "preferred_contact_mode": "whatsapp",
            **DATES,
            **overrides,
        }
        response = await client.post("/api/v1/student/exeat-requests", json=payload, headers=auth_headers(student))
        assert response.status_code == 201, response.text
        return response.json()["exeat_request"]

    return _submit


@pytest.fixture()
def approve(client: AsyncClient, auth_headers):
    async def _approve(exeat_id: str, actor: User, comment: str = None):
        body = {"comment": comment} if comment is not None else {}
        return await client.post(
            f"/api/v1/staff/exeat-requests/{exeat_id}/approve", json=body, headers=auth_headers(actor)
        )

    return _approve


@pytest.fixture()
def consent_token(db_session: AsyncSession):
    async def _token(exeat_id: str) -> str:
        result = await db_session.execute(
            select(ParentConsent.consent_token).where(ParentConsent.exeat_request_id == UUID(exeat_id))
        )
        return result.scalar_one()

    return _token


@pytest.fixture()
def at_parent_consent(make_student, submit, approve, staff):
    """Submit a home visit request and approve it through to the parent consent stage."""

    async def _drive(**student_kwargs) -> Tuple[User, dict]:
        student = await make_student(**student_kwargs)
        exeat = await submit(student)
        for role in ("deputy_dean", "dean"):
            response = await approve(exeat["id"], staff[role])
            assert response.status_code == 200, response.text
        exeat = response.json()["exeat_request"]
        assert exeat["status"] == "parent_consent"
        return student, exeat

    return _drive
