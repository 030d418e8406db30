"""
College Portal - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator, Callable, Dict

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool
from faker import Faker

# Set testing environment before the app reads its settings
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///:memory:'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing-only-0123456789'
os.environ['SESSION_SECRET'] = 'test-session-secret-for-testing-only-0123456789'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['FAILED_LOGIN_DELAY_MIN_MS'] = '0'
os.environ['FAILED_LOGIN_DELAY_MAX_MS'] = '0'
os.environ['LOG_FILE'] = ''

from app.core.config import Settings
from app.core.database import Base, get_db
from app.core.security import get_password_hash
from app.main import create_app
from app.models import User, UserRole, Material, Assignment  # noqa: F401  registers every table

fake = Faker()

API = '/api/v1'
STRONG_PASSWORD = 'Tr0ub4dor&7Qz'


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for one test: private upload root, default limits"""
    return Settings(UPLOAD_PATH=str(tmp_path / 'uploads'))


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """Build settings with overrides, e.g. make_settings(RATE_LIMIT_AUTH_MAX=50)"""
    def _make(**overrides) -> Settings:
        overrides.setdefault('UPLOAD_PATH', str(tmp_path / 'uploads'))
        return Settings(**overrides)
    return _make


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


def build_test_app(app_settings: Settings, session_factory):
    application = create_app(app_settings)

    async def override_get_db():
        async with session_factory() as session:
            yield session
            if session.new or session.dirty or session.deleted:
                await session.commit()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def app(test_settings, session_factory):
    application = build_test_app(test_settings, session_factory)
    yield application
    application.dependency_overrides.clear()


def make_client(application) -> AsyncClient:
    # https so the Secure session cookie is sent back
    return AsyncClient(transport=ASGITransport(app=application), base_url='https://test')


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Test client bound to the per-test app"""
    async with make_client(app) as ac:
        yield ac


@pytest.fixture
def client_for(session_factory):
    """Open a client on an app built from custom settings"""
    def _open(app_settings: Settings) -> AsyncClient:
        return make_client(build_test_app(app_settings, session_factory))
    return _open


async def _create_user(db_session: AsyncSession, role: UserRole, email: str = None,
                       password: str = STRONG_PASSWORD, is_active: bool = True) -> User:
    user = User(
        email=email or f"{role.value}.{fake.user_name()}@college.edu".lower(),
        hashed_password=get_password_hash(password, rounds=4),
        full_name=fake.name(),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def create_user(db_session):
    async def _create(role: UserRole = UserRole.STUDENT, **kwargs) -> User:
        return await _create_user(db_session, role, **kwargs)
    return _create


@pytest.fixture
async def student(db_session) -> User:
    return await _create_user(db_session, UserRole.STUDENT, email='student@college.edu')


@pytest.fixture
async def teacher(db_session) -> User:
    return await _create_user(db_session, UserRole.TEACHER, email='teacher@college.edu')


@pytest.fixture
async def admin(db_session) -> User:
    return await _create_user(db_session, UserRole.ADMIN, email='admin@college.edu')


async def login(client: AsyncClient, email: str, password: str = STRONG_PASSWORD) -> Dict[str, str]:
    """Log in and return bearer headers. Leaves the session cookie in the client jar"""
    response = await client.post(f'{API}/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.text
    return {'Authorization': f"Bearer {response.json()['token']}"}


@pytest.fixture
def auth_headers(client):
    """Log a user in through the API, e.g. await auth_headers(student)"""
    async def _headers(user: User, password: str = STRONG_PASSWORD) -> Dict[str, str]:
        headers = await login(client, user.email, password)
        # Bearer only from here on
        client.cookies.clear()
        return headers
    return _headers
