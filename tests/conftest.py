"""Shared pytest fixtures for the Sales Tracker tests."""

import sys
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Sequence

import mongomock
import openpyxl
import pytest
from fastapi.testclient import TestClient

# Ensure the top-level modules are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import database  # noqa: E402
import main  # noqa: E402
import users  # noqa: E402
from config import AppConfig  # noqa: E402
from schemas import UserCreate  # noqa: E402

ADMIN_PASSWORD = "admin-pass"
SALESMAN_PASSWORD = "s1-pass"


@pytest.fixture
def db() -> Iterator[mongomock.Database]:
    """A fresh in-memory database carrying the production indexes."""

    client = mongomock.MongoClient()
    test_db = client["sales_tracker_test"]
    database.ensure_indexes(test_db)
    yield test_db
    client.close()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        database_url="mongodb://localhost:27017",
        database_name="sales_tracker_test",
        secret_key="test-secret",
        upload_dir=tmp_path / "uploads",
        default_admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Write an .xlsx file from ``{sheet name: [header row, data rows...]}``."""

    def _create(sheets: Dict[str, List[Sequence]], filename: str = "upload.xlsx") -> Path:
        workbook = openpyxl.Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            worksheet = workbook.create_sheet(title)
            for row in rows:
                worksheet.append(list(row))
        path = tmp_path / filename
        workbook.save(path)
        return path

    return _create


@pytest.fixture
def admin_user(db) -> dict:
    return users.create_user(
        db,
        UserCreate(username="admin", name="Administrator", role="admin", password=ADMIN_PASSWORD),
    )


@pytest.fixture
def salesman_user(db) -> dict:
    return users.create_user(
        db,
        UserCreate(username="alice", name="Alice", role="salesman", salesman_id="S1", password=SALESMAN_PASSWORD),
    )


@pytest.fixture
def client(db, config) -> Iterator[TestClient]:
    """HTTP client bound to the in-memory database.

    The lifespan is not entered, so no real MongoDB connection is attempted.
    """

    main.app.dependency_overrides[database.get_db] = lambda: db
    main.app.dependency_overrides[main.get_config] = lambda: config
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def _auth_headers(user: dict, config: AppConfig) -> Dict[str, str]:
    token = main.create_access_token({"sub": user["username"], "role": user["role"]}, config)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user, config) -> Dict[str, str]:
    return _auth_headers(admin_user, config)


@pytest.fixture
def salesman_headers(salesman_user, config) -> Dict[str, str]:
    return _auth_headers(salesman_user, config)
