import io
import os
import tempfile
from datetime import date

# Settings and the engine are built at import time, so point them at a
# throwaway SQLite file before anything from the app is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="guest-validation-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'guests.db')}"
os.environ["LOG_FILE"] = ""

import pytest
import xlwt
from openpyxl import Workbook

import guest_validation.models  # registers the guests table on Base.metadata
from guest_validation.db.base import Base
from guest_validation.db.session import SessionLocal, engine
from guest_validation.services.realtime import ChangeBroker


def reset_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def make_xlsx(*sheets):
    """Build an .xlsx in memory; each sheet is a list of rows"""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for index, rows in enumerate(sheets, start=1):
        sheet = workbook.create_sheet(f"Sheet{index}")
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def make_xls(*sheets):
    """Build a legacy .xls in memory; dates get a date format so they read back as dates"""
    workbook = xlwt.Workbook()
    date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD")
    for index, rows in enumerate(sheets, start=1):
        sheet = workbook.add_sheet(f"Sheet{index}")
        for row_index, row in enumerate(rows):
            for column, value in enumerate(row):
                if isinstance(value, date):
                    sheet.write(row_index, column, value, date_style)
                elif value is not None:
                    sheet.write(row_index, column, value)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def db_session():
    reset_tables()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def broker():
    return ChangeBroker()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from guest_validation.main import app

    reset_tables()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def xlsx():
    return make_xlsx


@pytest.fixture
def xls():
    return make_xls
