"""
Pytest configuration and shared fixtures for Aquamonitor tests.
"""

import os
import sys
import tempfile
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables before importing app modules
_TEST_ROOT = tempfile.mkdtemp(prefix='aquamonitor-tests-')
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATA_DIR", os.path.join(_TEST_ROOT, 'data'))
os.environ.setdefault("LOG_DIR", os.path.join(_TEST_ROOT, 'logs'))


@pytest.fixture
def fresh_db(tmp_path, monkeypatch):
    """Point DATA_DIR at an empty directory and create all tables."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    from db import init_all_tables
    init_all_tables()
    return tmp_path


@pytest.fixture
def pool_type_id(fresh_db):
    """Id of the seeded POOL amenity type."""
    from amenity_limits import get_amenity_types
    return next(t['id'] for t in get_amenity_types() if t['code'] == 'POOL')


@pytest.fixture
def element_id(pool_type_id):
    from elements import create_element
    return create_element(1, {
        'nombre': 'Alberca Principal',
        'ubicacion': 'Torre A',
        'amenity_type_id': pool_type_id,
        'lat': 20.6296,
        'lon': -87.0739,
    })


@pytest.fixture
def balanced_reading():
    """Form values as typed by a technician (strings)."""
    return {
        'ph': '7.4',
        'temperatura': '26.5',
        'dureza_calcio': '200',
        'alcalinidad': '100',
        'sdt': '500',
        'cloro_total': '2.5',
        'cloro_libre': '2.0',
    }
