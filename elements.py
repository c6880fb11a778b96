"""
Aquatic Elements for Aquamonitor.

An element is one monitored body of water (pool, spa, fountain...) with
an optional amenity type, free-text location and map coordinates.
Elements can be archived instead of deleted, and each one may declare
which analysis parameters are required on its lab sheet.
"""

import uuid
import logging

from amenity_limits import get_amenity_type
from config import Config
from db import get_db, RecordNotFound
from parameters import is_valid_param
from water_chemistry import to_nullable_number

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ['nombre', 'ubicacion', 'amenity_type_id', 'tipo', 'lat', 'lon', 'is_archived']

TRUE_STRINGS = ('1', 'true', 'yes', 'on')
FALSE_STRINGS = ('0', 'false', 'no', 'off', '')


# ---------------------------------------------------------------------------
# Database Initialization
# ---------------------------------------------------------------------------

def init_element_tables():
    """Initialize element tables."""
    with get_db() as conn:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS aquatic_elements (
                id TEXT PRIMARY KEY,
                nombre TEXT NOT NULL,
                ubicacion TEXT,
                amenity_type_id INTEGER,
                tipo TEXT,
                lat REAL,
                lon REAL,
                is_archived INTEGER DEFAULT 0,
                created_by INTEGER,
                updated_by INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (amenity_type_id) REFERENCES amenity_types (id)
            )
        ''')
        conn.execute('''
            CREATE TABLE IF NOT EXISTS element_required_params (
                element_id TEXT NOT NULL,
                param_key TEXT NOT NULL,
                PRIMARY KEY (element_id, param_key)
            )
        ''')
    logger.info("Element tables initialized successfully")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _coordinate(data, key, bound):
    """Return data[key] as float (None when absent), checking +/- bound."""
    raw = data.get(key)
    if raw is None or raw == '':
        return None
    value = to_nullable_number(raw)
    if value is None or not -bound <= value <= bound:
        raise ValueError(f"{key} must be a number between -{bound} and {bound}, got {raw!r}")
    return value


def _flag(data, key):
    """Return data[key] as 0 or 1; strings must spell a boolean."""
    raw = data.get(key)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in FALSE_STRINGS:
            return 0
        if text in TRUE_STRINGS:
            return 1
        raise ValueError(f"{key} must be a boolean, got {raw!r}")
    return 1 if raw else 0


def _normalize(data):
    """Validate and coerce the mutable fields present in *data*."""
    clean = {f: data[f] for f in UPDATABLE_FIELDS if f in data}
    if 'lat' in clean:
        clean['lat'] = _coordinate(data, 'lat', 90)
    if 'lon' in clean:
        clean['lon'] = _coordinate(data, 'lon', 180)
    if 'is_archived' in clean:
        clean['is_archived'] = _flag(data, 'is_archived')
    if clean.get('amenity_type_id') is not None:
        try:
            get_amenity_type(clean['amenity_type_id'])
        except RecordNotFound as e:
            raise ValueError(str(e)) from e
    return clean


def _page_bounds(page, page_size):
    page = max(int(page or 1), 1)
    page_size = int(page_size or Config.DEFAULT_PAGE_SIZE)
    page_size = min(max(page_size, 1), Config.MAX_PAGE_SIZE)
    return page, page_size


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

_SELECT_ELEMENT = '''
    SELECT e.*, t.code AS amenity_code, t.nombre AS amenity_nombre,
           t.descripcion AS amenity_descripcion,
           (SELECT COUNT(*) FROM water_analyses a WHERE a.element_id = e.id) AS analyses_count,
           (SELECT MAX(a.sampled_at) FROM water_analyses a WHERE a.element_id = e.id) AS last_sampled_at
    FROM aquatic_elements e
    LEFT JOIN amenity_types t ON e.amenity_type_id = t.id
'''


def create_element(user_id, data):
    """Create an element.

    Args:
        user_id: Creating user.
        data: Dict with 'nombre' (required) and optional ubicacion,
              amenity_type_id, tipo, lat, lon, is_archived.

    Returns:
        The new element ID (hex string).
    """
    nombre = (data.get('nombre') or '').strip()
    if not nombre:
        raise ValueError("Missing required field: nombre")
    clean = _normalize(data)

    element_id = uuid.uuid4().hex
    with get_db() as conn:
        conn.execute('''
            INSERT INTO aquatic_elements (
                id, nombre, ubicacion, amenity_type_id, tipo,
                lat, lon, is_archived, created_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            element_id,
            nombre,
            clean.get('ubicacion'),
            clean.get('amenity_type_id'),
            clean.get('tipo'),
            clean.get('lat'),
            clean.get('lon'),
            clean.get('is_archived', 0),
            user_id,
        ))
    logger.info(f"Created element {element_id} '{nombre}' for user {user_id}")
    return element_id


def get_element(element_id):
    """Get one element with amenity info and analysis count."""
    with get_db() as conn:
        row = conn.execute(_SELECT_ELEMENT + ' WHERE e.id = ?', (element_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Element {element_id} not found")
    return dict(row)


def list_elements(q=None, archived=None, page=1, page_size=None, with_last=False):
    """List elements with search and pagination.

    Args:
        q: Case-insensitive match on name, location or amenity code.
        archived: 0 or 1 to filter by archive state; None for all.
        page: 1-based page number.
        page_size: Rows per page (capped at MAX_PAGE_SIZE).
        with_last: Attach each element's latest analysis as 'last'.

    Returns:
        Dict with 'page', 'pageSize', 'total' and 'data'.
    """
    page, page_size = _page_bounds(page, page_size)
    where = ' WHERE 1 = 1'
    params = []
    if q:
        like = f"%{q.lower()}%"
        where += (' AND (LOWER(e.nombre) LIKE ? OR LOWER(COALESCE(e.ubicacion, \'\')) LIKE ?'
                  ' OR LOWER(COALESCE(t.code, \'\')) LIKE ?)')
        params.extend([like, like, like])
    if archived is not None:
        where += ' AND e.is_archived = ?'
        params.append(int(archived))

    with get_db() as conn:
        total = conn.execute(
            'SELECT COUNT(*) FROM aquatic_elements e '
            'LEFT JOIN amenity_types t ON e.amenity_type_id = t.id' + where,
            params
        ).fetchone()[0]
        rows = conn.execute(
            _SELECT_ELEMENT + where + ' ORDER BY e.nombre LIMIT ? OFFSET ?',
            params + [page_size, (page - 1) * page_size]
        ).fetchall()
    data = [dict(r) for r in rows]

    if with_last:
        from analyses import get_last_analysis
        for element in data:
            element['last'] = get_last_analysis(element['id'])

    return {'page': page, 'pageSize': page_size, 'total': total, 'data': data}


def list_all_elements(archived=None, with_last=False):
    """Every matching element, fetched page by page."""
    elements = []
    page = 1
    while True:
        result = list_elements(archived=archived, page=page,
                               page_size=Config.MAX_PAGE_SIZE, with_last=with_last)
        elements.extend(result['data'])
        if not result['data'] or len(elements) >= result['total']:
            return elements
        page += 1


def update_element(element_id, data, user_id=None):
    """Partially update an element."""
    clean = _normalize(data)
    if not clean:
        return {'updated': 0}
    if 'nombre' in clean:
        clean['nombre'] = (clean['nombre'] or '').strip()
        if not clean['nombre']:
            raise ValueError("nombre cannot be empty")

    fields = list(clean)
    values = [clean[f] for f in fields]
    assignments = ', '.join(f"{f} = ?" for f in fields)
    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE aquatic_elements SET {assignments}, updated_by = ?, "
            f"updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            values + [user_id, element_id]
        )
    if cursor.rowcount == 0:
        raise RecordNotFound(f"Element {element_id} not found")
    logger.info(f"Updated element {element_id}: {fields}")
    return {'updated': cursor.rowcount}


def delete_element(element_id):
    """Delete an element together with its analyses and required params."""
    with get_db() as conn:
        conn.execute('DELETE FROM water_analyses WHERE element_id = ?', (element_id,))
        conn.execute('DELETE FROM element_required_params WHERE element_id = ?', (element_id,))
        cursor = conn.execute('DELETE FROM aquatic_elements WHERE id = ?', (element_id,))
    if cursor.rowcount == 0:
        raise RecordNotFound(f"Element {element_id} not found")
    logger.info(f"Deleted element {element_id} and its analyses")
    return {'deleted': cursor.rowcount}


# ---------------------------------------------------------------------------
# Required parameters
# ---------------------------------------------------------------------------

def get_required_params(element_id):
    """Return {'element_id', 'params'} for an element's lab sheet."""
    get_element(element_id)
    with get_db() as conn:
        rows = conn.execute(
            'SELECT param_key FROM element_required_params WHERE element_id = ? ORDER BY param_key',
            (element_id,)
        ).fetchall()
    return {'element_id': element_id, 'params': [r['param_key'] for r in rows]}


def set_required_params(element_id, params):
    """Replace the required parameters of an element."""
    get_element(element_id)
    unknown = [p for p in params if not is_valid_param(p)]
    if unknown:
        raise ValueError(f"Unknown parameters: {', '.join(unknown)}")

    unique = sorted(set(params))
    with get_db() as conn:
        conn.execute('DELETE FROM element_required_params WHERE element_id = ?', (element_id,))
        conn.executemany(
            'INSERT INTO element_required_params (element_id, param_key) VALUES (?, ?)',
            [(element_id, p) for p in unique]
        )
    return {'element_id': element_id, 'count': len(unique)}


# ---------------------------------------------------------------------------
# Sites (map consumers)
# ---------------------------------------------------------------------------

def get_sites(archived=0):
    """Elements that have coordinates, with their latest sample date."""
    sql = _SELECT_ELEMENT + ' WHERE e.lat IS NOT NULL AND e.lon IS NOT NULL'
    params = []
    if archived is not None:
        sql += ' AND e.is_archived = ?'
        params.append(int(archived))
    with get_db() as conn:
        rows = conn.execute(sql + ' ORDER BY e.nombre', params).fetchall()
    return [
        {
            'id': r['id'],
            'nombre': r['nombre'],
            'amenity_code': r['amenity_code'],
            'lat': r['lat'],
            'lon': r['lon'],
            'last_sampled_at': r['last_sampled_at'],
        }
        for r in rows
    ]
