"""
Amenity Types and Operating Limits for Aquamonitor.

Each amenity type (pool, spa, kids pool, fountain) carries min/max
operating limits per analysis parameter. Analyses are checked against the
limits of their element's amenity type:
- Out of range -> 'danger'
- Within the warning margin (2.5% by default) of a bound -> 'warning'

Also ranks elements by how far their latest analysis strays from limits.
"""

import logging

from config import Config
from db import get_db, RecordNotFound
from parameters import DEFAULT_AMENITY_TYPES, is_valid_param, get_param, PARAM_KEYS
from water_chemistry import to_nullable_number

logger = logging.getLogger(__name__)

SEVERITY_DANGER = 'danger'
SEVERITY_WARNING = 'warning'


# ---------------------------------------------------------------------------
# Database Initialization
# ---------------------------------------------------------------------------

def init_amenity_tables():
    """Create amenity tables and seed the default amenity types."""
    with get_db() as conn:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS amenity_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE,
                nombre TEXT NOT NULL,
                descripcion TEXT
            )
        ''')
        conn.execute('''
            CREATE TABLE IF NOT EXISTS amenity_limits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                amenity_type_id INTEGER NOT NULL,
                param_key TEXT NOT NULL,
                min_value REAL,
                max_value REAL,
                comment TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (amenity_type_id, param_key),
                FOREIGN KEY (amenity_type_id) REFERENCES amenity_types (id)
            )
        ''')
        conn.executemany(
            'INSERT OR IGNORE INTO amenity_types (code, nombre, descripcion) VALUES (?, ?, ?)',
            DEFAULT_AMENITY_TYPES
        )
    logger.info("Amenity tables initialized successfully")


# ---------------------------------------------------------------------------
# Amenity Types
# ---------------------------------------------------------------------------

def get_amenity_types():
    """Return all amenity types ordered by id."""
    with get_db() as conn:
        rows = conn.execute('SELECT * FROM amenity_types ORDER BY id').fetchall()
    return [dict(r) for r in rows]


def get_amenity_type(amenity_type_id):
    """Return a single amenity type, raising RecordNotFound if missing."""
    with get_db() as conn:
        row = conn.execute(
            'SELECT * FROM amenity_types WHERE id = ?', (amenity_type_id,)
        ).fetchone()
    if row is None:
        raise RecordNotFound(f"Amenity type {amenity_type_id} not found")
    return dict(row)


# ---------------------------------------------------------------------------
# Limits CRUD
# ---------------------------------------------------------------------------

def _bound(data, key):
    """Return data[key] as float or None; reject non-numeric values."""
    raw = data.get(key)
    if raw is None or raw == '':
        return None
    value = to_nullable_number(raw)
    if value is None:
        raise ValueError(f"{key} must be numeric, got {raw!r}")
    return value


def _validate_range(min_value, max_value):
    if min_value is not None and max_value is not None and min_value > max_value:
        raise ValueError(f"min_value ({min_value}) cannot exceed max_value ({max_value})")


def get_limits(amenity_type_id=None, param_key=None):
    """Get limits, optionally filtered by amenity type and/or parameter.

    Rows carry the amenity code and name for display.
    """
    sql = '''SELECT l.*, t.code AS amenity_code, t.nombre AS amenity_nombre
             FROM amenity_limits l
             JOIN amenity_types t ON l.amenity_type_id = t.id
             WHERE 1 = 1'''
    params = []
    if amenity_type_id is not None:
        sql += ' AND l.amenity_type_id = ?'
        params.append(amenity_type_id)
    if param_key:
        sql += ' AND l.param_key = ?'
        params.append(param_key)
    sql += ' ORDER BY l.amenity_type_id, l.param_key'

    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [dict(r) for r in rows]


def create_limit(data):
    """Create a limit for (amenity_type_id, param_key).

    Args:
        data: Dict with amenity_type_id, param_key and optional
              min_value, max_value, comment.

    Returns:
        The new limit ID.
    """
    amenity_type_id = data.get('amenity_type_id')
    param_key = data.get('param_key')
    if amenity_type_id is None or not param_key:
        raise ValueError("amenity_type_id and param_key are required")
    if not is_valid_param(param_key):
        raise ValueError(f"Unknown parameter '{param_key}'")
    try:
        get_amenity_type(amenity_type_id)
    except RecordNotFound as e:
        raise ValueError(str(e)) from e

    min_value = _bound(data, 'min_value')
    max_value = _bound(data, 'max_value')
    _validate_range(min_value, max_value)

    with get_db() as conn:
        existing = conn.execute(
            'SELECT id FROM amenity_limits WHERE amenity_type_id = ? AND param_key = ?',
            (amenity_type_id, param_key)
        ).fetchone()
        if existing:
            raise ValueError(
                f"A limit for '{param_key}' already exists on amenity type {amenity_type_id}"
            )
        cursor = conn.execute(
            '''INSERT INTO amenity_limits
               (amenity_type_id, param_key, min_value, max_value, comment)
               VALUES (?, ?, ?, ?, ?)''',
            (amenity_type_id, param_key, min_value, max_value, data.get('comment'))
        )
        limit_id = cursor.lastrowid
    logger.info(f"Created limit {limit_id}: type={amenity_type_id} param={param_key}")
    return limit_id


def update_limit(limit_id, data):
    """Update min_value, max_value and/or comment of a limit."""
    with get_db() as conn:
        row = conn.execute('SELECT * FROM amenity_limits WHERE id = ?', (limit_id,)).fetchone()
        if row is None:
            raise RecordNotFound(f"Limit {limit_id} not found")
        current = dict(row)
        fields = [f for f in ('min_value', 'max_value', 'comment') if f in data]
        if not fields:
            return {'updated': 0}
        changes = {f: data[f] if f == 'comment' else _bound(data, f) for f in fields}
        merged = {**current, **changes}
        _validate_range(merged['min_value'], merged['max_value'])

        assignments = ', '.join(f"{f} = ?" for f in fields)
        cursor = conn.execute(
            f"UPDATE amenity_limits SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            [changes[f] for f in fields] + [limit_id]
        )
    logger.info(f"Updated limit {limit_id}: {fields}")
    return {'updated': cursor.rowcount}


def delete_limit(limit_id):
    """Delete a limit."""
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM amenity_limits WHERE id = ?', (limit_id,))
    if cursor.rowcount == 0:
        raise RecordNotFound(f"Limit {limit_id} not found")
    return {'deleted': cursor.rowcount}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def limit_severity(value, limit, margin=None):
    """Classify a reading against a limit.

    Returns 'danger' outside [min, max], 'warning' within *margin* of a
    non-zero bound, otherwise None.
    """
    if value is None or not limit:
        return None
    if margin is None:
        margin = Config.LIMIT_WARNING_MARGIN
    min_value = limit.get('min_value')
    max_value = limit.get('max_value')

    if min_value is not None and value < min_value:
        return SEVERITY_DANGER
    if max_value is not None and value > max_value:
        return SEVERITY_DANGER

    # warning band is a fraction of the bound's magnitude
    if min_value and value <= min_value + abs(min_value) * margin:
        return SEVERITY_WARNING
    if max_value and value >= max_value - abs(max_value) * margin:
        return SEVERITY_WARNING
    return None


def limit_deviation(value, limit):
    """Percentage by which *value* breaks a limit, and the target value.

    Target is the midpoint when both bounds exist, otherwise the single
    bound. Deviation is 0.0 when in range; relative to the broken bound
    otherwise (a zero bound yields no percentage).
    """
    min_value = limit.get('min_value')
    max_value = limit.get('max_value')
    deviation = 0.0

    if min_value is not None and max_value is not None:
        target = (min_value + max_value) / 2
    elif min_value is not None:
        target = min_value
    elif max_value is not None:
        target = max_value
    else:
        return deviation, None

    if min_value is not None and value < min_value and min_value != 0:
        deviation = (min_value - value) / min_value * 100
    elif max_value is not None and value > max_value and max_value != 0:
        deviation = (value - max_value) / max_value * 100
    return deviation, target


def evaluate_analysis(analysis, amenity_type_id, limits=None):
    """Check every parameter of an analysis against its amenity limits.

    Args:
        analysis: Analysis dict (parameter keys -> values).
        amenity_type_id: Amenity type of the analysed element.
        limits: Optional pre-fetched limits for that amenity type.

    Returns:
        Dict with 'parameters' (key -> value, min, max, severity) and
        'overall': 'danger', 'warning', 'ok' or 'no_limits'.
    """
    if amenity_type_id is None:
        return {'amenity_type_id': None, 'overall': 'no_limits', 'parameters': {}}
    if limits is None:
        limits = get_limits(amenity_type_id=amenity_type_id)
    by_param = {l['param_key']: l for l in limits if l['amenity_type_id'] == amenity_type_id}

    parameters = {}
    for key in PARAM_KEYS:
        limit = by_param.get(key)
        value = analysis.get(key)
        if limit is None or value is None:
            continue
        parameters[key] = {
            'label': get_param(key)['label'],
            'value': value,
            'min': limit.get('min_value'),
            'max': limit.get('max_value'),
            'severity': limit_severity(value, limit),
        }

    severities = {p['severity'] for p in parameters.values()}
    if not parameters:
        overall = 'no_limits'
    elif SEVERITY_DANGER in severities:
        overall = SEVERITY_DANGER
    elif SEVERITY_WARNING in severities:
        overall = SEVERITY_WARNING
    else:
        overall = 'ok'

    return {
        'amenity_type_id': amenity_type_id,
        'overall': overall,
        'parameters': parameters,
    }


def rank_elements_by_deviation(elements, limits, top=5):
    """Rank elements whose latest analysis breaks their amenity limits.

    Args:
        elements: Element dicts carrying 'amenity_type_id' and 'last'.
        limits: All limits (any amenity type).
        top: Maximum number of elements returned.

    Returns:
        List of {'element_id', 'nombre', 'avg_deviation', 'param_count',
        'deviations'} ordered by avg_deviation descending.
    """
    ranked = []
    for element in elements:
        last = element.get('last')
        amenity_type_id = element.get('amenity_type_id')
        if not last or amenity_type_id is None:
            continue

        element_limits = {
            l['param_key']: l for l in limits if l['amenity_type_id'] == amenity_type_id
        }
        deviations = {}
        for key in PARAM_KEYS:
            value = last.get(key)
            limit = element_limits.get(key)
            if value is None or limit is None:
                continue
            if limit.get('min_value') is None and limit.get('max_value') is None:
                continue
            deviation, target = limit_deviation(value, limit)
            if deviation > 0:
                deviations[key] = {
                    'label': get_param(key)['label'],
                    'value': value,
                    'deviation': round(deviation, 1),
                    'min': limit.get('min_value'),
                    'max': limit.get('max_value'),
                    'target': target,
                }

        if deviations:
            total = sum(d['deviation'] for d in deviations.values())
            ranked.append({
                'element_id': element.get('id'),
                'nombre': element.get('nombre'),
                'avg_deviation': round(total / len(deviations), 1),
                'param_count': len(deviations),
                'deviations': deviations,
            })

    ranked.sort(key=lambda r: r['avg_deviation'], reverse=True)
    return ranked[:top]
