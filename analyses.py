"""
Water Analyses for Aquamonitor.

Lab analyses of an aquatic element: every catalogue parameter, a sample
timestamp and a free-text comment. Derived metrics (chloramines, LSI,
RSI) are recomputed from the submitted readings on every create and
update; a manual value for a derived key survives only when the
calculation has no result.

Also serves per-parameter time series and CSV export.
"""

import csv
import io
import uuid
import logging
from datetime import datetime, timezone

from config import Config
from db import get_db, add_column, RecordNotFound
from elements import get_element
from parameters import PARAM_KEYS, CHLORAMINE_INPUTS, SATURATION_INPUTS, is_valid_param
from water_chemistry import to_nullable_number, compute_derived_metrics, merge_derived

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
VALID_ORDER_DIRS = ('asc', 'desc')

# Derived key -> readings it is computed from
DERIVED_INPUTS = {
    'cloraminas': CHLORAMINE_INPUTS,
    'lsi': SATURATION_INPUTS,
    'rsi': SATURATION_INPUTS,
}


# ---------------------------------------------------------------------------
# Database Initialization
# ---------------------------------------------------------------------------

def init_analysis_tables():
    """Initialize the analyses table.

    Parameter columns are added one by one so new catalogue entries
    appear on existing databases too.
    """
    with get_db() as conn:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS water_analyses (
                id TEXT PRIMARY KEY,
                element_id TEXT NOT NULL,
                sampled_at TEXT NOT NULL,
                comentario TEXT,
                created_by INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (element_id) REFERENCES aquatic_elements (id)
            )
        ''')
        for key in PARAM_KEYS:
            add_column(conn, 'water_analyses', key, 'REAL')
        conn.execute(
            'CREATE INDEX IF NOT EXISTS idx_analyses_element_sampled '
            'ON water_analyses (element_id, sampled_at)'
        )
    logger.info("Analysis tables initialized successfully")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_timestamp(value):
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Invalid timestamp '{value}', expected ISO 8601")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_sampled_at(value):
    """Return sampled_at as a UTC 'YYYY-MM-DDTHH:MM:SSZ' string (now if empty)."""
    if value is None or str(value).strip() == '':
        return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)
    return _parse_timestamp(value).strftime(TIMESTAMP_FORMAT)


def _date_bound(value, end=False):
    """Turn a from/to filter into a comparable timestamp string.

    A bare date (YYYY-MM-DD) covers the whole day when used as upper bound.
    """
    if not value:
        return None
    text = str(value).strip()
    if len(text) == 10:
        datetime.strptime(text, '%Y-%m-%d')
        return text + ('T23:59:59Z' if end else 'T00:00:00Z')
    return _parse_timestamp(text).strftime(TIMESTAMP_FORMAT)


def _filters(element_id=None, date_from=None, date_to=None):
    where = ' WHERE 1 = 1'
    params = []
    if element_id:
        where += ' AND a.element_id = ?'
        params.append(element_id)
    start = _date_bound(date_from)
    end = _date_bound(date_to, end=True)
    if start:
        where += ' AND a.sampled_at >= ?'
        params.append(start)
    if end:
        where += ' AND a.sampled_at <= ?'
        params.append(end)
    return where, params


def build_analysis_record(data):
    """Coerce every parameter of *data* and overlay derived metrics.

    Args:
        data: Dict of raw form values (strings, numbers or None).

    Returns:
        Dict of parameter key -> float or None, for every catalogue key.
    """
    record = {key: to_nullable_number(data.get(key)) for key in PARAM_KEYS}
    return merge_derived(record, compute_derived_metrics(record))


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

_SELECT_ANALYSIS = '''
    SELECT a.*, e.nombre AS elemento_nombre
    FROM water_analyses a
    JOIN aquatic_elements e ON a.element_id = e.id
'''


def create_analysis(user_id, data):
    """Record a new analysis for an element.

    Args:
        user_id: Creating user.
        data: Dict with 'element_id' (required), optional 'sampled_at',
              'comentario' and any catalogue parameter.

    Returns:
        The new analysis ID (hex string).
    """
    element_id = data.get('element_id')
    if not element_id:
        raise ValueError("Missing required field: element_id")
    try:
        get_element(element_id)
    except RecordNotFound as e:
        raise ValueError(str(e)) from e

    record = build_analysis_record(data)
    sampled_at = normalize_sampled_at(data.get('sampled_at'))
    analysis_id = uuid.uuid4().hex

    columns = ['id', 'element_id', 'sampled_at', 'comentario', 'created_by'] + PARAM_KEYS
    values = [analysis_id, element_id, sampled_at, data.get('comentario') or None, user_id]
    values += [record[key] for key in PARAM_KEYS]
    placeholders = ', '.join('?' for _ in columns)

    with get_db() as conn:
        conn.execute(
            f"INSERT INTO water_analyses ({', '.join(columns)}) VALUES ({placeholders})",
            values
        )
    derived = {k: record[k] for k in ('cloraminas', 'lsi', 'rsi') if record[k] is not None}
    logger.info(f"Created analysis {analysis_id} for element {element_id} (derived={derived})")
    return analysis_id


def get_analysis(analysis_id):
    """Get one analysis with its element name."""
    with get_db() as conn:
        row = conn.execute(_SELECT_ANALYSIS + ' WHERE a.id = ?', (analysis_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f"Analysis {analysis_id} not found")
    return dict(row)


def list_analyses(element_id=None, date_from=None, date_to=None, page=1,
                  page_size=None, order_dir='desc'):
    """List analyses with filters and pagination.

    Returns:
        Dict with 'page', 'pageSize', 'total' and 'data'.
    """
    order_dir = (order_dir or 'desc').lower()
    if order_dir not in VALID_ORDER_DIRS:
        raise ValueError(f"orderDir must be one of {VALID_ORDER_DIRS}")
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or Config.DEFAULT_PAGE_SIZE), 1), Config.MAX_PAGE_SIZE)

    where, params = _filters(element_id, date_from, date_to)
    with get_db() as conn:
        total = conn.execute(
            'SELECT COUNT(*) FROM water_analyses a' + where, params
        ).fetchone()[0]
        rows = conn.execute(
            _SELECT_ANALYSIS + where
            + f' ORDER BY a.sampled_at {order_dir.upper()}, a.created_at {order_dir.upper()}'
            + ' LIMIT ? OFFSET ?',
            params + [page_size, (page - 1) * page_size]
        ).fetchall()
    return {'page': page, 'pageSize': page_size, 'total': total, 'data': [dict(r) for r in rows]}


def update_analysis(analysis_id, data):
    """Apply a partial update and recompute derived metrics.

    The patch is merged over the stored readings first, so derived
    metrics always reflect the full set of inputs after the update.
    """
    current = get_analysis(analysis_id)

    readings = {key: current.get(key) for key in PARAM_KEYS}
    for key in PARAM_KEYS:
        if key in data:
            readings[key] = to_nullable_number(data[key])
    # a stored derived value is stale once one of its inputs changes
    for key, inputs in DERIVED_INPUTS.items():
        if key not in data and any(i in data for i in inputs):
            readings[key] = None
    readings = merge_derived(readings, compute_derived_metrics(readings))

    assignments = [f"{key} = ?" for key in PARAM_KEYS]
    values = [readings[key] for key in PARAM_KEYS]
    if 'sampled_at' in data:
        assignments.append('sampled_at = ?')
        values.append(normalize_sampled_at(data['sampled_at']))
    if 'comentario' in data:
        assignments.append('comentario = ?')
        values.append(data['comentario'] or None)

    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE water_analyses SET {', '.join(assignments)}, "
            f"updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            values + [analysis_id]
        )
    logger.info(f"Updated analysis {analysis_id}")
    return {'updated': cursor.rowcount}


def delete_analysis(analysis_id):
    """Delete an analysis."""
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM water_analyses WHERE id = ?', (analysis_id,))
    if cursor.rowcount == 0:
        raise RecordNotFound(f"Analysis {analysis_id} not found")
    logger.info(f"Deleted analysis {analysis_id}")
    return {'deleted': cursor.rowcount}


def get_last_analysis(element_id):
    """Most recent analysis of an element, or None."""
    with get_db() as conn:
        row = conn.execute(
            _SELECT_ANALYSIS + ' WHERE a.element_id = ? '
            'ORDER BY a.sampled_at DESC, a.created_at DESC LIMIT 1',
            (element_id,)
        ).fetchone()
    return dict(row) if row else None


# ---------------------------------------------------------------------------
# Time series and export
# ---------------------------------------------------------------------------

def get_timeseries(element_id, param, date_from=None, date_to=None, limit=None):
    """Values of one parameter over time for an element, oldest first.

    With *limit*, only the most recent points are kept.
    """
    if not element_id:
        raise ValueError("element_id is required")
    if not is_valid_param(param):
        raise ValueError(f"Unknown parameter '{param}'")

    where, params = _filters(element_id, date_from, date_to)
    sql = f'SELECT a.sampled_at, a.{param} AS value FROM water_analyses a{where} ORDER BY a.sampled_at DESC'
    if limit:
        sql += ' LIMIT ?'
        params.append(int(limit))

    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    points = [{'sampled_at': r['sampled_at'], 'value': r['value']} for r in reversed(rows)]
    return {'element_id': element_id, 'param': param, 'data': points}


def export_analyses_csv(element_id=None, date_from=None, date_to=None):
    """Export analyses as CSV, oldest first."""
    where, params = _filters(element_id, date_from, date_to)
    with get_db() as conn:
        rows = conn.execute(
            _SELECT_ANALYSIS + where + ' ORDER BY e.nombre, a.sampled_at ASC', params
        ).fetchall()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['sampled_at', 'elemento'] + PARAM_KEYS + ['comentario'])
    for row in rows:
        writer.writerow(
            [row['sampled_at'], row['elemento_nombre']]
            + ['' if row[key] is None else row[key] for key in PARAM_KEYS]
            + [row['comentario'] or '']
        )
    logger.info(f"Analyses CSV exported: {len(rows)} records (element={element_id})")
    return output.getvalue()
