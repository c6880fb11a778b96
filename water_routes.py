"""
Water Chemistry Routes Blueprint for Aquamonitor.

Registers the JSON API under /v1/albercas:
- Aquatic elements and their required parameters
- Water analyses, time series and CSV export
- Derived-metric and water-balance calculators
- Amenity types, operating limits and limit evaluation
"""

from flask import Blueprint, Response, jsonify, request, session
import logging

from db import RecordNotFound

logger = logging.getLogger(__name__)

water_bp = Blueprint('water_bp', __name__, url_prefix='/v1/albercas')


# ====================================================================
# Helpers
# ====================================================================

def _user_id():
    """Return the current user id, defaulting to 1 for demo mode."""
    return session.get('user_id', 1)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _error_response(e, action):
    """Map domain exceptions to HTTP responses."""
    if isinstance(e, RecordNotFound):
        return jsonify({'error': str(e)}), 404
    if isinstance(e, ValueError):
        return jsonify({'error': str(e)}), 400
    logger.error(f"Error {action}: {e}", exc_info=True)
    return jsonify({'error': str(e)}), 500


# ====================================================================
# Parameter catalogue
# ====================================================================

@water_bp.route('/parameters', methods=['GET'])
def get_parameters():
    from parameters import get_params
    return jsonify(get_params())


# ====================================================================
# Elements API
# ====================================================================

@water_bp.route('/elements', methods=['GET'])
def list_elements():
    try:
        from elements import list_elements as _list
        result = _list(
            q=request.args.get('q'),
            archived=request.args.get('archived', type=int),
            page=request.args.get('page', 1, type=int),
            page_size=request.args.get('pageSize', type=int),
            with_last=bool(request.args.get('withLast', 0, type=int)),
        )
        return jsonify(result)
    except Exception as e:
        return _error_response(e, "listing elements")


@water_bp.route('/elements', methods=['POST'])
def create_element():
    try:
        from elements import create_element as _create
        element_id = _create(_user_id(), _json_body())
        return jsonify({'id': element_id}), 201
    except Exception as e:
        return _error_response(e, "creating element")


@water_bp.route('/elements/<element_id>', methods=['GET'])
def get_element(element_id):
    try:
        from elements import get_element as _get
        return jsonify(_get(element_id))
    except Exception as e:
        return _error_response(e, f"getting element {element_id}")


@water_bp.route('/elements/<element_id>', methods=['PATCH'])
def update_element(element_id):
    try:
        from elements import update_element as _update
        return jsonify(_update(element_id, _json_body(), user_id=_user_id()))
    except Exception as e:
        return _error_response(e, f"updating element {element_id}")


@water_bp.route('/elements/<element_id>', methods=['DELETE'])
def delete_element(element_id):
    try:
        from elements import delete_element as _delete
        return jsonify(_delete(element_id))
    except Exception as e:
        return _error_response(e, f"deleting element {element_id}")


@water_bp.route('/elements/<element_id>/params', methods=['GET'])
def get_element_params(element_id):
    try:
        from elements import get_required_params
        return jsonify(get_required_params(element_id))
    except Exception as e:
        return _error_response(e, f"getting params of element {element_id}")


@water_bp.route('/elements/<element_id>/params', methods=['PUT'])
def set_element_params(element_id):
    try:
        from elements import set_required_params
        params = _json_body().get('params')
        if not isinstance(params, list):
            raise ValueError("'params' must be a list of parameter keys")
        return jsonify(set_required_params(element_id, params))
    except Exception as e:
        return _error_response(e, f"setting params of element {element_id}")


@water_bp.route('/elements/<element_id>/last', methods=['GET'])
def get_last_analysis(element_id):
    try:
        from elements import get_element as _get
        from analyses import get_last_analysis as _last
        _get(element_id)
        return jsonify(_last(element_id))
    except Exception as e:
        return _error_response(e, f"getting last analysis of element {element_id}")


@water_bp.route('/sites', methods=['GET'])
def get_sites():
    try:
        from elements import get_sites as _sites
        return jsonify(_sites(archived=request.args.get('archived', 0, type=int)))
    except Exception as e:
        return _error_response(e, "getting sites")


# ====================================================================
# Analyses API
# ====================================================================

@water_bp.route('/analyses', methods=['GET'])
def list_analyses():
    try:
        from analyses import list_analyses as _list
        result = _list(
            element_id=request.args.get('element_id'),
            date_from=request.args.get('from'),
            date_to=request.args.get('to'),
            page=request.args.get('page', 1, type=int),
            page_size=request.args.get('pageSize', type=int),
            order_dir=request.args.get('orderDir', 'desc'),
        )
        return jsonify(result)
    except Exception as e:
        return _error_response(e, "listing analyses")


@water_bp.route('/analyses', methods=['POST'])
def create_analysis():
    try:
        from analyses import create_analysis as _create
        analysis_id = _create(_user_id(), _json_body())
        return jsonify({'id': analysis_id}), 201
    except Exception as e:
        return _error_response(e, "creating analysis")


@water_bp.route('/analyses/export', methods=['GET'])
def export_analyses():
    try:
        from analyses import export_analyses_csv
        csv_text = export_analyses_csv(
            element_id=request.args.get('id') or request.args.get('element_id'),
            date_from=request.args.get('from'),
            date_to=request.args.get('to'),
        )
        return Response(
            csv_text,
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=water_analyses.csv'},
        )
    except Exception as e:
        return _error_response(e, "exporting analyses")


@water_bp.route('/analyses/<analysis_id>', methods=['GET'])
def get_analysis(analysis_id):
    try:
        from analyses import get_analysis as _get
        return jsonify(_get(analysis_id))
    except Exception as e:
        return _error_response(e, f"getting analysis {analysis_id}")


@water_bp.route('/analyses/<analysis_id>', methods=['PATCH'])
def update_analysis(analysis_id):
    try:
        from analyses import update_analysis as _update
        return jsonify(_update(analysis_id, _json_body()))
    except Exception as e:
        return _error_response(e, f"updating analysis {analysis_id}")


@water_bp.route('/analyses/<analysis_id>', methods=['DELETE'])
def delete_analysis(analysis_id):
    try:
        from analyses import delete_analysis as _delete
        return jsonify(_delete(analysis_id))
    except Exception as e:
        return _error_response(e, f"deleting analysis {analysis_id}")


@water_bp.route('/analyses/<analysis_id>/evaluation', methods=['GET'])
def evaluate_analysis(analysis_id):
    try:
        from analyses import get_analysis as _get
        from elements import get_element as _get_element
        from amenity_limits import evaluate_analysis as _evaluate
        analysis = _get(analysis_id)
        element = _get_element(analysis['element_id'])
        result = _evaluate(analysis, element.get('amenity_type_id'))
        result['analysis_id'] = analysis_id
        result['element_id'] = element['id']
        return jsonify(result)
    except Exception as e:
        return _error_response(e, f"evaluating analysis {analysis_id}")


# ====================================================================
# Analytics API
# ====================================================================

@water_bp.route('/analytics/timeseries', methods=['GET'])
def get_timeseries():
    try:
        from analyses import get_timeseries as _series
        result = _series(
            element_id=request.args.get('element_id'),
            param=request.args.get('param'),
            date_from=request.args.get('from'),
            date_to=request.args.get('to'),
            limit=request.args.get('limit', type=int),
        )
        return jsonify(result)
    except Exception as e:
        return _error_response(e, "getting timeseries")


@water_bp.route('/analytics/deviation-ranking', methods=['GET'])
def get_deviation_ranking():
    try:
        from elements import list_all_elements
        from amenity_limits import get_limits, rank_elements_by_deviation
        elements = list_all_elements(archived=0, with_last=True)
        top = request.args.get('top', 5, type=int)
        return jsonify(rank_elements_by_deviation(elements, get_limits(), top=top))
    except Exception as e:
        return _error_response(e, "ranking elements by deviation")


# ====================================================================
# Calculator API
# ====================================================================

@water_bp.route('/calculator/derived', methods=['POST'])
def calculate_derived():
    try:
        from water_chemistry import compute_derived_metrics, classify_lsi, classify_rsi
        derived = compute_derived_metrics(_json_body())
        return jsonify({
            'derived': derived,
            'lsi_status': classify_lsi(derived.get('lsi')),
            'rsi_status': classify_rsi(derived.get('rsi')),
        })
    except Exception as e:
        return _error_response(e, "computing derived metrics")


@water_bp.route('/calculator/balance', methods=['POST'])
def calculate_balance():
    try:
        from water_chemistry import calculate_water_balance
        data = _json_body()
        result = calculate_water_balance(
            ph=data.get('ph'),
            tds=data.get('sdt', data.get('tds')),
            temperature_c=data.get('temperatura'),
            alkalinity=data.get('alcalinidad'),
            calcium_hardness=data.get('dureza_calcio'),
        )
        return jsonify(result)
    except Exception as e:
        return _error_response(e, "calculating water balance")


# ====================================================================
# Amenity API
# ====================================================================

@water_bp.route('/amenity-types', methods=['GET'])
def get_amenity_types():
    try:
        from amenity_limits import get_amenity_types as _types
        return jsonify(_types())
    except Exception as e:
        return _error_response(e, "getting amenity types")


@water_bp.route('/amenity-types/<int:amenity_type_id>', methods=['GET'])
def get_amenity_type(amenity_type_id):
    try:
        from amenity_limits import get_amenity_type as _type
        return jsonify(_type(amenity_type_id))
    except Exception as e:
        return _error_response(e, f"getting amenity type {amenity_type_id}")


@water_bp.route('/amenity-limits', methods=['GET'])
def get_amenity_limits():
    try:
        from amenity_limits import get_limits
        return jsonify(get_limits(
            amenity_type_id=request.args.get('amenity_type_id', type=int),
            param_key=request.args.get('param_key'),
        ))
    except Exception as e:
        return _error_response(e, "getting amenity limits")


@water_bp.route('/amenity-limits', methods=['POST'])
def create_amenity_limit():
    try:
        from amenity_limits import create_limit
        limit_id = create_limit(_json_body())
        return jsonify({'id': limit_id}), 201
    except Exception as e:
        return _error_response(e, "creating amenity limit")


@water_bp.route('/amenity-limits/<int:limit_id>', methods=['PATCH'])
def update_amenity_limit(limit_id):
    try:
        from amenity_limits import update_limit
        return jsonify(update_limit(limit_id, _json_body()))
    except Exception as e:
        return _error_response(e, f"updating amenity limit {limit_id}")


@water_bp.route('/amenity-limits/<int:limit_id>', methods=['DELETE'])
def delete_amenity_limit(limit_id):
    try:
        from amenity_limits import delete_limit
        return jsonify(delete_limit(limit_id))
    except Exception as e:
        return _error_response(e, f"deleting amenity limit {limit_id}")
