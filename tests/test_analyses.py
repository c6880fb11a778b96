"""Tests for analyses.py: derived metrics on save, filters, time series and CSV export."""

import csv
import io

import pytest

from db import RecordNotFound
from analyses import (
    create_analysis, get_analysis, list_analyses, update_analysis, delete_analysis,
    get_last_analysis, get_timeseries, export_analyses_csv, normalize_sampled_at,
    build_analysis_record,
)
from parameters import PARAM_KEYS


def _sample(element_id, sampled_at, **readings):
    return create_analysis(1, {'element_id': element_id, 'sampled_at': sampled_at, **readings})


class TestBuildAnalysisRecord:
    def test_every_key_present(self, balanced_reading):
        record = build_analysis_record(balanced_reading)
        assert set(record) == set(PARAM_KEYS)
        assert record['turbidez'] is None
        assert record['ph'] == 7.4

    def test_manual_derived_kept_without_inputs(self):
        assert build_analysis_record({'lsi': '0.4'})['lsi'] == 0.4

    def test_calculation_overrides_manual(self, balanced_reading):
        balanced_reading['cloraminas'] = '9'
        assert build_analysis_record(balanced_reading)['cloraminas'] == 0.5


class TestSampledAt:
    def test_offset_converted_to_utc(self):
        assert normalize_sampled_at('2024-05-01T10:30:00-06:00') == '2024-05-01T16:30:00Z'

    def test_naive_taken_as_utc(self):
        assert normalize_sampled_at('2024-05-01T10:30:00') == '2024-05-01T10:30:00Z'

    def test_zulu(self):
        assert normalize_sampled_at('2024-05-01T10:30:00Z') == '2024-05-01T10:30:00Z'

    def test_empty_is_now(self):
        assert normalize_sampled_at('').endswith('Z')

    def test_invalid(self):
        with pytest.raises(ValueError, match="ISO 8601"):
            normalize_sampled_at('yesterday')


class TestCreateAnalysis:
    def test_derived_metrics_stored(self, element_id, balanced_reading):
        analysis_id = create_analysis(1, {'element_id': element_id, **balanced_reading})
        analysis = get_analysis(analysis_id)
        assert analysis['cloraminas'] == 0.5
        assert analysis['lsi'] == -0.23
        assert analysis['rsi'] == 7.86
        assert analysis['elemento_nombre'] == 'Alberca Principal'
        assert analysis['created_by'] == 1

    def test_blank_readings_stored_as_null(self, element_id):
        analysis_id = create_analysis(1, {'element_id': element_id, 'ph': '', 'comentario': ''})
        analysis = get_analysis(analysis_id)
        assert analysis['ph'] is None
        assert analysis['lsi'] is None
        assert analysis['comentario'] is None

    def test_element_required(self, fresh_db):
        with pytest.raises(ValueError, match="element_id"):
            create_analysis(1, {'ph': '7.4'})

    def test_unknown_element(self, fresh_db):
        with pytest.raises(ValueError):
            create_analysis(1, {'element_id': 'nope', 'ph': '7.4'})

    def test_missing(self, fresh_db):
        with pytest.raises(RecordNotFound):
            get_analysis('nope')


class TestUpdateAnalysis:
    def test_recomputes_from_merged_readings(self, element_id, balanced_reading):
        analysis_id = create_analysis(1, {'element_id': element_id, **balanced_reading})
        update_analysis(analysis_id, {'cloro_libre': '1.0'})
        analysis = get_analysis(analysis_id)
        assert analysis['cloraminas'] == 1.5
        assert analysis['lsi'] == -0.23

    def test_stale_derived_cleared(self, element_id, balanced_reading):
        analysis_id = create_analysis(1, {'element_id': element_id, **balanced_reading})
        update_analysis(analysis_id, {'sdt': ''})
        analysis = get_analysis(analysis_id)
        assert analysis['sdt'] is None
        assert analysis['lsi'] is None
        assert analysis['rsi'] is None
        assert analysis['cloraminas'] == 0.5

    def test_comment_and_date(self, element_id):
        analysis_id = create_analysis(1, {'element_id': element_id})
        update_analysis(analysis_id, {'comentario': 'Retrolavado', 'sampled_at': '2024-01-02'})
        analysis = get_analysis(analysis_id)
        assert analysis['comentario'] == 'Retrolavado'
        assert analysis['sampled_at'] == '2024-01-02T00:00:00Z'

    def test_missing(self, fresh_db):
        with pytest.raises(RecordNotFound):
            update_analysis('nope', {'ph': 7})

    def test_delete(self, element_id):
        analysis_id = create_analysis(1, {'element_id': element_id})
        assert delete_analysis(analysis_id) == {'deleted': 1}
        with pytest.raises(RecordNotFound):
            delete_analysis(analysis_id)


class TestListing:
    @pytest.fixture
    def history(self, element_id):
        _sample(element_id, '2024-03-01T09:00:00Z', ph='7.2')
        _sample(element_id, '2024-03-15T09:00:00Z', ph='7.5')
        _sample(element_id, '2024-04-01T09:00:00Z', ph='7.9')
        return element_id

    def test_newest_first(self, history):
        result = list_analyses(element_id=history)
        assert [a['ph'] for a in result['data']] == [7.9, 7.5, 7.2]
        assert result['total'] == 3

    def test_ascending(self, history):
        assert [a['ph'] for a in list_analyses(order_dir='asc')['data']] == [7.2, 7.5, 7.9]

    def test_bad_order(self, history):
        with pytest.raises(ValueError):
            list_analyses(order_dir='sideways')

    def test_date_range_whole_days(self, history):
        result = list_analyses(date_from='2024-03-01', date_to='2024-03-15')
        assert [a['ph'] for a in result['data']] == [7.5, 7.2]

    def test_pagination(self, history):
        result = list_analyses(page=2, page_size=2)
        assert [a['ph'] for a in result['data']] == [7.2]

    def test_last(self, history):
        assert get_last_analysis(history)['ph'] == 7.9

    def test_last_none(self, element_id):
        assert get_last_analysis(element_id) is None


class TestTimeseries:
    def test_oldest_first(self, element_id):
        _sample(element_id, '2024-03-02T09:00:00Z', ph='7.5')
        _sample(element_id, '2024-03-01T09:00:00Z', ph='7.2')
        result = get_timeseries(element_id, 'ph')
        assert result['param'] == 'ph'
        assert [p['value'] for p in result['data']] == [7.2, 7.5]

    def test_limit_keeps_latest(self, element_id):
        for day, ph in ((1, '7.1'), (2, '7.2'), (3, '7.3')):
            _sample(element_id, f'2024-03-0{day}T09:00:00Z', ph=ph)
        points = get_timeseries(element_id, 'ph', limit=2)['data']
        assert [p['value'] for p in points] == [7.2, 7.3]

    def test_derived_series(self, element_id, balanced_reading):
        create_analysis(1, {'element_id': element_id, **balanced_reading})
        assert get_timeseries(element_id, 'lsi')['data'][0]['value'] == -0.23

    def test_unknown_param(self, element_id):
        with pytest.raises(ValueError):
            get_timeseries(element_id, 'ph; DROP TABLE water_analyses')

    def test_element_required(self, fresh_db):
        with pytest.raises(ValueError):
            get_timeseries(None, 'ph')


class TestExport:
    def test_csv(self, element_id, balanced_reading):
        _sample(element_id, '2024-03-01T09:00:00Z', comentario='Inicial', **balanced_reading)
        rows = list(csv.reader(io.StringIO(export_analyses_csv(element_id=element_id))))
        header, first = rows
        assert header[:2] == ['sampled_at', 'elemento']
        assert header[-1] == 'comentario'
        record = dict(zip(header, first))
        assert record['elemento'] == 'Alberca Principal'
        assert record['lsi'] == '-0.23'
        assert record['turbidez'] == ''
        assert record['comentario'] == 'Inicial'

    def test_empty(self, fresh_db):
        assert export_analyses_csv().splitlines() == [
            ','.join(['sampled_at', 'elemento'] + PARAM_KEYS + ['comentario'])
        ]
