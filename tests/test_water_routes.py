"""Tests for the /v1/albercas blueprint through the Flask test client."""

import pytest

from app import app

BASE = '/v1/albercas'


@pytest.fixture
def client(fresh_db):
    app.config['TESTING'] = True
    with app.test_client() as client:
        with client.session_transaction() as sess:
            sess['user_id'] = 7
        yield client


@pytest.fixture
def element(client):
    resp = client.post(f'{BASE}/elements', json={
        'nombre': 'Alberca Principal', 'amenity_type_id': 1, 'lat': 20.6, 'lon': -87.0,
    })
    assert resp.status_code == 201
    return resp.get_json()['id']


class TestHealthAndCatalogue:
    def test_health(self, client):
        assert client.get('/health').get_json() == {'status': 'ok'}

    def test_parameters(self, client):
        params = client.get(f'{BASE}/parameters').get_json()
        assert params[0] == {'key': 'ph', 'label': 'pH', 'unit': None}
        assert len(params) == 20

    def test_amenity_types(self, client):
        assert len(client.get(f'{BASE}/amenity-types').get_json()) == 4
        assert client.get(f'{BASE}/amenity-types/2').get_json()['code'] == 'SPA'
        assert client.get(f'{BASE}/amenity-types/99').status_code == 404


class TestElementRoutes:
    def test_create_get_update_delete(self, client, element):
        body = client.get(f'{BASE}/elements/{element}').get_json()
        assert body['nombre'] == 'Alberca Principal'
        assert body['created_by'] == 7

        resp = client.patch(f'{BASE}/elements/{element}', json={'ubicacion': 'Torre A'})
        assert resp.get_json() == {'updated': 1}

        assert client.delete(f'{BASE}/elements/{element}').status_code == 200
        assert client.get(f'{BASE}/elements/{element}').status_code == 404

    def test_create_validation(self, client):
        resp = client.post(f'{BASE}/elements', json={'ubicacion': 'sin nombre'})
        assert resp.status_code == 400
        assert 'nombre' in resp.get_json()['error']

    def test_non_json_body(self, client):
        resp = client.post(f'{BASE}/elements', data='nombre=x')
        assert resp.status_code == 400

    def test_list(self, client, element):
        body = client.get(f'{BASE}/elements?q=alberca&pageSize=10').get_json()
        assert body['total'] == 1
        assert body['pageSize'] == 10

    def test_required_params(self, client, element):
        resp = client.put(f'{BASE}/elements/{element}/params', json={'params': ['ph', 'sdt']})
        assert resp.get_json()['count'] == 2
        assert client.get(f'{BASE}/elements/{element}/params').get_json()['params'] == ['ph', 'sdt']
        assert client.put(f'{BASE}/elements/{element}/params', json={'params': 'ph'}).status_code == 400

    def test_last_and_sites(self, client, element):
        assert client.get(f'{BASE}/elements/{element}/last').get_json() is None
        assert client.get(f'{BASE}/elements/nope/last').status_code == 404
        sites = client.get(f'{BASE}/sites').get_json()
        assert [s['id'] for s in sites] == [element]


class TestAnalysisRoutes:
    def test_create_computes_derived(self, client, element, balanced_reading):
        resp = client.post(f'{BASE}/analyses', json={'element_id': element, **balanced_reading})
        assert resp.status_code == 201
        analysis_id = resp.get_json()['id']

        body = client.get(f'{BASE}/analyses/{analysis_id}').get_json()
        assert (body['cloraminas'], body['lsi'], body['rsi']) == (0.5, -0.23, 7.86)
        assert body['created_by'] == 7

        client.patch(f'{BASE}/analyses/{analysis_id}', json={'cloro_libre': '1.0'})
        assert client.get(f'{BASE}/analyses/{analysis_id}').get_json()['cloraminas'] == 1.5

        assert client.delete(f'{BASE}/analyses/{analysis_id}').get_json() == {'deleted': 1}
        assert client.get(f'{BASE}/analyses/{analysis_id}').status_code == 404

    def test_unknown_element(self, client):
        resp = client.post(f'{BASE}/analyses', json={'element_id': 'nope'})
        assert resp.status_code == 400

    def test_list_bad_order(self, client):
        assert client.get(f'{BASE}/analyses?orderDir=up').status_code == 400

    def test_export(self, client, element, balanced_reading):
        client.post(f'{BASE}/analyses', json={'element_id': element, **balanced_reading})
        resp = client.get(f'{BASE}/analyses/export?id={element}')
        assert resp.status_code == 200
        assert resp.mimetype == 'text/csv'
        assert 'attachment' in resp.headers['Content-Disposition']
        assert 'Alberca Principal' in resp.get_data(as_text=True)

    def test_evaluation(self, client, element):
        client.post(f'{BASE}/amenity-limits', json={
            'amenity_type_id': 1, 'param_key': 'ph', 'min_value': 7.2, 'max_value': 7.8,
        })
        analysis_id = client.post(f'{BASE}/analyses', json={'element_id': element, 'ph': '8.1'}).get_json()['id']
        body = client.get(f'{BASE}/analyses/{analysis_id}/evaluation').get_json()
        assert body['overall'] == 'danger'
        assert body['element_id'] == element

    def test_timeseries(self, client, element):
        client.post(f'{BASE}/analyses', json={'element_id': element, 'ph': '7.4',
                                              'sampled_at': '2024-03-01T09:00:00Z'})
        body = client.get(f'{BASE}/analytics/timeseries?element_id={element}&param=ph').get_json()
        assert body['data'] == [{'sampled_at': '2024-03-01T09:00:00Z', 'value': 7.4}]
        assert client.get(f'{BASE}/analytics/timeseries?element_id={element}&param=x').status_code == 400

    def test_deviation_ranking(self, client, element):
        client.post(f'{BASE}/amenity-limits', json={
            'amenity_type_id': 1, 'param_key': 'cloro_libre', 'min_value': 1.0, 'max_value': 3.0,
        })
        client.post(f'{BASE}/analyses', json={'element_id': element, 'cloro_libre': '6'})
        ranking = client.get(f'{BASE}/analytics/deviation-ranking?top=3').get_json()
        assert ranking[0]['element_id'] == element
        assert ranking[0]['avg_deviation'] == 100.0

    def test_deviation_ranking_spans_pages(self, client, monkeypatch):
        from config import Config
        monkeypatch.setattr(Config, 'MAX_PAGE_SIZE', 2)
        client.post(f'{BASE}/amenity-limits', json={
            'amenity_type_id': 1, 'param_key': 'ph', 'min_value': 7.2, 'max_value': 7.8,
        })
        ids = []
        for name in ('A', 'B', 'C', 'Zeta'):
            ids.append(client.post(f'{BASE}/elements', json={'nombre': name, 'amenity_type_id': 1}).get_json()['id'])
        client.post(f'{BASE}/analyses', json={'element_id': ids[-1], 'ph': '9.0'})
        ranking = client.get(f'{BASE}/analytics/deviation-ranking').get_json()
        assert [r['element_id'] for r in ranking] == [ids[-1]]


class TestCalculatorRoutes:
    def test_derived(self, client, balanced_reading):
        body = client.post(f'{BASE}/calculator/derived', json=balanced_reading).get_json()
        assert body['derived'] == {'cloraminas': 0.5, 'lsi': -0.23, 'rsi': 7.86}
        assert body['lsi_status'] == 'balanced'
        assert body['rsi_status'] == 'slightly_corrosive'

    def test_derived_huge_reading(self, client):
        resp = client.post(f'{BASE}/calculator/derived', json={'cloro_total': '1e27', 'cloro_libre': '0'})
        assert resp.status_code == 200
        assert resp.get_json()['derived'] == {'cloraminas': 1e27}

    def test_analysis_with_huge_reading(self, client, element):
        resp = client.post(f'{BASE}/analyses', json={'element_id': element, 'cloro_total': '1e27', 'cloro_libre': '0'})
        assert resp.status_code == 201

    def test_derived_partial(self, client):
        body = client.post(f'{BASE}/calculator/derived', json={'ph': '7.4'}).get_json()
        assert body == {'derived': {}, 'lsi_status': None, 'rsi_status': None}

    def test_balance(self, client, balanced_reading):
        body = client.post(f'{BASE}/calculator/balance', json=balanced_reading).get_json()
        assert body['lsi'] == -0.229
        assert body['adjustments']['ph']['direction'] == 'raise'

    def test_balance_rejects_zero(self, client, balanced_reading):
        balanced_reading['sdt'] = 0
        assert client.post(f'{BASE}/calculator/balance', json=balanced_reading).status_code == 400


class TestAmenityLimitRoutes:
    def test_crud(self, client):
        resp = client.post(f'{BASE}/amenity-limits', json={
            'amenity_type_id': 1, 'param_key': 'ph', 'min_value': 7.2, 'max_value': 7.8,
        })
        assert resp.status_code == 201
        limit_id = resp.get_json()['id']

        assert client.patch(f'{BASE}/amenity-limits/{limit_id}', json={'max_value': 7.6}).get_json() == {'updated': 1}
        limits = client.get(f'{BASE}/amenity-limits?amenity_type_id=1').get_json()
        assert limits[0]['max_value'] == 7.6

        assert client.delete(f'{BASE}/amenity-limits/{limit_id}').status_code == 200
        assert client.delete(f'{BASE}/amenity-limits/{limit_id}').status_code == 404

    def test_duplicate(self, client):
        payload = {'amenity_type_id': 1, 'param_key': 'ph', 'min_value': 7.2}
        client.post(f'{BASE}/amenity-limits', json=payload)
        assert client.post(f'{BASE}/amenity-limits', json=payload).status_code == 400
