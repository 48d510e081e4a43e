"""
HTTP route tests through the Flask test client.
"""
from stockledger.models import StockLedgerEntry


def _create_company(client, name="Acme Foods"):
    response = client.post('/api/companies', json={'name': name})
    assert response.status_code == 201
    return response.json['id']


def _create_product(client, company_id, **fields):
    payload = {'company_id': company_id, 'name': 'Basmati Rice', 'primary_unit': 'bag'}
    payload.update(fields)
    response = client.post('/api/products', json=payload)
    assert response.status_code == 201, response.json
    return response.json


def test_health(client, db_session):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json['status'] == 'healthy'
    assert client.get('/version').status_code == 404


def test_product_create_normalizes_units(client, db_session):
    company_id = _create_company(client)
    product = _create_product(
        client, company_id, secondary_unit='kg', conversion_rate=20, has_dual_units=True,
    )
    assert product['primary_unit'] == 'BAG'
    assert product['secondary_unit'] == 'KG'
    assert product['has_dual_units'] is True


def test_product_dual_units_invariant(client, db_session):
    company_id = _create_company(client)
    response = client.post('/api/products', json={
        'company_id': company_id, 'name': 'Broken', 'has_dual_units': True,
    })
    assert response.status_code == 422
    assert response.json['code'] == 'INVALID_PRODUCT'


def test_product_flags_must_be_real_booleans(client, db_session):
    company_id = _create_company(client)
    response = client.post('/api/products', json={
        'company_id': company_id, 'name': 'Sloppy', 'has_dual_units': 0,
    })
    assert response.status_code == 400


def test_duplicate_product_name_conflicts(client, db_session):
    company_id = _create_company(client)
    _create_product(client, company_id)
    response = client.post('/api/products', json={'company_id': company_id, 'name': 'Basmati Rice'})
    assert response.status_code == 409


def test_primary_unit_is_frozen_once_stock_moves(client, db_session):
    company_id = _create_company(client)
    product = _create_product(client, company_id)
    client.post('/api/stock/opening', json={'product_id': product['id'], 'quantity': 5})

    response = client.put(f"/api/products/{product['id']}", json={'primary_unit': 'PCS'})
    assert response.status_code == 422

    response = client.put(f"/api/products/{product['id']}", json={'hsn_code': '1006'})
    assert response.status_code == 200
    assert response.json['hsn_code'] == '1006'


def test_formula_sale_and_reversal_flow(client, db_session):
    company_id = _create_company(client)
    flour = _create_product(
        client, company_id, name='Flour', secondary_unit='KG', conversion_rate=20, has_dual_units=True,
    )
    mix = _create_product(client, company_id, name='Bread Mix', primary_unit='PCS', is_manufactured=True)

    response = client.post('/api/formulas', json={
        'product_id': mix['id'], 'ingredient_id': flour['id'], 'quantity': 6, 'unit_type': 'secondary',
    })
    assert response.status_code == 201

    response = client.get(f"/api/formulas/{mix['id']}")
    assert response.json['count'] == 1

    response = client.post('/api/sales', json={
        'product_id': mix['id'], 'quantity': 4, 'bill_no': 'INV-42', 'date': '2024-05-01',
    })
    assert response.status_code == 201, response.json
    sale_id = response.json['document']['id']

    response = client.get(f"/api/stock/{flour['id']}/balance")
    assert response.json['net'] == -2
    assert response.json['net_secondary'] == -40

    response = client.get(f"/api/stock/{mix['id']}/audit")
    assert response.status_code == 200
    assert response.json['count_mismatch'] is False

    response = client.delete(f'/api/sales/{sale_id}')
    assert response.status_code == 200
    assert response.json['ledger_entries_removed'] == 2
    assert db_session.query(StockLedgerEntry).filter_by(related_id=sale_id).count() == 0

    response = client.delete(f'/api/sales/{sale_id}')
    assert response.status_code == 404


def test_formula_cycle_rejected(client, db_session):
    company_id = _create_company(client)
    a = _create_product(client, company_id, name='A')
    b = _create_product(client, company_id, name='B')
    client.post('/api/formulas', json={'product_id': a['id'], 'ingredient_id': b['id'], 'quantity': 1})

    response = client.post('/api/formulas', json={'product_id': b['id'], 'ingredient_id': a['id'], 'quantity': 1})
    assert response.status_code == 422
    assert response.json['code'] == 'INVALID_FORMULA'


def test_sale_with_unknown_unit_is_rejected(client, db_session):
    company_id = _create_company(client)
    product = _create_product(client, company_id)

    response = client.post('/api/sales', json={
        'product_id': product['id'], 'quantity': 1, 'unit': 'LTR', 'bill_no': 'X',
    })
    assert response.status_code == 422
    assert response.json['code'] == 'INVALID_CONVERSION'
    assert client.get('/api/sales').json['items'] == []


def test_document_validation(client, db_session):
    response = client.post('/api/purchases', json={'product_id': 1, 'quantity': 0, 'bill_no': 'P'})
    assert response.status_code == 400

    response = client.post('/api/production', json={'product_id': 999, 'quantity': 1})
    assert response.status_code == 404


def test_ledger_view_and_as_of_balance(client, db_session):
    company_id = _create_company(client)
    product = _create_product(client, company_id, primary_unit='KG')
    client.post('/api/stock/opening', json={'product_id': product['id'], 'quantity': 10, 'date': '2024-01-01'})
    client.post('/api/stock/adjustments', json={
        'product_id': product['id'], 'quantity': 2.5, 'direction': 'out', 'date': '2024-02-01',
    })

    response = client.get(f"/api/stock/{product['id']}/balance?as_of=2024-01-31")
    assert response.json['net'] == 10

    response = client.get(f"/api/stock/{product['id']}/ledger")
    assert [row['balance'] for row in response.json['entries']] == [10, 7.5]

    response = client.get(f"/api/stock/{product['id']}/balance?as_of=yesterday")
    assert response.status_code == 400


def test_adjustment_requires_direction(client, db_session):
    company_id = _create_company(client)
    product = _create_product(client, company_id)
    response = client.post('/api/stock/adjustments', json={'product_id': product['id'], 'quantity': 1})
    assert response.status_code == 400


def test_orphans_endpoint(client, db_session):
    company_id = _create_company(client)
    product = _create_product(client, company_id)
    created = client.post('/api/sales', json={'product_id': product['id'], 'quantity': 1, 'bill_no': 'S'})
    assert created.status_code == 201

    response = client.get(f'/api/stock/orphans?company_id={company_id}')
    assert response.json['count'] == 0


def test_unknown_product_is_404(client, db_session):
    assert client.get('/api/stock/999/balance').status_code == 404
    assert client.get('/api/products/999').status_code == 404
