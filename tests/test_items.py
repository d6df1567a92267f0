import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from estimator import create_app, db
from estimator.models import LineItem, MeasurementRow, ItemRate


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def make_item(client, rates=None, works_id='W1', **extra):
    if client.get(f'/works/{works_id}').status_code == 404:
        client.post('/works/', json={'works_id': works_id, 'name': 'Village road'})
        client.post(f'/works/{works_id}/subworks', json={'name': 'Earthwork'})
    sub_id = client.get(f'/works/{works_id}').get_json()['work']['subworks'][0]['id']
    payload = {
        'description': 'Excavation in soft soil',
        'unit': 'cum',
        'rates': rates or [{'description': 'SSR 1.1', 'rate': 100, 'unit': 'cum'}],
    }
    payload.update(extra)
    resp = client.post(f'/works/subworks/{sub_id}/items', json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['item']


def add_row(client, item_id, **data):
    resp = client.post(f'/items/{item_id}/measurements', json=data)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_items_numbered_within_subwork():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        first = make_item(client)
        second = make_item(client)
        assert first['item_number'] == '1'
        assert second['item_number'] == '2'
        assert first['default_rate'] == 100
        assert first['final_quantity'] == 0
        assert first['total_amount'] == 0


def test_item_needs_a_valid_rate():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        make_item(client)
        sub_id = client.get('/works/W1').get_json()['work']['subworks'][0]['id']
        resp = client.post(f'/works/subworks/{sub_id}/items', json={
            'description': 'Bad item',
            'rates': [{'description': '', 'rate': 10}, {'description': 'Zero', 'rate': 0}],
        })
        assert resp.status_code == 400
        assert resp.get_json()['error'] == 'validation'
        assert LineItem.query.count() == 1


def test_measurements_drive_item_total():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)

        body = add_row(client, item['id'], description='Trench',
                       factor=1, no_of_units=2, length=3, width=4, height=0.5)
        assert body['measurement']['calculated_quantity'] == pytest.approx(12)
        assert body['measurement']['line_amount'] == pytest.approx(1200)
        assert body['item']['final_quantity'] == pytest.approx(12)
        assert body['item']['total_amount'] == pytest.approx(1200)

        body = add_row(client, item['id'], description='Less pit',
                       is_manual_quantity=True, manual_quantity=2, is_deduction=True)
        assert body['measurement']['calculated_quantity'] == pytest.approx(2)
        assert body['measurement']['line_amount'] == pytest.approx(-200)
        assert body['item']['final_quantity'] == pytest.approx(10)
        assert body['item']['total_amount'] == pytest.approx(1000)

        it = db.session.get(LineItem, item['id'])
        assert [m.sr_no for m in it.measurements] == [1, 2]
        assert it.rates[0].total_amount == pytest.approx(1000)


def test_manual_quantity_overrides_dimensions():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        body = add_row(client, item['id'], no_of_units=5, length=5, width=5, height=5,
                       is_manual_quantity=True, manual_quantity=7.5)
        assert body['item']['final_quantity'] == pytest.approx(7.5)


def test_update_and_delete_recompute():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        row = add_row(client, item['id'], no_of_units=1, length=10, width=1, height=1)['measurement']
        add_row(client, item['id'], no_of_units=1, length=5, width=1, height=1)

        resp = client.post(f"/items/{item['id']}/measurements/{row['id']}/update", json={'length': 20})
        assert resp.status_code == 200
        assert resp.get_json()['item']['final_quantity'] == pytest.approx(25)

        resp = client.post(f"/items/{item['id']}/measurements/{row['id']}/delete")
        assert resp.status_code == 200
        assert resp.get_json()['item']['final_quantity'] == pytest.approx(5)
        assert MeasurementRow.query.count() == 1


def test_operation_and_unit_conversion():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client, rates=[{'description': 'Steel', 'rate': 60000, 'unit': 'MT'}])
        add_row(client, item['id'], no_of_units=10, length=12, width=1, height=1)

        resp = client.post(f"/works/items/{item['id']}/operation", json={
            'operation_type': 'multiply', 'operation_value': 0.888,
            'unit_conversion_factor': 1000, 'final_unit': 'MT',
        })
        body = resp.get_json()['item']
        # 120 rm of 12mm bar * 0.888 kg/m -> MT
        assert body['final_quantity'] == pytest.approx(0.10656)
        assert body['total_amount'] == pytest.approx(0.10656 * 60000)
        assert body['final_unit'] == 'MT'


def test_divide_by_zero_leaves_total():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=40)
        resp = client.post(f"/works/items/{item['id']}/operation",
                           json={'operation_type': 'divide', 'operation_value': 0})
        assert resp.get_json()['item']['final_quantity'] == pytest.approx(40)


def test_unknown_operation_rejected():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        resp = client.post(f"/works/items/{item['id']}/operation",
                           json={'operation_type': 'power', 'operation_value': 2})
        assert resp.status_code == 400


def test_row_rate_selection_and_fallback():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client, rates=[
            {'description': 'Ordinary soil', 'rate': 100},
            {'description': 'Hard soil', 'rate': 150},
        ])
        hard = item['rates'][1]['id']
        body = add_row(client, item['id'], is_manual_quantity=True, manual_quantity=2, rate_id=hard)
        assert body['measurement']['rate'] == 150
        assert body['measurement']['line_amount'] == pytest.approx(300)

        body = add_row(client, item['id'], is_manual_quantity=True, manual_quantity=2, rate_id=9999)
        assert body['measurement']['rate_id'] is None
        assert body['measurement']['rate'] == 100

        # every rate is priced at the item's final quantity
        assert body['item']['final_quantity'] == pytest.approx(4)
        assert [r['total_amount'] for r in body['item']['rates']] == [400, 600]
        assert body['item']['total_amount'] == pytest.approx(1000)

        groups = client.get(f"/items/{item['id']}/measurements").get_json()['rate_groups']
        assert {g['rate']: g['quantity'] for g in groups} == {150: 2, 100: 2}


def test_deleting_rate_moves_rows_to_default():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client, rates=[
            {'description': 'Ordinary soil', 'rate': 100},
            {'description': 'Hard soil', 'rate': 150},
        ])
        hard = item['rates'][1]['id']
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=3, rate_id=hard)

        resp = client.post(f"/works/items/{item['id']}/rates/{hard}/delete")
        assert resp.status_code == 200
        row = MeasurementRow.query.one()
        assert row.rate_id is None
        assert row.rate == 100
        assert db.session.get(LineItem, item['id']).total_amount == pytest.approx(300)

        only = item['rates'][0]['id']
        resp = client.post(f"/works/items/{item['id']}/rates/{only}/delete")
        assert resp.status_code == 400
        assert ItemRate.query.count() == 1


def test_rate_update_reprices_item():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=5)
        rid = item['rates'][0]['id']
        resp = client.post(f"/works/items/{item['id']}/rates/{rid}/update", json={'rate': 120})
        assert resp.status_code == 200
        it = db.session.get(LineItem, item['id'])
        assert it.default_rate == 120
        assert it.total_amount == pytest.approx(600)
        assert it.measurements[0].line_amount == pytest.approx(500)


def test_saved_rows_keep_their_rate_after_rate_change():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        first = add_row(client, item['id'], is_manual_quantity=True, manual_quantity=2)
        rid = item['rates'][0]['id']
        client.post(f"/works/items/{item['id']}/rates/{rid}/update", json={'rate': 150})

        # recomputing the item leaves saved rows alone
        assert client.post(f"/works/items/{item['id']}/recompute").status_code == 200
        row = db.session.get(MeasurementRow, first['measurement']['id'])
        assert row.rate == 100
        assert row.line_amount == pytest.approx(200)
        assert db.session.get(LineItem, item['id']).total_amount == pytest.approx(300)

        # a new row and an edited row pick up the current rate
        second = add_row(client, item['id'], is_manual_quantity=True, manual_quantity=1)
        assert second['measurement']['rate'] == 150
        resp = client.post(f"/items/{item['id']}/measurements/{row.id}/update",
                           json={'manual_quantity': 2})
        assert resp.get_json()['measurement']['line_amount'] == pytest.approx(300)


def test_bulk_import_adds_manual_rows():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=1)
        resp = client.post(f"/items/{item['id']}/measurements/import", json={'rows': [
            {'description': 'Chainage 0-100', 'quantity': 12.5},
            {'description': 'Chainage 100-200', 'quantity': '7.5'},
        ]})
        assert resp.status_code == 201
        body = resp.get_json()
        assert [m['sr_no'] for m in body['measurements']] == [2, 3]
        assert all(m['is_manual_quantity'] for m in body['measurements'])
        assert body['item']['final_quantity'] == pytest.approx(21)

        resp = client.post(f"/items/{item['id']}/measurements/import", json={'rows': []})
        assert resp.status_code == 400


def test_reference_row_copies_signed_total():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        source = make_item(client)
        add_row(client, source['id'], is_manual_quantity=True, manual_quantity=10)
        add_row(client, source['id'], is_manual_quantity=True, manual_quantity=3, is_deduction=True)
        target = make_item(client, rates=[{'description': 'Refilling', 'rate': 40}])

        resp = client.post(f"/items/{target['id']}/measurements/reference",
                           json={'source_item_id': source['id']})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body['measurement']['description'] == 'Qty. as per Item No. 1'
        assert body['measurement']['reference_item_id'] == source['id']
        assert body['item']['final_quantity'] == pytest.approx(7)
        assert body['item']['total_amount'] == pytest.approx(280)

        resp = client.post(f"/items/{target['id']}/measurements/reference",
                           json={'source_item_id': target['id']})
        assert resp.status_code == 400


def test_recompute_repairs_stale_aggregates():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=4)
        it = db.session.get(LineItem, item['id'])
        it.final_quantity = 999
        it.total_amount = 1
        db.session.commit()

        for _ in range(2):
            body = client.post(f"/works/items/{item['id']}/recompute").get_json()['item']
            assert body['final_quantity'] == pytest.approx(4)
            assert body['total_amount'] == pytest.approx(400)


def test_invalid_number_rejected():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        resp = client.post(f"/items/{item['id']}/measurements", json={'length': 'ten'})
        assert resp.status_code == 400
        assert MeasurementRow.query.count() == 0


def test_update_item_and_add_rate():
    app = setup_app()
    with app.app_context():
        client = app.test_client()
        item = make_item(client)
        add_row(client, item['id'], is_manual_quantity=True, manual_quantity=3)

        resp = client.post(f"/works/items/{item['id']}/update",
                           json={'description': 'Excavation in hard murum', 'category': 'royalty'})
        assert resp.get_json()['item']['category'] == 'royalty'
        assert client.post(f"/works/items/{item['id']}/update",
                           json={'description': ' '}).status_code == 400

        resp = client.post(f"/works/items/{item['id']}/rates",
                           json={'description': 'Lead charges', 'rate': 20})
        assert resp.status_code == 201
        assert resp.get_json()['rate']['total_amount'] == pytest.approx(60)
        it = db.session.get(LineItem, item['id'])
        assert it.total_amount == pytest.approx(360)
        assert it.default_rate == 100

        assert client.post(f"/works/items/{item['id']}/delete").status_code == 200
        assert MeasurementRow.query.count() == 0
        assert ItemRate.query.count() == 0
