# tests/test_deliveries.py
import pytest

from logic import OrderStatus


@pytest.fixture
def ready_order(logic, shop):
    """Ready order of 10 000 with 5 000 still to collect"""
    ok, msg, order_id = logic.create_order(
        shop['client_id'],
        [{'product_id': shop['product_id'], 'quantity': 1, 'unit_price': 10000, 'unit': 'Pièce'}],
        manual_advance=5000)
    assert ok, msg
    return order_id


def test_collection_without_driver_writes_nothing(logic, ready_order):
    before = logic.db.get_app_data()

    ok, msg = logic.process_delivery(ready_order, driver='  ', delivery_fee=1000, collect_payment=True)

    assert ok is False
    assert msg == "Le nom du livreur est obligatoire pour valider l'encaissement."
    assert logic.last_errors == {'driver': True}
    assert logic.db.get_app_data() == before


def test_delivery_with_collection(logic, ready_order):
    ok, msg = logic.process_delivery(ready_order, driver='Ibrahim', vehicle='Moto', driver_phone='91000000',
                                     delivery_fee=1000, collect_payment=True, payment_method='Mobile Money',
                                     delivery_date='2025-12-20', note='Sonner deux fois')
    assert ok, msg

    order = logic.get_order(ready_order)
    assert order['status'] == OrderStatus.DELIVERED
    assert order['balance_remaining'] == 0
    assert order['is_delivery_paid'] is True
    assert order['payment_method'] == 'Mobile Money'
    assert order['delivery_driver'] == 'Ibrahim'
    assert order['delivery_date'] == '2025-12-20'
    assert order['delivery_fee'] == 1000
    assert order['delivery_note'] == "Sonner deux fois [Livreur: 91000000, Vehicule: Moto]"

    entries = logic.db.get_all_transactions(reference_type='order', reference_id=ready_order)
    collected = sorted((t['category'], t['amount']) for t in entries if t['type'] == 'INCOME')
    # Advance at creation + balance + delivery fee
    assert collected == [('TRANSPORT', 1000), ('VENTE', 5000), ('VENTE', 5000)]


def test_delivery_without_collection(logic, ready_order):
    ok, _ = logic.process_delivery(ready_order, collect_payment=False)
    assert ok

    order = logic.get_order(ready_order)
    assert order['status'] == OrderStatus.DELIVERED
    assert order['balance_remaining'] == 5000
    assert order['is_delivery_paid'] is False
    assert order['delivery_driver'] == 'Non assigné'
    assert order['delivery_address'] == 'Quartier Birni'
    assert len(logic.db.get_all_transactions(reference_type='order', reference_id=ready_order)) == 1


def test_paid_order_needs_no_driver(logic, demo):
    # o3 is fully paid, nothing to collect
    ok, _ = logic.process_delivery(demo['o3'])
    assert ok
    assert logic.get_order(demo['o3'])['delivery_driver'] == 'Non assigné'


def test_only_ready_orders_are_delivered(logic, ready_order):
    assert logic.process_delivery(ready_order, driver='Ibrahim')[0]
    ok, _ = logic.process_delivery(ready_order, driver='Ibrahim')
    assert ok is False


def test_negative_fee_is_rejected(logic, ready_order):
    ok, _ = logic.process_delivery(ready_order, driver='Ibrahim', delivery_fee=-500)
    assert ok is False
    assert logic.get_order(ready_order)['status'] == OrderStatus.READY


def test_pending_and_history_listings(logic, demo):
    assert {o['id'] for o in logic.list_pending_deliveries()} == {demo['o2'], demo['o3']}
    assert [o['id'] for o in logic.list_delivery_history()] == [demo['o1']]

    assert [o['id'] for o in logic.list_pending_deliveries(search="moussa")] == [demo['o2']]
    assert [o['id'] for o in logic.list_pending_deliveries(search="CMD-0003")] == [demo['o3']]

    logic.process_delivery(demo['o3'])
    assert {o['id'] for o in logic.list_delivery_history()} == {demo['o1'], demo['o3']}


def test_assistant_can_deliver(assistant_logic, demo):
    ok, _ = assistant_logic.process_delivery(demo['o2'], driver='Ali Moto')
    assert ok
    assert assistant_logic.db.get_order_by_id(demo['o2'])['balance_remaining'] == 0


def test_payment_method_ignored_without_collection(logic, ready_order):
    ok, msg = logic.process_delivery(ready_order, collect_payment=False, payment_method='Carte')
    assert ok, msg

    order = logic.get_order(ready_order)
    assert order['status'] == OrderStatus.DELIVERED
    assert order['balance_remaining'] == 5000
    assert order['payment_method'] != 'Carte'


def test_unknown_payment_method_blocks_collection(logic, ready_order):
    before = logic.db.get_app_data()
    ok, msg = logic.process_delivery(ready_order, driver='Ibrahim', collect_payment=True, payment_method='Carte')
    assert ok is False
    assert msg == "Mode de paiement inconnu: Carte"
    assert logic.db.get_app_data() == before
