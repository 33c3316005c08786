"""
Unit tests for service layer functions.

覆盖：resolve_actor, create_order, list_orders, change_order_status,
delete_order, get_billing_by_reference, record_payment。
"""
import uuid
from decimal import Decimal

import pytest

from orders.exceptions import (
    BlockError,
    NotFoundError,
    PaymentRequiredError,
    PermissionDeniedError,
    ValidationError,
)
from orders.lifecycle.types import Actor, OrderStatus, Role
from orders.models import BillItem, ClinicalOrder, OrderStatusTransition, Payment
from orders.services import (
    add_bill_items,
    change_order_status,
    create_order,
    delete_order,
    generate_bill,
    get_billing_by_reference,
    get_order_detail,
    list_order_transitions,
    list_orders,
    record_payment,
    resolve_actor,
)
from tests.conftest import ClinicalOrderFactory, StaffProfileFactory, UserFactory, bill_for

ADMIN = Actor(role=Role.ADMIN, staff_id='adm-1')
DOC = Actor(role=Role.STAFF, staff_id='doc-7')
NURSE = Actor(role=Role.STAFF, staff_id='doc-9')
VISITOR = Actor(role=Role.OTHER)


@pytest.mark.django_db
class TestResolveActor:

    def test_staff_profile(self):
        user = StaffProfileFactory(role='staff', staff_id='doc-7').user
        assert resolve_actor(user) == DOC

    def test_admin_profile(self):
        user = StaffProfileFactory(role='admin', staff_id='adm-1').user
        assert resolve_actor(user) == ADMIN

    def test_superuser_without_profile_is_admin(self):
        user = UserFactory(is_superuser=True)
        assert resolve_actor(user) == Actor(role=Role.ADMIN)

    def test_no_profile_is_other(self):
        assert resolve_actor(UserFactory()) == VISITOR

    def test_blank_staff_id_becomes_none(self):
        user = StaffProfileFactory(role='staff', staff_id=None).user
        assert resolve_actor(user) == Actor(role=Role.STAFF)

    def test_anonymous(self):
        assert resolve_actor(None) == VISITOR


@pytest.mark.django_db
class TestCreateOrder:

    def payload(self, **overrides):
        data = {
            'kind': 'prescription',
            'patient_id': 'pat-1',
            'assigned_staff_id': 'doc-7',
            'items': [{'drug_id': 'amox-500', 'quantity': 21}],
        }
        data.update(overrides)
        return data

    def test_creates_pending_order(self):
        order = create_order(self.payload(), DOC)

        assert order.status == 'pending'
        assert order.kind == 'prescription'
        assert order.assigned_staff_id == 'doc-7'
        assert order.version == 0
        assert ClinicalOrder.objects.count() == 1

    def test_status_in_payload_is_ignored(self):
        order = create_order(self.payload(status='completed'), ADMIN)
        assert order.status == 'pending'

    def test_explicit_billing_reference(self):
        order = create_order(
            self.payload(billing_reference={'item_type': 'prescription', 'reference_id': 'RX-9'}),
            DOC,
        )
        assert order.billing_item_type == 'prescription'
        assert order.billing_reference_id == 'RX-9'

    def test_other_role_denied(self):
        with pytest.raises(PermissionDeniedError):
            create_order(self.payload(), VISITOR)
        assert ClinicalOrder.objects.count() == 0

    @pytest.mark.parametrize('body', [[1, 2], 'kind=lab_order', None])
    def test_body_must_be_an_object(self, body):
        with pytest.raises(ValidationError) as exc_info:
            create_order(body, DOC)
        assert exc_info.value.code == 'VALIDATION_ERROR'
        assert ClinicalOrder.objects.count() == 0

    @pytest.mark.parametrize('overrides, code', [
        ({'kind': 'diet'}, 'INVALID_KIND'),
        ({'patient_id': '  '}, 'PATIENT_REQUIRED'),
        ({'items': []}, 'EMPTY_ITEMS'),
        ({'items': 'cbc'}, 'EMPTY_ITEMS'),
        ({'billing_reference': 'RX-9'}, 'INVALID_BILLING_REFERENCE'),
    ])
    def test_validation(self, overrides, code):
        with pytest.raises(ValidationError) as exc_info:
            create_order(self.payload(**overrides), DOC)
        assert exc_info.value.code == code
        assert exc_info.value.http_status == 400


@pytest.mark.django_db
class TestListOrders:

    def test_filters(self):
        ClinicalOrderFactory(status='pending')
        ClinicalOrderFactory(status='completed')
        ClinicalOrderFactory(kind='prescription', assigned_staff_id='doc-9')

        orders, total, _, _ = list_orders({'status': 'pending', 'kind': 'lab_order'})
        assert total == 1
        assert orders[0].status == 'pending'

        _, total, _, _ = list_orders({'assigned_staff_id': 'doc-9'})
        assert total == 1

    def test_patient_filter(self):
        ClinicalOrderFactory(patient_id='pat-A')
        ClinicalOrderFactory(patient_id='pat-B')
        orders, total, _, _ = list_orders({'patient_id': 'pat-A'})
        assert total == 1
        assert orders[0].patient_id == 'pat-A'

    def test_pagination(self):
        ClinicalOrderFactory.create_batch(5)

        orders, total, page, limit = list_orders({'page': '2', 'limit': '2'})

        assert total == 5
        assert (page, limit) == (2, 2)
        assert len(orders) == 2

    def test_limit_is_capped(self, settings):
        settings.ORDER_LIST_MAX_LIMIT = 3
        ClinicalOrderFactory.create_batch(4)
        orders, _, _, limit = list_orders({'limit': '50'})
        assert limit == 3
        assert len(orders) == 3

    @pytest.mark.parametrize('params', [{'page': '0'}, {'limit': 'abc'}, {'page': '-1'}])
    def test_bad_pagination(self, params):
        with pytest.raises(ValidationError) as exc_info:
            list_orders(params)
        assert exc_info.value.code == 'INVALID_PAGINATION'

    def test_unknown_status_filter(self):
        with pytest.raises(ValidationError) as exc_info:
            list_orders({'status': 'archived'})
        assert exc_info.value.code == 'INVALID_STATUS'


@pytest.mark.django_db
class TestChangeOrderStatus:

    def test_status_required(self):
        order = ClinicalOrderFactory()
        with pytest.raises(ValidationError) as exc_info:
            change_order_status(order.id, {}, DOC)
        assert exc_info.value.code == 'STATUS_REQUIRED'

    def test_body_must_be_an_object(self):
        order = ClinicalOrderFactory()
        with pytest.raises(ValidationError) as exc_info:
            change_order_status(order.id, ['in_progress'], DOC)
        assert exc_info.value.code == 'VALIDATION_ERROR'

    def test_assigned_staff_starts_work(self):
        order = ClinicalOrderFactory()

        result = change_order_status(order.id, {'status': 'in_progress'}, DOC)

        assert result.status == 'in_progress'
        assert result.version == 1
        assert OrderStatusTransition.objects.filter(order=order).count() == 1

    def test_completion_needs_payment(self):
        order = ClinicalOrderFactory(status='in_progress')
        bill_for(order, total='50.00', paid='20.00')

        with pytest.raises(PaymentRequiredError) as exc_info:
            change_order_status(order.id, {'status': 'completed'}, DOC)

        assert exc_info.value.bill.balance == Decimal('30.00')
        order.refresh_from_db()
        assert order.status == 'in_progress'

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            change_order_status(uuid.uuid4(), {'status': 'cancelled'}, ADMIN)

    def test_history_is_recorded_in_order(self):
        order = ClinicalOrderFactory()
        bill_for(order, paid='50.00')
        change_order_status(order.id, {'status': 'in_progress'}, DOC)
        change_order_status(order.id, {'status': 'completed'}, DOC)

        history = list_order_transitions(order.id)

        assert [(t.from_status, t.to_status) for t in history] == [
            ('pending', 'in_progress'),
            ('in_progress', 'completed'),
        ]


@pytest.mark.django_db
class TestGetOrderDetail:

    def test_allowed_transitions_per_actor(self):
        order = ClinicalOrderFactory()

        _, allowed = get_order_detail(order.id, DOC)
        assert allowed == {OrderStatus.IN_PROGRESS}

        _, allowed = get_order_detail(order.id, NURSE)
        assert allowed == frozenset()

        _, allowed = get_order_detail(order.id, ADMIN)
        assert allowed == {OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED, OrderStatus.CANCELLED}


@pytest.mark.django_db
class TestDeleteOrder:

    def test_admin_deletes(self):
        order = ClinicalOrderFactory()
        delete_order(order.id, ADMIN)
        assert not ClinicalOrder.objects.filter(id=order.id).exists()

    def test_staff_cannot_delete(self):
        order = ClinicalOrderFactory()
        with pytest.raises(PermissionDeniedError):
            delete_order(order.id, DOC)
        assert ClinicalOrder.objects.filter(id=order.id).exists()


@pytest.mark.django_db
class TestGetBillingByReference:

    def test_missing_params(self):
        with pytest.raises(ValidationError) as exc_info:
            get_billing_by_reference('lab_order', '')
        assert exc_info.value.code == 'MISSING_REFERENCE'

    def test_order_without_bill(self):
        order = ClinicalOrderFactory()
        assert get_billing_by_reference('lab_order', str(order.id)) is None

    def test_order_with_explicit_reference_without_bill(self):
        ClinicalOrderFactory(billing_item_type='lab_order', billing_reference_id='LAB-42')
        assert get_billing_by_reference('lab_order', 'LAB-42') is None

    def test_unknown_reference(self):
        with pytest.raises(NotFoundError) as exc_info:
            get_billing_by_reference('lab_order', 'LAB-404')
        assert exc_info.value.code == 'BILL_NOT_FOUND'

    def test_existing_bill(self):
        order = ClinicalOrderFactory()
        bill_for(order, total='40.00', paid='40.00')

        bill = get_billing_by_reference('lab_order', str(order.id))

        assert bill.paid
        assert bill.balance == Decimal('0')


@pytest.mark.django_db
class TestRecordPayment:

    def test_partial_then_paid(self):
        order = ClinicalOrderFactory()
        bill = bill_for(order, total='50.00')

        after_first = record_payment({'bill_id': str(bill.id), 'amount_paid': '20'}, DOC)
        assert after_first.status == 'partial'
        assert after_first.paid_amount == Decimal('20.00')
        assert not after_first.paid

        after_second = record_payment(
            {'bill_id': str(bill.id), 'amount_paid': 30, 'payment_method': 'card', 'payment_date': '2026-03-01'},
            DOC,
        )
        assert after_second.status == 'paid'
        assert after_second.paid

        assert Payment.objects.filter(bill=bill).count() == 2
        card = Payment.objects.get(bill=bill, payment_method='card')
        assert card.payment_date.date().isoformat() == '2026-03-01'

    @pytest.mark.parametrize('amount', [None, 'abc', '0', '-5', 'NaN', '1e15', '10000000000.00'])
    def test_invalid_amount(self, amount):
        bill = bill_for(ClinicalOrderFactory())
        with pytest.raises(ValidationError) as exc_info:
            record_payment({'bill_id': str(bill.id), 'amount_paid': amount}, DOC)
        assert exc_info.value.code == 'INVALID_AMOUNT'
        assert not Payment.objects.exists()

    def test_invalid_payment_date(self):
        bill = bill_for(ClinicalOrderFactory())
        with pytest.raises(ValidationError) as exc_info:
            record_payment({'bill_id': str(bill.id), 'amount_paid': 5, 'payment_date': 'yesterday'}, DOC)
        assert exc_info.value.code == 'INVALID_PAYMENT_DATE'

    @pytest.mark.parametrize('bill_id', [None, 'nope', str(uuid.uuid4())])
    def test_unknown_bill(self, bill_id):
        with pytest.raises(NotFoundError) as exc_info:
            record_payment({'bill_id': bill_id, 'amount_paid': 5}, DOC)
        assert exc_info.value.code == 'BILL_NOT_FOUND'

    def test_cancelled_bill(self):
        bill = bill_for(ClinicalOrderFactory())
        bill.status = 'cancelled'
        bill.save()

        with pytest.raises(BlockError) as exc_info:
            record_payment({'bill_id': str(bill.id), 'amount_paid': 5}, DOC)
        assert exc_info.value.code == 'BILL_CANCELLED'

    def test_other_role_denied(self):
        bill = bill_for(ClinicalOrderFactory())
        with pytest.raises(PermissionDeniedError):
            record_payment({'bill_id': str(bill.id), 'amount_paid': 5}, VISITOR)

    @pytest.mark.parametrize('body', [[1], 'amount_paid=5'])
    def test_body_must_be_an_object(self, body):
        with pytest.raises(ValidationError) as exc_info:
            record_payment(body, DOC)
        assert exc_info.value.code == 'VALIDATION_ERROR'

    def test_running_total_cannot_overflow(self):
        bill = bill_for(ClinicalOrderFactory(), total='9999999999.99', paid='9999999999.00')

        with pytest.raises(ValidationError) as exc_info:
            record_payment({'bill_id': str(bill.id), 'amount_paid': '5'}, DOC)

        assert exc_info.value.code == 'INVALID_AMOUNT'
        bill.refresh_from_db()
        assert bill.paid_amount == Decimal('9999999999.00')
        assert not Payment.objects.exists()


@pytest.mark.django_db
class TestGenerateBill:

    def test_creates_empty_unpaid_bill(self):
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)

        assert bill.patient_id == 'pat-1'
        assert bill.status == 'unpaid'
        assert bill.total_amount == Decimal('0')
        assert not bill.items.exists()

    def test_patient_required(self):
        with pytest.raises(ValidationError) as exc_info:
            generate_bill({}, DOC)
        assert exc_info.value.code == 'PATIENT_REQUIRED'

    def test_body_must_be_an_object(self):
        with pytest.raises(ValidationError) as exc_info:
            generate_bill(['pat-1'], DOC)
        assert exc_info.value.code == 'VALIDATION_ERROR'

    def test_other_role_denied(self):
        with pytest.raises(PermissionDeniedError):
            generate_bill({'patient_id': 'pat-1'}, VISITOR)


@pytest.mark.django_db
class TestAddBillItems:

    def item(self, order, amount='40.00'):
        return {'item_type': order.kind, 'reference_id': str(order.id), 'amount': amount}

    def test_total_is_sum_of_items(self):
        first = ClinicalOrderFactory()
        second = ClinicalOrderFactory(kind='prescription')
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)

        add_bill_items(bill.id, {'items': [self.item(first, '40.00')]}, DOC)
        updated = add_bill_items(bill.id, {'items': [self.item(second, '12.50')]}, DOC)

        assert updated.total_amount == Decimal('52.50')
        assert updated.status == 'unpaid'
        assert BillItem.objects.filter(bill=bill).count() == 2

    def test_new_item_reopens_paid_bill(self):
        order = ClinicalOrderFactory()
        bill = bill_for(order, total='20.00', paid='20.00')

        updated = add_bill_items(bill.id, {'items': [self.item(ClinicalOrderFactory(), '5.00')]}, DOC)

        assert updated.total_amount == Decimal('25.00')
        assert updated.status == 'partial'

    def test_item_makes_order_billable(self):
        order = ClinicalOrderFactory()
        bill = generate_bill({'patient_id': order.patient_id}, DOC)
        assert get_billing_by_reference(order.kind, str(order.id)) is None

        add_bill_items(bill.id, {'items': [self.item(order)]}, DOC)

        found = get_billing_by_reference(order.kind, str(order.id))
        assert found.bill_id == str(bill.id)
        assert found.total_amount == Decimal('40.00')

    def test_zero_amount_item_allowed(self):
        order = ClinicalOrderFactory()
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        updated = add_bill_items(bill.id, {'items': [self.item(order, '0')]}, DOC)
        assert updated.total_amount == Decimal('0')

    @pytest.mark.parametrize('items, code', [
        ([], 'EMPTY_ITEMS'),
        (None, 'EMPTY_ITEMS'),
        (['cbc'], 'INVALID_BILL_ITEM'),
        ([{'item_type': 'diet', 'reference_id': 'x', 'amount': 1}], 'INVALID_KIND'),
        ([{'item_type': 'lab_order', 'reference_id': '', 'amount': 1}], 'INVALID_BILL_ITEM'),
    ])
    def test_validation(self, items, code):
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        with pytest.raises(ValidationError) as exc_info:
            add_bill_items(bill.id, {'items': items}, DOC)
        assert exc_info.value.code == code
        assert not BillItem.objects.exists()

    @pytest.mark.parametrize('amount', ['-1', 'abc', '1e15'])
    def test_invalid_amount(self, amount):
        order = ClinicalOrderFactory()
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        with pytest.raises(ValidationError) as exc_info:
            add_bill_items(bill.id, {'items': [self.item(order, amount)]}, DOC)
        assert exc_info.value.code == 'INVALID_AMOUNT'

    def test_bill_total_cannot_overflow(self):
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        add_bill_items(bill.id, {'items': [self.item(ClinicalOrderFactory(), '9999999999.00')]}, DOC)

        with pytest.raises(ValidationError) as exc_info:
            add_bill_items(bill.id, {'items': [self.item(ClinicalOrderFactory(), '5.00')]}, DOC)

        assert exc_info.value.code == 'INVALID_AMOUNT'
        assert BillItem.objects.filter(bill=bill).count() == 1

    def test_unknown_order_reference(self):
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        with pytest.raises(NotFoundError) as exc_info:
            add_bill_items(bill.id, {'items': [{'item_type': 'lab_order', 'reference_id': 'LAB-404', 'amount': 5}]}, DOC)
        assert exc_info.value.code == 'ORDER_NOT_FOUND'

    def test_unknown_bill(self):
        order = ClinicalOrderFactory()
        with pytest.raises(NotFoundError) as exc_info:
            add_bill_items(uuid.uuid4(), {'items': [self.item(order)]}, DOC)
        assert exc_info.value.code == 'BILL_NOT_FOUND'

    def test_cancelled_bill(self):
        order = ClinicalOrderFactory()
        bill = bill_for(order)
        bill.status = 'cancelled'
        bill.save()

        with pytest.raises(BlockError) as exc_info:
            add_bill_items(bill.id, {'items': [self.item(order)]}, DOC)
        assert exc_info.value.code == 'BILL_CANCELLED'

    def test_other_role_denied(self):
        order = ClinicalOrderFactory()
        bill = generate_bill({'patient_id': 'pat-1'}, DOC)
        with pytest.raises(PermissionDeniedError):
            add_bill_items(bill.id, {'items': [self.item(order)]}, VISITOR)
