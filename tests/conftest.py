"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import pytest
from decimal import Decimal
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

import factory
from orders.models import Bill, BillItem, ClinicalOrder, StaffProfile


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()

    username = factory.Sequence(lambda n: f'user{n}')


class StaffProfileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = StaffProfile

    user = factory.SubFactory(UserFactory)
    role = 'staff'
    staff_id = factory.Sequence(lambda n: f'staff-{n}')


class ClinicalOrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ClinicalOrder

    kind = 'lab_order'
    status = 'pending'
    patient_id = factory.Sequence(lambda n: f'pat-{n}')
    assigned_staff_id = 'doc-7'
    items = factory.LazyFunction(lambda: [{'lab_test_id': 'cbc', 'name': 'Complete blood count'}])


class BillFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Bill

    patient_id = 'pat-1'
    total_amount = Decimal('50.00')
    paid_amount = Decimal('0.00')
    status = 'unpaid'


class BillItemFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = BillItem

    bill = factory.SubFactory(BillFactory)
    item_type = 'lab_order'
    reference_id = factory.Sequence(lambda n: f'ref-{n}')
    amount = Decimal('50.00')


def bill_for(order, total='50.00', paid='0.00'):
    """给订单开一张账单（一行 BillItem 指向该订单）。"""
    total, paid = Decimal(total), Decimal(paid)
    if paid >= total:
        status = 'paid'
    elif paid > 0:
        status = 'partial'
    else:
        status = 'unpaid'
    bill = BillFactory(patient_id=order.patient_id, total_amount=total, paid_amount=paid, status=status)
    BillItemFactory(bill=bill, item_type=order.kind, reference_id=str(order.id), amount=total)
    return bill


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def client_for():
    """client_for(user) → 已登录的 APIClient。"""
    def _make(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client
    return _make


@pytest.fixture
def admin_user(db):
    return StaffProfileFactory(role='admin', staff_id='adm-1').user


@pytest.fixture
def assigned_staff(db):
    """被指派到 ClinicalOrderFactory 默认订单的医生 / 技师。"""
    return StaffProfileFactory(role='staff', staff_id='doc-7').user


@pytest.fixture
def other_staff(db):
    return StaffProfileFactory(role='staff', staff_id='doc-9').user


@pytest.fixture
def outsider(db):
    """没有 StaffProfile 的登录用户 → role=other。"""
    return UserFactory()
