"""
Response serializers: ORM 对象 / lifecycle dataclass → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
金额统一输出 float，前端直接 Number() 使用。
"""


def _iso(value):
    return value.isoformat() if value else None


def serialize_order(order, allowed_transitions=None):
    """Serialize a ClinicalOrder row; allowed_transitions only on detail responses."""
    billing_reference = None
    if order.billing_item_type and order.billing_reference_id:
        billing_reference = {
            'item_type': order.billing_item_type,
            'reference_id': order.billing_reference_id,
        }

    response = {
        'id': str(order.id),
        'kind': order.kind,
        'status': order.status,
        'patient_id': order.patient_id,
        'assigned_staff_id': order.assigned_staff_id,
        'items': list(order.items or []),
        'billing_reference': billing_reference,
        'version': order.version,
        'created_at': _iso(order.created_at),
        'updated_at': _iso(order.updated_at),
        'completed_at': _iso(order.completed_at),
        'cancelled_at': _iso(order.cancelled_at),
    }

    if allowed_transitions is not None:
        response['allowed_transitions'] = sorted(s.value for s in allowed_transitions)

    return response


def serialize_order_list(orders, total, page, limit):
    """Paginated list in the {data, pagination} shape the tables consume."""
    return {
        'data': [serialize_order(order) for order in orders],
        'pagination': {
            'total': total,
            'page': page,
            'limit': limit,
        },
    }


def serialize_transition(transition):
    return {
        'from_status': transition.from_status,
        'to_status': transition.to_status,
        'actor_role': transition.actor_role,
        'actor_staff_id': transition.actor_staff_id,
        'created_at': _iso(transition.created_at),
    }


def serialize_bill(bill):
    """
    Bill dataclass（或 None）→ by-reference 响应体。

    None 表示没有任何账单行引用该订单：exists=false, paid=false，金额全 0。
    """
    if bill is None:
        return {
            'exists': False,
            'paid': False,
            'bill_id': None,
            'total_amount': 0.0,
            'paid_amount': 0.0,
            'balance': 0.0,
            'status': 'unbilled',
        }
    return {
        'exists': bill.exists,
        'paid': bill.paid,
        'bill_id': bill.bill_id,
        'total_amount': float(bill.total_amount),
        'paid_amount': float(bill.paid_amount),
        'balance': float(bill.balance),
        'status': 'paid' if bill.paid else bill.status,
    }


def serialize_bill_record(bill):
    """Bill 模型 → 账单详情（generate / items / 详情接口）。id 与 by-reference 的 bill_id 相同。"""
    total = bill.total_amount
    paid = bill.paid_amount
    return {
        'id': str(bill.id),
        'patient_id': bill.patient_id,
        'status': bill.status,
        'total_amount': float(total),
        'paid_amount': float(paid),
        'balance': float(max(total - paid, 0)),
        'items': [
            {
                'item_type': item.item_type,
                'reference_id': item.reference_id,
                'amount': float(item.amount),
            }
            for item in bill.items.all()
        ],
        'created_at': _iso(bill.created_at),
    }
