import pytest

import sales
from errors import InvalidTransitionError
from schemas import Quote, QuoteItem, QuoteStatus


def _quote(**overrides):
    data = dict(
        customer_id="cust-1",
        customer_name="Fleet Co",
        quote_number="QT-000123",
        quote_date="2024-06-01",
        items=[
            QuoteItem(item_id="p1", item_type="part", item_name="Controller", quantity=2, rate=5000,
                      discount=10, tax=18),
            QuoteItem(item_id="s1", item_type="service", item_name="Fitment", quantity=1, rate=1000),
        ],
        adjustment=-100,
    )
    data.update(overrides)
    return Quote(**data)


def test_quote_totals():
    quote = _quote()
    assert sales.quote_totals(quote.items, quote.adjustment) == {
        "sub_total": 10000,
        "total_tax": 1620,
        "total": 11520,
    }


def test_sales_order_number():
    assert sales.sales_order_number("QT-000123") == "SO-000123"
    assert sales.sales_order_number("000123") == "SO-000123"


def test_new_quotes_are_drafts_with_totals(db):
    quote_id = sales.add_quote(_quote())
    stored = sales.get_quote(quote_id)
    assert stored["status"] == "Draft"
    assert stored["total"] == 11520


def test_only_accepted_quotes_convert(db):
    quote_id = sales.add_quote(_quote())
    with pytest.raises(InvalidTransitionError):
        sales.convert_to_sales_order(quote_id)

    sales.update_quote_status(quote_id, QuoteStatus.accepted)
    order_id = sales.convert_to_sales_order(quote_id)

    order = sales.list_sales_orders()[0]
    assert order["id"] == order_id
    assert order["sales_order_number"] == "SO-000123"
    assert order["status"] == "Confirmed"
    assert order["quote_id"] == quote_id
    assert order["total"] == 11520
    assert sales.get_quote(quote_id)["status"] == "Converted"

    with pytest.raises(InvalidTransitionError):
        sales.convert_to_sales_order(quote_id)
    with pytest.raises(InvalidTransitionError):
        sales.update_quote_status(quote_id, QuoteStatus.sent)


def test_status_update_cannot_fake_conversion(db):
    quote_id = sales.add_quote(_quote())
    with pytest.raises(InvalidTransitionError):
        sales.update_quote_status(quote_id, QuoteStatus.converted)
