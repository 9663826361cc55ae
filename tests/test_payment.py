"""Tests for UPI payment link generation."""

from urllib.parse import parse_qs, urlsplit

from storefront.payment import format_amount, generate_upi_link, order_reference


def _params(link):
    parts = urlsplit(link)
    assert parts.scheme == "upi"
    assert parts.netloc == "pay"
    return {k: v[0] for k, v in parse_qs(parts.query).items()}


def test_link_embeds_amount_reference_and_currency():
    link = generate_upi_link(500, 42)

    params = _params(link)
    assert params["am"] == "5.00"
    assert params["tn"] == "Order 42"
    assert params["cu"] == "INR"
    assert params["pa"] == "merchant@paytm"
    assert params["pn"] == "Usasya"


def test_link_is_uri_encoded():
    link = generate_upi_link(500, 42)

    assert link == "upi://pay?pa=merchant@paytm&pn=Usasya&tn=Order%2042&am=5.00&cu=INR"
    assert " " not in link


def test_same_inputs_give_identical_link():
    assert generate_upi_link(500, 42) == generate_upi_link(500, 42)


def test_different_order_gives_different_link():
    assert generate_upi_link(500, 42) != generate_upi_link(500, 43)


def test_configured_merchant_is_used():
    link = generate_upi_link(
        123456, 7, merchant_id="shop@okaxis", merchant_name="Corner Store", currency="INR"
    )

    params = _params(link)
    assert params["pa"] == "shop@okaxis"
    assert params["pn"] == "Corner Store"
    assert params["am"] == "1234.56"
    assert "pn=Corner%20Store" in link


def test_format_amount_uses_exact_decimal():
    assert format_amount(0) == "0.00"
    assert format_amount(1) == "0.01"
    assert format_amount(2000) == "20.00"
    assert format_amount(1999999) == "19999.99"


def test_order_reference():
    assert order_reference(42) == "Order 42"


def test_amount_is_converted_from_minor_units():
    assert "am=5.00" in generate_upi_link(500, 42)
    assert "am=500.00" in generate_upi_link(50000, 42)
