from payconfirm.api.normalize import normalize_open_payload


def test_canonical_payload_passes_through():
    out = normalize_open_payload({"transactionRef": "ws_1", "orderRef": "SAL000001", "amount": 10, "phone": "0712345678"})
    assert out == {"transactionRef": "ws_1", "orderRef": "SAL000001", "amount": 10, "phone": "0712345678"}


def test_storefront_aliases():
    out = normalize_open_payload({"checkoutRequestId": "ws_2", "sale_id": "7", "totalAmount": 99.5, "payerPhone": 254712345678})
    assert out["transactionRef"] == "ws_2"
    assert out["orderRef"] == "7"
    assert out["amount"] == 99.5
    assert out["phone"] == "254712345678"


def test_empty_payload():
    assert normalize_open_payload(None) == {"transactionRef": None, "orderRef": None, "amount": 0, "phone": ""}


def test_numeric_refs_become_strings():
    out = normalize_open_payload({"transactionRef": 123, "orderId": 42})
    assert out["transactionRef"] == "123"
    assert out["orderRef"] == "42"
