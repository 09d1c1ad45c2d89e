import json
from unittest.mock import patch

from payconfirm.observability.logging import log, mask_phone
from payconfirm.settings import settings


def _last_line(capsys):
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


def test_mask_phone():
    assert mask_phone("254712345678") == "*********678"
    assert mask_phone("0712") == "****"
    assert mask_phone(None) == ""


def test_log_masks_phone_and_reduces_raw_payloads(capsys):
    with patch.object(settings, "ENABLE_PII_REDACTION", True):
        log(
            "stk_push_rejected",
            phone="254712345678",
            raw={"ResponseCode": "1", "MSISDN": "254712345678"},
            responseText="<html>oops</html>",
            orderRef="SAL000042",
        )

    rec = _last_line(capsys)
    assert rec["event"] == "stk_push_rejected"
    assert rec["phone"] == "*********678"
    assert rec["raw"] == {"keys": ["MSISDN", "ResponseCode"]}
    assert rec["responseText"] == "[REDACTED:17chars]"
    assert rec["orderRef"] == "SAL000042"
    assert isinstance(rec["ts"], int)


def test_log_redacts_one_level_into_nested_dicts(capsys):
    with patch.object(settings, "ENABLE_PII_REDACTION", True):
        log("confirmation_snapshot", view={"payerPhone": "254712345678", "state": "processing"})

    rec = _last_line(capsys)
    assert rec["view"] == {"payerPhone": "*********678", "state": "processing"}


def test_log_passthrough_when_redaction_disabled(capsys):
    with patch.object(settings, "ENABLE_PII_REDACTION", False):
        log("confirmation_opened", phone="254712345678")

    assert _last_line(capsys)["phone"] == "254712345678"
