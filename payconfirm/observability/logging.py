import json
import time
from payconfirm.settings import settings

# Phone numbers are masked; raw gateway payloads are reduced to their key set.
PHONE_KEYS = {"phone", "payerPhone", "msisdn"}
PAYLOAD_KEYS = {"raw", "payload", "responseText"}

def mask_phone(v) -> str:
    s = str(v or "")
    if len(s) <= 4:
        return "*" * len(s)
    return "*" * (len(s) - 3) + s[-3:]

def _redact_value(k, v):
    if k in PHONE_KEYS:
        return mask_phone(v)
    if k in PAYLOAD_KEYS:
        if isinstance(v, dict):
            return {"keys": sorted(str(x) for x in v.keys())}
        if isinstance(v, str) and len(v) > 0:
            return f"[REDACTED:{len(v)}chars]"
    return v

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        clean_fields = {}
        for k, v in fields.items():
            if isinstance(v, dict) and k not in PAYLOAD_KEYS:
                # One level deep is enough for view snapshots
                clean_fields[k] = {sk: _redact_value(sk, sv) for sk, sv in v.items()}
            else:
                clean_fields[k] = _redact_value(k, v)
        payload.update(clean_fields)
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
