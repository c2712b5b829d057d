import logging

from app.log import LOG_FORMAT, ContextFormatter


def _record(msg, **extra):
    rec = logging.LogRecord("signaldesk.ingest", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_extra_fields_are_printed():
    out = ContextFormatter(LOG_FORMAT).format(_record("Signal rejected", credential_id="key-1", reason="Throttled"))
    assert out.endswith("Signal rejected | credential_id=key-1 reason=Throttled")
    assert "| INFO | signaldesk.ingest |" in out


def test_plain_record_is_unchanged():
    out = ContextFormatter(LOG_FORMAT).format(_record("Signal desk started"))
    assert out.endswith("| signaldesk.ingest | Signal desk started")
