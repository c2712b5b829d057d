from signaldesk.payload.extract import resolve


def test_nested_path():
    doc = {"data": {"ticker": "BTCUSDT", "close": 42000.5}}
    assert resolve(doc, "data.ticker") == "BTCUSDT"
    assert resolve(doc, "data.close") == 42000.5


def test_missing_segment_is_absent():
    doc = {"data": {"ticker": "BTCUSDT"}}
    assert resolve(doc, "data.price") is None
    assert resolve(doc, "meta.ticker") is None
    assert resolve(doc, "data.ticker.more") is None


def test_literal_dotted_key_wins():
    doc = {"data.ticker": "ETHUSDT", "data": {"ticker": "BTCUSDT"}}
    assert resolve(doc, "data.ticker") == "ETHUSDT"


def test_non_scalars_and_null_are_absent():
    doc = {"a": [1, 2], "b": {"c": 1}, "n": None, "flag": False}
    assert resolve(doc, "a") is None
    assert resolve(doc, "a.0") is None
    assert resolve(doc, "b") is None
    assert resolve(doc, "n") is None
    assert resolve(doc, "flag") is False


def test_empty_path_and_non_object_doc():
    assert resolve({"signal": "BUY"}, "") is None
    assert resolve({"signal": "BUY"}, None) is None
    assert resolve(["signal"], "signal") is None
    assert resolve("BUY", "signal") is None
