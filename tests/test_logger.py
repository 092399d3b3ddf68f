import json
import logging

from app.core.logger import ColoredFormatter, JsonFormatter, PlainFormatter


def make_record(**extra):
    record = logging.LogRecord("rp-wager.jackpot", logging.INFO, __file__, 1, "Paid out", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_lifts_extra_fields():
    line = JsonFormatter().format(make_record(round_id="r1", player_id="alice", pot=400))
    entry = json.loads(line)

    assert entry["message"] == "Paid out"
    assert entry["logger"] == "rp-wager.jackpot"
    assert entry["round_id"] == "r1"
    assert entry["pot"] == 400


def test_plain_and_colored_append_pairs():
    record = make_record(player_id="bob", amount=50)

    assert PlainFormatter().format(record).endswith("Paid out player_id=bob amount=50")
    colored = ColoredFormatter().format(record)
    assert "[jackpot]" in colored
    assert "player_id=bob" in colored
