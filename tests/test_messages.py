import json

import pytest

from origin_alpaca.origin.messages import (
    build_command,
    encode_command,
    parse_message,
)


def test_build_command_merges_params_at_top_level():
    envelope = build_command(
        "GotoRaDec",
        "Mount",
        2000,
        source="AlpacaServer",
        params={"Ra": 1.5, "Dec": 0.25},
    )
    assert envelope == {
        "Command": "GotoRaDec",
        "Destination": "Mount",
        "SequenceID": 2000,
        "Source": "AlpacaServer",
        "Type": "Command",
        "Ra": 1.5,
        "Dec": 0.25,
    }


def test_build_command_rejects_envelope_collisions():
    with pytest.raises(ValueError):
        build_command("Park", "Mount", 2001, source="AlpacaServer", params={"Type": "Response"})


def test_encode_command_is_compact():
    text = encode_command(build_command("Park", "Mount", 2002, source="AlpacaServer"))
    assert " " not in text
    assert json.loads(text)["SequenceID"] == 2002


@pytest.mark.parametrize("raw", ["not json", "[1, 2, 3]", '"text"', "", b"\xff\xfe"])
def test_parse_message_discards_non_objects(raw):
    assert parse_message(raw) is None


def test_parse_message_reads_response_fields():
    message = parse_message(
        json.dumps(
            {
                "Command": "GetStatus",
                "Type": "Response",
                "Source": "Mount",
                "SequenceID": 2005,
                "ErrorCode": -42,
                "ErrorMessage": "Mount busy",
                "Enc0": 1.25,
            }
        )
    )
    assert message is not None
    assert message.is_response
    assert not message.is_notification
    assert message.failed
    assert message.sequence_id == 2005
    assert message.error_message == "Mount busy"
    assert message.get_float("Enc0") == pytest.approx(1.25)
    assert message.get_float("Missing", 3.0) == 3.0


def test_notifications_never_count_as_failed():
    message = parse_message('{"Command":"NewImageReady","Type":"Notification","Source":"ImageServer","ErrorCode":5}')
    assert message is not None
    assert message.is_notification
    assert not message.failed
    assert message.sequence_id is None


def test_typed_getters_tolerate_wrong_types():
    message = parse_message('{"Type":"Response","ISO":"high","IsManual":1,"FileLocation":null,"Exposure":"0.5"}')
    assert message is not None
    assert message.get_int("ISO", 200) == 200
    assert message.get_bool("IsManual") is False
    assert message.get_str("FileLocation") == ""
    assert message.has("Exposure")
