import pytest

from chatcore.models.conversation import ReadFlags, participants_key


def test_all_read_marks_every_participant():
    flags = ReadFlags.all_read(["u1", "u2"])

    assert flags.to_document() == {"u1": True, "u2": True}
    assert len(flags) == 2


def test_missing_participant_counts_as_unread():
    flags = ReadFlags({"u1": True})

    assert flags.is_read("u1") is True
    assert flags.is_read("u2") is False


def test_values_are_coerced_to_bool():
    flags = ReadFlags({"u1": 1, "u2": 0})

    assert flags["u1"] is True
    assert flags["u2"] is False


@pytest.mark.parametrize("user_id", ["", "a.b", "$where", None])
def test_rejects_keys_unsafe_for_documents(user_id):
    with pytest.raises(ValueError):
        ReadFlags({user_id: True})


def test_participants_key_ignores_order_and_duplicates():
    assert participants_key(["u2", "u1"]) == participants_key(["u1", "u2", "u1"]) == "u1|u2"
