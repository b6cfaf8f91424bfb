import re

import pytest

from tutorlink.core.ulid_helper import ULID_PATTERN, generate_ulid, is_valid_ulid


def test_generated_ids_are_valid_and_unique() -> None:
    first, second = generate_ulid(), generate_ulid()

    assert first != second
    assert is_valid_ulid(first)
    assert re.match(ULID_PATTERN, first)


@pytest.mark.parametrize("value", [None, "", "bob", "01J000000000000000000000000"])
def test_rejects_malformed_ids(value) -> None:
    assert is_valid_ulid(value) is False
