from __future__ import annotations

import uuid
from datetime import datetime

from assetdb.utils.identifiers import format_rma_number, generate_user_id, generate_uuid7, next_sequence_from


def test_rma_number_format():
    assert format_rma_number(datetime(2025, 1, 14), 3) == "RMA-20250114-0003"


def test_next_sequence_from_last_number():
    assert next_sequence_from(None) == 1
    assert next_sequence_from("RMA-20250114-0009") == 10
    assert next_sequence_from("RMA-20250114") == 1
    assert next_sequence_from("RMA-20250114-XYZ") == 1


def test_uuid7_is_versioned_and_ordered():
    first = generate_uuid7()
    second = generate_uuid7()
    assert uuid.UUID(first).version == 7
    assert first[:8] <= second[:8]


def test_user_id_shape():
    user_id = generate_user_id()
    assert user_id.startswith("USR-")
    assert len(user_id) == 12
    assert generate_user_id(prefix="") != user_id
