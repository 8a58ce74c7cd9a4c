from __future__ import annotations

from assetdb.apps.assets import models as asset_models
from assetdb.apps.rma import identity, models


def _asset(code: str, serial: str, mac: str, ip: str, model: str) -> asset_models.Asset:
    return asset_models.Asset(
        asset_code=code,
        asset_type="Camera",
        serial_number=serial,
        mac=mac,
        ip_address=ip,
        make="Hikvision",
        model=model,
    )


def test_swap_exchanges_hardware_identity_and_keeps_slot_ip():
    slot = _asset("CAM-001", "SN-OLD", "AA:01", "10.0.0.10", "DS-2CD")
    unit = _asset("CAM-SP1", "SN-NEW", "BB:02", "192.168.50.5", "DS-2CD-V2")

    result = identity.swap_identities(slot, unit)

    assert slot.serial_number == "SN-NEW"
    assert slot.mac == "BB:02"
    assert slot.model == "DS-2CD-V2"
    assert slot.ip_address == "10.0.0.10"

    assert unit.serial_number == "SN-OLD"
    assert unit.mac == "AA:01"
    assert unit.model == "DS-2CD"
    assert unit.ip_address == "10.0.0.10"

    assert result.old_identity.serial_number == "SN-OLD"
    assert result.new_identity.serial_number == "SN-NEW"
    assert slot.asset_code == "CAM-001"
    assert unit.asset_code == "CAM-SP1"


def test_swap_with_new_ip_updates_slot_only():
    slot = _asset("CAM-001", "SN-OLD", "AA:01", "10.0.0.10", "DS-2CD")
    unit = _asset("CAM-SP1", "SN-NEW", "BB:02", None, "DS-2CD-V2")

    result = identity.swap_identities(slot, unit, new_ip_address="10.0.0.99")

    assert slot.ip_address == "10.0.0.99"
    assert unit.ip_address == "10.0.0.10"
    assert result.new_identity.ip_address == "10.0.0.99"


def test_faulty_asset_follows_the_swap():
    case = models.RMARequest(original_asset_id=1, reserved_asset_id=2)

    case.replacement_track_status = models.ReplacementTrackStatusEnum.RECEIVED
    assert identity.get_faulty_asset_id(case) == 1

    case.replacement_track_status = models.ReplacementTrackStatusEnum.INSTALLED
    assert identity.get_faulty_asset_id(case) == 2


def test_faulty_asset_without_spare_is_the_slot():
    case = models.RMARequest(
        original_asset_id=1,
        reserved_asset_id=None,
        replacement_track_status=models.ReplacementTrackStatusEnum.INSTALLED,
    )
    assert identity.get_faulty_asset_id(case) == 1
