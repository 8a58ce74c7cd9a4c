"""
Slot / occupant identity handling.

An ``Asset`` row is a slot: a fixed place at a site. Its identity columns
describe whichever physical unit currently sits there. Installing a
replacement therefore does not move rows around; it exchanges the occupant
identities of the slot and the spare row, after which the spare row stands
for the faulty unit travelling through repair.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from assetdb.apps.assets import models as asset_models

from . import models

IDENTITY_FIELDS = ("serial_number", "mac", "make", "model", "ip_address")


@dataclass(frozen=True)
class OccupantIdentity:
    serial_number: Optional[str] = None
    mac: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def of(cls, asset: asset_models.Asset) -> "OccupantIdentity":
        return cls(**{name: getattr(asset, name) for name in IDENTITY_FIELDS})

    def apply_to(self, asset: asset_models.Asset) -> None:
        for name in IDENTITY_FIELDS:
            setattr(asset, name, getattr(self, name))

    def as_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in IDENTITY_FIELDS}


# Named roles over the same Asset row.
Slot = asset_models.Asset
PhysicalUnit = asset_models.Asset


@dataclass(frozen=True)
class SwapResult:
    old_identity: OccupantIdentity
    new_identity: OccupantIdentity


def swap_identities(
    slot: Slot,
    unit: PhysicalUnit,
    *,
    new_ip_address: Optional[str] = None,
) -> SwapResult:
    """
    Put ``unit``'s hardware identity into ``slot`` and the slot's old identity into ``unit``.

    Serial, MAC, make and model are exchanged. The IP address belongs to the
    network position: the slot keeps its IP (or takes ``new_ip_address``) and
    the faulty unit carries the old IP for tracking. Status, reservation and
    ledger bookkeeping are the caller's job.
    """
    old_identity = OccupantIdentity.of(slot)
    incoming = OccupantIdentity.of(unit)

    new_identity = replace(incoming, ip_address=new_ip_address or old_identity.ip_address)
    new_identity.apply_to(slot)
    old_identity.apply_to(unit)
    return SwapResult(old_identity=old_identity, new_identity=new_identity)


def swap_completed(case: models.RMARequest) -> bool:
    return case.replacement_track_status == models.ReplacementTrackStatusEnum.INSTALLED


def get_faulty_asset_id(case: models.RMARequest) -> int:
    """
    The asset row that currently represents the physically faulty unit.

    After the replacement is installed the identities have been exchanged,
    so the faulty unit lives on the reserved (former spare) row.
    """
    if swap_completed(case) and case.reserved_asset_id:
        return case.reserved_asset_id
    return case.original_asset_id
