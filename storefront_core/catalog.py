"""Static package and add-on catalogs (read-only reference data)."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from storefront_core.models import AddOnProduct, Package

PACKAGES: Tuple[Package, ...] = (
    Package(
        id="test",
        name="TEST",
        price=1,
        plays="Test Package",
        placements="For Testing Only",
        description="$1 test package for payment testing",
    ),
    Package(
        id="legendary",
        name="LEGENDARY",
        price=479,
        plays="125,000 - 150,000 Streams",
        placements="375 - 400 Playlist Pitches",
        description="Legendary status",
    ),
    Package(
        id="unstoppable",
        name="UNSTOPPABLE",
        price=259,
        plays="45,000 - 50,000 Streams",
        placements="150 - 170 Playlist Pitches",
        description="Become unstoppable",
    ),
    Package(
        id="dominate",
        name="DOMINATE",
        price=149,
        plays="18,000 - 20,000 Streams",
        placements="60 - 70 Playlist Pitches",
        description="Dominate the charts",
    ),
    Package(
        id="momentum",
        name="MOMENTUM",
        price=79,
        plays="7,500 - 8,500 Streams",
        placements="25 - 30 Playlist Pitches",
        description="Build your momentum",
    ),
    Package(
        id="breakthrough",
        name="BREAKTHROUGH",
        price=39,
        plays="3,000 - 3,500 Streams",
        placements="10 - 12 Playlist Pitches",
        description="Perfect for getting started",
    ),
)

ADD_ONS: Tuple[AddOnProduct, ...] = (
    AddOnProduct(
        id="express-launch",
        name="EXPRESS: 8hr Rapid Launch",
        emoji="⚡️",
        original_price=28,
        sale_price=14,
        description="Campaign launched within 8 hours instead of the standard 24-48hr turnaround.",
    ),
    AddOnProduct(
        id="discover-weekly-push",
        name="Guaranteed 'Discover Weekly' Push",
        emoji="🔥",
        original_price=38,
        sale_price=19,
        description="Priority targeting of Discover Weekly / Release Radar.",
    ),
)

_PACKAGES_BY_ID: Dict[str, Package] = {p.id: p for p in PACKAGES}
_ADD_ONS_BY_ID: Dict[str, AddOnProduct] = {a.id: a for a in ADD_ONS}


def get_package(package_id: str) -> Optional[Package]:
    return _PACKAGES_BY_ID.get(package_id)


def get_add_on(add_on_id: str) -> Optional[AddOnProduct]:
    return _ADD_ONS_BY_ID.get(add_on_id)
