from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from .models import Service, ServiceAddon


@dataclass(frozen=True)
class PriceQuote:
    base_price: float
    addon_price: float
    total_price: float
    base_duration: int
    addon_duration: int
    total_duration: int
    addons: list[dict] = field(default_factory=list)

    @property
    def addon_ids(self) -> list[str]:
        return [a["id"] for a in self.addons]

    def as_dict(self) -> dict:
        return {
            "base_price": self.base_price,
            "addon_price": self.addon_price,
            "total_price": self.total_price,
            "base_duration": self.base_duration,
            "addon_duration": self.addon_duration,
            "total_duration": self.total_duration,
            "addons": self.addons,
        }


def active_addons(s: Session, service_id: str, addon_ids: Sequence[str]) -> list[ServiceAddon]:
    """Selected addons that belong to the service and are active; unknown ids are ignored."""
    if not addon_ids:
        return []
    q = select(ServiceAddon).where(
        and_(
            ServiceAddon.id.in_(list(addon_ids)),
            ServiceAddon.service_id == service_id,
            ServiceAddon.is_active.is_(True),
        )
    ).order_by(ServiceAddon.name)
    return list(s.scalars(q))


def quote(s: Session, service: Service, addon_ids: Sequence[str] = ()) -> PriceQuote:
    addons = active_addons(s, service.id, addon_ids)
    addon_price = sum(a.price for a in addons)
    addon_duration = sum(a.duration for a in addons)
    return PriceQuote(
        base_price=service.price,
        addon_price=addon_price,
        total_price=service.price + addon_price,
        base_duration=service.duration,
        addon_duration=addon_duration,
        total_duration=service.duration + addon_duration,
        addons=[{"id": a.id, "name": a.name, "price": a.price, "duration": a.duration} for a in addons],
    )
