from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Jurisdiction:
    id: int
    name: str
    # Department name appended to geocoder queries; None for national agencies.
    region_hint: str | None


JURISDICTIONS: dict[int, Jurisdiction] = {
    j.id: j
    for j in (
        Jurisdiction(6, "Montevideo", "Montevideo"),
        Jurisdiction(26, "Lavalleja", "Lavalleja"),
        Jurisdiction(40, "Canelones", "Canelones"),
        Jurisdiction(43, "Paysandú", "Paysandú"),
        Jurisdiction(45, "Maldonado", "Maldonado"),
        Jurisdiction(48, "Colonia", "Colonia"),
        Jurisdiction(49, "Soriano", "Soriano"),
        Jurisdiction(52, "Treinta y Tres", "Treinta y Tres"),
        Jurisdiction(55, "Río Negro", "Río Negro"),
        Jurisdiction(56, "Tacuarembó", "Tacuarembó"),
        Jurisdiction(65, "Policía Caminera", None),
        Jurisdiction(68, "Vialidad", None),
    )
}


def jurisdiction_name(jurisdiction_id: int) -> str:
    j = JURISDICTIONS.get(jurisdiction_id)
    return j.name if j else str(jurisdiction_id)


def region_hint(jurisdiction_id: int) -> str | None:
    j = JURISDICTIONS.get(jurisdiction_id)
    return j.region_hint if j else None
