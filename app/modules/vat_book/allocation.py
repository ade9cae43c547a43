"""
Reparto de bases y cuotas de IVA entre propietarios

Cada entrada se reparte según la tabla de propiedad de su inmueble (o la
tabla por defecto si no tiene inmueble). El reparto de cada importe usa
el método del resto mayor, por lo que la suma de lo asignado a los
propietarios coincide al céntimo con el importe repartido.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.modules.vat_book.calculator import round_currency
from app.modules.vat_book.errors import IncompleteOwnershipError
from app.modules.vat_book.schemas import (
    FiscalEntry, OwnerAllocation, OwnerAllocationResult, OwnerAllocationTotals,
    OwnershipShare, ZERO
)

logger = logging.getLogger(__name__)

DEFAULT_OWNERSHIP_KEY = "default"

# Medidas repartidas: (libro, atributo de FiscalEntry) -> campo de OwnerAllocation
MEASURES = {
    ("supported", "tax_base"): "base_supported",
    ("supported", "vat_amount"): "vat_supported",
    ("charged", "tax_base"): "base_charged",
    ("charged", "vat_amount"): "vat_charged",
}


def distribute_largest_remainder(
    amount: Decimal,
    weights: Sequence[Tuple[int, Decimal]]
) -> Dict[int, Decimal]:
    """
    Repartir un importe entre propietarios proporcionalmente a sus pesos.

    Los propietarios se ordenan por owner_id, cada uno recibe el suelo en
    céntimos de su parte exacta y los céntimos sobrantes se asignan uno a
    uno por mayor resto fraccionario (empates por owner_id).

    Args:
        amount: Importe con 2 decimales (puede ser negativo)
        weights: Pares (owner_id, peso); no es necesario que sumen 100

    Returns:
        Dict owner_id -> importe asignado; la suma es exactamente `amount`

    Raises:
        ValueError: si los pesos suman 0
    """
    merged: Dict[int, Decimal] = defaultdict(Decimal)
    for owner_id, weight in weights:
        merged[owner_id] += Decimal(weight)

    total_weight = sum(merged.values(), Decimal(0))
    if total_weight <= 0:
        raise ValueError("Los pesos del reparto suman 0")

    amount = round_currency(amount)
    sign = -1 if amount < 0 else 1
    cents = int(abs(amount) * 100)

    floors: Dict[int, int] = {}
    remainders: List[Tuple[Decimal, int]] = []
    for owner_id in sorted(merged):
        exact = Decimal(cents) * merged[owner_id] / total_weight
        floor = int(exact)
        floors[owner_id] = floor
        remainders.append((exact - floor, owner_id))

    residual = cents - sum(floors.values())
    remainders.sort(key=lambda item: (-item[0], item[1]))
    for _, owner_id in remainders[:residual]:
        floors[owner_id] += 1

    return {
        owner_id: Decimal(sign * floor_cents) / 100
        for owner_id, floor_cents in floors.items()
    }


def _entry_shares(
    entry: FiscalEntry,
    default_shares: Optional[Sequence[OwnershipShare]]
) -> List[OwnershipShare]:
    if entry.estate_id is None:
        shares = list(default_shares or [])
        missing_key = DEFAULT_OWNERSHIP_KEY
    else:
        shares = list(entry.owner_shares or [])
        missing_key = entry.estate_id

    shares = [share for share in shares if share.percentage > 0]
    if not shares:
        raise IncompleteOwnershipError(missing_key, entry_id=entry.id)
    return shares


def allocate_to_owners(
    supported_entries: Iterable[FiscalEntry],
    charged_entries: Iterable[FiscalEntry],
    default_shares: Optional[Sequence[OwnershipShare]] = None
) -> OwnerAllocationResult:
    """
    Repartir los libros soportado y repercutido entre propietarios.

    Args:
        supported_entries: Entradas del libro de IVA soportado (ya prorrateadas)
        charged_entries: Entradas del libro de IVA repercutido (ya prorrateadas)
        default_shares: Tabla de propiedad para entradas sin inmueble

    Raises:
        IncompleteOwnershipError: una entrada no tiene tabla de reparto con
            porcentajes, o hace falta la tabla por defecto y está vacía
    """
    books = {
        "supported": list(supported_entries),
        "charged": list(charged_entries),
    }

    amounts: Dict[int, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    names: Dict[int, str] = {}
    entry_counts: Dict[int, int] = defaultdict(int)
    weighted_base: Dict[int, Decimal] = defaultdict(Decimal)
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    total_abs_base = ZERO

    for book, entries in books.items():
        for entry in entries:
            shares = _entry_shares(entry, default_shares)
            weights = [(share.owner_id, share.percentage) for share in shares]
            share_sum = sum((share.percentage for share in shares), Decimal(0))

            for share in shares:
                if share.owner_name or share.owner_id not in names:
                    names[share.owner_id] = share.owner_name
            for owner_id in {share.owner_id for share in shares}:
                entry_counts[owner_id] += 1
                owner_weight = sum(
                    (share.percentage for share in shares if share.owner_id == owner_id),
                    Decimal(0)
                )
                weighted_base[owner_id] += abs(entry.tax_base) * owner_weight / share_sum
            total_abs_base += abs(entry.tax_base)

            for (measure_book, attribute), field in MEASURES.items():
                if measure_book != book:
                    continue
                value = getattr(entry, attribute)
                totals[field] += value
                for owner_id, allocated in distribute_largest_remainder(value, weights).items():
                    amounts[owner_id][field] += allocated

    allocations = []
    for owner_id in sorted(amounts):
        owner_amounts = amounts[owner_id]
        percentage = ZERO
        if total_abs_base:
            percentage = round_currency(weighted_base[owner_id] * 100 / total_abs_base)

        vat_supported = round_currency(owner_amounts["vat_supported"])
        vat_charged = round_currency(owner_amounts["vat_charged"])
        allocations.append(OwnerAllocation(
            owner_id=owner_id,
            owner_name=names.get(owner_id) or f"Propietario {owner_id}",
            ownership_percentage=percentage,
            base_supported=round_currency(owner_amounts["base_supported"]),
            base_charged=round_currency(owner_amounts["base_charged"]),
            vat_supported=vat_supported,
            vat_charged=vat_charged,
            net_position=vat_charged - vat_supported,
            entry_count=entry_counts[owner_id]
        ))

    vat_supported_total = round_currency(totals["vat_supported"])
    vat_charged_total = round_currency(totals["vat_charged"])
    overall_total = OwnerAllocationTotals(
        base_supported=round_currency(totals["base_supported"]),
        base_charged=round_currency(totals["base_charged"]),
        vat_supported=vat_supported_total,
        vat_charged=vat_charged_total,
        net_position=vat_charged_total - vat_supported_total
    )

    logger.debug(f"Reparto entre {len(allocations)} propietarios completado")

    return OwnerAllocationResult(allocations=allocations, overall_total=overall_total)
