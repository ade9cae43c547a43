"""
Validadores específicos para España
"""
import re
from typing import Optional


NIF_CONTROL_LETTERS = "TRWAGMYFPDXBNJZSQVHLCKE"
NIE_PREFIXES = {"X": "0", "Y": "1", "Z": "2"}


def clean_tax_id(tax_id: Optional[str]) -> str:
    """Elimina espacios, puntos y guiones y pasa a mayúsculas."""
    if not tax_id:
        return ""
    return re.sub(r'[\s\.\-]', '', tax_id).upper()


def calculate_nif_letter(number: str) -> Optional[str]:
    """
    Calcula la letra de control de un NIF a partir de sus 8 dígitos.
    Retorna None si la entrada no es numérica.
    """
    if not number or not number.isdigit():
        return None
    return NIF_CONTROL_LETTERS[int(number) % 23]


def validate_nif(nif: str) -> bool:
    """
    Valida NIF de persona física.
    - 8 dígitos + letra de control
    - La letra debe coincidir con el resto de dividir entre 23
    Ejemplo: 12345678Z
    """
    cleaned = clean_tax_id(nif)

    if not re.match(r'^[0-9]{8}[A-Z]$', cleaned):
        return False

    return calculate_nif_letter(cleaned[:8]) == cleaned[8]


def validate_nie(nie: str) -> bool:
    """
    Valida NIE de extranjero.
    - X/Y/Z + 7 dígitos + letra de control
    Ejemplo: X1234567L
    """
    cleaned = clean_tax_id(nie)

    if not re.match(r'^[XYZ][0-9]{7}[A-Z]$', cleaned):
        return False

    number = NIE_PREFIXES[cleaned[0]] + cleaned[1:8]
    return calculate_nif_letter(number) == cleaned[8]


def validate_cif(cif: str) -> bool:
    """
    Valida el formato de un CIF de persona jurídica.
    - Letra de tipo de sociedad + 7 dígitos + dígito o letra de control
    Solo se valida el formato, no el dígito de control.
    Ejemplo: B12345678
    """
    cleaned = clean_tax_id(cif)
    return bool(re.match(r'^[ABCDEFGHJKLMNPQRSUVW][0-9]{7}[0-9A-J]$', cleaned))


def validate_spanish_tax_id(tax_id: str) -> bool:
    """Acepta cualquier documento fiscal español válido (NIF, NIE o CIF)."""
    return validate_nif(tax_id) or validate_nie(tax_id) or validate_cif(tax_id)
