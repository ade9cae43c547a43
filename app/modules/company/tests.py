"""
Tests para los datos de empresa y validadores fiscales españoles

Cubre:
- Validación de NIF, NIE y CIF
- Lectura de datos de empresa desde configuración
- Validación de datos obligatorios para la exportación AEAT
"""

import pytest

from app.common.validators import (
    calculate_nif_letter, clean_tax_id, validate_cif, validate_nie,
    validate_nif, validate_spanish_tax_id
)
from app.core.config import settings
from app.modules.company.schemas import CompanyData
from app.modules.company.service import get_company_data, validate_company_data


# ===== FIXTURES =====

@pytest.fixture
def valid_company():
    """Empresa con datos completos"""
    return CompanyData(
        nif="B12345678",
        name="Fincas del Norte SL",
        address="Calle Mayor 1",
        postal_code="28013",
        city="Madrid",
        province="Madrid"
    )


# ===== TESTS DE VALIDADORES =====

class TestTaxIdValidators:
    """Tests para validación de documentos fiscales españoles"""

    def test_clean_tax_id(self):
        assert clean_tax_id(" b-1234.5678 ") == "B12345678"
        assert clean_tax_id(None) == ""

    def test_nif_letter(self):
        assert calculate_nif_letter("12345678") == "Z"
        assert calculate_nif_letter("ABC") is None

    def test_valid_nif(self):
        assert validate_nif("12345678Z")
        assert validate_nif("12345678z")

    def test_nif_with_wrong_letter(self):
        assert not validate_nif("12345678A")

    def test_valid_nie(self):
        assert validate_nie("X1234567L")
        assert not validate_nie("X1234567A")

    def test_cif_format(self):
        assert validate_cif("B12345678")
        assert not validate_cif("I12345678")
        assert not validate_cif("B1234567")

    def test_any_spanish_tax_id(self):
        for tax_id in ("12345678Z", "X1234567L", "B12345678"):
            assert validate_spanish_tax_id(tax_id)
        assert not validate_spanish_tax_id("900123456")


# ===== TESTS DE DATOS DE EMPRESA =====

class TestCompanyData:
    """Tests para datos de empresa desde configuración"""

    def test_company_data_from_settings(self):
        company = get_company_data()

        assert company.nif == settings.COMPANY_NIF
        assert company.name == settings.COMPANY_NAME
        assert company.country == settings.COMPANY_COUNTRY

    def test_nif_is_normalized(self):
        company = CompanyData(nif=" b12345678 ", name="  Empresa  ")
        assert company.nif == "B12345678"
        assert company.name == "Empresa"


class TestCompanyValidation:
    """Tests para validación de datos obligatorios AEAT"""

    def test_valid_company(self, valid_company):
        result = validate_company_data(valid_company)
        assert result.is_valid
        assert result.message == "Datos de empresa válidos"

    def test_missing_required_fields(self):
        result = validate_company_data(CompanyData(nif="", name=""))
        assert not result.is_valid
        assert "nif" in result.message
        assert "name" in result.message

    def test_invalid_nif_format(self, valid_company):
        company = valid_company.model_copy(update={"nif": "123"})
        result = validate_company_data(company)
        assert not result.is_valid
        assert result.message == "Formato de NIF inválido"

    def test_individual_nif_is_accepted(self, valid_company):
        company = valid_company.model_copy(update={"nif": "12345678Z"})
        assert validate_company_data(company).is_valid

    def test_defaults_to_configured_company(self):
        result = validate_company_data()
        assert result.is_valid
