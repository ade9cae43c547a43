from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.common.validators import clean_tax_id


class CompanyData(BaseModel):
    """Datos fiscales de la empresa declarante"""
    nif: str = Field(default="", description="NIF/CIF de la empresa (ej: B12345678)")
    name: str = ""
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = "España"

    @field_validator('nif')
    @classmethod
    def normalize_nif(cls, v):
        return clean_tax_id(v)

    @field_validator('name')
    @classmethod
    def strip_name(cls, v):
        return (v or "").strip()

    class Config:
        from_attributes = True


class CompanyValidationResult(BaseModel):
    is_valid: bool
    message: str
