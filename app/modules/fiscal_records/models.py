"""
Modelos SQLAlchemy de los registros fiscales

Tablas de origen de los libros de IVA:
- Facturas recibidas de proveedores (InvoiceReceived)
- Facturas emitidas a clientes (InvoiceIssued)
- Gastos internos de la empresa (InternalExpense)

Y las tablas de propiedad usadas para el reparto:
- Propietarios (Owner), inmuebles (Estate) y porcentajes (EstateOwner)
"""

from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, Date, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from app.common.mixins import TimestampMixin


# ===== PROPIEDAD =====

class Owner(Base, TimestampMixin):
    """Propietario de inmuebles"""
    __tablename__ = "owners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    lastname = Column(String(150), nullable=True)
    nif = Column(String(20), nullable=True, index=True)
    email = Column(String(150), nullable=True)

    # Porcentaje en la tabla de reparto por defecto (gastos sin inmueble)
    default_share = Column(Numeric(5, 2), nullable=True)

    estates = relationship("EstateOwner", back_populates="owner")


class Estate(Base, TimestampMixin):
    """Inmueble gestionado"""
    __tablename__ = "estates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(255), nullable=False)
    cadastral_reference = Column(String(30), nullable=True, unique=True)
    postal_code = Column(String(10), nullable=True)

    owners = relationship("EstateOwner", back_populates="estate")


class EstateOwner(Base, TimestampMixin):
    """Porcentaje de propiedad de un propietario sobre un inmueble"""
    __tablename__ = "estate_owners"
    __table_args__ = (UniqueConstraint("estate_id", "owner_id", name="uq_estate_owner"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    estate_id = Column(Integer, ForeignKey("estates.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    ownership_percentage = Column(Numeric(5, 2), nullable=False)

    estate = relationship("Estate", back_populates="owners")
    owner = relationship("Owner", back_populates="estates")


# ===== CONTRAPARTES =====

class Supplier(Base, TimestampMixin):
    """Proveedor"""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    company_name = Column(String(150), nullable=True)
    tax_id = Column(String(20), nullable=True, index=True)


class Client(Base, TimestampMixin):
    """Cliente (inquilino)"""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    company_name = Column(String(150), nullable=True)
    identification = Column(String(20), nullable=True, index=True)


# ===== REGISTROS FISCALES =====

class InvoiceReceived(Base, TimestampMixin):
    """Factura recibida de proveedor (IVA soportado)"""
    __tablename__ = "invoices_received"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_number = Column(String(50), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("estates.id"), nullable=True, index=True)

    invoice_date = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=True)

    tax_base = Column(Numeric(12, 2), nullable=False, default=0)
    iva_percentage = Column(Numeric(5, 2), nullable=False, default=21)
    iva_amount = Column(Numeric(12, 2), nullable=True)
    irpf_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    irpf_amount = Column(Numeric(12, 2), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)

    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    collection_status = Column(String(20), nullable=False, default="pending")

    # Facturación proporcional
    is_proportional = Column(Boolean, nullable=False, default=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Abonos
    is_refund = Column(Boolean, nullable=False, default=False)
    original_invoice_id = Column(Integer, ForeignKey("invoices_received.id"), nullable=True)

    supplier = relationship("Supplier")


class InvoiceIssued(Base, TimestampMixin):
    """Factura emitida a cliente (IVA repercutido)"""
    __tablename__ = "invoices_issued"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_number = Column(String(50), nullable=False, unique=True)
    estate_id = Column(Integer, ForeignKey("estates.id"), nullable=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)

    invoice_date = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=True)

    # Porcentajes; las cuotas se calculan sobre la base
    tax_base = Column(Numeric(12, 2), nullable=False, default=0)
    iva = Column(Numeric(5, 2), nullable=False, default=21)
    irpf = Column(Numeric(5, 2), nullable=False, default=0)

    collection_status = Column(String(20), nullable=False, default="pending")

    is_proportional = Column(Boolean, nullable=False, default=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    is_refund = Column(Boolean, nullable=False, default=False)
    original_invoice_id = Column(Integer, ForeignKey("invoices_issued.id"), nullable=True)

    client = relationship("Client")


class InternalExpense(Base, TimestampMixin):
    """Gasto interno de la empresa (IVA soportado)"""
    __tablename__ = "internal_expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    expense_date = Column(Date, nullable=False, index=True)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    amount = Column(Numeric(12, 2), nullable=False, default=0)
    iva_percentage = Column(Numeric(5, 2), nullable=False, default=21)
    iva_amount = Column(Numeric(12, 2), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    is_deductible = Column(Boolean, nullable=False, default=True)

    supplier_name = Column(String(150), nullable=True)
    supplier_nif = Column(String(20), nullable=True)
    receipt_number = Column(String(50), nullable=True)

    status = Column(String(20), nullable=False, default="pending")
    property_id = Column(Integer, ForeignKey("estates.id"), nullable=True, index=True)
