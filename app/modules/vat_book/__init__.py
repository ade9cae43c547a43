"""
Módulo de Libro de IVA

Genera los libros registro de IVA soportado (R) y repercutido (E), la
liquidación trimestral (Modelo 303) y el reparto de bases y cuotas entre
los propietarios de los inmuebles.

FLUJO:
- period: resolución de año / trimestre / mes a fechas
- aggregator: lectura concurrente de facturas recibidas, emitidas y gastos
- proportional: prorrateo por días de la facturación proporcional
- calculator: desglose por tipo de IVA y totales
- liquidation: resultado A_PAGAR / A_DEVOLVER / SIN_ACTIVIDAD
- allocation: reparto por propietario con el método del resto mayor

Todos los importes se manejan como Decimal con 2 decimales.
"""
