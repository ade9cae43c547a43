"""
Módulo de registros fiscales

Persistencia de las tablas de origen de los libros de IVA (facturas
recibidas, facturas emitidas, gastos internos) y de las tablas de
propiedad de inmuebles, junto con el repositorio que las lee.
"""
