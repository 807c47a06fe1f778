"""Módulo de queries para consultas de lecturas.

Traduce parámetros externos (strings) a llamadas tipadas al storage.
"""

from .readings import ReadingQueryService, parse_time_param

__all__ = [
    "ReadingQueryService",
    "parse_time_param",
]
