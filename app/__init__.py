"""core-africare-practice: gestion multi-tenant des cabinets et pharmacies."""

__version__ = "0.1.0"
