"""
Tests d'intégration pour core-africare-practice.

Ces tests utilisent de vrais services Docker (PostgreSQL, Redis) sur des ports exotiques
(5433, 6380) pour éviter les conflits avec les services de développement.

Usage:
    pytest -m integration tests/integration
"""
