"""
Tests d'intégration pour core-curanet-consent.

Ces tests utilisent de vrais services Docker (PostgreSQL, Redis) sur des ports exotiques
pour éviter les conflits avec les services de développement.

Usage:
    docker-compose -f docker-compose.test.yaml up -d
    pytest -m integration
    docker-compose -f docker-compose.test.yaml down -v
"""
