"""inventory/ -- SQLAlchemy persistence for inventory documents and the audit trail.

Layer rule: inventory/ imports from core/ (models, errors, config) and
third-party libraries. It does NOT import from api/.
"""
