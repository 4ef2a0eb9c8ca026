"""core/ -- Domain model, exception engine and reports for ETracker.

Layer rule: core/ imports only stdlib + third-party libraries.
It does NOT import from api/ or inventory/. Storage arrives through the
EntryStore, AuditSink and DocumentSource protocols.
"""
