"""catalog/ -- Durable storage for the shared catalog document.

Layer rule: catalog/ imports only stdlib and core/. It knows nothing about
HTTP, authorization, or validation; callers hand it an already-validated dict.
"""
