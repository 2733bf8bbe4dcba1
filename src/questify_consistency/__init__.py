"""
Questify Consistency Layer

Transactional outbox, idempotent consumers and the user export saga
shared by the Questify services.
"""

__version__ = "1.0.0"
