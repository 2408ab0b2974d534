"""
Module 'payments' (feature-first): point d'entrée public.
Réunit adaptateur Stripe, métadonnées de session, ledger des paiements,
réconciliation webhook et balayage des tentatives expirées.
"""

from .gateway import StripeGateway, CheckoutCompleted, to_line_items, to_minor_units
from .metadata import build_metadata, extract_metadata, extract_items
from .repository import PaymentRepository, ProcessedEventRepository
from .reconciliation import ReconciliationHandler
from .sweep import PendingPaymentSweeper

__all__ = [
    # stripe
    "StripeGateway",
    "CheckoutCompleted",
    "to_line_items",
    "to_minor_units",
    # metadata
    "build_metadata",
    "extract_metadata",
    "extract_items",
    # repository
    "PaymentRepository",
    "ProcessedEventRepository",
    # services
    "ReconciliationHandler",
    "PendingPaymentSweeper",
]
