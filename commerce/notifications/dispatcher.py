"""
Chemin secondaire (best-effort) des effets de bord: événements Kafka et e-mails.

Règle: une erreur ici ne remonte jamais à l'appelant. Elle est journalisée
(logger.exception) et comptée par canal; les compteurs sont exposés sur /health.
Les écritures du ledger (commande, paiement) sont déjà validées quand on arrive ici.
"""
import logging
import threading
from collections import Counter
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from commerce.notifications import topics

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, publisher=None, mailer=None, executor: Optional[Executor] = None):
        self.publisher = publisher
        self.mailer = mailer
        self._executor = executor
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    @classmethod
    def background(cls, publisher=None, mailer=None, max_workers: int = 4) -> "NotificationDispatcher":
        """Variante qui exécute les envois dans un pool de threads (hors requête HTTP)."""
        pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        return cls(publisher=publisher, mailer=mailer, executor=pool)

    def _count(self, key: str) -> None:
        with self._lock:
            self._counts[key] += 1

    def _run(self, channel: str, label: str, fn: Callable[[], None]) -> None:
        def _task():
            try:
                fn()
                self._count(f"{channel}.sent")
            except Exception:
                self._count(f"{channel}.failed")
                logger.exception("notifications.%s failed target=%s", channel, label)

        if self._executor is None:
            _task()
        else:
            self._executor.submit(_task)

    def emit(self, topic: str, payload: Dict[str, Any], key: Optional[str] = None) -> None:
        if self.publisher is None:
            self._count("events.skipped")
            logger.debug("notifications.emit skipped topic=%s (pas de publisher)", topic)
            return
        self._run("events", topic, lambda: self.publisher.publish(topic, payload, key=key))

    def send_email(self, to: Optional[str], subject: str, html: str) -> None:
        if self.mailer is None or not to:
            self._count("emails.skipped")
            return
        self._run("emails", to, lambda: self.mailer.send(to, subject, html))

    def request_invoice(self, order_id: str, user_id: str) -> None:
        """Déclenche la génération de facture (consommée par le service facturation)."""
        payload = {
            "orderId": order_id,
            "userId": user_id,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        }
        self.emit(topics.INVOICE_GENERATE, payload, key=order_id)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        flush = getattr(self.publisher, "flush", None)
        if callable(flush):
            try:
                flush()
            except Exception:
                logger.exception("notifications.shutdown flush failed")
