# commerce.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du service commandes.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Redis, Kafka, SMTP)
- Fixe les constantes métier (délai d'expédition vendeur, TTL des sessions et du cache panier)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

# Supabase: URL et clés (anon pour l'auth, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé secrète et secret de signature webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
# Réservation d'un événement webhook: reprise possible au-delà de ce délai sans complétion
WEBHOOK_CLAIM_TIMEOUT_SECONDS = _int_env("WEBHOOK_CLAIM_TIMEOUT_SECONDS", 300)

# Redirections du checkout (frontend)
FRONTEND_URL = _clean_env(os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/")
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/order-success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/order-cancelled")
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "usd").lower()
# Stripe impose une expiration entre 30 minutes et 24 heures
CHECKOUT_SESSION_TTL_MINUTES = max(30, min(_int_env("CHECKOUT_SESSION_TTL_MINUTES", 60), 24 * 60))

# Paiements en attente: au-delà de ce délai, le balayage les marque en échec
PAYMENT_PENDING_TTL_MINUTES = _int_env("PAYMENT_PENDING_TTL_MINUTES", CHECKOUT_SESSION_TTL_MINUTES + 30)
PAYMENT_SWEEP_INTERVAL_SECONDS = _int_env("PAYMENT_SWEEP_INTERVAL_SECONDS", 300)
PAYMENT_SWEEP_ENABLED = os.getenv("PAYMENT_SWEEP_ENABLED", "1").lower() in ("1", "true", "yes")

# Délai d'expédition annoncé pour les commandes COD
VENDOR_SHIPPING_DAYS = _int_env("VENDOR_SHIPPING_DAYS", 5)

# Redis: cache panier (clé cart:<user_id>)
REDIS_URL = _clean_env(os.getenv("REDIS_URL") or "redis://127.0.0.1:6379/0")
CART_CACHE_TTL_SECONDS = _int_env("CART_CACHE_TTL_SECONDS", 2 * 60 * 60)

# Kafka: événements métier (order.*, cart.*, invoice.generate)
KAFKA_BOOTSTRAP_SERVERS = _clean_env(os.getenv("KAFKA_BOOTSTRAP_SERVERS") or "")
KAFKA_CLIENT_ID = _clean_env(os.getenv("KAFKA_CLIENT_ID") or "order-service")

# SMTP: e-mail de confirmation de commande
SMTP_HOST = _clean_env(os.getenv("SMTP_HOST") or "")
SMTP_PORT = _int_env("SMTP_PORT", 587)
SMTP_USER = _clean_env(os.getenv("SMTP_USER") or "")
SMTP_PASS = _clean_env(os.getenv("SMTP_PASS") or "")
EMAIL_FROM = _clean_env(os.getenv("EMAIL_FROM") or "no-reply@example.com")

# Effets secondaires (e-mail, Kafka) hors du chemin de la requête
NOTIFICATIONS_ASYNC = os.getenv("NOTIFICATIONS_ASYNC", "1").lower() in ("1", "true", "yes")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
