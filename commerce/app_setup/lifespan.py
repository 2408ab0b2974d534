"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit les services (repositories, Stripe, cache panier, dispatcher) dans app.state.services
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis)
- Lance le balayage périodique des paiements en attente expirés
Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
  - PAYMENT_SWEEP_ENABLED=0: pas de balayage en tâche de fond
"""
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from commerce import config
from commerce.dependencies import build_services


async def _init_rate_limit(app: FastAPI, logger: logging.Logger) -> None:
    """
    Configure le rate limiting et gère les fallbacks.
    En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    """
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", config.REDIS_URL)
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
        else:
            app.state.rate_limit_enabled = False
            logger.warning("Rate limiting disabled due to init error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    await _init_rate_limit(app, logger)

    sweep_task = None
    if config.PAYMENT_SWEEP_ENABLED:
        sweep_task = asyncio.create_task(app.state.services.sweeper.run_forever())
        logger.info("Pending payment sweep every %ss", config.PAYMENT_SWEEP_INTERVAL_SECONDS)

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    app.state.services.dispatcher.shutdown()
