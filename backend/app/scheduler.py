"""
Tâches de fond APScheduler.

- Sortie automatique : toutes les AUTO_CHECKOUT_INTERVAL_MIN minutes, ferme les sessions
  ouvertes depuis plus de AUTO_CHECKOUT_AFTER_MIN minutes
- Expiration des pass : toutes les PASS_EXPIRY_INTERVAL_MIN minutes

Chaque cycle ouvre sa propre session ; une erreur est journalisée et n'arrête pas le scheduler.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import settings
from app.schemas.check_log import SweepResult
from app.services import checklog_service, pass_service

logger = logging.getLogger(__name__)


class MaintenanceWorker:
    """Planificateur des tâches de maintenance, démarré et arrêté par le lifespan FastAPI."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler()

    def run_auto_checkout_once(self) -> Optional[SweepResult]:
        """Un cycle de sortie automatique. Retourne None si le cycle a échoué."""
        db = self.session_factory()
        try:
            return checklog_service.auto_checkout_sweep(
                db, max_duration_minutes=settings.AUTO_CHECKOUT_AFTER_MIN
            )
        except Exception as exc:
            logger.error("Erreur lors de la sortie automatique : %s", exc, exc_info=True)
            return None
        finally:
            db.close()

    def run_pass_expiry_once(self) -> Optional[int]:
        """Un cycle d'expiration des pass. Retourne le nombre de pass expirés, None si échec."""
        db = self.session_factory()
        try:
            return pass_service.expire_passes(db)
        except Exception as exc:
            logger.error("Erreur lors de l'expiration des pass : %s", exc, exc_info=True)
            return None
        finally:
            db.close()

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_auto_checkout_once,
            trigger="interval",
            minutes=settings.AUTO_CHECKOUT_INTERVAL_MIN,
            id="auto_checkout",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.run_pass_expiry_once,
            trigger="interval",
            minutes=settings.PASS_EXPIRY_INTERVAL_MIN,
            id="pass_expiry",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            "Scheduler démarré : sortie automatique toutes les %d min, expiration des pass toutes les %d min.",
            settings.AUTO_CHECKOUT_INTERVAL_MIN, settings.PASS_EXPIRY_INTERVAL_MIN,
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler arrêté.")
