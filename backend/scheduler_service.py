"""
Scheduler pour les tâches automatiques Facturo
- Rappels de paiement tous les jours à 9h
- Passage en retard (overdue) des factures échues, tous les jours à 0h05
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="Europe/Paris")

    def start(self):
        """Démarre le scheduler avec toutes les tâches"""
        # Rappels de paiement à 9h (heure de Paris)
        self.scheduler.add_job(
            self.send_payment_reminders,
            CronTrigger(hour=9, minute=0),
            id="payment_reminders",
            name="Rappels de paiement",
            replace_existing=True
        )

        # Factures échues -> overdue juste après minuit
        self.scheduler.add_job(
            self.refresh_overdue_invoices,
            CronTrigger(hour=0, minute=5),
            id="refresh_overdue",
            name="Factures en retard",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler démarré avec succès")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def send_payment_reminders(self):
        """Envoie les rappels de paiement dus"""
        # Import ici pour éviter les imports circulaires
        from email_service import email_service
        from services.reminders import process_factures

        try:
            stats = await process_factures()
            logger.info(f"Rappels de paiement: {stats}")
        except Exception as e:
            logger.error(f"Erreur rappels de paiement: {str(e)}")
            email_service.send_critical_alert(
                "SCHEDULER_ERROR",
                f"Échec du traitement des rappels de paiement: {str(e)}"
            )

    async def refresh_overdue_invoices(self):
        """Passe en overdue les factures dont l'échéance est dépassée"""
        from email_service import email_service
        from services.facture_state_machine import refresh_overdue

        try:
            count = await refresh_overdue()
            logger.info(f"Factures passées en retard: {count}")
        except Exception as e:
            logger.error(f"Erreur passage en retard: {str(e)}")
            email_service.send_critical_alert(
                "SCHEDULER_ERROR",
                f"Échec du passage en retard des factures: {str(e)}"
            )


# Instance globale
task_scheduler = TaskScheduler()
