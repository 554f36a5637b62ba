"""
Scheduled background tasks for the Student Clearance Tracker.

Periodic jobs that keep lock and requirement state current even when nobody
is using the application.
"""

import logging

from flask import current_app


def release_expired_locks_job():
    """Unlock accounts whose 30-minute lock has expired."""
    # Import here to avoid circular imports
    from clearance.extensions import db
    from clearance.utils.login_guard import release_expired_locks

    logger = logging.getLogger('scheduled_tasks')
    logger.info("Starting expired lock release job")

    try:
        released = release_expired_locks()
        db.session.commit()
        logger.info(f"Expired lock release job completed. Released {released} account(s)")
        return released
    except Exception as e:
        logger.error(f"Expired lock release job failed: {e}", exc_info=True)
        db.session.rollback()
        return 0


def prune_login_attempts_job(now=None):
    """Delete login-attempt trackers that have been idle past the retention period."""
    from clearance.extensions import db
    from clearance.utils.login_guard import prune_login_attempts

    logger = logging.getLogger('scheduled_tasks')
    logger.info("Starting login attempt pruning job")

    try:
        pruned = prune_login_attempts(
            now=now,
            retention_hours=current_app.config.get('LOGIN_ATTEMPT_RETENTION_HOURS', 24),
        )
        db.session.commit()
        logger.info(f"Login attempt pruning job completed. Deleted {pruned} tracker row(s)")
        return pruned
    except Exception as e:
        logger.error(f"Login attempt pruning job failed: {e}", exc_info=True)
        db.session.rollback()
        return 0


def mark_overdue_requirements_job(today=None):
    """Mark pending teacher requirements past their due date as overdue."""
    from clearance.extensions import db
    from clearance.utils.assignments import mark_overdue_requirements
    from clearance.utils.helpers import school_today

    logger = logging.getLogger('scheduled_tasks')
    logger.info("Starting overdue requirement job")

    try:
        today = today or school_today(current_app.config.get('SCHOOL_TIMEZONE', 'UTC'))
        marked = mark_overdue_requirements(today)
        db.session.commit()
        logger.info(f"Overdue requirement job completed. Marked {marked} requirement(s) overdue")
        return marked
    except Exception as e:
        logger.error(f"Overdue requirement job failed: {e}", exc_info=True)
        db.session.rollback()
        return 0


def init_scheduled_tasks(app):
    """
    Initialize and start scheduled tasks.

    Args:
        app: Flask application instance
    """
    from clearance.extensions import scheduler

    logger = logging.getLogger('scheduled_tasks')

    # Wrapper functions that run the jobs with Flask app context
    def run_release_locks():
        with app.app_context():
            release_expired_locks_job()

    def run_prune_attempts():
        with app.app_context():
            prune_login_attempts_job()

    def run_mark_overdue():
        with app.app_context():
            mark_overdue_requirements_job()

    if not scheduler.running:
        scheduler.add_job(
            func=run_release_locks,
            trigger='interval',
            hours=1,
            id='release_expired_locks',
            name='Release expired account locks',
            replace_existing=True,
            max_instances=1  # Prevent overlapping executions
        )
        scheduler.add_job(
            func=run_prune_attempts,
            trigger='interval',
            hours=1,
            id='prune_login_attempts',
            name='Prune idle login attempt trackers',
            replace_existing=True,
            max_instances=1
        )
        scheduler.add_job(
            func=run_mark_overdue,
            trigger='interval',
            hours=1,
            id='mark_overdue_requirements',
            name='Mark overdue teacher requirements',
            replace_existing=True,
            max_instances=1
        )

        scheduler.start()
        logger.info("Scheduled tasks initialized. Lock release, attempt pruning and overdue checks run every hour.")
    else:
        logger.info("Scheduler already running")
