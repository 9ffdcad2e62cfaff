"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule. All times are UTC.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Pending competitions start at midnight UTC
    'start-competitions': {
        'task': 'tasks.start_pending_competitions',
        'schedule': crontab(hour=0, minute=0),
    },
    # Competitions whose end date has passed are finalized within the hour
    'finalize-competitions': {
        'task': 'tasks.finalize_expired_competitions',
        'schedule': crontab(minute=5),
    },
    'rebalance-leaderboards': {
        'task': 'tasks.rebalance_leaderboards',
        'schedule': crontab(minute='*/10'),
    },
    # Push queue drain
    'process-notifications': {
        'task': 'tasks.process_notification_queue',
        'schedule': crontab(minute='*/2'),
    },
    'ending-soon-notifications': {
        'task': 'tasks.send_ending_soon_notifications',
        'schedule': crontab(hour=8, minute=0),
    },
    'daily-reminders': {
        'task': 'tasks.send_daily_reminders',
        'schedule': crontab(hour=9, minute=0),
    },
}
