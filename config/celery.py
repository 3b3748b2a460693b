import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('markbook')

# CELERY_* keys in Django settings configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up markbook.tasks and legacy.tasks
app.autodiscover_tasks()
