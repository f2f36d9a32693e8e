from celery import Celery

# Worker and beat both load the notification tasks through this app
celery = Celery("attendance")
celery.config_from_object("app.config.celeryconfig")
