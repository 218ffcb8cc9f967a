from celery import Celery

# Create Celery app
celery = Celery("rooster")

# Load configuration from rooster.config.celeryconfig module
celery.config_from_object("rooster.config.celeryconfig")
