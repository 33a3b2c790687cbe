# Celery instance is defined in bizledger/celery.py
# It creates celery_app object and points it to Django settings
from .celery import celery_app

# 'from bizledger import *', only exports celery_app
__all__ = ("celery_app",)
