#!/usr/bin/env python3
"""Start the media import Celery worker with suppressed security warnings for containerized environments."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from media_import.workers.celery_app import celery_app

if __name__ == '__main__':
    # Validate/commit tasks run on the imports queue
    celery_app.worker_main(
        argv=[
            'worker',
            '--loglevel=info',
            '--queues=imports,celery',
            '--pool=solo',
            '--without-mingle',
            '--without-gossip',
        ] + sys.argv[1:]
    )
