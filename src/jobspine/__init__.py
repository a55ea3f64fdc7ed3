"""
jobspine - periodic compute-job scheduling primitives.

- jobspine.core: models, repositories, errors, logging, settings
- jobspine.core.scheduling: trigger backends, engine, reconciler, health
"""

__version__ = "0.1.0"
