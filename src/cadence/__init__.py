"""
Cadence - durable jobs, cron schedules and recurring series on one SQL store.

Subpackages:
- cadence.core: storage, errors, settings, logging
- cadence.execution: job store, workers, runner
- cadence.scheduling: cron schedules and the scheduler service
- cadence.recurrence: RRULE series expansion
- cadence.notifications: templated multi-channel delivery
"""

__version__ = "0.1.0"
