"""
Scheduled batch jobs for rentals and monthly settlement

This module provides:
- A runner that isolates each job and reports a typed result
- Nightly and monthly job bundles
- Cron registration through APScheduler
- The ``toolshare-jobs`` command line entry point
"""
