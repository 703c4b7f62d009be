"""Background shell-job scheduler.

Jobs are plain descriptors in a durable store. A single non-overlapping tick
reports progress for running jobs and admits queued ones up to a concurrency
ceiling; each admitted job is owned by one worker that spawns the command,
streams its output into a per-job log, escalates SIGTERM to SIGKILL on
timeout and posts exactly one completion notice. A recovery pass at startup
fails jobs that a previous process left in ``running``.
"""
