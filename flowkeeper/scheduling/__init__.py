"""Scheduled triggers: cron parsing, schedule evaluation, the tick loop and leader election."""
