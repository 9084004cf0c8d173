"""
Realtime event fan-out for dispatch.

Dispatch events (offers, assignment outcomes, arrivals) are pushed to
Channels groups per driver, per customer and per job.

Usage:
    from realtime.notifications import ChannelsNotifier
"""
