"""
Writeback package: deferred document updates, billing log, metering.
"""
