"""
Core modules for Generation Guard.

This package contains admission control, tier classification,
cooldowns, abuse detection and the boost ledger.
"""
