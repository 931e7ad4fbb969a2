"""
Модуль источников времени.
"""

from .clock_source import ClockSource, SystemClock, FixedClock

__all__ = [
    'ClockSource',
    'SystemClock',
    'FixedClock'
]
