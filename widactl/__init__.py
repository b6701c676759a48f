"""widactl - monitoring console for the Wida job platform"""

__version__ = "1.0.0"
