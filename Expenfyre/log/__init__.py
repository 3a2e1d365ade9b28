"""
Logging subsystem.

Modules:

- :mod:`Expenfyre.log.log` – Root logger setup and level control.
"""
