"""
Settings package.

- :mod:`Expenfyre.settings.lib` – Typed service settings, schema validation, and loading from
  environment variables or a JSON settings file.
"""
