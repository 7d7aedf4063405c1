# -*- coding: utf-8 -*-
"""Fertility probability calculation engine (evaluators, engine, report, simulator)."""

from .version import APP_NAME, APP_VERSION, SCHEMA_VERSION

__all__ = ["APP_NAME", "APP_VERSION", "SCHEMA_VERSION"]
