# -*- coding: utf-8 -*-
APP_NAME = "Calculadora de Fertilidad"
APP_VERSION = "1.4.0"
SCHEMA_VERSION = 1
