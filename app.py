# -*- coding: utf-8 -*-
"""
Entry point for the Gradio demo.

    python app.py            # http://0.0.0.0:7860
    PORT=8080 python app.py
"""
from __future__ import annotations

import logging
import os

from fertility.ui import build_demo


DEFAULT_PORT = 7860


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    demo = build_demo()
    port = int(os.environ.get("PORT", str(DEFAULT_PORT)))
    demo.launch(server_name="0.0.0.0", server_port=port)


if __name__ == "__main__":
    main()
