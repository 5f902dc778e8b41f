#!/usr/bin/env python3
"""
calcpad Terminal Entry Point

Run with:
    python run_calculator.py
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from calcpad.repl import main


if __name__ == "__main__":
    main()
