"""
Allow running p4reach as a module:

    python -m p4reach scan program.json [options]

Delegates to p4reach.cli:main().
"""
import sys
from .cli import main

sys.exit(main())
