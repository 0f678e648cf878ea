# chatstream/__main__.py
from .app import main

raise SystemExit(main())
