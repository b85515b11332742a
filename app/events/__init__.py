"""Handlers d'événements Redis.

L'import de ce package enregistre (via ``@subscribe``) tous les handlers
définis dans ses sous-modules.
"""

import importlib
import pkgutil

for _module in pkgutil.iter_modules(__path__):
    importlib.import_module(f"{__name__}.{_module.name}")
