"""
RepoVault — durable storage on top of a version-controlled repository.

Mirrors one local database file into the remote repository and keeps
uploaded binaries there, content-addressed. Built for processes whose
local disk may vanish at any restart.

The remote only knows whole-object reads and writes guarded by a
version token. Everything else is built here.
"""

import os

__version__ = "0.1.0"

REPOVAULT_HOME = os.environ.get("REPOVAULT_HOME", "~/.repovault")
