"""spotkeeper — operational automation for a disposable spot game server.

Keeps a relaunch-prone server reachable and its world durable:

* :mod:`spotkeeper.fleet`   — scaling group name → live instance addresses
* :mod:`spotkeeper.console` — remote console (RCON-style) protocol client
* :mod:`spotkeeper.backup`  — scheduled shared-filesystem → object storage backups
* :mod:`spotkeeper.dns`     — DNS upsert on instance launch

Quickstart::

    import asyncio
    from spotkeeper.backup import run_backup

    summary = asyncio.run(run_backup())   # reads settings from the environment
    print(summary.run_key, summary.file_count, summary.failures)
"""

__version__ = "1.0.0"
