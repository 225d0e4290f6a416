"""Built-in CLI sub-commands for nimbus.

* :mod:`~nimbus.commands.login` -- the ``nimbus login`` setup wizard.
* :mod:`~nimbus.commands.auth` -- ``nimbus auth`` group and ``nimbus logout``.

Multi-command groups export a :class:`typer.Typer` sub-application; single
commands export a plain callback registered on the root app.
"""
