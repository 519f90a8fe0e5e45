"""
Order lifecycle package.

Import submodules explicitly (enums, state_machine, repository, service,
events, tasks); this module stays empty so the ORM models can import the
status enum without pulling in the service layer.
"""
